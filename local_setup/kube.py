"""kubectl and helm invocations used by the install sequence."""

import base64
import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Mapping, NamedTuple, Optional

import yaml

from local_setup.logs import BootstrapError
from local_setup.runner import CommandRunner


class WaitTarget(NamedTuple):
    resource: str
    name: str
    condition: str = "Ready"
    namespace: Optional[str] = "default"

    def __str__(self) -> str:
        return f"{self.resource}/{self.name}"


def secret_manifest(
    name: str,
    namespace: str,
    data: Mapping[str, bytes],
    secret_type: str = "Opaque",
) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": name, "namespace": namespace},
        "type": secret_type,
        "data": {key: base64.b64encode(value).decode("ascii") for key, value in data.items()},
    }


def secret_from_files(
    name: str,
    namespace: str,
    files: Mapping[str, Path],
    secret_type: str = "Opaque",
) -> Dict[str, Any]:
    data = {}
    for key, path in files.items():
        if not path.is_file():
            raise BootstrapError(f"[Secrets] Missing file for secret={name} key={key} path={path}")
        data[key] = path.read_bytes()
    return secret_manifest(name, namespace, data, secret_type)


class Kubectl:
    def __init__(self, runner: CommandRunner, logger: logging.Logger, wait_timeout: str) -> None:
        self.runner = runner
        self.logger = logger
        self.wait_timeout = wait_timeout

    def wait(self, target: WaitTarget, *, quiet: bool = False) -> None:
        cmd = ["kubectl", "wait"]
        if target.namespace:
            cmd.extend(["--namespace", target.namespace])
        cmd.extend([f"--for=condition={target.condition}", str(target), f"--timeout={self.wait_timeout}"])

        self.logger.debug(f"[Wait] Waiting for {target} condition={target.condition} namespace={target.namespace or '-'}")
        try:
            self.runner.run(cmd, capture_output=quiet)
        except subprocess.CalledProcessError as exc:
            raise BootstrapError(
                f"[Wait] {target} did not reach condition={target.condition} namespace={target.namespace or '-'} " f"timeout={self.wait_timeout}"
            ) from exc

    def wait_all(self, targets: List[WaitTarget], *, quiet: bool = False) -> None:
        for target in targets:
            self.wait(target, quiet=quiet)

    def apply_kustomization(
        self,
        path: Path,
        *,
        server: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> None:
        if not path.is_dir():
            raise BootstrapError(f"[Kustomize] Directory {path} does not exist")
        cmd = ["kubectl", "apply", "-k", str(path)]
        if server:
            cmd.append(f"--server={server}")
        self.runner.run(cmd, env=env)

    def apply_manifest(self, manifest: Dict[str, Any]) -> None:
        self.runner.run(
            ["kubectl", "apply", "-f", "-"],
            input=yaml.safe_dump(manifest, sort_keys=False),
        )

    def ensure_namespace_exists(self, namespace: str) -> None:
        namespace = (namespace or "").strip()
        if not namespace:
            return
        result = self.runner.run(
            ["kubectl", "get", "namespace", namespace],
            check=False,
            capture_output=True,
        )
        if result.returncode == 0:
            return
        self.logger.info(f"[Kubernetes] Creating namespace name={namespace}")
        self.runner.run(["kubectl", "create", "namespace", namespace])

    def delete_pods(self, namespace: str, selector: str) -> None:
        self.runner.run(["kubectl", "delete", "pod", "-l", selector, "-n", namespace])

    def create_workspace(self, name: str, workspace_type: str, server: str, env: Optional[Dict[str, str]] = None) -> None:
        self.logger.info(f"[KCP] Creating workspace name={name} type={workspace_type}")
        self.runner.run(
            [
                "kubectl",
                "create-workspace",
                name,
                f"--type={workspace_type}",
                "--ignore-existing",
                f"--server={server}",
            ],
            env=env,
        )


class Helm:
    def __init__(self, runner: CommandRunner, logger: logging.Logger) -> None:
        self.runner = runner
        self.logger = logger

    def upgrade_install(
        self,
        release: str,
        chart: str,
        *,
        namespace: str,
        version: str,
        values: Optional[Mapping[str, str]] = None,
    ) -> None:
        cmd = ["helm", "upgrade", "-i", "-n", namespace, "--create-namespace", release, chart, "--version", version]
        for key, value in (values or {}).items():
            cmd.extend(["--set", f"{key}={value}"])
        self.logger.debug(f"[Helm] Installing release={release} chart={chart} version={version} namespace={namespace}")
        self.runner.run(cmd, capture_output=True)
