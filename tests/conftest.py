from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import pytest

from local_setup.config import Settings, SetupLayout
from local_setup.runner import CommandRunner


@dataclass
class Response:
    prefix: Sequence[str]
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    effect: Optional[Callable[[List[str]], None]] = None


@dataclass
class Call:
    cmd: List[str]
    env: Optional[Dict[str, str]] = None
    input: Optional[str] = None


class FakeRunner(CommandRunner):
    """Records commands instead of executing them; answers from prefix-matched responses."""

    def __init__(self, logger: logging.Logger, available: Sequence[str] = ()) -> None:
        super().__init__(logger, env={"PATH": "/usr/bin"})
        self.available = set(available)
        self.responses: List[Response] = []
        self.calls: List[Call] = []

    def respond(self, *prefix: str, **kwargs) -> None:
        self.responses.insert(0, Response(prefix, **kwargs))

    def has_command(self, name: str) -> bool:
        return name in self.available

    def run(self, cmd, *, check=True, capture_output=False, env=None, input=None):
        cmd = list(cmd)
        self.calls.append(Call(cmd, env, input))
        response = next((r for r in self.responses if cmd[: len(r.prefix)] == list(r.prefix)), Response(()))
        if response.effect:
            response.effect(cmd)
        if check and response.returncode != 0:
            raise subprocess.CalledProcessError(response.returncode, cmd, output=response.stdout, stderr=response.stderr)
        return subprocess.CompletedProcess(cmd, response.returncode, stdout=response.stdout, stderr=response.stderr)

    def commands(self) -> List[List[str]]:
        return [call.cmd for call in self.calls]

    def ran(self, *prefix: str) -> bool:
        return any(cmd[: len(prefix)] == list(prefix) for cmd in self.commands())

    def index(self, *prefix: str) -> int:
        for position, cmd in enumerate(self.commands()):
            if cmd[: len(prefix)] == list(prefix):
                return position
        raise AssertionError(f"command not run: {' '.join(prefix)}")


@pytest.fixture
def logger() -> logging.Logger:
    log = logging.getLogger("tests.local_setup")
    log.setLevel(logging.DEBUG)
    return log


@pytest.fixture
def runner(logger: logging.Logger) -> FakeRunner:
    return FakeRunner(logger)


KIND_CONFIG = """\
kind: Cluster
apiVersion: kind.x-k8s.io/v1alpha4
nodes:
  - role: control-plane
"""


@pytest.fixture
def layout(tmp_path: Path) -> SetupLayout:
    setup_dir = tmp_path / "local-setup"
    for sub in (
        "kind",
        "scripts",
        "kustomize/base/rgd",
        "kustomize/overlays/default",
        "kustomize/overlays/default-latest",
        "kustomize/overlays/example-data",
        "kustomize/overlays/platform-mesh-resource",
        "example-data/root/providers/httpbin-provider",
    ):
        (setup_dir / sub).mkdir(parents=True, exist_ok=True)
    (setup_dir / "kind" / "kind-config.yaml").write_text(KIND_CONFIG, encoding="utf-8")
    (setup_dir / "kind" / "kind-config-cached.yaml").write_text(KIND_CONFIG, encoding="utf-8")
    for script in ("gen-certs.sh", "createKcpAdminKubeconfig.sh"):
        (setup_dir / "scripts" / script).write_text("#!/bin/sh\n", encoding="utf-8")
    return SetupLayout(setup_dir=setup_dir, work_dir=tmp_path)


@pytest.fixture
def caroot(tmp_path: Path) -> Path:
    root = tmp_path / "caroot"
    root.mkdir()
    (root / "rootCA.pem").write_text("ROOT CA\n", encoding="utf-8")
    return root


def write_mkcert_outputs(cmd: List[str]) -> None:
    for arg in cmd:
        if arg.startswith(("-cert-file=", "-key-file=")):
            path = Path(arg.split("=", 1)[1])
            path.write_text(f"{path.name}\n", encoding="utf-8")


@pytest.fixture
def mkcert(runner: FakeRunner, caroot: Path) -> FakeRunner:
    runner.respond("mkcert", effect=write_mkcert_outputs)
    runner.respond("mkcert", "-CAROOT", stdout=f"{caroot}\n")
    return runner


@pytest.fixture
def make_settings(layout: SetupLayout) -> Callable[..., Settings]:
    def factory(**overrides) -> Settings:
        values = dict(
            prerelease=False,
            cached=False,
            example_data=False,
            latest=False,
            debug=False,
            wait_timeout="900s",
            layout=layout,
        )
        values.update(overrides)
        return Settings(**values)

    return factory
