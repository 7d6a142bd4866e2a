"""Pull-through registry mirrors for `--cached` runs.

The cached kind config points containerd at these mirrors by container name,
so they must be running on the `kind` network before the cluster is created.
"""

import logging
import subprocess
from typing import List, NamedTuple, Sequence

from local_setup.runner import CommandRunner

KIND_NETWORK = "kind"
REGISTRY_IMAGE = "docker.io/library/registry:2"


class RegistryProxy(NamedTuple):
    name: str
    remote_url: str

    @property
    def volume(self) -> str:
        return f"{self.name}-data"


REGISTRY_PROXIES = (
    RegistryProxy("proxy-docker-hub", "https://registry-1.docker.io"),
    RegistryProxy("proxy-ghcr", "https://ghcr.io"),
    RegistryProxy("proxy-quay", "https://quay.io"),
    RegistryProxy("proxy-k8s", "https://registry.k8s.io"),
)


class RegistryProxyManager:
    def __init__(
        self,
        runner: CommandRunner,
        logger: logging.Logger,
        runtime: str,
        proxies: Sequence[RegistryProxy] = REGISTRY_PROXIES,
    ) -> None:
        self.runner = runner
        self.logger = logger
        self.runtime = runtime
        self.proxies = list(proxies)

    def setup_registry_proxies(self) -> None:
        self.logger.info(f"[Registry] Starting registry proxies runtime={self.runtime} count={len(self.proxies)}")
        self.ensure_network()
        started, reused = [], []
        for proxy in self.proxies:
            if self.ensure_proxy(proxy):
                started.append(proxy.name)
            else:
                reused.append(proxy.name)

        if started:
            self.logger.info(f"[Registry] Proxies started names={' '.join(started)}")
        if reused:
            self.logger.info(f"[Registry] Proxies already running names={' '.join(reused)}")

    def ensure_network(self) -> None:
        networks = self.container(["network", "ls", "--format", "{{.Name}}"], capture_output=True).stdout.splitlines()
        if KIND_NETWORK in (line.strip() for line in networks):
            return
        self.logger.info(f"[Registry] Creating container network name={KIND_NETWORK}")
        self.container(["network", "create", KIND_NETWORK])

    def ensure_proxy(self, proxy: RegistryProxy) -> bool:
        """Start the proxy container if needed; returns True when it was (re)started."""
        state = self.container(
            ["container", "inspect", proxy.name, "--format", "{{.State.Running}}"],
            check=False,
            capture_output=True,
        )
        if state.returncode == 0 and state.stdout.strip() == "true":
            return False
        if state.returncode == 0:
            self.container(["start", proxy.name])
            return True

        self.container(
            [
                "run",
                "-d",
                "--restart=always",
                "--name",
                proxy.name,
                "--network",
                KIND_NETWORK,
                "-v",
                f"{proxy.volume}:/var/lib/registry",
                "-e",
                f"REGISTRY_PROXY_REMOTEURL={proxy.remote_url}",
                REGISTRY_IMAGE,
            ],
            capture_output=True,
        )
        return True

    def container(self, args: List[str], *, check: bool = True, capture_output: bool = False) -> subprocess.CompletedProcess[str]:
        return self.runner.run([self.runtime, *args], check=check, capture_output=capture_output)
