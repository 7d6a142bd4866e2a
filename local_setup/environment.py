"""Dependency and host checks run before anything touches a cluster."""

import logging
import platform
from pathlib import Path
from typing import Callable, List, Optional

from local_setup.cluster import list_k3d_clusters
from local_setup.logs import BootstrapError
from local_setup.runner import CommandRunner

PROC_VERSION = Path("/proc/version")

CLUSTER_TOOLS = {
    "kubectl": "https://kubernetes.io/docs/tasks/tools/",
    "helm": "https://helm.sh/docs/intro/install/",
}

ARCHITECTURES = {
    "arm64": "arm64",
    "aarch64": "arm64",
    "x86_64": "x86_64",
    "amd64": "x86_64",
}


def is_wsl(proc_version: Path = PROC_VERSION) -> bool:
    try:
        return "microsoft" in proc_version.read_text(encoding="utf-8", errors="ignore").lower()
    except OSError:
        return False


def normalize_architecture(machine: str) -> Optional[str]:
    return ARCHITECTURES.get(machine.strip().lower())


class EnvironmentChecker:
    def __init__(
        self,
        runner: CommandRunner,
        logger: logging.Logger,
        bundled_mkcert: Path,
        example_data: bool = False,
        wsl: Optional[bool] = None,
    ) -> None:
        self.runner = runner
        self.logger = logger
        self.bundled_mkcert = bundled_mkcert
        self.example_data = example_data
        self.wsl = is_wsl() if wsl is None else wsl

        # Results consumed by later bootstrap steps
        self.container_runtime = ""
        self.mkcert_cmd = ""
        self.architecture = ""

    # ----------------------------------------------------------- Entry point
    def run_environment_checks(self) -> None:
        self.logger.info("[Deps] Checking environment dependencies")

        checks: List[Callable[[], bool]] = [
            self.check_container_runtime,
            self.check_kind_dependency,
            self.setup_mkcert_command,
            self.check_architecture,
            self.check_cluster_tools,
        ]
        if self.example_data:
            checks.append(self.check_kcp_plugin)

        failed = sum(1 for check in checks if not check())
        if failed:
            raise BootstrapError(f"[Deps] {failed} dependency check(s) failed. Please install the missing dependencies and try again.")

        self.logger.info("[Deps] All environment checks passed")

    # ------------------------------------------------------ Individual checks
    def check_container_runtime(self) -> bool:
        docker_installed = self.runner.has_command("docker")
        podman_installed = self.runner.has_command("podman")
        docker_running = docker_installed and self.runner.succeeds(["docker", "info"])
        podman_running = podman_installed and self.runner.succeeds(["podman", "info"])

        if docker_running and podman_running:
            label = "Docker and Podman"
        elif docker_running:
            label = "Docker"
        elif podman_running:
            label = "Podman"
        else:
            self.report_missing_runtime(docker_installed, podman_installed)
            return False

        self.container_runtime = "docker" if docker_running else "podman"
        self.logger.info(f"[Deps] {label} is available and running")
        return True

    def report_missing_runtime(self, docker_installed: bool, podman_installed: bool) -> None:
        if not docker_installed and not podman_installed:
            self.logger.error("[Deps] Neither 'docker' nor 'podman' is installed")
            self.logger.info("[Deps] A container runtime (Docker or Podman) is required for kind to create Kubernetes clusters.")
            if self.wsl:
                self.logger.info("[Deps] For WSL: Install Docker Desktop with WSL2 integration https://docs.docker.com/desktop/wsl/")
            else:
                self.logger.info("[Deps] Docker installation guide: https://docs.docker.com/get-docker/")
            self.logger.info("[Deps] Podman installation guide: https://podman.io/getting-started/installation")
            return

        self.logger.error("[Deps] Container runtime daemon is not running")
        if docker_installed:
            self.logger.info("[Deps] Docker is installed but not running. Please start Docker and try again.")
            if self.wsl:
                self.logger.info("[Deps] For WSL: Ensure Docker Desktop is running on Windows")
        if podman_installed:
            self.logger.info("[Deps] Podman is installed but not running. Please start Podman and try again.")
            self.logger.info("[Deps] Try: 'podman machine start' or 'systemctl --user start podman.socket'")

    def check_kind_dependency(self) -> bool:
        # An existing k3d cluster is used instead of kind, see Bootstrapper.select_cluster
        if self.runner.has_command("k3d") and list_k3d_clusters(self.runner):
            self.logger.info("[Deps] k3d is available with existing clusters, skipping kind dependency check")
            return True

        if not self.runner.has_command("kind"):
            self.logger.error("[Deps] 'kind' (Kubernetes in Docker) is not installed")
            self.logger.info("[Deps] Kind is required to create local Kubernetes clusters.")
            self.logger.info("[Deps] Installation guide: https://kind.sigs.k8s.io/docs/user/quick-start/#installation")
            return False

        self.logger.info("[Deps] Kind is available")
        return True

    def setup_mkcert_command(self) -> bool:
        if self.runner.has_command("mkcert"):
            self.mkcert_cmd = "mkcert"
            self.logger.info("[Deps] Using system mkcert")
            return True

        if self.bundled_mkcert.is_file():
            self.mkcert_cmd = str(self.bundled_mkcert)
            self.logger.info(f"[Deps] Using bundled mkcert path={self.bundled_mkcert}")
            return True

        self.logger.error("[Deps] 'mkcert' is not installed and bundled version not found")
        self.logger.info("[Deps] mkcert is required to generate local SSL certificates.")
        self.logger.info("[Deps] Installation guide: https://github.com/FiloSottile/mkcert#installation")
        if self.wsl:
            self.logger.info("[Deps] For Windows: Use 'choco install mkcert' or 'scoop install mkcert'")
        return False

    def check_architecture(self, machine: Optional[str] = None) -> bool:
        machine = platform.machine() if machine is None else machine
        arch = normalize_architecture(machine)
        if arch is None:
            self.logger.error(f"[Deps] Unsupported architecture '{machine}'")
            self.logger.info("[Deps] Supported architectures: arm64, aarch64, x86_64, amd64")
            self.logger.info("[Deps] Please check if your architecture has available container images")
            return False

        self.architecture = arch
        self.logger.info(f"[Deps] Architecture: {arch}")
        return True

    def check_cluster_tools(self) -> bool:
        missing = [name for name in CLUSTER_TOOLS if not self.runner.has_command(name)]
        for name in missing:
            self.logger.error(f"[Deps] '{name}' is required but not found in PATH")
            self.logger.info(f"[Deps] Installation guide: {CLUSTER_TOOLS[name]}")
        if missing:
            return False

        self.logger.info(f"[Deps] {' and '.join(CLUSTER_TOOLS)} are available")
        return True

    def check_kcp_plugin(self) -> bool:
        if not self.runner.succeeds(["kubectl", "kcp", "--help"]):
            self.logger.error("[Deps] 'kubectl-kcp' plugin is not installed")
            self.logger.info("[Deps] The KCP kubectl plugin is required for creating workspaces when using --example-data.")
            self.logger.info("[Deps] Installation guide: https://docs.kcp.io/kcp/main/setup/kubectl-plugin/")
            return False

        self.logger.info("[Deps] kubectl-kcp plugin is available")
        return True

    # -------------------------------------------------------------- WSL
    def check_wsl_compatibility(self, work_dir: Path) -> None:
        if not self.wsl:
            return
        self.logger.info("[WSL] Running under Windows Subsystem for Linux")
        if work_dir.parts[:2] == ("/", "mnt"):
            self.logger.warning(f"[WSL] Working directory is on a Windows drive path={work_dir} hint=clone-into-linux-home-for-faster-io")

    def show_wsl_hosts_guidance(self) -> None:
        if not self.wsl:
            return
        self.logger.info("[WSL] Browsers on Windows read C:\\Windows\\System32\\drivers\\etc\\hosts; add the same entries there as Administrator")
