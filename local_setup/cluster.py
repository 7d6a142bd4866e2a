"""Pick the cluster to install into: a running k3d cluster, an existing kind cluster, or a new kind cluster."""

import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from local_setup.logs import BootstrapError
from local_setup.runner import CommandRunner


class ClusterSource(enum.Enum):
    K3D = "k3d"
    KIND_EXISTING = "kind-existing"
    KIND_CREATED = "kind-created"


@dataclass(frozen=True)
class ClusterSelection:
    source: ClusterSource
    name: str

    @property
    def created(self) -> bool:
        return self.source is ClusterSource.KIND_CREATED


def parse_k3d_cluster_list(output: str) -> List[str]:
    """Return cluster names from the `k3d cluster list` table, header excluded."""
    names = []
    for line in output.splitlines():
        if "NAME" in line or not line.strip():
            continue
        names.append(line.split()[0])
    return names


def list_k3d_clusters(runner: CommandRunner) -> List[str]:
    result = runner.run(["k3d", "cluster", "list"], check=False, capture_output=True)
    if result.returncode != 0:
        return []
    return parse_k3d_cluster_list(result.stdout or "")


def load_kind_config(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise BootstrapError(f"[Config] Kind config {path} does not exist")

    with path.open("r", encoding="utf-8") as handle:
        config = yaml.safe_load(handle)

    if not isinstance(config, dict):
        raise BootstrapError(f"[Config] {path} must be a YAML map")
    if config.get("kind") != "Cluster":
        raise BootstrapError(f"[Config] {path} must describe a kind Cluster (kind: Cluster)")
    return config


class ClusterManager:
    def __init__(self, runner: CommandRunner, logger: logging.Logger, name: str, node_image: str) -> None:
        self.runner = runner
        self.logger = logger
        self.name = name
        self.node_image = node_image

    # ------------------------------------------------------------- k3d
    def use_k3d_cluster(self) -> Optional[str]:
        if not self.runner.has_command("k3d"):
            return None

        clusters = list_k3d_clusters(self.runner)
        if not clusters:
            return None

        name = clusters[0]
        self.logger.info(f"[Cluster] k3d cluster detected, bypassing kind cluster creation name={name}")
        result = self.runner.run(
            ["k3d", "kubeconfig", "merge", name, "--kubeconfig-switch-context"],
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            self.logger.warning(f"[Cluster] Failed to export k3d kubeconfig name={name} action=fallback-to-kind")
            return None

        self.logger.info(f"[Cluster] Using k3d cluster name={name}")
        return name

    # ------------------------------------------------------------ kind
    def kind_cluster_exists(self) -> bool:
        result = self.runner.run(["kind", "get", "clusters"], check=False, capture_output=True)
        return any(line.strip() == self.name for line in (result.stdout or "").splitlines())

    def use_kind_cluster(self) -> bool:
        if not self.kind_cluster_exists():
            return False
        self.logger.info(f"[Cluster] Kind cluster already running, using existing name={self.name}")
        self.runner.run(["kind", "export", "kubeconfig", "--name", self.name])
        return True

    def create_kind_cluster(self, config_path: Path, cached: bool = False) -> None:
        config = load_kind_config(config_path)
        configured_name = config.get("name")
        if configured_name and configured_name != self.name:
            self.logger.warning(f"[Config] Ignoring cluster name from {config_path} name={configured_name} using={self.name}")

        mode = " with cached images" if cached else ""
        self.logger.info(f"[Cluster] Creating kind cluster{mode} name={self.name} image={self.node_image}")
        self.runner.run(
            [
                "kind",
                "create",
                "cluster",
                "--config",
                str(config_path),
                "--name",
                self.name,
                f"--image={self.node_image}",
                "--quiet",
            ]
        )
