"""Runtime settings: CLI flags, environment variables and the local-setup layout."""

import argparse
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from local_setup.logs import BootstrapError

CLUSTER_NAME = "platform-mesh"
KINDEST_VERSION = "kindest/node:v1.34.0"
DEFAULT_WAIT_TIMEOUT = "900s"

# kubectl accepts Go durations such as 900s, 15m or 1h30m
_DURATION_RE = re.compile(r"^(0|(\d+(ms|s|m|h))+)$")
_TRUTHY = ("true", "1", "yes")


def parse_wait_timeout(value: Optional[str]) -> str:
    value = (value or "").strip()
    if not value:
        return DEFAULT_WAIT_TIMEOUT
    if not _DURATION_RE.match(value):
        raise BootstrapError(f"[Config] Invalid KUBECTL_WAIT_TIMEOUT={value} expected=duration-like-900s-or-15m")
    return value


@dataclass(frozen=True)
class SetupLayout:
    """Paths inside the `local-setup` tree the bootstrap reads from and writes to."""

    setup_dir: Path
    work_dir: Path = field(default_factory=Path.cwd)

    @property
    def scripts_dir(self) -> Path:
        return self.setup_dir / "scripts"

    @property
    def certs_dir(self) -> Path:
        return self.scripts_dir / "certs"

    @property
    def gen_certs_script(self) -> Path:
        return self.scripts_dir / "gen-certs.sh"

    @property
    def kcp_admin_script(self) -> Path:
        return self.scripts_dir / "createKcpAdminKubeconfig.sh"

    @property
    def bundled_mkcert(self) -> Path:
        return self.setup_dir.parent / "bin" / "mkcert"

    @property
    def kustomize_dir(self) -> Path:
        return self.setup_dir / "kustomize"

    @property
    def platform_mesh_resource_file(self) -> Path:
        return self.kustomize_dir / "components" / "platform-mesh-operator-resource" / "platform-mesh.yaml"

    @property
    def example_provider_dir(self) -> Path:
        return self.setup_dir / "example-data" / "root" / "providers" / "httpbin-provider"

    @property
    def kcp_admin_kubeconfig(self) -> Path:
        return self.work_dir / ".secret" / "kcp" / "admin.kubeconfig"

    def kind_config(self, cached: bool) -> Path:
        name = "kind-config-cached.yaml" if cached else "kind-config.yaml"
        return self.setup_dir / "kind" / name

    def overlay(self, name: str) -> Path:
        return self.kustomize_dir / "overlays" / name


@dataclass(frozen=True)
class Settings:
    prerelease: bool
    cached: bool
    example_data: bool
    latest: bool
    debug: bool
    wait_timeout: str
    layout: SetupLayout
    cluster_name: str = CLUSTER_NAME
    node_image: str = KINDEST_VERSION

    @classmethod
    def from_args(cls, args: argparse.Namespace, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        environ = os.environ if environ is None else environ
        work_dir = Path.cwd()
        setup_dir = Path(environ.get("LOCAL_SETUP_DIR") or work_dir / "local-setup")
        return cls(
            prerelease=args.prerelease,
            cached=args.cached,
            example_data=args.example_data,
            latest=args.latest,
            debug=environ.get("DEBUG", "false").strip().lower() in _TRUTHY,
            wait_timeout=parse_wait_timeout(environ.get("KUBECTL_WAIT_TIMEOUT")),
            layout=SetupLayout(setup_dir=setup_dir.resolve(), work_dir=work_dir),
        )
