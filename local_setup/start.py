#!/usr/bin/env python3
"""Bring up a local platform-mesh installation on kind or k3d."""

from __future__ import annotations

import argparse
import logging
import subprocess
from typing import List, Optional

from local_setup.certs import CertificateBundle, CertificateManager
from local_setup.cluster import ClusterManager, ClusterSelection, ClusterSource
from local_setup.config import Settings
from local_setup.environment import EnvironmentChecker
from local_setup.kube import Helm, Kubectl, WaitTarget, secret_from_files, secret_manifest
from local_setup.logs import BootstrapError, build_logger
from local_setup.registry import RegistryProxyManager
from local_setup.runner import CommandRunner

FLUX_CHART = "oci://ghcr.io/fluxcd-community/charts/flux2"
FLUX_VERSION = "2.17.1"
FLUX_NAMESPACE = "flux-system"
FLUX_VALUES = {
    "imageAutomationController.create": "false",
    "imageReflectionController.create": "false",
    "notificationController.create": "false",
    "helmController.container.additionalArgs[0]": "--concurrent=50",
    "sourceController.container.additionalArgs[1]": "--requeue-dependency=5s",
}
FLUX_CONTROLLERS = ("helm-controller", "source-controller", "kustomize-controller")

PLATFORM_NAMESPACE = "platform-mesh-system"
KCP_SERVER = "https://kcp.api.portal.dev.local:8443/clusters"

PLATFORM_RELEASES = ("rebac-authz-webhook", "account-operator", "portal", "security-operator")
EXAMPLE_RELEASES = ("api-syncagent", "example-httpbin-provider")


def helmrelease(name: str) -> WaitTarget:
    return WaitTarget("helmreleases", name)


class Bootstrapper:
    def __init__(
        self,
        settings: Settings,
        runner: Optional[CommandRunner] = None,
        logger: Optional[logging.Logger] = None,
        checker: Optional[EnvironmentChecker] = None,
    ) -> None:
        self.settings = settings
        self.layout = settings.layout
        self.logger = logger or build_logger(settings.debug)
        self.runner = runner or CommandRunner(self.logger)

        self.checker = checker or EnvironmentChecker(
            self.runner,
            self.logger,
            bundled_mkcert=self.layout.bundled_mkcert,
            example_data=settings.example_data,
        )
        self.clusters = ClusterManager(self.runner, self.logger, settings.cluster_name, settings.node_image)
        self.certs = CertificateManager(self.runner, self.logger, self.layout.certs_dir, self.layout.gen_certs_script)
        self.kubectl = Kubectl(self.runner, self.logger, settings.wait_timeout)
        self.helm = Helm(self.runner, self.logger)

    # --------------------------------------------------------- Execution flow
    def execute(self) -> ClusterSelection:
        self.logger.info(
            f"[Bootstrap] Starting cached={self.settings.cached} example-data={self.settings.example_data} "
            f"latest={self.settings.latest} prerelease={self.settings.prerelease} timeout={self.settings.wait_timeout}"
        )
        self.checker.check_wsl_compatibility(self.layout.work_dir)
        self.checker.run_environment_checks()

        if self.settings.cached:
            RegistryProxyManager(self.runner, self.logger, self.checker.container_runtime).setup_registry_proxies()

        selection = self.select_cluster()
        bundle = self.certs.issue_domain_certificate(self.checker.mkcert_cmd)

        self.install_flux()
        self.install_kro_and_ocm()
        self.create_secrets(bundle)
        self.install_operator()
        self.install_platform_mesh()
        self.wait_for_platform_releases()
        self.prepare_kcp_admin_access()
        if self.settings.example_data:
            self.install_example_provider()

        self.print_summary()
        self.check_resource_drift()
        return selection

    # ------------------------------------------------------- Cluster
    def select_cluster(self) -> ClusterSelection:
        k3d_name = self.clusters.use_k3d_cluster()
        if k3d_name:
            self.logger.info("[Cluster] Using existing k3d cluster, bypassing kind cluster creation")
            if not self.layout.certs_dir.is_dir():
                self.certs.generate_helper_certs()
            return ClusterSelection(ClusterSource.K3D, k3d_name)

        if self.clusters.use_kind_cluster():
            return ClusterSelection(ClusterSource.KIND_EXISTING, self.settings.cluster_name)

        self.certs.clear()
        self.certs.generate_helper_certs()
        self.clusters.create_kind_cluster(self.layout.kind_config(self.settings.cached), cached=self.settings.cached)
        return ClusterSelection(ClusterSource.KIND_CREATED, self.settings.cluster_name)

    # ------------------------------------------------------- Add-ons
    def install_flux(self) -> None:
        self.logger.info("[Flux] Installing flux")
        self.helm.upgrade_install("flux", FLUX_CHART, namespace=FLUX_NAMESPACE, version=FLUX_VERSION, values=FLUX_VALUES)
        self.kubectl.wait_all(
            [WaitTarget("deployment", name, "available", FLUX_NAMESPACE) for name in FLUX_CONTROLLERS],
            quiet=True,
        )

    def install_kro_and_ocm(self) -> None:
        self.logger.info("[Addons] Install KRO and OCM")
        self.kubectl.apply_kustomization(self.layout.kustomize_dir / "base")
        self.kubectl.wait(helmrelease("kro"))

    def create_secrets(self, bundle: CertificateBundle) -> None:
        self.logger.info("[Secrets] Creating necessary secrets")
        for namespace in ("default", PLATFORM_NAMESPACE):
            self.kubectl.ensure_namespace_exists(namespace)

        tls_files = {"tls.crt": bundle.cert, "tls.key": bundle.key, "ca.crt": bundle.ca}
        manifests = [
            secret_manifest("keycloak-admin", PLATFORM_NAMESPACE, {"secret": b"admin"}),
            secret_from_files("domain-certificate", "default", tls_files, "kubernetes.io/tls"),
            secret_from_files("domain-certificate", PLATFORM_NAMESPACE, tls_files, "kubernetes.io/tls"),
            secret_from_files("domain-certificate-ca", PLATFORM_NAMESPACE, {"tls.crt": bundle.ca}),
        ]
        for manifest in manifests:
            metadata = manifest["metadata"]
            self.logger.debug(f"[Secrets] Applying secret={metadata['name']} namespace={metadata['namespace']}")
            self.kubectl.apply_manifest(manifest)

    def install_operator(self) -> None:
        self.logger.info("[Operator] Install Platform-Mesh Operator")
        self.kubectl.apply_kustomization(self.layout.kustomize_dir / "base" / "rgd")
        self.kubectl.wait(WaitTarget("resourcegraphdefinition", "platform-mesh-operator"))

        if self.settings.latest:
            self.logger.info("[Operator] Using LATEST OCM Component version")
            self.kubectl.apply_kustomization(self.layout.overlay("default-latest"))
        else:
            self.logger.info("[Operator] Using RELEASED OCM Component version")
            self.kubectl.apply_kustomization(self.layout.overlay("default"))

        self.kubectl.wait(WaitTarget("PlatformMeshOperator", "platform-mesh-operator"))
        self.kubectl.wait(WaitTarget("crd", "platformmeshes.core.platform-mesh.io", "Established", None))

    def install_platform_mesh(self) -> None:
        if self.settings.example_data:
            self.logger.info("[PlatformMesh] Install Platform-Mesh (with example-data)")
            self.kubectl.apply_kustomization(self.layout.overlay("example-data"))
        else:
            self.logger.info("[PlatformMesh] Install Platform-Mesh")
            self.kubectl.apply_kustomization(self.layout.overlay("platform-mesh-resource"))

        self.logger.info("[PlatformMesh] Waiting for kind: PlatformMesh resource to become ready")
        self.kubectl.wait(WaitTarget("platformmesh", "platform-mesh", namespace=PLATFORM_NAMESPACE))

    def wait_for_platform_releases(self) -> None:
        self.kubectl.wait(helmrelease("keycloak"))
        self.kubectl.delete_pods("crossplane-system", "pkg.crossplane.io/provider=provider-keycloak")

        self.logger.info("[PlatformMesh] Waiting for helmreleases")
        self.kubectl.wait_all([helmrelease(name) for name in PLATFORM_RELEASES])

    # ------------------------------------------------------------- KCP
    def prepare_kcp_admin_access(self) -> None:
        script = self.layout.kcp_admin_script
        if not script.is_file():
            raise BootstrapError(f"[KCP] Admin kubeconfig helper {script} does not exist")
        self.logger.info("[KCP] Preparing KCP Secrets for admin access")
        self.runner.run([str(script)])

    def install_example_provider(self) -> None:
        kcp_env = {"KUBECONFIG": str(self.layout.kcp_admin_kubeconfig)}
        self.kubectl.create_workspace("providers", "root:providers", f"{KCP_SERVER}/root", env=kcp_env)
        self.kubectl.create_workspace("httpbin-provider", "root:provider", f"{KCP_SERVER}/root:providers", env=kcp_env)
        self.kubectl.apply_kustomization(
            self.layout.example_provider_dir,
            server=f"{KCP_SERVER}/root:providers:httpbin-provider",
            env=kcp_env,
        )

        self.logger.info("[Examples] Waiting for example provider")
        self.kubectl.wait_all([helmrelease(name) for name in EXAMPLE_RELEASES])

    # ----------------------------------------------------------- Summary
    def print_summary(self) -> None:
        self.logger.info('[Hosts] Please create an entry in your /etc/hosts with the following line: "127.0.0.1 default.portal.dev.local portal.dev.local kcp.api.portal.dev.local"')
        self.checker.show_wsl_hosts_guidance()

        self.logger.warning("[Hosts] You need to add a hosts entry for every organization that is onboarded!")
        self.logger.warning("[Hosts] Each organization will require its own subdomain entry in /etc/hosts")
        self.logger.warning("[Hosts] Example: 127.0.0.1 <organization-name>.portal.dev.local")

        self.logger.info(f"[KCP] Once kcp is up and running, run 'export KUBECONFIG={self.layout.kcp_admin_kubeconfig}' to gain access to the root workspace.")
        self.logger.info("[Bootstrap] Installation Complete")
        self.logger.info("[Bootstrap] Onboarding portal: https://portal.dev.local:8443 mailpit: https://portal.dev.local:8443/mailpit")

    def check_resource_drift(self) -> None:
        resource = self.layout.platform_mesh_resource_file
        if not self.runner.has_command("git"):
            return
        result = self.runner.run(["git", "diff", "--quiet", str(resource)], check=False, capture_output=True)
        # 1 means changed; anything else (0 clean, 128 not a repo) needs no hint
        if result.returncode == 1:
            self.logger.info(f"[Bootstrap] Detected changes in {resource.parent.name}/{resource.name}")
            self.logger.info("[Bootstrap] You may need to run task local-setup:iterate to apply them.")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="local-setup",
        description="Create or reuse a local kind/k3d cluster and install platform-mesh into it.",
        epilog="Environment: DEBUG=true traces every command, KUBECTL_WAIT_TIMEOUT sets the wait timeout (default 900s), LOCAL_SETUP_DIR locates the local-setup tree. "
        "Exit status: 0 on success or --help, 1 when a dependency check or install step fails, 2 on an unknown option.",
    )
    parser.add_argument("--prerelease", action="store_true", help="Accepted for compatibility; currently selects nothing")
    parser.add_argument("--cached", action="store_true", help="Start registry proxies and create kind with the cached config")
    parser.add_argument("--example-data", action="store_true", help="Install platform-mesh with example data and the httpbin provider")
    parser.add_argument("--latest", action="store_true", help="Use the latest OCM component version instead of the released one")
    parser.add_argument("positional", nargs="*", help=argparse.SUPPRESS)
    return parser.parse_intermixed_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logger = build_logger()
    try:
        settings = Settings.from_args(args)
        logger = build_logger(settings.debug)
        for extra in args.positional:
            logger.info(f"[Args] Ignoring positional arg: {extra}")
        Bootstrapper(settings, logger=logger).execute()
    except (BootstrapError, subprocess.CalledProcessError) as exc:
        message = str(exc)
        if isinstance(exc, subprocess.CalledProcessError) and exc.stderr:
            message = f"{message}\n{exc.stderr.strip()}"
        logger.exception(message)
        raise SystemExit(1) from exc


if __name__ == "__main__":  # pragma: no cover
    main()
