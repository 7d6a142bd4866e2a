from __future__ import annotations

import base64
from pathlib import Path

import pytest
import yaml

from local_setup.kube import Helm, Kubectl, WaitTarget, secret_from_files, secret_manifest
from local_setup.logs import BootstrapError


@pytest.fixture
def kubectl(runner, logger) -> Kubectl:
    return Kubectl(runner, logger, "900s")


def test_wait_namespaced(kubectl, runner) -> None:
    kubectl.wait(WaitTarget("helmreleases", "kro"))

    assert runner.commands() == [
        ["kubectl", "wait", "--namespace", "default", "--for=condition=Ready", "helmreleases/kro", "--timeout=900s"]
    ]


def test_wait_cluster_scoped(kubectl, runner) -> None:
    kubectl.wait(WaitTarget("crd", "platformmeshes.core.platform-mesh.io", "Established", None))

    assert runner.commands() == [
        ["kubectl", "wait", "--for=condition=Established", "crd/platformmeshes.core.platform-mesh.io", "--timeout=900s"]
    ]


def test_wait_failure_names_target(kubectl, runner) -> None:
    runner.respond("kubectl", "wait", returncode=1, stderr="timed out")

    with pytest.raises(BootstrapError, match="helmreleases/portal did not reach condition=Ready"):
        kubectl.wait(WaitTarget("helmreleases", "portal"))


def test_apply_kustomization_with_server(kubectl, runner, tmp_path: Path) -> None:
    kubectl.apply_kustomization(tmp_path, server="https://kcp.example/clusters/root", env={"KUBECONFIG": "/tmp/admin"})

    call = runner.calls[0]
    assert call.cmd == ["kubectl", "apply", "-k", str(tmp_path), "--server=https://kcp.example/clusters/root"]
    assert call.env == {"KUBECONFIG": "/tmp/admin"}


def test_apply_kustomization_missing_dir(kubectl, tmp_path: Path) -> None:
    with pytest.raises(BootstrapError, match="does not exist"):
        kubectl.apply_kustomization(tmp_path / "absent")


def test_apply_manifest_pipes_yaml(kubectl, runner) -> None:
    kubectl.apply_manifest(secret_manifest("keycloak-admin", "platform-mesh-system", {"secret": b"admin"}))

    call = runner.calls[0]
    assert call.cmd == ["kubectl", "apply", "-f", "-"]
    document = yaml.safe_load(call.input)
    assert document["metadata"] == {"name": "keycloak-admin", "namespace": "platform-mesh-system"}
    assert base64.b64decode(document["data"]["secret"]) == b"admin"
    assert document["type"] == "Opaque"


def test_secret_from_files(tmp_path: Path) -> None:
    cert = tmp_path / "cert.crt"
    cert.write_bytes(b"CERT")

    manifest = secret_from_files("domain-certificate", "default", {"tls.crt": cert}, "kubernetes.io/tls")
    assert manifest["type"] == "kubernetes.io/tls"
    assert manifest["data"] == {"tls.crt": base64.b64encode(b"CERT").decode("ascii")}

    with pytest.raises(BootstrapError, match="Missing file"):
        secret_from_files("domain-certificate", "default", {"tls.key": tmp_path / "cert.key"})


def test_ensure_namespace_creates_missing(kubectl, runner) -> None:
    runner.respond("kubectl", "get", "namespace", returncode=1)
    kubectl.ensure_namespace_exists("platform-mesh-system")
    assert runner.ran("kubectl", "create", "namespace", "platform-mesh-system")


def test_ensure_namespace_keeps_existing(kubectl, runner) -> None:
    kubectl.ensure_namespace_exists("default")
    assert not runner.ran("kubectl", "create")


def test_helm_upgrade_install(runner, logger) -> None:
    Helm(runner, logger).upgrade_install(
        "flux",
        "oci://ghcr.io/fluxcd-community/charts/flux2",
        namespace="flux-system",
        version="2.17.1",
        values={"notificationController.create": "false"},
    )

    assert runner.commands() == [
        [
            "helm",
            "upgrade",
            "-i",
            "-n",
            "flux-system",
            "--create-namespace",
            "flux",
            "oci://ghcr.io/fluxcd-community/charts/flux2",
            "--version",
            "2.17.1",
            "--set",
            "notificationController.create=false",
        ]
    ]
