from __future__ import annotations

import pytest

from local_setup.registry import REGISTRY_IMAGE, RegistryProxy, RegistryProxyManager

PROXY = RegistryProxy("proxy-ghcr", "https://ghcr.io")


@pytest.fixture
def proxies(runner, logger) -> RegistryProxyManager:
    return RegistryProxyManager(runner, logger, "podman", proxies=[PROXY])


def test_running_proxy_is_reused(proxies, runner) -> None:
    runner.respond("podman", "network", "ls", stdout="bridge\nkind\n")
    runner.respond("podman", "container", "inspect", stdout="true\n")

    proxies.setup_registry_proxies()
    assert not runner.ran("podman", "run")
    assert not runner.ran("podman", "start")
    assert not runner.ran("podman", "network", "create")


def test_stopped_proxy_is_started(proxies, runner) -> None:
    runner.respond("podman", "container", "inspect", stdout="false\n")

    proxies.setup_registry_proxies()
    assert runner.ran("podman", "start", "proxy-ghcr")
    assert runner.ran("podman", "network", "create", "kind")


def test_missing_proxy_is_created(proxies, runner) -> None:
    runner.respond("podman", "network", "ls", stdout="kind\n")
    runner.respond("podman", "container", "inspect", returncode=1)

    proxies.setup_registry_proxies()
    run = runner.commands()[-1]
    assert run[:2] == ["podman", "run"]
    assert "REGISTRY_PROXY_REMOTEURL=https://ghcr.io" in run
    assert "proxy-ghcr-data:/var/lib/registry" in run
    assert run[run.index("--network") + 1] == "kind"
    assert run[-1] == REGISTRY_IMAGE
