"""Shared test fixtures for k3s-nested tests.

This module provides fixtures for testing provisioning without a cluster:
- kubectl: a Kubectl double (MagicMock with the real interface)
- fake_clock: deterministic clock and sleep for polling loops
- make_pod: builder for pod objects as returned by ``kubectl get -o json``
- store: CredentialStore rooted in a temporary directory

structlog is configured before every test so library events go through
stdlib logging at warning level and never reach stdout.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import pytest

from k3s_nested.provision.credentials import CredentialStore
from k3s_nested.provision.kubectl import Kubectl
from k3s_nested.provision.models import InstanceConfig
from k3s_nested.shared.logging import configure_logging

INNER_KUBECONFIG = """\
apiVersion: v1
kind: Config
clusters:
- name: k3d-dev
  cluster:
    certificate-authority-data: Q0E=
    server: https://0.0.0.0:6443
contexts:
- name: k3d-dev
  context:
    cluster: k3d-dev
    user: admin@k3d-dev
current-context: k3d-dev
users:
- name: admin@k3d-dev
  user:
    client-certificate-data: Q0VSVA==
    client-key-data: S0VZ
"""


class FakeClock:
    """Monotonic clock that only moves when sleep is called."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture(autouse=True)
def warning_logging():
    configure_logging("warning")


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kubectl() -> MagicMock:
    """Kubectl double. Configure return values per test."""
    mock = MagicMock(spec=Kubectl)
    mock.binary = "kubectl"
    mock.kubeconfig = None
    return mock


@pytest.fixture
def store(tmp_path) -> CredentialStore:
    return CredentialStore(tmp_path / "kubeconfigs")


@pytest.fixture
def inner_kubeconfig() -> str:
    return INNER_KUBECONFIG


@pytest.fixture
def dev_config() -> InstanceConfig:
    """Instance with every default (NodePort 30443, public images)."""
    return InstanceConfig(name="dev")


@pytest.fixture
def make_pod() -> Callable[..., dict[str, Any]]:
    """Build a pod object for the instance workload."""

    def _make_pod(
        name: str = "k3s-7d9f8-abcde",
        phase: str = "Running",
        ready: bool = True,
        containers: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        if containers is None:
            containers = [
                {"name": "dind", "ready": ready, "restartCount": 0, "state": {"running": {}}},
                {"name": "k3d", "ready": ready, "restartCount": 0, "state": {"running": {}}},
            ]
        return {
            "metadata": {"name": name, "labels": {"app": "k3s"}},
            "status": {
                "phase": phase,
                "conditions": [{"type": "Ready", "status": "True" if ready else "False"}],
                "containerStatuses": containers,
            },
        }

    return _make_pod


@pytest.fixture
def make_namespace() -> Callable[..., dict[str, Any]]:
    """Build a managed namespace object."""

    def _make_namespace(
        instance: str,
        name: str | None = None,
        created: str = "2026-10-17T12:00:00Z",
        phase: str = "Active",
    ) -> dict[str, Any]:
        return {
            "metadata": {
                "name": name or f"k3s-{instance}",
                "labels": {"app": "k3s-nested", "instance": instance},
                "creationTimestamp": created,
            },
            "status": {"phase": phase},
        }

    return _make_namespace
