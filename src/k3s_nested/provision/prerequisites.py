"""Prerequisite detection for deploy.

Checks that kubectl is installed, the host cluster answers, namespaces can be
created, and a storage class exists when none is configured.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field

from ..errors import PHASE_PREREQUISITES, ConfigurationError, KubectlError
from .kubectl import Kubectl


@dataclass
class PrerequisiteCheck:
    """Result of one prerequisite check."""

    name: str
    passed: bool
    detail: str = ""


@dataclass
class PrerequisiteReport:
    """All prerequisite checks, stopping at the first failure."""

    checks: list[PrerequisiteCheck] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(c.passed for c in self.checks)

    @property
    def failure(self) -> PrerequisiteCheck | None:
        return next((c for c in self.checks if not c.passed), None)

    def raise_for_failure(self) -> None:
        """Raise ConfigurationError (phase prerequisites) on the first failed check."""
        failed = self.failure
        if failed is not None:
            raise ConfigurationError(failed.detail, phase=PHASE_PREREQUISITES)


class PrerequisiteChecker:
    """Detect kubectl and host cluster readiness for a deploy."""

    def __init__(self, kubectl: Kubectl):
        self.kubectl = kubectl

    def check(self, storage_class: str | None = None) -> PrerequisiteReport:
        """Run the checks in order.

        Args:
            storage_class: Storage class from the instance config; when unset
                the cluster must provide at least one storage class.

        Returns:
            PrerequisiteReport. Checks after the first failure are not run.
        """
        report = PrerequisiteReport()

        def add(name: str, passed: bool, detail: str) -> bool:
            report.checks.append(PrerequisiteCheck(name, passed, detail))
            return passed

        if not add(
            "kubectl",
            shutil.which(self.kubectl.binary) is not None,
            "kubectl is not installed or not in PATH",
        ):
            return report

        if not add(
            "cluster",
            self.kubectl.cluster_info(),
            "Cannot connect to Kubernetes cluster. Check your kubeconfig.",
        ):
            return report

        if not add(
            "permissions",
            self.kubectl.can_i("create", "namespaces"),
            "Insufficient permissions: cannot create namespaces",
        ):
            return report

        if not storage_class:
            try:
                classes = self.kubectl.list_items("storageclass")
            except KubectlError:
                classes = []
            add(
                "storage-class",
                bool(classes),
                "No storage class found. Please specify --storage-class"
                " or create a default storage class.",
            )
        return report
