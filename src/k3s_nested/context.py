"""Objects shared by CLI commands through the click context."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import click

from .config import CLIConfig, load_config
from .provision.credentials import CredentialExtractor, CredentialStore
from .provision.kubectl import Kubectl
from .provision.readiness import ReadinessPoller


@dataclass
class Services:
    """Host cluster clients built from CLI settings."""

    settings: CLIConfig
    kubectl: Kubectl
    store: CredentialStore

    @classmethod
    def from_settings(cls, settings: CLIConfig, kubeconfig: str | None = None) -> Services:
        return cls(
            settings=settings,
            kubectl=Kubectl(kubeconfig or settings.kubeconfig),
            store=CredentialStore(Path(settings.credentials_dir).expanduser()),
        )

    def poller(self, wait_timeout: int | None = None) -> ReadinessPoller:
        return ReadinessPoller(
            self.kubectl,
            timeout_seconds=wait_timeout or self.settings.wait_timeout,
            interval_seconds=self.settings.poll_interval,
        )

    def extractor(self) -> CredentialExtractor:
        return CredentialExtractor(
            self.kubectl,
            self.store,
            lb_timeout_seconds=self.settings.lb_timeout,
        )


def get_services(ctx: click.Context) -> Services:
    """Services for the current invocation, created on first use."""
    obj = ctx.ensure_object(dict)
    if "services" not in obj:
        settings = obj.get("settings") or load_config()
        obj["services"] = Services.from_settings(settings, obj.get("kubeconfig"))
    return obj["services"]
