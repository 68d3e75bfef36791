"""Mirror planning for airgapped deployments.

Enumerates every image an instance needs (infrastructure plus the inner
cluster's own system components), maps each to its location in a private
registry, and produces the registry rewrite rules the inner cluster uses to
pull from that registry instead of the public ones.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import yaml

from ..shared.logging import get_logger
from .images import (
    DIND_REPOSITORY,
    K3D_PROXY_REPOSITORY,
    K3D_REPOSITORY,
    K3D_TOOLS_REPOSITORY,
    K3S_REPOSITORY,
    PUBLIC_REGISTRIES,
    k3s_tag,
    mirrored_reference,
    strip_version_prefix,
)
from .models import (
    DEFAULT_DOCKER_VERSION,
    DEFAULT_K3D_TOOLS_VERSION,
    DEFAULT_K3D_VERSION,
    DEFAULT_K3S_VERSION,
    InstanceConfig,
)

log = get_logger(__name__)

LOCAL_PATH_PROVISIONER = "rancher/local-path-provisioner:v0.0.30"

# System component images keyed by Kubernetes minor version
SYSTEM_COMPONENTS: dict[str, dict[str, str]] = {
    "1.32": {
        "coredns": "rancher/mirrored-coredns-coredns:1.12.0",
        "pause": "rancher/mirrored-pause:3.6",
        "metrics-server": "rancher/mirrored-metrics-server:v0.7.2",
    },
    "1.31": {
        "coredns": "rancher/mirrored-coredns-coredns:1.12.0",
        "pause": "rancher/mirrored-pause:3.6",
        "metrics-server": "rancher/mirrored-metrics-server:v0.7.2",
    },
    "1.30": {
        "coredns": "registry.k8s.io/coredns/coredns:v1.11.1",
        "pause": "registry.k8s.io/pause:3.9",
        "metrics-server": "registry.k8s.io/metrics-server/metrics-server:v0.7.0",
    },
    "1.29": {
        "coredns": "registry.k8s.io/coredns/coredns:v1.10.1",
        "pause": "registry.k8s.io/pause:3.9",
        "metrics-server": "registry.k8s.io/metrics-server/metrics-server:v0.6.4",
    },
}
NEWEST_BUCKET = "1.32"

_MINOR_RE = re.compile(r"^v?(\d+\.\d+)")


@dataclass(frozen=True)
class ComponentVersions:
    """Versions that select the image catalog."""

    k3s_version: str = DEFAULT_K3S_VERSION
    k3d_version: str = DEFAULT_K3D_VERSION
    k3d_tools_version: str = DEFAULT_K3D_TOOLS_VERSION
    docker_version: str = DEFAULT_DOCKER_VERSION


@dataclass(frozen=True)
class MirrorEntry:
    """One image to mirror."""

    source: str
    target: str


@dataclass(frozen=True)
class RewriteRule:
    """Redirect pulls for one upstream registry to the private registry."""

    upstream: str
    endpoint: str
    pattern: str = "(.*)"
    replacement: str = "$1"

    @property
    def is_identity(self) -> bool:
        return self.replacement == "$1"


@dataclass
class MirrorPlan:
    """Source to target image mapping plus rewrite rules."""

    target_registry: str
    path_prefix: str = ""
    insecure: bool = False
    entries: dict[str, MirrorEntry] = field(default_factory=dict)
    rules: list[RewriteRule] = field(default_factory=list)

    def mapping_lines(self) -> list[str]:
        """``source=target`` lines, sorted and de-duplicated."""
        return sorted({f"{e.source}={e.target}" for e in self.entries.values()})

    def source_lines(self) -> list[str]:
        """Source references only, sorted and de-duplicated."""
        return sorted({e.source for e in self.entries.values()})

    def registries_config(self) -> dict[str, Any]:
        """Inner cluster registry configuration (registries.yaml structure)."""
        mirrors: dict[str, Any] = {}
        for rule in self.rules:
            mirror: dict[str, Any] = {"endpoint": [rule.endpoint]}
            if not rule.is_identity:
                mirror["rewrite"] = {rule.pattern: rule.replacement}
            mirrors[rule.upstream] = mirror

        config: dict[str, Any] = {"mirrors": mirrors}
        if self.insecure:
            config["configs"] = {self.target_registry: {"tls": {"insecure_skip_verify": True}}}
        return config

    def registries_yaml(self) -> str:
        """registries.yaml document text."""
        return yaml.safe_dump(self.registries_config(), default_flow_style=False, sort_keys=False)


def kubernetes_minor(k3s_version: str) -> str | None:
    """Extract ``1.31`` from ``v1.31.5-k3s1``."""
    match = _MINOR_RE.match(k3s_version)
    return match.group(1) if match else None


def system_components(k3s_version: str) -> dict[str, str]:
    """System component images for an inner cluster version.

    Unknown versions fall back to the newest known bucket with a warning.
    """
    minor = kubernetes_minor(k3s_version)
    if minor not in SYSTEM_COMPONENTS:
        log.warning(
            "unknown_kubernetes_version",
            version=k3s_version,
            minor=minor,
            fallback=NEWEST_BUCKET,
        )
        minor = NEWEST_BUCKET
    return dict(SYSTEM_COMPONENTS[minor])


def image_catalog(versions: ComponentVersions) -> dict[str, str]:
    """Every public image an instance needs, keyed by component."""
    k3d_tag = strip_version_prefix(versions.k3d_version)
    tools_tag = strip_version_prefix(versions.k3d_tools_version)
    catalog = {
        "engine": f"{DIND_REPOSITORY}:{versions.docker_version}",
        "cluster-tool": f"{K3D_REPOSITORY}:{k3d_tag}",
        "inner-server": f"{K3S_REPOSITORY}:{k3s_tag(versions.k3s_version)}",
        "cluster-proxy": f"{K3D_PROXY_REPOSITORY}:{k3d_tag}",
        "cluster-tools": f"{K3D_TOOLS_REPOSITORY}:{tools_tag}",
    }
    catalog.update(system_components(versions.k3s_version))
    catalog["local-path-provisioner"] = LOCAL_PATH_PROVISIONER
    return catalog


class MirrorPlanner:
    """Build mirror plans."""

    def plan(
        self,
        versions: ComponentVersions,
        target_registry: str,
        path_prefix: str = "",
        insecure: bool = False,
    ) -> MirrorPlan:
        """Plan mirroring of all required images into a registry.

        Args:
            versions: Versions selecting the catalog.
            target_registry: Registry host (e.g. docker.local, registry:5000).
            path_prefix: Optional path inside the registry (e.g. team/sandbox).
            insecure: Skip TLS verification for the registry.

        Returns:
            MirrorPlan with entries, rewrite rules and TLS mode.
        """
        path_prefix = path_prefix.strip("/")
        prefix = f"{target_registry}/{path_prefix}" if path_prefix else target_registry

        entries = {
            component: MirrorEntry(source, mirrored_reference(source, prefix))
            for component, source in image_catalog(versions).items()
        }

        endpoint = f"https://{target_registry}"
        replacement = f"{path_prefix}/$1" if path_prefix else "$1"
        rules = [
            RewriteRule(upstream, endpoint, replacement=replacement)
            for upstream in PUBLIC_REGISTRIES
        ]
        if path_prefix:
            # Names qualified with the private host itself still need the prefix
            rules.append(RewriteRule(target_registry, endpoint, replacement=replacement))

        return MirrorPlan(
            target_registry=target_registry,
            path_prefix=path_prefix,
            insecure=insecure,
            entries=entries,
            rules=rules,
        )

    def plan_for(self, config: InstanceConfig) -> MirrorPlan | None:
        """Plan for an instance, or None when no private registry is configured."""
        if config.registry is None:
            return None
        return self.plan(
            ComponentVersions(
                k3s_version=config.k3s_version,
                k3d_version=config.k3d_version,
                k3d_tools_version=config.k3d_tools_version,
                docker_version=config.docker_version,
            ),
            config.registry.host,
            config.registry.path,
            insecure=config.registry.insecure,
        )
