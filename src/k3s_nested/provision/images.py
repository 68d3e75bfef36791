"""Image reference resolution.

Maps the declared versions and registry settings of an instance to the four
image references the workload runs with. Pure and total: version strings are
treated as opaque apart from two tag normalizations.
"""

from __future__ import annotations

from .models import InstanceConfig, ResolvedImages

# Public registries the inner cluster pulls from by default
PUBLIC_REGISTRIES = ("docker.io", "ghcr.io", "registry.k8s.io")

# Repository used by Docker Hub for single-component names
DEFAULT_LIBRARY = "library"

DIND_REPOSITORY = "docker"
K3D_REPOSITORY = "ghcr.io/k3d-io/k3d"
K3D_TOOLS_REPOSITORY = "ghcr.io/k3d-io/k3d-tools"
K3D_PROXY_REPOSITORY = "ghcr.io/k3d-io/k3d-proxy"
K3S_REPOSITORY = "rancher/k3s"


def strip_version_prefix(version: str) -> str:
    """Drop a leading ``v`` for tag schemes without it (5.8.3 not v5.8.3)."""
    return version[1:] if version.startswith("v") else version


def k3s_tag(version: str) -> str:
    """Convert build metadata to tag syntax (v1.32.9-k3s1 not v1.32.9+k3s1)."""
    return version.replace("+", "-")


def split_reference(reference: str) -> tuple[str, str | None]:
    """Split an image reference into repository and tag.

    A colon only counts as a tag separator after the last slash, so
    registry ports (``myregistry:5000/app``) are preserved.
    """
    slash = reference.rfind("/")
    colon = reference.rfind(":")
    if colon > slash:
        return reference[:colon], reference[colon + 1 :]
    return reference, None


def repository_path(repository: str) -> str:
    """Path of a repository with its registry domain removed.

    - explicit domain (``ghcr.io/k3d-io/k3d``): everything after the domain
    - implicit Docker Hub with organization (``rancher/k3s``): unchanged
    - bare name (``docker``): under ``library/``
    """
    first, sep, rest = repository.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        return rest
    if sep:
        return repository
    return f"{DEFAULT_LIBRARY}/{repository}"


def registry_domain(repository: str) -> str:
    """Registry a repository is pulled from; Docker Hub when none is named."""
    first, sep, _ = repository.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        return first
    return "docker.io"


def is_public_reference(reference: str) -> bool:
    """True when the image would be pulled from a public registry."""
    return registry_domain(split_reference(reference)[0]) in PUBLIC_REGISTRIES


def mirrored_reference(reference: str, registry_prefix: str) -> str:
    """Re-home a public reference under ``registry[/path]`` keeping its path."""
    repository, tag = split_reference(reference)
    target = f"{registry_prefix}/{repository_path(repository)}"
    return f"{target}:{tag}" if tag else target


def public_images(config: InstanceConfig) -> ResolvedImages:
    """Canonical public references for an instance, tags normalized."""
    return ResolvedImages(
        dind=f"{DIND_REPOSITORY}:{config.docker_version}",
        k3d=f"{K3D_REPOSITORY}:{strip_version_prefix(config.k3d_version)}",
        k3s=f"{K3S_REPOSITORY}:{k3s_tag(config.k3s_version)}",
        k3d_tools=f"{K3D_TOOLS_REPOSITORY}:{strip_version_prefix(config.k3d_tools_version)}",
    )


class ImageResolver:
    """Resolve the four image slots of an instance.

    Precedence per slot: explicit override, then private-registry
    derivation, then the public default.
    """

    def resolve(self, config: InstanceConfig) -> ResolvedImages:
        """Resolve final image references.

        Args:
            config: Instance configuration (not validated here).

        Returns:
            ResolvedImages for dind, k3d, k3s and k3d-tools.
        """
        public = public_images(config)
        overrides = config.overrides

        def pick(override: str | None, default: str) -> str:
            if override:
                return override
            if config.registry is not None:
                return mirrored_reference(default, config.registry.prefix)
            return default

        return ResolvedImages(
            dind=pick(overrides.dind, public.dind),
            k3d=pick(overrides.k3d, public.k3d),
            k3s=pick(overrides.k3s, public.k3s),
            k3d_tools=pick(overrides.k3d_tools, public.k3d_tools),
        )
