"""Instance configuration model.

A single immutable InstanceConfig is threaded through image resolution,
manifest synthesis and deployment. Validation is explicit (``validate()``)
so pure components such as the image resolver stay total.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any

from ..errors import ConfigurationError

# Defaults
DEFAULT_K3S_VERSION = "v1.32.9+k3s1"
DEFAULT_DOCKER_VERSION = "27-dind"
DEFAULT_K3D_VERSION = "v5.8.3"
DEFAULT_K3D_TOOLS_VERSION = "5.8.3"
DEFAULT_STORAGE_SIZE = "10Gi"
DEFAULT_CPU_LIMIT = "2"
DEFAULT_MEMORY_LIMIT = "4Gi"
DEFAULT_CPU_REQUEST = "1"
DEFAULT_MEMORY_REQUEST = "2Gi"
DEFAULT_NODE_PORT = 30443
DEFAULT_INGRESS_CLASS = "nginx"

NODE_PORT_MIN = 30000
NODE_PORT_MAX = 32767

# DNS-1123 label, leaves room for the "k3s-" namespace prefix
_NAME_RE = re.compile(r"^[a-z0-9]([-a-z0-9]{0,57}[a-z0-9])?$")

_TRUE_STRINGS = {"true", "yes", "on", "1"}
_FALSE_STRINGS = {"false", "no", "off", "0", ""}


def parse_bool(key: str, value: Any) -> bool:
    """Read a YAML or CLI flag value; quoted "false" stays False."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise ConfigurationError(f"{key} must be true or false (got {value!r})")


class AccessMethod(Enum):
    """External exposure strategy for the inner API."""

    NODEPORT = "nodeport"
    LOADBALANCER = "loadbalancer"
    INGRESS = "ingress"


@dataclass(frozen=True)
class AccessSpec:
    """Access method plus its method-specific field."""

    method: AccessMethod = AccessMethod.NODEPORT
    node_port: int | None = DEFAULT_NODE_PORT
    hostname: str | None = None


@dataclass(frozen=True)
class PrivateRegistry:
    """Private (mirror) registry descriptor."""

    host: str
    path: str = ""
    secret: str | None = None
    insecure: bool = False

    @property
    def prefix(self) -> str:
        """Registry host plus optional path, without trailing slash."""
        path = self.path.strip("/")
        return f"{self.host}/{path}" if path else self.host


@dataclass(frozen=True)
class ImageOverrides:
    """Explicit per-image overrides. Any unset slot falls through."""

    dind: str | None = None
    k3d: str | None = None
    k3s: str | None = None
    k3d_tools: str | None = None

    def any(self) -> bool:
        """True if at least one slot is overridden."""
        return any((self.dind, self.k3d, self.k3s, self.k3d_tools))


@dataclass(frozen=True)
class ResolvedImages:
    """Final image references for the four image slots."""

    dind: str
    k3d: str
    k3s: str
    k3d_tools: str


@dataclass(frozen=True)
class InstanceConfig:
    """Caller-supplied description of one instance."""

    name: str
    namespace: str | None = None
    k3s_version: str = DEFAULT_K3S_VERSION
    docker_version: str = DEFAULT_DOCKER_VERSION
    k3d_version: str = DEFAULT_K3D_VERSION
    k3d_tools_version: str = DEFAULT_K3D_TOOLS_VERSION
    storage_size: str = DEFAULT_STORAGE_SIZE
    storage_class: str | None = None
    cpu_limit: str = DEFAULT_CPU_LIMIT
    memory_limit: str = DEFAULT_MEMORY_LIMIT
    cpu_request: str = DEFAULT_CPU_REQUEST
    memory_request: str = DEFAULT_MEMORY_REQUEST
    access_method: AccessMethod = AccessMethod.NODEPORT
    node_port: int = DEFAULT_NODE_PORT
    ingress_hostname: str | None = None
    ingress_class: str = DEFAULT_INGRESS_CLASS
    overrides: ImageOverrides = field(default_factory=ImageOverrides)
    registry: PrivateRegistry | None = None

    @property
    def target_namespace(self) -> str:
        """Namespace the instance lives in (defaults to k3s-<name>)."""
        return self.namespace or f"k3s-{self.name}"

    @property
    def private_registry(self) -> bool:
        """The single discriminant for private-registry mode."""
        return self.registry is not None

    @property
    def registry_credentials(self) -> bool:
        """True when private-registry mode also has a pull secret."""
        return self.registry is not None and bool(self.registry.secret)

    @property
    def access(self) -> AccessSpec:
        """Access method with only its relevant field populated."""
        if self.access_method == AccessMethod.NODEPORT:
            return AccessSpec(AccessMethod.NODEPORT, node_port=self.node_port)
        if self.access_method == AccessMethod.INGRESS:
            return AccessSpec(AccessMethod.INGRESS, node_port=None, hostname=self.ingress_hostname)
        return AccessSpec(AccessMethod.LOADBALANCER, node_port=None)

    def validate(self) -> InstanceConfig:
        """Check invariants.

        Returns:
            self, for chaining.

        Raises:
            ConfigurationError: if the configuration is invalid or contradictory.
        """
        if not self.name:
            raise ConfigurationError("Instance name is required. Use --name or --config")
        if not _NAME_RE.match(self.name):
            raise ConfigurationError(
                f"Invalid instance name '{self.name}': use lowercase letters, digits and '-'"
            )

        if self.access_method == AccessMethod.NODEPORT:
            if not NODE_PORT_MIN <= self.node_port <= NODE_PORT_MAX:
                raise ConfigurationError(
                    f"NodePort must be between {NODE_PORT_MIN} and {NODE_PORT_MAX}"
                    f" (got {self.node_port})"
                )
        elif self.access_method == AccessMethod.INGRESS:
            if not self.ingress_hostname:
                raise ConfigurationError(
                    "Ingress hostname is required when using ingress access method"
                )

        if self.registry is not None:
            if not self.registry.host:
                raise ConfigurationError("Private registry host must not be empty")
            if self.overrides.any():
                raise ConfigurationError(
                    "Image overrides cannot be combined with a private registry;"
                    " use one or the other"
                )
        return self

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InstanceConfig:
        """Build a config from a flat mapping (YAML file or CLI options).

        Keys follow the CLI option names with underscores, e.g.
        ``access_method``, ``private_registry``, ``registry_path``,
        ``registry_secret``, ``registry_insecure``, ``dind_image``.
        Unknown keys are a ConfigurationError.

        Raises:
            ConfigurationError: on unknown keys or contradictory registry flags.
        """
        data = {k.replace("-", "_"): v for k, v in data.items() if v is not None}
        if "registry_insecure" in data:
            data["registry_insecure"] = parse_bool("registry_insecure", data["registry_insecure"])

        override_keys = {"dind_image", "k3d_image", "k3s_image", "k3d_tools_image"}
        registry_keys = {"private_registry", "registry_path", "registry_secret", "registry_insecure"}
        plain_keys = {f.name for f in fields(cls)} - {"overrides", "registry"}

        unknown = set(data) - override_keys - registry_keys - plain_keys
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        kwargs: dict[str, Any] = {k: v for k, v in data.items() if k in plain_keys}
        if not kwargs.get("name"):
            raise ConfigurationError("Instance name is required. Use --name or --config")

        if "access_method" in kwargs:
            try:
                kwargs["access_method"] = AccessMethod(str(kwargs["access_method"]).lower())
            except ValueError:
                raise ConfigurationError(
                    f"Invalid access method: {kwargs['access_method']}."
                    " Must be nodeport, loadbalancer, or ingress"
                ) from None
        if "node_port" in kwargs:
            try:
                kwargs["node_port"] = int(kwargs["node_port"])
            except (TypeError, ValueError):
                raise ConfigurationError(
                    f"NodePort must be a number (got {kwargs['node_port']!r})"
                ) from None
        for key in ("name", "k3s_version", "k3d_version", "k3d_tools_version", "docker_version"):
            if key in kwargs:
                kwargs[key] = str(kwargs[key])

        kwargs["overrides"] = ImageOverrides(
            dind=data.get("dind_image"),
            k3d=data.get("k3d_image"),
            k3s=data.get("k3s_image"),
            k3d_tools=data.get("k3d_tools_image"),
        )

        host = data.get("private_registry")
        if host:
            kwargs["registry"] = PrivateRegistry(
                host=str(host),
                path=str(data.get("registry_path") or ""),
                secret=data.get("registry_secret") or None,
                insecure=data.get("registry_insecure", False),
            )
        else:
            if data.get("registry_secret"):
                raise ConfigurationError(
                    "Registry secret specified but no private registry URL provided."
                    " Use --private-registry <url>"
                )
            if data.get("registry_insecure"):
                raise ConfigurationError(
                    "Registry insecure flag set but no private registry URL provided."
                    " Use --private-registry <url>"
                )
            if data.get("registry_path"):
                raise ConfigurationError(
                    "Registry path specified but no private registry URL provided."
                    " Use --private-registry <url>"
                )

        return cls(**kwargs)
