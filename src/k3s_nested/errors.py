"""Error taxonomy for k3s-nested.

Every fatal error carries the name of the phase it failed in so the caller
can resume from that phase (e.g. re-run only credential extraction) instead
of redeploying.
"""

from dataclasses import dataclass, field
from enum import Enum

# Exit code reported when the kubectl binary cannot be executed
KUBECTL_NOT_FOUND = 127

# Phase names reported to the user
PHASE_CONFIGURE = "configure"
PHASE_PREREQUISITES = "prerequisites"
PHASE_RESOLVE = "resolve"
PHASE_APPLY = "apply"
PHASE_READINESS = "readiness"
PHASE_EXTRACT = "extract"
PHASE_LOOKUP = "lookup"
PHASE_ACCESS = "access"

# Next command to run after a failure in a given phase
RESUME_HINTS = {
    PHASE_CONFIGURE: "Fix the instance configuration and re-run deploy.",
    PHASE_PREREQUISITES: "Fix host cluster access and re-run deploy.",
    PHASE_APPLY: "Inspect the namespace, then re-run deploy (apply is idempotent).",
    PHASE_READINESS: "Inspect with: k3s-nested diagnose {name}; then k3s-nested refresh {name}",
    PHASE_EXTRACT: "Re-run only extraction with: k3s-nested refresh {name}",
    PHASE_ACCESS: "Re-extract the kubeconfig with: k3s-nested refresh {name}",
}


@dataclass
class ProvisionError(Exception):
    """Base error class for provisioning errors."""

    message: str
    phase: str = "unknown"

    def __str__(self) -> str:
        return self.message

    def resume_hint(self, instance: str) -> str | None:
        """Suggest how to continue after this failure."""
        hint = RESUME_HINTS.get(self.phase)
        return hint.format(name=instance) if hint else None


@dataclass
class ConfigurationError(ProvisionError):
    """Invalid or contradictory instance configuration. No resources touched."""

    phase: str = PHASE_CONFIGURE


@dataclass
class ResolutionError(ProvisionError):
    """Image resolution failure.

    Resolution is currently pure and total; reserved for future validation.
    """

    phase: str = PHASE_RESOLVE


@dataclass
class ApplyError(ProvisionError):
    """Host cluster rejected the resource set. Partial resources are left in place."""

    phase: str = PHASE_APPLY


@dataclass
class ReadinessTimeoutError(ProvisionError):
    """Workload did not become ready before the deadline. Resources are left running."""

    phase: str = PHASE_READINESS
    elapsed_seconds: float = 0.0
    polls: int = 0
    diagnostics: str = ""


class ExtractionCause(Enum):
    """Why credential extraction failed."""

    WORKLOAD_NOT_FOUND = "workload_not_found"
    FILE_EMPTY = "file_empty"
    COPY_FAILED = "copy_failed"


@dataclass
class ExtractionError(ProvisionError):
    """Credential could not be copied out of the workload."""

    phase: str = PHASE_EXTRACT
    cause: ExtractionCause = ExtractionCause.COPY_FAILED


@dataclass
class InstanceNotFoundError(ProvisionError):
    """No managed namespace carries the requested instance label."""

    phase: str = PHASE_LOOKUP


@dataclass
class CredentialMissingError(ProvisionError):
    """Local kubeconfig is missing or the inner cluster is unreachable with it."""

    phase: str = PHASE_ACCESS


@dataclass
class KubectlError(Exception):
    """A kubectl invocation failed."""

    command: list[str] = field(default_factory=list)
    returncode: int = 1
    stderr: str = ""

    def __str__(self) -> str:
        detail = self.stderr.strip() or f"exit code {self.returncode}"
        args = self.command[1:]
        if args[:1] == ["--kubeconfig"]:
            args = args[2:]
        return f"kubectl {' '.join(args[:2])} failed: {detail}"

    @property
    def not_found(self) -> bool:
        """True when kubectl reported a missing object (not a missing kubectl)."""
        if self.returncode == KUBECTL_NOT_FOUND:
            return False
        return "NotFound" in self.stderr or "not found" in self.stderr


class EndpointUnavailableWarning(UserWarning):
    """External endpoint could not be determined; the original endpoint was kept."""


class ConnectivityWarning(UserWarning):
    """Persisted credential could not reach the inner cluster yet."""
