"""Provisioning package for nested k3s instances.

This package turns an instance configuration into a running inner cluster:
1. Resolves container images (public, private registry or overrides)
2. Plans registry mirroring for air-gapped hosts
3. Synthesizes host cluster manifests with the in-pod startup sequence
4. Applies them and waits for the workload to become ready
5. Extracts the inner kubeconfig and rewrites its endpoint
"""

from .credentials import Credential, CredentialExtractor, CredentialStore, endpoint_for
from .deploy import DeploymentEngine, DeployPlan, DeployResult
from .diagnose import CheckStatus, Diagnoser, DiagnosticCheck, DiagnosticReport
from .images import ImageResolver, mirrored_reference
from .kubectl import Kubectl
from .manifests import ManifestSynthesizer, ResourceSet
from .mirror import ComponentVersions, MirrorPlan, MirrorPlanner, image_catalog
from .models import (
    AccessMethod,
    AccessSpec,
    ImageOverrides,
    InstanceConfig,
    PrivateRegistry,
    ResolvedImages,
)
from .prerequisites import PrerequisiteChecker, PrerequisiteReport
from .readiness import DeployPhase, PodObservation, ReadinessPoller, ReadinessResult
from .registry import InstanceRecord, InstanceRegistry, format_age

__all__ = [
    # Configuration
    "AccessMethod",
    "AccessSpec",
    "ImageOverrides",
    "InstanceConfig",
    "PrivateRegistry",
    "ResolvedImages",
    # Images and mirroring
    "ImageResolver",
    "mirrored_reference",
    "ComponentVersions",
    "MirrorPlan",
    "MirrorPlanner",
    "image_catalog",
    # Manifests
    "ManifestSynthesizer",
    "ResourceSet",
    # Host cluster
    "Kubectl",
    "PrerequisiteChecker",
    "PrerequisiteReport",
    # Deployment
    "DeployPhase",
    "DeployPlan",
    "DeployResult",
    "DeploymentEngine",
    "PodObservation",
    "ReadinessPoller",
    "ReadinessResult",
    # Credentials
    "Credential",
    "CredentialExtractor",
    "CredentialStore",
    "endpoint_for",
    # Lifecycle
    "InstanceRecord",
    "InstanceRegistry",
    "format_age",
    "CheckStatus",
    "Diagnoser",
    "DiagnosticCheck",
    "DiagnosticReport",
]
