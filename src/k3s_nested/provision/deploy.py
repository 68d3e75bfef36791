"""Deployment orchestration.

Runs one deploy end to end: validate, resolve images, synthesize manifests,
check prerequisites, apply, wait for readiness, extract credentials. Failures
raise a ProvisionError naming the phase; nothing is rolled back.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from ..errors import ApplyError, KubectlError
from ..shared.logging import get_logger
from .credentials import Credential, CredentialExtractor
from .images import ImageResolver
from .kubectl import Kubectl
from .manifests import ManifestSynthesizer, ResourceSet
from .mirror import MirrorPlan, MirrorPlanner
from .models import InstanceConfig, ResolvedImages
from .prerequisites import PrerequisiteChecker
from .readiness import DeployPhase, PodObservation, ReadinessPoller, ReadinessResult

log = get_logger(__name__)

ProgressCallback = Callable[[DeployPhase, str], None]


@dataclass
class DeployPlan:
    """Everything computed before the host cluster is touched."""

    config: InstanceConfig
    images: ResolvedImages
    resources: ResourceSet
    mirror_plan: MirrorPlan | None = None


@dataclass
class DeployResult:
    """Outcome of a deploy."""

    plan: DeployPlan
    phase: DeployPhase | None = None
    dry_run: bool = False
    readiness: ReadinessResult | None = None
    credential: Credential | None = None
    warnings: list[UserWarning] = field(default_factory=list)

    @property
    def namespace(self) -> str:
        return self.plan.config.target_namespace


class DeploymentEngine:
    """Apply an instance and drive it to a usable kubeconfig."""

    def __init__(
        self,
        kubectl: Kubectl,
        poller: ReadinessPoller | None = None,
        extractor: CredentialExtractor | None = None,
        resolver: ImageResolver | None = None,
        planner: MirrorPlanner | None = None,
        synthesizer: ManifestSynthesizer | None = None,
        prerequisites: PrerequisiteChecker | None = None,
    ):
        """Initialize engine.

        Args:
            kubectl: Host cluster interface.
            poller: Readiness poller (default: built on kubectl).
            extractor: Credential extractor (default: built on kubectl).
            resolver: Image resolver.
            planner: Mirror planner.
            synthesizer: Manifest synthesizer.
            prerequisites: Prerequisite checker (default: built on kubectl).
        """
        self.kubectl = kubectl
        self.poller = poller or ReadinessPoller(kubectl)
        self.extractor = extractor or CredentialExtractor(kubectl)
        self.resolver = resolver or ImageResolver()
        self.planner = planner or MirrorPlanner()
        self.synthesizer = synthesizer or ManifestSynthesizer(self.planner)
        self.prerequisites = prerequisites or PrerequisiteChecker(kubectl)

    def plan(self, config: InstanceConfig) -> DeployPlan:
        """Validate and build the resource set without touching the host cluster.

        Raises:
            ConfigurationError: if the configuration is invalid.
        """
        config.validate()
        images = self.resolver.resolve(config)
        mirror_plan = self.planner.plan_for(config)
        resources = self.synthesizer.synthesize(config, images, mirror_plan)
        log.debug("deploy_planned", instance=config.name, kinds=resources.kinds())
        return DeployPlan(config, images, resources, mirror_plan)

    def deploy(
        self,
        config: InstanceConfig,
        dry_run: bool = False,
        check_prerequisites: bool = True,
        on_progress: ProgressCallback | None = None,
    ) -> DeployResult:
        """Deploy an instance.

        Args:
            config: Instance configuration.
            dry_run: Only plan; return the synthesized resources.
            check_prerequisites: Run host cluster checks before applying.
            on_progress: Optional callback called with (phase, message).

        Returns:
            DeployResult with the persisted credential.

        Raises:
            ConfigurationError: invalid config or failed prerequisites.
            ApplyError: the host cluster rejected the resources.
            ReadinessTimeoutError: the workload did not become ready in time.
            ExtractionError: the kubeconfig could not be copied out.
        """

        def progress(phase: DeployPhase, message: str) -> None:
            if on_progress:
                on_progress(phase, message)

        plan = self.plan(config)
        result = DeployResult(plan=plan, dry_run=dry_run)
        if dry_run:
            return result

        if check_prerequisites:
            self.prerequisites.check(config.storage_class).raise_for_failure()

        namespace = config.target_namespace
        log.info("applying_manifests", instance=config.name, namespace=namespace)
        try:
            self.kubectl.apply(plan.resources.to_yaml())
        except KubectlError as e:
            raise ApplyError(f"Failed to apply manifests: {e}") from e
        result.phase = DeployPhase.SUBMITTED
        progress(DeployPhase.SUBMITTED, f"Resources applied to namespace '{namespace}'")

        def on_attempt(poll: int, observation: PodObservation | None) -> None:
            if observation is None:
                return
            phase = observation.deploy_phase
            if phase == DeployPhase.CONTAINER_RUNNING and result.phase == DeployPhase.SUBMITTED:
                result.phase = phase
                progress(phase, "Containers running, waiting for inner cluster")

        result.readiness = self.poller.wait(namespace, config.name, on_attempt=on_attempt)
        result.phase = result.readiness.phase
        progress(result.phase, "Inner cluster API reachable")

        result.credential = self.extractor.extract(namespace, config.name, config.access)
        result.warnings.extend(result.credential.warnings)
        result.phase = DeployPhase.CREDENTIAL_EXTRACTED
        progress(result.phase, f"Kubeconfig saved to: {result.credential.path}")
        return result
