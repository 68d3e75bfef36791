"""Readiness polling for deployed instances.

The workload's own readiness probe only passes once the inner cluster has a
Ready node, so "pod Running and Ready" is the one signal polled here. It
subsumes the engine, cluster tool and inner API sub-states.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import KubectlError, ReadinessTimeoutError
from ..shared.logging import get_logger
from .kubectl import Kubectl
from .manifests import CLUSTER_CONTAINER, ENGINE_CONTAINER, workload_selector

log = get_logger(__name__)

DEFAULT_WAIT_TIMEOUT = 300.0
DEFAULT_POLL_INTERVAL = 5.0
DIAGNOSTIC_LOG_TAIL = 50


class DeployPhase(Enum):
    """Deployment progress of one instance."""

    SUBMITTED = "submitted"
    CONTAINER_RUNNING = "container_running"
    ENGINE_READY = "engine_ready"
    CLUSTER_TOOL_READY = "cluster_tool_ready"
    INNER_API_REACHABLE = "inner_api_reachable"
    CREDENTIAL_EXTRACTED = "credential_extracted"


@dataclass
class ContainerObservation:
    """Observed state of one container."""

    name: str
    ready: bool = False
    restarts: int = 0
    waiting_reason: str | None = None
    waiting_message: str | None = None
    image: str | None = None


@dataclass
class PodObservation:
    """Observed state of the instance workload pod."""

    name: str | None = None
    phase: str = "Unknown"
    ready: bool = False
    containers: list[ContainerObservation] = field(default_factory=list)

    @property
    def is_ready(self) -> bool:
        return self.phase == "Running" and self.ready

    @property
    def deploy_phase(self) -> DeployPhase:
        if self.is_ready:
            return DeployPhase.INNER_API_REACHABLE
        if self.phase == "Running":
            return DeployPhase.CONTAINER_RUNNING
        return DeployPhase.SUBMITTED

    @classmethod
    def from_pod(cls, pod: dict[str, Any]) -> PodObservation:
        """Build an observation from a pod object."""
        status = pod.get("status", {})
        ready = any(
            c.get("type") == "Ready" and c.get("status") == "True"
            for c in status.get("conditions", [])
        )
        containers = []
        for cs in status.get("containerStatuses", []):
            waiting = cs.get("state", {}).get("waiting") or {}
            containers.append(
                ContainerObservation(
                    name=cs.get("name", ""),
                    ready=bool(cs.get("ready")),
                    restarts=int(cs.get("restartCount", 0)),
                    waiting_reason=waiting.get("reason"),
                    waiting_message=waiting.get("message"),
                    image=cs.get("image"),
                )
            )
        return cls(
            name=pod.get("metadata", {}).get("name"),
            phase=status.get("phase", "Unknown"),
            ready=ready,
            containers=containers,
        )


def observe_workload(kubectl: Kubectl, namespace: str, instance: str) -> PodObservation | None:
    """Observe the first workload pod of an instance, or None if there is none."""
    pods = kubectl.list_items("pods", namespace=namespace, selector=workload_selector(instance))
    if not pods:
        return None
    return PodObservation.from_pod(pods[0])


def capture_diagnostics(
    kubectl: Kubectl, namespace: str, instance: str, tail: int = DIAGNOSTIC_LOG_TAIL
) -> str:
    """Collect pod table, describe output and log tails of both containers.

    Each section is best-effort; a failing kubectl call is recorded in place
    of its output.
    """
    selector = workload_selector(instance)
    sections: list[tuple[str, Callable[[], str]]] = [
        ("pods", lambda: kubectl.get_table("pods", namespace=namespace, selector=selector)),
        ("describe", lambda: kubectl.describe("pod", namespace, selector=selector)),
    ]
    for container in (ENGINE_CONTAINER, CLUSTER_CONTAINER):
        sections.append(
            (
                f"logs {container}",
                lambda c=container: kubectl.logs(namespace, selector, c, tail=tail),
            )
        )

    parts = []
    for title, fetch in sections:
        try:
            body = fetch()
        except KubectlError as e:
            body = f"(unavailable: {e})"
        parts.append(f"=== {title} ===\n{body.rstrip()}")
    return "\n\n".join(parts) + "\n"


@dataclass
class ReadinessResult:
    """Outcome of a successful wait."""

    phase: DeployPhase
    polls: int
    elapsed_seconds: float
    observation: PodObservation | None = None


class ReadinessPoller:
    """Poll the workload until it reports ready or the deadline passes."""

    def __init__(
        self,
        kubectl: Kubectl,
        timeout_seconds: float = DEFAULT_WAIT_TIMEOUT,
        interval_seconds: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize readiness poller.

        Args:
            kubectl: Host cluster interface.
            timeout_seconds: Overall deadline.
            interval_seconds: Seconds between polls.
            clock: Monotonic clock, injectable for tests.
            sleep: Sleep function, injectable for tests.
        """
        self.kubectl = kubectl
        self.timeout_seconds = timeout_seconds
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.sleep = sleep

    def wait(
        self,
        namespace: str,
        instance: str,
        on_attempt: Callable[[int, PodObservation | None], None] | None = None,
    ) -> ReadinessResult:
        """Block until the workload is Running and Ready.

        Args:
            namespace: Instance namespace.
            instance: Instance name.
            on_attempt: Optional callback called with (poll, observation)
                for progress reporting.

        Returns:
            ReadinessResult on success.

        Raises:
            ReadinessTimeoutError: the deadline passed; carries diagnostics.
                Resources are left in place.
        """
        start = self.clock()
        deadline = start + self.timeout_seconds
        polls = 0
        observation: PodObservation | None = None

        while True:
            polls += 1
            try:
                observation = observe_workload(self.kubectl, namespace, instance)
            except KubectlError as e:
                log.debug("readiness_poll_failed", namespace=namespace, error=str(e))
                observation = None

            if on_attempt:
                on_attempt(polls, observation)

            if observation is not None and observation.is_ready:
                elapsed = self.clock() - start
                log.info("workload_ready", namespace=namespace, polls=polls, elapsed=elapsed)
                return ReadinessResult(
                    phase=DeployPhase.INNER_API_REACHABLE,
                    polls=polls,
                    elapsed_seconds=elapsed,
                    observation=observation,
                )

            log.debug(
                "workload_not_ready",
                namespace=namespace,
                phase=observation.phase if observation else None,
                ready=observation.ready if observation else None,
            )

            now = self.clock()
            if now >= deadline:
                break
            self.sleep(min(self.interval_seconds, deadline - now))

        elapsed = self.clock() - start
        log.warning("readiness_timeout", namespace=namespace, polls=polls, elapsed=elapsed)
        raise ReadinessTimeoutError(
            f"Timeout waiting for pod to be ready after {elapsed:.0f}s",
            elapsed_seconds=elapsed,
            polls=polls,
            diagnostics=capture_diagnostics(self.kubectl, namespace, instance),
        )
