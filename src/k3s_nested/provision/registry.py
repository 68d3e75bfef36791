"""Discovery and management of deployed instances.

Instances are found by namespace label only; nothing about them is cached
between calls apart from the local kubeconfig files.
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..errors import CredentialMissingError, InstanceNotFoundError, KubectlError
from ..shared.logging import get_logger
from .credentials import Credential, CredentialExtractor, CredentialStore, load_balancer_address
from .kubectl import Kubectl
from .manifests import (
    CLUSTER_CONTAINER,
    INGRESS_NAME,
    INSTANCE_LABEL,
    LOADBALANCER_SERVICE,
    NODEPORT_SERVICE,
    PVC_NAME,
    instance_selector,
    managed_selector,
    workload_selector,
)
from .models import AccessMethod, AccessSpec

log = get_logger(__name__)

UNKNOWN = "Unknown"
NOT_AVAILABLE = "N/A"
DELETE_MAX_WORKERS = 8


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp as written by the API server."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def format_age(created: datetime, now: datetime) -> str:
    """Bucket an age as days, hours or minutes (largest nonzero unit wins)."""
    seconds = max(0, int((now - created).total_seconds()))
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60
    if days > 0:
        return f"{days}d"
    if hours > 0:
        return f"{hours}h"
    return f"{minutes}m"


@dataclass
class Exposure:
    """Discovered external exposure of an instance."""

    access: AccessSpec | None = None
    summary: str = UNKNOWN


@dataclass
class InstanceRecord:
    """One discovered instance."""

    name: str
    namespace: str
    phase: str = UNKNOWN
    age: str = UNKNOWN
    access: str = UNKNOWN
    created: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "namespace": self.namespace,
            "status": self.phase,
            "age": self.age,
            "access": self.access,
            "created": self.created.isoformat() if self.created else None,
        }


@dataclass
class StatusSection:
    """A titled block of status output."""

    title: str
    body: str


@dataclass
class InstanceStatus:
    """Aggregated host and inner cluster state of one instance."""

    name: str
    namespace: str
    sections: list[StatusSection] = field(default_factory=list)
    inner_reachable: bool = False


@dataclass
class DeleteResult:
    """Outcome of deleting one instance."""

    name: str
    namespace: str
    deleted: bool = False
    credential_removed: bool = False
    error: str | None = None
    credential_error: str | None = None


@dataclass
class DeleteAllResult:
    """Aggregate outcome of deleting every instance."""

    results: list[DeleteResult] = field(default_factory=list)

    @property
    def failures(self) -> list[DeleteResult]:
        return [r for r in self.results if not r.deleted]

    @property
    def succeeded(self) -> list[DeleteResult]:
        return [r for r in self.results if r.deleted]

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class AccessReport:
    """Connectivity check of one instance through its local kubeconfig."""

    name: str
    kubeconfig: str
    cluster_info: str
    nodes: str


@dataclass
class ResourceUsage:
    """CPU, memory and storage of one instance."""

    name: str
    namespace: str
    cpu: str = NOT_AVAILABLE
    memory: str = NOT_AVAILABLE
    storage: str = NOT_AVAILABLE


class InstanceRegistry:
    """Operate on existing instances."""

    def __init__(
        self,
        kubectl: Kubectl,
        store: CredentialStore | None = None,
        extractor: CredentialExtractor | None = None,
        now: Callable[[], datetime] | None = None,
        max_workers: int = DELETE_MAX_WORKERS,
    ):
        """Initialize registry.

        Args:
            kubectl: Host cluster interface.
            store: Local kubeconfig store.
            extractor: Credential extractor used by refresh.
            now: Current time (timezone-aware), injectable for tests.
            max_workers: Concurrency of delete_all.
        """
        self.kubectl = kubectl
        self.store = store or CredentialStore()
        self.extractor = extractor or CredentialExtractor(kubectl, self.store)
        self.now = now or (lambda: datetime.now(timezone.utc))
        self.max_workers = max_workers

    # Discovery

    def _namespaces(self) -> list[dict[str, Any]]:
        return self.kubectl.list_items("namespaces", selector=managed_selector())

    def find_namespace(self, name: str) -> str:
        """Namespace of an instance.

        Raises:
            InstanceNotFoundError: no managed namespace carries the instance label.
        """
        items = self.kubectl.list_items("namespaces", selector=instance_selector(name))
        if not items:
            raise InstanceNotFoundError(f"Instance '{name}' not found")
        return items[0]["metadata"]["name"]

    def exposure(self, namespace: str) -> Exposure:
        """Inspect NodePort, then LoadBalancer, then Ingress; first found wins."""
        svc = self.kubectl.get_optional("svc", NODEPORT_SERVICE, namespace)
        if svc is not None:
            ports = svc.get("spec", {}).get("ports") or [{}]
            node_port = ports[0].get("nodePort")
            return Exposure(
                AccessSpec(AccessMethod.NODEPORT, node_port=node_port),
                f"NodePort:{node_port}",
            )

        svc = self.kubectl.get_optional("svc", LOADBALANCER_SERVICE, namespace)
        if svc is not None:
            address = load_balancer_address(svc)
            return Exposure(
                AccessSpec(AccessMethod.LOADBALANCER, node_port=None),
                f"LoadBalancer:{address or 'pending'}",
            )

        ingress = self.kubectl.get_optional("ingress", INGRESS_NAME, namespace)
        if ingress is not None:
            rules = ingress.get("spec", {}).get("rules") or [{}]
            host = rules[0].get("host")
            return Exposure(
                AccessSpec(AccessMethod.INGRESS, node_port=None, hostname=host),
                f"Ingress:{host}",
            )
        return Exposure()

    def _record(self, namespace: dict[str, Any]) -> InstanceRecord:
        metadata = namespace.get("metadata", {})
        ns = metadata.get("name", "")
        name = (metadata.get("labels") or {}).get(INSTANCE_LABEL, "unknown")
        record = InstanceRecord(name=name, namespace=ns)

        created = metadata.get("creationTimestamp")
        if created:
            try:
                record.created = parse_timestamp(created)
                record.age = format_age(record.created, self.now())
            except ValueError:
                log.debug("bad_creation_timestamp", namespace=ns, value=created)

        try:
            pods = self.kubectl.list_items("pods", namespace=ns, selector=workload_selector(name))
            if pods:
                record.phase = pods[0].get("status", {}).get("phase", UNKNOWN)
        except KubectlError as e:
            log.warning("instance_status_unavailable", namespace=ns, error=str(e))

        try:
            record.access = self.exposure(ns).summary
        except KubectlError as e:
            log.warning("instance_exposure_unavailable", namespace=ns, error=str(e))
        return record

    def list(self) -> list[InstanceRecord]:
        """All instances. Unreadable fields are reported as Unknown."""
        return [self._record(ns) for ns in self._namespaces()]

    # Inspection

    def status(self, name: str) -> InstanceStatus:
        """Workload, exposure and storage state, plus the inner cluster when reachable."""
        namespace = self.find_namespace(name)
        status = InstanceStatus(name=name, namespace=namespace)

        def section(title: str, fetch: Callable[[], str]) -> None:
            try:
                body = fetch()
            except KubectlError as e:
                body = f"(unavailable: {e})"
            status.sections.append(StatusSection(title, body.rstrip()))

        section(
            "Pod Status",
            lambda: self.kubectl.get_table("pods", namespace=namespace, selector=workload_selector(name)),
        )
        section("Services", lambda: self.kubectl.get_table("svc", namespace=namespace))
        section("Storage", lambda: self.kubectl.get_table("pvc", namespace=namespace))
        try:
            ingress = self.kubectl.list_items("ingress", namespace=namespace)
        except KubectlError:
            ingress = []
        if ingress:
            section("Ingress", lambda: self.kubectl.get_table("ingress", namespace=namespace))

        # Inner cluster section is opportunistic
        path = self.store.path_for(name)
        if path.is_file() and self.kubectl.cluster_info(kubeconfig=path):
            try:
                nodes = self.kubectl.run(["get", "nodes", "-o", "wide"], kubeconfig=path).stdout
                namespaces = self.kubectl.run(["get", "namespaces"], kubeconfig=path).stdout
            except KubectlError as e:
                log.info("inner_cluster_status_unavailable", instance=name, error=str(e))
            else:
                status.inner_reachable = True
                status.sections.append(StatusSection("Inner K3s Cluster", nodes.rstrip()))
                status.sections.append(StatusSection("Namespaces", namespaces.rstrip()))
        return status

    def access(self, name: str) -> AccessReport:
        """Verify the local kubeconfig reaches the inner cluster.

        Raises:
            CredentialMissingError: the kubeconfig is missing or the cluster is unreachable.
        """
        path = self.store.path_for(name)
        if not path.is_file():
            raise CredentialMissingError(f"Kubeconfig not found: {path}")
        if not self.kubectl.cluster_info(kubeconfig=path):
            raise CredentialMissingError(f"Cannot connect to instance '{name}'")
        try:
            info = self.kubectl.run(["cluster-info"], kubeconfig=path).stdout
            nodes = self.kubectl.run(["get", "nodes", "-o", "wide"], kubeconfig=path).stdout
        except KubectlError as e:
            raise CredentialMissingError(f"Cannot connect to instance '{name}': {e}") from e
        return AccessReport(name=name, kubeconfig=str(path), cluster_info=info, nodes=nodes)

    def exec(self, name: str, args: list[str]) -> int:
        """Run kubectl against the inner cluster and return its exit code."""
        path = self.store.path_for(name)
        if not path.is_file():
            raise CredentialMissingError(f"Kubeconfig not found: {path}")
        return self.kubectl.passthrough(list(args), kubeconfig=path)

    def logs(
        self, name: str, container: str = CLUSTER_CONTAINER, tail: int = 100, follow: bool = True
    ) -> int:
        """Stream logs of one container of the instance workload."""
        namespace = self.find_namespace(name)
        return self.kubectl.stream_logs(
            namespace, workload_selector(name), container, tail=tail, follow=follow
        )

    def resources(self) -> list[ResourceUsage]:
        """CPU/memory (from metrics-server) and storage capacity per instance."""
        usage = []
        for ns in self._namespaces():
            metadata = ns.get("metadata", {})
            namespace = metadata.get("name", "")
            name = (metadata.get("labels") or {}).get(INSTANCE_LABEL, "unknown")
            row = ResourceUsage(name=name, namespace=namespace)

            try:
                lines = self.kubectl.top_pods(namespace, workload_selector(name)).strip().splitlines()
                if lines:
                    columns = lines[-1].split()
                    if len(columns) >= 3:
                        row.cpu, row.memory = columns[1], columns[2]
            except KubectlError as e:
                log.debug("metrics_unavailable", namespace=namespace, error=str(e))

            try:
                pvc = self.kubectl.get_optional("pvc", PVC_NAME, namespace)
                if pvc is not None:
                    row.storage = pvc.get("status", {}).get("capacity", {}).get("storage", NOT_AVAILABLE)
            except KubectlError as e:
                log.debug("storage_unavailable", namespace=namespace, error=str(e))
            usage.append(row)
        return usage

    # Mutation

    def refresh_credential(self, name: str) -> Credential:
        """Re-extract the kubeconfig of a running instance."""
        namespace = self.find_namespace(name)
        exposure = self.exposure(namespace)
        return self.extractor.extract(namespace, name, exposure.access)

    def _delete_namespace(self, name: str, namespace: str) -> DeleteResult:
        result = DeleteResult(name=name, namespace=namespace)
        try:
            self.kubectl.delete_namespace(namespace)
        except KubectlError as e:
            result.error = str(e)
            log.warning("instance_delete_failed", instance=name, namespace=namespace, error=str(e))
            return result
        result.deleted = True
        log.info("instance_deleted", instance=name, namespace=namespace)

        try:
            result.credential_removed = self.store.remove(name)
        except OSError as e:
            result.credential_error = str(e)
            log.warning("kubeconfig_remove_failed", instance=name, error=str(e))
        return result

    def delete(self, name: str) -> DeleteResult:
        """Delete the namespace of an instance and its local kubeconfig."""
        namespace = self.find_namespace(name)
        return self._delete_namespace(name, namespace)

    def delete_all(self) -> DeleteAllResult:
        """Delete every instance concurrently; one failure does not stop the others."""
        targets = []
        for ns in self._namespaces():
            metadata = ns.get("metadata", {})
            name = (metadata.get("labels") or {}).get(INSTANCE_LABEL, metadata.get("name", ""))
            targets.append((name, metadata.get("name", "")))

        aggregate = DeleteAllResult()
        if not targets:
            return aggregate

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(targets))) as executor:
            futures = {
                executor.submit(self._delete_namespace, name, namespace): (name, namespace)
                for name, namespace in targets
            }
            for future in as_completed(futures):
                aggregate.results.append(future.result())

        aggregate.results.sort(key=lambda r: r.name)
        return aggregate
