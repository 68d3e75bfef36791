"""Credential extraction and endpoint rewriting.

The inner cluster writes a kubeconfig whose server points at its own
container address. After copying it out of the workload, the server is
rewritten to the address the chosen access method exposes, then the result
is persisted to ~/.k3s-nested/kubeconfigs/k3s-<name>.yaml.
"""

from __future__ import annotations

import os
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..errors import (
    ConnectivityWarning,
    EndpointUnavailableWarning,
    ExtractionCause,
    ExtractionError,
    KubectlError,
)
from ..shared.logging import get_logger
from ..shared.paths import KUBECONFIGS_DIR, get_kubeconfig_file
from .kubectl import Kubectl
from .manifests import CLUSTER_CONTAINER, LOADBALANCER_SERVICE, workload_selector
from .models import AccessMethod, AccessSpec
from .startup import API_PORT, CREDENTIAL_PATH

log = get_logger(__name__)

LOOPBACK_HOST = "localhost"
DEFAULT_LB_TIMEOUT = 120.0
DEFAULT_LB_INTERVAL = 2.0


def rewrite_server(document: dict[str, Any], server: str) -> dict[str, Any]:
    """Set the server of every cluster entry in a kubeconfig document."""
    for entry in document.get("clusters") or []:
        cluster = entry.get("cluster")
        if isinstance(cluster, dict):
            cluster["server"] = server
    return document


def current_server(document: dict[str, Any]) -> str | None:
    """Server of the first cluster entry."""
    for entry in document.get("clusters") or []:
        cluster = entry.get("cluster") or {}
        if cluster.get("server"):
            return cluster["server"]
    return None


def endpoint_for(access: AccessSpec, lb_address: str | None = None) -> str | None:
    """External API endpoint for an access method.

    Args:
        access: Access method and its field.
        lb_address: Assigned load balancer IP or hostname.

    Returns:
        The endpoint URL, or None when it cannot be determined.
    """
    if access.method == AccessMethod.NODEPORT:
        return f"https://{LOOPBACK_HOST}:{access.node_port}"
    if access.method == AccessMethod.INGRESS:
        return f"https://{access.hostname}" if access.hostname else None
    if lb_address:
        return f"https://{lb_address}:{API_PORT}"
    return None


def load_balancer_address(service: dict[str, Any]) -> str | None:
    """Assigned ingress IP (or hostname) of a LoadBalancer service."""
    ingress = service.get("status", {}).get("loadBalancer", {}).get("ingress") or []
    if not ingress:
        return None
    address = ingress[0].get("ip") or ingress[0].get("hostname")
    if not address or address == "null":
        return None
    return address


@dataclass
class Credential:
    """Extracted inner cluster kubeconfig."""

    instance: str
    document: dict[str, Any]
    original_server: str | None = None
    path: Path | None = None
    reachable: bool | None = None
    warnings: list[UserWarning] = field(default_factory=list)

    @property
    def server(self) -> str | None:
        return current_server(self.document)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.document, default_flow_style=False, sort_keys=False)


class CredentialStore:
    """Local per-instance kubeconfig files."""

    def __init__(self, directory: Path | None = None):
        """Initialize store.

        Args:
            directory: Kubeconfig directory (default: ~/.k3s-nested/kubeconfigs).
        """
        self.directory = Path(directory) if directory else KUBECONFIGS_DIR

    def path_for(self, instance: str) -> Path:
        return get_kubeconfig_file(instance, self.directory)

    def exists(self, instance: str) -> bool:
        return self.path_for(instance).is_file()

    def write(self, instance: str, content: str) -> Path:
        """Replace the kubeconfig of an instance atomically (mode 0600)."""
        self.directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        path = self.path_for(instance)
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
            os.chmod(tmp, 0o600)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        return path

    def remove(self, instance: str) -> bool:
        """Delete the kubeconfig of an instance. Returns False if there was none."""
        path = self.path_for(instance)
        if not path.exists():
            return False
        path.unlink()
        return True

    def instances(self) -> list[str]:
        """Instance names with a stored kubeconfig."""
        if not self.directory.is_dir():
            return []
        return sorted(
            p.stem[len("k3s-") :] for p in self.directory.glob("k3s-*.yaml") if p.is_file()
        )


class CredentialExtractor:
    """Copy, rewrite, persist and smoke-test an instance kubeconfig."""

    def __init__(
        self,
        kubectl: Kubectl,
        store: CredentialStore | None = None,
        lb_timeout_seconds: float = DEFAULT_LB_TIMEOUT,
        lb_interval_seconds: float = DEFAULT_LB_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.kubectl = kubectl
        self.store = store or CredentialStore()
        self.lb_timeout_seconds = lb_timeout_seconds
        self.lb_interval_seconds = lb_interval_seconds
        self.clock = clock
        self.sleep = sleep

    def extract(self, namespace: str, instance: str, access: AccessSpec | None) -> Credential:
        """Extract the kubeconfig of a running instance.

        Args:
            namespace: Instance namespace.
            instance: Instance name.
            access: Access method to rewrite for; None keeps the original endpoint.

        Returns:
            The persisted Credential. Endpoint and connectivity problems are
            recorded in ``warnings``.

        Raises:
            ExtractionError: workload missing, file empty or missing, or copy failure.
        """
        document = self._read_document(namespace, instance)
        credential = Credential(
            instance=instance,
            document=document,
            original_server=current_server(document),
        )

        endpoint = None
        if access is not None:
            lb_address = None
            if access.method == AccessMethod.LOADBALANCER:
                lb_address = self.wait_for_load_balancer(namespace)
            endpoint = endpoint_for(access, lb_address)

        if endpoint:
            rewrite_server(document, endpoint)
            log.info("endpoint_rewritten", instance=instance, server=endpoint)
        else:
            message = (
                "Could not determine the external endpoint; kubeconfig keeps"
                f" {credential.original_server}. Update it manually or run refresh later."
            )
            log.warning("endpoint_unavailable", instance=instance, server=credential.original_server)
            credential.warnings.append(EndpointUnavailableWarning(message))

        credential.path = self.store.write(instance, credential.to_yaml())
        log.info("kubeconfig_saved", instance=instance, path=str(credential.path))

        credential.reachable = self.kubectl.cluster_info(kubeconfig=credential.path)
        if not credential.reachable:
            log.warning("inner_cluster_unreachable", instance=instance)
            credential.warnings.append(
                ConnectivityWarning(
                    "Could not verify connection to the inner cluster."
                    " It may take a moment to be fully ready."
                )
            )
        return credential

    def _read_document(self, namespace: str, instance: str) -> dict[str, Any]:
        try:
            pods = self.kubectl.list_items(
                "pods", namespace=namespace, selector=workload_selector(instance)
            )
        except KubectlError as e:
            raise ExtractionError(
                f"Could not look up the workload pod: {e}",
                cause=ExtractionCause.WORKLOAD_NOT_FOUND,
            ) from e
        if not pods:
            raise ExtractionError(
                f"No workload pod found for instance '{instance}' in namespace '{namespace}'",
                cause=ExtractionCause.WORKLOAD_NOT_FOUND,
            )
        pod = pods[0]["metadata"]["name"]

        try:
            result = self.kubectl.exec(namespace, pod, CLUSTER_CONTAINER, ["cat", CREDENTIAL_PATH])
        except KubectlError as e:
            if "No such file" in e.stderr:
                raise ExtractionError(
                    f"Kubeconfig not yet written at {CREDENTIAL_PATH} in pod {pod}",
                    cause=ExtractionCause.FILE_EMPTY,
                ) from e
            raise ExtractionError(
                f"Failed to copy kubeconfig from pod {pod}: {e}",
                cause=ExtractionCause.COPY_FAILED,
            ) from e

        if not result.stdout.strip():
            raise ExtractionError(
                "Failed to extract kubeconfig from pod (file is empty or missing)",
                cause=ExtractionCause.FILE_EMPTY,
            )
        try:
            document = yaml.safe_load(result.stdout)
        except yaml.YAMLError as e:
            raise ExtractionError(
                f"Extracted kubeconfig is not valid YAML: {e}",
                cause=ExtractionCause.COPY_FAILED,
            ) from e
        if not isinstance(document, dict):
            raise ExtractionError(
                "Extracted kubeconfig is not a mapping",
                cause=ExtractionCause.COPY_FAILED,
            )
        return document

    def wait_for_load_balancer(self, namespace: str) -> str | None:
        """Poll until the load balancer service has an external address.

        Returns:
            The address, or None if none was assigned before the deadline.
        """
        start = self.clock()
        deadline = start + self.lb_timeout_seconds
        while True:
            try:
                service = self.kubectl.get_optional("svc", LOADBALANCER_SERVICE, namespace)
            except KubectlError as e:
                log.debug("load_balancer_poll_failed", namespace=namespace, error=str(e))
                service = None
            address = load_balancer_address(service) if service else None
            if address:
                log.info("load_balancer_address", namespace=namespace, address=address)
                return address

            now = self.clock()
            if now >= deadline:
                return None
            self.sleep(min(self.lb_interval_seconds, deadline - now))
