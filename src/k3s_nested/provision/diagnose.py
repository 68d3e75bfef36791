"""Read-only health report for one instance.

Walks the layers from the outside in: host resources, the workload
containers, the Docker daemon and k3d inside unit B, and finally the inner
cluster, both from inside the workload and through the local kubeconfig.

Air-gap checks (public images left in the engine, the containerd mirror of
the inner node, recent pulls) run when the instance has a registry mirror
config or when they are requested explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import urlparse

import yaml

from ..errors import KubectlError
from .credentials import CredentialStore
from .images import is_public_reference, split_reference
from .kubectl import Kubectl
from .manifests import (
    CLUSTER_CONTAINER,
    PVC_NAME,
    REGISTRIES_CONFIGMAP,
    REGISTRIES_KEY,
    instance_selector,
    workload_selector,
)
from .readiness import PodObservation
from .registry import UNKNOWN, InstanceRegistry
from .startup import CREDENTIAL_PATH, MIRROR_CONFIG_PATH

IMAGE_PULL_REASONS = {"ImagePullBackOff", "ErrImagePull", "InvalidImageName"}
RECENT_EVENTS = 10
MAX_LISTED = 5

READY_NODE_STATUSES = {"Ready", "Ready,SchedulingDisabled"}
# Completed covers the one-shot helm-install jobs k3s runs in kube-system
HEALTHY_POD_STATUSES = {"Running", "Completed"}
CONTAINERD_HOSTS_PATH = "/var/lib/rancher/k3s/agent/etc/containerd/certs.d/docker.io/hosts.toml"


def _image_name(reference: str) -> str:
    """Last path component of an image repository (k3s for rancher/k3s:v1)."""
    return split_reference(reference)[0].rsplit("/", 1)[-1]


def _mirror_host(configmap: dict[str, Any] | None) -> str | None:
    """Host of the first docker.io mirror endpoint in the registries ConfigMap."""
    if not configmap:
        return None
    try:
        document = yaml.safe_load(configmap.get("data", {}).get(REGISTRIES_KEY) or "") or {}
    except yaml.YAMLError:
        return None
    mirror = (document.get("mirrors") or {}).get("docker.io") or {}
    endpoints = mirror.get("endpoint") or []
    if not endpoints:
        return None
    endpoint = endpoints[0]
    return urlparse(endpoint).netloc or endpoint


class CheckStatus(Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


@dataclass
class DiagnosticCheck:
    """Outcome of one check."""

    section: str
    name: str
    status: CheckStatus
    detail: str = ""


@dataclass
class DiagnosticReport:
    """All checks for one instance."""

    instance: str
    namespace: str | None = None
    checks: list[DiagnosticCheck] = field(default_factory=list)

    def add(self, section: str, name: str, status: CheckStatus, detail: str = "") -> None:
        self.checks.append(DiagnosticCheck(section, name, status, detail))

    def count(self, status: CheckStatus) -> int:
        return sum(1 for c in self.checks if c.status == status)

    @property
    def failed(self) -> bool:
        return self.count(CheckStatus.FAIL) > 0

    def sections(self) -> list[str]:
        seen: list[str] = []
        for check in self.checks:
            if check.section not in seen:
                seen.append(check.section)
        return seen


class Diagnoser:
    """Collect diagnostic checks for an instance."""

    def __init__(self, kubectl: Kubectl, store: CredentialStore | None = None):
        self.kubectl = kubectl
        self.store = store or CredentialStore()
        self.registry = InstanceRegistry(kubectl, self.store)

    def diagnose(self, name: str, airgap: bool = False) -> DiagnosticReport:
        """Run all checks. Never modifies the cluster.

        Args:
            name: Instance name.
            airgap: Run the air-gap checks even without a registry mirror config.
        """
        report = DiagnosticReport(instance=name)

        try:
            items = self.kubectl.list_items("namespaces", selector=instance_selector(name))
        except KubectlError as e:
            report.add("Host", "namespace", CheckStatus.FAIL, str(e))
            return report
        if not items:
            report.add("Host", "namespace", CheckStatus.FAIL, f"Instance '{name}' not found")
            return report
        namespace = items[0]["metadata"]["name"]
        report.namespace = namespace
        ns_phase = items[0].get("status", {}).get("phase", UNKNOWN)
        report.add(
            "Host",
            "namespace",
            CheckStatus.PASS if ns_phase == "Active" else CheckStatus.WARN,
            f"{namespace} ({ns_phase})",
        )

        pod = self._check_workload(report, namespace, name)
        self._check_storage(report, namespace)
        self._check_exposure(report, namespace)
        self._check_events(report, namespace)
        if pod is not None and pod.phase == "Running":
            self._check_inside_workload(report, namespace, pod.name, name, airgap)
        self._check_local_credential(report, name)
        return report

    def _check_workload(
        self, report: DiagnosticReport, namespace: str, name: str
    ) -> PodObservation | None:
        try:
            pods = self.kubectl.list_items("pods", namespace=namespace, selector=workload_selector(name))
        except KubectlError as e:
            report.add("Workload", "pod", CheckStatus.FAIL, str(e))
            return None
        if not pods:
            report.add("Workload", "pod", CheckStatus.FAIL, "No workload pod found")
            return None

        pod = PodObservation.from_pod(pods[0])
        if pod.phase == "Running":
            status = CheckStatus.PASS
        elif pod.phase == "Pending":
            status = CheckStatus.WARN
        else:
            status = CheckStatus.FAIL
        report.add("Workload", "pod", status, f"{pod.name} phase {pod.phase}")

        for container in pod.containers:
            detail = f"ready={container.ready} restarts={container.restarts}"
            if container.waiting_reason in IMAGE_PULL_REASONS:
                report.add(
                    "Workload",
                    f"container {container.name}",
                    CheckStatus.FAIL,
                    f"{container.waiting_reason}: cannot pull {container.image}",
                )
            elif container.waiting_reason:
                report.add(
                    "Workload",
                    f"container {container.name}",
                    CheckStatus.WARN,
                    f"{detail} waiting: {container.waiting_reason}",
                )
            elif container.ready:
                status = CheckStatus.WARN if container.restarts > 0 else CheckStatus.PASS
                report.add("Workload", f"container {container.name}", status, detail)
            else:
                report.add("Workload", f"container {container.name}", CheckStatus.WARN, detail)
        return pod

    def _check_storage(self, report: DiagnosticReport, namespace: str) -> None:
        try:
            pvc = self.kubectl.get_optional("pvc", PVC_NAME, namespace)
        except KubectlError as e:
            report.add("Host", "storage", CheckStatus.FAIL, str(e))
            return
        if pvc is None:
            report.add("Host", "storage", CheckStatus.FAIL, f"PVC {PVC_NAME} not found")
            return
        phase = pvc.get("status", {}).get("phase", UNKNOWN)
        size = pvc.get("spec", {}).get("resources", {}).get("requests", {}).get("storage", "")
        status = CheckStatus.PASS if phase == "Bound" else CheckStatus.WARN
        report.add("Host", "storage", status, f"{PVC_NAME} {phase} {size}".strip())

    def _check_exposure(self, report: DiagnosticReport, namespace: str) -> None:
        try:
            exposure = self.registry.exposure(namespace)
        except KubectlError as e:
            report.add("Host", "exposure", CheckStatus.FAIL, str(e))
            return
        if exposure.access is None:
            report.add("Host", "exposure", CheckStatus.FAIL, "No NodePort, LoadBalancer or Ingress")
        elif exposure.summary.endswith(":pending"):
            report.add("Host", "exposure", CheckStatus.WARN, exposure.summary)
        else:
            report.add("Host", "exposure", CheckStatus.PASS, exposure.summary)

    def _check_events(self, report: DiagnosticReport, namespace: str) -> None:
        try:
            events = [e for e in self.kubectl.events(namespace) if e.get("type") != "Normal"]
        except KubectlError as e:
            report.add("Host", "events", CheckStatus.WARN, str(e))
            return
        if not events:
            report.add("Host", "events", CheckStatus.PASS, "No warning events")
            return
        lines = [
            f"{e.get('reason', '')}: {e.get('message', '').strip()}"
            for e in events[-RECENT_EVENTS:]
        ]
        report.add("Host", "events", CheckStatus.WARN, "\n".join(lines))

    def _exec_ok(self, namespace: str, pod: str, command: list[str]) -> tuple[bool, str]:
        try:
            result = self.kubectl.exec(namespace, pod, CLUSTER_CONTAINER, command, check=False)
        except KubectlError as e:
            return False, str(e)
        output = (result.stdout or result.stderr or "").strip()
        return result.returncode == 0, output

    def _check_inside_workload(
        self, report: DiagnosticReport, namespace: str, pod: str, name: str, airgap: bool
    ) -> None:
        try:
            configmap = self.kubectl.get_optional("configmap", REGISTRIES_CONFIGMAP, namespace)
        except KubectlError:
            configmap = None
        airgap = airgap or configmap is not None

        ok, output = self._exec_ok(
            namespace, pod, ["docker", "info", "--format", "{{.ServerVersion}}"]
        )
        if ok:
            report.add("Engine", "docker daemon", CheckStatus.PASS, f"Server Version {output}")
            self._check_engine_images(report, namespace, pod, airgap)
        else:
            first_line = output.splitlines()[0] if output else "unreachable"
            report.add("Engine", "docker daemon", CheckStatus.FAIL, first_line)

        ok, output = self._exec_ok(namespace, pod, ["/usr/local/bin/k3d", "cluster", "list"])
        if ok and name in output:
            report.add("Cluster tool", "k3d cluster", CheckStatus.PASS, f"cluster '{name}' exists")
        else:
            report.add("Cluster tool", "k3d cluster", CheckStatus.FAIL, output or "not found")
        self._check_k3d_nodes(report, namespace, pod, name)

        kubeconfig_ok, _ = self._exec_ok(namespace, pod, ["test", "-s", CREDENTIAL_PATH])
        report.add(
            "Cluster tool",
            "kubeconfig",
            CheckStatus.PASS if kubeconfig_ok else CheckStatus.FAIL,
            CREDENTIAL_PATH if kubeconfig_ok else f"{CREDENTIAL_PATH} missing or empty",
        )

        if configmap is not None:
            ok, _ = self._exec_ok(namespace, pod, ["test", "-f", MIRROR_CONFIG_PATH])
            report.add(
                "Registry",
                "mirror config",
                CheckStatus.PASS if ok else CheckStatus.FAIL,
                MIRROR_CONFIG_PATH if ok else f"{MIRROR_CONFIG_PATH} was not copied",
            )
        elif airgap:
            report.add(
                "Registry",
                "mirror config",
                CheckStatus.FAIL,
                f"ConfigMap {REGISTRIES_CONFIGMAP} not found;"
                " the inner cluster pulls from public registries",
            )

        if not kubeconfig_ok:
            return
        self._check_inner_nodes(report, namespace, pod)
        self._check_system_pods(report, namespace, pod)
        if airgap:
            self._check_containerd_mirror(report, namespace, pod, name, configmap)
            self._check_image_pulls(report, namespace, pod)

    def _check_engine_images(
        self, report: DiagnosticReport, namespace: str, pod: str, airgap: bool
    ) -> None:
        ok, output = self._exec_ok(
            namespace, pod, ["docker", "images", "--format", "{{.Repository}}:{{.Tag}}"]
        )
        images = [line for line in output.splitlines() if line and "<none>" not in line]
        if not ok or not images:
            report.add("Engine", "images", CheckStatus.FAIL, "No images found in the engine")
            return

        k3s = [i for i in images if _image_name(i) == "k3s"]
        if k3s:
            report.add("Engine", "k3s image", CheckStatus.PASS, k3s[0])
        else:
            report.add("Engine", "k3s image", CheckStatus.FAIL, "k3s image not found in the engine")
        tools = [i for i in images if _image_name(i) == "k3d-tools"]
        if tools:
            report.add("Engine", "k3d-tools image", CheckStatus.PASS, tools[0])
        else:
            report.add("Engine", "k3d-tools image", CheckStatus.WARN, "k3d-tools image not found")

        if airgap:
            public = [i for i in images if is_public_reference(i)]
            if public:
                report.add(
                    "Engine",
                    "public images",
                    CheckStatus.WARN,
                    "\n".join(public[:MAX_LISTED]),
                )
            else:
                report.add(
                    "Engine",
                    "public images",
                    CheckStatus.PASS,
                    "All images from private registries",
                )

    def _check_k3d_nodes(
        self, report: DiagnosticReport, namespace: str, pod: str, name: str
    ) -> None:
        ok, output = self._exec_ok(namespace, pod, ["/usr/local/bin/k3d", "node", "list"])
        rows = [line for line in output.splitlines() if f"k3d-{name}-" in line]
        running = [row for row in rows if "running" in row.split()]
        if ok and rows and len(running) == len(rows):
            report.add(
                "Cluster tool", "k3d nodes", CheckStatus.PASS, f"{len(running)}/{len(rows)} running"
            )
            return
        detail = f"{len(running)}/{len(rows)} running"
        if rows:
            detail += "\n" + "\n".join(" ".join(row.split()) for row in rows)
        elif output and not ok:
            detail = output.splitlines()[0]
        report.add("Cluster tool", "k3d nodes", CheckStatus.FAIL, detail)

    def _inner_kubectl(
        self, namespace: str, pod: str, *args: str
    ) -> tuple[bool, list[list[str]]]:
        ok, output = self._exec_ok(
            namespace, pod, ["kubectl", f"--kubeconfig={CREDENTIAL_PATH}", *args, "--no-headers"]
        )
        if not ok:
            return False, []
        return True, [line.split() for line in output.splitlines() if line.strip()]

    def _check_inner_nodes(self, report: DiagnosticReport, namespace: str, pod: str) -> None:
        ok, rows = self._inner_kubectl(namespace, pod, "get", "nodes")
        if not ok or not rows:
            report.add("Inner cluster", "nodes", CheckStatus.FAIL, "Cannot get inner nodes")
            return
        ready = [row for row in rows if len(row) > 1 and row[1] in READY_NODE_STATUSES]
        detail = f"{len(ready)}/{len(rows)} Ready"
        if len(ready) == len(rows):
            report.add("Inner cluster", "nodes", CheckStatus.PASS, detail)
            return
        lines = [
            f"{row[0]}: {row[1] if len(row) > 1 else UNKNOWN}" for row in rows if row not in ready
        ]
        report.add("Inner cluster", "nodes", CheckStatus.FAIL, "\n".join([detail, *lines]))

    def _check_system_pods(self, report: DiagnosticReport, namespace: str, pod: str) -> None:
        ok, rows = self._inner_kubectl(namespace, pod, "get", "pods", "-n", "kube-system")
        if not ok or not rows:
            report.add(
                "Inner cluster", "system pods", CheckStatus.FAIL, "Cannot get kube-system pods"
            )
            return
        # NAME READY STATUS RESTARTS AGE
        status_of = {row[0]: row[2] if len(row) > 2 else UNKNOWN for row in rows}
        unhealthy = [f"{p}: {s}" for p, s in status_of.items() if s not in HEALTHY_POD_STATUSES]
        if unhealthy:
            report.add(
                "Inner cluster",
                "system pods",
                CheckStatus.WARN,
                "\n".join([f"{len(rows) - len(unhealthy)}/{len(rows)} healthy", *unhealthy]),
            )
        else:
            report.add(
                "Inner cluster", "system pods", CheckStatus.PASS, f"{len(rows)}/{len(rows)} healthy"
            )

        coredns = [s for p, s in status_of.items() if p.startswith("coredns")]
        if "Running" in coredns:
            report.add("Inner cluster", "coredns", CheckStatus.PASS, "Running")
        else:
            report.add(
                "Inner cluster",
                "coredns",
                CheckStatus.FAIL,
                f"Not running ({', '.join(coredns) or 'no pod'}); DNS will fail",
            )

    def _check_containerd_mirror(
        self,
        report: DiagnosticReport,
        namespace: str,
        pod: str,
        name: str,
        configmap: dict[str, Any] | None,
    ) -> None:
        host = _mirror_host(configmap)
        if host is None:
            report.add(
                "Inner cluster",
                "containerd mirror",
                CheckStatus.FAIL,
                "No docker.io mirror in the registries ConfigMap",
            )
            return
        ok, output = self._exec_ok(
            namespace, pod, ["docker", "exec", f"k3d-{name}-server-0", "cat", CONTAINERD_HOSTS_PATH]
        )
        if not ok or not output:
            report.add(
                "Inner cluster",
                "containerd mirror",
                CheckStatus.WARN,
                f"Could not read {CONTAINERD_HOSTS_PATH}",
            )
        elif host in output:
            report.add(
                "Inner cluster", "containerd mirror", CheckStatus.PASS, f"docker.io -> {host}"
            )
        else:
            report.add(
                "Inner cluster",
                "containerd mirror",
                CheckStatus.FAIL,
                f"containerd does not use {host} for docker.io",
            )

    def _check_image_pulls(self, report: DiagnosticReport, namespace: str, pod: str) -> None:
        ok, rows = self._inner_kubectl(
            namespace, pod, "get", "events", "-A", "--sort-by=.lastTimestamp"
        )
        pulls = [" ".join(row) for row in rows if any(word.lower() == "pulled" for word in row)]
        if not ok:
            report.add("Inner cluster", "image pulls", CheckStatus.WARN, "Cannot get inner events")
        elif not pulls:
            report.add(
                "Inner cluster", "image pulls", CheckStatus.WARN, "No recent image pull events"
            )
        else:
            report.add(
                "Inner cluster", "image pulls", CheckStatus.PASS, "\n".join(pulls[-MAX_LISTED:])
            )

    def _check_local_credential(self, report: DiagnosticReport, name: str) -> None:
        path = self.store.path_for(name)
        if not path.is_file():
            report.add(
                "Inner cluster",
                "local kubeconfig",
                CheckStatus.WARN,
                f"{path} missing. Run: k3s-nested refresh {name}",
            )
            return
        if self.kubectl.cluster_info(kubeconfig=path):
            report.add("Inner cluster", "local kubeconfig", CheckStatus.PASS, f"{path} connects")
        else:
            report.add(
                "Inner cluster",
                "local kubeconfig",
                CheckStatus.FAIL,
                f"Cannot connect with {path}",
            )
