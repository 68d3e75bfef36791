"""Kubernetes manifest synthesis for nested k3s instances.

This module builds the ordered resource set for one instance: namespace,
storage claim, optional registry mirror config, the two-container workload,
and the services/ingress that expose the inner API.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .mirror import MirrorPlan, MirrorPlanner
from .models import AccessMethod, InstanceConfig, ResolvedImages
from .startup import (
    API_PORT,
    CREDENTIAL_PATH,
    ENGINE_HOST,
    INTERNAL_SERVICE,
    MIRROR_CONFIG_MOUNT,
    OUTPUT_DIR,
    SECRET_DIR,
    cluster_steps,
    engine_steps,
    render_script,
)

# Labels
MANAGED_LABEL = "app"
MANAGED_VALUE = "k3s-nested"
INSTANCE_LABEL = "instance"
WORKLOAD_VALUE = "k3s"

# Resource names
PVC_NAME = "k3s-data"
REGISTRIES_CONFIGMAP = "k3s-registries"
REGISTRIES_KEY = "registries.yaml"
DEPLOYMENT_NAME = "k3s"
NODEPORT_SERVICE = "k3s-nodeport"
LOADBALANCER_SERVICE = "k3s-loadbalancer"
INGRESS_NAME = "k3s-ingress"

# Container names
ENGINE_CONTAINER = "dind"
CLUSTER_CONTAINER = "k3d"

POD_SECURITY_LEVEL = "privileged"

# Passes only when a node STATUS is Ready (or Ready,SchedulingDisabled), never NotReady
READINESS_COMMAND = (
    f"kubectl --kubeconfig={CREDENTIAL_PATH} get nodes --no-headers 2>/dev/null"
    " | awk '$2 ~ /^Ready(,|$)/ {ready = 1} END {exit !ready}'"
)


def managed_selector() -> str:
    """Label selector matching every managed instance namespace."""
    return f"{MANAGED_LABEL}={MANAGED_VALUE}"


def instance_selector(name: str) -> str:
    """Label selector matching the namespace of one instance."""
    return f"{managed_selector()},{INSTANCE_LABEL}={name}"


def workload_selector(name: str) -> str:
    """Label selector matching the workload pods of one instance."""
    return f"{MANAGED_LABEL}={WORKLOAD_VALUE},{INSTANCE_LABEL}={name}"


@dataclass(frozen=True)
class ResourceSet:
    """Ordered resource descriptions for one deployment attempt."""

    namespace: str
    resources: tuple[dict[str, Any], ...]

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return iter(self.resources)

    def __len__(self) -> int:
        return len(self.resources)

    def kinds(self) -> list[str]:
        """Resource kinds in apply order."""
        return [r["kind"] for r in self.resources]

    def find(self, kind: str, name: str | None = None) -> dict[str, Any] | None:
        """First resource of a kind (and name, if given)."""
        for resource in self.resources:
            if resource["kind"] != kind:
                continue
            if name is None or resource["metadata"]["name"] == name:
                return resource
        return None

    def to_yaml(self) -> str:
        """Multi-document YAML."""
        return yaml.dump_all(list(self.resources), default_flow_style=False, sort_keys=False)

    def write(self, path: Path) -> Path:
        """Write manifests to file (multi-document YAML)."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump_all(list(self.resources), f, default_flow_style=False, sort_keys=False)
        return path


class ManifestSynthesizer:
    """Generate Kubernetes manifests for an instance."""

    def __init__(self, planner: MirrorPlanner | None = None):
        """Initialize synthesizer.

        Args:
            planner: Mirror planner used when no plan is passed explicitly.
        """
        self.planner = planner or MirrorPlanner()

    def synthesize(
        self,
        config: InstanceConfig,
        images: ResolvedImages,
        mirror_plan: MirrorPlan | None = None,
    ) -> ResourceSet:
        """Build the resource set for an instance.

        Args:
            config: Instance configuration. Validated here.
            images: Resolved image references.
            mirror_plan: Mirror plan for private-registry mode; derived from
                the config when omitted.

        Returns:
            ResourceSet in apply order.

        Raises:
            ConfigurationError: if the configuration is invalid.
        """
        config.validate()
        if config.private_registry and mirror_plan is None:
            mirror_plan = self.planner.plan_for(config)

        resources: list[dict[str, Any]] = [
            self._build_namespace(config),
            self._build_pvc(config),
        ]
        if config.private_registry:
            resources.append(self._build_registries_configmap(config, mirror_plan))
        resources.append(self._build_deployment(config, images))
        resources.append(self._build_service(config, INTERNAL_SERVICE, "ClusterIP"))

        if config.access_method == AccessMethod.NODEPORT:
            resources.append(
                self._build_service(config, NODEPORT_SERVICE, "NodePort", config.node_port)
            )
        elif config.access_method == AccessMethod.LOADBALANCER:
            resources.append(self._build_service(config, LOADBALANCER_SERVICE, "LoadBalancer"))
        else:
            resources.append(self._build_ingress(config))

        return ResourceSet(namespace=config.target_namespace, resources=tuple(resources))

    def _labels(self, config: InstanceConfig) -> dict[str, str]:
        return {MANAGED_LABEL: WORKLOAD_VALUE, INSTANCE_LABEL: config.name}

    def _metadata(self, config: InstanceConfig, name: str) -> dict[str, Any]:
        return {
            "name": name,
            "namespace": config.target_namespace,
            "labels": self._labels(config),
        }

    def _build_namespace(self, config: InstanceConfig) -> dict[str, Any]:
        """Build namespace manifest."""
        return {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {
                "name": config.target_namespace,
                "labels": {
                    MANAGED_LABEL: MANAGED_VALUE,
                    INSTANCE_LABEL: config.name,
                    # Docker-in-Docker needs privileged pods
                    "pod-security.kubernetes.io/enforce": POD_SECURITY_LEVEL,
                    "pod-security.kubernetes.io/audit": POD_SECURITY_LEVEL,
                    "pod-security.kubernetes.io/warn": POD_SECURITY_LEVEL,
                },
            },
        }

    def _build_pvc(self, config: InstanceConfig) -> dict[str, Any]:
        """Build persistent volume claim."""
        spec: dict[str, Any] = {
            "accessModes": ["ReadWriteOnce"],
            "resources": {"requests": {"storage": config.storage_size}},
        }
        if config.storage_class:
            spec["storageClassName"] = config.storage_class
        return {
            "apiVersion": "v1",
            "kind": "PersistentVolumeClaim",
            "metadata": self._metadata(config, PVC_NAME),
            "spec": spec,
        }

    def _build_registries_configmap(
        self, config: InstanceConfig, plan: MirrorPlan | None
    ) -> dict[str, Any]:
        """Build the ConfigMap carrying registries.yaml."""
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": self._metadata(config, REGISTRIES_CONFIGMAP),
            "data": {REGISTRIES_KEY: plan.registries_yaml() if plan else ""},
        }

    def _build_engine_container(
        self, config: InstanceConfig, images: ResolvedImages
    ) -> dict[str, Any]:
        """Unit A: privileged Docker daemon."""
        mounts = [
            {"name": "docker-storage", "mountPath": "/var/lib/docker"},
            {"name": "docker-sock", "mountPath": "/var/run"},
        ]
        if config.registry_credentials:
            mounts.append({"name": "registry-secret", "mountPath": SECRET_DIR, "readOnly": True})

        return {
            "name": ENGINE_CONTAINER,
            "image": images.dind,
            "command": ["/bin/sh", "-c"],
            "args": [render_script(engine_steps(config))],
            "env": [{"name": "DOCKER_TLS_CERTDIR", "value": ""}],
            "securityContext": {"privileged": True},
            "resources": {
                "limits": {"cpu": "1", "memory": "2Gi"},
                "requests": {"cpu": "500m", "memory": "1Gi"},
            },
            "volumeMounts": mounts,
        }

    def _build_cluster_container(
        self, config: InstanceConfig, images: ResolvedImages
    ) -> dict[str, Any]:
        """Unit B: creates the inner cluster through the shared daemon."""
        env = [
            {"name": "DOCKER_HOST", "value": ENGINE_HOST},
            # Helper containers k3d starts inside the engine
            {"name": "K3D_IMAGE_LOADBALANCER", "value": images.k3d_tools},
            {"name": "K3D_IMAGE_TOOLS", "value": images.k3d_tools},
            {"name": "K3D_IMAGE_REGISTRY", "value": images.k3d_tools},
        ]

        mounts: list[dict[str, Any]] = [
            {"name": "docker-sock", "mountPath": "/var/run"},
            {"name": "k3s-config", "mountPath": OUTPUT_DIR},
        ]
        if config.private_registry:
            mounts.append(
                {
                    "name": "registries-config",
                    "mountPath": MIRROR_CONFIG_MOUNT,
                    "subPath": REGISTRIES_KEY,
                    "readOnly": True,
                }
            )
        if config.registry_credentials:
            mounts.append({"name": "registry-secret", "mountPath": SECRET_DIR, "readOnly": True})

        return {
            "name": CLUSTER_CONTAINER,
            # The engine image ships the docker CLI; k3d itself is extracted at startup
            "image": images.dind,
            "command": ["/bin/sh", "-c"],
            "args": [render_script(cluster_steps(config, images))],
            "env": env,
            "ports": [{"containerPort": API_PORT, "name": "api", "protocol": "TCP"}],
            "resources": {
                "limits": {"cpu": config.cpu_limit, "memory": config.memory_limit},
                "requests": {"cpu": config.cpu_request, "memory": config.memory_request},
            },
            "volumeMounts": mounts,
            "readinessProbe": {
                "exec": {"command": ["sh", "-c", READINESS_COMMAND]},
                "initialDelaySeconds": 90,
                "periodSeconds": 10,
                "timeoutSeconds": 5,
                "failureThreshold": 3,
            },
        }

    def _build_volumes(self, config: InstanceConfig) -> list[dict[str, Any]]:
        volumes: list[dict[str, Any]] = [
            {"name": "docker-storage", "persistentVolumeClaim": {"claimName": PVC_NAME}},
            {"name": "docker-sock", "emptyDir": {}},
            {"name": "k3s-config", "emptyDir": {}},
        ]
        if config.private_registry:
            volumes.append({"name": "registries-config", "configMap": {"name": REGISTRIES_CONFIGMAP}})
        if config.registry_credentials:
            volumes.append(
                {
                    "name": "registry-secret",
                    "secret": {
                        "secretName": config.registry.secret,
                        "items": [{"key": ".dockerconfigjson", "path": "config.json"}],
                    },
                }
            )
        return volumes

    def _build_deployment(self, config: InstanceConfig, images: ResolvedImages) -> dict[str, Any]:
        """Build the two-container k3s deployment."""
        labels = self._labels(config)
        pod_spec: dict[str, Any] = {"shareProcessNamespace": True}
        if config.registry_credentials:
            pod_spec["imagePullSecrets"] = [{"name": config.registry.secret}]
        pod_spec["containers"] = [
            self._build_engine_container(config, images),
            self._build_cluster_container(config, images),
        ]
        pod_spec["volumes"] = self._build_volumes(config)

        return {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": self._metadata(config, DEPLOYMENT_NAME),
            "spec": {
                "strategy": {"type": "Recreate"},
                "replicas": 1,
                "selector": {"matchLabels": dict(labels)},
                "template": {
                    "metadata": {"labels": dict(labels)},
                    "spec": pod_spec,
                },
            },
        }

    def _build_service(
        self,
        config: InstanceConfig,
        name: str,
        service_type: str,
        node_port: int | None = None,
    ) -> dict[str, Any]:
        """Build a service exposing the inner API port."""
        port: dict[str, Any] = {
            "name": "api",
            "port": API_PORT,
            "targetPort": API_PORT,
            "protocol": "TCP",
        }
        if node_port is not None:
            port["nodePort"] = node_port
        return {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": self._metadata(config, name),
            "spec": {
                "type": service_type,
                "selector": self._labels(config),
                "ports": [port],
            },
        }

    def _build_ingress(self, config: InstanceConfig) -> dict[str, Any]:
        """Build TLS pass-through ingress to the internal service."""
        metadata = self._metadata(config, INGRESS_NAME)
        metadata["annotations"] = {
            "nginx.ingress.kubernetes.io/ssl-passthrough": "true",
            "nginx.ingress.kubernetes.io/backend-protocol": "HTTPS",
        }
        return {
            "apiVersion": "networking.k8s.io/v1",
            "kind": "Ingress",
            "metadata": metadata,
            "spec": {
                "ingressClassName": config.ingress_class,
                "rules": [
                    {
                        "host": config.ingress_hostname,
                        "http": {
                            "paths": [
                                {
                                    "path": "/",
                                    "pathType": "Prefix",
                                    "backend": {
                                        "service": {
                                            "name": INTERNAL_SERVICE,
                                            "port": {"number": API_PORT},
                                        }
                                    },
                                }
                            ]
                        },
                    }
                ],
            },
        }
