"""Startup programs for the two workload containers.

The containers run shell, but the sequence is built here as an ordered list
of named steps so ordering and gating can be asserted without parsing
generated text. ``render_script`` turns the steps into the container args.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass

from .models import AccessMethod, InstanceConfig, ResolvedImages

# Step names
START_ENGINE = "start-engine"
WAIT_FOR_ENGINE = "wait-for-engine"
REGISTRY_CREDENTIALS = "registry-credentials"
PREPULL_IMAGES = "prepull-images"
EXTRACT_CLUSTER_TOOL = "extract-cluster-tool"
EXTRACT_CLIENT_TOOL = "extract-client-tool"
COPY_MIRROR_CONFIG = "copy-mirror-config"
CREATE_CLUSTER = "create-cluster"
EXPORT_CREDENTIALS = "export-credentials"
IDLE = "idle"

# Locations inside the pod
ENGINE_SOCKET = "unix:///var/run/docker.sock"
ENGINE_TCP = "tcp://0.0.0.0:2375"
ENGINE_HOST = "tcp://localhost:2375"
SECRET_DIR = "/tmp/docker-secret"
DOCKER_CONFIG_DIR = "/root/.docker"
OUTPUT_DIR = "/output"
CREDENTIAL_PATH = f"{OUTPUT_DIR}/kubeconfig.yaml"
MIRROR_CONFIG_MOUNT = "/etc/rancher/k3s/registries.yaml"
MIRROR_CONFIG_PATH = "/tmp/registries.yaml"
BIN_DIR = "/usr/local/bin"

API_PORT = 6443
INTERNAL_SERVICE = "k3s-service"

# Engine cold start dominates deploy latency; unit B waits much longer than unit A
ENGINE_WAIT_ATTEMPTS = 60
ENGINE_WAIT_INTERVAL = 2
DIND_WAIT_ATTEMPTS = 30
DIND_WAIT_INTERVAL = 1
CLUSTER_CREATE_TIMEOUT = "5m"


@dataclass(frozen=True)
class StartupStep:
    """A named group of shell commands."""

    name: str
    commands: tuple[str, ...]


def _wait_for_engine(attempts: int, interval: int, fatal: bool) -> StartupStep:
    commands = [
        'echo "Waiting for Docker daemon to be ready..."',
        f"for i in $(seq 1 {attempts}); do",
        "  if docker info >/dev/null 2>&1; then",
        '    echo "Docker daemon is ready"',
        "    break",
        "  fi",
        f'  echo "Waiting for Docker... ($i/{attempts})"',
        f"  sleep {interval}",
        "done",
    ]
    if fatal:
        commands += [
            "if ! docker info >/dev/null 2>&1; then",
            '  echo "ERROR: Docker failed to start"',
            "  exit 1",
            "fi",
        ]
    return StartupStep(WAIT_FOR_ENGINE, tuple(commands))


def _registry_credentials(registry: str) -> StartupStep:
    return StartupStep(
        REGISTRY_CREDENTIALS,
        (
            'echo "Setting up Docker registry credentials..."',
            f"if [ -f {SECRET_DIR}/config.json ]; then",
            f"  mkdir -p {DOCKER_CONFIG_DIR}",
            f"  cp {SECRET_DIR}/config.json {DOCKER_CONFIG_DIR}/config.json",
            f"  chmod 600 {DOCKER_CONFIG_DIR}/config.json",
            f'  echo "Docker credentials configured for {registry}"',
            "else",
            f'  echo "WARNING: Registry secret not found at {SECRET_DIR}/config.json"',
            "fi",
        ),
    )


def _extract_binary(name: str, image: str, binary: str) -> StartupStep:
    quoted = shlex.quote(image)
    return StartupStep(
        name,
        (
            f'echo "Extracting {binary} binary from {image}..."',
            f"CONTAINER_ID=$(docker create {quoted}) || exit 1",
            f'docker cp "$CONTAINER_ID:/bin/{binary}" {BIN_DIR}/{binary} || exit 1',
            'docker rm "$CONTAINER_ID" >/dev/null',
            f"chmod +x {BIN_DIR}/{binary}",
            f'echo "{binary} binary extracted successfully"',
        ),
    )


def tls_sans(config: InstanceConfig) -> list[str]:
    """Names the inner API certificate must be valid for."""
    sans = [
        config.name,
        INTERNAL_SERVICE,
        f"{INTERNAL_SERVICE}.{config.target_namespace}.svc.cluster.local",
        "127.0.0.1",
        "localhost",
    ]
    if config.access_method == AccessMethod.INGRESS and config.ingress_hostname:
        sans.append(config.ingress_hostname)
    return sans


def cluster_create_args(config: InstanceConfig, images: ResolvedImages) -> list[str]:
    """argv for creating the inner cluster."""
    args = [
        "k3d",
        "cluster",
        "create",
        config.name,
        "--api-port",
        f"0.0.0.0:{API_PORT}",
        "--servers",
        "1",
        "--agents",
        "0",
        "--no-lb",
        "--wait",
        "--timeout",
        CLUSTER_CREATE_TIMEOUT,
    ]
    for san in tls_sans(config):
        args += ["--k3s-arg", f"--tls-san={san}@server:0"]

    if config.registry is not None:
        args += ["--registry-config", MIRROR_CONFIG_PATH]
        args += ["--k3s-arg", f"--system-default-registry={config.registry.host}@server:0"]

    args += [
        "--k3s-arg",
        "--disable=traefik@server:0",
        "--k3s-arg",
        "--disable=servicelb@server:0",
        f"--image={images.k3s}",
    ]
    return args


def engine_steps(config: InstanceConfig) -> list[StartupStep]:
    """Startup steps of unit A (the container engine)."""
    dockerd = ["dockerd", f"--host={ENGINE_SOCKET}", f"--host={ENGINE_TCP}"]
    if config.registry is not None and config.registry.insecure:
        dockerd.append(f"--insecure-registry={config.registry.host}")

    steps = [
        StartupStep(START_ENGINE, (f"{shlex.join(dockerd)} &",)),
        _wait_for_engine(DIND_WAIT_ATTEMPTS, DIND_WAIT_INTERVAL, fatal=False),
    ]
    if config.registry_credentials:
        steps.append(_registry_credentials(config.registry.host))
    steps.append(StartupStep(IDLE, ("wait",)))
    return steps


def cluster_steps(config: InstanceConfig, images: ResolvedImages) -> list[StartupStep]:
    """Startup steps of unit B (the cluster tool).

    The mirror config copy is gated only on private-registry mode: the
    ``--registry-config`` flag that consumes it is passed whenever a private
    registry is configured, with or without credentials.
    """
    steps = [_wait_for_engine(ENGINE_WAIT_ATTEMPTS, ENGINE_WAIT_INTERVAL, fatal=True)]

    if config.registry_credentials:
        steps.append(_registry_credentials(config.registry.host))
        pulls = ['echo "Pre-pulling required images from private registry..."']
        for image in (images.k3s, images.k3d_tools):
            pulls += [
                f"if ! docker pull {shlex.quote(image)}; then",
                f'  echo "ERROR: Failed to pull {image}"',
                "  exit 1",
                "fi",
            ]
        pulls.append('echo "All images pre-pulled successfully"')
        steps.append(StartupStep(PREPULL_IMAGES, tuple(pulls)))

    steps.append(_extract_binary(EXTRACT_CLUSTER_TOOL, images.k3d, "k3d"))
    steps.append(_extract_binary(EXTRACT_CLIENT_TOOL, images.k3d_tools, "kubectl"))

    if config.private_registry:
        steps.append(
            StartupStep(
                COPY_MIRROR_CONFIG,
                (
                    f'echo "Copying registries.yaml to {MIRROR_CONFIG_PATH} for k3d..."',
                    f"if [ -f {MIRROR_CONFIG_MOUNT} ]; then",
                    f"  cp {MIRROR_CONFIG_MOUNT} {MIRROR_CONFIG_PATH}",
                    f"  chmod 644 {MIRROR_CONFIG_PATH}",
                    '  echo "Registry configuration copied successfully"',
                    "else",
                    f'  echo "ERROR: Registry configuration not found at {MIRROR_CONFIG_MOUNT}"',
                    "  exit 1",
                    "fi",
                ),
            )
        )

    steps.append(
        StartupStep(CREATE_CLUSTER, (f"{shlex.join(cluster_create_args(config, images))} || exit 1",))
    )
    steps.append(
        StartupStep(
            EXPORT_CREDENTIALS,
            (
                f"k3d kubeconfig get {shlex.quote(config.name)} > {CREDENTIAL_PATH} || exit 1",
                f"[ -s {CREDENTIAL_PATH} ] || exit 1",
                f"chmod 666 {CREDENTIAL_PATH}",
                f"echo \"K3s cluster '{config.name}' is ready!\"",
            ),
        )
    )
    steps.append(StartupStep(IDLE, ("tail -f /dev/null",)))
    return steps


def step_names(steps: list[StartupStep]) -> list[str]:
    return [step.name for step in steps]


def render_script(steps: list[StartupStep]) -> str:
    """Render steps into a POSIX shell script."""
    lines: list[str] = []
    for step in steps:
        lines.append(f"# step: {step.name}")
        lines.extend(step.commands)
        lines.append("")
    return "\n".join(lines)
