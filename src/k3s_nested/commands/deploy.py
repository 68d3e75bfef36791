"""Deploy command for creating nested k3s instances.

This module provides the `k3s-nested deploy` command which synthesizes the
instance manifests, applies them to the host cluster, waits for the inner
cluster and saves its kubeconfig.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import click
import yaml
from click.core import ParameterSource

from ..context import get_services
from ..decorators import reports_errors
from ..errors import ConfigurationError
from ..formatters import print_deploy_summary, print_warnings
from ..provision.deploy import DeploymentEngine
from ..provision.models import AccessMethod, InstanceConfig
from ..provision.readiness import DeployPhase

# Options that map onto InstanceConfig keys
CONFIG_OPTIONS = (
    "name",
    "namespace",
    "k3s_version",
    "storage_size",
    "storage_class",
    "access_method",
    "node_port",
    "ingress_hostname",
    "ingress_class",
    "cpu_limit",
    "memory_limit",
    "cpu_request",
    "memory_request",
    "dind_image",
    "k3d_image",
    "k3s_image",
    "k3d_tools_image",
    "private_registry",
    "registry_path",
    "registry_secret",
    "registry_insecure",
)


def load_config_file(path: Path) -> dict[str, Any]:
    """Read a flat YAML instance config.

    Raises:
        ConfigurationError: unreadable file or not a mapping.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def build_instance_config(
    ctx: click.Context, config_file: Path | None, options: dict[str, Any]
) -> InstanceConfig:
    """Merge file values with explicitly given CLI options (CLI wins)."""
    data = load_config_file(config_file) if config_file else {}
    for key in CONFIG_OPTIONS:
        if ctx.get_parameter_source(key) == ParameterSource.COMMANDLINE:
            data[key] = options[key]
    return InstanceConfig.from_dict(data)


@click.command()
@click.option("--name", help="Instance name (e.g., 'dev', 'staging')")
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Load instance configuration from a YAML file",
)
@click.option("--namespace", help="Kubernetes namespace (default: k3s-<name>)")
@click.option("--k3s-version", help="K3s version (default: v1.32.9+k3s1)")
@click.option("--storage-size", help="PVC size (default: 10Gi)")
@click.option("--storage-class", help="Storage class name (default: cluster default)")
@click.option(
    "--access-method",
    type=click.Choice([m.value for m in AccessMethod]),
    help="Access method (default: nodeport)",
)
@click.option("--nodeport", "node_port", type=int, help="NodePort number (30000-32767)")
@click.option("--ingress-hostname", help="Hostname for Ingress (required with ingress)")
@click.option("--ingress-class", help="Ingress class (default: nginx)")
@click.option("--cpu-limit", help="CPU limit (default: 2)")
@click.option("--memory-limit", help="Memory limit (default: 4Gi)")
@click.option("--cpu-request", help="CPU request (default: 1)")
@click.option("--memory-request", help="Memory request (default: 2Gi)")
@click.option("--dind-image", help="Docker-in-Docker image override")
@click.option("--k3d-image", help="k3d CLI image override")
@click.option("--k3s-image", help="k3s server image override")
@click.option("--k3d-tools-image", help="k3d helper containers image override")
@click.option("--private-registry", help="Private registry (e.g., docker.local, registry:5000)")
@click.option("--registry-path", help="Path prefix within the registry")
@click.option("--registry-secret", help="docker-registry secret name for authentication")
@click.option("--registry-insecure", is_flag=True, help="Skip TLS verification for the registry")
@click.option("--dry-run", is_flag=True, help="Print manifests without applying")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write dry-run manifests to a file",
)
@click.option("--wait-timeout", type=int, help="Seconds to wait for the pod to be ready")
@click.option("--skip-prerequisites", is_flag=True, help="Skip host cluster checks")
@click.pass_context
@reports_errors
def deploy(
    ctx: click.Context,
    config_file: Path | None,
    dry_run: bool,
    output: Path | None,
    wait_timeout: int | None,
    skip_prerequisites: bool,
    **options: Any,
) -> None:
    """Deploy a nested k3s instance.

    Examples:

        # Quick start with defaults
        k3s-nested deploy --name dev

        # Ingress access
        k3s-nested deploy --name dev --access-method ingress \\
            --ingress-hostname k3s-dev.example.com

        # Private registry with a path prefix
        k3s-nested deploy --name dev --private-registry artifactory.company.com \\
            --registry-path docker-sandbox/team

        # Render manifests only
        k3s-nested deploy --name dev --dry-run
    """
    config = build_instance_config(ctx, config_file, options)
    ctx.obj["instance"] = config.name
    services = get_services(ctx)
    json_output = ctx.obj.get("json_output", False)

    engine = DeploymentEngine(
        services.kubectl,
        poller=services.poller(wait_timeout),
        extractor=services.extractor(),
    )

    if dry_run:
        result = engine.deploy(config, dry_run=True)
        manifests = result.plan.resources.to_yaml()
        if output:
            result.plan.resources.write(output)
            click.echo(f"✓ Manifests written to {output}", err=True)
        else:
            click.echo(manifests, nl=False)
        return

    click.echo(
        f"Deploying k3s instance '{config.name}' in namespace '{config.target_namespace}'...",
        err=json_output,
    )

    def on_progress(phase: DeployPhase, message: str) -> None:
        click.echo(f"  ✓ {message}", err=json_output)

    result = engine.deploy(
        config,
        check_prerequisites=not skip_prerequisites,
        on_progress=on_progress,
    )
    print_warnings(result.warnings)

    if json_output:
        credential = result.credential
        click.echo(
            json.dumps(
                {
                    "name": config.name,
                    "namespace": result.namespace,
                    "phase": result.phase.value if result.phase else None,
                    "kubeconfig": str(credential.path) if credential and credential.path else None,
                    "server": credential.server if credential else None,
                    "warnings": [str(w) for w in result.warnings],
                },
                indent=2,
            )
        )
        return

    print_deploy_summary(result)
