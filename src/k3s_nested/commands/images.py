"""Images command for mirroring into a private registry.

Prints (or writes) every image an instance needs so they can be copied into
an air-gapped registry before deploying with --private-registry.
"""

from __future__ import annotations

import json
from pathlib import Path

import click

from ..provision.mirror import ComponentVersions, MirrorPlanner
from ..provision.models import (
    DEFAULT_DOCKER_VERSION,
    DEFAULT_K3D_TOOLS_VERSION,
    DEFAULT_K3D_VERSION,
    DEFAULT_K3S_VERSION,
)


@click.command()
@click.option(
    "--registry",
    required=True,
    help="Target registry host (e.g., docker.local, registry:5000)",
)
@click.option("--path", "registry_path", default="", help="Path prefix within the registry")
@click.option("--k3s-version", default=DEFAULT_K3S_VERSION, show_default=True)
@click.option("--k3d-version", default=DEFAULT_K3D_VERSION, show_default=True)
@click.option("--k3d-tools-version", default=DEFAULT_K3D_TOOLS_VERSION, show_default=True)
@click.option("--docker-version", default=DEFAULT_DOCKER_VERSION, show_default=True)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["mapping", "list"]),
    default="mapping",
    help="mapping: source=target lines; list: source images only",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the image list to a file",
)
@click.option(
    "--registries-yaml",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Also write the inner cluster registries.yaml to this file",
)
@click.option("--insecure", is_flag=True, help="Skip TLS verification in registries.yaml")
@click.pass_context
def images(
    ctx: click.Context,
    registry: str,
    registry_path: str,
    k3s_version: str,
    k3d_version: str,
    k3d_tools_version: str,
    docker_version: str,
    output_format: str,
    output: Path | None,
    registries_yaml: Path | None,
    insecure: bool,
) -> None:
    """List images to mirror into a private registry.

    Examples:

        k3s-nested images --registry docker.local

        k3s-nested images --registry artifactory.company.com \\
            --path docker-sandbox/team -o images.txt
    """
    plan = MirrorPlanner().plan(
        ComponentVersions(
            k3s_version=k3s_version,
            k3d_version=k3d_version,
            k3d_tools_version=k3d_tools_version,
            docker_version=docker_version,
        ),
        registry,
        registry_path,
        insecure=insecure,
    )
    lines = plan.mapping_lines() if output_format == "mapping" else plan.source_lines()

    if registries_yaml:
        registries_yaml.write_text(plan.registries_yaml())
        click.echo(f"✓ registries.yaml written to {registries_yaml}", err=True)

    if output:
        output.write_text("\n".join(lines) + "\n")
        click.echo(f"✓ {len(lines)} images written to {output}", err=True)
        return

    if (ctx.obj or {}).get("json_output"):
        if output_format == "mapping":
            data = [dict(zip(("source", "target"), line.split("=", 1))) for line in lines]
        else:
            data = lines
        click.echo(json.dumps(data, indent=2))
        return

    for line in lines:
        click.echo(line)
