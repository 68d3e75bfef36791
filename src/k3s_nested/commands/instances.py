"""Commands operating on deployed instances.

list, status, access, refresh, exec, logs, delete, delete-all, resources
and diagnose. Instances are always looked up by label.
"""

from __future__ import annotations

import json
import sys

import click

from ..context import get_services
from ..decorators import reports_errors
from ..formatters import (
    print_diagnostic_report,
    print_instances,
    print_resources,
    print_status,
    print_warnings,
)
from ..provision.diagnose import Diagnoser
from ..provision.manifests import CLUSTER_CONTAINER, ENGINE_CONTAINER
from ..provision.registry import InstanceRegistry


def _registry(ctx: click.Context) -> InstanceRegistry:
    services = get_services(ctx)
    return InstanceRegistry(services.kubectl, services.store, services.extractor())


@click.command("list")
@click.pass_context
@reports_errors
def list_instances(ctx: click.Context) -> None:
    """List all k3s instances."""
    records = _registry(ctx).list()
    if ctx.obj.get("json_output"):
        click.echo(json.dumps([r.to_dict() for r in records], indent=2))
        return
    print_instances(records)


@click.command()
@click.argument("name")
@click.pass_context
@reports_errors
def status(ctx: click.Context, name: str) -> None:
    """Show host and inner cluster status of an instance."""
    result = _registry(ctx).status(name)
    if ctx.obj.get("json_output"):
        click.echo(
            json.dumps(
                {
                    "name": result.name,
                    "namespace": result.namespace,
                    "inner_reachable": result.inner_reachable,
                    "sections": {s.title: s.body for s in result.sections},
                },
                indent=2,
            )
        )
        return
    print_status(result)


@click.command()
@click.argument("name")
@click.pass_context
@reports_errors
def access(ctx: click.Context, name: str) -> None:
    """Verify and show how to use the kubeconfig of an instance."""
    report = _registry(ctx).access(name)
    click.echo(f"Kubeconfig: {report.kubeconfig}\n")
    click.echo(report.cluster_info.rstrip())
    click.echo()
    click.echo(report.nodes.rstrip())
    click.echo()
    click.echo("✓ Instance is accessible!")
    click.echo("\nTo use this instance, run:")
    click.echo(f"  export KUBECONFIG={report.kubeconfig}")
    click.echo("  kubectl get nodes")


@click.command()
@click.argument("name")
@click.pass_context
@reports_errors
def refresh(ctx: click.Context, name: str) -> None:
    """Re-extract the kubeconfig of a running instance."""
    credential = _registry(ctx).refresh_credential(name)
    print_warnings(credential.warnings)
    click.echo(f"✓ Kubeconfig refreshed: {credential.path}")
    if credential.reachable:
        click.echo("✓ Connection verified")


@click.command(
    "exec",
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False},
)
@click.argument("name")
@click.argument("args", nargs=-1, type=click.UNPROCESSED, required=True)
@click.pass_context
@reports_errors
def exec_command(ctx: click.Context, name: str, args: tuple[str, ...]) -> None:
    """Run kubectl against the inner cluster of an instance.

    Example:

        k3s-nested exec dev -- get pods -A
    """
    sys.exit(_registry(ctx).exec(name, list(args)))


@click.command()
@click.argument("name")
@click.option(
    "--container",
    "-c",
    type=click.Choice([CLUSTER_CONTAINER, ENGINE_CONTAINER]),
    default=CLUSTER_CONTAINER,
    help="Container to show logs for",
)
@click.option("--tail", default=100, type=int, help="Number of lines")
@click.option("--follow/--no-follow", "-f", default=True, help="Follow log output")
@click.pass_context
@reports_errors
def logs(ctx: click.Context, name: str, container: str, tail: int, follow: bool) -> None:
    """Show logs of an instance container."""
    code = _registry(ctx).logs(name, container=container, tail=tail, follow=follow)
    if code != 0:
        sys.exit(code)


@click.command()
@click.argument("name")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
@reports_errors
def delete(ctx: click.Context, name: str, yes: bool) -> None:
    """Delete an instance and its local kubeconfig."""
    registry = _registry(ctx)
    namespace = registry.find_namespace(name)
    if not yes:
        click.echo(f"⚠ This will delete instance '{name}' in namespace '{namespace}'")
        click.echo("⚠ All data will be lost!")
        if not click.confirm("Are you sure?"):
            click.echo("Deletion cancelled")
            return

    result = registry.delete(name)
    if not result.deleted:
        click.echo(f"✗ Failed to delete instance: {result.error}", err=True)
        sys.exit(1)
    click.echo("✓ Instance deleted")
    if result.credential_removed:
        click.echo("  Kubeconfig removed")
    if result.credential_error:
        click.echo(f"⚠ Could not remove kubeconfig: {result.credential_error}", err=True)


@click.command("delete-all")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
@reports_errors
def delete_all(ctx: click.Context, yes: bool) -> None:
    """Delete ALL instances concurrently."""
    if not yes:
        click.echo("⚠ This will delete ALL k3s instances!")
        if not click.confirm("Are you sure?"):
            click.echo("Deletion cancelled")
            return

    result = _registry(ctx).delete_all()
    if not result.results:
        click.echo("No instances found")
        return

    for r in result.results:
        if r.deleted:
            click.echo(f"  ✓ {r.name} ({r.namespace})")
        else:
            click.echo(f"  ✗ {r.name} ({r.namespace}): {r.error}", err=True)

    if not result.ok:
        click.echo(
            f"✗ {len(result.failures)} of {len(result.results)} deletions failed", err=True
        )
        sys.exit(1)
    click.echo(f"✓ All {len(result.results)} instances deleted")


@click.command()
@click.pass_context
@reports_errors
def resources(ctx: click.Context) -> None:
    """Show resource usage across all instances."""
    usage = _registry(ctx).resources()
    if ctx.obj.get("json_output"):
        click.echo(json.dumps([u.__dict__ for u in usage], indent=2))
        return
    print_resources(usage)


@click.command()
@click.argument("name")
@click.option("--airgap", is_flag=True, help="Also run the private-registry mirror checks")
@click.pass_context
@reports_errors
def diagnose(ctx: click.Context, name: str, airgap: bool) -> None:
    """Diagnose an instance across all layers (read-only)."""
    services = get_services(ctx)
    report = Diagnoser(services.kubectl, services.store).diagnose(name, airgap=airgap)
    if ctx.obj.get("json_output"):
        click.echo(
            json.dumps(
                {
                    "instance": report.instance,
                    "namespace": report.namespace,
                    "checks": [
                        {
                            "section": c.section,
                            "name": c.name,
                            "status": c.status.value,
                            "detail": c.detail,
                        }
                        for c in report.checks
                    ],
                },
                indent=2,
            )
        )
    else:
        print_diagnostic_report(report)
    if report.failed:
        sys.exit(1)


COMMANDS = [
    list_instances,
    status,
    access,
    refresh,
    exec_command,
    logs,
    delete,
    delete_all,
    resources,
    diagnose,
]
