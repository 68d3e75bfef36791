"""CLI output formatting helpers.

Tables are rendered with rich; plain messages go through click.echo.
"""

import click
from rich.console import Console
from rich.table import Table

from .config import CLIConfig
from .provision.deploy import DeployResult
from .provision.diagnose import CheckStatus, DiagnosticReport
from .provision.models import AccessMethod
from .provision.registry import InstanceRecord, InstanceStatus, ResourceUsage

console = Console()

CHECK_MARKS = {
    CheckStatus.PASS: "[green]✓[/green]",
    CheckStatus.WARN: "[yellow]⚠[/yellow]",
    CheckStatus.FAIL: "[red]✗[/red]",
}


def print_warnings(warnings: list[Warning]) -> None:
    """Print non-fatal warnings."""
    for w in warnings:
        click.echo(f"⚠ {w}", err=True)


def print_instances(records: list[InstanceRecord]) -> None:
    """Print instance list.

    Args:
        records: Discovered instances
    """
    if not records:
        click.echo("No k3s instances found")
        return

    table = Table(show_header=True, header_style="bold", box=None)
    for column in ("NAME", "NAMESPACE", "STATUS", "AGE", "ACCESS"):
        table.add_column(column, no_wrap=True)
    for r in records:
        table.add_row(r.name, r.namespace, r.phase, r.age, r.access)
    console.print(table)
    click.echo(f"\nTotal instances: {len(records)}")


def print_resources(usage: list[ResourceUsage]) -> None:
    """Print per-instance resource usage."""
    if not usage:
        click.echo("No instances found")
        return

    table = Table(show_header=True, header_style="bold", box=None)
    for column in ("INSTANCE", "NAMESPACE", "CPU", "MEMORY", "STORAGE"):
        table.add_column(column, no_wrap=True)
    for u in usage:
        table.add_row(u.name, u.namespace, u.cpu, u.memory, u.storage)
    console.print(table)


def print_status(status: InstanceStatus) -> None:
    """Print instance status sections."""
    click.echo(f"Status for instance '{status.name}' (namespace {status.namespace}):\n")
    for section in status.sections:
        click.echo(f"=== {section.title} ===")
        click.echo(section.body)
        click.echo()


def print_diagnostic_report(report: DiagnosticReport) -> None:
    """Print diagnostic checks grouped by section, then a summary line."""
    click.echo(f"Instance: {report.instance}")
    click.echo(f"Namespace: {report.namespace or 'not found'}")

    for section in report.sections():
        console.print(f"\n[bold]{section}[/bold]")
        for check in (c for c in report.checks if c.section == section):
            first, *rest = (check.detail or "").splitlines() or [""]
            console.print(f"  {CHECK_MARKS[check.status]} {check.name}: {first}", highlight=False)
            for line in rest:
                console.print(f"      {line}", highlight=False)

    passed = report.count(CheckStatus.PASS)
    warned = report.count(CheckStatus.WARN)
    failed = report.count(CheckStatus.FAIL)
    click.echo(f"\n{passed} passed, {warned} warnings, {failed} failed")


def print_config(config: CLIConfig) -> None:
    """Print CLI settings with their sources."""
    table = Table(show_header=True, header_style="bold", box=None)
    for column in ("KEY", "VALUE", "SOURCE"):
        table.add_column(column, no_wrap=True)
    for key, entry in config.to_dict().items():
        value = entry["value"]
        table.add_row(key, "" if value is None else str(value), entry["source"])
    console.print(table)


def print_deploy_summary(result: DeployResult) -> None:
    """Print how to use a freshly deployed instance."""
    config = result.plan.config
    credential = result.credential
    click.echo()
    click.echo(f"✓ K3s instance '{config.name}' deployed successfully!")
    click.echo()
    click.echo("Instance Details:")
    click.echo(f"  Name:          {config.name}")
    click.echo(f"  Namespace:     {config.target_namespace}")
    click.echo(f"  K3s Version:   {config.k3s_version}")
    click.echo(f"  Access Method: {config.access_method.value}")

    if config.access_method == AccessMethod.NODEPORT:
        click.echo(f"  NodePort:      {config.node_port}")
    elif config.access_method == AccessMethod.INGRESS:
        click.echo(f"  Hostname:      {config.ingress_hostname}")
    if credential is not None and credential.server:
        click.echo(f"  API Server:    {credential.server}")

    if credential is not None and credential.path is not None:
        click.echo()
        click.echo("To access your k3s cluster:")
        click.echo(f"  export KUBECONFIG={credential.path}")
        click.echo("  kubectl get nodes")
