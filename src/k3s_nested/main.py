"""CLI main entry point."""

from pathlib import Path

import click

from . import __version__
from .commands.config import config
from .commands.deploy import deploy
from .commands.images import images
from .commands.instances import COMMANDS as INSTANCE_COMMANDS
from .commands.instances import refresh
from .config import load_config
from .shared.logging import configure_logging, verbosity_to_level


@click.group()
@click.option("-v", "--verbose", count=True, help="Increase verbosity")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--log-json", is_flag=True, help="Emit logs as JSON")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Append logs to this file instead of stderr",
)
@click.option(
    "--kubeconfig",
    type=click.Path(dir_okay=False),
    help="Kubeconfig of the host cluster (default: kubectl's own)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: int,
    json_output: bool,
    log_json: bool,
    log_file: Path | None,
    kubeconfig: str | None,
) -> None:
    """Run isolated k3s clusters inside a Kubernetes cluster."""
    configure_logging(verbosity_to_level(verbose), log_file=log_file, json_output=log_json)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = load_config()
    ctx.obj["kubeconfig"] = kubeconfig
    ctx.obj["json_output"] = json_output
    ctx.obj["verbose"] = verbose


@cli.command()
def version() -> None:
    """Show version information."""
    click.echo(f"k3s-nested version {__version__}")


cli.add_command(deploy)
cli.add_command(images)
cli.add_command(config)
for command in INSTANCE_COMMANDS:
    cli.add_command(command)
cli.add_command(refresh, name="refresh-kubeconfig")


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
