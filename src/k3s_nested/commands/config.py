"""Config commands for managing persistent CLI settings."""

from __future__ import annotations

import json
import sys

import click

from ..config import config_keys, get_config_path, load_config, save_config, unset_config
from ..formatters import print_config


@click.group()
def config() -> None:
    """Manage CLI configuration."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current settings and where each value comes from."""
    settings = load_config()
    if (ctx.obj or {}).get("json_output"):
        click.echo(json.dumps(settings.to_dict(), indent=2))
        return
    click.echo(f"Config file: {get_config_path()}\n")
    print_config(settings)


@config.command("set")
@click.argument("key", type=click.Choice(config_keys()))
@click.argument("value")
def config_set(key: str, value: str) -> None:
    """Persist a setting."""
    try:
        save_config(key, value)
    except ValueError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)
    click.echo(f"✓ {key} = {value}")


@config.command("unset")
@click.argument("key", type=click.Choice(config_keys()))
def config_unset(key: str) -> None:
    """Remove a persisted setting."""
    if unset_config(key):
        click.echo(f"✓ {key} removed")
    else:
        click.echo(f"{key} is not set in {get_config_path()}")
