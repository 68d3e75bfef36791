"""Command decorators.

This module provides the error reporting shared by every command that talks
to a cluster.
"""

import sys
from functools import wraps
from typing import Callable

import click

from .errors import KubectlError, ProvisionError, ReadinessTimeoutError


def report_error(error: ProvisionError, instance: str | None) -> None:
    """Print a fatal error with its phase and how to resume."""
    click.echo(f"✗ {error}", err=True)
    click.echo(f"  failed phase: {error.phase}", err=True)
    if isinstance(error, ReadinessTimeoutError) and error.diagnostics:
        click.echo("\nDiagnostics:", err=True)
        click.echo(error.diagnostics, err=True)
    hint = error.resume_hint(instance or "<name>")
    if hint:
        click.echo(f"  {hint}", err=True)


def reports_errors(func: Callable):
    """Turn provisioning and kubectl errors into a message and exit code 1."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ProvisionError as e:
            ctx = click.get_current_context()
            instance = ctx.params.get("name") or (ctx.obj or {}).get("instance")
            report_error(e, instance)
            sys.exit(1)
        except KubectlError as e:
            click.echo(f"✗ {e}", err=True)
            sys.exit(1)

    return wrapper
