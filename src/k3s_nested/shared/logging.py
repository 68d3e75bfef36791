"""Logging configuration for k3s-nested.

Library modules log structured events through structlog; the CLI group
callback decides where they go. By default events are rendered for humans
on stderr so they never mix with command output on stdout. ``--log-json``
switches to one JSON object per line and ``--log-file`` appends to a file
instead of stderr.
"""

import logging
import sys
from pathlib import Path

import structlog

# -v count to level name
VERBOSITY_LEVELS = ("warning", "info", "debug")


def verbosity_to_level(verbose: int) -> str:
    """Map the CLI -v count to a log level name."""
    return VERBOSITY_LEVELS[min(max(verbose, 0), len(VERBOSITY_LEVELS) - 1)]


def _handler(log_file: str | Path | None) -> logging.Handler:
    if log_file is None:
        return logging.StreamHandler(sys.stderr)
    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(str(path))


def configure_logging(
    level: str = "warning",
    log_file: str | Path | None = None,
    json_output: bool = False,
) -> None:
    """Route structlog events through stdlib logging.

    Safe to call more than once; each call replaces the previous handlers.

    Args:
        level: Log level name; unknown names fall back to warning.
        log_file: Append to this file instead of writing to stderr.
        json_output: Render JSON lines instead of the console format.
    """
    log_level = getattr(logging, level.upper(), None)
    if not isinstance(log_level, int):
        log_level = logging.WARNING

    handler = _handler(log_file)
    handler.setLevel(log_level)
    logging.basicConfig(level=log_level, handlers=[handler], format="%(message)s", force=True)

    processors: list[structlog.types.Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        # Colors only when a human is watching the console
        colors = log_file is None and sys.stderr.isatty()
        processors.append(structlog.dev.ConsoleRenderer(colors=colors))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger for a module (``get_logger(__name__)``)."""
    return structlog.get_logger(name)
