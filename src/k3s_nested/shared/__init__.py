"""Shared modules for k3s-nested.

This module provides functionality used by every command:
- local paths (~/.k3s-nested/)
- logging setup
"""

from .logging import configure_logging, get_logger, verbosity_to_level
from .paths import (
    BASE_DIR,
    CONFIG_FILE,
    KUBECONFIGS_DIR,
    get_kubeconfig_file,
)

__all__ = [
    # Paths
    "BASE_DIR",
    "CONFIG_FILE",
    "KUBECONFIGS_DIR",
    "get_kubeconfig_file",
    # Logging
    "configure_logging",
    "get_logger",
    "verbosity_to_level",
]
