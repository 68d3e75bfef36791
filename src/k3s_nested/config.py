"""CLI configuration management.

Handles persistent CLI configuration stored in ~/.k3s-nested/config.yaml.
Supports environment variable overrides and CLI flag precedence.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .shared.logging import get_logger
from .shared.paths import CONFIG_FILE, KUBECONFIGS_DIR

log = get_logger(__name__)

# Default values
DEFAULT_WAIT_TIMEOUT = 300
DEFAULT_POLL_INTERVAL = 5
DEFAULT_LB_TIMEOUT = 120

# Environment variable mappings
ENV_VARS = {
    "kubeconfig": "K3S_NESTED_KUBECONFIG",
    "wait_timeout": "K3S_NESTED_WAIT_TIMEOUT",
    "poll_interval": "K3S_NESTED_POLL_INTERVAL",
    "lb_timeout": "K3S_NESTED_LB_TIMEOUT",
    "credentials_dir": "K3S_NESTED_CREDENTIALS_DIR",
}

INT_KEYS = {"wait_timeout", "poll_interval", "lb_timeout"}


@dataclass
class CLIConfig:
    """CLI configuration."""

    kubeconfig: str | None = None
    wait_timeout: int = DEFAULT_WAIT_TIMEOUT
    poll_interval: int = DEFAULT_POLL_INTERVAL
    lb_timeout: int = DEFAULT_LB_TIMEOUT
    credentials_dir: str = str(KUBECONFIGS_DIR)

    # Track where each value came from
    _sources: dict[str, str] = field(default_factory=dict)

    def get_source(self, key: str) -> str:
        """Get the source of a config value."""
        return self._sources.get(key, "default")

    def to_dict(self) -> dict[str, Any]:
        """Values and their sources, for display."""
        return {
            key: {"value": getattr(self, key), "source": self.get_source(key)}
            for key in config_keys()
        }


def config_keys() -> list[str]:
    """Settable config keys."""
    return [f.name for f in fields(CLIConfig) if not f.name.startswith("_")]


def get_config_path() -> Path:
    """Get the CLI config file path.

    Returns:
        Path to ~/.k3s-nested/config.yaml
    """
    return CONFIG_FILE


def coerce_value(key: str, value: Any) -> Any:
    """Convert a raw value to the type of a config key.

    Raises:
        ValueError: for an unknown key or a non-numeric value of a numeric key.
    """
    if key not in config_keys():
        raise ValueError(f"Unknown config key: {key}. Valid keys: {', '.join(config_keys())}")
    if key in INT_KEYS:
        number = int(value)
        if number <= 0:
            raise ValueError(f"{key} must be a positive integer")
        return number
    return str(value)


def _read_file(config_path: Path) -> dict[str, Any]:
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        log.warning("config_file_unreadable", path=str(config_path), error=str(e))
        return {}
    if not isinstance(data, dict):
        log.warning("config_file_invalid", path=str(config_path))
        return {}
    return data


def load_config() -> CLIConfig:
    """Load CLI configuration.

    Precedence (highest to lowest):
    1. Environment variables
    2. Config file (~/.k3s-nested/config.yaml)
    3. Defaults

    Returns:
        CLIConfig with values and sources
    """
    config = CLIConfig()
    sources: dict[str, str] = {key: "default" for key in config_keys()}

    # Load from config file
    config_path = get_config_path()
    if config_path.exists():
        for key, raw in _read_file(config_path).items():
            try:
                setattr(config, key, coerce_value(key, raw))
            except (TypeError, ValueError) as e:
                log.warning("config_value_ignored", key=key, error=str(e))
                continue
            sources[key] = "config file"

    # Override with environment variables
    for key, env_var in ENV_VARS.items():
        raw = os.environ.get(env_var)
        if not raw:
            continue
        try:
            setattr(config, key, coerce_value(key, raw))
        except ValueError as e:
            log.warning("config_env_ignored", variable=env_var, error=str(e))
            continue
        sources[key] = "environment"

    config._sources = sources
    return config


def save_config(key: str, value: Any) -> None:
    """Save a config value to the config file.

    Args:
        key: Config key (see config_keys())
        value: Value to save

    Raises:
        ValueError: for an unknown key or invalid value.
    """
    value = coerce_value(key, value)
    config_path = get_config_path()

    # Load existing config
    existing: dict[str, Any] = _read_file(config_path) if config_path.exists() else {}
    existing[key] = value

    # Ensure directory exists
    config_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        yaml.dump(existing, f, default_flow_style=False)


def unset_config(key: str) -> bool:
    """Remove a config value from the config file.

    Args:
        key: Config key to remove

    Returns:
        True if key was removed, False if not found
    """
    config_path = get_config_path()
    if not config_path.exists():
        return False

    existing = _read_file(config_path)
    if key not in existing:
        return False

    del existing[key]

    with open(config_path, "w") as f:
        yaml.dump(existing, f, default_flow_style=False)

    return True
