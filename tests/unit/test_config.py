"""Unit tests for persistent CLI configuration."""

from __future__ import annotations

from unittest.mock import patch

import pytest
import yaml

from k3s_nested.config import (
    CLIConfig,
    coerce_value,
    config_keys,
    load_config,
    save_config,
    unset_config,
)


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    """Point the config file at a temporary location and clear env overrides."""
    path = tmp_path / ".k3s-nested" / "config.yaml"
    for var in (
        "K3S_NESTED_KUBECONFIG",
        "K3S_NESTED_WAIT_TIMEOUT",
        "K3S_NESTED_POLL_INTERVAL",
        "K3S_NESTED_LB_TIMEOUT",
        "K3S_NESTED_CREDENTIALS_DIR",
    ):
        monkeypatch.delenv(var, raising=False)
    with patch("k3s_nested.config.get_config_path", return_value=path):
        yield path


@pytest.mark.cli_unit
class TestCoerceValue:
    """Tests for coerce_value."""

    def test_keys(self):
        """Test settable keys exclude private fields."""
        assert config_keys() == [
            "kubeconfig",
            "wait_timeout",
            "poll_interval",
            "lb_timeout",
            "credentials_dir",
        ]

    def test_int_keys(self):
        """Test numeric keys are coerced."""
        assert coerce_value("wait_timeout", "600") == 600

    @pytest.mark.parametrize("value", ["abc", "0", "-5"])
    def test_invalid_int(self, value):
        """Test non-positive or non-numeric values are rejected."""
        with pytest.raises(ValueError):
            coerce_value("poll_interval", value)

    def test_unknown_key(self):
        """Test unknown keys are rejected."""
        with pytest.raises(ValueError) as exc_info:
            coerce_value("color", "red")
        assert "Valid keys" in str(exc_info.value)


@pytest.mark.cli_unit
class TestLoadConfig:
    """Tests for load_config precedence."""

    def test_defaults(self, config_path):
        """Test defaults without file or environment."""
        config = load_config()
        assert config.wait_timeout == 300
        assert config.poll_interval == 5
        assert config.get_source("wait_timeout") == "default"

    def test_file_values(self, config_path):
        """Test values from the config file."""
        config_path.parent.mkdir(parents=True)
        config_path.write_text(yaml.dump({"wait_timeout": 600, "kubeconfig": "/tmp/host.yaml"}))

        config = load_config()

        assert config.wait_timeout == 600
        assert config.kubeconfig == "/tmp/host.yaml"
        assert config.get_source("kubeconfig") == "config file"

    def test_env_overrides_file(self, config_path, monkeypatch):
        """Test environment variables win over the file."""
        config_path.parent.mkdir(parents=True)
        config_path.write_text(yaml.dump({"wait_timeout": 600}))
        monkeypatch.setenv("K3S_NESTED_WAIT_TIMEOUT", "900")

        config = load_config()

        assert config.wait_timeout == 900
        assert config.get_source("wait_timeout") == "environment"

    def test_invalid_values_ignored(self, config_path, monkeypatch):
        """Test bad file and env values fall back."""
        config_path.parent.mkdir(parents=True)
        config_path.write_text(yaml.dump({"wait_timeout": "soon", "bogus": 1}))
        monkeypatch.setenv("K3S_NESTED_POLL_INTERVAL", "never")

        config = load_config()

        assert config.wait_timeout == 300
        assert config.poll_interval == 5

    def test_unreadable_file(self, config_path):
        """Test a non-mapping file is ignored."""
        config_path.parent.mkdir(parents=True)
        config_path.write_text("- just\n- a list\n")
        assert load_config().wait_timeout == 300

    def test_to_dict(self):
        """Test display dict carries values and sources."""
        data = CLIConfig(wait_timeout=10, _sources={"wait_timeout": "environment"}).to_dict()
        assert data["wait_timeout"] == {"value": 10, "source": "environment"}
        assert data["poll_interval"]["source"] == "default"


@pytest.mark.cli_unit
class TestSaveConfig:
    """Tests for save_config and unset_config."""

    def test_save_and_unset(self, config_path):
        """Test values persist and can be removed."""
        save_config("lb_timeout", "60")
        assert yaml.safe_load(config_path.read_text()) == {"lb_timeout": 60}
        assert load_config().lb_timeout == 60

        assert unset_config("lb_timeout") is True
        assert unset_config("lb_timeout") is False
        assert load_config().lb_timeout == 120

    def test_save_invalid(self, config_path):
        """Test invalid values are not written."""
        with pytest.raises(ValueError):
            save_config("wait_timeout", "abc")
        assert not config_path.exists()

    def test_unset_without_file(self, config_path):
        """Test unset with no config file."""
        assert unset_config("kubeconfig") is False
