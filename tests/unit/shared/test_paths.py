"""Unit tests for k3s_nested.shared.paths module."""

from pathlib import Path

import pytest


@pytest.mark.cli_unit
class TestPaths:
    """Tests for path constants and functions."""

    def test_base_dir_is_in_home(self):
        """Test BASE_DIR is in user's home directory."""
        from k3s_nested.shared.paths import BASE_DIR

        assert BASE_DIR == Path.home() / ".k3s-nested"

    def test_kubeconfigs_dir_location(self):
        """Test KUBECONFIGS_DIR is in BASE_DIR."""
        from k3s_nested.shared.paths import BASE_DIR, KUBECONFIGS_DIR

        assert KUBECONFIGS_DIR == BASE_DIR / "kubeconfigs"

    def test_config_file_location(self):
        """Test CONFIG_FILE is in BASE_DIR."""
        from k3s_nested.shared.paths import BASE_DIR, CONFIG_FILE

        assert CONFIG_FILE == BASE_DIR / "config.yaml"


@pytest.mark.cli_unit
class TestKubeconfigFile:
    """Tests for get_kubeconfig_file."""

    def test_default_directory(self):
        """Test the file lives in KUBECONFIGS_DIR."""
        from k3s_nested.shared.paths import KUBECONFIGS_DIR, get_kubeconfig_file

        assert get_kubeconfig_file("dev") == KUBECONFIGS_DIR / "k3s-dev.yaml"

    def test_custom_directory(self, tmp_path):
        """Test an override directory."""
        from k3s_nested.shared.paths import get_kubeconfig_file

        assert get_kubeconfig_file("dev", tmp_path) == tmp_path / "k3s-dev.yaml"
