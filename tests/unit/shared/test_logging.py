"""Unit tests for k3s_nested.shared.logging module."""

import json
import logging
import sys

import pytest
import structlog

from k3s_nested.shared.logging import configure_logging, get_logger, verbosity_to_level


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()
    logging.basicConfig(force=True, handlers=[logging.NullHandler()])


@pytest.mark.cli_unit
class TestVerbosity:
    """Tests for verbosity_to_level."""

    @pytest.mark.parametrize("verbose,level", [(0, "warning"), (1, "info"), (2, "debug"), (5, "debug")])
    def test_levels(self, verbose, level):
        """Test -v count mapping."""
        assert verbosity_to_level(verbose) == level


@pytest.mark.cli_unit
class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_sets_root_level(self):
        """Test the standard logging level is applied."""
        configure_logging("debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_defaults_to_warning(self):
        """Test bad level names fall back to warning."""
        configure_logging("chatty")
        assert logging.getLogger().level == logging.WARNING

    def test_json_output_to_file(self, tmp_path):
        """Test JSON lines are written to a log file."""
        log_file = tmp_path / "k3s-nested.log"
        configure_logging("info", log_file=log_file, json_output=True)

        get_logger("k3s_nested.test").info("instance_deleted", instance="dev")
        for handler in logging.getLogger().handlers:
            handler.flush()

        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["event"] == "instance_deleted"
        assert entry["instance"] == "dev"
        assert entry["level"] == "info"

    def test_filtered_below_level(self, tmp_path):
        """Test debug events are dropped at warning level."""
        log_file = tmp_path / "k3s-nested.log"
        configure_logging("warning", log_file=log_file, json_output=True)

        get_logger("k3s_nested.test").debug("kubectl", args=["get", "ns"])
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert log_file.read_text() == ""

    def test_log_file_parent_created(self, tmp_path):
        """Test a log file in a missing directory is created."""
        log_file = tmp_path / "logs" / "nested" / "k3s-nested.log"
        configure_logging("info", log_file=log_file)

        get_logger("k3s_nested.test").info("namespace_applied", namespace="k3s-dev")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "namespace_applied" in log_file.read_text()

    def test_stderr_by_default(self):
        """Test events go to stderr, never stdout."""
        configure_logging("info")
        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert handlers[0].stream is sys.stderr
