"""
Tests for egress_guard.core.errors and logging_config modules.
"""

import logging

from egress_guard.core.errors import (
    ConfigurationError,
    EgressGuardError,
    EnforcementError,
    ProviderFetchError,
)
from egress_guard.core.logging_config import ColoredFormatter, get_logger, setup_logging


class TestErrors:
    """Test cases for the error hierarchy."""

    def test_stage_in_message(self):
        """Test that errors name the stage that failed."""
        error = ProviderFetchError("missing git")
        assert str(error) == "[provider] missing git"
        assert isinstance(error, EgressGuardError)
        assert error.exit_code == 1

    def test_configuration_exit_code(self):
        """Test that configuration errors have a distinct exit code."""
        assert ConfigurationError("bad").exit_code == 2

    def test_stage_override(self):
        """Test overriding the stage for a generic error."""
        assert EgressGuardError("boom", stage="resolve").stage == "resolve"

    def test_enforcement_carries_result(self):
        """Test that enforcement errors keep the failing command result."""
        error = EnforcementError("failed", command_result="ipset create")
        assert error.command_result == "ipset create"


class TestLogging:
    """Test cases for logging configuration."""

    def test_get_logger_namespace(self):
        """Test that loggers live under the package namespace."""
        assert get_logger("egress_guard.pipeline").name == "egress_guard.pipeline"
        assert get_logger("__main__").name == "egress_guard.cli"
        assert get_logger("helpers").name == "egress_guard.helpers"

    def test_verbosity_levels(self):
        """Test package logger levels per verbosity."""
        setup_logging(0, use_colors=False)
        assert logging.getLogger("egress_guard").level == logging.WARNING
        setup_logging(1, use_colors=False)
        assert logging.getLogger("egress_guard").level == logging.DEBUG
        assert logging.getLogger("urllib3").level == logging.WARNING

    def test_colored_formatter_leaves_record(self):
        """Test that colouring does not leak into the original record."""
        record = logging.LogRecord("egress_guard", logging.ERROR, "", 0, "oops", None, None)
        formatted = ColoredFormatter(fmt="%(levelname)s: %(message)s").format(record)
        assert "oops" in formatted
        assert record.levelname == "ERROR"
