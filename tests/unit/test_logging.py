"""Unit tests for structured logging."""
# ruff: noqa: ARG002  # Fixtures used for setup side effects

import logging
from unittest.mock import MagicMock, patch

import pytest
import structlog

from datewatch.core.logging import (
    LogContext,
    add_environment_info,
    get_logger,
    log_exception,
    log_external_call,
    setup_logging,
)


class TestAddEnvironmentInfo:
    """Tests for add_environment_info processor."""

    def test_adds_environment(self):
        """Test environment is added to event dict."""
        mock_settings = MagicMock()
        mock_settings.environment = "production"

        with patch("datewatch.core.logging.get_settings", return_value=mock_settings):
            result = add_environment_info(None, "info", {})

        assert result["environment"] == "production"


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_setup_logging_default(self, patch_settings):
        """Test logging setup with default settings."""
        setup_logging()

        logger = get_logger("test")
        assert logger is not None

    def test_setup_logging_json_format(self, patch_settings):
        """Test logging setup with JSON format."""
        setup_logging(json_format=True)

        root_logger = logging.getLogger()
        assert len(root_logger.handlers) == 1

    def test_setup_logging_level_from_settings(self, patch_settings):
        """Test the configured level is applied."""
        patch_settings.log_level = "WARNING"

        setup_logging()

        assert logging.getLogger().level == logging.WARNING

    def test_setup_logging_custom_level(self, patch_settings):
        """Test logging setup with custom log level."""
        setup_logging(log_level="DEBUG")

        assert logging.getLogger().level == logging.DEBUG

    def test_httpx_quieted(self, patch_settings):
        """Test per-request httpx logs are suppressed."""
        setup_logging(log_level="DEBUG")

        assert logging.getLogger("httpx").level == logging.WARNING


class TestLogContext:
    """Tests for LogContext context manager."""

    def test_log_context_binds_values(self):
        """Test that LogContext binds values during block."""
        structlog.contextvars.clear_contextvars()

        with LogContext(session=3, trigger="scheduled"):
            ctx = structlog.contextvars.get_contextvars()
            assert ctx.get("session") == 3
            assert ctx.get("trigger") == "scheduled"

        ctx = structlog.contextvars.get_contextvars()
        assert "session" not in ctx
        assert "trigger" not in ctx


class TestLogHelpers:
    """Tests for logging helper functions."""

    @pytest.fixture
    def mock_logger(self):
        """Create mock logger."""
        return MagicMock()

    def test_log_exception(self, mock_logger):
        """Test logging exception."""
        exc = ValueError("Test error")
        log_exception(mock_logger, exc, context="testing")

        mock_logger.exception.assert_called_once()
        args, kwargs = mock_logger.exception.call_args
        assert args[0] == "exception_occurred"
        assert kwargs["error_type"] == "ValueError"
        assert kwargs["error_message"] == "Test error"
        assert kwargs["context"] == "testing"

    def test_log_external_call_success(self, mock_logger):
        """Test logging successful external call."""
        log_external_call(mock_logger, "monitored_page", "get", 250.123, True, status_code=200)

        mock_logger.info.assert_called_once()
        args, kwargs = mock_logger.info.call_args
        assert args[0] == "external_call"
        assert kwargs["service"] == "monitored_page"
        assert kwargs["duration_ms"] == 250.12
        assert kwargs["status_code"] == 200

    def test_log_external_call_failure(self, mock_logger):
        """Test logging failed external call."""
        log_external_call(mock_logger, "monitored_page", "get", 5000.0, False)

        mock_logger.warning.assert_called_once()
        args, kwargs = mock_logger.warning.call_args
        assert args[0] == "external_call"
        assert kwargs["success"] is False
