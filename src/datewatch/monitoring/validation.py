"""Validation of monitor configurations.

A configuration is checked when it is entered (settings applied, session
started, period changed) and is never persisted or scheduled when it fails.

Usage:
    from datewatch.monitoring.validation import validate_or_raise

    validate_or_raise(config, min_period_minutes=15)
"""

from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlparse

from datewatch.config.settings import get_settings
from datewatch.core.logging import get_logger
from datewatch.monitoring.types import ConfigInvalidError, MonitorConfig

logger = get_logger(__name__)


class ValidationSeverity(str, Enum):
    """Severity of configuration validation issues."""

    ERROR = "error"  # Configuration is rejected
    WARNING = "warning"  # Accepted, but probably not what the user meant


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""

    field: str
    severity: ValidationSeverity
    message: str
    suggestion: str | None = None

    def __str__(self) -> str:
        prefix = "ERROR" if self.severity == ValidationSeverity.ERROR else "WARNING"
        result = f"[{prefix}] {self.field}: {self.message}"
        if self.suggestion:
            result += f"\n  Suggestion: {self.suggestion}"
        return result


def validate_monitor_config(
    config: MonitorConfig,
    min_period_minutes: int | None = None,
) -> list[ValidationResult]:
    """Validate a monitor configuration.

    Args:
        config: Configuration to validate.
        min_period_minutes: Lower bound for the period (default: from settings).

    Returns:
        List of validation results (empty if all checks pass).
    """
    if min_period_minutes is None:
        min_period_minutes = get_settings().min_period_minutes

    results: list[ValidationResult] = []
    results.extend(_validate_period(config, min_period_minutes))
    results.extend(_validate_url(config))
    results.extend(_validate_expected_value(config))
    return results


def validate_or_raise(
    config: MonitorConfig,
    min_period_minutes: int | None = None,
) -> None:
    """Validate a monitor configuration and raise if errors are found.

    Args:
        config: Configuration to validate.
        min_period_minutes: Lower bound for the period (default: from settings).

    Raises:
        ConfigInvalidError: If any validation errors are found.
    """
    results = validate_monitor_config(config, min_period_minutes)
    errors = [r for r in results if r.severity == ValidationSeverity.ERROR]

    if errors:
        error_messages = "\n".join(str(e) for e in errors)
        raise ConfigInvalidError(
            f"Configuration validation failed:\n{error_messages}",
            results=errors,
        )

    for warning in (r for r in results if r.severity == ValidationSeverity.WARNING):
        logger.warning("config_validation_warning", field=warning.field, message=warning.message)


# =============================================================================
# Validators
# =============================================================================


def _validate_period(config: MonitorConfig, min_period_minutes: int) -> list[ValidationResult]:
    """Validate the check period."""
    if config.period_minutes < min_period_minutes:
        return [
            ValidationResult(
                field="period_minutes",
                severity=ValidationSeverity.ERROR,
                message=f"The interval cannot be less than {min_period_minutes} minutes",
                suggestion=f"Use a period of at least {min_period_minutes} minutes",
            )
        ]
    return []


def _validate_url(config: MonitorConfig) -> list[ValidationResult]:
    """Validate the monitored URL."""
    if not config.url:
        return [
            ValidationResult(
                field="url",
                severity=ValidationSeverity.ERROR,
                message="Link cannot be empty",
            )
        ]

    parsed = urlparse(config.url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return [
            ValidationResult(
                field="url",
                severity=ValidationSeverity.WARNING,
                message=f"URL does not look like an http(s) address: {config.url[:40]}",
                suggestion="Expected format: https://host/path",
            )
        ]
    return []


def _validate_expected_value(config: MonitorConfig) -> list[ValidationResult]:
    """Validate the expected date token."""
    if not config.expected_value:
        return [
            ValidationResult(
                field="expected_value",
                severity=ValidationSeverity.ERROR,
                message="Target phrase cannot be empty",
            )
        ]
    return []
