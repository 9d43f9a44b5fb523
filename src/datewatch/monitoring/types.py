"""Types and data models for the monitoring module.

Defines the monitor configuration snapshot, check verdicts, alarm states,
cycle results, and the errors raised by the monitoring core.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from datewatch.utils.exceptions import ConfigurationError, DatewatchError

# =============================================================================
# Enums
# =============================================================================


class AlarmState(str, Enum):
    """State of the alarm owned by the alarm controller."""

    IDLE = "idle"  # No mismatch outstanding
    SOUNDING = "sounding"  # Alarm asserted, auto-timeout armed
    SILENCED = "silenced"  # Mismatch outstanding, user acknowledged or timed out


class ErrorKind(str, Enum):
    """Kinds of errors the monitoring core distinguishes."""

    NETWORK = "network"  # Connection failure or timeout
    PARSE_FAILURE = "parse_failure"  # Marker or date pattern absent
    CONFIG_INVALID = "config_invalid"  # Rejected at configuration time


class TriggerSource(str, Enum):
    """What started a check cycle."""

    SCHEDULED = "scheduled"  # Coordinator's own periodic schedule
    MANUAL = "manual"  # Check now / settings applied
    PERIODIC_JOB = "periodic_job"  # Coarse external periodic job


class JobOutcome(str, Enum):
    """Outcome reported by the periodic job to its host scheduler."""

    SUCCESS = "success"
    RETRY = "retry"


# =============================================================================
# Configuration Models
# =============================================================================


class MonitorConfig(BaseModel):
    """Immutable snapshot of what to monitor and how often.

    Range checks (minimum period, blank fields) are applied by
    ``datewatch.monitoring.validation`` at the configuration entry points, so an
    invalid snapshot can still be built and then rejected.

    Attributes:
        url: Page to fetch.
        expected_value: Date token the page is expected to show.
        period_minutes: Minutes between scheduled checks.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    expected_value: str
    period_minutes: int

    @field_validator("url", "expected_value")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    def with_period(self, period_minutes: int) -> "MonitorConfig":
        """Return a copy of this snapshot with a different period."""
        return self.model_copy(update={"period_minutes": period_minutes})


# =============================================================================
# Verdicts
# =============================================================================


@dataclass(frozen=True)
class Match:
    """The observed token equals the expected value."""

    observed: str | None = None


@dataclass(frozen=True)
class Mismatch:
    """The observed token differs from the expected value."""

    observed: str


@dataclass(frozen=True)
class FetchFailed:
    """The page could not be fetched or the token could not be found."""

    cause: ErrorKind
    message: str = ""


CheckVerdict = Match | Mismatch | FetchFailed


def verdict_name(verdict: CheckVerdict) -> str:
    """Get a stable lowercase name for a verdict, used in logs and metrics."""
    match verdict:
        case Match():
            return "match"
        case Mismatch():
            return "mismatch"
        case FetchFailed():
            return "fetch_failed"
    raise TypeError(f"Unknown verdict: {verdict!r}")


# =============================================================================
# Cycle Records
# =============================================================================


@dataclass
class CycleResult:
    """Outcome of one check cycle, returned to whoever triggered it.

    Attributes:
        verdict: The verdict produced by the check engine.
        trigger: What started the cycle.
        started_at: When the cycle started.
        completed_at: When the verdict was delivered (or dropped).
        delivered: Whether the verdict reached the alarm controller.
        alarm_state: Alarm state after delivery.
    """

    verdict: CheckVerdict
    trigger: TriggerSource
    started_at: datetime
    completed_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    delivered: bool = True
    alarm_state: AlarmState = AlarmState.IDLE

    @property
    def fetch_failed(self) -> bool:
        """Check if the cycle ended without a conclusive verdict."""
        return isinstance(self.verdict, FetchFailed)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "verdict": verdict_name(self.verdict),
            "observed": getattr(self.verdict, "observed", None),
            "trigger": self.trigger.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "delivered": self.delivered,
            "alarm_state": self.alarm_state.value,
        }


# =============================================================================
# Exceptions
# =============================================================================


class MonitoringError(DatewatchError):
    """Base exception for monitoring errors."""

    def __init__(
        self,
        message: str,
        code: str = "MONITORING_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class MonitoringConfigError(MonitoringError, ConfigurationError):
    """Error with monitoring configuration."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: str = "CONFIG_ERROR",
    ) -> None:
        super().__init__(message, code=code, details=details)


class ConfigInvalidError(MonitoringConfigError):
    """A monitor configuration failed validation and was not accepted.

    Attributes:
        results: The validation results that caused the rejection.
    """

    kind = ErrorKind.CONFIG_INVALID

    def __init__(self, message: str, results: list[Any] | None = None) -> None:
        self.results = results or []
        super().__init__(
            message,
            details={"fields": [getattr(r, "field", str(r)) for r in self.results]},
            code="CONFIG_INVALID",
        )


class FetchError(MonitoringError):
    """The monitored page could not be fetched or parsed.

    Attributes:
        kind: NETWORK or PARSE_FAILURE.
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code=f"FETCH_{kind.name}", details=details)
        self.kind = kind


class MonitoringStateError(MonitoringError):
    """Operation not allowed in the coordinator's current state."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="STATE_ERROR", details=details)
