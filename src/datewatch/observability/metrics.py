"""Prometheus metrics for datewatch observability.

This module provides Prometheus metrics for monitoring:
- Check cycles (verdicts per trigger source, fetch duration)
- Alarm state and transitions
- Schedule reconfigurations
- Periodic job outcomes
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

from datewatch.config.settings import Settings, get_settings

if TYPE_CHECKING:
    from collections.abc import Generator

__all__ = [
    "MetricsConfig",
    "MetricsManager",
    "CHECK_COUNT",
    "CHECK_DURATION",
    "ALARM_STATE",
    "ALARM_TRANSITIONS",
    "SCHEDULE_RECONFIGURATIONS",
    "PERIODIC_JOB_RUNS",
    "observe_check_duration",
    "record_check",
    "set_alarm_state",
    "record_alarm_transition",
    "record_schedule_reconfiguration",
    "record_periodic_job_run",
    "get_metrics",
    "create_metrics_manager",
]


@dataclass
class MetricsConfig:
    """Configuration for Prometheus metrics.

    Attributes:
        enabled: Whether metrics collection is enabled.
    """

    enabled: bool = True

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> MetricsConfig:
        """Create configuration from application settings."""
        settings = settings or get_settings()
        return cls(enabled=settings.metrics_enabled)


METRIC_PREFIX = "datewatch"

# Alarm states exported as gauge values
ALARM_STATE_VALUES = {"idle": 0, "sounding": 1, "silenced": 2}

# ============================================================================
# Check Metrics
# ============================================================================

CHECK_COUNT = Counter(
    f"{METRIC_PREFIX}_checks_total",
    "Total number of check cycles by verdict",
    ["trigger", "verdict"],
)

CHECK_DURATION = Histogram(
    f"{METRIC_PREFIX}_check_duration_seconds",
    "Time to fetch and evaluate the monitored page",
    ["verdict"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

# ============================================================================
# Alarm Metrics
# ============================================================================

ALARM_STATE = Gauge(
    f"{METRIC_PREFIX}_alarm_state",
    "Alarm state (0=idle, 1=sounding, 2=silenced)",
)

ALARM_TRANSITIONS = Counter(
    f"{METRIC_PREFIX}_alarm_transitions_total",
    "Alarm state transitions",
    ["from_state", "to_state"],
)

# ============================================================================
# Scheduling Metrics
# ============================================================================

SCHEDULE_RECONFIGURATIONS = Counter(
    f"{METRIC_PREFIX}_schedule_reconfigurations_total",
    "Number of times the check schedule was replaced",
)

PERIODIC_JOB_RUNS = Counter(
    f"{METRIC_PREFIX}_periodic_job_runs_total",
    "Periodic job runs by outcome",
    ["outcome"],
)

# Service info
SERVICE_INFO = Info(
    f"{METRIC_PREFIX}_service",
    "Service information",
)


class MetricsManager:
    """Manages Prometheus metrics configuration and export.

    This class handles:
    - Metrics configuration and initialization
    - Custom registry support for testing
    - Metrics text export
    """

    def __init__(
        self,
        config: MetricsConfig | None = None,
        registry: CollectorRegistry | None = None,
    ) -> None:
        """Initialize the metrics manager.

        Args:
            config: Metrics configuration.
            registry: Optional custom registry for testing.
        """
        self.config = config or MetricsConfig()
        self.registry = registry or REGISTRY
        self._initialized = False

    def initialize(
        self,
        service_name: str = "datewatch",
        service_version: str = "0.1.0",
        environment: str = "development",
    ) -> None:
        """Initialize metrics with service information.

        Args:
            service_name: Name of the service.
            service_version: Version of the service.
            environment: Deployment environment.
        """
        if self._initialized or not self.config.enabled:
            return

        SERVICE_INFO.info(
            {
                "name": service_name,
                "version": service_version,
                "environment": environment,
            }
        )

        self._initialized = True

    def get_metrics(self) -> bytes:
        """Generate metrics output in Prometheus format.

        Returns:
            Prometheus metrics as bytes.
        """
        return generate_latest(self.registry)


# Global metrics manager
_metrics_manager: MetricsManager | None = None


def get_metrics_manager() -> MetricsManager:
    """Get the global metrics manager instance."""
    global _metrics_manager
    if _metrics_manager is None:
        _metrics_manager = MetricsManager(MetricsConfig.from_settings())
    return _metrics_manager


def create_metrics_manager(
    config: MetricsConfig | None = None,
    registry: CollectorRegistry | None = None,
) -> MetricsManager:
    """Create and register a new metrics manager.

    Args:
        config: Optional metrics configuration.
        registry: Optional custom registry.

    Returns:
        The configured MetricsManager instance.
    """
    global _metrics_manager
    _metrics_manager = MetricsManager(config, registry)
    return _metrics_manager


def get_metrics() -> bytes:
    """Get current metrics in Prometheus format.

    Returns:
        Prometheus metrics as bytes.
    """
    return get_metrics_manager().get_metrics()


# ============================================================================
# Convenience Functions for Recording Metrics
# ============================================================================


@contextmanager
def observe_check_duration() -> Generator[dict[str, Any], None, None]:
    """Context manager for observing how long a check takes.

    Yields:
        Context dict; set ``verdict`` before leaving the block.
    """
    context: dict[str, Any] = {"verdict": "fetch_failed"}
    start_time = time.perf_counter()

    try:
        yield context
    finally:
        duration = time.perf_counter() - start_time
        CHECK_DURATION.labels(verdict=context.get("verdict", "fetch_failed")).observe(duration)


def record_check(trigger: str, verdict: str) -> None:
    """Record a completed check cycle.

    Args:
        trigger: Trigger source of the cycle.
        verdict: Verdict name (match, mismatch, fetch_failed).
    """
    CHECK_COUNT.labels(trigger=trigger, verdict=verdict).inc()


def set_alarm_state(state: str) -> None:
    """Set the current alarm state gauge.

    Args:
        state: State (idle, sounding, silenced).
    """
    ALARM_STATE.set(ALARM_STATE_VALUES.get(state.lower(), 0))


def record_alarm_transition(from_state: str, to_state: str) -> None:
    """Record an alarm state transition and update the state gauge.

    Args:
        from_state: Previous state.
        to_state: New state.
    """
    ALARM_TRANSITIONS.labels(from_state=from_state, to_state=to_state).inc()
    set_alarm_state(to_state)


def record_schedule_reconfiguration() -> None:
    """Record that the check schedule was replaced."""
    SCHEDULE_RECONFIGURATIONS.inc()


def record_periodic_job_run(outcome: str) -> None:
    """Record a periodic job run.

    Args:
        outcome: Job outcome (success, retry).
    """
    PERIODIC_JOB_RUNS.labels(outcome=outcome).inc()
