"""Monitoring core for datewatch.

This module checks a remote page for an expected date token on a schedule,
derives an alarm state from each verdict and keeps at most one alarm and
one schedule alive while checks arrive from independent trigger sources.
"""

from datewatch.monitoring.types import (
    AlarmState,
    CheckVerdict,
    ConfigInvalidError,
    CycleResult,
    ErrorKind,
    FetchError,
    FetchFailed,
    JobOutcome,
    Match,
    Mismatch,
    MonitorConfig,
    MonitoringConfigError,
    MonitoringError,
    MonitoringStateError,
    TriggerSource,
    verdict_name,
)
from datewatch.monitoring.validation import (
    ValidationResult,
    ValidationSeverity,
    validate_monitor_config,
    validate_or_raise,
)
from datewatch.monitoring.check_engine import CheckEngine
from datewatch.monitoring.alarm_controller import AlarmConfig, AlarmController
from datewatch.monitoring.coordinator import (
    CoordinatorConfig,
    MonitorCoordinator,
    SchedulerHandle,
    create_monitor_coordinator,
)
from datewatch.monitoring.periodic_job import PeriodicCheckJob, PeriodicJobRunner
from datewatch.monitoring.service import MonitorService, create_monitor_service

__all__ = [
    # Types
    "AlarmState",
    "CheckVerdict",
    "CycleResult",
    "ErrorKind",
    "FetchFailed",
    "JobOutcome",
    "Match",
    "Mismatch",
    "MonitorConfig",
    "TriggerSource",
    "verdict_name",
    # Errors
    "ConfigInvalidError",
    "FetchError",
    "MonitoringConfigError",
    "MonitoringError",
    "MonitoringStateError",
    # Validation
    "ValidationResult",
    "ValidationSeverity",
    "validate_monitor_config",
    "validate_or_raise",
    # Check Engine
    "CheckEngine",
    # Alarm Controller
    "AlarmConfig",
    "AlarmController",
    # Coordinator
    "CoordinatorConfig",
    "MonitorCoordinator",
    "SchedulerHandle",
    "create_monitor_coordinator",
    # Periodic Job
    "PeriodicCheckJob",
    "PeriodicJobRunner",
    # Service
    "MonitorService",
    "create_monitor_service",
]
