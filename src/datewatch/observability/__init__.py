"""Observability module for datewatch.

Prometheus metrics for check cycles, alarm state and scheduling.

Usage:
    from datewatch.observability import observe_check_duration, record_check

    with observe_check_duration() as ctx:
        verdict = await engine.evaluate(config)
        ctx["verdict"] = "match"
"""

from datewatch.observability.metrics import (
    ALARM_STATE,
    ALARM_TRANSITIONS,
    CHECK_COUNT,
    CHECK_DURATION,
    PERIODIC_JOB_RUNS,
    SCHEDULE_RECONFIGURATIONS,
    MetricsConfig,
    MetricsManager,
    create_metrics_manager,
    get_metrics,
    get_metrics_manager,
    observe_check_duration,
    record_alarm_transition,
    record_check,
    record_periodic_job_run,
    record_schedule_reconfiguration,
    set_alarm_state,
)

__all__ = [
    "ALARM_STATE",
    "ALARM_TRANSITIONS",
    "CHECK_COUNT",
    "CHECK_DURATION",
    "PERIODIC_JOB_RUNS",
    "SCHEDULE_RECONFIGURATIONS",
    "MetricsConfig",
    "MetricsManager",
    "create_metrics_manager",
    "get_metrics",
    "get_metrics_manager",
    "observe_check_duration",
    "record_alarm_transition",
    "record_check",
    "record_periodic_job_run",
    "record_schedule_reconfiguration",
    "set_alarm_state",
]
