"""Unit tests for Prometheus metrics module."""

from __future__ import annotations

from unittest.mock import patch

from prometheus_client import REGISTRY, CollectorRegistry

from datewatch.observability.metrics import (
    ALARM_STATE,
    CHECK_COUNT,
    METRIC_PREFIX,
    MetricsConfig,
    MetricsManager,
    create_metrics_manager,
    get_metrics,
    observe_check_duration,
    record_alarm_transition,
    record_check,
    record_periodic_job_run,
    record_schedule_reconfiguration,
    set_alarm_state,
)


def sample(name: str, labels: dict[str, str] | None = None) -> float:
    """Read a sample from the default registry (0 if absent)."""
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class TestMetricsConfig:
    """Tests for MetricsConfig."""

    def test_default_config(self) -> None:
        """Test default configuration values."""
        config = MetricsConfig()

        assert config.enabled is True

    def test_from_settings(self, mock_settings) -> None:
        """Test the switch is read from application settings."""
        mock_settings.metrics_enabled = False

        config = MetricsConfig.from_settings(mock_settings)

        assert config.enabled is False

    def test_from_cached_settings(self, patch_settings) -> None:
        """Test the cached settings are used when none are given."""
        with patch("datewatch.observability.metrics.get_settings", return_value=patch_settings):
            assert MetricsConfig.from_settings().enabled is True

    def test_metric_names_use_fixed_prefix(self) -> None:
        """Test metric names are exported under the datewatch prefix."""
        assert METRIC_PREFIX == "datewatch"
        assert CHECK_COUNT._name == "datewatch_checks"


class TestMetricsManager:
    """Tests for MetricsManager."""

    def test_initialize(self) -> None:
        """Test initialization."""
        manager = MetricsManager(MetricsConfig())
        manager.initialize(service_version="1.0.0", environment="test")

        assert manager._initialized is True

    def test_initialize_disabled(self) -> None:
        """Test initialization when disabled."""
        manager = MetricsManager(MetricsConfig(enabled=False))

        manager.initialize()

        assert manager._initialized is False

    def test_custom_registry(self) -> None:
        """Test export from an empty custom registry."""
        manager = MetricsManager(registry=CollectorRegistry())

        assert manager.get_metrics() == b""

    def test_create_metrics_manager_sets_global(self) -> None:
        """Test the created manager backs get_metrics."""
        create_metrics_manager(MetricsConfig())

        output = get_metrics()

        assert b"datewatch_checks_total" in output


class TestRecordingFunctions:
    """Tests for recording helpers."""

    def test_record_check(self) -> None:
        """Test check counter by trigger and verdict."""
        labels = {"trigger": "manual", "verdict": "mismatch"}
        before = sample("datewatch_checks_total", labels)

        record_check("manual", "mismatch")

        assert sample("datewatch_checks_total", labels) == before + 1

    def test_observe_check_duration(self) -> None:
        """Test the histogram is labeled with the verdict set in the block."""
        labels = {"verdict": "match"}
        before = sample("datewatch_check_duration_seconds_count", labels)

        with observe_check_duration() as ctx:
            ctx["verdict"] = "match"

        assert sample("datewatch_check_duration_seconds_count", labels) == before + 1

    def test_alarm_transition_updates_gauge(self) -> None:
        """Test transitions count and move the state gauge."""
        labels = {"from_state": "idle", "to_state": "sounding"}
        before = sample("datewatch_alarm_transitions_total", labels)

        record_alarm_transition("idle", "sounding")

        assert sample("datewatch_alarm_transitions_total", labels) == before + 1
        assert sample("datewatch_alarm_state") == 1
        set_alarm_state("idle")
        assert sample("datewatch_alarm_state") == 0

    def test_alarm_state_gauge_object(self) -> None:
        """Test the gauge is exported under its name."""
        set_alarm_state("silenced")

        assert ALARM_STATE._value.get() == 2
        set_alarm_state("idle")

    def test_schedule_and_job_counters(self) -> None:
        """Test scheduling and job counters."""
        reconf_before = sample("datewatch_schedule_reconfigurations_total")
        retry_before = sample("datewatch_periodic_job_runs_total", {"outcome": "retry"})

        record_schedule_reconfiguration()
        record_periodic_job_run("retry")

        assert sample("datewatch_schedule_reconfigurations_total") == reconf_before + 1
        assert (
            sample("datewatch_periodic_job_runs_total", {"outcome": "retry"}) == retry_before + 1
        )
