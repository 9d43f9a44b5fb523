"""Unit tests for the monitor service."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from datewatch.alerts.presenter import MockAlertPresenter
from datewatch.fetch.content_fetcher import MockContentFetcher
from datewatch.monitoring.alarm_controller import AlarmController
from datewatch.monitoring.check_engine import CheckEngine
from datewatch.monitoring.coordinator import CoordinatorConfig, MonitorCoordinator
from datewatch.monitoring.periodic_job import PeriodicJobRunner
from datewatch.monitoring.service import MonitorService, create_monitor_service
from datewatch.monitoring.types import (
    AlarmState,
    ConfigInvalidError,
    Match,
    Mismatch,
    MonitorConfig,
    TriggerSource,
)
from datewatch.storage.settings_store import InMemorySettingsStore


@pytest.fixture
def quiet_coordinator(
    fetcher: MockContentFetcher, alarm_controller: AlarmController
) -> MonitorCoordinator:
    """Coordinator whose schedule does not fire during a test."""
    return MonitorCoordinator(
        check_engine=CheckEngine(fetcher),
        alarm_controller=alarm_controller,
        config=CoordinatorConfig(initial_delay=timedelta(seconds=60)),
    )


@pytest_asyncio.fixture
async def service(quiet_coordinator: MonitorCoordinator, store: InMemorySettingsStore):
    """Create a service and shut it down after the test."""
    service = MonitorService(quiet_coordinator, store)
    yield service
    await service.shutdown()


NEW_CONFIG = MonitorConfig(
    url="http://example.com/other.html",
    expected_value="01.11.2025",
    period_minutes=30,
)


# =============================================================================
# Session Control
# =============================================================================


class TestSessionControl:
    """Tests for start_session and stop_session."""

    @pytest.mark.asyncio
    async def test_start_session_persists_and_activates(
        self, service: MonitorService, store: InMemorySettingsStore
    ) -> None:
        """Test starting stores the config, sets the flag and schedules."""
        handle = await service.start_session(NEW_CONFIG)

        assert store.get_config() == NEW_CONFIG
        assert store.get_monitoring_enabled() is True
        assert service.coordinator.is_active is True
        assert handle.period_minutes == 30

    @pytest.mark.asyncio
    async def test_start_session_defaults_to_stored_config(
        self, service: MonitorService, monitor_config: MonitorConfig
    ) -> None:
        """Test the stored config is used when none is given."""
        await service.start_session()

        assert service.coordinator.monitor_config == monitor_config

    @pytest.mark.asyncio
    async def test_start_session_rejects_short_period(
        self, service: MonitorService, store: InMemorySettingsStore
    ) -> None:
        """Test an invalid config leaves everything untouched."""
        with pytest.raises(ConfigInvalidError):
            await service.start_session(NEW_CONFIG.with_period(5))

        assert store.get_monitoring_enabled() is False
        assert store.get_config().period_minutes == 15
        assert service.coordinator.is_active is False

    @pytest.mark.asyncio
    async def test_stop_session(
        self, service: MonitorService, store: InMemorySettingsStore
    ) -> None:
        """Test stopping clears the flag and the schedule."""
        await service.start_session()

        await service.stop_session()

        assert store.get_monitoring_enabled() is False
        assert service.coordinator.is_active is False
        assert service.coordinator.handle is None


# =============================================================================
# Settings
# =============================================================================


class TestApplySettings:
    """Tests for apply_settings."""

    @pytest.mark.asyncio
    async def test_checks_new_settings_immediately(
        self, service: MonitorService, store: InMemorySettingsStore, fetcher: MockContentFetcher
    ) -> None:
        """Test the new config is stored and checked right away."""
        fetcher.token = "01.11.2025"

        result = await service.apply_settings(NEW_CONFIG)

        assert store.get_config() == NEW_CONFIG
        assert fetcher.calls == [NEW_CONFIG.url]
        assert result.verdict == Match(observed="01.11.2025")
        assert result.trigger == TriggerSource.MANUAL

    @pytest.mark.asyncio
    async def test_disabled_monitoring_stays_inactive(self, service: MonitorService) -> None:
        """Test applying settings does not start a session on its own."""
        await service.apply_settings(NEW_CONFIG)

        assert service.coordinator.is_active is False
        assert service.coordinator.monitor_config == NEW_CONFIG

    @pytest.mark.asyncio
    async def test_enabled_monitoring_picks_up_new_period(
        self, service: MonitorService
    ) -> None:
        """Test a running session is rescheduled at the new period."""
        await service.start_session()
        first = service.coordinator.handle

        await service.apply_settings(NEW_CONFIG)

        handle = service.coordinator.handle
        assert handle is not first
        assert handle.period_minutes == 30
        assert first.is_alive is False

    @pytest.mark.asyncio
    async def test_enabled_but_inactive_activates(
        self, service: MonitorService, store: InMemorySettingsStore
    ) -> None:
        """Test an enabled flag without a session starts one."""
        store.set_monitoring_enabled(True)

        await service.apply_settings(NEW_CONFIG)

        assert service.coordinator.is_active is True

    @pytest.mark.asyncio
    async def test_invalid_settings_not_persisted(
        self, service: MonitorService, store: InMemorySettingsStore, fetcher: MockContentFetcher
    ) -> None:
        """Test rejected settings are neither stored nor checked."""
        with pytest.raises(ConfigInvalidError) as exc_info:
            await service.apply_settings(NEW_CONFIG.with_period(10))

        assert "The interval cannot be less than 15 minutes" in str(exc_info.value)
        assert store.get_config().period_minutes == 15
        assert fetcher.calls == []


# =============================================================================
# Checks and Restore
# =============================================================================


class TestCheckNow:
    """Tests for check_now and acknowledge."""

    @pytest.mark.asyncio
    async def test_check_now_uses_stored_config(
        self,
        service: MonitorService,
        store: InMemorySettingsStore,
        fetcher: MockContentFetcher,
    ) -> None:
        """Test a manual check reads the stored config."""
        store.set_config(NEW_CONFIG)
        fetcher.token = "02.11.2025"

        result = await service.check_now()

        assert fetcher.calls == [NEW_CONFIG.url]
        assert result.verdict == Mismatch(observed="02.11.2025")
        assert result.alarm_state == AlarmState.SOUNDING
        assert store.get_last_match() is False

    @pytest.mark.asyncio
    async def test_acknowledge(
        self, service: MonitorService, fetcher: MockContentFetcher, presenter: MockAlertPresenter
    ) -> None:
        """Test acknowledging silences a sounding alarm."""
        fetcher.token = "02.11.2025"
        await service.check_now()

        assert await service.acknowledge() is True
        assert await service.acknowledge() is False
        assert presenter.withdraw_count == 1


class TestRestore:
    """Tests for restore."""

    @pytest.mark.asyncio
    async def test_restore_skipped_when_disabled(self, service: MonitorService) -> None:
        """Test nothing starts when the flag is off."""
        assert await service.restore() is False
        assert service.coordinator.is_active is False

    @pytest.mark.asyncio
    async def test_restore_when_enabled(
        self, service: MonitorService, store: InMemorySettingsStore
    ) -> None:
        """Test the stored session resumes."""
        store.set_monitoring_enabled(True)

        assert await service.restore() is True
        assert service.coordinator.is_active is True

    @pytest.mark.asyncio
    async def test_restore_with_invalid_config(
        self, service: MonitorService, store: InMemorySettingsStore
    ) -> None:
        """Test an invalid stored config is reported, not raised."""
        store.set_monitoring_enabled(True)
        store.set_config(MonitorConfig(url="", expected_value="x", period_minutes=15))

        assert await service.restore() is False
        assert service.coordinator.is_active is False


class TestShutdown:
    """Tests for shutdown and status."""

    @pytest.mark.asyncio
    async def test_shutdown_keeps_flag(
        self, quiet_coordinator: MonitorCoordinator, store: InMemorySettingsStore
    ) -> None:
        """Test shutdown releases everything but remembers the flag."""
        runner = AsyncMock(spec=PeriodicJobRunner)
        fetcher = AsyncMock()
        service = MonitorService(quiet_coordinator, store, job_runner=runner, fetcher=fetcher)
        await service.start_session()

        await service.shutdown()

        runner.stop.assert_awaited_once()
        fetcher.aclose.assert_awaited_once()
        assert quiet_coordinator.is_active is False
        assert store.get_monitoring_enabled() is True

    @pytest.mark.asyncio
    async def test_status(self, service: MonitorService) -> None:
        """Test the status summary."""
        status = service.status()

        assert status["monitoring_enabled"] is False
        assert status["last_match"] is True
        assert status["stored_config"]["period_minutes"] == 15
        assert status["coordinator"]["active"] is False
        assert status["job_runner"] is None


class TestFollowStore:
    """Tests for following the persisted monitoring flag."""

    @pytest.mark.asyncio
    async def test_external_stop_deactivates(
        self, service: MonitorService, store: InMemorySettingsStore
    ) -> None:
        """Test clearing the flag from outside ends the running session."""
        await service.start_session()
        store.set_monitoring_enabled(False)

        await service.sync_with_store()

        assert service.coordinator.is_active is False
        assert service.coordinator.handle is None

    @pytest.mark.asyncio
    async def test_external_start_restores(
        self, service: MonitorService, store: InMemorySettingsStore
    ) -> None:
        """Test setting the flag from outside starts a session."""
        store.set_monitoring_enabled(True)

        await service.sync_with_store()

        assert service.coordinator.is_active is True

    @pytest.mark.asyncio
    async def test_matching_flag_changes_nothing(
        self, service: MonitorService, store: InMemorySettingsStore
    ) -> None:
        """Test an unchanged flag keeps the running schedule."""
        handle = await service.start_session()

        await service.sync_with_store()

        assert service.coordinator.handle is handle

    @pytest.mark.asyncio
    async def test_follow_store_polls(
        self, service: MonitorService, store: InMemorySettingsStore
    ) -> None:
        """Test the polling loop picks up a stop and survives store errors."""
        await service.start_session()
        follower = asyncio.create_task(service.follow_store(0.01))

        store.set_monitoring_enabled(False)
        await asyncio.sleep(0.05)
        follower.cancel()
        await asyncio.gather(follower, return_exceptions=True)

        assert service.coordinator.is_active is False

    @pytest.mark.asyncio
    async def test_follow_store_logs_errors(
        self, service: MonitorService, store: InMemorySettingsStore
    ) -> None:
        """Test an unreadable store does not end the loop."""
        store.get_monitoring_enabled = MagicMock(side_effect=OSError("disk gone"))
        follower = asyncio.create_task(service.follow_store(0.01))

        await asyncio.sleep(0.05)

        assert follower.done() is False
        assert store.get_monitoring_enabled.call_count >= 2
        follower.cancel()
        await asyncio.gather(follower, return_exceptions=True)


# =============================================================================
# Factory
# =============================================================================


class TestCreateMonitorService:
    """Tests for create_monitor_service."""

    @pytest.mark.asyncio
    async def test_wires_injected_components(
        self,
        patch_settings,
        store: InMemorySettingsStore,
        fetcher: MockContentFetcher,
        presenter: MockAlertPresenter,
    ) -> None:
        """Test injected components are used and a job runner is attached."""
        service = create_monitor_service(
            patch_settings, store=store, fetcher=fetcher, presenter=presenter
        )
        fetcher.token = "02.11.2025"

        result = await service.check_now()
        await service.shutdown()

        assert result.alarm_state == AlarmState.SOUNDING
        assert presenter.assert_count == 1
        assert service.job_runner is not None
        assert service.min_period_minutes == patch_settings.min_period_minutes

    def test_timeouts_from_settings(self, patch_settings, store: InMemorySettingsStore) -> None:
        """Test the alarm and coordinator timeouts come from settings."""
        service = create_monitor_service(
            patch_settings,
            store=store,
            fetcher=MockContentFetcher(),
            presenter=MockAlertPresenter(),
        )

        coordinator = service.coordinator
        assert coordinator.config.session_alarm_timeout == timedelta(minutes=10)
        assert coordinator.config.job_alarm_timeout == timedelta(minutes=2)
        assert coordinator.alarm_controller.config.default_timeout == timedelta(minutes=10)

    @pytest.mark.asyncio
    async def test_scheduled_cycles_follow_stored_flag(
        self,
        patch_settings,
        store: InMemorySettingsStore,
        fetcher: MockContentFetcher,
        presenter: MockAlertPresenter,
    ) -> None:
        """Test scheduled cycles stop once another process clears the flag."""
        service = create_monitor_service(
            patch_settings,
            store=store,
            fetcher=fetcher,
            presenter=presenter,
            coordinator_config=CoordinatorConfig(
                initial_delay=timedelta(0), period_unit=timedelta(milliseconds=2)
            ),
        )
        handle = await service.start_session()
        await asyncio.sleep(0.05)
        store.set_monitoring_enabled(False)
        await asyncio.sleep(0.01)
        calls = len(fetcher.calls)

        await asyncio.sleep(0.1)
        await service.shutdown()

        assert handle.cycles_started > 2
        assert len(fetcher.calls) == calls
