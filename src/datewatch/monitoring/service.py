"""External entry points into the monitor.

``MonitorService`` is what a user interface talks to: it validates and
persists settings, flips the monitoring flag and drives the coordinator.
It also restores a session after a process restart when the flag says
monitoring should be running.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from datewatch.config.settings import Settings, get_settings
from datewatch.core.logging import get_logger, log_exception
from datewatch.monitoring.alarm_controller import AlarmConfig, AlarmController
from datewatch.monitoring.check_engine import CheckEngine
from datewatch.monitoring.coordinator import (
    CoordinatorConfig,
    MonitorCoordinator,
    SchedulerHandle,
)
from datewatch.monitoring.periodic_job import PeriodicCheckJob, PeriodicJobRunner
from datewatch.monitoring.types import (
    ConfigInvalidError,
    CycleResult,
    MonitorConfig,
    TriggerSource,
)
from datewatch.monitoring.validation import validate_or_raise

if TYPE_CHECKING:
    from datewatch.alerts.presenter import AlertPresenter
    from datewatch.fetch.content_fetcher import ContentFetcher
    from datewatch.storage.settings_store import SettingsStore

logger = get_logger(__name__)


class MonitorService:
    """Session control, settings and manual checks for the monitor.

    Attributes:
        coordinator: Coordinator running the cycles.
        store: Persisted settings.
        job_runner: Optional in-process host of the periodic job.
    """

    def __init__(
        self,
        coordinator: MonitorCoordinator,
        store: SettingsStore,
        job_runner: PeriodicJobRunner | None = None,
        fetcher: ContentFetcher | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            coordinator: Coordinator running the cycles.
            store: Persisted settings.
            job_runner: Optional periodic job host, stopped on shutdown.
            fetcher: Optional fetcher, closed on shutdown if it supports it.
        """
        self.coordinator = coordinator
        self.store = store
        self.job_runner = job_runner
        self._fetcher = fetcher

    @property
    def min_period_minutes(self) -> int:
        return self.coordinator.config.min_period_minutes

    async def start_session(self, config: MonitorConfig | None = None) -> SchedulerHandle:
        """Start monitoring and remember that it should keep running.

        Args:
            config: Configuration to monitor. Defaults to the stored one.

        Returns:
            Handle of the new schedule.

        Raises:
            ConfigInvalidError: If the configuration is rejected. Nothing is
                persisted in that case.
        """
        config = config or self.store.get_config()
        validate_or_raise(config, min_period_minutes=self.min_period_minutes)

        self.store.set_config(config)
        self.store.set_monitoring_enabled(True)
        handle = await self.coordinator.activate(config)

        logger.info("session_started", url=config.url, period_minutes=config.period_minutes)
        return handle

    async def stop_session(self) -> None:
        """Stop monitoring and remember that it should stay stopped."""
        self.store.set_monitoring_enabled(False)
        await self.coordinator.deactivate()
        logger.info("session_stopped")

    async def apply_settings(self, config: MonitorConfig) -> CycleResult:
        """Save new settings and check them right away.

        If monitoring is enabled the running session picks up the new
        configuration (or a session is started if none is running).

        Args:
            config: New configuration.

        Returns:
            Result of the immediate check.

        Raises:
            ConfigInvalidError: If the configuration is rejected. Nothing is
                persisted or scheduled in that case.
        """
        validate_or_raise(config, min_period_minutes=self.min_period_minutes)
        self.store.set_config(config)
        logger.info(
            "settings_applied",
            url=config.url,
            expected_value=config.expected_value,
            period_minutes=config.period_minutes,
        )

        if self.store.get_monitoring_enabled():
            if self.coordinator.is_active:
                await self.coordinator.update_config(config)
            else:
                await self.coordinator.activate(config)
        else:
            await self.coordinator.update_config(config)

        return await self.coordinator.run_once(TriggerSource.MANUAL, config)

    async def check_now(self) -> CycleResult:
        """Run one check with the stored configuration."""
        return await self.coordinator.run_once(TriggerSource.MANUAL, self.store.get_config())

    async def restore(self) -> bool:
        """Resume monitoring after a restart if the flag is set.

        Returns:
            True if a session was started.
        """
        if not self.store.get_monitoring_enabled():
            logger.info("session_restore_skipped", reason="monitoring_disabled")
            return False

        config = self.store.get_config()
        try:
            await self.coordinator.activate(config)
        except ConfigInvalidError as e:
            logger.warning("session_restore_failed", error=e.message, **e.details)
            return False

        logger.info("session_restored", url=config.url, period_minutes=config.period_minutes)
        return True

    async def sync_with_store(self) -> None:
        """Follow the persisted monitoring flag.

        Another process (``datewatch stop`` / ``datewatch start``) may have
        flipped the flag; the running session is stopped or restored to match.
        """
        enabled = self.store.get_monitoring_enabled()
        if not enabled and self.coordinator.is_active:
            logger.info("session_stopped_externally")
            await self.coordinator.deactivate()
        elif enabled and not self.coordinator.is_active:
            await self.restore()

    async def follow_store(self, poll_interval: float) -> None:
        """Run ``sync_with_store`` every ``poll_interval`` seconds until cancelled."""
        while True:
            try:
                await self.sync_with_store()
            except Exception as e:
                log_exception(logger, e, operation="sync_with_store")
            await asyncio.sleep(poll_interval)

    async def acknowledge(self) -> bool:
        """Silence the alarm at the user's request."""
        return await self.coordinator.acknowledge()

    def status(self) -> dict[str, Any]:
        """Get service status summary."""
        config = self.store.get_config()
        return {
            "monitoring_enabled": self.store.get_monitoring_enabled(),
            "last_match": self.store.get_last_match(),
            "stored_config": config.model_dump(),
            "coordinator": self.coordinator.status(),
            "job_runner": self.job_runner.get_status() if self.job_runner else None,
        }

    async def shutdown(self) -> None:
        """Release everything without changing the monitoring flag."""
        if self.job_runner is not None:
            await self.job_runner.stop()
        await self.coordinator.deactivate()

        aclose = getattr(self._fetcher, "aclose", None)
        if aclose is not None:
            await aclose()
        logger.info("service_shutdown")


# =============================================================================
# Factory Function
# =============================================================================


def create_monitor_service(
    settings: Settings | None = None,
    *,
    store: SettingsStore | None = None,
    fetcher: ContentFetcher | None = None,
    presenter: AlertPresenter | None = None,
    coordinator_config: CoordinatorConfig | None = None,
) -> MonitorService:
    """Create a monitor service wired with default or provided components.

    Args:
        settings: Application settings (cached settings if not provided).
        store: Settings store. Uses the JSON file store if not provided.
        fetcher: Content fetcher. Uses the HTTP fetcher if not provided.
        presenter: Alert presenter. Uses the console presenter if not provided.
        coordinator_config: Optional coordinator configuration.

    Returns:
        Configured MonitorService instance with a periodic job runner.
    """
    from datewatch.alerts.presenter import ConsoleAlertPresenter
    from datewatch.fetch.content_fetcher import HttpContentFetcher
    from datewatch.storage.settings_store import JsonFileSettingsStore

    settings = settings or get_settings()
    store = store or JsonFileSettingsStore(settings.resolved_state_file(), settings.defaults)
    fetcher = fetcher or HttpContentFetcher(
        timeout_seconds=settings.http_timeout_seconds,
        user_agent=settings.user_agent,
        marker=settings.script_marker,
    )
    presenter = presenter or ConsoleAlertPresenter(
        title=settings.alarm_notice_title,
        bell_interval=settings.bell_interval_seconds,
    )

    coordinator_config = coordinator_config or CoordinatorConfig.from_settings(settings)
    alarm_controller = AlarmController(
        presenter=presenter,
        store=store,
        config=AlarmConfig(
            default_timeout=coordinator_config.session_alarm_timeout,
            notice_title=settings.alarm_notice_title,
        ),
    )
    coordinator = MonitorCoordinator(
        check_engine=CheckEngine(fetcher),
        alarm_controller=alarm_controller,
        config=coordinator_config,
        session_guard=store.get_monitoring_enabled,
    )
    job_runner = PeriodicJobRunner(
        PeriodicCheckJob(coordinator, store),
        interval=settings.job_interval,
        retry_attempts=settings.job_retry_attempts,
        retry_backoff_seconds=settings.job_retry_backoff_seconds,
    )

    return MonitorService(coordinator, store, job_runner=job_runner, fetcher=fetcher)
