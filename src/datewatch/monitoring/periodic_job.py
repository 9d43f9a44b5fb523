"""Coarse periodic check job.

The job is the second, independent trigger path into the coordinator. It
takes no arguments: every run re-reads the monitoring flag and the
configuration from the settings store, so it keeps working across process
restarts. Its outcome is reported to the host scheduler as success or retry.

``PeriodicJobRunner`` hosts the job inside the process and applies retry
backoff; an external scheduler (cron, systemd timers) can instead call
``datewatch check`` which runs the job once and maps the outcome to an exit
code.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from datewatch.config.settings import get_settings
from datewatch.core.logging import get_logger, log_exception
from datewatch.monitoring.coordinator import MonitorCoordinator
from datewatch.monitoring.types import ConfigInvalidError, JobOutcome, TriggerSource
from datewatch.observability.metrics import record_periodic_job_run

if TYPE_CHECKING:
    from datewatch.storage.settings_store import SettingsStore

logger = get_logger(__name__)


# =============================================================================
# Periodic Check Job
# =============================================================================


class PeriodicCheckJob:
    """One run of the coarse periodic check.

    Attributes:
        coordinator: Coordinator running the cycle.
        store: Settings store read on every run.
    """

    def __init__(self, coordinator: MonitorCoordinator, store: SettingsStore) -> None:
        self.coordinator = coordinator
        self.store = store

    async def run(self) -> JobOutcome:
        """Run the job once.

        Returns:
            SUCCESS when monitoring is off, the stored configuration is
            invalid, or a cycle completed with a conclusive verdict. RETRY
            when the page could not be fetched or parsed.
        """
        outcome = await self._run()
        record_periodic_job_run(outcome.value)
        return outcome

    async def _run(self) -> JobOutcome:
        if not self.store.get_monitoring_enabled():
            logger.debug("periodic_job_skipped", reason="monitoring_disabled")
            if self.coordinator.is_active:
                logger.info("session_stopped_externally")
                await self.coordinator.deactivate()
            return JobOutcome.SUCCESS

        config = self.store.get_config()
        try:
            result = await self.coordinator.run_once(TriggerSource.PERIODIC_JOB, config)
        except ConfigInvalidError as e:
            logger.warning("periodic_job_config_invalid", error=e.message, **e.details)
            return JobOutcome.SUCCESS

        if result.fetch_failed:
            logger.info("periodic_job_retry_requested", cause=result.verdict.cause.value)
            return JobOutcome.RETRY
        return JobOutcome.SUCCESS


# =============================================================================
# In-Process Job Host
# =============================================================================


class PeriodicJobRunner:
    """Runs the periodic job on an interval with retry backoff.

    A RETRY outcome is retried with exponential backoff up to
    ``retry_attempts`` more times before waiting for the next interval.

    Usage:
        runner = PeriodicJobRunner(job, interval=timedelta(minutes=15))
        await runner.start()
        ...
        await runner.stop()
    """

    def __init__(
        self,
        job: PeriodicCheckJob,
        interval: timedelta | None = None,
        retry_attempts: int | None = None,
        retry_backoff_seconds: float | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            job: Job to run.
            interval: Time between runs (default from settings).
            retry_attempts: Extra attempts after a RETRY outcome.
            retry_backoff_seconds: Base of the exponential retry backoff.
        """
        settings = get_settings()
        self.job = job
        self.interval = interval or settings.job_interval
        self.retry_attempts = (
            settings.job_retry_attempts if retry_attempts is None else retry_attempts
        )
        self.retry_backoff_seconds = (
            settings.job_retry_backoff_seconds
            if retry_backoff_seconds is None
            else retry_backoff_seconds
        )

        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._last_run: datetime | None = None
        self._last_outcome: JobOutcome | None = None

    @property
    def is_running(self) -> bool:
        """Check if the runner is running."""
        return self._running

    @property
    def last_outcome(self) -> JobOutcome | None:
        """Get the outcome of the most recent run."""
        return self._last_outcome

    async def start(self) -> None:
        """Start running the job in the background."""
        if self._running:
            logger.warning("periodic_job_runner_already_running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name="datewatch_periodic_job")
        logger.info("periodic_job_runner_started", interval_seconds=self.interval.total_seconds())

    async def stop(self) -> None:
        """Stop the runner and wait for the background task."""
        if not self._running:
            return

        self._running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        logger.info("periodic_job_runner_stopped")

    async def run_now(self) -> JobOutcome:
        """Run the job once, retrying while it asks for a retry.

        Returns:
            The outcome of the last attempt.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts + 1),
            wait=wait_exponential(
                multiplier=self.retry_backoff_seconds,
                max=self.retry_backoff_seconds * 8,
            ),
            retry=retry_if_result(lambda outcome: outcome == JobOutcome.RETRY),
            retry_error_callback=lambda state: state.outcome.result(),
            before_sleep=self._log_retry,
        )
        outcome = await retrying(self.job.run)

        self._last_run = datetime.now(UTC)
        self._last_outcome = outcome
        return outcome

    def get_status(self) -> dict[str, Any]:
        """Get runner status summary."""
        return {
            "running": self._running,
            "interval_seconds": self.interval.total_seconds(),
            "last_run": self._last_run.isoformat() if self._last_run else None,
            "last_outcome": self._last_outcome.value if self._last_outcome else None,
        }

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_now()
            except Exception as e:
                log_exception(logger, e, job="periodic_check")

            await asyncio.sleep(self.interval.total_seconds())

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        sleep = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.info(
            "periodic_job_retrying",
            attempt=retry_state.attempt_number,
            sleep_seconds=sleep,
        )
