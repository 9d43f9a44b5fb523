"""Monitor coordinator owning the periodic check schedule.

The coordinator drives check cycles from its own fixed-rate schedule and
from out-of-band triggers (check now, the coarse periodic job). Every cycle
reads its configuration snapshot when it starts, evaluates it with the
check engine and hands the verdict to the alarm controller exactly once.

At most one schedule handle is alive at a time. Replacing the period stops
and awaits the old schedule task before the new one is created; cycles that
the old schedule already started keep running and still deliver.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from datewatch.config.settings import Settings, get_settings
from datewatch.core.logging import LogContext, get_logger
from datewatch.monitoring.alarm_controller import AlarmController
from datewatch.monitoring.check_engine import CheckEngine
from datewatch.monitoring.types import (
    CycleResult,
    MonitorConfig,
    MonitoringStateError,
    TriggerSource,
    verdict_name,
)
from datewatch.monitoring.validation import validate_or_raise
from datewatch.observability.metrics import record_check, record_schedule_reconfiguration

logger = get_logger(__name__)


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class CoordinatorConfig:
    """Configuration for the monitor coordinator.

    Attributes:
        min_period_minutes: Smallest accepted check period.
        initial_delay: Grace delay before the first scheduled cycle.
        period_unit: Length of one period minute. Tests shorten it.
        session_alarm_timeout: Auto-silence timeout for alarms raised by
            scheduled and manual cycles.
        job_alarm_timeout: Auto-silence timeout for alarms raised by the
            periodic job.
    """

    min_period_minutes: int = 15
    initial_delay: timedelta = field(default_factory=lambda: timedelta(minutes=2))
    period_unit: timedelta = field(default_factory=lambda: timedelta(minutes=1))
    session_alarm_timeout: timedelta = field(default_factory=lambda: timedelta(minutes=10))
    job_alarm_timeout: timedelta = field(default_factory=lambda: timedelta(minutes=2))

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> CoordinatorConfig:
        """Build the coordinator configuration from application settings."""
        settings = settings or get_settings()
        return cls(
            min_period_minutes=settings.min_period_minutes,
            initial_delay=settings.initial_delay,
            session_alarm_timeout=settings.session_alarm_timeout,
            job_alarm_timeout=settings.job_alarm_timeout,
        )

    def alarm_timeout_for(self, trigger: TriggerSource) -> timedelta:
        """Get the auto-silence timeout used by a trigger path."""
        if trigger == TriggerSource.PERIODIC_JOB:
            return self.job_alarm_timeout
        return self.session_alarm_timeout

    def period_seconds(self, period_minutes: int) -> float:
        """Convert a period in minutes to seconds."""
        return self.period_unit.total_seconds() * period_minutes


# =============================================================================
# Schedule Handle
# =============================================================================


@dataclass
class SchedulerHandle:
    """Handle to the single live periodic schedule.

    Attributes:
        sequence: Increasing number of the handle within the coordinator.
        period_minutes: Period the schedule fires at.
        created_at: When the handle was created.
        task: Background task running the schedule loop.
        cancelled: Set once the handle has been torn down.
        cycles_started: Number of cycles this schedule has started.
    """

    sequence: int
    period_minutes: int
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    task: asyncio.Task[None] | None = None
    cancelled: bool = False
    cycles_started: int = 0

    @property
    def is_alive(self) -> bool:
        """Check if the schedule is still running."""
        return not self.cancelled and self.task is not None and not self.task.done()

    def cancel(self) -> None:
        """Mark the handle dead and cancel its task."""
        self.cancelled = True
        if self.task is not None:
            self.task.cancel()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "sequence": self.sequence,
            "period_minutes": self.period_minutes,
            "created_at": self.created_at.isoformat(),
            "alive": self.is_alive,
            "cycles_started": self.cycles_started,
        }


# =============================================================================
# Monitor Coordinator
# =============================================================================


class MonitorCoordinator:
    """Runs check cycles on a schedule and on demand.

    Example:
        coordinator = create_monitor_coordinator(engine, alarm_controller)
        await coordinator.activate(config)
        await coordinator.reconfigure_period(30)
        result = await coordinator.run_once()
        await coordinator.deactivate()

    Attributes:
        config: Coordinator configuration.
        check_engine: Engine evaluating each cycle.
        alarm_controller: Receiver of every verdict.
        session_guard: Optional check run before each scheduled cycle; a
            False result skips the cycle.
    """

    def __init__(
        self,
        check_engine: CheckEngine,
        alarm_controller: AlarmController,
        config: CoordinatorConfig | None = None,
        session_guard: Callable[[], bool] | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            check_engine: Engine evaluating each cycle.
            alarm_controller: Alarm controller receiving verdicts.
            config: Optional coordinator configuration.
            session_guard: Optional callable telling whether scheduled
                cycles should still run, for example the persisted
                monitoring flag.
        """
        self.config = config or CoordinatorConfig()
        self.check_engine = check_engine
        self.alarm_controller = alarm_controller
        self.session_guard = session_guard

        self._monitor_config: MonitorConfig | None = None
        self._active = False
        self._handle: SchedulerHandle | None = None
        self._handle_sequence = 0
        self._schedule_lock = asyncio.Lock()
        self._inflight: set[asyncio.Task[None]] = set()

    @property
    def is_active(self) -> bool:
        """Check if a monitoring session is running."""
        return self._active

    @property
    def handle(self) -> SchedulerHandle | None:
        """Get the live schedule handle, if any."""
        return self._handle

    @property
    def monitor_config(self) -> MonitorConfig | None:
        """Get the configuration snapshot used by the next cycle."""
        return self._monitor_config

    @property
    def inflight_cycles(self) -> int:
        """Get the number of scheduled cycles still running."""
        return len(self._inflight)

    # -------------------------------------------------------------------------
    # Session control
    # -------------------------------------------------------------------------

    async def activate(self, config: MonitorConfig) -> SchedulerHandle:
        """Start a monitoring session.

        An already active session is deactivated first, so exactly one
        schedule exists afterwards.

        Args:
            config: Configuration to monitor.

        Returns:
            Handle of the new schedule.

        Raises:
            ConfigInvalidError: If the configuration is rejected. Nothing is
                scheduled in that case.
        """
        validate_or_raise(config, min_period_minutes=self.config.min_period_minutes)

        async with self._schedule_lock:
            if self._active:
                logger.info("monitoring_reactivating")
                await self._teardown()

            self._monitor_config = config
            self._active = True
            handle = self._start_schedule(config.period_minutes, self.config.initial_delay)

        logger.info(
            "monitoring_activated",
            url=config.url,
            expected_value=config.expected_value,
            period_minutes=config.period_minutes,
            session=self.alarm_controller.epoch,
        )
        return handle

    async def reconfigure_period(self, period_minutes: int) -> SchedulerHandle:
        """Replace the schedule with one at a new period.

        The first cycle of the new schedule runs one new period later.
        Cycles already started by the old schedule complete and deliver.

        Args:
            period_minutes: New period in minutes.

        Returns:
            Handle of the new schedule.

        Raises:
            MonitoringStateError: If no session is active.
            ConfigInvalidError: If the period is below the minimum.
        """
        async with self._schedule_lock:
            if not self._active or self._monitor_config is None:
                raise MonitoringStateError(
                    "Cannot change the period while monitoring is stopped",
                    details={"period_minutes": period_minutes},
                )

            new_config = self._monitor_config.with_period(period_minutes)
            validate_or_raise(new_config, min_period_minutes=self.config.min_period_minutes)
            handle = await self._restart_schedule(new_config)

        record_schedule_reconfiguration()
        return handle

    async def update_config(self, config: MonitorConfig) -> None:
        """Replace the configuration snapshot.

        Later cycles use the new URL and expected value. If a session is
        active and the period changed, the schedule is replaced.

        Args:
            config: New configuration.

        Raises:
            ConfigInvalidError: If the configuration is rejected.
        """
        validate_or_raise(config, min_period_minutes=self.config.min_period_minutes)

        async with self._schedule_lock:
            previous = self._monitor_config
            self._monitor_config = config
            period_changed = previous is None or previous.period_minutes != config.period_minutes

            if self._active and period_changed:
                await self._restart_schedule(config)
                record_schedule_reconfiguration()

        logger.info("monitor_config_updated", url=config.url, period_minutes=config.period_minutes)

    async def deactivate(self) -> None:
        """Stop the session and release the schedule, cycles and timer.

        Returns only after the schedule task, the scheduled cycles and the
        alarm timer have finished, so an immediate re-activation cannot see
        any of them.
        """
        async with self._schedule_lock:
            was_active = self._active
            await self._teardown()

        if was_active:
            logger.info("monitoring_deactivated")

    # -------------------------------------------------------------------------
    # Cycles
    # -------------------------------------------------------------------------

    async def run_once(
        self,
        trigger: TriggerSource = TriggerSource.MANUAL,
        config: MonitorConfig | None = None,
    ) -> CycleResult:
        """Run one cycle outside the schedule.

        Allowed while no session is active. The standing schedule is not
        touched.

        Args:
            trigger: Trigger path of the cycle; selects the alarm timeout.
            config: Configuration to check. Defaults to the current snapshot.

        Returns:
            Result of the cycle.

        Raises:
            ConfigInvalidError: If the given configuration is rejected.
            MonitoringStateError: If there is nothing to check.
        """
        if config is not None:
            validate_or_raise(config, min_period_minutes=self.config.min_period_minutes)
        return await self._run_cycle(trigger, config)

    async def acknowledge(self) -> bool:
        """Silence the alarm at the user's request."""
        return await self.alarm_controller.acknowledge()

    def status(self) -> dict[str, Any]:
        """Get coordinator status summary.

        Returns:
            Dictionary with session, schedule and alarm status.
        """
        config = self._monitor_config
        return {
            "active": self._active,
            "url": config.url if config else None,
            "expected_value": config.expected_value if config else None,
            "period_minutes": config.period_minutes if config else None,
            "schedule": self._handle.to_dict() if self._handle else None,
            "inflight_cycles": len(self._inflight),
            "alarm": self.alarm_controller.get_status(),
        }

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _start_schedule(self, period_minutes: int, first_delay: timedelta) -> SchedulerHandle:
        self._handle_sequence += 1
        handle = SchedulerHandle(sequence=self._handle_sequence, period_minutes=period_minutes)
        handle.task = asyncio.create_task(
            self._schedule_loop(handle, first_delay.total_seconds()),
            name=f"datewatch_schedule_{handle.sequence}",
        )
        self._handle = handle

        logger.info(
            "schedule_started",
            sequence=handle.sequence,
            period_minutes=period_minutes,
            first_delay_seconds=first_delay.total_seconds(),
        )
        return handle

    async def _stop_schedule(self) -> None:
        handle = self._handle
        if handle is None:
            return

        self._handle = None
        handle.cancel()
        if handle.task is not None:
            await asyncio.gather(handle.task, return_exceptions=True)

        logger.info(
            "schedule_stopped",
            sequence=handle.sequence,
            cycles_started=handle.cycles_started,
        )

    async def _restart_schedule(self, config: MonitorConfig) -> SchedulerHandle:
        old_period = self._handle.period_minutes if self._handle else None
        await self._stop_schedule()
        self._monitor_config = config
        period = timedelta(seconds=self.config.period_seconds(config.period_minutes))
        handle = self._start_schedule(config.period_minutes, period)

        logger.info(
            "schedule_reconfigured",
            old_period_minutes=old_period,
            new_period_minutes=config.period_minutes,
        )
        return handle

    async def _teardown(self) -> None:
        self._active = False
        await self._stop_schedule()

        pending = list(self._inflight)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info("inflight_cycles_cancelled", count=len(pending))

        await self.alarm_controller.deactivate()

    async def _schedule_loop(self, handle: SchedulerHandle, first_delay: float) -> None:
        """Fire cycles at ``first_delay + k * period`` until cancelled."""
        loop = asyncio.get_running_loop()
        period = self.config.period_seconds(handle.period_minutes)
        next_fire = loop.time() + first_delay

        while not handle.cancelled:
            await asyncio.sleep(max(0.0, next_fire - loop.time()))
            if handle.cancelled:
                break

            try:
                handle.cycles_started += 1
                self._spawn_cycle(handle)
            except Exception as e:
                logger.error("schedule_loop_error", sequence=handle.sequence, error=str(e))

            next_fire += period
            now = loop.time()
            if next_fire <= now:
                missed = int((now - next_fire) // period) + 1
                next_fire += missed * period
                logger.warning("scheduled_cycles_skipped", sequence=handle.sequence, missed=missed)

    def _spawn_cycle(self, handle: SchedulerHandle) -> None:
        task = asyncio.create_task(
            self._run_scheduled_cycle(),
            name=f"datewatch_cycle_{handle.sequence}_{handle.cycles_started}",
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run_scheduled_cycle(self) -> None:
        try:
            if self.session_guard is not None and not self.session_guard():
                logger.info("scheduled_cycle_skipped", reason="session_disabled")
                return
            await self._run_cycle(TriggerSource.SCHEDULED)
        except Exception as e:
            logger.error("scheduled_cycle_failed", error=str(e))

    async def _run_cycle(
        self,
        trigger: TriggerSource,
        config: MonitorConfig | None = None,
    ) -> CycleResult:
        snapshot = config or self._monitor_config
        if snapshot is None:
            raise MonitoringStateError(
                "No monitor configuration to check",
                details={"trigger": trigger.value},
            )

        session = self.alarm_controller.epoch
        started_at = datetime.now(UTC)

        with LogContext(session=session, trigger=trigger.value):
            verdict = await self.check_engine.evaluate(snapshot)
            record_check(trigger.value, verdict_name(verdict))

            state = await self.alarm_controller.on_verdict(
                verdict,
                timeout=self.config.alarm_timeout_for(trigger),
                epoch=session,
            )
            result = CycleResult(
                verdict=verdict,
                trigger=trigger,
                started_at=started_at,
                delivered=state is not None,
                alarm_state=state or self.alarm_controller.state,
            )

            logger.info(
                "cycle_completed",
                verdict=verdict_name(verdict),
                observed=getattr(verdict, "observed", None),
                delivered=result.delivered,
                alarm_state=result.alarm_state.value,
            )

        return result


# =============================================================================
# Factory Function
# =============================================================================


def create_monitor_coordinator(
    check_engine: CheckEngine,
    alarm_controller: AlarmController,
    config: CoordinatorConfig | None = None,
) -> MonitorCoordinator:
    """Create a monitor coordinator.

    Args:
        check_engine: Engine evaluating each cycle.
        alarm_controller: Alarm controller receiving verdicts.
        config: Optional configuration. Built from settings if not provided.

    Returns:
        Configured MonitorCoordinator instance.
    """
    return MonitorCoordinator(
        check_engine=check_engine,
        alarm_controller=alarm_controller,
        config=config or CoordinatorConfig.from_settings(),
    )
