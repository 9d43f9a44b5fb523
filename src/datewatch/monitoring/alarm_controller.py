"""Alarm state machine for the monitor.

Owns the alarm state and turns verdicts into presenter calls:

    IDLE --mismatch--> SOUNDING --acknowledge--> SILENCED
    SOUNDING --auto-timeout--> SILENCED
    {SOUNDING, SILENCED} --match--> IDLE
    * --deactivate--> IDLE

Every transition runs under a single ``asyncio.Lock``; this is the only
place where verdicts from independent trigger sources meet.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from datewatch.core.logging import get_logger
from datewatch.monitoring.types import (
    AlarmState,
    CheckVerdict,
    FetchFailed,
    Match,
    Mismatch,
)
from datewatch.observability.metrics import record_alarm_transition, set_alarm_state

if TYPE_CHECKING:
    from datewatch.alerts.presenter import AlertPresenter
    from datewatch.storage.settings_store import SettingsStore

logger = get_logger(__name__)


@dataclass
class AlarmConfig:
    """Configuration for the alarm controller.

    Attributes:
        default_timeout: Auto-silence timeout used when a verdict does not
            carry its own.
        notice_title: Title of the informational notice posted when an
            unacknowledged alarm times out.
    """

    default_timeout: timedelta = field(default_factory=lambda: timedelta(minutes=10))
    notice_title: str = "Phrase does not match"


class AlarmController:
    """Owns the alarm state and applies verdicts to it.

    Repeated identical verdicts are idempotent: a mismatch while the alarm
    is already sounding or silenced changes nothing, so two drivers that
    observe the same page produce a single alarm.

    Attributes:
        config: Alarm configuration.
        presenter: Collaborator that shows and hides the alarm.
        store: Settings store receiving the last-match flag.
    """

    def __init__(
        self,
        presenter: AlertPresenter,
        store: SettingsStore,
        config: AlarmConfig | None = None,
    ) -> None:
        """Initialize the alarm controller.

        Args:
            presenter: Alert presenter to drive.
            store: Settings store for the last-match flag.
            config: Optional alarm configuration.
        """
        self.config = config or AlarmConfig()
        self.presenter = presenter
        self.store = store

        self._state = AlarmState.IDLE
        self._lock = asyncio.Lock()
        self._timeout_task: asyncio.Task[None] | None = None
        self._timeout_deadline: datetime | None = None
        self._epoch = 0
        self._not_sounding = asyncio.Event()
        self._not_sounding.set()
        set_alarm_state(self._state.value)

    @property
    def state(self) -> AlarmState:
        """Get the current alarm state."""
        return self._state

    @property
    def epoch(self) -> int:
        """Get the alarm session number, incremented by every deactivation."""
        return self._epoch

    @property
    def timeout_pending(self) -> bool:
        """Check if an auto-timeout is armed."""
        return self._timeout_task is not None and not self._timeout_task.done()

    @property
    def timeout_deadline(self) -> datetime | None:
        """Get when the armed auto-timeout fires, if any."""
        return self._timeout_deadline if self.timeout_pending else None

    async def on_verdict(
        self,
        verdict: CheckVerdict,
        *,
        timeout: timedelta | None = None,
        epoch: int | None = None,
    ) -> AlarmState | None:
        """Apply a verdict to the alarm state.

        Args:
            verdict: Verdict of a check cycle.
            timeout: Auto-silence timeout to arm if this verdict starts the
                alarm. Defaults to ``config.default_timeout``.
            epoch: Alarm session the cycle started in. A verdict from an
                earlier session is dropped.

        Returns:
            The alarm state after the verdict was applied, or None if the
            verdict was dropped as stale.
        """
        async with self._lock:
            if epoch is not None and epoch != self._epoch:
                logger.info("stale_verdict_dropped", epoch=epoch, current_epoch=self._epoch)
                return None

            match verdict:
                case Match():
                    if self._state in (AlarmState.SOUNDING, AlarmState.SILENCED):
                        self._cancel_timeout()
                        self._transition(AlarmState.IDLE)
                        self._present("withdraw_alarm")
                    self._persist_last_match(True)

                case Mismatch(observed=observed):
                    if self._state == AlarmState.IDLE:
                        self._transition(AlarmState.SOUNDING, observed=observed)
                        self._present("assert_alarm")
                        self._arm_timeout(
                            timeout if timeout is not None else self.config.default_timeout
                        )
                        self._persist_last_match(False)
                    else:
                        logger.debug(
                            "mismatch_already_outstanding",
                            state=self._state.value,
                            observed=observed,
                        )

                case FetchFailed(cause=cause):
                    logger.info("verdict_inconclusive", cause=cause.value, state=self._state.value)

            return self._state

    async def wait_until_not_sounding(self) -> AlarmState:
        """Wait until the alarm is acknowledged, times out or is withdrawn.

        Returns immediately if the alarm is not sounding.

        Returns:
            The alarm state once it has left SOUNDING.
        """
        await self._not_sounding.wait()
        return self._state

    async def acknowledge(self) -> bool:
        """Silence a sounding alarm at the user's request.

        Returns:
            True if the alarm was sounding and is now silenced.
        """
        async with self._lock:
            if self._state != AlarmState.SOUNDING:
                logger.debug("acknowledge_ignored", state=self._state.value)
                return False

            self._cancel_timeout()
            self._transition(AlarmState.SILENCED, reason="acknowledged")
            self._present("withdraw_alarm")
            return True

    async def on_auto_timeout(self) -> None:
        """Silence an unacknowledged alarm and post a notice."""
        async with self._lock:
            self._fire_timeout()

    async def deactivate(self) -> None:
        """Force the alarm to IDLE and release the timer."""
        async with self._lock:
            self._epoch += 1
            task = self._timeout_task
            self._cancel_timeout()
            if self._state != AlarmState.IDLE:
                self._transition(AlarmState.IDLE, reason="deactivated")
            self._present("withdraw_alarm")

        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def get_status(self) -> dict[str, object]:
        """Get alarm status summary."""
        deadline = self.timeout_deadline
        return {
            "state": self._state.value,
            "timeout_pending": self.timeout_pending,
            "timeout_deadline": deadline.isoformat() if deadline else None,
        }

    # -------------------------------------------------------------------------
    # Internals (called with the lock held)
    # -------------------------------------------------------------------------

    def _transition(self, new_state: AlarmState, **log_fields: object) -> None:
        old_state = self._state
        self._state = new_state
        if new_state == AlarmState.SOUNDING:
            self._not_sounding.clear()
        else:
            self._not_sounding.set()
        record_alarm_transition(old_state.value, new_state.value)
        logger.info(
            "alarm_state_changed",
            from_state=old_state.value,
            to_state=new_state.value,
            **log_fields,
        )

    def _arm_timeout(self, timeout: timedelta) -> None:
        self._cancel_timeout()
        self._timeout_deadline = datetime.now(UTC) + timeout
        self._timeout_task = asyncio.create_task(
            self._timeout_after(timeout.total_seconds()),
            name="datewatch_alarm_timeout",
        )

    def _cancel_timeout(self) -> None:
        if self._timeout_task is not None:
            if self._timeout_task is not asyncio.current_task():
                self._timeout_task.cancel()
            self._timeout_task = None
        self._timeout_deadline = None

    async def _timeout_after(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        async with self._lock:
            # Cancelled or re-armed while waiting for the lock
            if self._timeout_task is not asyncio.current_task():
                return
            self._fire_timeout()

    def _fire_timeout(self) -> None:
        self._cancel_timeout()
        if self._state != AlarmState.SOUNDING:
            return

        self._transition(AlarmState.SILENCED, reason="auto_timeout")
        self._present("withdraw_alarm")
        self._present("post_informational", self.config.notice_title)

    def _present(self, method: str, *args: str) -> None:
        try:
            getattr(self.presenter, method)(*args)
        except Exception as e:
            logger.error("presenter_call_failed", method=method, error=str(e))

    def _persist_last_match(self, matched: bool) -> None:
        try:
            self.store.set_last_match(matched)
        except Exception as e:
            logger.error("last_match_persist_failed", matched=matched, error=str(e))
