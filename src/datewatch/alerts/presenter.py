"""Alert presentation for the monitor.

The alarm controller drives an ``AlertPresenter``: it asserts the alarm
(sound plus an ongoing banner), withdraws it, and posts one-shot
informational notices. Presenters must return immediately and tolerate
redundant calls.
"""

import asyncio
import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, TextIO

from datewatch.core.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Presenter Protocol
# =============================================================================


class AlertPresenter(Protocol):
    """Protocol for surfacing the alarm to the user."""

    def assert_alarm(self) -> None:
        """Start the audible alarm and show the actionable banner."""
        ...

    def withdraw_alarm(self) -> None:
        """Stop the audible alarm and remove the banner."""
        ...

    def post_informational(self, title: str) -> None:
        """Post a one-shot informational notice."""
        ...


class SoundPlayer(Protocol):
    def play(self) -> None:
        ...


class TerminalBell:
    """Rings the terminal bell on a text stream."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stderr

    def play(self) -> None:
        try:
            self.stream.write("\a")
            self.stream.flush()
        except (OSError, ValueError):
            logger.exception("bell_failed")


# =============================================================================
# Console Presenter
# =============================================================================


class ConsoleAlertPresenter:
    """Presents the alarm on the console.

    While asserted, a background task plays the sound every
    ``bell_interval`` seconds. The banner and notices are written to the
    output stream and logged.
    """

    def __init__(
        self,
        *,
        title: str = "Phrase does not match",
        bell_interval: float = 2.0,
        sound: SoundPlayer | None = None,
        stream: TextIO | None = None,
    ) -> None:
        """Initialize the presenter.

        Args:
            title: Banner title shown while the alarm is asserted.
            bell_interval: Seconds between sounds while asserted.
            sound: Sound player (terminal bell by default).
            stream: Output stream for banner text (stderr by default).
        """
        self.title = title
        self.bell_interval = bell_interval
        self.stream = stream or sys.stderr
        self.sound = sound or TerminalBell(self.stream)
        self._asserted = False
        self._bell_task: asyncio.Task[None] | None = None

    @property
    def is_asserted(self) -> bool:
        """Check if the alarm is currently asserted."""
        return self._asserted

    def assert_alarm(self) -> None:
        """Start the sound loop and show the banner."""
        if self._asserted:
            return

        self._asserted = True
        self._write(f"*** {self.title} ***  (type 'ack' to silence)")
        logger.warning("alarm_asserted", title=self.title)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to host the sound task; play once
            self.sound.play()
            return
        self._bell_task = loop.create_task(self._bell_loop(), name="datewatch_alarm_bell")

    def withdraw_alarm(self) -> None:
        """Stop the sound loop and clear the banner."""
        if not self._asserted:
            return

        self._asserted = False
        if self._bell_task is not None:
            self._bell_task.cancel()
            self._bell_task = None
        logger.info("alarm_withdrawn")

    def post_informational(self, title: str) -> None:
        """Write a one-shot notice."""
        self._write(f"[notice] {title}")
        logger.info("informational_posted", title=title)

    async def _bell_loop(self) -> None:
        while self._asserted:
            self.sound.play()
            await asyncio.sleep(self.bell_interval)

    def _write(self, line: str) -> None:
        try:
            print(line, file=self.stream, flush=True)
        except (OSError, ValueError):
            logger.exception("presenter_write_failed")


# =============================================================================
# Mock Presenter (for testing/development)
# =============================================================================


@dataclass
class PresenterCall:
    """One recorded presenter call."""

    method: str
    args: tuple[Any, ...] = ()
    at: datetime = field(default_factory=lambda: datetime.now(UTC))


class MockAlertPresenter:
    """Mock presenter that records calls for testing."""

    def __init__(self, should_fail: bool = False) -> None:
        self.should_fail = should_fail
        self.calls: list[PresenterCall] = []
        self.asserted = False
        self.assert_count = 0
        self.withdraw_count = 0
        self.notices: list[str] = []

    def assert_alarm(self) -> None:
        """Record an assert; only a transition from withdrawn counts."""
        self.calls.append(PresenterCall("assert_alarm"))
        if self.should_fail:
            raise RuntimeError("Mock presenter failure")
        if not self.asserted:
            self.assert_count += 1
        self.asserted = True

    def withdraw_alarm(self) -> None:
        """Record a withdraw."""
        self.calls.append(PresenterCall("withdraw_alarm"))
        if self.should_fail:
            raise RuntimeError("Mock presenter failure")
        if self.asserted:
            self.withdraw_count += 1
        self.asserted = False

    def post_informational(self, title: str) -> None:
        """Record an informational notice."""
        self.calls.append(PresenterCall("post_informational", (title,)))
        if self.should_fail:
            raise RuntimeError("Mock presenter failure")
        self.notices.append(title)

    def method_names(self) -> list[str]:
        """Get the names of the recorded calls in order."""
        return [call.method for call in self.calls]
