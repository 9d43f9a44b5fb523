"""Alarm presentation collaborators."""

from datewatch.alerts.presenter import (
    AlertPresenter,
    ConsoleAlertPresenter,
    MockAlertPresenter,
    PresenterCall,
    SoundPlayer,
    TerminalBell,
)

__all__ = [
    "AlertPresenter",
    "ConsoleAlertPresenter",
    "MockAlertPresenter",
    "PresenterCall",
    "SoundPlayer",
    "TerminalBell",
]
