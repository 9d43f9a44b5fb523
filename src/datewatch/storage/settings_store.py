"""Persisted key-value settings used by the monitor.

Holds the monitor configuration (URL, expected value, period), the
monitoring-enabled flag and the last match result. All operations are
synchronous and last-write-wins.
"""

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ValidationError

from datewatch.config.settings import MonitorDefaults, get_settings
from datewatch.core.logging import get_logger
from datewatch.monitoring.types import MonitorConfig

logger = get_logger(__name__)


# =============================================================================
# Storage Protocol
# =============================================================================


class SettingsStore(Protocol):
    """Protocol for persisted monitor settings."""

    def get_config(self) -> MonitorConfig:
        """Get the stored monitor configuration (defaults if unset)."""
        ...

    def set_config(self, config: MonitorConfig) -> None:
        """Store the monitor configuration."""
        ...

    def get_monitoring_enabled(self) -> bool:
        """Check whether monitoring is supposed to be active."""
        ...

    def set_monitoring_enabled(self, enabled: bool) -> None:
        """Set whether monitoring is supposed to be active."""
        ...

    def get_last_match(self) -> bool:
        """Get whether the last conclusive check was a match."""
        ...

    def set_last_match(self, matched: bool) -> None:
        """Store whether the last conclusive check was a match."""
        ...


class StoredSettings(BaseModel):
    """On-disk representation of the settings store."""

    url: str
    expected_value: str
    period_minutes: int
    monitoring_enabled: bool = False
    last_match: bool = True

    @classmethod
    def from_defaults(cls, defaults: MonitorDefaults) -> "StoredSettings":
        """Build the initial record from configured defaults."""
        return cls(
            url=defaults.url,
            expected_value=defaults.expected_value,
            period_minutes=defaults.period_minutes,
        )

    def to_config(self) -> MonitorConfig:
        """Get the monitor configuration part of the record."""
        return MonitorConfig(
            url=self.url,
            expected_value=self.expected_value,
            period_minutes=self.period_minutes,
        )


# =============================================================================
# In-Memory Store
# =============================================================================


class InMemorySettingsStore:
    """In-memory implementation of SettingsStore for testing."""

    def __init__(self, defaults: MonitorDefaults | None = None) -> None:
        self._record = StoredSettings.from_defaults(defaults or get_settings().defaults)

    def get_config(self) -> MonitorConfig:
        """Get the stored monitor configuration."""
        return self._record.to_config()

    def set_config(self, config: MonitorConfig) -> None:
        """Store the monitor configuration."""
        self._record = self._record.model_copy(
            update={
                "url": config.url,
                "expected_value": config.expected_value,
                "period_minutes": config.period_minutes,
            }
        )

    def get_monitoring_enabled(self) -> bool:
        """Check whether monitoring is supposed to be active."""
        return self._record.monitoring_enabled

    def set_monitoring_enabled(self, enabled: bool) -> None:
        """Set whether monitoring is supposed to be active."""
        self._record = self._record.model_copy(update={"monitoring_enabled": enabled})

    def get_last_match(self) -> bool:
        """Get whether the last conclusive check was a match."""
        return self._record.last_match

    def set_last_match(self, matched: bool) -> None:
        """Store whether the last conclusive check was a match."""
        self._record = self._record.model_copy(update={"last_match": matched})


# =============================================================================
# JSON File Store
# =============================================================================


class JsonFileSettingsStore:
    """SettingsStore backed by a JSON file.

    The file is re-read on every access so that a separate process (for
    example the periodic job run from cron) sees the latest values. Writes
    go to a temporary file that is then moved into place.
    """

    def __init__(self, path: Path | str, defaults: MonitorDefaults | None = None) -> None:
        """Initialize the store.

        Args:
            path: Location of the JSON file. Parent directories are created
                on first write.
            defaults: Values used while the file is missing or unreadable.
        """
        self.path = Path(path).expanduser()
        self._defaults = defaults or get_settings().defaults

    def get_config(self) -> MonitorConfig:
        """Get the stored monitor configuration."""
        return self._load().to_config()

    def set_config(self, config: MonitorConfig) -> None:
        """Store the monitor configuration."""
        self._update(
            url=config.url,
            expected_value=config.expected_value,
            period_minutes=config.period_minutes,
        )

    def get_monitoring_enabled(self) -> bool:
        """Check whether monitoring is supposed to be active."""
        return self._load().monitoring_enabled

    def set_monitoring_enabled(self, enabled: bool) -> None:
        """Set whether monitoring is supposed to be active."""
        self._update(monitoring_enabled=enabled)

    def get_last_match(self) -> bool:
        """Get whether the last conclusive check was a match."""
        return self._load().last_match

    def set_last_match(self, matched: bool) -> None:
        """Store whether the last conclusive check was a match."""
        self._update(last_match=matched)

    def _load(self) -> StoredSettings:
        """Load the record, falling back to defaults if missing or corrupt."""
        if not self.path.exists():
            return StoredSettings.from_defaults(self._defaults)

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("settings file does not contain an object")
            base = StoredSettings.from_defaults(self._defaults).model_dump()
            base.update(raw)
            return StoredSettings.model_validate(base)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("settings_file_unreadable", path=str(self.path), error=str(e))
            return StoredSettings.from_defaults(self._defaults)

    def _update(self, **changes: object) -> None:
        record = self._load().model_copy(update=changes)
        self._save(record)

    def _save(self, record: StoredSettings) -> None:
        """Persist the record atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Unique temp name per write; another process may be saving too
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(record.model_dump_json(indent=2))
            os.replace(tmp_name, self.path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise


def create_settings_store(path: Path | str | None = None) -> JsonFileSettingsStore:
    """Create the file-backed settings store.

    Args:
        path: Optional file location. Uses the configured state file if not
            provided.

    Returns:
        Configured JsonFileSettingsStore instance.
    """
    settings = get_settings()
    return JsonFileSettingsStore(path or settings.resolved_state_file(), settings.defaults)
