"""Application settings loaded from environment variables."""

from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MonitorDefaults(BaseModel):
    """Values used when nothing has been stored yet."""

    url: str = "http://pagemonitor.office.com.ro/pagina1.html"
    """Page monitored when no custom URL is provided."""

    expected_value: str = "31.10.2025"
    """Target date compared against the parsed value."""

    period_minutes: int = 15
    """Polling interval between scheduled checks."""


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DATEWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Configuration
    environment: Literal["development", "production", "test"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_json: bool | None = None
    state_file: Path = Path("~/.datewatch/state.json")

    # Monitor defaults
    defaults: MonitorDefaults = MonitorDefaults()

    # Scheduling
    min_period_minutes: int = Field(default=15, ge=15)
    initial_delay_minutes: float = Field(default=2.0, ge=0)
    job_interval_minutes: float = Field(default=15.0, gt=0)
    job_retry_attempts: int = Field(default=3, ge=0)
    job_retry_backoff_seconds: float = Field(default=30.0, ge=0)
    store_poll_seconds: float = Field(default=5.0, gt=0)

    # Alarm
    session_alarm_timeout_minutes: float = Field(default=10.0, gt=0)
    job_alarm_timeout_minutes: float = Field(default=2.0, gt=0)
    alarm_notice_title: str = "Phrase does not match"
    bell_interval_seconds: float = Field(default=2.0, gt=0)

    # Fetching
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    user_agent: str = "Chrome"
    script_marker: str = "#minmax"

    # Observability
    metrics_enabled: bool = True

    @property
    def initial_delay(self) -> timedelta:
        """Grace delay before the first scheduled check."""
        return timedelta(minutes=self.initial_delay_minutes)

    @property
    def session_alarm_timeout(self) -> timedelta:
        """Auto-silence timeout for alarms raised by the session schedule."""
        return timedelta(minutes=self.session_alarm_timeout_minutes)

    @property
    def job_alarm_timeout(self) -> timedelta:
        """Auto-silence timeout for alarms raised by the periodic job."""
        return timedelta(minutes=self.job_alarm_timeout_minutes)

    @property
    def job_interval(self) -> timedelta:
        """Interval of the in-process periodic job host."""
        return timedelta(minutes=self.job_interval_minutes)

    def resolved_state_file(self) -> Path:
        """Get the settings file path with ``~`` expanded."""
        return self.state_file.expanduser()

    def use_json_logs(self) -> bool:
        """JSON logs when explicitly requested, otherwise in production."""
        if self.log_json is not None:
            return self.log_json
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
