"""Pytest fixtures for datewatch tests."""

from collections.abc import Generator
from datetime import timedelta
from unittest.mock import patch

import pytest
import structlog

from datewatch.alerts.presenter import MockAlertPresenter
from datewatch.config.settings import MonitorDefaults, Settings
from datewatch.fetch.content_fetcher import MockContentFetcher
from datewatch.monitoring.alarm_controller import AlarmConfig, AlarmController
from datewatch.monitoring.check_engine import CheckEngine
from datewatch.monitoring.coordinator import CoordinatorConfig, MonitorCoordinator
from datewatch.monitoring.types import MonitorConfig
from datewatch.storage.settings_store import InMemorySettingsStore

# =============================================================================
# Structlog Configuration Fixture
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_structlog_after_test():
    """Reset structlog configuration after each test.

    This ensures tests that modify structlog global state
    don't affect other tests.
    """
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def mock_settings(tmp_path) -> Settings:
    """Create mock settings for testing."""
    return Settings(
        environment="test",
        log_level="DEBUG",
        state_file=tmp_path / "state.json",
        defaults=MonitorDefaults(
            url="http://example.com/page.html",
            expected_value="31.10.2025",
            period_minutes=15,
        ),
        job_retry_backoff_seconds=0.0,
    )


@pytest.fixture
def patch_settings(mock_settings: Settings) -> Generator[Settings, None, None]:
    """Patch get_settings to return mock settings."""
    with (
        patch("datewatch.config.settings.get_settings", return_value=mock_settings),
        patch("datewatch.core.logging.get_settings", return_value=mock_settings),
        patch("datewatch.fetch.content_fetcher.get_settings", return_value=mock_settings),
        patch("datewatch.monitoring.periodic_job.get_settings", return_value=mock_settings),
        patch("datewatch.monitoring.validation.get_settings", return_value=mock_settings),
        patch("datewatch.storage.settings_store.get_settings", return_value=mock_settings),
    ):
        yield mock_settings


# =============================================================================
# Monitoring Fixtures
# =============================================================================


@pytest.fixture
def monitor_config() -> MonitorConfig:
    """Create a valid monitor configuration."""
    return MonitorConfig(
        url="http://example.com/page.html",
        expected_value="31.10.2025",
        period_minutes=15,
    )


@pytest.fixture
def store(monitor_config: MonitorConfig) -> InMemorySettingsStore:
    """Create an in-memory settings store seeded with the test config."""
    store = InMemorySettingsStore(
        MonitorDefaults(
            url=monitor_config.url,
            expected_value=monitor_config.expected_value,
            period_minutes=monitor_config.period_minutes,
        )
    )
    return store


@pytest.fixture
def presenter() -> MockAlertPresenter:
    """Create a recording presenter."""
    return MockAlertPresenter()


@pytest.fixture
def fetcher() -> MockContentFetcher:
    """Create a fetcher whose page shows the expected date."""
    return MockContentFetcher(token="31.10.2025")


@pytest.fixture
def alarm_controller(
    presenter: MockAlertPresenter, store: InMemorySettingsStore
) -> AlarmController:
    """Create an alarm controller with a short default timeout."""
    return AlarmController(
        presenter=presenter,
        store=store,
        config=AlarmConfig(default_timeout=timedelta(seconds=5)),
    )


@pytest.fixture
def coordinator_config() -> CoordinatorConfig:
    """Create a coordinator config where one period minute lasts 10 ms."""
    return CoordinatorConfig(
        initial_delay=timedelta(0),
        period_unit=timedelta(milliseconds=10),
        session_alarm_timeout=timedelta(seconds=5),
        job_alarm_timeout=timedelta(seconds=2),
    )


@pytest.fixture
def coordinator(
    fetcher: MockContentFetcher,
    alarm_controller: AlarmController,
    coordinator_config: CoordinatorConfig,
) -> MonitorCoordinator:
    """Create a coordinator wired to the mock collaborators."""
    return MonitorCoordinator(
        check_engine=CheckEngine(fetcher),
        alarm_controller=alarm_controller,
        config=coordinator_config,
    )
