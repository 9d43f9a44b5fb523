"""Single fetch-and-compare check cycle."""

from __future__ import annotations

from typing import TYPE_CHECKING

from datewatch.core.logging import get_logger
from datewatch.monitoring.types import (
    CheckVerdict,
    ErrorKind,
    FetchError,
    FetchFailed,
    Match,
    Mismatch,
    MonitorConfig,
    verdict_name,
)
from datewatch.observability.metrics import observe_check_duration

if TYPE_CHECKING:
    from datewatch.fetch.content_fetcher import ContentFetcher

logger = get_logger(__name__)


class CheckEngine:
    """Fetches the monitored page and compares its token to the expected value.

    ``evaluate`` never raises: every failure becomes a ``FetchFailed``
    verdict. It touches no shared state and is safe to run concurrently.
    """

    def __init__(self, fetcher: ContentFetcher) -> None:
        self.fetcher = fetcher

    async def evaluate(self, config: MonitorConfig) -> CheckVerdict:
        """Run one check against a configuration snapshot.

        Args:
            config: Snapshot taken at the start of the cycle.

        Returns:
            Match, Mismatch(observed) or FetchFailed(cause).
        """
        with observe_check_duration() as ctx:
            verdict = await self._evaluate(config)
            ctx["verdict"] = verdict_name(verdict)

        logger.debug("check_evaluated", url=config.url, verdict=verdict_name(verdict))
        return verdict

    async def _evaluate(self, config: MonitorConfig) -> CheckVerdict:
        try:
            observed = await self.fetcher.fetch(config.url)
        except FetchError as e:
            logger.warning("fetch_failed", url=config.url, kind=e.kind.value, error=e.message)
            return FetchFailed(cause=e.kind, message=e.message)
        except Exception as e:
            logger.exception("fetch_unexpected_error", url=config.url, error=str(e))
            return FetchFailed(cause=ErrorKind.NETWORK, message=str(e))

        if observed == config.expected_value:
            return Match(observed=observed)
        return Mismatch(observed=observed)
