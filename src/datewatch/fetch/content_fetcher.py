"""Fetching and extraction of the monitored date token.

The monitored page embeds the current date inside a ``<script>`` block that
contains a fixed marker (``#minmax``), for example::

    $('#minmax').datepicker({ minDate: '...', text: '- 31.10.2025' });

The first ``DD.MM.YYYY`` preceded by a hyphen inside that block is the token.
"""

import asyncio
import re
import time
from typing import Protocol

import httpx
from bs4 import BeautifulSoup

from datewatch.config.settings import get_settings
from datewatch.core.logging import get_logger, log_external_call
from datewatch.monitoring.types import ErrorKind, FetchError

logger = get_logger(__name__)

DATE_TOKEN_PATTERN = re.compile(r"-\s*(\d{2}\.\d{2}\.\d{4})")
DEFAULT_SCRIPT_MARKER = "#minmax"


# =============================================================================
# Fetcher Protocol
# =============================================================================


class ContentFetcher(Protocol):
    """Protocol for retrieving the observed date token from a page."""

    async def fetch(self, url: str) -> str:
        """Fetch the page and extract its date token.

        Args:
            url: Page to fetch.

        Returns:
            The extracted ``DD.MM.YYYY`` token.

        Raises:
            FetchError: NETWORK on transport failure, PARSE_FAILURE when the
                token is not present.
        """
        ...


# =============================================================================
# Extraction
# =============================================================================


def extract_date_token(html: str, marker: str = DEFAULT_SCRIPT_MARKER) -> str:
    """Extract the date token from a page's marker script block.

    Args:
        html: Page markup.
        marker: Substring identifying the script block to search.

    Returns:
        The first date token found in a marker script block.

    Raises:
        FetchError: PARSE_FAILURE if no marker block holds a date token.
    """
    soup = BeautifulSoup(html, "html.parser")

    for script in soup.find_all("script"):
        if marker not in str(script):
            continue
        match = DATE_TOKEN_PATTERN.search(script.get_text())
        if match:
            return match.group(1)

    raise FetchError(
        "Failed to parse date in scripts",
        kind=ErrorKind.PARSE_FAILURE,
        details={"marker": marker},
    )


# =============================================================================
# HTTP Fetcher
# =============================================================================


class HttpContentFetcher:
    """Fetches the monitored page over HTTP and extracts its date token.

    Error statuses are not treated as failures on their own: the body is
    still searched, and a page without the token fails as PARSE_FAILURE.

    Usage:
        async with HttpContentFetcher() as fetcher:
            token = await fetcher.fetch("https://example.com/page.html")
    """

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        user_agent: str | None = None,
        marker: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            timeout_seconds: Request timeout (default from settings).
            user_agent: User-Agent header (default from settings).
            marker: Script marker substring (default from settings).
            transport: Optional httpx transport, used by tests.
        """
        settings = get_settings()
        self.timeout_seconds = timeout_seconds or settings.http_timeout_seconds
        self.user_agent = user_agent or settings.user_agent
        self.marker = marker or settings.script_marker
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "HttpContentFetcher":
        """Enter async context."""
        self._client = self._build_client()
        return self

    async def __aexit__(self, *args: object) -> None:
        """Exit async context."""
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout_seconds,
            headers={"User-Agent": self.user_agent},
            follow_redirects=True,
            transport=self._transport,
        )

    async def fetch(self, url: str) -> str:
        """Fetch the page and extract its date token.

        Args:
            url: Page to fetch.

        Returns:
            The extracted ``DD.MM.YYYY`` token.

        Raises:
            FetchError: NETWORK on transport failure, PARSE_FAILURE when the
                token is not present.
        """
        if self._client is None:
            self._client = self._build_client()

        start_time = time.perf_counter()
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            log_external_call(
                logger,
                service="monitored_page",
                operation="get",
                duration_ms=(time.perf_counter() - start_time) * 1000,
                success=False,
                error=str(e),
            )
            raise FetchError(
                f"Failed to fetch {url}: {e}",
                kind=ErrorKind.NETWORK,
                details={"url": url, "error_type": type(e).__name__},
            ) from e

        log_external_call(
            logger,
            service="monitored_page",
            operation="get",
            duration_ms=(time.perf_counter() - start_time) * 1000,
            success=True,
            status_code=response.status_code,
        )

        return extract_date_token(response.text, self.marker)


# =============================================================================
# Mock Fetcher (for testing/development)
# =============================================================================


class MockContentFetcher:
    """Mock fetcher returning a configurable token.

    Set ``token`` to change what the page shows, ``error`` to make every
    fetch fail, and ``gate`` to hold fetches until the event is set.
    """

    def __init__(self, token: str = "31.10.2025", error: ErrorKind | None = None) -> None:
        self.token = token
        self.error = error
        self.gate: asyncio.Event | None = None
        self.calls: list[str] = []

    async def fetch(self, url: str) -> str:
        """Return the configured token or raise the configured error."""
        self.calls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise FetchError("Mock fetch failure", kind=self.error, details={"url": url})
        return self.token
