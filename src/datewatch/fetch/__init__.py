"""Page fetching and date token extraction."""

from datewatch.fetch.content_fetcher import (
    DATE_TOKEN_PATTERN,
    ContentFetcher,
    HttpContentFetcher,
    MockContentFetcher,
    extract_date_token,
)

__all__ = [
    "DATE_TOKEN_PATTERN",
    "ContentFetcher",
    "HttpContentFetcher",
    "MockContentFetcher",
    "extract_date_token",
]
