"""Feed retrieval for calendar sources.

One GET per source with a bounded timeout. Failures are raised as typed
``FeedError`` subclasses; there is no retry here because the aggregator prefers
serving cached occurrences over hammering a failing feed.
"""

import logging
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from calboard.calendar.exceptions import (
    FeedHTTPError,
    FeedTimeoutError,
    FeedUnreachableError,
)
from calboard.core.http_client import (
    get_shared_client,
    record_client_error,
    record_client_success,
)

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT_SECONDS = 10.0

ALLOWED_SCHEMES = ("http", "https")


class FeedFetcher:
    """Downloads raw iCalendar bytes for configured sources."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        default_timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize fetcher.

        Args:
            client: Optional HTTP client; the process-wide shared client is used when omitted
            default_timeout: Timeout in seconds for sources without their own timeout
        """
        self._client = client
        self._client_id = "feeds"
        self.default_timeout = default_timeout

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return await get_shared_client(self._client_id)

    def _validate_url(self, source_id: str, url: str) -> None:
        parsed = urlparse(url)
        if parsed.scheme.lower() not in ALLOWED_SCHEMES or not parsed.netloc:
            raise FeedUnreachableError(source_id, f"unsupported feed URL {url!r}")

    async def _record(self, ok: bool) -> None:
        # Health bookkeeping only applies to the shared pool
        if self._client is not None:
            return
        if ok:
            await record_client_success(self._client_id)
        else:
            await record_client_error(self._client_id)

    async def fetch(self, source: Any, timeout: Optional[float] = None) -> bytes:
        """Retrieve the raw feed body for a source.

        Args:
            source: Source configuration with ``id``, ``url`` and optional ``timeout``
            timeout: Explicit timeout overriding the source and default values

        Returns:
            Raw response body

        Raises:
            FeedUnreachableError: Invalid URL, DNS, connection or TLS failure
            FeedTimeoutError: No complete response within the timeout
            FeedHTTPError: Non-2xx response status
        """
        effective_timeout = timeout or getattr(source, "timeout", None) or self.default_timeout
        self._validate_url(source.id, source.url)

        client = await self._get_client()
        logger.debug("Fetching feed %s (timeout %.1fs)", source.id, effective_timeout)

        try:
            response = await client.get(source.url, timeout=httpx.Timeout(effective_timeout))
        except httpx.TimeoutException as e:
            await self._record(ok=False)
            logger.warning("Timeout fetching feed %s after %.1fs", source.id, effective_timeout)
            raise FeedTimeoutError(
                source.id, f"no response within {effective_timeout:g}s"
            ) from e
        except (httpx.TransportError, httpx.InvalidURL) as e:
            await self._record(ok=False)
            logger.warning("Feed %s unreachable: %s", source.id, e)
            raise FeedUnreachableError(source.id, f"network error: {e}") from e

        if not response.is_success:
            await self._record(ok=False)
            logger.warning(
                "Feed %s returned HTTP %d %s",
                source.id,
                response.status_code,
                response.reason_phrase,
            )
            raise FeedHTTPError(
                source.id,
                response.status_code,
                f"HTTP {response.status_code}: {response.reason_phrase}",
            )

        await self._record(ok=True)
        logger.debug("Fetched feed %s: %d bytes", source.id, len(response.content))
        return response.content
