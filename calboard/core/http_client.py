"""Shared HTTP client pool for calendar feed retrieval.

One pooled httpx.AsyncClient is kept per client id so every refresh cycle reuses
connections instead of opening a fresh client per feed. A client that keeps
failing is closed and rebuilt on its next checkout.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

_DEFAULT_LIMITS = httpx.Limits(max_connections=8, max_keepalive_connections=4)

# Per-request timeouts are applied by the fetcher; this is the pool ceiling
_DEFAULT_TIMEOUT = httpx.Timeout(10.0)

# Some hosted calendars (Office365 in particular) reject obviously scripted clients
DEFAULT_FEED_HEADERS: dict[str, str] = {
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) calboard/1.0",
    "Accept": "text/calendar, text/plain, application/octet-stream, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
}

# Consecutive errors after which a client is rebuilt
HEALTH_ERROR_THRESHOLD = 3
# Errors older than this no longer count towards a rebuild
HEALTH_TIMEOUT_SECONDS = 300


@dataclass
class ClientHealth:
    """Consecutive-error bookkeeping for one pooled client."""

    created_at: float = field(default_factory=time.time)
    error_count: int = 0
    last_error_at: float = 0.0

    def needs_rebuild(self, now: float) -> bool:
        return (
            self.error_count >= HEALTH_ERROR_THRESHOLD
            and now - self.last_error_at < HEALTH_TIMEOUT_SECONDS
        )


class SharedClientPool:
    """Named httpx clients shared by every fetcher in the process."""

    def __init__(
        self,
        limits: httpx.Limits = _DEFAULT_LIMITS,
        timeout: httpx.Timeout = _DEFAULT_TIMEOUT,
    ) -> None:
        self.limits = limits
        self.timeout = timeout
        self._clients: dict[str, httpx.AsyncClient] = {}
        self._health: dict[str, ClientHealth] = {}
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    def _get_lock(self) -> asyncio.Lock:
        # asyncio locks cannot be shared across event loops
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    async def get(self, client_id: str) -> httpx.AsyncClient:
        """Return the pooled client for ``client_id``, building it when needed."""
        async with self._get_lock():
            health = self._health.get(client_id)
            if health is not None and health.needs_rebuild(time.time()):
                await self._discard(client_id, health)

            client = self._clients.get(client_id)
            if client is None or client.is_closed:
                client = self._build(client_id)
            return client

    def _build(self, client_id: str) -> httpx.AsyncClient:
        logger.debug(
            "Creating shared HTTP client '%s' (max_connections=%s)",
            client_id,
            self.limits.max_connections,
        )
        client = httpx.AsyncClient(
            limits=self.limits,
            timeout=self.timeout,
            follow_redirects=True,
            headers=DEFAULT_FEED_HEADERS,
        )
        self._clients[client_id] = client
        self._health[client_id] = ClientHealth()
        logger.info("Created shared HTTP client '%s'", client_id)
        return client

    async def _discard(self, client_id: str, health: ClientHealth) -> None:
        logger.warning(
            "Rebuilding HTTP client '%s' after %d consecutive errors",
            client_id,
            health.error_count,
        )
        client = self._clients.pop(client_id, None)
        self._health.pop(client_id, None)
        if client is not None and not client.is_closed:
            try:
                await client.aclose()
            except Exception as e:
                logger.warning("Error closing unhealthy client '%s': %s", client_id, e)

    async def record_error(self, client_id: str) -> None:
        async with self._get_lock():
            health = self._health.setdefault(client_id, ClientHealth())
            health.error_count += 1
            health.last_error_at = time.time()
            logger.debug(
                "Recorded error for client '%s' (%d consecutive)", client_id, health.error_count
            )

    async def record_success(self, client_id: str) -> None:
        async with self._get_lock():
            health = self._health.get(client_id)
            if health is not None:
                health.error_count = 0

    async def close_all(self) -> None:
        """Close every pooled client; called during shutdown."""
        async with self._get_lock():
            for client_id, client in self._clients.items():
                if client.is_closed:
                    continue
                try:
                    await client.aclose()
                except Exception as e:  # noqa: PERF203
                    logger.warning("Error closing shared HTTP client '%s': %s", client_id, e)
            self._clients.clear()
            self._health.clear()
        logger.debug("All shared HTTP clients closed")


_pool = SharedClientPool()


async def get_shared_client(client_id: str = "default") -> httpx.AsyncClient:
    """Get or create the shared client registered under ``client_id``."""
    return await _pool.get(client_id)


async def record_client_error(client_id: str = "default") -> None:
    await _pool.record_error(client_id)


async def record_client_success(client_id: str = "default") -> None:
    """Reset the consecutive-error count after a successful request."""
    await _pool.record_success(client_id)


async def close_all_clients() -> None:
    await _pool.close_all()
