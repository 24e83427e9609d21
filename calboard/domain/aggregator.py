"""Refresh-cycle orchestration for calboard.

Fetches every enabled source concurrently, expands and classifies each feed in
a worker thread, merges the results with the previous cache entry and publishes
one new AggregationResult per cycle. Concurrent refresh triggers are coalesced
onto the cycle already in flight.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Any, Callable, Optional

from calboard.calendar.classifier import EventClassifier
from calboard.calendar.exceptions import (
    BuildTimeoutError,
    FeedError,
    FeedParseRejectedError,
    FeedTimeoutError,
    TotalFailureError,
)
from calboard.calendar.expander import RecurrenceExpander
from calboard.calendar.fetcher import FeedFetcher
from calboard.calendar.models import Occurrence
from calboard.config_loader import AppConfig, ProfileConfig, SourceConfig
from calboard.core.health_tracker import HealthTracker
from calboard.core.timezone_utils import now_utc
from calboard.domain.cache import CacheEntry, ResultCache
from calboard.domain.merger import MergeEngine
from calboard.domain.models import AggregationResult, SourceStatus
from calboard.domain.views import build_result

logger = logging.getLogger(__name__)


class CalendarAggregator:
    """Owns the refresh cycle and the published result."""

    def __init__(
        self,
        config: AppConfig,
        cache: Optional[ResultCache] = None,
        fetcher: Optional[FeedFetcher] = None,
        health_tracker: Optional[HealthTracker] = None,
        clock: Callable[[], datetime.datetime] = now_utc,
    ) -> None:
        """Initialize aggregator.

        Args:
            config: Validated application configuration
            cache: Result cache; an in-memory cache is created when omitted
            fetcher: Feed fetcher; one using the shared HTTP client when omitted
            health_tracker: Optional tracker updated after every cycle
            clock: Source of the cycle's ``now``
        """
        self.cache = cache or ResultCache()
        self.fetcher = fetcher or FeedFetcher(default_timeout=config.fetch_timeout_seconds)
        self.health_tracker = health_tracker
        self.clock = clock
        self._inflight: Optional[asyncio.Task] = None
        self._last_error: Optional[str] = None
        self._last_statuses: tuple[SourceStatus, ...] = ()
        self.update_config(config)

    def update_config(self, config: AppConfig) -> None:
        """Swap in a new configuration; takes effect from the next cycle."""
        self.config = config
        self.tz = config.display.tzinfo
        self.classifier = EventClassifier.from_settings(config.classifier)
        self.merge_engine = MergeEngine(self.tz)

    @property
    def refreshing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def current(self) -> CacheEntry:
        """Snapshot of the published cache entry."""
        return self.cache.get()

    def current_result(self) -> AggregationResult:
        """Published result, or an explicit "unavailable" result before the first success."""
        entry = self.cache.get()
        if entry.result is not None:
            return entry.result
        display = self.config.display
        return AggregationResult.unavailable(
            error=self._last_error or "Calendar data has not been loaded yet",
            generated_at=self.clock(),
            timezone=display.timezone,
            days_to_show=display.days_to_show,
            sources=self._last_statuses,
        )

    async def refresh(self) -> CacheEntry:
        """Run a refresh cycle, or join the one already running.

        Returns once the new result is published or the cycle has fallen back to
        the cached entry. Never raises for source or cycle failures.
        """
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._run_guarded())
        else:
            logger.debug("Refresh already in progress; joining it")
        # A cancelled caller must not cancel the shared cycle
        return await asyncio.shield(self._inflight)

    async def _run_guarded(self) -> CacheEntry:
        if self.health_tracker is not None:
            self.health_tracker.record_refresh_attempt()

        timeout = self.config.cycle_timeout_seconds
        try:
            return await asyncio.wait_for(self._run_cycle(), timeout=timeout)
        except asyncio.TimeoutError:
            error = BuildTimeoutError(f"refresh cycle exceeded {timeout:g}s; keeping cached result")
            logger.error("%s", error)
            self._last_error = str(error)
            return self.cache.mark_stale(error=self._last_error)
        except Exception:
            logger.exception("Refresh cycle failed unexpectedly; keeping cached result")
            self._last_error = "Refresh failed unexpectedly"
            return self.cache.mark_stale(error=self._last_error)

    async def _run_cycle(self) -> CacheEntry:
        now = self.clock()
        pairs = self.config.enabled_sources()
        logger.info("Starting refresh cycle for %d sources", len(pairs))

        fresh, failures = await self._collect(pairs, now)

        previous = self.cache.get()
        priority = self.config.source_priority()
        profile_of = {source.id: profile.id for profile, source in pairs}

        try:
            outcome = self.merge_engine.merge(fresh, failures, priority, profile_of, previous, now)
        except TotalFailureError as e:
            logger.error("No calendar data available: %s", e)
            self._last_error = "All calendar sources are unavailable"
            self._last_statuses = e.source_statuses
            self._record_sources(pairs, fresh)
            return previous

        self._record_sources(pairs, fresh)

        if outcome.total_failure:
            self._last_error = "All calendar sources failed; showing cached data"
            self._last_statuses = tuple(outcome.statuses)
            return self.cache.mark_stale(outcome.statuses, error=self._last_error)

        display = self.config.display
        result = build_result(
            outcome.occurrences,
            now=now,
            tz=self.tz,
            timezone_name=display.timezone,
            days_to_show=display.days_to_show,
            sources=outcome.statuses,
        )
        entry = self.cache.put(result, outcome.source_occurrences, captured_at=now)
        self._last_error = None
        self._last_statuses = ()

        if self.health_tracker is not None:
            self.health_tracker.record_refresh_success(result.occurrence_count)

        logger.info(
            "Refresh cycle complete: %d occurrences, status=%s, stale sources=%s",
            len(outcome.occurrences),
            result.status.value,
            result.stale_source_ids or "none",
        )
        return entry

    async def _collect(
        self,
        pairs: list[tuple[ProfileConfig, SourceConfig]],
        now: datetime.datetime,
    ) -> tuple[dict[str, list[Occurrence]], dict[str, FeedError]]:
        """Fetch and expand all sources concurrently; failures are returned, not raised."""
        semaphore = asyncio.Semaphore(self.config.fetch_concurrency)
        results = await asyncio.gather(
            *(self._load_source(semaphore, profile, source, now) for profile, source in pairs),
            return_exceptions=True,
        )

        fresh: dict[str, list[Occurrence]] = {}
        failures: dict[str, FeedError] = {}
        for (_, source), result in zip(pairs, results):
            if isinstance(result, FeedError):
                failures[source.id] = result
            elif isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.error(
                    "Unexpected error loading source %s", source.id, exc_info=result
                )
                failures[source.id] = FeedParseRejectedError(
                    source.id, f"unexpected error: {result}"
                )
            else:
                fresh[source.id] = result
        return fresh, failures

    async def _load_source(
        self,
        semaphore: asyncio.Semaphore,
        profile: ProfileConfig,
        source: SourceConfig,
        now: datetime.datetime,
    ) -> list[Occurrence]:
        timeout = source.timeout or self.config.fetch_timeout_seconds
        async with semaphore:
            try:
                raw = await asyncio.wait_for(self.fetcher.fetch(source, timeout), timeout=timeout)
            except asyncio.TimeoutError as e:
                logger.warning("Source %s timed out after %.1fs", source.id, timeout)
                raise FeedTimeoutError(source.id, f"no response within {timeout:g}s") from e

        return await asyncio.to_thread(self._expand_and_classify, profile, source, raw, now)

    def _expand_and_classify(
        self,
        profile: ProfileConfig,
        source: SourceConfig,
        raw: bytes,
        now: datetime.datetime,
    ) -> list[Occurrence]:
        expander = RecurrenceExpander(self.tz, self.config.max_occurrences_per_rule)
        occurrences = expander.expand(
            raw,
            source_id=source.id,
            profile_id=profile.id,
            now=now,
            lookahead_days=self.config.display.effective_lookahead_days,
            calendar_name=source.name or profile.name,
        )
        return self.classifier.classify_all(
            occurrences,
            profile_color=profile.color,
            source_color=source.color,
            forced_type=source.event_type,
        )

    def _record_sources(
        self,
        pairs: list[tuple[ProfileConfig, SourceConfig]],
        fresh: dict[str, Any],
    ) -> None:
        if self.health_tracker is None:
            return
        for _, source in pairs:
            self.health_tracker.record_source_result(source.id, source.id in fresh)

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Background refresher: immediate refresh then one per configured interval."""
        logger.info("Starting initial refresh")
        await self.refresh()

        while not stop_event.is_set():
            interval = self.config.display.refresh_interval_minutes * 60
            if self.health_tracker is not None:
                self.health_tracker.record_background_heartbeat()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            if stop_event.is_set():
                break
            logger.debug("Starting periodic refresh")
            await self.refresh()

        logger.info("Refresh loop stopped")
