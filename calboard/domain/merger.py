"""Merge engine: combines per-source occurrences into one ordered collection."""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from calboard.calendar.exceptions import FeedError, FeedHTTPError, TotalFailureError
from calboard.calendar.models import Occurrence
from calboard.domain.cache import CacheEntry
from calboard.domain.models import SourceState, SourceStatus

logger = logging.getLogger(__name__)


@dataclass
class MergeOutcome:
    """Result of merging one refresh cycle.

    ``total_failure`` means every configured source failed and the previous
    cached result should be republished unchanged.
    """

    occurrences: list[Occurrence] = field(default_factory=list)
    source_occurrences: dict[str, tuple[Occurrence, ...]] = field(default_factory=dict)
    statuses: list[SourceStatus] = field(default_factory=list)
    total_failure: bool = False

    @property
    def partial(self) -> bool:
        return any(status.stale for status in self.statuses)


def still_relevant(occurrence: Occurrence, now: datetime.datetime, tz: datetime.tzinfo) -> bool:
    """True while an occurrence has not ended as of ``now``."""
    if occurrence.all_day:
        return occurrence.end_date > now.astimezone(tz).date()
    return occurrence.end > now


def dedupe_and_sort(
    per_source: Mapping[str, Iterable[Occurrence]],
    priority: Sequence[str],
    tz: datetime.tzinfo,
) -> list[Occurrence]:
    """Collapse identical stable ids and order by start instant then id.

    Sources are applied lowest priority first, so for a duplicated id the copy
    from the earliest-configured source is the one kept.
    """
    merged: dict[str, Occurrence] = {}
    ordered_ids = [sid for sid in priority if sid in per_source]
    # Sources missing from the priority list rank below every listed one
    ordered_ids = [sid for sid in per_source if sid not in priority] + list(reversed(ordered_ids))
    for source_id in ordered_ids:
        for occurrence in per_source[source_id]:
            merged[occurrence.id] = occurrence
    return sorted(merged.values(), key=lambda o: o.sort_key(tz))


class MergeEngine:
    """Combines one cycle's source results with the previous cache entry."""

    def __init__(self, tz: datetime.tzinfo):
        self.tz = tz

    def merge(
        self,
        fresh: Mapping[str, Sequence[Occurrence]],
        failures: Mapping[str, FeedError],
        priority: Sequence[str],
        profile_of: Mapping[str, str],
        previous: CacheEntry,
        now: datetime.datetime,
    ) -> MergeOutcome:
        """Merge fresh occurrences, substituting cached data for failed sources.

        Args:
            fresh: Occurrences per source that succeeded this cycle
            failures: Error per source that failed this cycle
            priority: Source ids in configured priority order, highest first
            profile_of: Owning profile id per source id
            previous: Cache entry from the last published cycle
            now: Cycle instant

        Raises:
            TotalFailureError: Every source failed and nothing was ever published
        """
        outcome = MergeOutcome()

        if priority and all(source_id in failures for source_id in priority):
            statuses = [
                self._failed_status(source_id, profile_of, failures[source_id], previous, now)
                for source_id in priority
            ]
            if previous.is_empty:
                raise TotalFailureError(
                    f"all {len(priority)} sources failed and no cached result exists",
                    statuses,
                )
            logger.warning(
                "All %d sources failed; republishing cached result version %d",
                len(priority),
                previous.version,
            )
            outcome.total_failure = True
            outcome.source_occurrences = dict(previous.source_occurrences)
            outcome.statuses = statuses
            return outcome

        usable: dict[str, tuple[Occurrence, ...]] = {}

        for source_id in priority:
            if source_id in fresh:
                occurrences = tuple(fresh[source_id])
                usable[source_id] = occurrences
                outcome.statuses.append(
                    SourceStatus(
                        source_id=source_id,
                        profile_id=profile_of.get(source_id, ""),
                        state=SourceState.FRESH,
                        occurrence_count=len(occurrences),
                    )
                )
                continue

            error = failures.get(source_id)
            if error is None:
                error = FeedError(source_id, "no result produced")
            status = self._failed_status(source_id, profile_of, error, previous, now)
            outcome.statuses.append(status)
            if status.state == SourceState.STALE:
                usable[source_id] = self._cached_for(source_id, previous, now)
                logger.warning(
                    "Source %s failed (%s); serving %d cached occurrences",
                    source_id,
                    error.kind.value,
                    status.occurrence_count,
                )
            else:
                logger.warning(
                    "Source %s failed (%s) with nothing cached; omitting", source_id, error.kind.value
                )

        outcome.source_occurrences = usable
        outcome.occurrences = dedupe_and_sort(usable, priority, self.tz)
        logger.debug(
            "Merged %d sources into %d occurrences",
            len(usable),
            len(outcome.occurrences),
        )
        return outcome

    def _cached_for(
        self, source_id: str, previous: CacheEntry, now: datetime.datetime
    ) -> tuple[Occurrence, ...]:
        cached = previous.source_occurrences.get(source_id, ())
        return tuple(o for o in cached if still_relevant(o, now, self.tz))

    def _failed_status(
        self,
        source_id: str,
        profile_of: Mapping[str, str],
        error: FeedError,
        previous: CacheEntry,
        now: datetime.datetime,
    ) -> SourceStatus:
        has_cache = source_id in previous.source_occurrences
        return SourceStatus(
            source_id=source_id,
            profile_id=profile_of.get(source_id, ""),
            state=SourceState.STALE if has_cache else SourceState.FAILED,
            occurrence_count=len(self._cached_for(source_id, previous, now)) if has_cache else 0,
            failure=error.kind,
            error=error.message,
            http_status=error.status_code if isinstance(error, FeedHTTPError) else None,
        )
