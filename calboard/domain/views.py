"""View builder: pure projections of a merged occurrence sequence.

Every function takes an explicit ``now`` so the "today" boundary and the
countdown snapshot are deterministic.
"""

from __future__ import annotations

import datetime
import logging
from collections import defaultdict
from typing import Optional, Sequence

from calboard.calendar.models import EventType, Occurrence
from calboard.domain.models import (
    AggregationResult,
    DayGroup,
    ImportantOccurrence,
    ResultStatus,
    SourceStatus,
)

logger = logging.getLogger(__name__)


def build_day_groups(
    occurrences: Sequence[Occurrence],
    today: datetime.date,
    days_to_show: int,
    tz: datetime.tzinfo,
) -> tuple[DayGroup, ...]:
    """Bucket occurrences by agenda date.

    Timed events belong only to their start date, so an event crossing midnight
    is not split. Dates at or beyond ``today + days_to_show`` are left out.
    Input order is preserved within each group.
    """
    horizon = today + datetime.timedelta(days=days_to_show)
    buckets: dict[datetime.date, list[Occurrence]] = defaultdict(list)
    for occurrence in occurrences:
        day = occurrence.local_date(tz)
        if day < horizon:
            buckets[day].append(occurrence)
    return tuple(
        DayGroup(date=day, occurrences=tuple(buckets[day])) for day in sorted(buckets)
    )


def is_countdown_worthy(occurrence: Occurrence) -> bool:
    return occurrence.event_type != EventType.REGULAR or occurrence.important


def build_important(
    occurrences: Sequence[Occurrence],
    today: datetime.date,
    tz: datetime.tzinfo,
) -> tuple[ImportantOccurrence, ...]:
    """Countdown list, soonest first, with ``days_until`` relative to local midnight today."""
    entries = []
    for occurrence in occurrences:
        if not is_countdown_worthy(occurrence):
            continue
        day = occurrence.local_date(tz)
        if day < today:
            continue
        entries.append(
            ImportantOccurrence(
                occurrence=occurrence,
                date=day,
                days_until=(day - today).days,
            )
        )
    entries.sort(key=lambda e: e.occurrence.sort_key(tz))
    return tuple(entries)


def count_today(day_groups: Sequence[DayGroup], today: datetime.date) -> int:
    for group in day_groups:
        if group.date == today:
            return len(group.occurrences)
    return 0


def build_result(
    occurrences: Sequence[Occurrence],
    *,
    now: datetime.datetime,
    tz: datetime.tzinfo,
    timezone_name: str,
    days_to_show: int,
    sources: Sequence[SourceStatus] = (),
    status: Optional[ResultStatus] = None,
    error: Optional[str] = None,
) -> AggregationResult:
    """Assemble the AggregationResult for one cycle.

    Args:
        occurrences: Merged occurrences sorted by start then id
        now: Build instant; fixes "today" and the countdown snapshot
        tz: Display zone
        timezone_name: Display zone name echoed to clients
        days_to_show: Number of agenda days, starting today
        sources: Per-source status for the cycle
        status: Explicit status; derived from ``sources`` when omitted
        error: Optional error message carried to clients
    """
    today = now.astimezone(tz).date()
    day_groups = build_day_groups(occurrences, today, days_to_show, tz)

    if status is None:
        status = (
            ResultStatus.PARTIAL if any(s.stale for s in sources) else ResultStatus.OK
        )

    result = AggregationResult(
        status=status,
        generated_at=now,
        timezone=timezone_name,
        days_to_show=days_to_show,
        day_groups=day_groups,
        important=build_important(occurrences, today, tz),
        today_count=count_today(day_groups, today),
        sources=tuple(sources),
        error=error,
    )
    logger.debug(
        "Built views: %d day groups, %d important, %d today",
        len(result.day_groups),
        len(result.important),
        result.today_count,
    )
    return result
