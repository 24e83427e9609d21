"""Presentation filter applied at render time.

A pure view transform over an AggregationResult using the live clock and the
hidden-profile preference. The input result is never modified, so the filter
can be re-applied whenever the preference changes without a new fetch.
"""

from __future__ import annotations

import datetime
from typing import Iterable, Optional

from calboard.calendar.models import Occurrence
from calboard.domain.models import AggregationResult, DayGroup

DEFAULT_GRACE = datetime.timedelta(minutes=30)


def _recently_ended(
    occurrence: Occurrence, now: datetime.datetime, grace: datetime.timedelta
) -> bool:
    if occurrence.all_day:
        return False
    return occurrence.end < now - grace


def filter_day_groups(
    day_groups: Iterable[DayGroup],
    hidden_profiles: Iterable[str],
    now: datetime.datetime,
    tz: datetime.tzinfo,
    grace: datetime.timedelta = DEFAULT_GRACE,
) -> list[DayGroup]:
    """Return the day groups a display should render right now.

    - groups dated before today are dropped
    - in today's group, timed occurrences that ended more than ``grace`` ago are dropped
    - occurrences of hidden profiles are dropped
    - groups left empty are omitted
    """
    hidden = frozenset(hidden_profiles)
    today = now.astimezone(tz).date()
    visible: list[DayGroup] = []

    for group in day_groups:
        if group.date < today:
            continue
        kept = [
            o
            for o in group.occurrences
            if o.profile_id not in hidden
            and not (group.date == today and _recently_ended(o, now, grace))
        ]
        if kept:
            visible.append(DayGroup(date=group.date, occurrences=tuple(kept)))

    return visible


def filter_result(
    result: AggregationResult,
    hidden_profiles: Iterable[str],
    now: datetime.datetime,
    tz: datetime.tzinfo,
    grace: Optional[datetime.timedelta] = None,
) -> AggregationResult:
    """Filtered copy of ``result``; ``today_count`` keeps the unfiltered value."""
    hidden = frozenset(hidden_profiles)
    groups = filter_day_groups(
        result.day_groups, hidden, now, tz, DEFAULT_GRACE if grace is None else grace
    )
    important = tuple(
        entry for entry in result.important if entry.occurrence.profile_id not in hidden
    )
    return result.model_copy(update={"day_groups": tuple(groups), "important": important})
