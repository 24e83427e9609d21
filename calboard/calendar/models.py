"""Occurrence model shared by the expander, classifier and merge engine."""

import datetime
import hashlib
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, model_validator

from calboard.core.timezone_utils import local_midnight

DEFAULT_TITLE = "Untitled Event"

# Length of the hex digest kept for occurrence ids
STABLE_ID_LENGTH = 24


class EventType(str, Enum):
    """Semantic type attached by the classifier."""

    REGULAR = "regular"
    BIRTHDAY = "birthday"
    ANNIVERSARY = "anniversary"
    HOLIDAY = "holiday"


def stable_occurrence_id(uid: str, start: Union[datetime.date, datetime.datetime]) -> str:
    """Deterministic identity for one expanded instance of a feed item.

    Timed starts are keyed by their UTC instant so the same instance expanded from
    feeds published in different zones still collapses to one id. Owning source and
    profile are deliberately not part of the key.
    """
    if isinstance(start, datetime.datetime):
        if start.tzinfo is None:
            raise ValueError("timed occurrence start must be timezone-aware")
        start_key = start.astimezone(datetime.timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    else:
        start_key = start.strftime("%Y%m%d")
    digest = hashlib.sha256(f"{uid}|{start_key}".encode()).hexdigest()
    return digest[:STABLE_ID_LENGTH]


def format_duration(occurrence_start, occurrence_end, all_day: bool = False) -> str:
    """Human readable duration such as "30m", "1h 30m", "All day" or "3 days"."""
    if all_day:
        days = max((occurrence_end - occurrence_start).days, 1)
        return "All day" if days == 1 else f"{days} days"

    total_minutes = int((occurrence_end - occurrence_start).total_seconds() // 60)
    if total_minutes <= 0:
        return "0m"
    days, remainder = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(remainder, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    return " ".join(parts)


class Occurrence(BaseModel):
    """One concrete calendar event instance.

    Timed occurrences carry aware UTC ``start``/``end`` instants. All-day occurrences
    carry dates only; ``end_date`` is exclusive, as in iCalendar.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    uid: str
    source_id: str
    profile_id: str
    calendar: str = ""
    title: str = DEFAULT_TITLE
    all_day: bool = False
    start: Optional[datetime.datetime] = None
    end: Optional[datetime.datetime] = None
    start_date: Optional[datetime.date] = None
    end_date: Optional[datetime.date] = None
    location: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    event_type: EventType = EventType.REGULAR
    important: bool = False
    categories: tuple[str, ...] = ()
    priority: Optional[int] = None
    duration: str = ""

    @model_validator(mode="after")
    def _check_extent(self) -> "Occurrence":
        if self.all_day:
            if self.start_date is None or self.end_date is None:
                raise ValueError("all-day occurrence requires start_date and end_date")
            if self.start is not None or self.end is not None:
                raise ValueError("all-day occurrence must not carry instants")
            if self.end_date <= self.start_date:
                raise ValueError("all-day end_date must be after start_date")
        else:
            if self.start is None or self.end is None:
                raise ValueError("timed occurrence requires start and end")
            if self.start.tzinfo is None or self.end.tzinfo is None:
                raise ValueError("timed occurrence instants must be timezone-aware")
            if self.end < self.start:
                raise ValueError("occurrence end precedes start")
        return self

    def starts_at(self, tz: datetime.tzinfo) -> datetime.datetime:
        """Start instant, with all-day items anchored at local midnight in ``tz``."""
        if self.all_day:
            return local_midnight(self.start_date, tz)
        return self.start

    def ends_at(self, tz: datetime.tzinfo) -> datetime.datetime:
        if self.all_day:
            return local_midnight(self.end_date, tz)
        return self.end

    def local_date(self, tz: datetime.tzinfo) -> datetime.date:
        """Agenda date: declared date for all-day items, start date in ``tz`` otherwise."""
        if self.all_day:
            return self.start_date
        return self.start.astimezone(tz).date()

    def sort_key(self, tz: datetime.tzinfo) -> tuple[datetime.datetime, str]:
        return (self.starts_at(tz), self.id)
