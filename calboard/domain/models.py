"""Aggregation output models: day groups, countdowns and per-source status."""

import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, computed_field

from calboard.calendar.exceptions import FailureKind
from calboard.calendar.models import Occurrence


class ResultStatus(str, Enum):
    OK = "ok"
    PARTIAL = "partial"  # at least one source served from cache or omitted
    UNAVAILABLE = "unavailable"  # first run and nothing could be fetched


class SourceState(str, Enum):
    FRESH = "fresh"
    STALE = "stale"  # failed this cycle, last-known-good occurrences substituted
    FAILED = "failed"  # failed with nothing cached, omitted


class SourceStatus(BaseModel):
    """Outcome of one source in one refresh cycle."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    profile_id: str
    state: SourceState
    occurrence_count: int = 0
    failure: Optional[FailureKind] = None
    error: Optional[str] = None
    http_status: Optional[int] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def stale(self) -> bool:
        return self.state != SourceState.FRESH


class DayGroup(BaseModel):
    """Occurrences sharing one agenda date in the display zone."""

    model_config = ConfigDict(frozen=True)

    date: datetime.date
    occurrences: tuple[Occurrence, ...] = ()


class ImportantOccurrence(BaseModel):
    """Countdown entry; ``days_until`` is a snapshot taken when the result was built."""

    model_config = ConfigDict(frozen=True)

    occurrence: Occurrence
    date: datetime.date
    days_until: int


class AggregationResult(BaseModel):
    """Merged and projected output of one refresh cycle."""

    model_config = ConfigDict(frozen=True)

    status: ResultStatus
    generated_at: datetime.datetime
    timezone: str
    days_to_show: int
    day_groups: tuple[DayGroup, ...] = ()
    important: tuple[ImportantOccurrence, ...] = ()
    today_count: int = 0
    sources: tuple[SourceStatus, ...] = ()
    error: Optional[str] = None

    @property
    def stale_source_ids(self) -> list[str]:
        return [s.source_id for s in self.sources if s.stale]

    @property
    def occurrence_count(self) -> int:
        return sum(len(group.occurrences) for group in self.day_groups)

    @classmethod
    def unavailable(
        cls,
        error: str,
        generated_at: datetime.datetime,
        timezone: str,
        days_to_show: int,
        sources: tuple[SourceStatus, ...] = (),
    ) -> "AggregationResult":
        """Explicit empty result for a first run where nothing could be fetched."""
        return cls(
            status=ResultStatus.UNAVAILABLE,
            generated_at=generated_at,
            timezone=timezone,
            days_to_show=days_to_show,
            sources=sources,
            error=error,
        )
