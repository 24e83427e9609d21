"""Exception hierarchy for feed retrieval and aggregation failures.

Feed-level errors are per source and always recovered inside the aggregator,
either by substituting cached occurrences or by omitting the source. Only
aggregation-level errors describe a cycle that produced nothing publishable.
"""

from enum import Enum
from typing import Any, Optional, Sequence


class FailureKind(str, Enum):
    """Typed failure reported for a source on the wire."""

    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    PARSE_REJECTED = "parse_rejected"


class CalboardError(Exception):
    """Base exception for all calboard errors."""


class FeedError(CalboardError):
    """A single source could not contribute fresh occurrences this cycle."""

    kind: FailureKind = FailureKind.UNREACHABLE

    def __init__(self, source_id: str, message: str):
        super().__init__(message)
        self.source_id = source_id
        self.message = message

    def __str__(self) -> str:
        return f"{self.source_id}: {self.message}"


class FeedUnreachableError(FeedError):
    """Connection refused, DNS failure, TLS failure or an invalid URL."""

    kind = FailureKind.UNREACHABLE


class FeedTimeoutError(FeedError):
    """The source did not answer within its timeout."""

    kind = FailureKind.TIMEOUT


class FeedHTTPError(FeedError):
    """The source answered with a non-success HTTP status."""

    kind = FailureKind.HTTP_ERROR

    def __init__(self, source_id: str, status_code: int, message: Optional[str] = None):
        super().__init__(source_id, message or f"HTTP {status_code}")
        self.status_code = status_code


class FeedParseRejectedError(FeedError):
    """The feed body is not a usable iCalendar document.

    Raised for the whole source; individual malformed items are skipped instead.
    """

    kind = FailureKind.PARSE_REJECTED


class AggregationError(CalboardError):
    """A refresh cycle produced no publishable result."""


class TotalFailureError(AggregationError):
    """Every source failed and no previous result exists."""

    def __init__(self, message: str, source_statuses: Sequence[Any] = ()):
        super().__init__(message)
        # SourceStatus records for the failed cycle
        self.source_statuses = tuple(source_statuses)


class BuildTimeoutError(AggregationError):
    """The refresh cycle exceeded its global ceiling and was abandoned."""
