"""Timezone resolution and clock helpers for calboard."""

from __future__ import annotations

import datetime
import logging
import os
import zoneinfo
from typing import ClassVar

logger = logging.getLogger(__name__)

# Display zone used when configuration does not name one
DEFAULT_DISPLAY_TIMEZONE = "America/Los_Angeles"

TEST_TIME_ENV = "CALBOARD_TEST_TIME"


class TimezoneResolver:
    """Resolves configured or feed-supplied zone names into tzinfo objects."""

    # Windows timezone names commonly found in Outlook/Exchange feeds
    WINDOWS_TZ_MAP: ClassVar[dict[str, str]] = {
        "Pacific Standard Time": "America/Los_Angeles",
        "Mountain Standard Time": "America/Denver",
        "Central Standard Time": "America/Chicago",
        "Eastern Standard Time": "America/New_York",
        "Alaskan Standard Time": "America/Anchorage",
        "Hawaiian Standard Time": "Pacific/Honolulu",
        "Arizona Standard Time": "America/Phoenix",
        "GMT Standard Time": "Europe/London",
        "Central European Standard Time": "Europe/Paris",
        "W. Europe Standard Time": "Europe/Berlin",
        "China Standard Time": "Asia/Shanghai",
        "Tokyo Standard Time": "Asia/Tokyo",
        "India Standard Time": "Asia/Kolkata",
        "AUS Eastern Standard Time": "Australia/Sydney",
    }

    # Obsolete IANA names still emitted by older calendar software
    TZ_ALIAS_MAP: ClassVar[dict[str, str]] = {
        "US/Pacific": "America/Los_Angeles",
        "US/Mountain": "America/Denver",
        "US/Central": "America/Chicago",
        "US/Eastern": "America/New_York",
        "US/Alaska": "America/Anchorage",
        "US/Hawaii": "Pacific/Honolulu",
        "US/Arizona": "America/Phoenix",
        "GMT": "UTC",
        "Etc/UTC": "UTC",
        "Z": "UTC",
    }

    def canonical_name(self, tz_name: str) -> str:
        """Map Windows names and aliases onto canonical IANA identifiers."""
        name = tz_name.strip()
        if name in self.WINDOWS_TZ_MAP:
            return self.WINDOWS_TZ_MAP[name]
        return self.TZ_ALIAS_MAP.get(name, name)

    def resolve(self, tz_name: str) -> zoneinfo.ZoneInfo:
        """Return a ZoneInfo for the given name.

        Raises:
            ValueError: If the name does not identify a known zone
        """
        canonical = self.canonical_name(tz_name)
        try:
            return zoneinfo.ZoneInfo(canonical)
        except (zoneinfo.ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {tz_name!r}") from e


class TimeProvider:
    """Provides current time with test time override support."""

    def now_utc(self) -> datetime.datetime:
        """Return the current time as an aware UTC datetime.

        Honors CALBOARD_TEST_TIME (ISO-8601) so a running server can be pinned to a
        fixed instant while debugging agenda output.
        """
        test_time = os.environ.get(TEST_TIME_ENV)
        if test_time:
            try:
                parsed = datetime.datetime.fromisoformat(test_time.replace("Z", "+00:00"))
            except ValueError:
                logger.warning("Invalid %s=%r; using wall clock", TEST_TIME_ENV, test_time)
            else:
                if parsed.tzinfo is None:
                    return parsed.replace(tzinfo=datetime.timezone.utc)
                return parsed.astimezone(datetime.timezone.utc)
        return datetime.datetime.now(datetime.timezone.utc)


_resolver = TimezoneResolver()
_time_provider = TimeProvider()


def now_utc() -> datetime.datetime:
    """Get current UTC time (convenience function)."""
    return _time_provider.now_utc()


def resolve_timezone(tz_name: str) -> zoneinfo.ZoneInfo:
    """Resolve a zone name, alias or Windows name to a ZoneInfo."""
    return _resolver.resolve(tz_name)


def is_valid_timezone(tz_name: str) -> bool:
    """Check whether a zone name can be resolved."""
    try:
        _resolver.resolve(tz_name)
    except ValueError:
        return False
    return True


def to_utc(dt: datetime.datetime, default_tz: datetime.tzinfo) -> datetime.datetime:
    """Normalize a datetime to UTC.

    Naive (floating) values are interpreted in ``default_tz`` first.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=default_tz)
    return dt.astimezone(datetime.timezone.utc)


def local_date(instant: datetime.datetime, tz: datetime.tzinfo) -> datetime.date:
    """Calendar date of an instant as seen in ``tz``."""
    return instant.astimezone(tz).date()


def local_midnight(day: datetime.date, tz: datetime.tzinfo) -> datetime.datetime:
    """Aware datetime for the start of ``day`` in ``tz``."""
    return datetime.datetime.combine(day, datetime.time.min, tzinfo=tz)
