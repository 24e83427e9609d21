"""iCalendar feed parsing into normalized feed items.

Turns raw feed bytes into ``FeedItem`` records whose instants are already
timezone-aware (floating times are pinned to the display zone) so the
recurrence expander only ever sees aware datetimes or plain dates.
"""

import datetime
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from icalendar import Calendar

from calboard.calendar.exceptions import FeedParseRejectedError
from calboard.calendar.models import DEFAULT_TITLE
from calboard.core.timezone_utils import resolve_timezone

logger = logging.getLogger(__name__)

DateOrDateTime = Union[datetime.date, datetime.datetime]

# Field limits applied to free text coming from feeds
MAX_TITLE_LENGTH = 200
MAX_LOCATION_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 2000


@dataclass
class FeedItem:
    """One VEVENT after normalization.

    ``start``/``end`` are aware datetimes for timed items and dates for all-day
    items (``end`` exclusive). A non-empty ``rrules`` or ``rdates`` marks a
    recurring master; ``recurrence_id`` marks an override of one instance.
    """

    uid: str
    title: str
    start: DateOrDateTime
    end: DateOrDateTime
    all_day: bool
    location: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    categories: tuple[str, ...] = ()
    priority: Optional[int] = None
    rrules: list[str] = field(default_factory=list)
    exdates: list[DateOrDateTime] = field(default_factory=list)
    rdates: list[DateOrDateTime] = field(default_factory=list)
    recurrence_id: Optional[DateOrDateTime] = None
    cancelled: bool = False

    @property
    def is_recurring(self) -> bool:
        return bool(self.rrules or self.rdates)


def _is_date_only(value: Any) -> bool:
    return isinstance(value, datetime.date) and not isinstance(value, datetime.datetime)


def _truncate(value: Any, limit: int) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text[:limit]


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


class FeedParser:
    """Parser for iCalendar feeds of a single source."""

    def __init__(self, display_tz: datetime.tzinfo):
        """Initialize parser.

        Args:
            display_tz: Zone used for floating times and unresolvable TZIDs
        """
        self.display_tz = display_tz

    def parse(self, raw: Union[bytes, str], source_id: str) -> list[FeedItem]:
        """Parse a whole feed.

        Malformed individual VEVENTs are skipped with a warning. A feed that is
        empty, not an iCalendar document, or whose every VEVENT is malformed is
        rejected as a whole.

        Raises:
            FeedParseRejectedError: If the feed cannot be used at all
        """
        if not raw or not raw.strip():
            raise FeedParseRejectedError(source_id, "empty feed body")

        try:
            calendar = Calendar.from_ical(raw)
        except Exception as e:
            logger.warning("Feed %s is not valid iCalendar: %s", source_id, e)
            raise FeedParseRejectedError(source_id, f"invalid iCalendar data: {e}") from e

        if getattr(calendar, "name", None) != "VCALENDAR":
            raise FeedParseRejectedError(source_id, "document is not a VCALENDAR")

        components = list(calendar.walk("VEVENT"))
        items: list[FeedItem] = []
        skipped = 0

        for component in components:
            try:
                items.append(self.parse_component(component))
            except Exception as e:
                skipped += 1
                logger.warning(
                    "Skipping malformed item %s in feed %s: %s",
                    component.get("UID", "<no uid>"),
                    source_id,
                    e,
                )

        if components and not items:
            raise FeedParseRejectedError(
                source_id, f"all {len(components)} items in feed are malformed"
            )

        logger.debug(
            "Parsed feed %s: %d items (%d skipped)", source_id, len(items), skipped
        )
        return items

    def parse_component(self, component: Any) -> FeedItem:
        """Normalize one VEVENT component.

        Raises:
            ValueError: If the component lacks a usable start or has an inverted extent
        """
        dtstart_prop = component.get("DTSTART")
        if dtstart_prop is None:
            raise ValueError("missing DTSTART")

        start = self._normalize(dtstart_prop.dt, self._tzid(dtstart_prop))
        all_day = _is_date_only(start)
        end = self._parse_end(component, start, all_day)

        if end < start:
            raise ValueError("DTEND precedes DTSTART")

        title = _truncate(component.get("SUMMARY"), MAX_TITLE_LENGTH) or DEFAULT_TITLE
        uid = str(component.get("UID") or "").strip() or self._synthetic_uid(title, start)

        recurrence_id = None
        rid_prop = component.get("RECURRENCE-ID")
        if rid_prop is not None:
            recurrence_id = self._normalize(rid_prop.dt, self._tzid(rid_prop))

        status = str(component.get("STATUS") or "").upper()

        return FeedItem(
            uid=uid,
            title=title,
            start=start,
            end=end,
            all_day=all_day,
            location=_truncate(component.get("LOCATION"), MAX_LOCATION_LENGTH),
            description=_truncate(component.get("DESCRIPTION"), MAX_DESCRIPTION_LENGTH),
            color=_truncate(component.get("COLOR"), 32),
            categories=self._categories(component),
            priority=self._priority(component),
            rrules=[rule.to_ical().decode() for rule in _as_list(component.get("RRULE"))],
            exdates=self._date_list(component.get("EXDATE")),
            rdates=self._date_list(component.get("RDATE")),
            recurrence_id=recurrence_id,
            cancelled=status == "CANCELLED",
        )

    def _tzid(self, prop: Any) -> Optional[str]:
        params = getattr(prop, "params", None)
        if not params:
            return None
        return params.get("TZID")

    def _normalize(self, value: Any, tzid: Optional[str] = None) -> DateOrDateTime:
        """Return a date, or an aware datetime with floating values pinned."""
        if isinstance(value, datetime.datetime):
            if value.tzinfo is not None:
                return value
            zone = self.display_tz
            if tzid:
                try:
                    zone = resolve_timezone(tzid)
                except ValueError:
                    logger.debug("Unknown TZID %r, using display zone", tzid)
            return value.replace(tzinfo=zone)
        if isinstance(value, datetime.date):
            return value
        raise ValueError(f"unsupported date value {value!r}")

    def _parse_end(self, component: Any, start: DateOrDateTime, all_day: bool) -> DateOrDateTime:
        dtend_prop = component.get("DTEND")
        if dtend_prop is not None:
            end = self._normalize(dtend_prop.dt, self._tzid(dtend_prop))
            if all_day and isinstance(end, datetime.datetime):
                end = end.date()
            elif not all_day and _is_date_only(end):
                raise ValueError("DTEND is a date while DTSTART is a date-time")
            if all_day and end == start:
                end = start + datetime.timedelta(days=1)
            return end

        duration_prop = component.get("DURATION")
        if duration_prop is not None:
            delta = duration_prop.dt
            if all_day:
                return start + datetime.timedelta(days=max(delta.days, 1))
            return start + delta

        # No extent given: one day for dates, an instant for timed items
        if all_day:
            return start + datetime.timedelta(days=1)
        return start

    def _date_list(self, value: Any) -> list[DateOrDateTime]:
        values: list[DateOrDateTime] = []
        for prop in _as_list(value):
            tzid = self._tzid(prop)
            for entry in getattr(prop, "dts", []):
                dt = entry.dt
                if isinstance(dt, tuple):
                    # PERIOD values are not expanded
                    logger.debug("Ignoring PERIOD value in date list: %r", dt)
                    continue
                values.append(self._normalize(dt, tzid))
        return values

    def _categories(self, component: Any) -> tuple[str, ...]:
        names: list[str] = []
        for prop in _as_list(component.get("CATEGORIES")):
            cats = getattr(prop, "cats", None)
            if cats is None:
                cats = str(prop).split(",")
            names.extend(str(cat).strip() for cat in cats if str(cat).strip())
        return tuple(names)

    def _priority(self, component: Any) -> Optional[int]:
        raw = component.get("PRIORITY")
        if raw is None:
            return None
        try:
            value = int(raw)
        except (TypeError, ValueError):
            return None
        # 0 means undefined
        return value if 1 <= value <= 9 else None

    def _synthetic_uid(self, title: str, start: DateOrDateTime) -> str:
        digest = hashlib.sha1(f"{title}|{start.isoformat()}".encode()).hexdigest()
        return f"calboard-{digest[:16]}"
