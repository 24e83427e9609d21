"""Recurrence expansion of parsed feed items into concrete occurrences.

Expansion is confined to the look-ahead window ``[now, now + N days]``. Items
already in progress at ``now`` are kept. RRULE sets are built with dateutil in
the item's own zone so wall-clock times survive DST changes; all-day series are
expanded as naive midnights and mapped back to dates.
"""

import datetime
import logging
import re
from typing import Union

from dateutil.rrule import rruleset, rrulestr

from calboard.calendar.models import Occurrence, format_duration, stable_occurrence_id
from calboard.calendar.parser import DateOrDateTime, FeedItem, FeedParser
from calboard.core.timezone_utils import to_utc

logger = logging.getLogger(__name__)

DEFAULT_MAX_OCCURRENCES_PER_RULE = 250

UNTIL_RE = re.compile(r"UNTIL=(\d{8}(?:T\d{6}Z?)?)", re.IGNORECASE)

_UTC = datetime.timezone.utc


class ExpansionWindow:
    """Look-ahead window anchored at an explicit ``now``."""

    def __init__(self, now: datetime.datetime, lookahead_days: int, tz: datetime.tzinfo):
        if now.tzinfo is None:
            raise ValueError("now must be timezone-aware")
        self.now = now.astimezone(_UTC)
        self.end = self.now + datetime.timedelta(days=lookahead_days)
        self.tz = tz
        self.first_date = self.now.astimezone(tz).date()
        self.last_date = self.end.astimezone(tz).date()

    def includes_timed(self, start: datetime.datetime, end: datetime.datetime) -> bool:
        if start > self.end:
            return False
        return start >= self.now or end > self.now

    def includes_dates(self, start: datetime.date, end: datetime.date) -> bool:
        return start <= self.last_date and end > self.first_date


class RecurrenceExpander:
    """Expands one source's feed into Occurrences within a bounded window."""

    def __init__(
        self,
        display_tz: datetime.tzinfo,
        max_occurrences_per_rule: int = DEFAULT_MAX_OCCURRENCES_PER_RULE,
    ):
        self.display_tz = display_tz
        self.max_occurrences_per_rule = max_occurrences_per_rule
        self.parser = FeedParser(display_tz)

    def expand(
        self,
        raw: Union[bytes, str],
        *,
        source_id: str,
        profile_id: str,
        now: datetime.datetime,
        lookahead_days: int,
        calendar_name: str = "",
    ) -> list[Occurrence]:
        """Parse a raw feed and expand it into ordered Occurrences.

        Args:
            raw: Feed body as fetched
            source_id: Owning source id
            profile_id: Owning profile id
            now: Window anchor (aware)
            lookahead_days: Window length in days
            calendar_name: Display name attached to each occurrence

        Returns:
            Occurrences sorted by start, then id

        Raises:
            FeedParseRejectedError: If the feed is unusable as a whole
        """
        items = self.parser.parse(raw, source_id)
        window = ExpansionWindow(now, lookahead_days, self.display_tz)
        return self.expand_items(
            items,
            window,
            source_id=source_id,
            profile_id=profile_id,
            calendar_name=calendar_name,
        )

    def expand_items(
        self,
        items: list[FeedItem],
        window: ExpansionWindow,
        *,
        source_id: str,
        profile_id: str,
        calendar_name: str = "",
    ) -> list[Occurrence]:
        # RECURRENCE-ID overrides replace single instances of their master
        overridden: dict[str, list[DateOrDateTime]] = {}
        for item in items:
            if item.recurrence_id is not None:
                overridden.setdefault(item.uid, []).append(item.recurrence_id)

        occurrences: dict[str, Occurrence] = {}

        for item in items:
            if item.cancelled:
                continue
            try:
                if item.recurrence_id is None and item.is_recurring:
                    extents = self._expand_series(item, window, overridden.get(item.uid, []))
                else:
                    extents = self._single_extent(item, window)
                for start, end in extents:
                    occurrence = self._build_occurrence(
                        item, start, end, source_id, profile_id, calendar_name
                    )
                    occurrences[occurrence.id] = occurrence
            except Exception as e:
                logger.warning(
                    "Skipping item %s in feed %s during expansion: %s", item.uid, source_id, e
                )

        ordered = sorted(occurrences.values(), key=lambda o: o.sort_key(self.display_tz))
        logger.debug(
            "Expanded feed %s: %d items -> %d occurrences", source_id, len(items), len(ordered)
        )
        return ordered

    def _single_extent(
        self, item: FeedItem, window: ExpansionWindow
    ) -> list[tuple[DateOrDateTime, DateOrDateTime]]:
        if item.all_day:
            if window.includes_dates(item.start, item.end):
                return [(item.start, item.end)]
            return []
        start = to_utc(item.start, self.display_tz)
        end = to_utc(item.end, self.display_tz)
        if window.includes_timed(start, end):
            return [(start, end)]
        return []

    def _expand_series(
        self,
        item: FeedItem,
        window: ExpansionWindow,
        overridden: list[DateOrDateTime],
    ) -> list[tuple[DateOrDateTime, DateOrDateTime]]:
        dtstart = self._series_anchor(item)
        rule_set = rruleset()

        for rule_text in item.rrules:
            rule_set.rrule(rrulestr(self._align_until(rule_text, dtstart), dtstart=dtstart))
        # RDATE-only items still produce their master instance
        if not item.rrules:
            rule_set.rdate(dtstart)
        for value in item.rdates:
            rule_set.rdate(self._align_instance(value, dtstart))
        for value in list(item.exdates) + list(overridden):
            rule_set.exdate(self._align_instance(value, dtstart))

        extents: list[tuple[DateOrDateTime, DateOrDateTime]] = []

        if item.all_day:
            span = item.end - item.start
            low = datetime.datetime.combine(window.first_date, datetime.time.min) - span
            high = datetime.datetime.combine(window.last_date, datetime.time.min)
        else:
            span = item.end.astimezone(_UTC) - item.start.astimezone(_UTC)
            low = window.now - span
            high = window.end

        for instance in rule_set.xafter(low, inc=True):
            if instance > high:
                break
            if len(extents) >= self.max_occurrences_per_rule:
                logger.warning(
                    "Recurring item %s capped at %d occurrences",
                    item.uid,
                    self.max_occurrences_per_rule,
                )
                break
            if item.all_day:
                start_date = instance.date()
                end_date = start_date + span
                if window.includes_dates(start_date, end_date):
                    extents.append((start_date, end_date))
            else:
                start = instance.astimezone(_UTC)
                end = start + span
                if window.includes_timed(start, end):
                    extents.append((start, end))

        return extents

    def _series_anchor(self, item: FeedItem) -> datetime.datetime:
        if item.all_day:
            return datetime.datetime.combine(item.start, datetime.time.min)
        return item.start

    def _align_instance(
        self, value: DateOrDateTime, dtstart: datetime.datetime
    ) -> datetime.datetime:
        """Coerce an EXDATE/RDATE/RECURRENCE-ID value to the series anchor's form."""
        if dtstart.tzinfo is None:
            if isinstance(value, datetime.datetime):
                value = value.astimezone(self.display_tz).date()
            return datetime.datetime.combine(value, datetime.time.min)
        if isinstance(value, datetime.datetime):
            return value
        # Date-only exception on a timed series removes that day's instance
        return datetime.datetime.combine(value, dtstart.timetz())

    def _align_until(self, rule_text: str, dtstart: datetime.datetime) -> str:
        """Rewrite UNTIL so its awareness matches DTSTART, as dateutil requires."""

        def _replace(match: "re.Match[str]") -> str:
            return "UNTIL=" + self._until_value(match.group(1), dtstart)

        return UNTIL_RE.sub(_replace, rule_text)

    def _until_value(self, raw: str, dtstart: datetime.datetime) -> str:
        if len(raw) == 8:
            until_date = datetime.datetime.strptime(raw, "%Y%m%d").date()
            if dtstart.tzinfo is None:
                return until_date.strftime("%Y%m%d") + "T235959"
            # A date UNTIL is inclusive of that whole local day
            until = datetime.datetime.combine(
                until_date, datetime.time(23, 59, 59), tzinfo=dtstart.tzinfo
            )
            return until.astimezone(_UTC).strftime("%Y%m%dT%H%M%SZ")

        is_utc = raw.upper().endswith("Z")
        until = datetime.datetime.strptime(raw.rstrip("Zz"), "%Y%m%dT%H%M%S")
        if dtstart.tzinfo is None:
            if is_utc:
                until = until.replace(tzinfo=_UTC).astimezone(self.display_tz).replace(tzinfo=None)
            return until.strftime("%Y%m%dT%H%M%S")
        until = until.replace(tzinfo=_UTC if is_utc else dtstart.tzinfo)
        return until.astimezone(_UTC).strftime("%Y%m%dT%H%M%SZ")

    def _build_occurrence(
        self,
        item: FeedItem,
        start: DateOrDateTime,
        end: DateOrDateTime,
        source_id: str,
        profile_id: str,
        calendar_name: str,
    ) -> Occurrence:
        common = {
            "id": stable_occurrence_id(item.uid, start),
            "uid": item.uid,
            "source_id": source_id,
            "profile_id": profile_id,
            "calendar": calendar_name,
            "title": item.title,
            "location": item.location,
            "description": item.description,
            "color": item.color,
            "categories": item.categories,
            "priority": item.priority,
            "duration": format_duration(start, end, all_day=item.all_day),
        }
        if item.all_day:
            return Occurrence(all_day=True, start_date=start, end_date=end, **common)
        return Occurrence(all_day=False, start=start, end=end, **common)
