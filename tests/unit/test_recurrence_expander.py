"""Unit tests for calboard.calendar.expander."""

import datetime
from zoneinfo import ZoneInfo

import pytest

from calboard.calendar.classifier import EventClassifier
from calboard.calendar.exceptions import FeedParseRejectedError
from calboard.calendar.expander import ExpansionWindow, RecurrenceExpander
from calboard.calendar.models import EventType, stable_occurrence_id

pytestmark = pytest.mark.unit

UTC = datetime.timezone.utc

TEAM_SYNC_START = ";TZID=America/Los_Angeles:20250526T090000"
TEAM_SYNC_END = ";TZID=America/Los_Angeles:20250526T093000"


@pytest.fixture
def expander(display_tz: ZoneInfo) -> RecurrenceExpander:
    return RecurrenceExpander(display_tz)


@pytest.fixture
def expand(expander: RecurrenceExpander, fixed_now: datetime.datetime):
    """Expand a raw feed for source ``src``/profile ``alice`` over 14 days from fixed_now."""

    def _expand(raw: bytes, lookahead_days: int = 14):
        return expander.expand(
            raw,
            source_id="src",
            profile_id="alice",
            now=fixed_now,
            lookahead_days=lookahead_days,
            calendar_name="Alice",
        )

    return _expand


def _utc(*args: int) -> datetime.datetime:
    return datetime.datetime(*args, tzinfo=UTC)


class TestExpansionWindow:
    """Tests for ExpansionWindow."""

    def test_window_when_naive_now_then_raises(self, display_tz: ZoneInfo) -> None:
        with pytest.raises(ValueError):
            ExpansionWindow(datetime.datetime(2025, 6, 11, 17, 0), 14, display_tz)

    def test_window_when_constructed_then_local_date_bounds(
        self, display_tz: ZoneInfo, fixed_now: datetime.datetime
    ) -> None:
        window = ExpansionWindow(fixed_now, 14, display_tz)
        assert window.first_date == datetime.date(2025, 6, 11)
        assert window.last_date == datetime.date(2025, 6, 25)
        assert window.end == _utc(2025, 6, 25, 17, 0)

    def test_includes_timed_when_in_progress_then_true(
        self, display_tz: ZoneInfo, fixed_now: datetime.datetime
    ) -> None:
        window = ExpansionWindow(fixed_now, 14, display_tz)
        assert window.includes_timed(_utc(2025, 6, 11, 16, 30), _utc(2025, 6, 11, 17, 30))
        assert not window.includes_timed(_utc(2025, 6, 11, 16, 0), _utc(2025, 6, 11, 17, 0))
        assert window.includes_timed(window.end, window.end + datetime.timedelta(hours=1))
        assert not window.includes_timed(
            window.end + datetime.timedelta(seconds=1), window.end + datetime.timedelta(hours=1)
        )


class TestSingleEvents:
    """Non-recurring items."""

    def test_expand_when_in_progress_then_kept(self, expand, make_ics, vevent) -> None:
        raw = make_ics(
            vevent("running", "Running", ":20250611T163000Z", ":20250611T173000Z"),
            vevent("ended", "Ended", ":20250611T160000Z", ":20250611T165900Z"),
        )
        assert [o.uid for o in expand(raw)] == ["running"]

    def test_expand_when_beyond_window_then_dropped(self, expand, make_ics, vevent) -> None:
        raw = make_ics(vevent("later", "Later", ":20250626T170000Z", ":20250626T180000Z"))
        assert expand(raw) == []

    def test_expand_when_all_day_today_then_kept_and_yesterday_dropped(
        self, expand, make_ics, vevent
    ) -> None:
        raw = make_ics(
            vevent("today", "Today", ";VALUE=DATE:20250611", ";VALUE=DATE:20250612"),
            vevent("yesterday", "Yesterday", ";VALUE=DATE:20250610", ";VALUE=DATE:20250611"),
            vevent("trip", "Trip", ";VALUE=DATE:20250609", ";VALUE=DATE:20250613"),
        )
        occurrences = expand(raw)
        assert sorted(o.uid for o in occurrences) == ["today", "trip"]
        trip = next(o for o in occurrences if o.uid == "trip")
        assert trip.all_day is True
        assert trip.start_date == datetime.date(2025, 6, 9)
        assert trip.duration == "4 days"

    def test_expand_when_duplicate_items_then_one_occurrence(self, expand, make_ics, vevent) -> None:
        raw = make_ics(vevent("dup", "Dentist"), vevent("dup", "Dentist"))
        assert len(expand(raw)) == 1

    def test_expand_when_occurrence_built_then_owner_fields_set(
        self, expand, make_ics, vevent
    ) -> None:
        (occurrence,) = expand(make_ics(vevent("a", "Dentist")))
        assert occurrence.source_id == "src"
        assert occurrence.profile_id == "alice"
        assert occurrence.calendar == "Alice"
        assert occurrence.id == stable_occurrence_id("a", _utc(2025, 6, 12, 17, 0))
        assert occurrence.duration == "1h"

    def test_expand_when_feed_rejected_then_error_propagates(self, expand) -> None:
        with pytest.raises(FeedParseRejectedError):
            expand(b"")


class TestRecurringSeries:
    """RRULE, EXDATE, RDATE and RECURRENCE-ID handling."""

    def test_expand_when_weekly_series_then_instances_in_window(
        self, expand, make_ics, vevent
    ) -> None:
        raw = make_ics(
            vevent("series", "Team Sync", TEAM_SYNC_START, TEAM_SYNC_END, "RRULE:FREQ=WEEKLY;BYDAY=MO")
        )
        occurrences = expand(raw)
        assert [o.start for o in occurrences] == [_utc(2025, 6, 16, 16, 0), _utc(2025, 6, 23, 16, 0)]
        assert all(o.end - o.start == datetime.timedelta(minutes=30) for o in occurrences)
        assert len({o.id for o in occurrences}) == 2
        assert {o.uid for o in occurrences} == {"series"}

        classified = EventClassifier().classify_all(occurrences, profile_color="#4CAF50")
        assert [o.event_type for o in classified] == [EventType.REGULAR, EventType.REGULAR]
        assert {o.color for o in classified} == {"#4CAF50"}

    def test_expand_when_series_crosses_dst_then_wall_clock_kept(
        self, expand, make_ics, vevent
    ) -> None:
        """A series anchored in PST keeps 09:00 local after the switch to PDT."""
        raw = make_ics(
            vevent(
                "winter", "Standup",
                ";TZID=America/Los_Angeles:20250106T090000",
                ";TZID=America/Los_Angeles:20250106T091500",
                "RRULE:FREQ=WEEKLY;BYDAY=MO",
            )
        )
        starts = [o.start for o in expand(raw)]
        assert starts == [_utc(2025, 6, 16, 16, 0), _utc(2025, 6, 23, 16, 0)]

    def test_expand_when_exdate_then_instance_removed(self, expand, make_ics, vevent) -> None:
        raw = make_ics(
            vevent(
                "series", "Team Sync", TEAM_SYNC_START, TEAM_SYNC_END,
                "RRULE:FREQ=WEEKLY;BYDAY=MO",
                "EXDATE;TZID=America/Los_Angeles:20250616T090000",
            )
        )
        assert [o.start for o in expand(raw)] == [_utc(2025, 6, 23, 16, 0)]

    def test_expand_when_recurrence_id_override_then_replaces_instance(
        self, expand, make_ics, vevent
    ) -> None:
        raw = make_ics(
            vevent("series", "Team Sync", TEAM_SYNC_START, TEAM_SYNC_END, "RRULE:FREQ=WEEKLY;BYDAY=MO"),
            vevent(
                "series", "Team Sync (moved)", ":20250617T160000Z", ":20250617T163000Z",
                "RECURRENCE-ID;TZID=America/Los_Angeles:20250616T090000",
            ),
        )
        occurrences = expand(raw)
        assert [(o.start, o.title) for o in occurrences] == [
            (_utc(2025, 6, 17, 16, 0), "Team Sync (moved)"),
            (_utc(2025, 6, 23, 16, 0), "Team Sync"),
        ]

    def test_expand_when_cancelled_override_then_instance_suppressed(
        self, expand, make_ics, vevent
    ) -> None:
        raw = make_ics(
            vevent("series", "Team Sync", TEAM_SYNC_START, TEAM_SYNC_END, "RRULE:FREQ=WEEKLY;BYDAY=MO"),
            vevent(
                "series", "Team Sync", ";TZID=America/Los_Angeles:20250616T090000",
                ";TZID=America/Los_Angeles:20250616T093000",
                "RECURRENCE-ID;TZID=America/Los_Angeles:20250616T090000",
                "STATUS:CANCELLED",
            ),
        )
        assert [o.start for o in expand(raw)] == [_utc(2025, 6, 23, 16, 0)]

    def test_expand_when_until_utc_then_last_instance_inclusive(
        self, expand, make_ics, vevent
    ) -> None:
        raw = make_ics(
            vevent(
                "daily", "Check-in",
                ";TZID=America/Los_Angeles:20250610T090000",
                ";TZID=America/Los_Angeles:20250610T093000",
                "RRULE:FREQ=DAILY;UNTIL=20250613T160000Z",
            )
        )
        assert [o.start for o in expand(raw)] == [_utc(2025, 6, 12, 16, 0), _utc(2025, 6, 13, 16, 0)]

    def test_expand_when_until_is_date_then_whole_day_included(
        self, expand, make_ics, vevent
    ) -> None:
        raw = make_ics(
            vevent(
                "daily", "Check-in",
                ";TZID=America/Los_Angeles:20250610T090000",
                ";TZID=America/Los_Angeles:20250610T093000",
                "RRULE:FREQ=DAILY;UNTIL=20250613",
            )
        )
        assert [o.start for o in expand(raw)] == [_utc(2025, 6, 12, 16, 0), _utc(2025, 6, 13, 16, 0)]

    def test_expand_when_count_then_series_stops(self, expand, make_ics, vevent) -> None:
        raw = make_ics(
            vevent("count", "Course", ":20250612T170000Z", ":20250612T180000Z", "RRULE:FREQ=DAILY;COUNT=3")
        )
        assert len(expand(raw)) == 3

    def test_expand_when_rule_exceeds_cap_then_truncated(
        self, display_tz: ZoneInfo, fixed_now: datetime.datetime, make_ics, vevent
    ) -> None:
        raw = make_ics(
            vevent("hourly", "Ping", ":20250612T000000Z", ":20250612T000500Z", "RRULE:FREQ=HOURLY")
        )
        capped = RecurrenceExpander(display_tz, max_occurrences_per_rule=5)
        occurrences = capped.expand(
            raw, source_id="src", profile_id="alice", now=fixed_now, lookahead_days=14
        )
        assert len(occurrences) == 5

    def test_expand_when_rdate_only_then_master_and_extra_dates(
        self, expand, make_ics, vevent
    ) -> None:
        raw = make_ics(
            vevent("extra", "Recital", ":20250612T170000Z", ":20250612T180000Z", "RDATE:20250614T170000Z")
        )
        assert [o.start for o in expand(raw)] == [_utc(2025, 6, 12, 17, 0), _utc(2025, 6, 14, 17, 0)]

    def test_expand_when_yearly_all_day_then_date_occurrence(self, expand, make_ics, vevent) -> None:
        raw = make_ics(
            vevent(
                "bday", "Mom's Birthday", ";VALUE=DATE:19900615", ";VALUE=DATE:19900616",
                "RRULE:FREQ=YEARLY",
            )
        )
        (occurrence,) = expand(raw)
        assert occurrence.all_day is True
        assert occurrence.start_date == datetime.date(2025, 6, 15)
        assert occurrence.end_date == datetime.date(2025, 6, 16)
        assert occurrence.id == stable_occurrence_id("bday", datetime.date(2025, 6, 15))

    def test_expand_when_repeated_then_identical_output(self, expand, make_ics, vevent) -> None:
        raw = make_ics(
            vevent("series", "Team Sync", TEAM_SYNC_START, TEAM_SYNC_END, "RRULE:FREQ=WEEKLY;BYDAY=MO"),
            vevent("a", "Dentist"),
        )
        assert expand(raw) == expand(raw)
