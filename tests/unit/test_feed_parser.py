"""Unit tests for calboard.calendar.parser."""

import datetime
from zoneinfo import ZoneInfo

import pytest

from calboard.calendar.exceptions import FailureKind, FeedParseRejectedError
from calboard.calendar.models import DEFAULT_TITLE
from calboard.calendar.parser import MAX_TITLE_LENGTH, FeedParser

pytestmark = pytest.mark.unit

UTC = datetime.timezone.utc


@pytest.fixture
def parser(display_tz: ZoneInfo) -> FeedParser:
    """Parser pinned to the Los Angeles display zone."""
    return FeedParser(display_tz)


class TestFeedRejection:
    """Whole-feed rejection rules."""

    @pytest.mark.parametrize("raw", [b"", b"   \r\n"])
    def test_parse_when_body_empty_then_rejected(self, parser: FeedParser, raw: bytes) -> None:
        with pytest.raises(FeedParseRejectedError) as exc_info:
            parser.parse(raw, "src")
        assert exc_info.value.kind == FailureKind.PARSE_REJECTED
        assert exc_info.value.source_id == "src"

    def test_parse_when_html_error_page_then_rejected(self, parser: FeedParser) -> None:
        with pytest.raises(FeedParseRejectedError):
            parser.parse(b"<html><body>Sign in required</body></html>", "src")

    def test_parse_when_document_is_not_vcalendar_then_rejected(self, parser: FeedParser) -> None:
        raw = b"BEGIN:VEVENT\r\nUID:x\r\nDTSTART:20250612T170000Z\r\nEND:VEVENT\r\n"
        with pytest.raises(FeedParseRejectedError):
            parser.parse(raw, "src")

    def test_parse_when_every_item_malformed_then_rejected(
        self, parser: FeedParser, make_ics, vevent
    ) -> None:
        raw = make_ics(vevent("a", "No start", None, None), vevent("b", "No start", None, None))
        with pytest.raises(FeedParseRejectedError, match="malformed"):
            parser.parse(raw, "src")

    def test_parse_when_calendar_has_no_events_then_empty(self, parser: FeedParser, make_ics) -> None:
        assert parser.parse(make_ics(), "src") == []


class TestItemNormalization:
    """Per-item normalization."""

    def test_parse_when_one_item_malformed_then_others_kept(
        self, parser: FeedParser, make_ics, vevent
    ) -> None:
        raw = make_ics(
            vevent("good", "Dentist"),
            vevent("bad", "Inverted", ":20250612T180000Z", ":20250612T170000Z"),
        )
        items = parser.parse(raw, "src")
        assert [item.uid for item in items] == ["good"]

    def test_parse_when_utc_times_then_aware_utc(self, parser: FeedParser, make_ics, vevent) -> None:
        (item,) = parser.parse(make_ics(vevent("a", "Dentist")), "src")
        assert item.all_day is False
        assert item.start == datetime.datetime(2025, 6, 12, 17, 0, tzinfo=UTC)
        assert item.end == datetime.datetime(2025, 6, 12, 18, 0, tzinfo=UTC)

    def test_parse_when_tzid_then_wall_time_in_that_zone(
        self, parser: FeedParser, make_ics, vevent
    ) -> None:
        raw = make_ics(
            vevent(
                "a", "Standup",
                ";TZID=America/New_York:20250612T090000",
                ";TZID=America/New_York:20250612T093000",
            )
        )
        (item,) = parser.parse(raw, "src")
        assert item.start.astimezone(UTC) == datetime.datetime(2025, 6, 12, 13, 0, tzinfo=UTC)
        # Recurrence expansion relies on a DST-aware zone rather than a fixed offset
        assert isinstance(item.start.tzinfo, ZoneInfo)
        assert item.start.tzinfo.key == "America/New_York"

    def test_parse_when_floating_time_then_pinned_to_display_zone(
        self, parser: FeedParser, make_ics, vevent
    ) -> None:
        raw = make_ics(vevent("a", "Lunch", ":20250612T120000", ":20250612T130000"))
        (item,) = parser.parse(raw, "src")
        assert item.start.tzinfo is not None
        assert item.start.astimezone(UTC) == datetime.datetime(2025, 6, 12, 19, 0, tzinfo=UTC)

    def test_parse_when_date_without_end_then_one_day(
        self, parser: FeedParser, make_ics, vevent
    ) -> None:
        raw = make_ics(vevent("a", "Field trip", ";VALUE=DATE:20250613", None))
        (item,) = parser.parse(raw, "src")
        assert item.all_day is True
        assert item.start == datetime.date(2025, 6, 13)
        assert item.end == datetime.date(2025, 6, 14)

    def test_parse_when_duration_then_end_derived(self, parser: FeedParser, make_ics, vevent) -> None:
        raw = make_ics(vevent("a", "Call", ":20250612T170000Z", None, "DURATION:PT45M"))
        (item,) = parser.parse(raw, "src")
        assert item.end - item.start == datetime.timedelta(minutes=45)

    def test_parse_when_timed_without_end_then_zero_length(
        self, parser: FeedParser, make_ics, vevent
    ) -> None:
        (item,) = parser.parse(make_ics(vevent("a", "Reminder", ":20250612T170000Z", None)), "src")
        assert item.end == item.start

    def test_parse_when_summary_missing_then_default_title(
        self, parser: FeedParser, make_ics, vevent
    ) -> None:
        (item,) = parser.parse(make_ics(vevent("a", None)), "src")
        assert item.title == DEFAULT_TITLE

    def test_parse_when_title_too_long_then_truncated(
        self, parser: FeedParser, make_ics, vevent
    ) -> None:
        (item,) = parser.parse(make_ics(vevent("a", "x" * 500)), "src")
        assert len(item.title) == MAX_TITLE_LENGTH

    def test_parse_when_uid_missing_then_synthetic_uid_is_stable(
        self, parser: FeedParser, make_ics
    ) -> None:
        event = (
            "BEGIN:VEVENT\r\nSUMMARY:Walk\r\nDTSTART:20250612T170000Z\r\n"
            "DTEND:20250612T180000Z\r\nEND:VEVENT"
        )
        (first,) = parser.parse(make_ics(event), "src")
        (second,) = parser.parse(make_ics(event), "src")
        assert first.uid.startswith("calboard-")
        assert first.uid == second.uid

    def test_parse_when_metadata_present_then_carried(
        self, parser: FeedParser, make_ics, vevent
    ) -> None:
        raw = make_ics(
            vevent(
                "a", "Party", ":20250612T170000Z", ":20250612T180000Z",
                "LOCATION:Community Hall",
                "DESCRIPTION:Bring snacks",
                "CATEGORIES:Family,Birthday",
                "PRIORITY:1",
                "STATUS:CANCELLED",
            )
        )
        (item,) = parser.parse(raw, "src")
        assert item.location == "Community Hall"
        assert item.description == "Bring snacks"
        assert item.categories == ("Family", "Birthday")
        assert item.priority == 1
        assert item.cancelled is True

    def test_parse_when_priority_undefined_then_none(
        self, parser: FeedParser, make_ics, vevent
    ) -> None:
        raw = make_ics(vevent("a", "Chore", ":20250612T170000Z", ":20250612T180000Z", "PRIORITY:0"))
        (item,) = parser.parse(raw, "src")
        assert item.priority is None

    def test_parse_when_recurring_then_rules_and_exceptions_collected(
        self, parser: FeedParser, make_ics, vevent
    ) -> None:
        raw = make_ics(
            vevent(
                "series", "Team Sync",
                ";TZID=America/Los_Angeles:20250526T090000",
                ";TZID=America/Los_Angeles:20250526T093000",
                "RRULE:FREQ=WEEKLY;BYDAY=MO",
                "EXDATE;TZID=America/Los_Angeles:20250616T090000",
            )
        )
        (item,) = parser.parse(raw, "src")
        assert item.is_recurring is True
        assert len(item.rrules) == 1
        assert "FREQ=WEEKLY" in item.rrules[0]
        assert [d.astimezone(UTC) for d in item.exdates] == [
            datetime.datetime(2025, 6, 16, 16, 0, tzinfo=UTC)
        ]

    def test_parse_when_recurrence_id_then_marked_as_override(
        self, parser: FeedParser, make_ics, vevent
    ) -> None:
        raw = make_ics(
            vevent(
                "series", "Team Sync (moved)", ":20250617T160000Z", ":20250617T163000Z",
                "RECURRENCE-ID:20250616T160000Z",
            )
        )
        (item,) = parser.parse(raw, "src")
        assert item.is_recurring is False
        assert item.recurrence_id == datetime.datetime(2025, 6, 16, 16, 0, tzinfo=UTC)
