"""Shared fixtures for calboard tests."""

from collections.abc import AsyncIterator, Generator
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo

import pytest

from calboard.core.http_client import close_all_clients

DISPLAY_TZ_NAME = "America/Los_Angeles"


@pytest.fixture
def display_tz() -> ZoneInfo:
    """Deterministic display zone so tests do not depend on the host zone."""
    return ZoneInfo(DISPLAY_TZ_NAME)


@pytest.fixture
def fixed_now() -> datetime:
    """Wednesday 2025-06-11 10:00 in Los Angeles (17:00 UTC)."""
    return datetime(2025, 6, 11, 17, 0, tzinfo=timezone.utc)


@pytest.fixture
def vevent() -> Callable[..., str]:
    """Build a VEVENT block.

    Times are passed as raw iCalendar property values including parameters, e.g.
    ``dtstart=";TZID=America/Los_Angeles:20250616T090000"`` or ``dtstart=":20250616T160000Z"``.
    """

    def _build(
        uid: str,
        summary: Optional[str] = "Event",
        dtstart: str = ":20250612T170000Z",
        dtend: Optional[str] = ":20250612T180000Z",
        *extra: str,
    ) -> str:
        lines = ["BEGIN:VEVENT", f"UID:{uid}", "DTSTAMP:20250601T000000Z"]
        if summary is not None:
            lines.append(f"SUMMARY:{summary}")
        if dtstart is not None:
            lines.append(f"DTSTART{dtstart}")
        if dtend is not None:
            lines.append(f"DTEND{dtend}")
        lines.extend(extra)
        lines.append("END:VEVENT")
        return "\r\n".join(lines)

    return _build


@pytest.fixture
def make_ics() -> Callable[..., bytes]:
    """Wrap VEVENT blocks into a complete VCALENDAR document."""

    def _build(*events: str) -> bytes:
        body = [
            "BEGIN:VCALENDAR",
            "VERSION:2.0",
            "PRODID:-//Calboard Test//EN",
            "CALSCALE:GREGORIAN",
            *events,
            "END:VCALENDAR",
        ]
        return ("\r\n".join(body) + "\r\n").encode("utf-8")

    return _build


@pytest.fixture
def sample_config_data() -> dict[str, Any]:
    """Two profiles, Alice with one personal feed and Bob with one, in priority order."""
    return {
        "display": {"timezone": DISPLAY_TZ_NAME, "days_to_show": 7, "lookahead_days": 14},
        "profiles": [
            {
                "name": "Alice",
                "color": "#4CAF50",
                "sources": [{"id": "alice-main", "url": "https://feeds.example.com/alice.ics"}],
            },
            {
                "name": "Bob",
                "color": "#2196F3",
                "sources": [{"id": "bob-main", "url": "https://feeds.example.com/bob.ics"}],
            },
        ],
    }


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Keep CALBOARD_* overrides from leaking between tests."""
    for key in (
        "CALBOARD_TEST_TIME",
        "CALBOARD_CONFIG",
        "CALBOARD_WEB_HOST",
        "CALBOARD_WEB_PORT",
        "CALBOARD_TIMEZONE",
        "CALBOARD_REFRESH_MINUTES",
        "CALBOARD_ICS_URL",
        "CALBOARD_LOG_LEVEL",
        "CALBOARD_DEBUG",
        "CALBOARD_CACHE_PATH",
    ):
        monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture(autouse=True)
async def cleanup_shared_http_clients() -> AsyncIterator[None]:
    """Close shared httpx clients after every test to avoid leaking connections."""
    yield
    await close_all_clients()
