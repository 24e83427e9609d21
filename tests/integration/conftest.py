"""Fixtures for aggregator and API integration tests."""

import asyncio
import datetime
from typing import Any, Callable, Optional, Union

import pytest

from calboard.config_loader import AppConfig
from calboard.domain.aggregator import CalendarAggregator
from calboard.domain.cache import ResultCache

FeedOutcome = Union[bytes, BaseException]


class FakeFetcher:
    """Stands in for FeedFetcher; answers from a per-source table without network I/O."""

    def __init__(self, feeds: dict[str, FeedOutcome]):
        self.feeds = feeds
        self.delays: dict[str, float] = {}
        self.calls: list[str] = []

    async def fetch(self, source: Any, timeout: Optional[float] = None) -> bytes:
        self.calls.append(source.id)
        delay = self.delays.get(source.id)
        if delay:
            await asyncio.sleep(delay)
        outcome = self.feeds[source.id]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def alice_feed(make_ics: Callable[..., bytes], vevent: Callable[..., str]) -> bytes:
    """Dentist tomorrow, a birthday on Sunday and an event shared with Bob's feed."""
    return make_ics(
        vevent("dentist", "Dentist", ":20250612T170000Z", ":20250612T180000Z"),
        vevent("mom-bday", "Mom's Birthday", ";VALUE=DATE:20250615", ";VALUE=DATE:20250616"),
        vevent("family-dinner", "Family Dinner", ":20250614T010000Z", ":20250614T030000Z"),
    )


@pytest.fixture
def bob_feed(make_ics: Callable[..., bytes], vevent: Callable[..., str]) -> bytes:
    """Soccer this afternoon plus the shared dinner."""
    return make_ics(
        vevent("soccer", "Soccer", ":20250611T230000Z", ":20250612T000000Z"),
        vevent("family-dinner", "Family Dinner", ":20250614T010000Z", ":20250614T030000Z"),
    )


@pytest.fixture
def fake_fetcher(alice_feed: bytes, bob_feed: bytes) -> FakeFetcher:
    return FakeFetcher({"alice-main": alice_feed, "bob-main": bob_feed})


@pytest.fixture
def app_config(sample_config_data: dict[str, Any]) -> AppConfig:
    return AppConfig.model_validate(sample_config_data)


@pytest.fixture
def clock(fixed_now: datetime.datetime) -> Callable[[], datetime.datetime]:
    """Mutable clock; tests advance it with ``clock.advance(minutes=...)``."""
    state = {"now": fixed_now}

    def _now() -> datetime.datetime:
        return state["now"]

    def _advance(**delta: float) -> None:
        state["now"] = state["now"] + datetime.timedelta(**delta)

    _now.advance = _advance  # type: ignore[attr-defined]
    return _now


@pytest.fixture
def aggregator(
    app_config: AppConfig,
    fake_fetcher: FakeFetcher,
    clock: Callable[[], datetime.datetime],
) -> CalendarAggregator:
    return CalendarAggregator(app_config, cache=ResultCache(), fetcher=fake_fetcher, clock=clock)
