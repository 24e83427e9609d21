"""Health tracking for the calboard refresher and its feed sources."""

from __future__ import annotations

import os
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

# Minimum seconds without a successful refresh before the server reports degraded
STALE_REFRESH_SECONDS = 900
# Minimum seconds without a background heartbeat before the refresher is reported stale
STALE_HEARTBEAT_SECONDS = 600
# Both thresholds stretch to this many refresh intervals
MISSED_INTERVALS = 2


@dataclass
class HealthStatus:
    """Snapshot served by ``GET /api/health``."""

    status: str  # "ok" or "degraded"
    server_time_iso: str
    uptime_seconds: int
    pid: int
    occurrence_count: int
    refresh_attempts: int
    refresh_successes: int
    last_refresh_success_age_seconds: Optional[int]
    failing_sources: dict[str, int] = field(default_factory=dict)
    background_tasks: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class BackgroundTaskStatus:
    name: str
    status: str  # "running", "stale" or "unknown"
    last_heartbeat_age_s: Optional[int] = None


def _age(timestamp: Optional[float]) -> Optional[int]:
    if timestamp is None:
        return None
    return int(time.time() - timestamp)


class HealthTracker:
    """In-memory counters updated by the aggregator after every cycle."""

    def __init__(self, refresh_interval_seconds: float = 0) -> None:
        """Initialize tracker.

        Args:
            refresh_interval_seconds: Configured refresh period; long periods raise the
                staleness thresholds so an idle refresher is not reported as degraded
        """
        slack = MISSED_INTERVALS * refresh_interval_seconds
        self.stale_refresh_seconds = max(STALE_REFRESH_SECONDS, slack)
        self.stale_heartbeat_seconds = max(STALE_HEARTBEAT_SECONDS, slack)
        self._started_at = time.time()
        self._attempts = 0
        self._successes = 0
        self._last_success_at: Optional[float] = None
        self._heartbeat_at: Optional[float] = None
        self._occurrence_count = 0
        # consecutive failures per source id
        self._source_failures: dict[str, int] = {}

    def record_refresh_attempt(self) -> None:
        self._attempts += 1

    def record_refresh_success(self, occurrence_count: int) -> None:
        """Record a published cycle and the number of occurrences it carried."""
        self._successes += 1
        self._last_success_at = time.time()
        self._occurrence_count = occurrence_count

    def record_background_heartbeat(self) -> None:
        self._heartbeat_at = time.time()

    def record_source_result(self, source_id: str, ok: bool) -> None:
        """Count consecutive failures per source; a fresh result clears the count."""
        if ok:
            self._source_failures.pop(source_id, None)
        else:
            self._source_failures[source_id] = self._source_failures.get(source_id, 0) + 1

    def get_last_refresh_age_seconds(self) -> Optional[int]:
        """Seconds since the last published cycle, or None if nothing was published yet."""
        return _age(self._last_success_at)

    def get_background_task_status(self) -> dict[str, Any]:
        age = _age(self._heartbeat_at)
        if age is None:
            state = "unknown"
        elif age < self.stale_heartbeat_seconds:
            state = "running"
        else:
            state = "stale"
        return asdict(BackgroundTaskStatus("refresher_task", state, age))

    def determine_overall_status(self) -> str:
        age = self.get_last_refresh_age_seconds()
        if age is None or age > self.stale_refresh_seconds:
            return "degraded"
        return "ok"

    def get_health_status(self, current_time_iso: str) -> HealthStatus:
        return HealthStatus(
            status=self.determine_overall_status(),
            server_time_iso=current_time_iso,
            uptime_seconds=int(time.time() - self._started_at),
            pid=os.getpid(),
            occurrence_count=self._occurrence_count,
            refresh_attempts=self._attempts,
            refresh_successes=self._successes,
            last_refresh_success_age_seconds=self.get_last_refresh_age_seconds(),
            failing_sources=dict(self._source_failures),
            background_tasks=[self.get_background_task_status()],
        )
