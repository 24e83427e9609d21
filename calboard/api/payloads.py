"""JSON payload builders for the display-facing API."""

from __future__ import annotations

import dataclasses
from typing import Any, Iterable

from calboard.config_loader import AppConfig
from calboard.core.health_tracker import HealthStatus
from calboard.core.logging_config import get_logging_status
from calboard.domain.cache import CacheEntry
from calboard.domain.models import AggregationResult, ResultStatus


def _serialize_iso(value: Any) -> str | None:
    return value.isoformat() if value is not None else None


def result_payload(result: AggregationResult, entry: CacheEntry) -> dict[str, Any]:
    """Full aggregation payload with cache freshness metadata.

    ``important[].days_until`` is computed at ``generated_at`` and is not refreshed
    between cycles. When the entry is being served after a failed cycle, ``sources``
    and ``stale_sources`` describe that cycle rather than the one that built it.
    """
    payload = result.model_dump(mode="json")
    sources = entry.source_statuses or result.sources
    stale_sources = [s.source_id for s in sources if s.stale]

    status = result.status
    if status == ResultStatus.OK and stale_sources:
        status = ResultStatus.PARTIAL

    payload.update(
        {
            "status": status.value,
            "sources": [s.model_dump(mode="json") for s in sources],
            "error": entry.error or result.error,
            "stale": entry.stale,
            "captured_at": _serialize_iso(entry.captured_at),
            "version": entry.version,
            "stale_sources": stale_sources,
        }
    )
    return payload


def agenda_payload(
    filtered: AggregationResult,
    entry: CacheEntry,
    hidden_profiles: Iterable[str],
) -> dict[str, Any]:
    """Presentation-filtered payload for displays that do not filter locally."""
    payload = result_payload(filtered, entry)
    payload["hidden_profiles"] = sorted(hidden_profiles)
    return payload


def config_payload(config: AppConfig) -> dict[str, Any]:
    """Display settings and profile summaries; feed URLs are never exposed."""
    display = config.display
    return {
        "display": {
            "timezone": display.timezone,
            "days_to_show": display.days_to_show,
            "lookahead_days": display.effective_lookahead_days,
            "refresh_interval_minutes": display.refresh_interval_minutes,
            "time_format": display.time_format,
            "date_format": display.date_format,
            "grace_minutes": display.grace_minutes,
            "background_image": display.background_image,
        },
        "profiles": [
            {
                "id": profile.id,
                "name": profile.name,
                "color": profile.color,
                "source_count": len(profile.sources),
            }
            for profile in config.profiles
        ],
        "calendar_count": sum(len(p.sources) for p in config.profiles),
    }


def health_payload(status: HealthStatus, cache_entry: CacheEntry) -> dict[str, Any]:
    data = dataclasses.asdict(status)
    data["cache"] = {
        "version": cache_entry.version,
        "stale": cache_entry.stale,
        "captured_at": _serialize_iso(cache_entry.captured_at),
    }
    data["logging"] = get_logging_status()
    return data
