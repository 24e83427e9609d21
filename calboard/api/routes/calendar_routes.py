"""Calendar API routes for calboard."""

from __future__ import annotations

import datetime
import logging
from typing import Any, Callable

from calboard.api.payloads import agenda_payload, config_payload, health_payload, result_payload
from calboard.domain.presentation import filter_result

logger = logging.getLogger(__name__)


def _parse_hidden(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def register_calendar_routes(
    app: Any,
    aggregator: Any,
    visibility_store: Any,
    health_tracker: Any,
    time_provider: Callable[[], datetime.datetime],
) -> None:
    """Register calendar API routes.

    Args:
        app: aiohttp web application
        aggregator: CalendarAggregator owning the published result
        visibility_store: VisibilityStore for the hidden-profile preference
        health_tracker: HealthTracker instance
        time_provider: Returns the current aware UTC time
    """
    from aiohttp import web

    def _current_payload() -> dict[str, Any]:
        entry = aggregator.current()
        return result_payload(aggregator.current_result(), entry)

    async def get_calendars(_request: Any) -> Any:
        """Current aggregation result; "unavailable" status before the first success."""
        return web.json_response(_current_payload(), status=200)

    async def refresh_calendars(_request: Any) -> Any:
        """Force a refresh cycle, joining one already in progress."""
        logger.info("Manual refresh requested")
        await aggregator.refresh()
        return web.json_response(_current_payload(), status=200)

    async def get_agenda(request: Any) -> Any:
        """Presentation-filtered agenda using ``hidden=`` or the stored preference."""
        if "hidden" in request.query:
            hidden = _parse_hidden(request.query["hidden"])
        else:
            hidden = sorted(visibility_store.hidden_profiles())

        display = aggregator.config.display
        filtered = filter_result(
            aggregator.current_result(),
            hidden,
            time_provider(),
            display.tzinfo,
            grace=datetime.timedelta(minutes=display.grace_minutes),
        )
        return web.json_response(agenda_payload(filtered, aggregator.current(), hidden))

    async def get_visibility(_request: Any) -> Any:
        hidden = visibility_store.hidden_profiles()
        return web.json_response({"hidden_profiles": sorted(hidden)})

    async def put_visibility(request: Any) -> Any:
        """Replace the stored hidden-profile set."""
        try:
            data = await request.json()
        except ValueError:
            return web.json_response({"error": "invalid json"}, status=400)

        hidden = data.get("hidden_profiles") if isinstance(data, dict) else None
        if not isinstance(hidden, list) or not all(isinstance(p, str) for p in hidden):
            return web.json_response(
                {"error": "hidden_profiles must be a list of profile ids"}, status=400
            )

        try:
            stored = visibility_store.set_hidden(hidden)
        except ValueError as e:
            return web.json_response({"error": str(e)}, status=400)

        known = {profile.id for profile in aggregator.config.profiles}
        unknown = sorted(set(stored) - known)
        if unknown:
            logger.debug("Hidden set contains unknown profiles: %s", unknown)
        return web.json_response({"hidden_profiles": sorted(stored), "unknown_profiles": unknown})

    async def get_config(_request: Any) -> Any:
        return web.json_response(config_payload(aggregator.config))

    async def health_check(_request: Any) -> Any:
        """Health check endpoint for monitoring system status."""
        now_iso = time_provider().isoformat()
        health_status = health_tracker.get_health_status(now_iso)
        http_status = 200 if health_status.status == "ok" else 503
        return web.json_response(
            health_payload(health_status, aggregator.current()), status=http_status
        )

    app.router.add_get("/api/calendars", get_calendars)
    app.router.add_post("/api/calendars/refresh", refresh_calendars)
    app.router.add_get("/api/agenda", get_agenda)
    app.router.add_get("/api/visibility", get_visibility)
    app.router.add_put("/api/visibility", put_visibility)
    app.router.add_get("/api/config", get_config)
    app.router.add_get("/api/health", health_check)
