"""aiohttp server and background refresher for calboard."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
from typing import Any

from aiohttp import web

from calboard.api.routes import register_calendar_routes
from calboard.config_loader import AppConfig
from calboard.core.health_tracker import HealthTracker
from calboard.core.http_client import close_all_clients
from calboard.core.logging_config import configure_logging
from calboard.core.timezone_utils import now_utc
from calboard.domain.aggregator import CalendarAggregator
from calboard.domain.cache import ResultCache
from calboard.domain.visibility_store import VisibilityStore

logger = logging.getLogger(__name__)

MAX_PORT_ATTEMPTS = 10


def _make_app(
    aggregator: CalendarAggregator,
    visibility_store: VisibilityStore,
    health_tracker: HealthTracker,
) -> web.Application:
    """Create aiohttp web application with routes wired to the aggregator."""
    app = web.Application()

    register_calendar_routes(
        app=app,
        aggregator=aggregator,
        visibility_store=visibility_store,
        health_tracker=health_tracker,
        time_provider=now_utc,
    )

    async def _shutdown(_app: Any) -> None:
        logger.info("Application shutdown requested")

    app.on_shutdown.append(_shutdown)
    return app


def build_components(config: AppConfig) -> tuple[CalendarAggregator, VisibilityStore, HealthTracker]:
    """Construct the cache, stores and aggregator described by ``config``."""
    health_tracker = HealthTracker(config.display.refresh_interval_minutes * 60)
    cache = ResultCache(config.cache.path)
    visibility_store = VisibilityStore(config.cache.visibility_path)
    aggregator = CalendarAggregator(config, cache=cache, health_tracker=health_tracker)
    return aggregator, visibility_store, health_tracker


async def _start_site(runner: web.AppRunner, host: str, configured_port: int) -> int:
    """Start a TCP site on the configured port, trying the next ports if it is taken."""
    for port_offset in range(MAX_PORT_ATTEMPTS):
        port = configured_port + port_offset
        site = web.TCPSite(runner, host=host, port=port)
        try:
            await site.start()
        except OSError as e:
            if "address already in use" not in str(e).lower():
                logger.exception("Failed to start server on %s:%d", host, port)
                raise
            logger.debug("Port %d in use, trying next port", port)
            continue
        if port != configured_port:
            logger.warning(
                "Configured port %d was in use, using port %d instead", configured_port, port
            )
        return port

    raise RuntimeError(
        f"No available port found in range {configured_port}-"
        f"{configured_port + MAX_PORT_ATTEMPTS - 1}"
    )


async def _serve(config: AppConfig, external_stop_event: asyncio.Event | None = None) -> None:
    """Run the server and background refresher until signalled to stop.

    Args:
        config: Validated configuration
        external_stop_event: Optional event to signal shutdown. If provided,
            signal handlers are not registered (caller owns signal handling).
    """
    stop_event = external_stop_event or asyncio.Event()
    aggregator, visibility_store, health_tracker = build_components(config)

    app = _make_app(aggregator, visibility_store, health_tracker)
    runner = web.AppRunner(app)
    await runner.setup()

    port = await _start_site(runner, config.server.bind, config.server.port)
    logger.info(
        "Calboard server running at http://%s:%d (pid %d)", config.server.bind, port, os.getpid()
    )

    refresher = asyncio.create_task(aggregator.run_forever(stop_event))

    if external_stop_event is None:
        loop = asyncio.get_running_loop()

        def _on_signal() -> None:
            logger.info("Shutdown signal received")
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, _on_signal)

    await stop_event.wait()
    logger.info("Stop event received, shutting down")

    refresher.cancel()
    try:
        await refresher
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.warning("Refresher task error during shutdown: %s", e)

    await runner.cleanup()

    try:
        await close_all_clients()
    except Exception as e:
        logger.warning("Error cleaning up shared HTTP clients: %s", e)

    logger.info("Server shutdown complete")


def start_server(config: AppConfig) -> None:
    """Start the asyncio event loop and HTTP server.

    Blocks the calling thread until SIGINT/SIGTERM is received.
    """
    configure_logging(debug_mode=config.debug_logging, level_name=config.log_level)
    logger.info(
        "Loaded %d profiles with %d enabled sources",
        len(config.profiles),
        len(config.enabled_sources()),
    )

    try:
        asyncio.run(_serve(config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception:
        logger.exception("Server terminated unexpectedly")
        raise
