"""
Central logging configuration for calboard.

Installs a colorized console handler and suppresses verbose debug logs from
third-party libraries while keeping calboard's own diagnostics visible.
"""

import logging
import os
import sys
from typing import Optional

from colorlog import ColoredFormatter

LOG_FORMAT = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"

LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}

# Third-party loggers that are chatty at DEBUG/INFO
NOISY_LOGGERS: dict[str, int] = {
    "aiohttp.access": logging.WARNING,
    "aiohttp.server": logging.WARNING,
    "aiohttp.web": logging.INFO,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
    "icalendar": logging.INFO,
}

_TRUTHY = ("1", "true", "yes", "on")


def _env_debug_enabled() -> bool:
    return os.getenv("CALBOARD_DEBUG", "").strip().lower() in _TRUTHY


def configure_logging(debug_mode: bool = False, level_name: Optional[str] = None) -> None:
    """
    Configure root and library log levels for calboard.

    Args:
        debug_mode: Enable DEBUG output for calboard modules
        level_name: Explicit root level name (e.g. "WARNING"); ignored when debug is on

    Environment Variables:
        CALBOARD_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        CALBOARD_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    final_debug = debug_mode or _env_debug_enabled()

    env_level = os.getenv("CALBOARD_LOG_LEVEL", "").upper()
    requested = (level_name or env_level or "INFO").upper()
    root_level = logging.DEBUG if final_debug else getattr(logging, requested, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    # Only install a handler once so repeated calls do not duplicate output
    if not root_logger.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        handler.setFormatter(
            ColoredFormatter(LOG_FORMAT, datefmt="%H:%M:%S", log_colors=LOG_COLORS)
        )
        root_logger.addHandler(handler)

    for logger_name, level in NOISY_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(level)

    logging.getLogger("calboard").setLevel(logging.DEBUG if final_debug else root_level)

    if final_debug:
        root_logger.info("Debug logging enabled for calboard modules")
    else:
        root_logger.debug(
            "Logging initialized at level %s", logging.getLevelName(root_level)
        )


def get_logging_status() -> dict[str, str]:
    """
    Get current logging configuration status.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for logger_name in ("calboard", "aiohttp.access", "httpx", "asyncio"):
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)
    return status
