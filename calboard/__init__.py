"""calboard - calendar aggregation and presentation engine for household dashboards.

Fetches several independent iCalendar feeds, expands recurrences, classifies and
deduplicates occurrences, and serves a merged agenda to browser displays.
"""

__version__ = "1.0.0"

from typing import Optional


def run_server(args: Optional[object] = None) -> None:
    """Load configuration and start the calboard server.

    Args:
        args: Optional argparse namespace with ``config``, ``port``, ``host`` and ``debug``

    Configuration precedence, lowest first: config file, .env file, environment
    variables, command line arguments.
    """
    import logging

    from calboard.api.server import start_server
    from calboard.config_loader import load_config
    from calboard.core.config_manager import ConfigManager, get_config_path
    from calboard.core.logging_config import configure_logging

    configure_logging(debug_mode=bool(getattr(args, "debug", False)))
    logger = logging.getLogger(__name__)

    overrides = ConfigManager().load_full_overrides()

    if args is not None:
        port = getattr(args, "port", None)
        if port is not None:
            overrides.setdefault("server", {})["port"] = int(port)
            logger.debug("Applied command line port override: %d", port)
        host = getattr(args, "host", None)
        if host:
            overrides.setdefault("server", {})["bind"] = host
        if getattr(args, "debug", False):
            overrides["debug_logging"] = True

    config_path = get_config_path(getattr(args, "config", None))
    config = load_config(config_path, overrides=overrides)
    start_server(config)
