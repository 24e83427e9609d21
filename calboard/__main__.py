"""Command-line entry for calboard."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import NoReturn, Optional

from . import run_server


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for calboard CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="calboard",
        description="Calboard - merged household calendar server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m calboard                           # Start with ./config.yaml on port 3000
  python -m calboard --config /etc/calboard.yaml
  python -m calboard --port 8080 --debug
        """,
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Configuration file (default: ./config.yaml, or CALBOARD_CONFIG env var)",
    )
    parser.add_argument(
        "--port",
        type=int,
        metavar="PORT",
        help="Port number for the web server (default: 3000, or CALBOARD_WEB_PORT env var)",
    )
    parser.add_argument(
        "--host",
        metavar="HOST",
        help="Address to bind (default: 0.0.0.0, or CALBOARD_WEB_HOST env var)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    return parser


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Run the calboard CLI."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    try:
        run_server(args)
    except ValueError as exc:
        logging.getLogger("calboard").error("Invalid configuration: %s", exc)
        sys.exit(2)
    sys.exit(0)


if __name__ == "__main__":
    main()
