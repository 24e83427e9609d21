"""Environment-driven configuration overrides for calboard."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "config.yaml"


class ConfigManager:
    """Collects configuration overrides from environment variables and .env files."""

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file and set environment variables.

        Only sets variables that are not already in the environment so an explicit
        export always wins over the file.

        Returns:
            List of environment variable keys that were loaded from .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        set_keys = []

        try:
            content = self.env_file_path.read_text(encoding="utf-8")
        except OSError:
            logger.warning("Failed to read .env file %s", self.env_file_path, exc_info=True)
            return []

        for raw_line in content.splitlines():
            line = raw_line.strip()

            if not line or line.startswith("#") or "=" not in line:
                continue

            key, val = line.split("=", 1)
            key = key.strip()
            val = val.strip().strip('"').strip("'")

            if key and key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))

        return set_keys

    def build_overrides_from_env(self) -> dict[str, Any]:
        """Build a nested override mapping from environment variables.

        Recognizes:
        - CALBOARD_WEB_HOST -> server.bind
        - CALBOARD_WEB_PORT -> server.port (int)
        - CALBOARD_TIMEZONE -> display.timezone
        - CALBOARD_REFRESH_MINUTES -> display.refresh_interval_minutes (int)
        - CALBOARD_ICS_URL -> single default profile, used only when none are configured
        - CALBOARD_CACHE_PATH -> cache.path
        - CALBOARD_LOG_LEVEL -> log_level
        - CALBOARD_DEBUG -> debug_logging

        Returns:
            Mapping shaped like the configuration file
        """
        overrides: dict[str, Any] = {}

        host = os.environ.get("CALBOARD_WEB_HOST")
        if host:
            overrides.setdefault("server", {})["bind"] = host

        port = os.environ.get("CALBOARD_WEB_PORT")
        if port:
            try:
                overrides.setdefault("server", {})["port"] = int(port)
            except ValueError:
                logger.warning("Invalid CALBOARD_WEB_PORT=%r; ignoring", port)

        tz_name = os.environ.get("CALBOARD_TIMEZONE")
        if tz_name:
            overrides.setdefault("display", {})["timezone"] = tz_name

        refresh = os.environ.get("CALBOARD_REFRESH_MINUTES")
        if refresh:
            try:
                overrides.setdefault("display", {})["refresh_interval_minutes"] = int(refresh)
            except ValueError:
                logger.warning("Invalid CALBOARD_REFRESH_MINUTES=%r; ignoring", refresh)

        ics_url = os.environ.get("CALBOARD_ICS_URL")
        if ics_url:
            overrides["default_ics_url"] = ics_url

        cache_path = os.environ.get("CALBOARD_CACHE_PATH")
        if cache_path:
            overrides.setdefault("cache", {})["path"] = cache_path

        log_level = os.environ.get("CALBOARD_LOG_LEVEL")
        if log_level:
            overrides["log_level"] = log_level.upper()

        if os.environ.get("CALBOARD_DEBUG", "").strip().lower() in ("1", "true", "yes", "on"):
            overrides["debug_logging"] = True

        return overrides

    def load_full_overrides(self) -> dict[str, Any]:
        """Load .env file and build overrides from the environment."""
        self.load_env_file()
        return self.build_overrides_from_env()


def get_config_path(explicit: str | None = None) -> Path:
    """Resolve the configuration file path.

    Precedence: explicit argument, CALBOARD_CONFIG, ./config.yaml.
    """
    if explicit:
        return Path(explicit)
    env_path = os.environ.get("CALBOARD_CONFIG")
    if env_path:
        return Path(env_path)
    return Path.cwd() / DEFAULT_CONFIG_FILENAME
