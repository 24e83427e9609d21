"""calboard.config_loader

Configuration loading and validation for calboard.

- Reads YAML (PyYAML ``safe_load``) or JSON (by ``.json`` suffix).
- Validates once at the boundary with pydantic models; the rest of the engine
  consumes ``AppConfig`` without re-checking.
- Accepts the legacy flat ``calendars: [{name, url, color}]`` form, producing one
  profile per calendar.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_snake

from calboard.calendar.models import EventType
from calboard.core.timezone_utils import (
    DEFAULT_DISPLAY_TIMEZONE,
    is_valid_timezone,
    resolve_timezone,
)

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_COLOR = "#4CAF50"
# Look-ahead floor so countdowns can see past the visible agenda
MIN_LOOKAHEAD_DAYS = 14

_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    slug = _SLUG_RE.sub("-", name.strip().lower()).strip("-")
    return slug or "profile"


def _validate_color(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not _COLOR_RE.match(value):
        raise ValueError(f"color must be #RGB or #RRGGBB, got {value!r}")
    return value.upper()


class SourceConfig(BaseModel):
    """One calendar feed owned by a profile."""

    id: Optional[str] = None
    url: str
    name: Optional[str] = None
    enabled: bool = True
    color: Optional[str] = None
    event_type: Optional[EventType] = None
    timeout: Optional[float] = Field(default=None, gt=0, le=120)

    @field_validator("url")
    @classmethod
    def _normalize_url(cls, value: str) -> str:
        value = value.strip()
        if value.lower().startswith("webcal://"):
            value = "https://" + value[len("webcal://"):]
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError(f"feed url must be http(s) or webcal, got {value!r}")
        return value

    @field_validator("color")
    @classmethod
    def _check_color(cls, value: Optional[str]) -> Optional[str]:
        return _validate_color(value)


class ProfileConfig(BaseModel):
    """A named owner (household member) with a color and its sources."""

    id: Optional[str] = None
    name: str
    color: str = DEFAULT_PROFILE_COLOR
    sources: list[SourceConfig] = Field(default_factory=list)

    @field_validator("color")
    @classmethod
    def _check_color(cls, value: str) -> str:
        return _validate_color(value) or DEFAULT_PROFILE_COLOR

    @model_validator(mode="after")
    def _derive_ids(self) -> ProfileConfig:
        if not self.id:
            self.id = slugify(self.name)
        for index, source in enumerate(self.sources, start=1):
            if not source.id:
                source.id = f"{self.id}-{index}"
            if not source.name:
                source.name = self.name
        return self


class DisplaySettings(BaseModel):
    """Display-side settings; camelCase keys from the dashboard config are accepted."""

    timezone: str = DEFAULT_DISPLAY_TIMEZONE
    days_to_show: int = Field(default=7, ge=1, le=60)
    lookahead_days: Optional[int] = Field(default=None, ge=1, le=366)
    refresh_interval_minutes: int = Field(default=5, ge=1, le=1440)
    time_format: Literal["12h", "24h"] = "12h"
    date_format: str = "en-US"
    grace_minutes: int = Field(default=30, ge=0, le=24 * 60)
    background_image: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_camel_case(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        # snake_case keys win when both spellings are present
        normalized = {to_snake(k): v for k, v in data.items()}
        normalized.update({k: v for k, v in data.items() if to_snake(k) == k})
        return normalized

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        if not is_valid_timezone(value):
            raise ValueError(f"unknown timezone {value!r}")
        return value

    @property
    def tzinfo(self):
        return resolve_timezone(self.timezone)

    @property
    def effective_lookahead_days(self) -> int:
        """Expansion window length; never shorter than the visible agenda."""
        requested = self.lookahead_days or MIN_LOOKAHEAD_DAYS
        return max(requested, self.days_to_show)


class ClassifierSettings(BaseModel):
    birthday_keywords: list[str] = Field(default_factory=lambda: ["birthday", "bday", "b-day"])
    anniversary_keywords: list[str] = Field(default_factory=lambda: ["anniversary"])
    holiday_keywords: list[str] = Field(default_factory=lambda: ["holiday"])
    important_keywords: list[str] = Field(default_factory=lambda: ["important"])
    important_priority_max: int = Field(default=4, ge=0, le=9)


class ServerSettings(BaseModel):
    bind: str = "0.0.0.0"  # nosec: B104 - dashboard is served on the local network
    port: int = Field(default=3000, ge=1, le=65535)


class CacheSettings(BaseModel):
    path: Optional[str] = None
    visibility_path: Optional[str] = None


class AppConfig(BaseModel):
    """Validated configuration for the whole engine."""

    display: DisplaySettings = Field(default_factory=DisplaySettings)
    profiles: list[ProfileConfig] = Field(default_factory=list)
    classifier: ClassifierSettings = Field(default_factory=ClassifierSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    fetch_timeout_seconds: float = Field(default=10.0, gt=0, le=120)
    cycle_timeout_seconds: float = Field(default=30.0, gt=0, le=600)
    fetch_concurrency: int = Field(default=4, ge=1, le=16)
    max_occurrences_per_rule: int = Field(default=250, ge=1, le=5000)
    log_level: str = "INFO"
    debug_logging: bool = False

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_layout(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        calendars = data.pop("calendars", None)
        if calendars and not data.get("profiles"):
            profiles = []
            for entry in calendars:
                if not isinstance(entry, dict):
                    continue
                profile = {
                    "name": entry.get("name") or "Calendar",
                    "sources": [{"url": entry.get("url"), "name": entry.get("name")}],
                }
                if entry.get("color"):
                    profile["color"] = entry["color"]
                profiles.append(profile)
            data["profiles"] = profiles

        default_url = data.pop("default_ics_url", None)
        if default_url and not data.get("profiles"):
            data["profiles"] = [{"name": "Calendar", "sources": [{"url": default_url}]}]
        return data

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @model_validator(mode="after")
    def _check_unique_ids(self) -> AppConfig:
        seen_profiles: set[str] = set()
        seen_sources: set[str] = set()
        for profile in self.profiles:
            if profile.id in seen_profiles:
                raise ValueError(f"duplicate profile id {profile.id!r}")
            seen_profiles.add(profile.id)
            for source in profile.sources:
                if source.id in seen_sources:
                    raise ValueError(f"duplicate source id {source.id!r}")
                seen_sources.add(source.id)
        return self

    def enabled_sources(self) -> list[tuple[ProfileConfig, SourceConfig]]:
        """Enabled (profile, source) pairs in priority order, highest first."""
        return [
            (profile, source)
            for profile in self.profiles
            for source in profile.sources
            if source.enabled
        ]

    def source_priority(self) -> list[str]:
        return [source.id for _, source in self.enabled_sources()]


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_yaml_or_json(path: Path) -> Any:
    """Load a mapping from a YAML or JSON file; empty files load as an empty mapping."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text) if text.strip() else {}
    loaded = yaml.safe_load(text)
    return {} if loaded is None else loaded


def load_config(
    path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> AppConfig:
    """Load configuration from a YAML/JSON file and return a validated AppConfig.

    Args:
        path: Optional config file path; ./config.yaml when omitted
        overrides: Nested mapping merged over the file contents (environment overrides)

    Returns:
        Validated AppConfig

    Behavior:
    - Missing file: defaults (no profiles) plus overrides.
    - Top-level value that is not a mapping: ValueError.
    - Invalid values: pydantic ValidationError (a ValueError subclass).
    """
    p = Path(path) if path else Path.cwd() / "config.yaml"
    logger.debug("Attempting to load config from %s", p)

    if p.exists():
        raw = _load_yaml_or_json(p)
        if not isinstance(raw, dict):
            logger.warning("Config file %s parsed but top-level is not a mapping: %r", p, raw)
            raise ValueError("Config file must contain a mapping at top level")  # noqa: TRY004
        logger.info("Loaded configuration from %s", p)
    else:
        logger.info("Config file %s not found; using defaults", p)
        raw = {}

    if overrides:
        raw = _deep_merge(raw, overrides)

    cfg = AppConfig.model_validate(raw)
    logger.debug(
        "Configuration: %d profiles, %d enabled sources, timezone=%s",
        len(cfg.profiles),
        len(cfg.enabled_sources()),
        cfg.display.timezone,
    )
    return cfg
