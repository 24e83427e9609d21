"""Single-entry result cache with explicit staleness and optional persistence.

Exactly one ``CacheEntry`` exists at a time. ``put`` swaps in a new immutable
entry under a lock and ``get`` returns the current snapshot, so concurrent
readers see either the previous complete result or the new one.
"""

from __future__ import annotations

import datetime
import logging
import threading
from pathlib import Path
from typing import Any, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from calboard.calendar.models import Occurrence
from calboard.core.atomic_file import atomic_write_text
from calboard.core.timezone_utils import now_utc
from calboard.domain.models import AggregationResult, SourceStatus

logger = logging.getLogger(__name__)


class CacheEntry(BaseModel):
    """Published result plus the per-source occurrences it was built from.

    ``source_occurrences`` holds each source's last-known-good occurrences so a
    source failing in a later cycle can be substituted individually.
    """

    model_config = ConfigDict(frozen=True)

    result: Optional[AggregationResult] = None
    captured_at: Optional[datetime.datetime] = None
    stale: bool = False
    source_occurrences: dict[str, tuple[Occurrence, ...]] = Field(default_factory=dict)
    version: int = 0
    # Latest cycle outcome per source; differs from result.sources after a fallback cycle
    source_statuses: tuple[SourceStatus, ...] = ()
    error: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.result is None


EMPTY_ENTRY = CacheEntry()


class ResultCache:
    """Holds the most recent aggregation result."""

    def __init__(self, path: str | Path | None = None) -> None:
        """Create a cache.

        Args:
            path: Optional JSON file; when set every put is persisted and an existing
                file is loaded (as stale) on construction
        """
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._entry: CacheEntry = EMPTY_ENTRY

        if self._path is not None:
            self._load()

    def get(self) -> CacheEntry:
        """Current entry, or ``EMPTY_ENTRY`` before the first successful build."""
        with self._lock:
            return self._entry

    def put(
        self,
        result: AggregationResult,
        source_occurrences: dict[str, tuple[Occurrence, ...]] | None = None,
        captured_at: datetime.datetime | None = None,
    ) -> CacheEntry:
        """Replace the current entry with a fresh one."""
        with self._lock:
            entry = CacheEntry(
                result=result,
                captured_at=captured_at or now_utc(),
                stale=False,
                source_occurrences=dict(source_occurrences or {}),
                source_statuses=result.sources,
                version=self._entry.version + 1,
            )
            self._entry = entry

        self._persist(entry)
        logger.debug(
            "Cache updated to version %d (%d occurrences)",
            entry.version,
            result.occurrence_count,
        )
        return entry

    def mark_stale(
        self,
        source_statuses: Sequence[SourceStatus] | None = None,
        error: str | None = None,
    ) -> CacheEntry:
        """Flag the current entry as stale without changing its result or version.

        Args:
            source_statuses: Outcome of the cycle that failed; replaces the entry's
                per-source statuses when given
            error: Reason the entry is being served stale
        """
        update: dict[str, Any] = {"stale": True}
        if source_statuses is not None:
            update["source_statuses"] = tuple(source_statuses)
        if error is not None:
            update["error"] = error

        with self._lock:
            if self._entry.is_empty:
                return self._entry
            was_stale = self._entry.stale
            self._entry = self._entry.model_copy(update=update)
            entry = self._entry
        if not was_stale:
            logger.info("Cache entry version %d marked stale", entry.version)
        return entry

    def _persist(self, entry: CacheEntry) -> None:
        if self._path is None:
            return
        try:
            atomic_write_text(self._path, entry.model_dump_json())
        except OSError as exc:
            logger.warning("Failed to persist result cache to %s: %s", self._path, exc)

    def _load(self) -> None:
        if not self._path.exists():
            logger.debug("Result cache file not found; starting empty: %s", self._path)
            return
        try:
            entry = CacheEntry.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            logger.warning("Failed to read result cache %s: %s", self._path, exc)
            return
        if entry.is_empty:
            return
        # Data from a previous process is never fresh
        self._entry = entry.model_copy(update={"stale": True})
        logger.info(
            "Loaded cached result from %s (captured %s)", self._path, entry.captured_at
        )
