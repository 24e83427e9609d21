"""JSON-backed store for the hidden-profile preference with atomic writes."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Iterable

from calboard.core.atomic_file import atomic_write_text

logger = logging.getLogger(__name__)


class VisibilityStore:
    """Persists which profiles a display has hidden.

    The on-disk format is ``{"hidden_profiles": ["id", ...]}``. Without a path the
    store is memory-only.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._hidden: frozenset[str] = frozenset()

        if self._path is not None:
            self.load()

    def load(self) -> None:
        """Load the hidden set from disk; a missing or unreadable file yields an empty set."""
        with self._lock:
            if self._path is None or not self._path.exists():
                self._hidden = frozenset()
                return
            try:
                data = json.loads(self._path.read_text(encoding="utf-8"))
                if not isinstance(data, dict):
                    raise ValueError("visibility JSON root must be an object")  # noqa: TRY004
                raw = data.get("hidden_profiles", [])
                self._hidden = frozenset(str(p) for p in raw if p)
            except (OSError, ValueError) as exc:
                logger.warning("Failed to read visibility store %s: %s", self._path, exc)
                self._hidden = frozenset()
                return
            logger.debug("Loaded %d hidden profiles from %s", len(self._hidden), self._path)

    def hidden_profiles(self) -> frozenset[str]:
        with self._lock:
            return self._hidden

    def set_hidden(self, profile_ids: Iterable[str]) -> frozenset[str]:
        """Replace the hidden set and persist it.

        Raises:
            ValueError: If any profile id is empty
        """
        ids = [str(p).strip() for p in profile_ids]
        if any(not p for p in ids):
            raise ValueError("profile ids must be non-empty strings")

        hidden = frozenset(ids)
        with self._lock:
            self._hidden = hidden
            if self._path is not None:
                try:
                    atomic_write_text(
                        self._path, json.dumps({"hidden_profiles": sorted(hidden)})
                    )
                except OSError as exc:
                    logger.warning("Failed to persist visibility store to %s: %s", self._path, exc)
        return hidden
