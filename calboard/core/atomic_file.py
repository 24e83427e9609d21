"""Atomic JSON file persistence shared by the result cache and visibility store."""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` to ``path`` so readers see either the old or the new file.

    Writes to a temporary file in the same directory then os.replace() into place.

    Raises:
        OSError: If the file cannot be written or moved into place
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile(
            "w", dir=path.parent, delete=False, encoding="utf-8", suffix=".tmp"
        ) as tf:
            tmp_path = Path(tf.name)
            tf.write(text)
            tf.flush()
            with contextlib.suppress(OSError):
                os.fsync(tf.fileno())
        os.replace(tmp_path, path)
        tmp_path = None
    finally:
        if tmp_path is not None and tmp_path.exists():
            with contextlib.suppress(OSError):
                tmp_path.unlink()
