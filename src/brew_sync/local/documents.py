"""Generic key-document storage.

The application keeps small string documents (settings, the device id,
the sync baseline) under well-known keys.  ``FileDocumentStore`` maps each
key to one JSON/text file in a state directory.

Key design choices:

* **Atomic writes** -- ``set()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Opaque values** -- the store never parses what it holds; callers own
  the serialisation format.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Protocol

from brew_sync.exceptions import LocalStoreError
from brew_sync.file_handler import write_file

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class DocumentStore(Protocol):
    """Protocol for the application's key-document storage."""

    def get(self, key: str) -> str | None:
        """Return the document stored under *key*, or ``None``."""
        ...  # pragma: no cover

    def set(self, key: str, value: str) -> None:
        """Store *value* under *key*, replacing any previous value."""
        ...  # pragma: no cover

    def delete(self, key: str) -> None:
        """Remove *key*.  No-op if absent."""
        ...  # pragma: no cover


class FileDocumentStore:
    """Store each key as ``<state_dir>/<key>.json``.

    Args:
        state_dir: Directory holding the documents (created on first write).
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    def get(self, key: str) -> str | None:
        path = self._key_path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise LocalStoreError(f"Cannot read {path}: {exc}") from exc

    def set(self, key: str, value: str) -> None:
        path = self._key_path(key)
        try:
            write_file(path, value)
        except OSError as exc:
            raise LocalStoreError(f"Cannot write {path}: {exc}") from exc
        logger.debug("Stored document %s (%d chars)", key, len(value))

    def delete(self, key: str) -> None:
        path = self._key_path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise LocalStoreError(f"Cannot delete {path}: {exc}") from exc

    def _key_path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid document key: {key!r}")
        return self._state_dir / f"{key}.json"
