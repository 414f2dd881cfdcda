"""Local record source: the application's own synchronisable documents.

The engine needs a snapshot of every current document as ``path -> content``
plus the ability to write or delete one document.  ``accepts`` tells which
paths are documents at all; remote files outside that set are left alone.
``DirectoryRecordSource`` implements this over a directory where each
exported data file (``beans.json``, ``notes.json`` ...) is one file.
"""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from brew_sync.exceptions import LocalStoreError
from brew_sync.file_handler import resolve_under_root, write_bytes_atomic
from brew_sync.validators import ensure_document_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalDocument:
    """Current content of one local document."""

    path: str
    content: bytes
    modified_at: int | None = None


class RecordSource(Protocol):
    """Protocol for the local document set."""

    def snapshot(self) -> dict[str, LocalDocument]:
        """Return every current document keyed by document id."""
        ...  # pragma: no cover

    def accepts(self, path: str) -> bool:
        """Return ``True`` if *path* names a document this source holds."""
        ...  # pragma: no cover

    def write(self, path: str, content: bytes) -> None:
        """Create or replace the document at *path*."""
        ...  # pragma: no cover

    def delete(self, path: str) -> None:
        """Remove the document at *path*.  No-op if absent."""
        ...  # pragma: no cover


class DirectoryRecordSource:
    """Documents stored as files below *root*.

    Args:
        root: Directory containing the exported data files.
        patterns: Glob patterns (relative, POSIX-style) selecting which
            files are documents.  Defaults to ``("*.json",)``.
    """

    def __init__(
        self, root: Path, patterns: tuple[str, ...] = ("*.json",)
    ) -> None:
        self.root = root
        self.patterns = patterns

    def accepts(self, path: str) -> bool:
        return any(fnmatch.fnmatch(path, p) for p in self.patterns)

    def snapshot(self) -> dict[str, LocalDocument]:
        if not self.root.is_dir():
            return {}

        documents: dict[str, LocalDocument] = {}
        for path in sorted(self.root.rglob("*")):
            if not path.is_file() or path.suffix == ".tmp":
                continue
            rel = path.relative_to(self.root).as_posix()
            if not self.accepts(rel):
                continue
            try:
                stat = path.stat()
                content = path.read_bytes()
            except OSError as exc:
                raise LocalStoreError(
                    f"Cannot read local document {rel}: {exc}"
                ) from exc
            documents[rel] = LocalDocument(
                path=rel,
                content=content,
                modified_at=int(stat.st_mtime * 1000),
            )
        return documents

    def write(self, path: str, content: bytes) -> None:
        target = resolve_under_root(self.root, ensure_document_id(path))
        try:
            write_bytes_atomic(target, content)
        except OSError as exc:
            raise LocalStoreError(f"Cannot write {path}: {exc}") from exc
        logger.debug("Wrote local document %s (%d bytes)", path, len(content))

    def delete(self, path: str) -> None:
        target = resolve_under_root(self.root, ensure_document_id(path))
        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            raise LocalStoreError(f"Cannot delete {path}: {exc}") from exc
        logger.debug("Deleted local document %s", path)
