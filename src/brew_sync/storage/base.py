"""Remote store protocol shared by every backend.

Backends are thin protocol adapters: they move bytes and list directories
and know nothing about sync semantics.  All paths are document ids relative
to the configured remote root.  Failures raise ``RemoteStoreError``;
unreachable servers and rejected credentials raise ``ConnectivityError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class RemoteEntry:
    """One listed remote document."""

    path: str
    size: int | None = None
    last_modified: datetime | None = None

    @property
    def modified_ms(self) -> int | None:
        """``last_modified`` as epoch milliseconds."""
        if self.last_modified is None:
            return None
        return int(self.last_modified.timestamp() * 1000)


class RemoteStore(Protocol):
    """Protocol that all remote store backends must satisfy."""

    def test_connection(self) -> None:
        """Check reachability and credentials.

        Raises:
            ConnectivityError: If the backend cannot be reached.
        """
        ...  # pragma: no cover

    def list(self, prefix: str = "") -> list[RemoteEntry]:
        """Recursively list documents below *prefix*."""
        ...  # pragma: no cover

    def upload(self, path: str, data: bytes) -> None:
        """Create or replace the document at *path*."""
        ...  # pragma: no cover

    def download(self, path: str) -> bytes | None:
        """Return the content at *path*, or ``None`` if it does not exist."""
        ...  # pragma: no cover

    def delete(self, path: str) -> None:
        """Delete *path*.  Deleting a missing document is not an error."""
        ...  # pragma: no cover

    def copy(self, source: str, destination: str) -> None:
        """Server-side copy of *source* to *destination* (overwriting)."""
        ...  # pragma: no cover

    def exists(self, path: str) -> bool:
        """Return ``True`` if a document exists at *path*."""
        ...  # pragma: no cover

    def ensure_directory(self, path: str) -> None:
        """Create the directory *path* (and parents) if the backend has them."""
        ...  # pragma: no cover
