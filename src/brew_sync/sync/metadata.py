"""Sync metadata persistence (local baseline and remote copy).

The baseline lives in the application's key-document store under
``LOCAL_METADATA_KEY``; the remote copy is a single JSON document
(``REMOTE_METADATA_PATH``) at the remote root.

Key design choices:

* **Invalid means absent** -- a document that is not JSON, has the wrong
  ``schemaVersion``, or fails model validation is logged and reported as
  ``None`` so the next pass bootstraps instead of wedging.
* **Transport errors propagate** -- ``get_remote()`` lets
  ``RemoteStoreError`` through so the orchestrator can fail the pass
  before touching any state.
* **Explicit tombstone operations** -- ``MetadataDraft`` is the only way
  new metadata is assembled; tombstones change only via ``mark_deleted``
  and ``clear_tombstone``.
"""

from __future__ import annotations

import json
import logging
import time

from pydantic import ValidationError

from brew_sync.exceptions import MetadataValidationError
from brew_sync.file_handler import decode_bytes
from brew_sync.local.documents import DocumentStore
from brew_sync.storage.base import RemoteStore
from brew_sync.sync.models import SCHEMA_VERSION, FileMetadata, SyncMetadata

logger = logging.getLogger(__name__)

LOCAL_METADATA_KEY = "brew-sync-metadata"
REMOTE_METADATA_PATH = "sync-metadata.json"


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def validate_metadata(data: object) -> SyncMetadata:
    """Validate a decoded JSON value as ``SyncMetadata``.

    Raises:
        MetadataValidationError: If the structure or schema version is wrong.
    """
    if not isinstance(data, dict):
        raise MetadataValidationError(
            f"metadata root must be an object, got {type(data).__name__}"
        )
    version = data.get("schemaVersion")
    if version != SCHEMA_VERSION:
        raise MetadataValidationError(
            f"unsupported schemaVersion {version!r} (expected {SCHEMA_VERSION})"
        )
    if not isinstance(data.get("files"), dict):
        raise MetadataValidationError("'files' must be a map")
    try:
        return SyncMetadata.model_validate(data)
    except ValidationError as exc:
        raise MetadataValidationError(str(exc)) from exc


def parse_metadata(
    raw: str | bytes | None, source: str = "metadata"
) -> SyncMetadata | None:
    """Parse a stored metadata document, returning ``None`` if unusable.

    Args:
        raw: The stored text or bytes (``None`` when nothing is stored).
        source: Label used in the warning log (``"local"``/``"remote"``).
    """
    if raw is None:
        return None
    try:
        text = decode_bytes(raw)[0] if isinstance(raw, bytes) else raw
        return validate_metadata(json.loads(text))
    except (ValueError, MetadataValidationError) as exc:
        logger.warning(
            "Ignoring invalid %s sync metadata (will bootstrap): %s",
            source,
            exc,
        )
        return None


# ---------------------------------------------------------------------------
# Draft builder
# ---------------------------------------------------------------------------


class MetadataDraft:
    """Mutable builder that produces an immutable ``SyncMetadata``.

    Args:
        base: Metadata to start from (``None`` starts empty).
    """

    def __init__(self, base: SyncMetadata | None = None) -> None:
        self._files: dict[str, FileMetadata] = (
            dict(base.files) if base else {}
        )
        self._deleted: set[str] = set(base.deleted_files) if base else set()

    @property
    def files(self) -> dict[str, FileMetadata]:
        return dict(self._files)

    @property
    def tombstones(self) -> frozenset[str]:
        return frozenset(self._deleted)

    def get(self, path: str) -> FileMetadata | None:
        return self._files.get(path)

    def put(self, meta: FileMetadata) -> None:
        """Record *meta* as the live state of its path."""
        self._files[meta.path] = meta
        self._deleted.discard(meta.path)

    def forget(self, path: str) -> None:
        """Drop the live entry for *path* without leaving a tombstone."""
        self._files.pop(path, None)

    def mark_deleted(self, path: str) -> None:
        """Drop the live entry for *path* and record a tombstone."""
        self._files.pop(path, None)
        self._deleted.add(path)

    def clear_tombstone(self, path: str) -> None:
        self._deleted.discard(path)

    def build(
        self, device_id: str, timestamp: int | None = None
    ) -> SyncMetadata:
        return SyncMetadata(
            schema_version=SCHEMA_VERSION,
            last_sync_time=now_ms() if timestamp is None else timestamp,
            device_id=device_id,
            files=dict(self._files),
            deleted_files=frozenset(self._deleted),
        )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class MetadataStore:
    """Load and save ``SyncMetadata`` on both sides.

    Args:
        documents: Local key-document store holding the baseline.
        remote: Remote store holding ``sync-metadata.json``.
        device_id: Identifier stamped into metadata this device writes.
    """

    def __init__(
        self,
        documents: DocumentStore,
        remote: RemoteStore,
        device_id: str,
    ) -> None:
        self.documents = documents
        self.remote = remote
        self.device_id = device_id

    def get_local(self) -> SyncMetadata | None:
        return parse_metadata(self.documents.get(LOCAL_METADATA_KEY), "local")

    def get_remote(self) -> SyncMetadata | None:
        """Fetch the remote metadata.

        Raises:
            RemoteStoreError: If the remote store cannot be read.
        """
        raw = self.remote.download(REMOTE_METADATA_PATH)
        return parse_metadata(raw, "remote")

    def save_local(self, metadata: SyncMetadata) -> None:
        self.documents.set(LOCAL_METADATA_KEY, _dump(metadata))
        logger.debug(
            "Saved local baseline (%d files, %d tombstones)",
            len(metadata.files),
            len(metadata.deleted_files),
        )

    def save_remote(self, metadata: SyncMetadata) -> None:
        self.remote.upload(
            REMOTE_METADATA_PATH, _dump(metadata).encode("utf-8")
        )
        logger.debug("Saved remote metadata (%d files)", len(metadata.files))

    def clear_local(self) -> None:
        self.documents.delete(LOCAL_METADATA_KEY)
        logger.info("Local sync baseline cleared")

    def create_metadata(
        self,
        files: dict[str, FileMetadata] | None = None,
        deleted: frozenset[str] | set[str] = frozenset(),
    ) -> SyncMetadata:
        """Build metadata stamped with this device's id and the current time."""
        return SyncMetadata(
            schema_version=SCHEMA_VERSION,
            last_sync_time=now_ms(),
            device_id=self.device_id,
            files=dict(files or {}),
            deleted_files=frozenset(deleted),
        )


def _dump(metadata: SyncMetadata) -> str:
    return json.dumps(metadata.to_document(), indent=2, ensure_ascii=False)
