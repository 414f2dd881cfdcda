"""Pydantic models for the document sync engine.

Defines the core data contracts used across all sync modules:

- ``ActionKind``: Enum of possible per-document sync operations.
- ``ConflictStrategy``: Enum of configurable conflict policies.
- ``SyncDirection``: Full merge or one-way upload/download pass.
- ``FileMetadata``: Fingerprinted state of one document on one side.
- ``SyncMetadata``: Versioned bookkeeping document (baseline or remote).
- ``PlannedAction`` / ``SyncPlan``: Output of the reconciler.
- ``SyncOptions``: Caller-supplied knobs for one sync pass.
- ``SyncResult``: Outcome of a full sync pass.

All models are frozen (immutable) for safety.  ``SyncMetadata`` uses the
camelCase wire names (``schemaVersion``, ``lastSyncTime`` ...) when dumped
with ``by_alias=True``.
"""

from __future__ import annotations

from enum import Enum

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    model_validator,
)

SCHEMA_VERSION = "2.0.0"


class ActionKind(str, Enum):
    """Possible sync operations for one document."""

    UPLOAD_CREATE = "upload_create"
    UPLOAD_UPDATE = "upload_update"
    DOWNLOAD_CREATE = "download_create"
    DOWNLOAD_UPDATE = "download_update"
    DELETE_REMOTE = "delete_remote"
    DELETE_LOCAL = "delete_local"
    CONFLICT = "conflict"
    NOOP = "noop"

    @property
    def is_transfer(self) -> bool:
        return self in _TRANSFER_KINDS

    @property
    def is_delete(self) -> bool:
        return self in (ActionKind.DELETE_REMOTE, ActionKind.DELETE_LOCAL)

    @property
    def is_upload(self) -> bool:
        return self in (ActionKind.UPLOAD_CREATE, ActionKind.UPLOAD_UPDATE)

    @property
    def is_download(self) -> bool:
        return self in (
            ActionKind.DOWNLOAD_CREATE,
            ActionKind.DOWNLOAD_UPDATE,
        )


_TRANSFER_KINDS = frozenset(
    {
        ActionKind.UPLOAD_CREATE,
        ActionKind.UPLOAD_UPDATE,
        ActionKind.DOWNLOAD_CREATE,
        ActionKind.DOWNLOAD_UPDATE,
    }
)


class ConflictStrategy(str, Enum):
    """How conflicting documents are resolved."""

    LOCAL_WINS = "local-wins"
    REMOTE_WINS = "remote-wins"
    NEWEST_WINS = "newest-wins"
    MANUAL = "manual"


class ConflictKind(str, Enum):
    """Why a document was classified as a conflict."""

    BOTH_CREATED = "both-created"
    BOTH_MODIFIED = "both-modified"
    LOCAL_DELETE_REMOTE_EDIT = "local-delete-remote-edit"
    REMOTE_DELETE_LOCAL_EDIT = "remote-delete-local-edit"

    @property
    def involves_delete(self) -> bool:
        return self in (
            ConflictKind.LOCAL_DELETE_REMOTE_EDIT,
            ConflictKind.REMOTE_DELETE_LOCAL_EDIT,
        )


class SyncDirection(str, Enum):
    """Which side a pass is allowed to change.

    ``FULL`` is the three-way merge.  ``UPLOAD`` makes the remote mirror
    the local documents and ``DOWNLOAD`` the reverse; neither raises
    conflicts.
    """

    FULL = "full"
    UPLOAD = "upload"
    DOWNLOAD = "download"


class SyncPhase(str, Enum):
    """Orchestrator state machine phases."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    CONNECTED = "connected"
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


class FileMetadata(BaseModel):
    """Fingerprinted state of a single document.

    Attributes:
        path: DocumentId (e.g. ``"beans.json"``).
        fingerprint: SHA-256 hex digest of the normalised content.
        size: Content length in bytes (informational).
        modified_at: Producer-supplied modification time in epoch
            milliseconds.  Only used as a conflict tie-breaker.
    """

    path: str
    fingerprint: str
    size: int = 0
    modified_at: int | None = Field(default=None, alias="modifiedAt")

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def same_content(self, other: FileMetadata | None) -> bool:
        """Return ``True`` if *other* carries the same fingerprint."""
        return other is not None and other.fingerprint == self.fingerprint


class SyncMetadata(BaseModel):
    """Bookkeeping document describing one side of the sync.

    Attributes:
        schema_version: Must equal ``SCHEMA_VERSION`` to be trusted.
        last_sync_time: Epoch milliseconds of the pass that wrote it.
        device_id: Device that last wrote this metadata.
        files: Per-document metadata keyed by DocumentId.
        deleted_files: Tombstones for documents intentionally removed.
    """

    schema_version: str = Field(default=SCHEMA_VERSION, alias="schemaVersion")
    last_sync_time: int = Field(default=0, alias="lastSyncTime")
    device_id: str = Field(default="", alias="deviceId")
    files: dict[str, FileMetadata] = Field(default_factory=dict)
    deleted_files: frozenset[str] = Field(
        default_factory=frozenset, alias="deletedFiles"
    )

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @model_validator(mode="after")
    def _check_consistency(self) -> SyncMetadata:
        overlap = self.deleted_files.intersection(self.files)
        if overlap:
            raise ValueError(
                f"paths both live and tombstoned: {sorted(overlap)}"
            )
        for key, meta in self.files.items():
            if meta.path != key:
                raise ValueError(
                    f"files entry '{key}' describes path '{meta.path}'"
                )
        return self

    @field_serializer("deleted_files")
    def _serialize_tombstones(self, value: frozenset[str]) -> list[str]:
        return sorted(value)

    def get(self, path: str) -> FileMetadata | None:
        """Return the entry for *path*, or ``None`` if absent."""
        return self.files.get(path)

    def to_document(self) -> dict:
        """Serialise to the JSON wire structure."""
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


class PlannedAction(BaseModel):
    """One entry of a ``SyncPlan``.

    ``local``, ``remote`` and ``baseline`` carry the metadata the reconciler
    saw for this path so the executor needs no second lookup.
    """

    path: str
    kind: ActionKind
    reason: str = ""
    local: FileMetadata | None = None
    remote: FileMetadata | None = None
    baseline: FileMetadata | None = None
    conflict: ConflictKind | None = None

    model_config = ConfigDict(frozen=True)


class SyncPlan(BaseModel):
    """Ordered list of per-path actions.

    Transfers come first, then deletes, then NoOp/Conflict bookkeeping
    entries; each group is sorted by path.
    """

    actions: list[PlannedAction] = []

    model_config = ConfigDict(frozen=True)

    def of_kind(self, *kinds: ActionKind) -> list[PlannedAction]:
        return [a for a in self.actions if a.kind in kinds]

    @property
    def transfers(self) -> list[PlannedAction]:
        return [a for a in self.actions if a.kind.is_transfer]

    @property
    def deletes(self) -> list[PlannedAction]:
        return [a for a in self.actions if a.kind.is_delete]

    @property
    def conflicts(self) -> list[PlannedAction]:
        return self.of_kind(ActionKind.CONFLICT)

    @property
    def noops(self) -> list[PlannedAction]:
        return self.of_kind(ActionKind.NOOP)

    @property
    def is_empty(self) -> bool:
        """True when nothing would be transferred or deleted."""
        return not self.transfers and not self.deletes

    def summary(self) -> str:
        """One-line summary with counts per action kind."""
        parts = []
        for kind in ActionKind:
            count = len(self.of_kind(kind))
            if count and kind != ActionKind.NOOP:
                parts.append(f"{count} {kind.value}")
        return ", ".join(parts) if parts else "nothing to do"


# ---------------------------------------------------------------------------
# Options / results
# ---------------------------------------------------------------------------


class SyncOptions(BaseModel):
    """Caller-supplied configuration for one sync pass.

    Attributes:
        conflict_strategy: Policy for documents changed on both sides.
        direction: ``full`` three-way merge, or a one-way ``upload`` /
            ``download`` mirror of the selected documents.
        dry_run: Plan only; perform no I/O and write no metadata.
        include: fnmatch globs; when non-empty only matching paths sync.
        exclude: fnmatch globs; matching paths are never touched.
        resolve_delete_conflicts: Let automatic strategies resolve
            delete-vs-edit conflicts.  Off by default, so such conflicts
            are always surfaced.
        max_workers: Upper bound on concurrent remote operations.
        max_delete_ratio: Warn when deletes exceed this share of documents.
        max_delete_count: Warn when deletes exceed this count.
        max_backups: Server-side copies kept per uploaded document under
            ``backups/``; ``0`` disables backups.
    """

    conflict_strategy: ConflictStrategy = ConflictStrategy.MANUAL
    direction: SyncDirection = SyncDirection.FULL
    dry_run: bool = False
    include: list[str] = []
    exclude: list[str] = []
    resolve_delete_conflicts: bool = False
    max_workers: int = Field(default=4, ge=1, le=16)
    max_delete_ratio: float = Field(default=0.3, ge=0.0, le=1.0)
    max_delete_count: int = Field(default=100, ge=0)
    max_backups: int = Field(default=0, ge=0, le=100)

    model_config = ConfigDict(frozen=True)


class FileError(BaseModel):
    """A per-document failure recorded during a pass."""

    path: str
    message: str

    model_config = ConfigDict(frozen=True)


class SyncProgress(BaseModel):
    """Progress notification passed to ``on_progress`` callbacks."""

    phase: SyncPhase
    message: str
    completed: int = 0
    total: int = 0
    current_path: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def percentage(self) -> int:
        if self.total <= 0:
            return 0
        return int(self.completed * 100 / self.total)


class SyncResult(BaseModel):
    """Outcome of one ``SyncSession.sync()`` call.

    Attributes:
        success: ``True`` when every attempted action and both metadata
            writes succeeded.  Manual conflicts do not make a pass fail.
        applied: Paths whose planned action was carried out.
        conflicts: Paths left unresolved (``manual`` strategy or
            delete-vs-edit races).
        errors: Per-path failures, plus connectivity/metadata errors with
            an empty or reserved path.
        new_baseline: Baseline after the pass (the old one when nothing
            was written).
    """

    success: bool
    phase: SyncPhase
    device_id: str = ""
    dry_run: bool = False
    cancelled: bool = False
    applied: list[str] = []
    conflicts: list[str] = []
    resolved_conflicts: list[str] = []
    errors: list[FileError] = []
    warnings: list[str] = []
    plan: SyncPlan = Field(default_factory=SyncPlan)
    new_baseline: SyncMetadata = Field(default_factory=SyncMetadata)
    started_at: str
    completed_at: str | None = None

    model_config = ConfigDict(frozen=True)

    def _applied_of(self, predicate) -> list[str]:
        applied = set(self.applied)
        return [
            a.path
            for a in self.plan.actions
            if a.path in applied and predicate(a.kind)
        ]

    @property
    def uploaded(self) -> list[str]:
        return self._applied_of(lambda k: k.is_upload)

    @property
    def downloaded(self) -> list[str]:
        return self._applied_of(lambda k: k.is_download)

    @property
    def deleted(self) -> list[str]:
        return self._applied_of(lambda k: k.is_delete)
