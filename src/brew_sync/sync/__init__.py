"""Three-way document sync engine.

Public API for synchronising the application's exported data documents
(``beans.json``, ``notes.json`` ...) with a remote WebDAV or S3 store.

Architecture
------------
Each pass compares three snapshots per document id: the local baseline
(what was last confirmed in sync), the current local documents and the
current remote documents.  Comparing both sides against the shared
baseline tells "who changed" apart from "what changed", so a change on
one side is propagated and a change on both sides is a conflict.

Modules:

- ``engine``      -- ``SyncSession``: orchestrates a full sync pass.
- ``metadata``    -- ``MetadataStore`` / ``MetadataDraft``: baseline and
  remote metadata persistence.
- ``fingerprint`` -- Normalised SHA-256 content fingerprints.
- ``reconciler``  -- ``classify()`` decision table and ``Reconciler``.
- ``resolver``    -- Conflict strategies (local-wins, remote-wins,
  newest-wins, manual).
- ``executor``    -- ``Executor``: two-phase I/O and metadata rollback.
- ``backup``      -- ``BackupManager``: server-side copies of uploads.
- ``models``      -- Core data contracts.
- ``reporter``    -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from pathlib import Path
    from brew_sync.local import DirectoryRecordSource, FileDocumentStore
    from brew_sync.storage import create_remote_store
    from brew_sync.sync import (
        SyncOptions,
        SyncSession,
        format_dry_run_preview,
        format_sync_report,
    )

    session = SyncSession(
        remote=create_remote_store(remote_config),
        records=DirectoryRecordSource(Path("data")),
        documents=FileDocumentStore(Path(".brew_sync/state")),
    )

    # Preview first
    preview = session.plan(SyncOptions(conflict_strategy="newest-wins"))
    print(format_dry_run_preview(preview))

    result = session.sync(SyncOptions(conflict_strategy="newest-wins"))
    print(format_sync_report(result))
"""

from .backup import BackupManager, BackupRecord
from .engine import SyncSession
from .executor import ExecutionContext, ExecutionOutcome, Executor
from .fingerprint import describe, fingerprint
from .metadata import (
    LOCAL_METADATA_KEY,
    REMOTE_METADATA_PATH,
    MetadataDraft,
    MetadataStore,
)
from .models import (
    SCHEMA_VERSION,
    ActionKind,
    ConflictKind,
    ConflictStrategy,
    FileError,
    FileMetadata,
    PlannedAction,
    SyncDirection,
    SyncMetadata,
    SyncOptions,
    SyncPhase,
    SyncPlan,
    SyncProgress,
    SyncResult,
)
from .reconciler import Reconciler, classify, validate_plan
from .reporter import (
    format_dry_run_preview,
    format_status,
    format_sync_report,
    report_to_json,
)
from .resolver import create_resolver

__all__ = [
    "LOCAL_METADATA_KEY",
    "REMOTE_METADATA_PATH",
    "SCHEMA_VERSION",
    "ActionKind",
    "BackupManager",
    "BackupRecord",
    "ConflictKind",
    "ConflictStrategy",
    "ExecutionContext",
    "ExecutionOutcome",
    "Executor",
    "FileError",
    "FileMetadata",
    "MetadataDraft",
    "MetadataStore",
    "PlannedAction",
    "Reconciler",
    "SyncDirection",
    "SyncMetadata",
    "SyncOptions",
    "SyncPhase",
    "SyncPlan",
    "SyncProgress",
    "SyncResult",
    "SyncSession",
    "classify",
    "create_resolver",
    "describe",
    "fingerprint",
    "format_dry_run_preview",
    "format_status",
    "format_sync_report",
    "report_to_json",
    "validate_plan",
]
