"""Sync session orchestrator.

``SyncSession`` ties the metadata store, change detector, reconciler and
executor into one sync pass.  It:

1. Checks the remote store (credentials/reachability) before touching any
   state.
2. Loads the local baseline and the remote metadata.
3. Snapshots and fingerprints local documents and remote documents.
4. Reconciles the three snapshots into a ``SyncPlan``.
5. Executes the plan and writes the merged metadata to both sides.
6. Builds and returns a ``SyncResult``.

The session holds a process-local lock for the whole pass; a concurrent
call gets a failed result instead of interleaving with the running pass.
The only state kept across calls is the device id.
"""

from __future__ import annotations

import logging
import secrets
import threading
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from brew_sync.exceptions import (
    LocalStoreError,
    RemoteStoreError,
    SyncInProgressError,
)
from brew_sync.local.documents import DocumentStore
from brew_sync.local.records import LocalDocument, RecordSource
from brew_sync.storage.base import RemoteStore
from brew_sync.sync.backup import BackupManager, BackupRecord, is_backup_path
from brew_sync.sync.executor import ExecutionContext, Executor
from brew_sync.sync.fingerprint import DEFAULT_IGNORED_FIELDS, describe
from brew_sync.sync.metadata import REMOTE_METADATA_PATH, MetadataStore
from brew_sync.sync.models import (
    ActionKind,
    FileError,
    FileMetadata,
    SyncMetadata,
    SyncOptions,
    SyncPhase,
    SyncPlan,
    SyncProgress,
    SyncResult,
)
from brew_sync.sync.reconciler import Reconciler, validate_plan
from brew_sync.validators import path_selected, validate_document_id

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = "device-id"

ProgressHandler = Callable[[SyncProgress], None]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _reserved(path: str) -> bool:
    """Paths the session itself owns on the remote; never documents."""
    return path == REMOTE_METADATA_PATH or is_backup_path(path)


def generate_device_id() -> str:
    """Return a new random device id (``device-<16 hex digits>``)."""
    return f"device-{secrets.token_hex(8)}"


class _PassFailed(Exception):
    """Internal: abort the pass before execution with a fatal error."""

    def __init__(self, message: str, baseline: SyncMetadata | None = None):
        super().__init__(message)
        self.baseline = baseline


class SyncSession:
    """Run sync passes between one local document set and one remote store.

    Args:
        remote: Remote store adapter (WebDAV, S3, or a test fake).
        records: Local record source.
        documents: Key-document store holding the baseline and device id.
        device_id: Fixed device id; loaded or generated when ``None``.
        on_progress: Optional callback receiving ``SyncProgress`` updates.
        ignored_fields: Top-level JSON fields excluded from fingerprints.
    """

    def __init__(
        self,
        remote: RemoteStore,
        records: RecordSource,
        documents: DocumentStore,
        device_id: str | None = None,
        on_progress: ProgressHandler | None = None,
        ignored_fields: Iterable[str] = DEFAULT_IGNORED_FIELDS,
    ) -> None:
        self.remote = remote
        self.records = records
        self.documents = documents
        self.on_progress = on_progress
        self.ignored_fields = frozenset(ignored_fields)

        self.reconciler = Reconciler()
        self.executor = Executor()
        self._device_id = device_id
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Device identity
    # ------------------------------------------------------------------

    @property
    def device_id(self) -> str:
        """Stable device id, loaded from storage or generated once."""
        if self._device_id is None:
            stored = self.documents.get(DEVICE_ID_KEY)
            if stored and stored.strip():
                self._device_id = stored.strip()
            else:
                self._device_id = generate_device_id()
                self.documents.set(DEVICE_ID_KEY, self._device_id)
                logger.info("Generated new device id %s", self._device_id)
        return self._device_id

    @property
    def metadata(self) -> MetadataStore:
        return MetadataStore(self.documents, self.remote, self.device_id)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def sync(
        self,
        options: SyncOptions | None = None,
        cancel_event: threading.Event | None = None,
    ) -> SyncResult:
        """Run one sync pass.

        Args:
            options: Strategy, dry-run flag, filters and limits.
            cancel_event: When set, actions that have not started yet are
                skipped.  In-flight transfers always finish.

        Returns:
            The ``SyncResult`` for this pass.  Fatal problems (connectivity,
            unreadable local storage, a pass already running) produce
            ``success=False`` with ``phase=FAILED``.
        """
        options = options or SyncOptions()
        started_at = _now_iso()

        if not self._lock.acquire(blocking=False):
            logger.warning("Sync requested while another pass is running")
            return self._failed("sync already in progress", started_at, options)

        try:
            return self._run(options, cancel_event, started_at)
        finally:
            self._lock.release()

    def plan(self, options: SyncOptions | None = None) -> SyncResult:
        """Compute the plan without performing any I/O or metadata writes."""
        options = (options or SyncOptions()).model_copy(
            update={"dry_run": True}
        )
        return self.sync(options)

    def reset(self) -> None:
        """Forget the local baseline so the next pass bootstraps.

        Raises:
            SyncInProgressError: If a pass is currently running.
        """
        if not self._lock.acquire(blocking=False):
            raise SyncInProgressError("sync already in progress")
        try:
            self.metadata.clear_local()
        finally:
            self._lock.release()

    def status(self) -> dict:
        """Summarise the local baseline."""
        baseline = self.metadata.get_local()
        if baseline is None:
            return {
                "device_id": self.device_id,
                "has_baseline": False,
                "last_sync_time": None,
                "last_writer": None,
                "files": 0,
                "tombstones": 0,
            }
        return {
            "device_id": self.device_id,
            "has_baseline": True,
            "last_sync_time": baseline.last_sync_time,
            "last_writer": baseline.device_id,
            "files": len(baseline.files),
            "tombstones": len(baseline.deleted_files),
        }

    def list_backups(self, path: str) -> list[BackupRecord]:
        """Return the remote backups of document *path*, oldest first."""
        return BackupManager(self.remote).list(path)

    def restore_backup(self, path: str, key: str | None = None) -> str:
        """Write a remote backup of *path* over the local document.

        The restored document is an ordinary local edit: the next pass
        uploads it.

        Args:
            path: Document id.
            key: Backup key from ``list_backups``; the newest when ``None``.

        Returns:
            The key that was restored.

        Raises:
            LookupError: If there is no such backup.
            RemoteStoreError: If the backup cannot be downloaded.
            SyncInProgressError: If a pass is currently running.
        """
        is_valid, reason = validate_document_id(path)
        if not is_valid:
            raise LookupError(f"{path!r} is not a document id: {reason}")
        if not self._lock.acquire(blocking=False):
            raise SyncInProgressError("sync already in progress")
        try:
            key, content = BackupManager(self.remote).restore(path, key)
            self.records.write(path, content)
        finally:
            self._lock.release()
        logger.info("Restored %s from %s", path, key)
        return key

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    def _run(
        self,
        options: SyncOptions,
        cancel_event: threading.Event | None,
        started_at: str,
    ) -> SyncResult:
        try:
            return self._run_pass(options, cancel_event, started_at)
        except _PassFailed as exc:
            logger.error("Sync failed: %s", exc)
            return self._failed(str(exc), started_at, options, exc.baseline)

    def _run_pass(
        self,
        options: SyncOptions,
        cancel_event: threading.Event | None,
        started_at: str,
    ) -> SyncResult:
        # Initializing: one connection check before any metadata is read
        self._notify(SyncPhase.INITIALIZING, "Checking remote store")
        try:
            self.remote.test_connection()
            if not options.dry_run:
                self.remote.ensure_directory("")
        except RemoteStoreError as exc:
            raise _PassFailed(f"remote store unavailable: {exc}") from exc
        device_id = self.device_id

        # Connected: load both metadata documents
        self._notify(SyncPhase.CONNECTED, "Loading sync metadata")
        store = self.metadata
        try:
            baseline = store.get_local()
        except LocalStoreError as exc:
            raise _PassFailed(f"cannot read local baseline: {exc}") from exc
        try:
            remote_meta = store.get_remote()
        except RemoteStoreError as exc:
            raise _PassFailed(
                f"cannot read remote metadata: {exc}", baseline
            ) from exc

        if baseline is None:
            logger.info("No usable local baseline; bootstrapping")

        # Planning: snapshot, fingerprint and reconcile
        self._notify(SyncPhase.PLANNING, "Scanning documents")

        def selected(path: str) -> bool:
            return self.records.accepts(path) and path_selected(
                path, options.include, options.exclude
            )

        try:
            documents = self.records.snapshot()
        except LocalStoreError as exc:
            raise _PassFailed(
                f"cannot read local documents: {exc}", baseline
            ) from exc
        local_documents, local_now = self._snapshot_local(documents, selected)

        try:
            remote_now, remote_state, unreadable, errors = (
                self._snapshot_remote(remote_meta, selected)
            )
        except RemoteStoreError as exc:
            raise _PassFailed(
                f"cannot list remote documents: {exc}", baseline
            ) from exc

        for path in unreadable:
            local_now.pop(path, None)
        # Unselected and unreadable paths ride along in the drafts unplanned
        planning_baseline = baseline
        if baseline is not None:
            planning_baseline = baseline.model_copy(
                update={
                    "files": {
                        p: m
                        for p, m in baseline.files.items()
                        if p not in unreadable and selected(p)
                    }
                }
            )

        plan = self.reconciler.plan(
            planning_baseline, local_now, remote_now, options
        )
        warnings = validate_plan(
            plan,
            max_delete_ratio=options.max_delete_ratio,
            max_delete_count=options.max_delete_count,
        )
        conflicts = [a.path for a in plan.conflicts]
        resolved = [
            a.path
            for a in plan.actions
            if a.conflict is not None and a.kind != ActionKind.CONFLICT
        ]

        if options.dry_run:
            self._notify(SyncPhase.COMPLETED, f"Dry run: {plan.summary()}")
            return SyncResult(
                success=not errors,
                phase=SyncPhase.COMPLETED,
                device_id=device_id,
                dry_run=True,
                conflicts=conflicts,
                resolved_conflicts=resolved,
                errors=errors,
                warnings=warnings,
                plan=plan,
                new_baseline=baseline or store.create_metadata(),
                started_at=started_at,
                completed_at=_now_iso(),
            )

        # Executing
        total = len(plan.transfers) + len(plan.deletes)
        self._notify(
            SyncPhase.EXECUTING, plan.summary(), completed=0, total=total
        )
        context = ExecutionContext(
            remote=self.remote,
            records=self.records,
            metadata=store,
            baseline=baseline,
            remote_state=remote_state,
            local_documents=local_documents,
            device_id=device_id,
            selected=selected,
            max_workers=options.max_workers,
            cancel_event=cancel_event,
            on_progress=lambda done, count, path: self._notify(
                SyncPhase.EXECUTING,
                f"Synced {path}",
                completed=done,
                total=count,
                current_path=path,
            ),
            ignored_fields=self.ignored_fields,
            backups=(
                BackupManager(self.remote, options.max_backups)
                if options.max_backups > 0
                else None
            ),
        )
        outcome = self.executor.apply(plan, context)

        all_errors = errors + outcome.errors
        phase = (
            SyncPhase.COMPLETED if outcome.metadata_saved else SyncPhase.FAILED
        )
        success = outcome.success and not errors
        self._notify(
            phase,
            "Sync completed" if success else "Sync finished with errors",
            completed=len(outcome.applied),
            total=total,
        )
        logger.info(
            "Sync pass done: %d applied, %d conflicts, %d errors",
            len(outcome.applied),
            len(conflicts),
            len(all_errors),
        )
        return SyncResult(
            success=success,
            phase=phase,
            device_id=device_id,
            cancelled=outcome.cancelled,
            applied=outcome.applied,
            conflicts=conflicts,
            resolved_conflicts=resolved,
            errors=all_errors,
            warnings=warnings + outcome.warnings,
            plan=plan,
            new_baseline=outcome.new_baseline
            or baseline
            or store.create_metadata(),
            started_at=started_at,
            completed_at=_now_iso(),
        )

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _snapshot_local(
        self,
        documents: dict[str, LocalDocument],
        selected: Callable[[str], bool],
    ) -> tuple[dict[str, LocalDocument], dict[str, FileMetadata]]:
        """Fingerprint the selected local documents."""
        kept: dict[str, LocalDocument] = {}
        local_now: dict[str, FileMetadata] = {}
        for path, document in documents.items():
            if _reserved(path) or not selected(path):
                continue
            is_valid, reason = validate_document_id(path)
            if not is_valid:
                logger.warning("Skipping local document %r: %s", path, reason)
                continue
            kept[path] = document
            local_now[path] = describe(
                path,
                document.content,
                document.modified_at,
                self.ignored_fields,
            )
        return kept, local_now

    def _snapshot_remote(
        self,
        remote_meta: SyncMetadata | None,
        selected: Callable[[str], bool],
    ) -> tuple[
        dict[str, FileMetadata], SyncMetadata, set[str], list[FileError]
    ]:
        """List and fingerprint remote documents.

        Fingerprints come from the remote metadata when it has an entry
        whose size matches the listing and the document was not modified
        after the metadata's ``last_sync_time``; otherwise the document is
        downloaded and fingerprinted.

        Returns:
            ``(remote_now, remote_state, unreadable, errors)`` where
            ``remote_state`` describes everything on the remote (including
            unselected and unreadable documents) for the executor's remote
            draft, and ``unreadable`` are paths excluded from this pass.

        Raises:
            RemoteStoreError: If the listing itself fails.
        """
        synced_at = remote_meta.last_sync_time if remote_meta else 0
        remote_now: dict[str, FileMetadata] = {}
        state_files: dict[str, FileMetadata] = {}
        unreadable: set[str] = set()
        errors: list[FileError] = []

        for entry in self.remote.list(""):
            path = entry.path
            if _reserved(path):
                continue
            is_valid, reason = validate_document_id(path)
            if not is_valid:
                logger.warning("Skipping remote document %r: %s", path, reason)
                continue

            previous = remote_meta.get(path) if remote_meta else None
            if not selected(path):
                if previous is not None:
                    state_files[path] = previous
                continue

            # Same-size edits are caught by a write after the last sync
            if (
                previous is not None
                and (entry.size is None or entry.size == previous.size)
                and (entry.modified_ms is None or entry.modified_ms <= synced_at)
            ):
                remote_now[path] = previous
                state_files[path] = previous
                continue

            try:
                data = self.remote.download(path)
            except RemoteStoreError as exc:
                logger.error("Cannot fingerprint remote %s: %s", path, exc)
                errors.append(FileError(path=path, message=str(exc)))
                unreadable.add(path)
                if previous is not None:
                    state_files[path] = previous
                continue
            if data is None:
                logger.debug("Remote %s vanished during listing", path)
                continue

            meta = describe(path, data, entry.modified_ms, self.ignored_fields)
            remote_now[path] = meta
            state_files[path] = meta

        tombstones = (
            remote_meta.deleted_files if remote_meta is not None else frozenset()
        )
        remote_state = SyncMetadata(
            last_sync_time=synced_at,
            device_id=remote_meta.device_id if remote_meta else "",
            files=state_files,
            deleted_files=tombstones - set(state_files),
        )
        return remote_now, remote_state, unreadable, errors

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _notify(
        self,
        phase: SyncPhase,
        message: str,
        completed: int = 0,
        total: int = 0,
        current_path: str | None = None,
    ) -> None:
        logger.debug("[%s] %s", phase.value, message)
        if self.on_progress is None:
            return
        self.on_progress(
            SyncProgress(
                phase=phase,
                message=message,
                completed=completed,
                total=total,
                current_path=current_path,
            )
        )

    def _failed(
        self,
        message: str,
        started_at: str,
        options: SyncOptions,
        baseline: SyncMetadata | None = None,
    ) -> SyncResult:
        self._notify(SyncPhase.FAILED, message)
        return SyncResult(
            success=False,
            phase=SyncPhase.FAILED,
            device_id=self._device_id or "",
            dry_run=options.dry_run,
            errors=[FileError(path="", message=message)],
            plan=SyncPlan(),
            new_baseline=baseline or SyncMetadata(),
            started_at=started_at,
            completed_at=_now_iso(),
        )
