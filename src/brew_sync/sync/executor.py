"""Apply a ``SyncPlan`` and write the resulting metadata to both sides.

Execution runs in two phases through a bounded thread pool:

1. Every transfer (upload/download).
2. Every delete, started only after phase 1 has fully drained.

Each action is atomic per document.  Successful actions are folded into
two drafts: the new local baseline (seeded from the old baseline) and the
new remote metadata (seeded from what is actually on the remote).  A
failed action leaves both drafts untouched for its path so the path is
re-evaluated on the next pass.

When a ``BackupManager`` is given, each upload is followed by a server-side
backup; a failed backup is only a warning.

Metadata is written local first, then remote.  If the remote write fails
the local baseline is rolled back to the previous one (or removed when
there was none).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from brew_sync.exceptions import LocalStoreError, RemoteStoreError
from brew_sync.local.records import LocalDocument, RecordSource
from brew_sync.storage.base import RemoteStore
from brew_sync.sync.backup import BackupManager
from brew_sync.sync.fingerprint import DEFAULT_IGNORED_FIELDS, describe
from brew_sync.sync.metadata import (
    REMOTE_METADATA_PATH,
    MetadataDraft,
    MetadataStore,
)
from brew_sync.sync.models import (
    ActionKind,
    FileError,
    FileMetadata,
    PlannedAction,
    SyncMetadata,
    SyncPlan,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


class _Cancelled(Exception):
    """Raised inside a worker when the pass was cancelled before it started."""


@dataclass
class ExecutionContext:
    """Everything the executor needs besides the plan.

    Attributes:
        remote: Remote store for document I/O.
        records: Local record source for document I/O.
        metadata: Store used for the final metadata writes.
        baseline: Old local baseline (``None`` on first sync).
        remote_state: What is actually on the remote now, as metadata.
        local_documents: Current local content keyed by path.
        device_id: Identifier stamped into both new metadata documents.
        selected: Predicate telling whether a path took part in this pass.
        max_workers: Thread pool size.
        cancel_event: Checked before each action starts.
        on_progress: Called as ``(completed, total, path)``.
        ignored_fields: Fields excluded when fingerprinting downloads.
        backups: Makes a remote backup after each upload when set.
        warnings: Non-fatal problems collected during the pass.
    """

    remote: RemoteStore
    records: RecordSource
    metadata: MetadataStore
    baseline: SyncMetadata | None
    remote_state: SyncMetadata
    local_documents: dict[str, LocalDocument]
    device_id: str
    selected: Callable[[str], bool] = lambda path: True
    max_workers: int = 4
    cancel_event: threading.Event | None = None
    on_progress: ProgressCallback | None = None
    ignored_fields: Iterable[str] = DEFAULT_IGNORED_FIELDS
    backups: BackupManager | None = None
    warnings: list[str] = field(default_factory=list)
    warnings_lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass
class ExecutionOutcome:
    """Result of ``Executor.apply``."""

    applied: list[str] = field(default_factory=list)
    errors: list[FileError] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    cancelled: bool = False
    metadata_saved: bool = False
    new_baseline: SyncMetadata | None = None
    new_remote: SyncMetadata | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors and self.metadata_saved and not self.cancelled


class Executor:
    """Perform the I/O for a plan and persist the merged metadata."""

    def apply(
        self, plan: SyncPlan, context: ExecutionContext
    ) -> ExecutionOutcome:
        """Execute *plan*.

        Args:
            plan: Ordered plan from the reconciler.
            context: Stores, snapshots and knobs for this pass.

        Returns:
            ``ExecutionOutcome`` with applied paths, per-path errors and
            the metadata written (``new_baseline`` is the old baseline when
            the metadata write was rolled back).
        """
        outcome = ExecutionOutcome()
        local_draft = MetadataDraft(context.baseline)
        remote_draft = MetadataDraft(context.remote_state)
        deleted_remote: set[str] = set()
        deleted_local: set[str] = set()

        self._apply_bookkeeping(plan, local_draft, remote_draft)

        total = len(plan.transfers) + len(plan.deletes)
        completed = 0

        for phase in (plan.transfers, plan.deletes):
            if not phase:
                continue
            if context.cancelled:
                outcome.cancelled = True
                outcome.skipped.extend(a.path for a in phase)
                continue

            for action, meta, error in self._run_phase(phase, context):
                completed += 1
                if context.on_progress is not None:
                    context.on_progress(completed, total, action.path)

                if isinstance(error, _Cancelled):
                    outcome.cancelled = True
                    outcome.skipped.append(action.path)
                    continue
                if error is not None:
                    logger.error(
                        "Failed to %s %s: %s",
                        action.kind.value,
                        action.path,
                        error,
                    )
                    outcome.errors.append(
                        FileError(path=action.path, message=str(error))
                    )
                    continue

                outcome.applied.append(action.path)
                if action.kind == ActionKind.DELETE_REMOTE:
                    deleted_remote.add(action.path)
                    local_draft.mark_deleted(action.path)
                    remote_draft.mark_deleted(action.path)
                elif action.kind == ActionKind.DELETE_LOCAL:
                    deleted_local.add(action.path)
                    local_draft.mark_deleted(action.path)
                    remote_draft.forget(action.path)
                else:
                    local_draft.put(meta)
                    remote_draft.put(meta)

        # Workers finish in any order; report in plan order
        order = {a.path: i for i, a in enumerate(plan.actions)}
        outcome.applied.sort(key=lambda p: order.get(p, 0))
        outcome.errors.sort(key=lambda e: order.get(e.path, 0))
        outcome.warnings.extend(context.warnings)

        if outcome.cancelled:
            logger.warning(
                "Sync cancelled; %d actions not started", len(outcome.skipped)
            )

        self._prune_tombstones(
            context,
            local_draft,
            remote_draft,
            deleted_local | deleted_remote,
            deleted_remote,
        )
        new_baseline = local_draft.build(context.device_id)
        new_remote = remote_draft.build(
            context.device_id, new_baseline.last_sync_time
        )
        self._save_metadata(context, new_baseline, new_remote, outcome)
        return outcome

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _run_phase(
        self, actions: list[PlannedAction], context: ExecutionContext
    ):
        """Run *actions* concurrently, yielding ``(action, meta, error)``."""
        with ThreadPoolExecutor(
            max_workers=context.max_workers,
            thread_name_prefix="brew-sync",
        ) as pool:
            futures = {
                pool.submit(self._execute_one, action, context): action
                for action in actions
            }
            for future in as_completed(futures):
                action = futures[future]
                try:
                    yield action, future.result(), None
                except Exception as exc:
                    # Any failure stays scoped to its document
                    yield action, None, exc

    def _execute_one(
        self, action: PlannedAction, context: ExecutionContext
    ) -> FileMetadata | None:
        if context.cancelled:
            raise _Cancelled(action.path)

        path = action.path
        kind = action.kind
        if kind.is_upload:
            document = context.local_documents.get(path)
            if document is None:
                raise LocalStoreError(f"{path} vanished from local storage")
            context.remote.upload(path, document.content)
            logger.info("Uploaded %s (%s)", path, action.reason)
            if context.backups is not None:
                self._backup(path, context)
            return action.local or describe(
                path,
                document.content,
                document.modified_at,
                context.ignored_fields,
            )

        if kind.is_download:
            data = context.remote.download(path)
            if data is None:
                raise RemoteStoreError(f"{path} vanished from remote store")
            context.records.write(path, data)
            logger.info("Downloaded %s (%s)", path, action.reason)
            modified_at = action.remote.modified_at if action.remote else None
            return describe(path, data, modified_at, context.ignored_fields)

        if kind == ActionKind.DELETE_REMOTE:
            context.remote.delete(path)
            logger.info("Deleted remote %s (%s)", path, action.reason)
            return None

        if kind == ActionKind.DELETE_LOCAL:
            context.records.delete(path)
            logger.info("Deleted local %s (%s)", path, action.reason)
            return None

        raise ValueError(f"{kind.value} is not an executable action")

    def _backup(self, path: str, context: ExecutionContext) -> None:
        """Back up an uploaded document; failure only adds a warning."""
        try:
            context.backups.backup_after_upload(path)
        except RemoteStoreError as exc:
            logger.warning("Backup of %s failed: %s", path, exc)
            with context.warnings_lock:
                context.warnings.append(f"backup of {path} failed: {exc}")

    # ------------------------------------------------------------------
    # Metadata bookkeeping
    # ------------------------------------------------------------------

    def _apply_bookkeeping(
        self,
        plan: SyncPlan,
        local_draft: MetadataDraft,
        remote_draft: MetadataDraft,
    ) -> None:
        """Fold NOOP outcomes into the drafts (no I/O needed)."""
        for action in plan.noops:
            if action.local is not None and action.remote is not None:
                local_draft.put(action.local)
                remote_draft.put(action.remote)
            elif action.local is None and action.remote is None:
                local_draft.forget(action.path)
                local_draft.clear_tombstone(action.path)
                remote_draft.forget(action.path)
                remote_draft.clear_tombstone(action.path)

    def _prune_tombstones(
        self,
        context: ExecutionContext,
        local_draft: MetadataDraft,
        remote_draft: MetadataDraft,
        deleted: set[str],
        deleted_remote: set[str],
    ) -> None:
        """Drop tombstones that no device can still need.

        The local baseline keeps only this pass's deletes.  The remote keeps
        an old tombstone while this device's old baseline still tracked the
        path, since other devices may not have seen the delete yet.
        """
        old_files = context.baseline.files if context.baseline else {}
        for path in local_draft.tombstones:
            if path not in deleted and context.selected(path):
                local_draft.clear_tombstone(path)
        for path in remote_draft.tombstones:
            if path in deleted_remote or not context.selected(path):
                continue
            if path not in old_files:
                remote_draft.clear_tombstone(path)

    def _save_metadata(
        self,
        context: ExecutionContext,
        new_baseline: SyncMetadata,
        new_remote: SyncMetadata,
        outcome: ExecutionOutcome,
    ) -> None:
        store = context.metadata
        try:
            store.save_local(new_baseline)
        except (LocalStoreError, OSError) as exc:
            logger.error("Failed to save local sync metadata: %s", exc)
            outcome.errors.append(
                FileError(
                    path="", message=f"local metadata write failed: {exc}"
                )
            )
            outcome.new_baseline = context.baseline
            return

        try:
            store.save_remote(new_remote)
        except RemoteStoreError as exc:
            logger.error(
                "Failed to save remote sync metadata, rolling back: %s", exc
            )
            outcome.errors.append(
                FileError(
                    path=REMOTE_METADATA_PATH,
                    message=f"remote metadata write failed: {exc}",
                )
            )
            self._rollback(store, context.baseline)
            outcome.new_baseline = context.baseline
            return

        outcome.metadata_saved = True
        outcome.new_baseline = new_baseline
        outcome.new_remote = new_remote

    def _rollback(
        self, store: MetadataStore, baseline: SyncMetadata | None
    ) -> None:
        try:
            if baseline is None:
                store.clear_local()
            else:
                store.save_local(baseline)
        except (LocalStoreError, OSError) as exc:
            logger.error("Rolling back local sync metadata failed: %s", exc)
