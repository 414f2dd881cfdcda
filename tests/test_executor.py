"""Tests for plan execution and metadata persistence.

Covers:
- Transfers and deletes are applied and folded into both metadata documents
- One failing document does not stop the others
- Remote metadata write failure rolls the local baseline back
- All transfers finish before any delete starts
- Cancellation skips actions that have not started
- Tombstones are recorded and pruned
- Backup failures after an upload only add a warning
"""

from __future__ import annotations

import threading

from brew_sync.sync.backup import BackupManager
from brew_sync.sync.executor import ExecutionContext, Executor
from brew_sync.sync.fingerprint import describe
from brew_sync.sync.metadata import (
    LOCAL_METADATA_KEY,
    REMOTE_METADATA_PATH,
    MetadataStore,
)
from brew_sync.sync.models import ActionKind, SyncMetadata, SyncOptions
from brew_sync.sync.reconciler import Reconciler

from fakes import FakeRemoteStore, MemoryDocumentStore, MemoryRecordSource, doc

DEVICE = "device-0123456789abcdef"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _describe_all(files: dict[str, bytes]) -> dict:
    return {path: describe(path, data) for path, data in files.items()}


def _baseline(files: dict[str, bytes], deleted=frozenset()) -> SyncMetadata:
    return SyncMetadata(
        device_id=DEVICE, files=_describe_all(files), deleted_files=deleted
    )


class _Harness:
    """Wire a plan and an execution context over the fakes."""

    def __init__(
        self,
        local: dict[str, bytes],
        remote: dict[str, bytes],
        baseline: SyncMetadata | None = None,
        remote_tombstones=frozenset(),
        options: SyncOptions | None = None,
    ) -> None:
        self.records = MemoryRecordSource(local)
        self.remote = FakeRemoteStore(remote)
        self.documents = MemoryDocumentStore()
        self.store = MetadataStore(self.documents, self.remote, DEVICE)
        self.baseline = baseline
        if baseline is not None:
            self.store.save_local(baseline)
        remote_now = _describe_all(remote)
        self.remote_state = SyncMetadata(
            files=remote_now, deleted_files=frozenset(remote_tombstones)
        )
        self.plan = Reconciler().plan(
            baseline, _describe_all(local), remote_now, options
        )

    def context(self, **overrides) -> ExecutionContext:
        values = dict(
            remote=self.remote,
            records=self.records,
            metadata=self.store,
            baseline=self.baseline,
            remote_state=self.remote_state,
            local_documents=self.records.snapshot(),
            device_id=DEVICE,
        )
        values.update(overrides)
        return ExecutionContext(**values)

    def run(self, **overrides):
        return Executor().apply(self.plan, self.context(**overrides))


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestExecutorApply:
    """Successful passes."""

    def test_uploads_and_downloads(self):
        beans = doc([{"id": 1, "name": "Yirgacheffe"}])
        notes = doc([{"id": 9, "text": "bloom 30s"}])
        h = _Harness(local={"beans.json": beans}, remote={"notes.json": notes})

        outcome = h.run()

        assert outcome.success
        assert outcome.applied == ["beans.json", "notes.json"]
        assert h.remote.files["beans.json"] == beans
        assert h.records.files["notes.json"] == notes
        assert set(outcome.new_baseline.files) == {"beans.json", "notes.json"}
        assert outcome.new_remote.files == outcome.new_baseline.files

    def test_metadata_written_to_both_sides(self):
        h = _Harness(local={"beans.json": doc([1])}, remote={})
        outcome = h.run()

        assert h.store.get_local() == outcome.new_baseline
        remote_meta = h.store.get_remote()
        assert remote_meta == outcome.new_remote
        assert remote_meta.device_id == DEVICE
        assert remote_meta.last_sync_time == outcome.new_baseline.last_sync_time

    def test_local_metadata_saved_before_remote(self):
        h = _Harness(local={"beans.json": doc([1])}, remote={})
        order: list[str] = []
        original_set = h.documents.set
        original_upload = h.remote.upload

        def tracking_set(key, value):
            order.append("local")
            original_set(key, value)

        def tracking_upload(path, data):
            if path == REMOTE_METADATA_PATH:
                order.append("remote")
            original_upload(path, data)

        h.documents.set = tracking_set
        h.remote.upload = tracking_upload
        h.run()
        assert order == ["local", "remote"]

    def test_deletes(self):
        keep = doc({"k": 1})
        gone_local = doc({"x": 1})
        gone_remote = doc({"y": 1})
        baseline = _baseline(
            {"keep.json": keep, "a.json": gone_local, "b.json": gone_remote}
        )
        h = _Harness(
            local={"keep.json": keep, "b.json": gone_remote},
            remote={"keep.json": keep, "a.json": gone_local},
            baseline=baseline,
        )

        outcome = h.run()

        assert outcome.success
        assert "a.json" not in h.remote.files
        assert "b.json" not in h.records.files
        assert set(outcome.new_baseline.files) == {"keep.json"}
        assert outcome.new_baseline.deleted_files == frozenset(
            {"a.json", "b.json"}
        )
        assert outcome.new_remote.deleted_files == frozenset({"a.json"})

    def test_noop_adoption_recorded(self):
        same = doc({"same": True})
        h = _Harness(local={"x.json": same}, remote={"x.json": same})
        outcome = h.run()
        assert outcome.applied == []
        assert "x.json" in outcome.new_baseline.files
        assert h.remote.ops("upload") == [REMOTE_METADATA_PATH]

    def test_progress_reports_each_action(self):
        h = _Harness(
            local={"a.json": doc(1), "b.json": doc(2)},
            remote={"c.json": doc(3)},
        )
        seen: list[tuple[int, int, str]] = []
        h.run(on_progress=lambda done, total, path: seen.append((done, total, path)))
        assert [s[0] for s in seen] == [1, 2, 3]
        assert {s[1] for s in seen} == {3}
        assert {s[2] for s in seen} == {"a.json", "b.json", "c.json"}

    def test_applied_reported_in_plan_order(self):
        local = {f"{i:02d}.json": doc(i) for i in range(12)}
        h = _Harness(local=local, remote={})
        outcome = h.run(max_workers=8)
        assert outcome.applied == sorted(local)


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestExecutorFailures:
    """Per-document failures and metadata write failures."""

    def test_failed_upload_isolated(self):
        h = _Harness(local={"a.json": doc(1), "b.json": doc(2)}, remote={})
        h.remote.fail_upload.add("a.json")

        outcome = h.run()

        assert not outcome.success
        assert outcome.metadata_saved
        assert outcome.applied == ["b.json"]
        assert [e.path for e in outcome.errors] == ["a.json"]
        assert "a.json" not in outcome.new_baseline.files
        assert "b.json" in outcome.new_baseline.files

    def test_failed_update_keeps_old_baseline_entry(self):
        old = doc({"v": 1})
        baseline = _baseline({"a.json": old})
        h = _Harness(
            local={"a.json": doc({"v": 2})},
            remote={"a.json": old},
            baseline=baseline,
        )
        h.remote.fail_upload.add("a.json")

        outcome = h.run()

        assert outcome.new_baseline.files["a.json"] == baseline.files["a.json"]

    def test_failed_local_delete_keeps_entry(self):
        data = doc({"v": 1})
        baseline = _baseline({"a.json": data})
        h = _Harness(local={"a.json": data}, remote={}, baseline=baseline)
        h.records.fail_delete.add("a.json")

        outcome = h.run()

        assert [e.path for e in outcome.errors] == ["a.json"]
        assert "a.json" in outcome.new_baseline.files
        assert "a.json" not in outcome.new_baseline.deleted_files

    def test_unexpected_exception_isolated(self):
        h = _Harness(local={"a.json": doc(1), "b.json": doc(2)}, remote={})
        upload = h.remote.upload

        def flaky_upload(path, data):
            if path == "a.json":
                raise KeyError("etag")
            upload(path, data)

        h.remote.upload = flaky_upload

        outcome = h.run()

        assert outcome.metadata_saved
        assert outcome.applied == ["b.json"]
        assert [e.path for e in outcome.errors] == ["a.json"]
        assert "etag" in outcome.errors[0].message
        assert "a.json" not in outcome.new_baseline.files

    def test_download_vanished(self):
        h = _Harness(local={}, remote={"a.json": doc(1)})
        del h.remote.files["a.json"]

        outcome = h.run()

        assert [e.path for e in outcome.errors] == ["a.json"]
        assert "vanished" in outcome.errors[0].message

    def test_remote_metadata_failure_rolls_back(self):
        baseline = _baseline({"a.json": doc(1)})
        h = _Harness(
            local={"a.json": doc(1), "b.json": doc(2)},
            remote={"a.json": doc(1)},
            baseline=baseline,
        )
        h.remote.fail_upload.add(REMOTE_METADATA_PATH)

        outcome = h.run()

        assert not outcome.metadata_saved
        assert not outcome.success
        assert outcome.errors[-1].path == REMOTE_METADATA_PATH
        assert outcome.new_baseline == baseline
        assert h.store.get_local() == baseline

    def test_remote_metadata_failure_without_baseline_clears_local(self):
        h = _Harness(local={"a.json": doc(1)}, remote={})
        h.remote.fail_upload.add(REMOTE_METADATA_PATH)

        outcome = h.run()

        assert outcome.new_baseline is None
        assert LOCAL_METADATA_KEY not in h.documents.data

    def test_local_metadata_failure_skips_remote_write(self):
        h = _Harness(local={"a.json": doc(1)}, remote={})
        h.documents.fail_set.add(LOCAL_METADATA_KEY)

        outcome = h.run()

        assert not outcome.metadata_saved
        assert outcome.errors[-1].path == ""
        assert REMOTE_METADATA_PATH not in h.remote.files


# ---------------------------------------------------------------------------
# Phases and cancellation
# ---------------------------------------------------------------------------


class TestExecutorPhases:
    """Transfers drain before deletes; cancellation stops new work."""

    def test_transfers_before_deletes(self):
        old = doc({"old": True})
        baseline = _baseline({f"old{i}.json": old for i in range(4)})
        local = {f"new{i}.json": doc(i) for i in range(6)}
        h = _Harness(
            local=local,
            remote={f"old{i}.json": old for i in range(4)},
            baseline=baseline,
        )

        h.run(max_workers=4)

        ops = [
            op for op, path in h.remote.calls
            if op in ("upload", "delete") and path != REMOTE_METADATA_PATH
        ]
        assert ops == ["upload"] * 6 + ["delete"] * 4

    def test_cancel_before_start_skips_everything(self):
        h = _Harness(local={"a.json": doc(1)}, remote={"b.json": doc(2)})
        event = threading.Event()
        event.set()

        outcome = h.run(cancel_event=event)

        assert outcome.cancelled
        assert not outcome.success
        assert outcome.applied == []
        assert sorted(outcome.skipped) == ["a.json", "b.json"]
        assert h.remote.ops("upload") == [REMOTE_METADATA_PATH]
        assert outcome.metadata_saved

    def test_cancel_during_transfers_skips_deletes(self):
        data = doc({"v": 1})
        baseline = _baseline({"gone.json": data})
        h = _Harness(
            local={"new.json": doc(2)},
            remote={"gone.json": data},
            baseline=baseline,
        )
        event = threading.Event()

        outcome = h.run(
            cancel_event=event,
            on_progress=lambda done, total, path: event.set(),
        )

        assert outcome.cancelled
        assert outcome.applied == ["new.json"]
        assert outcome.skipped == ["gone.json"]
        assert "gone.json" in h.remote.files
        assert "new.json" in outcome.new_baseline.files
        assert "gone.json" in outcome.new_baseline.files


# ---------------------------------------------------------------------------
# Tombstones
# ---------------------------------------------------------------------------


class TestTombstones:
    """Tombstones are kept only as long as they are useful."""

    def test_old_local_tombstones_dropped(self):
        data = doc(1)
        baseline = _baseline({"a.json": data}, deleted=frozenset({"old.json"}))
        h = _Harness(local={"a.json": data}, remote={"a.json": data}, baseline=baseline)
        outcome = h.run()
        assert outcome.new_baseline.deleted_files == frozenset()

    def test_remote_tombstone_kept_while_baseline_tracked_path(self):
        data = doc(1)
        baseline = _baseline({"x.json": data})
        h = _Harness(
            local={"x.json": data},
            remote={},
            baseline=baseline,
            remote_tombstones={"x.json", "stale.json"},
        )

        outcome = h.run()

        assert h.plan.actions[0].kind == ActionKind.DELETE_LOCAL
        assert outcome.new_remote.deleted_files == frozenset({"x.json"})

    def test_unselected_tombstones_survive(self):
        data = doc(1)
        baseline = _baseline({}, deleted=frozenset({"notes.json"}))
        h = _Harness(
            local={"a.json": data},
            remote={},
            baseline=baseline,
            remote_tombstones={"notes.json"},
        )

        outcome = h.run(selected=lambda path: path != "notes.json")

        assert "notes.json" in outcome.new_baseline.deleted_files
        assert "notes.json" in outcome.new_remote.deleted_files

    def test_converged_delete_clears_tombstones(self):
        baseline = _baseline({"x.json": doc(1)})
        h = _Harness(
            local={}, remote={}, baseline=baseline,
            remote_tombstones={"x.json"},
        )

        outcome = h.run()

        assert h.plan.actions[0].kind == ActionKind.NOOP
        assert "x.json" not in outcome.new_baseline.files
        assert outcome.new_baseline.deleted_files == frozenset()
        assert outcome.new_remote.deleted_files == frozenset()

    def test_recreated_path_clears_tombstone(self):
        data = doc(1)
        h = _Harness(
            local={"x.json": data},
            remote={},
            remote_tombstones={"x.json"},
        )
        outcome = h.run()
        assert "x.json" in outcome.new_remote.files
        assert "x.json" not in outcome.new_remote.deleted_files


class TestExecutorBackups:
    """Backups are taken after uploads only when configured."""

    def test_backup_after_each_upload(self):
        h = _Harness(local={"a.json": doc(1)}, remote={"b.json": doc(2)})

        outcome = h.run(backups=BackupManager(h.remote, max_backups=5))

        assert outcome.success
        assert h.remote.ops("copy")[0].startswith("backups/a.json/backup-")
        assert len(h.remote.ops("copy")) == 1
        assert outcome.warnings == []

    def test_backup_failure_collected_as_warning(self):
        h = _Harness(local={"a.json": doc(1)}, remote={})
        h.remote.fail_copy.add("a.json")

        outcome = h.run(backups=BackupManager(h.remote, max_backups=5))

        assert outcome.success
        assert outcome.applied == ["a.json"]
        assert outcome.warnings == [
            "backup of a.json failed: copy of a.json failed"
        ]
