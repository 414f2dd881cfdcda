"""Tests for sync data models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from brew_sync.sync.models import (
    SCHEMA_VERSION,
    ActionKind,
    ConflictKind,
    FileMetadata,
    PlannedAction,
    SyncMetadata,
    SyncOptions,
    SyncPhase,
    SyncPlan,
    SyncProgress,
    SyncResult,
)


def _meta(path: str, fp: str = "f1", size: int = 1) -> FileMetadata:
    return FileMetadata(path=path, fingerprint=fp, size=size)


class TestActionKind:
    """Groupings used for plan ordering."""

    def test_transfers(self):
        assert ActionKind.UPLOAD_CREATE.is_transfer
        assert ActionKind.DOWNLOAD_UPDATE.is_transfer
        assert not ActionKind.DELETE_LOCAL.is_transfer
        assert not ActionKind.NOOP.is_transfer

    def test_deletes(self):
        assert ActionKind.DELETE_REMOTE.is_delete
        assert ActionKind.DELETE_LOCAL.is_delete
        assert not ActionKind.CONFLICT.is_delete

    def test_direction(self):
        assert ActionKind.UPLOAD_UPDATE.is_upload
        assert not ActionKind.UPLOAD_UPDATE.is_download
        assert ActionKind.DOWNLOAD_CREATE.is_download

    def test_conflict_kind_delete_flag(self):
        assert ConflictKind.LOCAL_DELETE_REMOTE_EDIT.involves_delete
        assert ConflictKind.REMOTE_DELETE_LOCAL_EDIT.involves_delete
        assert not ConflictKind.BOTH_MODIFIED.involves_delete
        assert not ConflictKind.BOTH_CREATED.involves_delete


class TestSyncMetadata:
    """Wire format and consistency checks."""

    def test_defaults(self):
        meta = SyncMetadata()
        assert meta.schema_version == SCHEMA_VERSION
        assert meta.files == {}
        assert meta.deleted_files == frozenset()

    def test_to_document_uses_camel_case(self):
        meta = SyncMetadata(
            last_sync_time=42,
            device_id="device-1",
            files={"a.json": FileMetadata(
                path="a.json", fingerprint="x", size=3, modified_at=9
            )},
            deleted_files=frozenset({"z.json", "b.json"}),
        )
        doc = meta.to_document()
        assert doc["schemaVersion"] == SCHEMA_VERSION
        assert doc["lastSyncTime"] == 42
        assert doc["deviceId"] == "device-1"
        assert doc["deletedFiles"] == ["b.json", "z.json"]
        assert doc["files"]["a.json"] == {
            "path": "a.json",
            "fingerprint": "x",
            "size": 3,
            "modifiedAt": 9,
        }

    def test_parses_wire_document(self):
        meta = SyncMetadata.model_validate(
            {
                "schemaVersion": SCHEMA_VERSION,
                "lastSyncTime": 1,
                "deviceId": "d",
                "files": {"a.json": {"path": "a.json", "fingerprint": "x"}},
                "deletedFiles": ["b.json"],
            }
        )
        assert meta.get("a.json").fingerprint == "x"
        assert meta.deleted_files == frozenset({"b.json"})

    def test_live_and_tombstoned_rejected(self):
        with pytest.raises(ValidationError, match="both live and tombstoned"):
            SyncMetadata(
                files={"a.json": _meta("a.json")},
                deleted_files=frozenset({"a.json"}),
            )

    def test_key_path_mismatch_rejected(self):
        with pytest.raises(ValidationError, match="describes path"):
            SyncMetadata(files={"a.json": _meta("b.json")})

    def test_frozen(self):
        meta = SyncMetadata()
        with pytest.raises(ValidationError):
            meta.device_id = "other"


class TestFileMetadata:
    def test_same_content(self):
        assert _meta("a", "x").same_content(_meta("a", "x", size=99))
        assert not _meta("a", "x").same_content(_meta("a", "y"))
        assert not _meta("a", "x").same_content(None)


class TestSyncPlan:
    """Plan accessors and summary."""

    def _plan(self) -> SyncPlan:
        return SyncPlan(
            actions=[
                PlannedAction(path="a.json", kind=ActionKind.UPLOAD_CREATE),
                PlannedAction(path="b.json", kind=ActionKind.DOWNLOAD_UPDATE),
                PlannedAction(path="c.json", kind=ActionKind.DELETE_LOCAL),
                PlannedAction(path="d.json", kind=ActionKind.CONFLICT),
                PlannedAction(path="e.json", kind=ActionKind.NOOP),
            ]
        )

    def test_groupings(self):
        plan = self._plan()
        assert [a.path for a in plan.transfers] == ["a.json", "b.json"]
        assert [a.path for a in plan.deletes] == ["c.json"]
        assert [a.path for a in plan.conflicts] == ["d.json"]
        assert [a.path for a in plan.noops] == ["e.json"]
        assert not plan.is_empty

    def test_summary_skips_noop(self):
        summary = self._plan().summary()
        assert "1 upload_create" in summary
        assert "1 conflict" in summary
        assert "noop" not in summary

    def test_empty_plan(self):
        plan = SyncPlan()
        assert plan.is_empty
        assert plan.summary() == "nothing to do"

    def test_conflict_only_plan_is_empty(self):
        plan = SyncPlan(
            actions=[PlannedAction(path="x.json", kind=ActionKind.CONFLICT)]
        )
        assert plan.is_empty


class TestSyncOptions:
    def test_defaults(self):
        options = SyncOptions()
        assert options.conflict_strategy.value == "manual"
        assert options.dry_run is False
        assert options.resolve_delete_conflicts is False
        assert options.max_workers == 4

    def test_strategy_from_string(self):
        assert SyncOptions(conflict_strategy="newest-wins").conflict_strategy.value == "newest-wins"

    def test_workers_bounded(self):
        with pytest.raises(ValidationError):
            SyncOptions(max_workers=0)
        with pytest.raises(ValidationError):
            SyncOptions(max_workers=17)


class TestSyncResult:
    def test_applied_groupings_follow_plan(self):
        plan = SyncPlan(
            actions=[
                PlannedAction(path="a.json", kind=ActionKind.UPLOAD_UPDATE),
                PlannedAction(path="b.json", kind=ActionKind.DOWNLOAD_CREATE),
                PlannedAction(path="c.json", kind=ActionKind.DELETE_REMOTE),
            ]
        )
        result = SyncResult(
            success=True,
            phase=SyncPhase.COMPLETED,
            applied=["c.json", "a.json"],
            plan=plan,
            started_at="now",
        )
        assert result.uploaded == ["a.json"]
        assert result.downloaded == []
        assert result.deleted == ["c.json"]


class TestSyncProgress:
    def test_percentage(self):
        progress = SyncProgress(
            phase=SyncPhase.EXECUTING, message="", completed=1, total=4
        )
        assert progress.percentage == 25

    def test_percentage_without_total(self):
        assert SyncProgress(phase=SyncPhase.IDLE, message="").percentage == 0
