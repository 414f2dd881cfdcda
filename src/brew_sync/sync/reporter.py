"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync passes:

- ``format_sync_report`` -- full post-sync summary.
- ``format_dry_run_preview`` -- dry-run preview grouped by action.
- ``format_status`` -- baseline summary for ``brew-sync status``.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from .models import ActionKind

if TYPE_CHECKING:
    from .models import PlannedAction, SyncResult

_DISPLAY_ORDER = [
    ActionKind.UPLOAD_CREATE,
    ActionKind.UPLOAD_UPDATE,
    ActionKind.DOWNLOAD_CREATE,
    ActionKind.DOWNLOAD_UPDATE,
    ActionKind.DELETE_REMOTE,
    ActionKind.DELETE_LOCAL,
    ActionKind.CONFLICT,
]


def _describe_action(action: PlannedAction) -> str:
    line = f"  {action.path}"
    if action.reason:
        line += f" ({action.reason})"
    return line


# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(result: SyncResult) -> str:
    """Format a completed sync pass as human-readable text.

    Sections are only included when they contain at least one entry.

    Args:
        result: The sync result.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"Sync report for device {result.device_id or '(unknown)'}"
    if result.dry_run:
        header += " (DRY RUN)"
    lines.append(header)
    lines.append(f"Started: {result.started_at}")
    if result.completed_at:
        lines.append(f"Completed: {result.completed_at}")
    status = "OK" if result.success else "FAILED"
    if result.cancelled:
        status += " (cancelled)"
    lines.append(f"Status: {status} [{result.phase.value}]")
    lines.append("")

    lines.append(
        f"{len(result.uploaded)} uploaded, "
        f"{len(result.downloaded)} downloaded, "
        f"{len(result.deleted)} deleted, "
        f"{len(result.conflicts)} conflicts, "
        f"{len(result.errors)} errors"
    )
    lines.append("")

    if result.uploaded:
        lines.append("Uploaded:")
        lines.extend(f"  {p}" for p in result.uploaded)
        lines.append("")

    if result.downloaded:
        lines.append("Downloaded:")
        lines.extend(f"  {p}" for p in result.downloaded)
        lines.append("")

    if result.deleted:
        lines.append("Deleted:")
        lines.extend(f"  {p}" for p in result.deleted)
        lines.append("")

    if result.resolved_conflicts:
        lines.append("Conflicts resolved automatically:")
        lines.extend(f"  {p}" for p in result.resolved_conflicts)
        lines.append("")

    if result.conflicts:
        lines.append("Conflicts (manual resolution needed):")
        for action in result.plan.conflicts:
            lines.append(_describe_action(action))
        lines.append("")

    if result.errors:
        lines.append("Errors:")
        for error in result.errors:
            lines.append(f"  {error.path or '(sync)'}: {error.message}")
        lines.append("")

    if result.warnings:
        lines.append("Warnings:")
        lines.extend(f"  {w}" for w in result.warnings)
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_dry_run_preview(result: SyncResult) -> str:
    """Format a dry-run preview grouped by action kind.

    Args:
        result: A dry-run sync result (``dry_run=True``).

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append("DRY RUN -- No changes will be made")
    lines.append("")

    groups: dict[ActionKind, list[PlannedAction]] = defaultdict(list)
    for action in result.plan.actions:
        groups[action.kind].append(action)

    for kind in _DISPLAY_ORDER:
        if kind not in groups:
            continue
        label = kind.value.upper().replace("_", " ")
        lines.append(f"[{label}]")
        for action in groups[kind]:
            lines.append(_describe_action(action))
        lines.append("")

    noop_count = len(groups.get(ActionKind.NOOP, []))
    if noop_count > 0:
        lines.append(f"Unchanged: {noop_count} documents")
        lines.append("")

    if not any(k != ActionKind.NOOP for k in groups):
        lines.append("No changes needed.")
        lines.append("")

    if result.errors:
        lines.append("Errors:")
        for error in result.errors:
            lines.append(f"  {error.path or '(sync)'}: {error.message}")
        lines.append("")

    if result.warnings:
        lines.append("Warnings:")
        lines.extend(f"  {w}" for w in result.warnings)
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Status
# ------------------------------------------------------------------


def format_status(status: dict) -> str:
    """Format ``SyncSession.status()`` output."""
    lines = [f"Device: {status['device_id']}"]
    if not status["has_baseline"]:
        lines.append("Baseline: none (next sync bootstraps)")
        return "\n".join(lines)

    synced_at = datetime.fromtimestamp(
        status["last_sync_time"] / 1000, tz=timezone.utc
    ).isoformat()
    lines.append(f"Last sync: {synced_at} by {status['last_writer']}")
    lines.append(
        f"Baseline: {status['files']} documents, "
        f"{status['tombstones']} tombstones"
    )
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(result: SyncResult) -> dict:
    """Convert a sync result to a structured dict for JSON serialisation.

    Args:
        result: The sync result.

    Returns:
        Dict with status, counts, and per-action details.
    """
    applied = set(result.applied)
    failed = {e.path: e.message for e in result.errors}
    actions = []
    for action in result.plan.actions:
        if action.kind == ActionKind.NOOP:
            continue
        entry: dict = {
            "path": action.path,
            "action": action.kind.value,
            "reason": action.reason,
            "applied": action.path in applied,
        }
        if action.conflict is not None:
            entry["conflict"] = action.conflict.value
        if action.path in failed:
            entry["error"] = failed[action.path]
        actions.append(entry)

    return {
        "success": result.success,
        "phase": result.phase.value,
        "device_id": result.device_id,
        "dry_run": result.dry_run,
        "cancelled": result.cancelled,
        "started_at": result.started_at,
        "completed_at": result.completed_at,
        "counts": {
            "uploaded": len(result.uploaded),
            "downloaded": len(result.downloaded),
            "deleted": len(result.deleted),
            "conflicts": len(result.conflicts),
            "resolved_conflicts": len(result.resolved_conflicts),
            "errors": len(result.errors),
            "unchanged": len(result.plan.noops),
        },
        "actions": actions,
        "errors": [e.model_dump() for e in result.errors],
        "warnings": list(result.warnings),
    }
