"""Three-way merge planner.

Compares, per document id, the local baseline (last confirmed in-sync
state), the current local snapshot and the current remote snapshot, and
produces an ordered ``SyncPlan``.

Decision table (``b``/``l``/``r`` are fingerprints; ``-`` means absent):

====== ====== ====== ==========================================
base   local  remote action
====== ====== ====== ==========================================
-      l      -      UPLOAD_CREATE
-      -      r      DOWNLOAD_CREATE
-      l      r      NOOP if l == r (adopt), else CONFLICT
b      b      b      NOOP
b      l      b      UPLOAD_UPDATE
b      b      r      DOWNLOAD_UPDATE
b      l      r      NOOP if l == r, else CONFLICT
b      -      b      DELETE_REMOTE
b      -      r      CONFLICT (local delete vs remote edit)
b      b      -      DELETE_LOCAL
b      l      -      CONFLICT (remote delete vs local edit)
b      -      -      NOOP (delete converged)
====== ====== ====== ==========================================

Classification is a pure per-path function with no cross-path state.
One-way passes (``SyncDirection.UPLOAD`` / ``DOWNLOAD``) use ``mirror()``
instead: the source side wins every difference and no conflicts arise.
The plan is ordered transfers first, then deletes, then NOOP/CONFLICT
entries, each group sorted by path.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from brew_sync.sync.models import (
    ActionKind,
    ConflictKind,
    FileMetadata,
    PlannedAction,
    SyncMetadata,
    SyncDirection,
    SyncOptions,
    SyncPlan,
)
from brew_sync.sync.resolver import ConflictResolver, create_resolver
from brew_sync.validators import path_selected

logger = logging.getLogger(__name__)


def _fp(meta: FileMetadata | None) -> str | None:
    return meta.fingerprint if meta is not None else None


def classify(
    path: str,
    baseline: FileMetadata | None,
    local: FileMetadata | None,
    remote: FileMetadata | None,
) -> PlannedAction:
    """Classify one document id against the three snapshots.

    Args:
        path: Document id.
        baseline: Entry in the last confirmed baseline, if any.
        local: Current local state, if the document exists locally.
        remote: Current remote state, if the document exists remotely.

    Returns:
        The unresolved ``PlannedAction`` for *path*.
    """
    base_fp, local_fp, remote_fp = _fp(baseline), _fp(local), _fp(remote)

    def action(
        kind: ActionKind, reason: str, conflict: ConflictKind | None = None
    ) -> PlannedAction:
        return PlannedAction(
            path=path,
            kind=kind,
            reason=reason,
            local=local,
            remote=remote,
            baseline=baseline,
            conflict=conflict,
        )

    if base_fp is None:
        if local_fp is not None and remote_fp is None:
            return action(ActionKind.UPLOAD_CREATE, "new local document")
        if local_fp is None and remote_fp is not None:
            return action(ActionKind.DOWNLOAD_CREATE, "new remote document")
        if local_fp is None and remote_fp is None:
            return action(ActionKind.NOOP, "absent everywhere")
        if local_fp == remote_fp:
            return action(ActionKind.NOOP, "identical on both sides")
        return action(
            ActionKind.CONFLICT,
            "created on both sides with different content",
            ConflictKind.BOTH_CREATED,
        )

    if local_fp is None and remote_fp is None:
        return action(ActionKind.NOOP, "deleted on both sides")

    if local_fp is None:
        if remote_fp == base_fp:
            return action(ActionKind.DELETE_REMOTE, "deleted locally")
        return action(
            ActionKind.CONFLICT,
            "deleted locally but modified remotely",
            ConflictKind.LOCAL_DELETE_REMOTE_EDIT,
        )

    if remote_fp is None:
        if local_fp == base_fp:
            return action(ActionKind.DELETE_LOCAL, "deleted remotely")
        return action(
            ActionKind.CONFLICT,
            "deleted remotely but modified locally",
            ConflictKind.REMOTE_DELETE_LOCAL_EDIT,
        )

    if local_fp == base_fp and remote_fp == base_fp:
        return action(ActionKind.NOOP, "unchanged")
    if remote_fp == base_fp:
        return action(ActionKind.UPLOAD_UPDATE, "modified locally")
    if local_fp == base_fp:
        return action(ActionKind.DOWNLOAD_UPDATE, "modified remotely")
    if local_fp == remote_fp:
        return action(ActionKind.NOOP, "same change on both sides")
    return action(
        ActionKind.CONFLICT,
        "modified on both sides",
        ConflictKind.BOTH_MODIFIED,
    )


def mirror(
    path: str,
    baseline: FileMetadata | None,
    local: FileMetadata | None,
    remote: FileMetadata | None,
    direction: SyncDirection,
) -> PlannedAction:
    """Classify one document id for a one-way pass.

    The source side (local for ``UPLOAD``, remote for ``DOWNLOAD``) always
    wins: differing content is copied over and documents missing from the
    source are deleted on the target.  Equal content is a NoOp.

    Raises:
        ValueError: If *direction* is ``FULL``.
    """
    if direction == SyncDirection.FULL:
        raise ValueError("mirror() needs a one-way direction")

    def action(kind: ActionKind, reason: str) -> PlannedAction:
        return PlannedAction(
            path=path,
            kind=kind,
            reason=reason,
            local=local,
            remote=remote,
            baseline=baseline,
        )

    if local is None and remote is None:
        return action(ActionKind.NOOP, "absent everywhere")
    if local is not None and local.same_content(remote):
        return action(ActionKind.NOOP, "identical on both sides")

    if direction == SyncDirection.UPLOAD:
        if local is None:
            return action(ActionKind.DELETE_REMOTE, "upload: absent locally")
        if remote is None:
            return action(ActionKind.UPLOAD_CREATE, "upload: missing remotely")
        return action(ActionKind.UPLOAD_UPDATE, "upload: local version wins")

    if remote is None:
        return action(ActionKind.DELETE_LOCAL, "download: absent remotely")
    if local is None:
        return action(ActionKind.DOWNLOAD_CREATE, "download: missing locally")
    return action(ActionKind.DOWNLOAD_UPDATE, "download: remote version wins")


def _order_key(action: PlannedAction) -> tuple[int, str]:
    if action.kind.is_transfer:
        group = 0
    elif action.kind.is_delete:
        group = 1
    else:
        group = 2
    return (group, action.path)


class Reconciler:
    """Build a ``SyncPlan`` from baseline, local and remote snapshots.

    Args:
        resolver: Conflict resolver to use instead of the one named by
            ``SyncOptions.conflict_strategy``.
    """

    def __init__(self, resolver: ConflictResolver | None = None) -> None:
        self._resolver = resolver

    def plan(
        self,
        baseline: SyncMetadata | None,
        local_now: Mapping[str, FileMetadata],
        remote_now: SyncMetadata | Mapping[str, FileMetadata],
        options: SyncOptions | None = None,
    ) -> SyncPlan:
        """Classify every selected path and resolve conflicts.

        Args:
            baseline: Local baseline, or ``None`` on first sync.
            local_now: Current local ``FileMetadata`` keyed by path.
            remote_now: Current remote state, as metadata or a mapping.
            options: Strategy, direction and include/exclude filter.

        Returns:
            The ordered plan.  Resolved conflicts keep their ``conflict``
            kind; unresolved ones stay ``CONFLICT``.
        """
        options = options or SyncOptions()
        resolver = self._resolver or create_resolver(
            options.conflict_strategy
        )
        remote_files = (
            remote_now.files
            if isinstance(remote_now, SyncMetadata)
            else remote_now
        )

        base_paths = set(baseline.files) if baseline is not None else set()
        paths = base_paths | set(local_now) | set(remote_files)
        actions: list[PlannedAction] = []
        for path in paths:
            if not path_selected(path, options.include, options.exclude):
                continue
            base = baseline.get(path) if baseline is not None else None
            if options.direction != SyncDirection.FULL:
                actions.append(
                    mirror(
                        path,
                        base,
                        local_now.get(path),
                        remote_files.get(path),
                        options.direction,
                    )
                )
                continue
            action = classify(
                path, base, local_now.get(path), remote_files.get(path)
            )
            if action.kind == ActionKind.CONFLICT:
                resolved = resolver.resolve(
                    action, options.resolve_delete_conflicts
                )
                if resolved is not None:
                    action = resolved
            actions.append(action)

        actions.sort(key=_order_key)
        plan = SyncPlan(actions=actions)
        logger.info("Sync plan: %s", plan.summary())
        return plan


def validate_plan(
    plan: SyncPlan,
    total: int | None = None,
    max_delete_ratio: float = 0.3,
    max_delete_count: int = 100,
) -> list[str]:
    """Return warnings about risky plans.  Never blocks execution.

    Args:
        plan: Plan to inspect.
        total: Number of documents the ratio is measured against.
            Defaults to the number of non-delete actions in *plan*.
        max_delete_ratio: Warn when deletes exceed this share of *total*.
        max_delete_count: Warn when deletes exceed this count.
    """
    warnings: list[str] = []
    delete_count = len(plan.deletes)
    if total is None:
        total = len(plan.actions) - delete_count

    if total > 0 and delete_count:
        ratio = delete_count / total
        if ratio > max_delete_ratio:
            warnings.append(
                f"Plan deletes {delete_count} documents ({ratio:.1%}), "
                f"above the {max_delete_ratio:.0%} safety threshold"
            )

    if delete_count > max_delete_count:
        warnings.append(
            f"Plan deletes {delete_count} documents, above the safety "
            f"threshold of {max_delete_count}"
        )

    conflicts = plan.conflicts
    if conflicts:
        warnings.append(
            f"{len(conflicts)} conflicting documents need manual resolution"
        )

    for warning in warnings:
        logger.warning(warning)
    return warnings
