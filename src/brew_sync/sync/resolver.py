"""Conflict resolution strategies for the reconciler.

A resolver turns a ``CONFLICT`` action into a concrete transfer or delete,
or leaves it unresolved:

- ``LocalWinsResolver``: Make the remote match the local side.
- ``RemoteWinsResolver``: Make the local side match the remote.
- ``NewestWinsResolver``: Pick the side with the later ``modified_at``
  (``None`` counts as oldest, ties go to local).
- ``ManualResolver``: Never resolves; conflicts are surfaced to the caller.

Delete-vs-edit conflicts are left unresolved unless the caller opts in with
``resolve_deletes=True``.  When opted in, newest-wins keeps the edit.

The ``create_resolver()`` factory maps strategy values to resolver
instances.
"""

from __future__ import annotations

import logging
from typing import Protocol

from brew_sync.sync.models import (
    ActionKind,
    ConflictKind,
    ConflictStrategy,
    PlannedAction,
)

logger = logging.getLogger(__name__)

LOCAL = "local"
REMOTE = "remote"


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ConflictResolver(Protocol):
    """Protocol that all conflict resolvers must satisfy."""

    def resolve(
        self, action: PlannedAction, resolve_deletes: bool = False
    ) -> PlannedAction | None:
        """Resolve a conflict.

        Args:
            action: A ``CONFLICT`` action produced by ``classify()``.
            resolve_deletes: Allow delete-vs-edit conflicts to be resolved.

        Returns:
            The replacement action (its ``conflict`` field still names the
            original conflict kind), or ``None`` to leave it unresolved.
        """
        ...  # pragma: no cover


def apply_side(action: PlannedAction, side: str) -> PlannedAction:
    """Return the action that makes both sides equal to *side*'s state."""
    if side == LOCAL:
        if action.local is None:
            kind = ActionKind.DELETE_REMOTE
        elif action.remote is None:
            kind = ActionKind.UPLOAD_CREATE
        else:
            kind = ActionKind.UPLOAD_UPDATE
    elif side == REMOTE:
        if action.remote is None:
            kind = ActionKind.DELETE_LOCAL
        elif action.local is None:
            kind = ActionKind.DOWNLOAD_CREATE
        else:
            kind = ActionKind.DOWNLOAD_UPDATE
    else:
        raise ValueError(f"Unknown side: {side!r}")

    return action.model_copy(
        update={
            "kind": kind,
            "reason": f"conflict ({action.conflict.value}) resolved: {side} wins",
        }
    )


class _SideResolver:
    """Shared logic: pick a side, honour the delete-conflict opt-in."""

    name = ""

    def choose(self, action: PlannedAction) -> str:
        raise NotImplementedError

    def resolve(
        self, action: PlannedAction, resolve_deletes: bool = False
    ) -> PlannedAction | None:
        if action.kind != ActionKind.CONFLICT or action.conflict is None:
            return action
        if action.conflict.involves_delete and not resolve_deletes:
            logger.info(
                "Leaving %s conflict on %s for manual resolution",
                action.conflict.value,
                action.path,
            )
            return None
        side = self.choose(action)
        logger.info(
            "Resolved %s conflict on %s with %s: %s wins",
            action.conflict.value,
            action.path,
            self.name,
            side,
        )
        return apply_side(action, side)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class LocalWinsResolver(_SideResolver):
    """Always resolve conflicts in favour of the local side."""

    name = ConflictStrategy.LOCAL_WINS.value

    def choose(self, action: PlannedAction) -> str:
        return LOCAL


class RemoteWinsResolver(_SideResolver):
    """Always resolve conflicts in favour of the remote side."""

    name = ConflictStrategy.REMOTE_WINS.value

    def choose(self, action: PlannedAction) -> str:
        return REMOTE


class NewestWinsResolver(_SideResolver):
    """Resolve by ``modified_at``; deterministic on ties."""

    name = ConflictStrategy.NEWEST_WINS.value

    def choose(self, action: PlannedAction) -> str:
        if action.conflict == ConflictKind.LOCAL_DELETE_REMOTE_EDIT:
            return REMOTE
        if action.conflict == ConflictKind.REMOTE_DELETE_LOCAL_EDIT:
            return LOCAL

        local_time = action.local.modified_at if action.local else None
        remote_time = action.remote.modified_at if action.remote else None
        if remote_time is None:
            return LOCAL
        if local_time is None:
            return REMOTE
        return LOCAL if local_time >= remote_time else REMOTE


class ManualResolver:
    """Never resolve; conflicts are reported back to the caller."""

    def resolve(
        self, action: PlannedAction, resolve_deletes: bool = False
    ) -> PlannedAction | None:
        if action.kind != ActionKind.CONFLICT:
            return action
        return None


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_STRATEGY_MAP: dict[str, type] = {
    ConflictStrategy.LOCAL_WINS.value: LocalWinsResolver,
    ConflictStrategy.REMOTE_WINS.value: RemoteWinsResolver,
    ConflictStrategy.NEWEST_WINS.value: NewestWinsResolver,
    ConflictStrategy.MANUAL.value: ManualResolver,
}


def create_resolver(strategy: ConflictStrategy | str) -> ConflictResolver:
    """Create a conflict resolver for the given strategy.

    Args:
        strategy: A ``ConflictStrategy`` or its string value
            (``"local-wins"``, ``"remote-wins"``, ``"newest-wins"``,
            ``"manual"``).

    Raises:
        ValueError: If the strategy is not recognised.
    """
    key = strategy.value if isinstance(strategy, ConflictStrategy) else strategy
    cls = _STRATEGY_MAP.get(key)
    if cls is None:
        raise ValueError(
            f"Unknown conflict strategy: '{strategy}'. Valid strategies: {sorted(_STRATEGY_MAP.keys())}"
        )
    return cls()  # type: ignore[return-value]
