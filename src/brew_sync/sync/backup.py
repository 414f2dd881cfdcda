"""Remote backups of uploaded documents.

After a document is uploaded, a server-side copy is made under
``backups/<document id>/backup-<UTC timestamp>.json`` and only the newest
``max_backups`` copies per document are kept.  Copies never leave the
server, so backups cost no client bandwidth.

The ``backups/`` tree is reserved: the session never lists it as
documents, so backups are not synced back to devices.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone

from brew_sync.exceptions import RemoteStoreError
from brew_sync.storage.base import RemoteStore

logger = logging.getLogger(__name__)

BACKUP_DIR = "backups"
DEFAULT_MAX_BACKUPS = 5

# backup-2026-10-19T14-45-51-947123Z.json
_KEY_PATTERN = re.compile(
    r"backup-(\d{4})-(\d{2})-(\d{2})T(\d{2})-(\d{2})-(\d{2})-(\d{6})Z\.json$"
)


def is_backup_path(path: str) -> bool:
    """Return ``True`` for paths inside the reserved backup tree."""
    return path == BACKUP_DIR or path.startswith(BACKUP_DIR + "/")


def _timestamp_from_key(key: str) -> int | None:
    match = _KEY_PATTERN.search(key)
    if match is None:
        return None
    year, month, day, hour, minute, second, micro = map(int, match.groups())
    stamp = datetime(
        year, month, day, hour, minute, second, micro, tzinfo=timezone.utc
    )
    return int(stamp.timestamp() * 1000)


@dataclass(frozen=True)
class BackupRecord:
    """One stored backup of a document."""

    path: str
    key: str
    timestamp: int


class BackupManager:
    """Create, list, prune and restore backups on one remote store.

    Args:
        remote: Store holding both the documents and their backups.
        max_backups: Copies kept per document; older ones are deleted.
    """

    def __init__(
        self, remote: RemoteStore, max_backups: int = DEFAULT_MAX_BACKUPS
    ) -> None:
        self.remote = remote
        self.max_backups = max_backups

    def backup_key(self, path: str, now: datetime | None = None) -> str:
        now = now or datetime.now(timezone.utc)
        stamp = now.strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        return f"{BACKUP_DIR}/{path}/backup-{stamp}.json"

    def create(self, path: str) -> BackupRecord:
        """Copy the current remote *path* into the backup tree.

        Raises:
            RemoteStoreError: If the server-side copy fails.
        """
        now = datetime.now(timezone.utc)
        key = self.backup_key(path, now)
        self.remote.copy(path, key)
        logger.info("Backed up %s to %s", path, key)
        return BackupRecord(
            path=path, key=key, timestamp=int(now.timestamp() * 1000)
        )

    def list(self, path: str) -> list[BackupRecord]:
        """Return the backups of *path*, oldest first."""
        records = []
        for entry in self.remote.list(f"{BACKUP_DIR}/{path}"):
            name = entry.path.rsplit("/", 1)[-1]
            if not (name.startswith("backup-") and name.endswith(".json")):
                continue
            # Only direct children: backups of "a.json" never include "a.json/x/..."
            if entry.path.rsplit("/", 1)[0] != f"{BACKUP_DIR}/{path}":
                continue
            timestamp = _timestamp_from_key(entry.path)
            if timestamp is None:
                timestamp = entry.modified_ms or 0
            records.append(
                BackupRecord(path=path, key=entry.path, timestamp=timestamp)
            )
        return sorted(records, key=lambda r: (r.timestamp, r.key))

    def prune(self, path: str) -> list[str]:
        """Delete all but the newest ``max_backups`` backups of *path*.

        Returns:
            Keys that were deleted.  A failed delete is logged and skipped.
        """
        backups = self.list(path)
        excess = len(backups) - self.max_backups
        if excess <= 0:
            return []
        deleted = []
        for record in backups[:excess]:
            try:
                self.remote.delete(record.key)
            except RemoteStoreError as exc:
                logger.warning("Cannot delete old backup %s: %s", record.key, exc)
                continue
            deleted.append(record.key)
            logger.debug("Deleted old backup %s", record.key)
        return deleted

    def backup_after_upload(self, path: str) -> BackupRecord:
        """Back up a freshly uploaded document, then prune its history.

        Raises:
            RemoteStoreError: If the copy or the listing fails.
        """
        record = self.create(path)
        self.prune(path)
        return record

    def restore(self, path: str, key: str | None = None) -> tuple[str, bytes]:
        """Return ``(key, content)`` of a backup of *path*.

        Args:
            path: Document id.
            key: Backup key; the newest backup when ``None``.

        Raises:
            LookupError: If *path* has no backups, or *key* is not one of them.
            RemoteStoreError: If the download fails.
        """
        if key is None:
            backups = self.list(path)
            if not backups:
                raise LookupError(f"No backups of {path}")
            key = backups[-1].key
        elif not key.startswith(f"{BACKUP_DIR}/{path}/"):
            raise LookupError(f"{key} is not a backup of {path}")

        content = self.remote.download(key)
        if content is None:
            raise LookupError(f"Backup {key} does not exist")
        return key, content
