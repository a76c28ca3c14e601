"""
Automatic and manual backup snapshots.

A snapshot is an export document stored under a key that embeds its
creation time in epoch milliseconds. Listing and pruning parse the key
instead of keeping a separate index. The key format is private to this
module; callers only ever hand keys back that ``list_backups`` gave them.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from .config import DEFAULT_RETENTION_DAYS
from .errors import BackupNotFound
from .persistence import STORAGE_KEYS, PersistenceGateway
from .transfer import DataTransfer
from .types import (
    BackupSnapshot,
    ImportResult,
    epoch_millis,
    format_timestamp,
    parse_utc_timestamp,
)

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "immotrack_backup_"


class BackupManager:
    """
    Creates, lists, restores and prunes backup snapshots.

    Scheduled backups (``maybe_create_backup``) honour the ``autoSave`` and
    ``backupInterval`` settings; ``create_backup`` always writes one.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        transfer: DataTransfer,
        *,
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ):
        self._gateway = gateway
        self._transfer = transfer
        self._kv = gateway.kv
        self._retention = timedelta(days=retention_days)

    def _now(self) -> datetime:
        return self._gateway.clock()

    def _snapshot_time(self, key: str) -> Optional[datetime]:
        suffix = key[len(BACKUP_PREFIX):]
        if not suffix.isdigit():
            return None
        try:
            return datetime.fromtimestamp(int(suffix) / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    def last_backup_at(self) -> Optional[datetime]:
        """When the last backup was written, or None if never (or unreadable)."""
        stored = self._kv.get(STORAGE_KEYS.LAST_BACKUP)
        if not stored:
            return None
        try:
            return parse_utc_timestamp(stored)
        except ValueError:
            logger.warning("Ignoring unreadable last-backup timestamp: %r", stored)
            return None

    def is_backup_due(self) -> bool:
        settings = self._gateway.load_settings()
        if not settings.auto_save:
            return False
        last = self.last_backup_at()
        if last is None:
            return True
        return self._now() - last >= timedelta(days=settings.backup_interval)

    def maybe_create_backup(self) -> bool:
        """
        Write a snapshot if auto-save is on and the interval has elapsed.

        Returns:
            True if a snapshot was written
        """
        try:
            if not self.is_backup_due():
                return False
            return self.create_backup() is not None
        except Exception as e:
            logger.error("Automatic backup failed: %s", e)
            return False

    def create_backup(self) -> Optional[BackupSnapshot]:
        """
        Write a snapshot now, then prune stale ones.

        Returns:
            The new snapshot, or None if it could not be stored
        """
        now = self._now()
        millis = epoch_millis(now)
        # Two backups in the same millisecond must not overwrite each other
        while self._kv.get(f"{BACKUP_PREFIX}{millis}") is not None:
            millis += 1
        key = f"{BACKUP_PREFIX}{millis}"

        payload = self._transfer.export_all()
        try:
            self._kv.set(key, payload)
            self._kv.set(STORAGE_KEYS.LAST_BACKUP, format_timestamp(now))
        except Exception as e:
            logger.error("Backup could not be stored: %s", e)
            self._kv.remove(key)
            return None

        logger.info("Backup created: %s", key)
        self.prune_old()
        return BackupSnapshot(key=key, created_at=self._snapshot_time(key))

    def list_backups(self) -> list[BackupSnapshot]:
        """All snapshots, newest first."""
        snapshots = []
        for key in self._kv.keys(BACKUP_PREFIX):
            created = self._snapshot_time(key)
            if created is None:
                continue
            snapshots.append(BackupSnapshot(key=key, created_at=created))
        snapshots.sort(key=lambda s: s.created_at, reverse=True)
        return snapshots

    def restore(self, key: str) -> ImportResult:
        """
        Replace the stored collection with a snapshot's contents.

        Runs the regular import path, so the snapshot is repaired exactly like
        an imported file. The snapshot itself is kept.
        """
        payload = self._kv.get(key) if key.startswith(BACKUP_PREFIX) else None
        if payload is None:
            error = BackupNotFound(key)
            logger.warning("%s", error)
            return ImportResult(success=False, error=str(error))

        result = self._transfer.import_all(payload)
        if result.success:
            logger.info("Restored %d properties from %s", result.imported_count, key)
        return result

    def prune_old(self) -> int:
        """
        Remove snapshots older than the retention period.

        Keys whose timestamp cannot be read are removed as well.

        Returns:
            Number of snapshots removed
        """
        now = self._now()
        removed = 0
        for key in self._kv.keys(BACKUP_PREFIX):
            created = self._snapshot_time(key)
            if created is None or now - created > self._retention:
                if self._kv.remove(key):
                    removed += 1
        if removed:
            logger.info("Removed %d old backups", removed)
        return removed
