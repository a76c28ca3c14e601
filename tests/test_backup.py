"""Tests for backup creation, rate limiting, restore and pruning."""

import json
from datetime import timedelta

import pytest

from immotrack.backup import BACKUP_PREFIX, BackupManager
from immotrack.persistence import STORAGE_KEYS
from immotrack.transfer import DataTransfer
from immotrack.types import Settings, epoch_millis, format_timestamp

from conftest import make_record


@pytest.fixture
def backups(gateway):
    return BackupManager(gateway, DataTransfer(gateway))


def _set_last_backup(kv, clock, days_ago):
    kv.set(STORAGE_KEYS.LAST_BACKUP, format_timestamp(clock() - timedelta(days=days_ago)))


def _backup_keys(kv):
    return kv.keys(BACKUP_PREFIX)


class TestRateLimiting:
    """Scheduled backups honour auto-save and the interval."""

    def test_recent_backup_skips(self, kv, clock, backups):
        _set_last_backup(kv, clock, 3)
        assert backups.maybe_create_backup() is False
        assert _backup_keys(kv) == []

    def test_due_backup_created(self, kv, clock, backups):
        _set_last_backup(kv, clock, 8)
        assert backups.maybe_create_backup() is True
        assert len(_backup_keys(kv)) == 1
        assert kv.get(STORAGE_KEYS.LAST_BACKUP) == format_timestamp(clock())

    def test_first_backup(self, kv, backups):
        assert backups.maybe_create_backup() is True
        assert len(_backup_keys(kv)) == 1

    def test_auto_save_disabled(self, kv, gateway, backups):
        gateway.save_settings(Settings(auto_save=False))
        assert backups.maybe_create_backup() is False
        assert _backup_keys(kv) == []

    def test_custom_interval(self, kv, clock, gateway, backups):
        gateway.save_settings(Settings(backup_interval=2))
        _set_last_backup(kv, clock, 3)
        assert backups.maybe_create_backup() is True

    def test_unreadable_last_backup(self, kv, backups):
        kv.set(STORAGE_KEYS.LAST_BACKUP, "yesterday-ish")
        assert backups.last_backup_at() is None
        assert backups.maybe_create_backup() is True

    def test_storage_failure(self, kv, backups, monkeypatch):
        def full(key, value):
            raise OSError("no space")
        monkeypatch.setattr(kv, "set", full)
        assert backups.maybe_create_backup() is False


class TestCreateAndList:

    def test_snapshot_is_export_document(self, kv, gateway, backups):
        gateway.save_collection([make_record()])
        snapshot = backups.create_backup()
        data = json.loads(kv.get(snapshot.key))
        assert [p["id"] for p in data["properties"]] == ["prop_1"]
        assert "settings" in data

    def test_same_millisecond_gets_distinct_keys(self, kv, backups):
        first = backups.create_backup()
        second = backups.create_backup()
        assert first.key != second.key
        assert len(_backup_keys(kv)) == 2

    def test_list_newest_first(self, clock, backups):
        keys = []
        for _ in range(3):
            keys.append(backups.create_backup().key)
            clock.advance(hours=1)
        listed = backups.list_backups()
        assert [s.key for s in listed] == list(reversed(keys))
        assert listed[0].created_at > listed[-1].created_at

    def test_list_ignores_foreign_keys(self, kv, backups):
        kv.set(BACKUP_PREFIX + "notanumber", "{}")
        assert backups.list_backups() == []

    def test_key_embeds_creation_time(self, clock, backups):
        snapshot = backups.create_backup()
        assert snapshot.key == f"{BACKUP_PREFIX}{epoch_millis(clock())}"
        assert snapshot.created_iso == format_timestamp(clock())


class TestRestore:

    def test_restore_replaces_collection(self, gateway, backups):
        gateway.save_collection([make_record(id="a", name="A"), make_record(id="b", name="B")])
        snapshot = backups.create_backup()
        gateway.save_collection([make_record(id="c", name="C")])

        result = backups.restore(snapshot.key)
        assert result.success
        assert result.imported_count == 2
        assert result.previous_count == 1
        assert [r.id for r in gateway.load_collection()] == ["a", "b"]

    def test_snapshot_kept_after_restore(self, kv, backups):
        snapshot = backups.create_backup()
        backups.restore(snapshot.key)
        assert kv.get(snapshot.key) is not None

    def test_missing_backup(self, backups):
        result = backups.restore(BACKUP_PREFIX + "123")
        assert result.success is False
        assert "Backup not found" in result.error

    def test_non_backup_key_refused(self, gateway, backups):
        gateway.save_collection([make_record()])
        result = backups.restore(STORAGE_KEYS.PROPERTIES)
        assert result.success is False
        assert len(gateway.load_collection()) == 1

    def test_corrupt_snapshot(self, kv, gateway, backups):
        gateway.save_collection([make_record()])
        kv.set(BACKUP_PREFIX + "1", "garbage")
        result = backups.restore(BACKUP_PREFIX + "1")
        assert result.success is False
        assert len(gateway.load_collection()) == 1


class TestPrune:
    """Snapshots older than the retention period are removed."""

    def test_old_snapshots_removed(self, kv, clock, backups):
        old = backups.create_backup()
        clock.advance(days=31)
        recent = backups.create_backup()  # prunes after writing
        keys = _backup_keys(kv)
        assert old.key not in keys
        assert recent.key in keys

    def test_prune_count(self, kv, clock, backups):
        backups.create_backup()
        clock.advance(minutes=1)
        backups.create_backup()
        kv.set(BACKUP_PREFIX + "garbled", "{}")
        clock.advance(days=40)
        assert backups.prune_old() == 3
        assert _backup_keys(kv) == []

    def test_within_retention_kept(self, kv, clock, backups):
        backups.create_backup()
        clock.advance(days=29)
        assert backups.prune_old() == 0
        assert len(_backup_keys(kv)) == 1

    def test_retention_configurable(self, kv, clock, gateway):
        manager = BackupManager(gateway, DataTransfer(gateway), retention_days=5)
        manager.create_backup()
        clock.advance(days=6)
        assert manager.prune_old() == 1
