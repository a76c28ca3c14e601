"""Tests for the persistence gateway."""

import json
import logging

import pytest

from immotrack.kvstore import MemoryKeyValueStore
from immotrack.persistence import STORAGE_FULL_MESSAGE, STORAGE_KEYS, PersistenceGateway
from immotrack.schema import MIGRATION_AUTHOR
from immotrack.types import Settings, format_timestamp

from conftest import make_raw, make_record


def _store_raw(kv, properties):
    kv.set(STORAGE_KEYS.PROPERTIES, json.dumps({
        "properties": properties,
        "timestamp": "2025-01-01T00:00:00.000Z",
        "version": "1.0",
    }))


class BrokenReadStore(MemoryKeyValueStore):
    """Store whose reads fail, as a locked or corrupt database would."""

    def get(self, key):
        raise OSError("disk I/O error")


class TestSaveCollection:

    def test_envelope_written(self, gateway, kv, clock):
        assert gateway.save_collection([make_record()]) is True
        envelope = json.loads(kv.get(STORAGE_KEYS.PROPERTIES))
        assert envelope["version"] == "1.0"
        assert envelope["timestamp"] == format_timestamp(clock())
        assert [p["id"] for p in envelope["properties"]] == ["prop_1"]

    def test_demo_records_excluded(self, gateway):
        """Only non-demo records survive a save/load cycle."""
        demo = make_record(id="demo-1", name="Demo")
        demo.is_demo = True
        real = make_record(id="prop_2", name="Real")
        gateway.save_collection([demo, real])
        loaded = gateway.load_collection()
        assert [r.id for r in loaded] == ["prop_2"]
        assert not any(r.is_demo for r in loaded)

    def test_quota_failure_notifies(self, notifier, clock):
        kv = MemoryKeyValueStore(quota_bytes=50)
        gateway = PersistenceGateway(kv, notifier=notifier, clock=clock)
        assert gateway.save_collection([make_record()]) is False
        assert notifier.messages == [("warning", STORAGE_FULL_MESSAGE)]
        assert kv.get(STORAGE_KEYS.PROPERTIES) is None

    def test_other_failure_returns_false(self, gateway, notifier):
        record = make_record()
        record.checklist = {"bad": object()}
        assert gateway.save_collection([record]) is False
        assert notifier.messages == []


class TestLoadCollection:

    def test_absent_is_empty(self, gateway):
        assert gateway.load_collection() == []

    @pytest.mark.parametrize("payload", [
        "not json {",
        json.dumps([1, 2, 3]),
        json.dumps({"timestamp": "x"}),
        json.dumps({"properties": "nope"}),
    ])
    def test_malformed_is_empty(self, gateway, kv, caplog, payload):
        kv.set(STORAGE_KEYS.PROPERTIES, payload)
        with caplog.at_level(logging.WARNING, logger="immotrack.persistence"):
            assert gateway.load_collection() == []
        assert caplog.records

    def test_elements_repaired(self, gateway, kv):
        _store_raw(kv, [{"id": "old", "name": "Legacy", "notes": "free text"}])
        [record] = gateway.load_collection()
        assert record.portfolio == "Standard"
        assert record.notes[0].author == MIGRATION_AUTHOR
        assert record.checklist  # template applied

    def test_non_objects_skipped_and_duplicates_dropped(self, gateway, kv):
        _store_raw(kv, [
            "junk",
            make_raw(id="a", name="First"),
            None,
            make_raw(id="a", name="Second"),
        ])
        assert [r.name for r in gateway.load_collection()] == ["First"]

    def test_unparseable_year_keeps_collection(self, gateway, kv, clock):
        _store_raw(kv, [make_raw(id="a"), make_raw(id="b", name="B", accountingYear="³")])
        loaded = gateway.load_collection()
        assert [r.id for r in loaded] == ["a", "b"]
        assert loaded[1].accounting_year == clock().year

    def test_read_error_is_empty(self, notifier, clock):
        gateway = PersistenceGateway(BrokenReadStore(), notifier=notifier, clock=clock)
        assert gateway.load_collection() == []


class TestSingleRecordOperations:

    def test_save_one_appends(self, gateway):
        assert gateway.save_one(make_record(id="a", name="A")) is True
        assert gateway.save_one(make_record(id="b", name="B")) is True
        assert [r.id for r in gateway.load_collection()] == ["a", "b"]

    def test_save_one_replaces_and_keeps_created_at(self, gateway):
        gateway.save_one(make_record(id="a", createdAt="2020-01-01T00:00:00.000Z"))
        changed = make_record(id="a", name="Renamed", createdAt="2030-01-01T00:00:00.000Z")
        gateway.save_one(changed)
        [stored] = gateway.load_collection()
        assert stored.name == "Renamed"
        assert stored.created_at == "2020-01-01T00:00:00.000Z"

    def test_save_one_clears_demo_flag(self, gateway):
        record = make_record()
        record.is_demo = True
        gateway.save_one(record)
        assert [r.is_demo for r in gateway.load_collection()] == [False]

    def test_save_one_does_not_overwrite_on_read_error(self, notifier, clock):
        kv = BrokenReadStore()
        gateway = PersistenceGateway(kv, notifier=notifier, clock=clock)
        assert gateway.save_one(make_record()) is False
        assert kv.keys() == []

    def test_delete_one(self, gateway):
        gateway.save_collection([make_record(id="a"), make_record(id="b", name="B")])
        assert gateway.delete_one("a") is True
        assert [r.id for r in gateway.load_collection()] == ["b"]

    def test_delete_one_missing(self, gateway):
        gateway.save_collection([make_record(id="a")])
        assert gateway.delete_one("zzz") is False
        assert len(gateway.load_collection()) == 1


class TestPortfolioMigration:
    """Records stored before portfolios existed are backfilled once."""

    def test_backfill_once(self, gateway, kv, clock):
        _store_raw(kv, [
            {k: v for k, v in make_raw(id="old").items() if k != "portfolio"},
            make_raw(id="new", name="Other", portfolio="P2"),
        ])
        clock.advance(days=1)
        assert gateway.migrate_portfolios() is True
        assert gateway.migrate_portfolios() is False

        stored = {p["id"]: p for p in json.loads(kv.get(STORAGE_KEYS.PROPERTIES))["properties"]}
        assert stored["old"]["portfolio"] == "Standard"
        assert stored["old"]["updatedAt"] == format_timestamp(clock())
        assert stored["new"]["updatedAt"] == "2025-01-01T00:00:00.000Z"

    def test_repair_failure_reported(self, gateway, kv, monkeypatch):
        """A failing repair aborts the migration without touching storage."""
        raw = make_raw()
        del raw["portfolio"]
        _store_raw(kv, [raw])
        before = kv.get(STORAGE_KEYS.PROPERTIES)

        def broken(raw):
            raise RuntimeError("repair crashed")
        monkeypatch.setattr(gateway, "repair", broken)
        assert gateway.migrate_portfolios() is False
        assert kv.get(STORAGE_KEYS.PROPERTIES) == before

    def test_nothing_stored(self, gateway):
        assert gateway.migrate_portfolios() is False

    def test_malformed_stored(self, gateway, kv):
        kv.set(STORAGE_KEYS.PROPERTIES, "{{{")
        assert gateway.migrate_portfolios() is False


class TestSettings:

    def test_defaults(self, gateway, clock):
        settings = gateway.load_settings()
        assert settings == Settings(default_accounting_year=clock().year)
        assert settings.backup_interval == 7
        assert settings.auto_save is True

    def test_round_trip_with_timestamp(self, gateway, kv, clock):
        assert gateway.save_settings(Settings(theme="dark", backup_interval=3,
                                              default_accounting_year=2024))
        stored = json.loads(kv.get(STORAGE_KEYS.SETTINGS))
        assert stored["timestamp"] == format_timestamp(clock())
        loaded = gateway.load_settings()
        assert loaded.theme == "dark"
        assert loaded.backup_interval == 3

    def test_partial_settings_merged_over_defaults(self, gateway, kv):
        kv.set(STORAGE_KEYS.SETTINGS, json.dumps({"autoSave": False, "theme": 5}))
        loaded = gateway.load_settings()
        assert loaded.auto_save is False
        assert loaded.theme == "light"

    def test_corrupt_settings(self, gateway, kv):
        kv.set(STORAGE_KEYS.SETTINGS, "[not settings")
        assert gateway.load_settings() == gateway.default_settings()


class TestHousekeeping:

    def test_storage_info(self, gateway, kv):
        gateway.save_collection([make_record()])
        kv.set("other", "12345")
        info = gateway.storage_info()
        assert info.collection_bytes == kv.size_of(STORAGE_KEYS.PROPERTIES)
        assert info.total_bytes == info.collection_bytes + 5
        assert info.quota_bytes == kv.quota_bytes
        assert 0 <= info.usage_percent <= 1

    def test_clear_keeps_backups(self, gateway, kv):
        gateway.save_collection([make_record()])
        gateway.save_settings(Settings())
        kv.set(STORAGE_KEYS.LAST_BACKUP, "2025-01-01T00:00:00.000Z")
        kv.set("immotrack_backup_1", "{}")
        assert gateway.clear() == 3
        assert kv.keys() == ["immotrack_backup_1"]
