"""Tests for store configuration and the backend factory."""

import pytest

from immotrack.backend import create_kv_store
from immotrack.config import (
    CONFIG_FILENAME,
    DEFAULT_RETENTION_DAYS,
    StoreConfig,
    get_default_store_path,
    load_config,
    load_or_create_config,
    save_config,
)
from immotrack.kvstore import DEFAULT_QUOTA_BYTES, MemoryKeyValueStore, SqliteKeyValueStore


class TestConfig:

    def test_load_or_create_writes_defaults(self, tmp_path):
        config = load_or_create_config(tmp_path / "store")
        assert config.config_path.exists()
        assert config.backend == "sqlite"
        assert config.quota_bytes == DEFAULT_QUOTA_BYTES
        assert config.backup_retention_days == DEFAULT_RETENTION_DAYS
        assert config.include_demo is True

    def test_round_trip(self, tmp_path):
        original = StoreConfig(path=tmp_path, backend="memory", quota_bytes=0,
                               backup_retention_days=10, include_demo=False)
        save_config(original)
        loaded = load_config(tmp_path)
        assert loaded.backend == "memory"
        assert loaded.quota_bytes == 0
        assert loaded.backup_retention_days == 10
        assert loaded.include_demo is False
        assert loaded.created == original.created

    def test_existing_config_is_loaded(self, tmp_path):
        save_config(StoreConfig(path=tmp_path, backup_retention_days=3))
        assert load_or_create_config(tmp_path).backup_retention_days == 3

    def test_missing_config(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_newer_version_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text('[store]\nversion = 99\n')
        with pytest.raises(ValueError, match="newer"):
            load_config(tmp_path)

    @pytest.mark.parametrize("body", [
        '[storage]\nquota_bytes = -1\n',
        '[storage]\nquota_bytes = "lots"\n',
        '[backup]\nretention_days = 0\n',
    ])
    def test_invalid_limits_rejected(self, tmp_path, body):
        (tmp_path / CONFIG_FILENAME).write_text(body)
        with pytest.raises(ValueError):
            load_config(tmp_path)

    def test_default_path_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("IMMOTRACK_STORE_PATH", str(tmp_path))
        assert get_default_store_path() == tmp_path.resolve()

    def test_default_path_home(self, monkeypatch, tmp_path):
        monkeypatch.delenv("IMMOTRACK_STORE_PATH", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        assert get_default_store_path() == tmp_path / ".immotrack"


class TestBackendFactory:

    def test_sqlite(self, tmp_path):
        kv = create_kv_store(StoreConfig(path=tmp_path, quota_bytes=123))
        try:
            assert isinstance(kv, SqliteKeyValueStore)
            assert kv.quota_bytes == 123
        finally:
            kv.close()
        assert (tmp_path / "store.db").exists()

    def test_memory(self, tmp_path):
        kv = create_kv_store(StoreConfig(path=tmp_path, backend="memory"))
        assert isinstance(kv, MemoryKeyValueStore)

    def test_unknown_backend(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown backend"):
            create_kv_store(StoreConfig(path=tmp_path, backend="nosuch"))
