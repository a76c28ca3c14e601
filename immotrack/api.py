"""
Core API for the property store.

``PropertyStore`` wires the components together:

- a key/value store (from config, or injected)
- the persistence gateway over it
- import/export and backups on top of the gateway
- the working set and the mutation coordinator that keeps it in step

Example:
    with PropertyStore() as store:
        store.initialize()
        result = store.create({"name": "12 High Street", "type": "MV"})
        store.delete(result.record.id)
"""

import logging
from pathlib import Path
from typing import Any, Optional

from .backup import BackupManager
from .checklist import checklist_stats
from .config import StoreConfig, get_default_store_path, load_or_create_config
from .coordinator import Candidate, MutationCoordinator
from .demo import demo_records
from .persistence import PersistenceGateway
from .protocol import DetailView, KeyValueStoreProtocol, Notifier
from .transfer import DataTransfer
from .types import (
    BackupSnapshot,
    Clock,
    ImportResult,
    MutationResult,
    PropertyRecord,
    Settings,
    StorageInfo,
)
from .working_set import RecordFilter, WorkingSet

logger = logging.getLogger(__name__)


class PropertyStore:
    """
    Client-side store of property records.

    Nothing is loaded until ``initialize()`` runs: it migrates old data,
    takes a scheduled backup if one is due, and fills the working set.
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
        kv_store: Optional[KeyValueStoreProtocol] = None,
        notifier: Optional[Notifier] = None,
        detail_view: Optional[DetailView] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        """
        Open (or create) a property store.

        Args:
            store_path: Store directory. Uses IMMOTRACK_STORE_PATH or
                ~/.immotrack if not specified.
            config: Pre-loaded StoreConfig (skips filesystem config discovery).
            kv_store: Injected key/value store (skips backend creation and the
                operations log).
            notifier: Receives user-facing messages.
            detail_view: Closed when the record it shows is deleted.
            clock: Time source; defaults to the system clock.
        """
        # --- Config resolution ---
        if config is not None:
            self._config = config
        elif kv_store is not None and store_path is None:
            # Fully injected (tests): no filesystem config
            self._config = StoreConfig(path=Path("."), backend="memory")
        else:
            path = Path(store_path).resolve() if store_path else get_default_store_path()
            self._config = load_or_create_config(path)

        # --- Storage backend (injected or factory-created) ---
        self._ops_log_handler = None
        if kv_store is not None:
            self._kv = kv_store
        else:
            from .backend import create_kv_store
            from .logging_config import configure_ops_log
            self._kv = create_kv_store(self._config)
            self._ops_log_handler = configure_ops_log(self._config.path)

        self._gateway = PersistenceGateway(self._kv, notifier=notifier, clock=clock)
        self._transfer = DataTransfer(self._gateway)
        self._backups = BackupManager(
            self._gateway,
            self._transfer,
            retention_days=self._config.backup_retention_days,
        )
        self._working_set = WorkingSet()
        self._coordinator = MutationCoordinator(
            self._gateway,
            self._working_set,
            notifier=notifier,
            detail_view=detail_view,
        )

    # -------------------------------------------------------------------------
    # Components
    # -------------------------------------------------------------------------

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def gateway(self) -> PersistenceGateway:
        return self._gateway

    @property
    def backups(self) -> BackupManager:
        return self._backups

    @property
    def working_set(self) -> WorkingSet:
        return self._working_set

    @property
    def coordinator(self) -> MutationCoordinator:
        return self._coordinator

    # -------------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------------

    def initialize(self) -> None:
        """
        Prepare the store for use.

        Backfills portfolios on old records, logs storage usage, writes a
        scheduled backup if one is due, then loads the working set (demo
        records first, when enabled).
        """
        if self._gateway.migrate_portfolios():
            logger.info("Stored properties migrated to portfolio schema")

        info = self._gateway.storage_info()
        if info.usage_percent is not None:
            logger.info("Storage: %.2f MB used (%d%%)",
                        info.total_bytes / 1024 / 1024, info.usage_percent)

        if self._backups.maybe_create_backup():
            logger.info("Scheduled backup created")

        self.reload()

    def reload(self) -> None:
        """Refill the working set from storage."""
        records = self._gateway.load_collection()
        if self._config.include_demo:
            records = demo_records(self._gateway.clock) + records
        self._working_set.replace_all(records)

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    def list_records(self, record_filter: Optional[RecordFilter] = None) -> list[PropertyRecord]:
        """Records in the working set, optionally filtered."""
        if record_filter is not None:
            self._working_set.set_filter(record_filter)
            return list(self._working_set.filtered)
        return list(self._working_set.current)

    def get(self, record_id: str) -> Optional[PropertyRecord]:
        return self._working_set.find(record_id)

    def create(self, candidate: Candidate) -> MutationResult:
        return self._coordinator.create(candidate)

    def update(self, candidate: Candidate) -> MutationResult:
        return self._coordinator.update(candidate)

    def delete(self, record_id: str) -> MutationResult:
        return self._coordinator.delete(record_id)

    def stats(self, record_id: str) -> Optional[dict[str, Any]]:
        """Checklist progress figures for one record."""
        record = self.get(record_id)
        if record is None:
            return None
        return checklist_stats(record.checklist)

    # -------------------------------------------------------------------------
    # Data
    # -------------------------------------------------------------------------

    def export_all(self) -> str:
        return self._transfer.export_all()

    def import_all(self, document, *, mode: str = "replace") -> ImportResult:
        """Import a document and reload the working set on success."""
        result = self._transfer.import_all(document, mode=mode)
        if result.success:
            self.reload()
        return result

    def create_backup(self) -> Optional[BackupSnapshot]:
        return self._backups.create_backup()

    def list_backups(self) -> list[BackupSnapshot]:
        return self._backups.list_backups()

    def restore(self, key: str) -> ImportResult:
        result = self._backups.restore(key)
        if result.success:
            self.reload()
        return result

    def prune_backups(self) -> int:
        return self._backups.prune_old()

    def load_settings(self) -> Settings:
        return self._gateway.load_settings()

    def save_settings(self, settings: Settings) -> bool:
        return self._gateway.save_settings(settings)

    def storage_info(self) -> StorageInfo:
        return self._gateway.storage_info()

    def clear_all(self) -> int:
        """
        Remove stored records and settings; backups stay.

        Returns:
            Number of keys removed
        """
        removed = self._gateway.clear()
        self._working_set.drop_real_records()
        return removed

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the key/value store and detach the operations log."""
        if getattr(self, "_kv", None) is not None:
            self._kv.close()
            self._kv = None

        # Remove ops log handler to avoid handler accumulation
        if getattr(self, "_ops_log_handler", None):
            logging.getLogger("immotrack").removeHandler(self._ops_log_handler)
            self._ops_log_handler.close()
            self._ops_log_handler = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close resources."""
        self.close()
        return False

    def __del__(self):
        """Cleanup on deletion."""
        try:
            self.close()
        except Exception:
            pass  # Suppress errors during garbage collection
