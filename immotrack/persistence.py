"""
Persistence gateway: the property collection and settings on a key/value store.

The whole collection is stored as one JSON envelope::

    {"properties": [...], "timestamp": "...", "version": "1.0"}

Every write is a full-collection rewrite; there is no partial-write path.
Reads pass every stored element through ``repair_record`` so callers never
see an unrepaired record. Storage failures never escape this module: writes
report False and log the cause, reads fall back to an empty collection.
"""

import json
import logging
import threading
from collections.abc import Mapping
from dataclasses import replace
from typing import Any, Iterable, Optional

from .checklist import repair_checklist
from .errors import MalformedStoredData, StorageQuotaExceeded
from .protocol import ChecklistRepair, KeyValueStoreProtocol, NullNotifier, Notifier
from .schema import DEFAULT_PORTFOLIO, repair_record
from .types import (
    ENVELOPE_VERSION,
    Clock,
    PropertyRecord,
    Settings,
    StorageInfo,
    system_clock,
    utc_now,
)

logger = logging.getLogger(__name__)


class STORAGE_KEYS:
    PROPERTIES = "immotrack_properties"
    SETTINGS = "immotrack_settings"
    LAST_BACKUP = "immotrack_last_backup"


STORAGE_FULL_MESSAGE = (
    "Local storage is full. Export your data and delete old entries."
)


class PersistenceGateway:
    """
    Reads and writes the property collection and user settings.

    Single-record operations (``save_one``, ``delete_one``) are
    load-full / mutate / save-full sequences serialized by ``lock``.
    Other components that need the same read-modify-write guarantee
    (import, restore) hold ``lock`` around their own sequence.
    """

    def __init__(
        self,
        kv: KeyValueStoreProtocol,
        *,
        notifier: Optional[Notifier] = None,
        checklist_repair: Optional[ChecklistRepair] = repair_checklist,
        clock: Optional[Clock] = None,
    ):
        self._kv = kv
        self._notifier = notifier or NullNotifier()
        self._checklist_repair = checklist_repair
        self._clock = clock or system_clock
        self.lock = threading.RLock()

    @property
    def kv(self) -> KeyValueStoreProtocol:
        return self._kv

    @property
    def clock(self) -> Clock:
        return self._clock

    # -------------------------------------------------------------------------
    # Repair
    # -------------------------------------------------------------------------

    def repair(self, raw: Any) -> PropertyRecord:
        """Repair one record with this gateway's collaborators."""
        return repair_record(raw, checklist_repair=self._checklist_repair, clock=self._clock)

    def _repair_items(self, items: Iterable[Any]) -> list[tuple[Mapping, PropertyRecord]]:
        """Repair stored/imported elements, pairing each with its raw form.

        Elements that are not objects are skipped. When two elements share
        an id the first one wins.
        """
        seen: set[str] = set()
        result = []
        for index, item in enumerate(items):
            if not isinstance(item, Mapping):
                logger.warning("Skipping non-object property at index %d", index)
                continue
            record = self.repair(item)
            if record.id in seen:
                logger.warning("Skipping duplicate property id %s at index %d", record.id, index)
                continue
            seen.add(record.id)
            result.append((item, record))
        return result

    def repair_all(self, items: Iterable[Any]) -> list[PropertyRecord]:
        """Repair a sequence of raw records into a valid collection."""
        return [record for _, record in self._repair_items(items)]

    # -------------------------------------------------------------------------
    # Collection
    # -------------------------------------------------------------------------

    def save_collection(self, records: Iterable[PropertyRecord]) -> bool:
        """
        Write the full collection, replacing what is stored.

        Demo records are dropped before serializing.

        Returns:
            True on success. False on any serialization or storage failure;
            a quota failure additionally raises a "storage full" notification.
        """
        real = [r for r in records if not r.is_demo]
        try:
            payload = json.dumps({
                "properties": [r.to_dict() for r in real],
                "timestamp": utc_now(self._clock),
                "version": ENVELOPE_VERSION,
            }, ensure_ascii=False)
            self._kv.set(STORAGE_KEYS.PROPERTIES, payload)
        except StorageQuotaExceeded as e:
            logger.error("Storage full, properties not saved: %s", e)
            self._notifier.notify(STORAGE_FULL_MESSAGE, "warning", 6000)
            return False
        except Exception as e:
            logger.error("Failed to save properties: %s", e)
            return False

        logger.info("Saved %d properties", len(real))
        return True

    def _read_payload(self) -> Optional[dict]:
        """
        Read and parse the stored envelope.

        Returns:
            The envelope dict, or None when nothing has been stored yet

        Raises:
            MalformedStoredData: If the payload is not an envelope object
                with a ``properties`` list
        """
        stored = self._kv.get(STORAGE_KEYS.PROPERTIES)
        if stored is None:
            return None
        try:
            data = json.loads(stored)
        except ValueError as e:
            raise MalformedStoredData(f"Stored properties are not valid JSON: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("properties"), list):
            raise MalformedStoredData("Stored properties have an invalid structure")
        return data

    def _load_strict(self) -> list[PropertyRecord]:
        """Load for read-modify-write: malformed data reads as empty,
        but storage read errors propagate so nothing gets overwritten."""
        try:
            data = self._read_payload()
        except MalformedStoredData as e:
            logger.warning("%s; treating as empty", e)
            return []
        if data is None:
            return []
        return self.repair_all(data["properties"])

    def load_collection(self) -> list[PropertyRecord]:
        """
        Read the stored collection.

        Returns an empty list when nothing is stored yet, when the stored
        payload is malformed, or when the store cannot be read.
        """
        try:
            return self._load_strict()
        except Exception as e:
            logger.error("Failed to load properties: %s", e)
            return []

    def save_one(self, record: PropertyRecord) -> bool:
        """
        Insert or replace one record by id.

        The record is stored with ``is_demo`` False. On replace, the stored
        ``created_at`` is kept and an empty portfolio falls back to the
        stored one.
        """
        with self.lock:
            try:
                records = self._load_strict()
            except Exception as e:
                logger.error("Failed to read properties before saving %s: %s", record.id, e)
                return False

            record = replace(record, is_demo=False)
            for i, existing in enumerate(records):
                if existing.id == record.id:
                    records[i] = replace(
                        record,
                        created_at=existing.created_at,
                        portfolio=record.portfolio or existing.portfolio or DEFAULT_PORTFOLIO,
                    )
                    logger.info("Property updated: %s (portfolio %s)", record.id, records[i].portfolio)
                    break
            else:
                records.append(replace(record, portfolio=record.portfolio or DEFAULT_PORTFOLIO))
                logger.info("Property added: %s", record.id)

            return self.save_collection(records)

    def delete_one(self, record_id: str) -> bool:
        """
        Remove one record by id.

        Returns:
            True if the record was stored and the rewrite succeeded
        """
        with self.lock:
            try:
                records = self._load_strict()
            except Exception as e:
                logger.error("Failed to read properties before deleting %s: %s", record_id, e)
                return False

            remaining = [r for r in records if r.id != record_id]
            if len(remaining) == len(records):
                logger.warning("Property to delete not found: %s", record_id)
                return False

            success = self.save_collection(remaining)
            if success:
                logger.info("Property deleted: %s", record_id)
            return success

    def migrate_portfolios(self) -> bool:
        """
        Backfill ``portfolio`` on stored records that predate it.

        Reads the raw envelope (repair would hide the gap), and if any stored
        record lacks a portfolio, rewrites the repaired collection with
        ``updated_at`` refreshed on the backfilled records.

        Returns:
            True if a migration was written
        """
        with self.lock:
            try:
                data = self._read_payload()
            except MalformedStoredData:
                return False
            except Exception as e:
                logger.error("Portfolio migration could not read properties: %s", e)
                return False
            if data is None:
                return False

            try:
                pairs = self._repair_items(data["properties"])
            except Exception as e:
                logger.error("Portfolio migration could not repair properties: %s", e)
                return False
            needs = [
                raw for raw, _ in pairs
                if not (isinstance(raw.get("portfolio"), str) and raw.get("portfolio"))
            ]
            if not needs:
                return False

            now = utc_now(self._clock)
            records = []
            for raw, record in pairs:
                if not (isinstance(raw.get("portfolio"), str) and raw.get("portfolio")):
                    record = replace(record, updated_at=now)
                records.append(record)

            saved = self.save_collection(records)
            if saved:
                logger.info("Portfolio migration applied to %d of %d properties",
                            len(needs), len(records))
            return saved

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def default_settings(self) -> Settings:
        return Settings(default_accounting_year=self._clock().year)

    def load_settings(self) -> Settings:
        """Stored settings merged over defaults; defaults on any problem."""
        defaults = self.default_settings()
        try:
            stored = self._kv.get(STORAGE_KEYS.SETTINGS)
            if stored is None:
                return defaults
            data = json.loads(stored)
        except Exception as e:
            logger.error("Failed to load settings: %s", e)
            return defaults
        if not isinstance(data, dict):
            logger.warning("Stored settings have an invalid structure; using defaults")
            return defaults
        return Settings.from_dict(data, base=defaults)

    def save_settings(self, settings: Settings) -> bool:
        data = settings.to_dict()
        data["timestamp"] = utc_now(self._clock)
        try:
            self._kv.set(STORAGE_KEYS.SETTINGS, json.dumps(data))
        except StorageQuotaExceeded as e:
            logger.error("Storage full, settings not saved: %s", e)
            self._notifier.notify(STORAGE_FULL_MESSAGE, "warning", 6000)
            return False
        except Exception as e:
            logger.error("Failed to save settings: %s", e)
            return False
        return True

    # -------------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------------

    def storage_info(self) -> StorageInfo:
        return StorageInfo(
            total_bytes=self._kv.total_size(),
            collection_bytes=self._kv.size_of(STORAGE_KEYS.PROPERTIES),
            quota_bytes=self._kv.quota_bytes,
        )

    def clear(self) -> int:
        """
        Remove the collection, settings and last-backup marker.

        Backup snapshots are kept.

        Returns:
            Number of keys removed
        """
        with self.lock:
            removed = 0
            for key in (STORAGE_KEYS.PROPERTIES, STORAGE_KEYS.SETTINGS, STORAGE_KEYS.LAST_BACKUP):
                if self._kv.remove(key):
                    removed += 1
        logger.info("Cleared %d stored keys", removed)
        return removed
