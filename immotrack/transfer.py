"""
Import and export of the whole store as one portable JSON document.

The export document is::

    {
      "properties": [...],
      "settings": {...},
      "exportDate": "2025-06-20T10:30:00.000Z",
      "version": "1.0",
      "metadata": {"totalProperties": 3, "portfolios": ["Standard"]}
    }

Import accepts the same shape; ``settings`` and ``metadata`` are optional.
By default import replaces the stored collection. Backup snapshots use the
export format, so restore goes through ``import_all`` as well.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any, Union

from .errors import MalformedImport
from .persistence import PersistenceGateway
from .types import ENVELOPE_VERSION, ImportResult, Settings, utc_now

logger = logging.getLogger(__name__)

IMPORT_MODES = ("replace", "merge")


def parse_import(document: Union[str, bytes, Mapping]) -> dict[str, Any]:
    """
    Parse and structurally validate an import document.

    Raises:
        MalformedImport: If the document is not JSON, not an object,
            or has no ``properties`` list
    """
    if isinstance(document, Mapping):
        data = dict(document)
    else:
        try:
            data = json.loads(document)
        except (ValueError, TypeError) as e:
            raise MalformedImport(f"Import document is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedImport("Import document must be a JSON object")
    if not isinstance(data.get("properties"), list):
        raise MalformedImport("Import document has no 'properties' list")
    return data


class DataTransfer:
    """Export/import against a persistence gateway."""

    def __init__(self, gateway: PersistenceGateway):
        self._gateway = gateway

    def export_document(self) -> dict[str, Any]:
        records = self._gateway.load_collection()
        return {
            "properties": [r.to_dict() for r in records],
            "settings": self._gateway.load_settings().to_dict(),
            "exportDate": utc_now(self._gateway.clock),
            "version": ENVELOPE_VERSION,
            "metadata": {
                "totalProperties": len(records),
                "portfolios": sorted({r.portfolio for r in records}),
            },
        }

    def export_all(self) -> str:
        """Serialize every stored record plus settings as a JSON document."""
        return json.dumps(self.export_document(), indent=2, ensure_ascii=False)

    def import_all(
        self,
        document: Union[str, bytes, Mapping],
        *,
        mode: str = "replace",
    ) -> ImportResult:
        """
        Import a document produced by ``export_all`` (or a compatible one).

        Every record is repaired before it is written. Entries flagged as
        demo records are skipped. A malformed document aborts before
        anything is written.

        Args:
            document: JSON text or an already-parsed mapping
            mode: ``"replace"`` overwrites the stored collection;
                ``"merge"`` replaces records with the same id and appends
                the rest

        Returns:
            ImportResult; ``previous_count`` is the size of the collection
            that was stored before the import
        """
        if mode not in IMPORT_MODES:
            raise ValueError(f"Unknown import mode: {mode!r}. Use one of {IMPORT_MODES}")

        try:
            data = parse_import(document)
        except MalformedImport as e:
            logger.warning("Import rejected: %s", e)
            return ImportResult(success=False, error=str(e))

        items = [
            item for item in data["properties"]
            if not (isinstance(item, Mapping) and item.get("isDemo") is True)
        ]
        skipped = len(data["properties"]) - len(items)
        if skipped:
            logger.info("Skipping %d demo entries in import", skipped)

        with self._gateway.lock:
            existing = self._gateway.load_collection()
            try:
                imported = self._gateway.repair_all(items)
            except Exception as e:
                logger.error("Import aborted, properties could not be repaired: %s", e)
                return ImportResult(
                    success=False,
                    previous_count=len(existing),
                    error=f"Imported properties could not be repaired: {e}",
                )

            if mode == "merge":
                by_id = {r.id: r for r in imported}
                merged = [by_id.pop(r.id, r) for r in existing]
                # by_id now holds only records with new ids, in import order
                records = merged + [r for r in imported if r.id in by_id]
            else:
                records = imported

            success = self._gateway.save_collection(records)

            settings_imported = False
            settings = data.get("settings")
            if success and isinstance(settings, Mapping):
                merged_settings = Settings.from_dict(
                    dict(settings), base=self._gateway.load_settings()
                )
                settings_imported = self._gateway.save_settings(merged_settings)

        if not success:
            logger.error("Import of %d properties failed to save", len(imported))
            return ImportResult(
                success=False,
                previous_count=len(existing),
                error="Imported properties could not be saved",
            )

        logger.info("Imported %d properties (%s, %d previously stored)",
                    len(imported), mode, len(existing))
        return ImportResult(
            success=True,
            imported_count=len(imported),
            previous_count=len(existing),
            settings_imported=settings_imported,
        )
