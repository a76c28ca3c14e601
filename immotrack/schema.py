"""
Record schema and repair.

``repair_record`` turns any object of unknown provenance (stored data from
an older release, an import file, a hand-edited backup) into a valid
current-schema PropertyRecord. It never raises: absent or malformed fields
are replaced by the defaults below. Repairing an already-valid record is a
no-op, so it is safe to run on every load.
"""

import logging
from collections.abc import Mapping
from typing import Any, Optional

from .checklist import TYPE_RENTAL
from .protocol import ChecklistRepair
from .types import (
    Clock,
    Note,
    PropertyRecord,
    _random_suffix,
    epoch_millis,
    format_timestamp,
    generate_id,
    system_clock,
)

logger = logging.getLogger(__name__)

DEFAULT_NAME = "Unnamed property"
DEFAULT_PORTFOLIO = "Standard"
DEFAULT_TYPE = TYPE_RENTAL
DEFAULT_FEATURE_TYPE = "Unknown"

# Author stamped on notes synthesized from a legacy free-text notes field
MIGRATION_AUTHOR = "Migrated"
UNKNOWN_AUTHOR = "Unknown"


def _non_empty_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


def _as_int(value: Any) -> Optional[int]:
    """Positive integer from an int or a numeric string; None otherwise."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if not isinstance(value, str):
        return None
    try:
        n = int(value.strip())
    except ValueError:
        return None
    return n if n > 0 else None


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    return False


def _id_string(value: Any) -> Optional[str]:
    """Stored ids may be strings or plain integers."""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None


def _repair_id(value: Any) -> str:
    return _id_string(value) or generate_id()


def migrate_notes(notes: Any, *, clock: Optional[Clock] = None) -> list[Note]:
    """
    Upgrade any notes representation to the list-of-Note form.

    - A list: each note object is defaulted field by field. Non-empty
      strings inside the list become migrated notes. Anything else is dropped.
    - A non-empty string (legacy free-text notes): one note authored
      ``MIGRATION_AUTHOR`` holding the trimmed text.
    - Anything else: empty list.
    """
    now_dt = (clock or system_clock)()
    now = format_timestamp(now_dt)

    if isinstance(notes, str):
        text = notes.strip()
        if not text:
            return []
        return [Note(
            id=f"migrated_{epoch_millis(now_dt)}",
            timestamp=now,
            text=text,
            author=MIGRATION_AUTHOR,
        )]

    if not isinstance(notes, list):
        return []

    result = []
    for item in notes:
        if isinstance(item, Note):
            item = item.to_dict()
        if isinstance(item, str) and item.strip():
            result.append(Note(
                id=f"migrated_{epoch_millis(now_dt)}_{_random_suffix()}",
                timestamp=now,
                text=item.strip(),
                author=MIGRATION_AUTHOR,
            ))
            continue
        if not isinstance(item, Mapping):
            continue
        text = item.get("text")
        result.append(Note(
            id=_id_string(item.get("id"))
               or f"note_{epoch_millis(now_dt)}_{_random_suffix()}",
            timestamp=_non_empty_str(item.get("timestamp")) or now,
            text=text if isinstance(text, str) else ("" if text is None else str(text)),
            author=_non_empty_str(item.get("author")) or UNKNOWN_AUTHOR,
        ))
    return result


def repair_features(features: Any) -> list[dict[str, Any]]:
    """Normalise special features to ``{type, description}`` objects.

    Extra keys on feature objects are kept.
    """
    if not isinstance(features, list):
        return []
    result = []
    for feature in features:
        if isinstance(feature, str) and feature:
            result.append({"type": feature, "description": ""})
            continue
        if not isinstance(feature, Mapping):
            continue
        repaired = dict(feature)
        repaired["type"] = _non_empty_str(feature.get("type")) or DEFAULT_FEATURE_TYPE
        description = feature.get("description")
        repaired["description"] = description if isinstance(description, str) else ""
        result.append(repaired)
    return result


def repair_record(
    raw: Any,
    *,
    checklist_repair: Optional[ChecklistRepair] = None,
    clock: Optional[Clock] = None,
) -> PropertyRecord:
    """
    Canonicalize an arbitrary object into a valid PropertyRecord.

    Args:
        raw: A mapping in wire form (camelCase keys) or a PropertyRecord.
            Any other value is treated as an empty mapping.
        checklist_repair: Optional collaborator that returns a normalized
            checklist for the partly-repaired record (keyed off its type)
        clock: Time source for defaulted timestamps and accounting year

    Returns:
        A new PropertyRecord. ``is_demo`` is always False: repair only runs
        on records headed to or coming from durable storage.
    """
    if isinstance(raw, PropertyRecord):
        raw = raw.to_dict()
    if not isinstance(raw, Mapping):
        raw = {}

    now_dt = (clock or system_clock)()
    now = format_timestamp(now_dt)

    checklist = raw.get("checklist")
    period = raw.get("accountingPeriod")

    record = PropertyRecord(
        id=_repair_id(raw.get("id")),
        name=_non_empty_str(raw.get("name")) or DEFAULT_NAME,
        portfolio=_non_empty_str(raw.get("portfolio")) or DEFAULT_PORTFOLIO,
        type=_non_empty_str(raw.get("type")) or DEFAULT_TYPE,
        has_heating=_as_bool(raw.get("hasHeating")),
        accounting_year=_as_int(raw.get("accountingYear")) or now_dt.year,
        accounting_period=period if isinstance(period, str) else "",
        is_demo=False,
        notes=migrate_notes(raw.get("notes"), clock=clock),
        special_features=repair_features(raw.get("specialFeatures")),
        checklist=dict(checklist) if isinstance(checklist, Mapping) else {},
        created_at=_non_empty_str(raw.get("createdAt")) or now,
        updated_at=_non_empty_str(raw.get("updatedAt")) or now,
    )

    if checklist_repair is not None:
        try:
            record.checklist = checklist_repair(record)
        except Exception as e:
            # Collaborator failure must not break repair; keep the checklist as given
            logger.warning("Checklist repair failed for %s: %s", record.id, e)

    return record
