"""
Data types for the property store.

Records travel through storage, import and export as JSON objects with
camelCase keys. In memory they are dataclasses with snake_case attributes;
``to_dict()`` produces the wire form and ``schema.repair_record`` is the only
way back.
"""

import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional


# Forward-compatibility tag written into every envelope and export document
ENVELOPE_VERSION = "1.0"

Clock = Callable[[], datetime]

_ID_ALPHABET = string.ascii_lowercase + string.digits


def system_clock() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Canonical ISO-8601 form used for every stored timestamp.

    UTC with millisecond precision and a ``Z`` suffix, e.g.
    ``2025-06-20T10:30:00.000Z``.
    """
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def utc_now(clock: Optional[Clock] = None) -> str:
    """Current UTC timestamp in canonical format."""
    return format_timestamp((clock or system_clock)())


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime.

    Accepts the canonical ``Z`` form as well as ``+00:00`` offsets and
    naive timestamps (treated as UTC).
    """
    ts = ts.replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def epoch_millis(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def generate_id(prefix: str = "prop") -> str:
    """Generate a unique record identifier.

    Combines the wall clock in milliseconds with a random base-36 suffix, so
    ids generated in the same millisecond still differ.
    """
    return f"{prefix}_{time.time_ns() // 1_000_000}_{_random_suffix()}"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass
class Note:
    """A single timestamped note attached to a property."""
    id: str
    timestamp: str
    text: str
    author: str

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "text": self.text,
            "author": self.author,
        }


@dataclass
class PropertyRecord:
    """
    A canonical property record.

    Only ``schema.repair_record`` should construct these from untrusted data;
    every record exposed by the store has passed through it.
    """
    id: str
    name: str
    portfolio: str
    type: str
    has_heating: bool
    accounting_year: int
    accounting_period: str
    is_demo: bool
    notes: list[Note]
    special_features: list[dict[str, Any]]
    checklist: dict[str, Any]
    created_at: str
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        """Wire form (camelCase keys), as stored and exported."""
        return {
            "id": self.id,
            "name": self.name,
            "portfolio": self.portfolio,
            "type": self.type,
            "hasHeating": self.has_heating,
            "accountingYear": self.accounting_year,
            "accountingPeriod": self.accounting_period,
            "isDemo": self.is_demo,
            "notes": [n.to_dict() for n in self.notes],
            "specialFeatures": [dict(f) for f in self.special_features],
            "checklist": _copy_json(self.checklist),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


def _copy_json(value: Any) -> Any:
    """Deep copy for JSON-shaped values (dicts, lists, scalars)."""
    if isinstance(value, dict):
        return {k: _copy_json(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_copy_json(v) for v in value]
    return value


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@dataclass
class Settings:
    """User-facing preferences persisted in the settings envelope."""
    theme: str = "light"
    auto_save: bool = True
    show_notifications: bool = True
    default_accounting_year: int = field(default_factory=lambda: system_clock().year)
    backup_interval: int = 7  # days between automatic backups

    def to_dict(self) -> dict[str, Any]:
        return {
            "theme": self.theme,
            "autoSave": self.auto_save,
            "showNotifications": self.show_notifications,
            "defaultAccountingYear": self.default_accounting_year,
            "backupInterval": self.backup_interval,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], base: Optional["Settings"] = None) -> "Settings":
        """Overlay known keys from ``data`` onto ``base`` (or defaults).

        Values of the wrong type are ignored so a damaged settings payload
        can never break startup.
        """
        s = base or cls()
        theme = data.get("theme", s.theme)
        auto_save = data.get("autoSave", s.auto_save)
        show = data.get("showNotifications", s.show_notifications)
        year = data.get("defaultAccountingYear", s.default_accounting_year)
        interval = data.get("backupInterval", s.backup_interval)
        return cls(
            theme=theme if isinstance(theme, str) else s.theme,
            auto_save=auto_save if isinstance(auto_save, bool) else s.auto_save,
            show_notifications=show if isinstance(show, bool) else s.show_notifications,
            default_accounting_year=(
                year if isinstance(year, int) and not isinstance(year, bool)
                else s.default_accounting_year
            ),
            backup_interval=(
                interval if isinstance(interval, (int, float)) and not isinstance(interval, bool)
                and interval >= 0 else s.backup_interval
            ),
        )


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------

class FailureReason(str, Enum):
    """Why a coordinator mutation was refused or failed."""
    RECORD_NOT_FOUND = "record_not_found"
    DEMO_RECORD_PROTECTED = "demo_record_protected"
    DUPLICATE_NAME = "duplicate_name"
    STORAGE_FAILURE = "storage_failure"
    UNEXPECTED_ERROR = "unexpected_error"


@dataclass
class MutationResult:
    """Outcome of a create/update/delete."""
    success: bool
    record: Optional[PropertyRecord] = None
    reason: Optional[FailureReason] = None
    message: str = ""

    @classmethod
    def ok(cls, record: PropertyRecord, message: str = "") -> "MutationResult":
        return cls(success=True, record=record, message=message)

    @classmethod
    def failed(
        cls,
        reason: FailureReason,
        message: str,
        record: Optional[PropertyRecord] = None,
    ) -> "MutationResult":
        return cls(success=False, record=record, reason=reason, message=message)


@dataclass
class ImportResult:
    """Outcome of an import or restore."""
    success: bool
    imported_count: int = 0
    previous_count: int = 0
    settings_imported: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "success": self.success,
            "importedCount": self.imported_count,
            "previousCount": self.previous_count,
            "settingsImported": self.settings_imported,
        }
        if self.error is not None:
            d["error"] = self.error
        return d


@dataclass
class BackupSnapshot:
    """A stored backup, identified by an opaque key."""
    key: str
    created_at: datetime

    @property
    def created_iso(self) -> str:
        return format_timestamp(self.created_at)


@dataclass
class StorageInfo:
    """Key-value store usage figures."""
    total_bytes: int
    collection_bytes: int
    quota_bytes: Optional[int]

    @property
    def usage_percent(self) -> Optional[int]:
        if not self.quota_bytes:
            return None
        return round(self.total_bytes / self.quota_bytes * 100)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalBytes": self.total_bytes,
            "collectionBytes": self.collection_bytes,
            "quotaBytes": self.quota_bytes,
            "usagePercent": self.usage_percent,
        }
