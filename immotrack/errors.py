"""
Error types and error logging for immotrack.

Store components raise the exceptions below at their internal seams; the
gateway, import path and coordinator convert them into result objects so
callers see a clean success/failure. The CLI logs full stack traces for
anything unexpected while showing a one-line message.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class ImmotrackError(Exception):
    """Base class for store errors."""


class RecordNotFound(ImmotrackError):
    """No record with the requested id exists in the working set."""

    def __init__(self, record_id: str):
        super().__init__(f"Property not found: {record_id}")
        self.record_id = record_id


class DemoRecordProtected(ImmotrackError):
    """Demo records are display-only and cannot be changed or removed."""

    def __init__(self, record_id: str):
        super().__init__(f"Demo properties cannot be modified: {record_id}")
        self.record_id = record_id


class StorageQuotaExceeded(ImmotrackError):
    """A write would push the key-value store past its byte quota."""

    def __init__(self, key: str, needed: int, quota: int):
        super().__init__(
            f"Storage quota exceeded writing {key!r}: "
            f"{needed} bytes needed, quota is {quota}"
        )
        self.key = key
        self.needed = needed
        self.quota = quota


class MalformedStoredData(ImmotrackError):
    """Stored payload has an unexpected shape (recovered as empty)."""


class MalformedImport(ImmotrackError):
    """Import document cannot be parsed or lacks a properties list."""


class BackupNotFound(ImmotrackError):
    """No backup snapshot exists under the requested key."""

    def __init__(self, key: str):
        super().__init__(f"Backup not found: {key}")
        self.key = key


ERROR_LOG_FILENAME = "immotrack-errors.log"


def _format_entry(exc: BaseException, context: str) -> str:
    stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
    header = " ".join(part for part in (f"[{stamp}]", context, type(exc).__name__) if part)
    trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return f"\n{'-' * 72}\n{header}: {exc}\n{trace}"


def log_exception(exc: BaseException, context: str = "",
                  store_path: Optional[Path] = None) -> Path:
    """
    Append an exception and its traceback to the store's error log.

    The file is created owner-only. A log that cannot be written is
    ignored so that reporting an error never raises a second one.

    Args:
        exc: The exception to record
        context: Where it happened, e.g. the CLI command
        store_path: Store directory; defaults to the configured store

    Returns:
        Path of the error log
    """
    if store_path is None:
        from .config import get_default_store_path
        store_path = get_default_store_path()
    log_path = Path(store_path) / ERROR_LOG_FILENAME
    entry = _format_entry(exc, context)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a", encoding="utf-8") as f:
            f.write(entry)
    except OSError:
        pass
    return log_path
