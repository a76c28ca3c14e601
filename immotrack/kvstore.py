"""
Key/value stores using SQLite or process memory.

The store persists everything (record envelope, settings, backup
snapshots) as UTF-8 JSON text under string keys, the way a browser's
localStorage would. Both implementations enforce an optional byte quota:
a write that would push the total size of all values past the quota
raises StorageQuotaExceeded and leaves the stored data untouched.
"""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Optional

from .errors import StorageQuotaExceeded

logger = logging.getLogger(__name__)

# Browsers commonly cap localStorage at 5 MiB per origin
DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024


def value_size(value: str) -> int:
    """Stored size of a value in bytes."""
    return len(value.encode("utf-8"))


def _check_quota(key: str, new_total: int, quota: Optional[int]) -> None:
    if quota and new_total > quota:
        raise StorageQuotaExceeded(key, new_total, quota)


class MemoryKeyValueStore:
    """
    In-process key/value store.

    Used for tests and for ephemeral sessions (``backend = "memory"``).
    """

    def __init__(self, quota_bytes: Optional[int] = DEFAULT_QUOTA_BYTES):
        self._data: dict[str, str] = {}
        self._quota = quota_bytes or None

    @property
    def quota_bytes(self) -> Optional[int]:
        return self._quota

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        current = self.total_size() - self.size_of(key)
        _check_quota(key, current + value_size(value), self._quota)
        self._data[key] = value

    def remove(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))

    def size_of(self, key: str) -> int:
        value = self._data.get(key)
        return value_size(value) if value is not None else 0

    def total_size(self) -> int:
        return sum(value_size(v) for v in self._data.values())

    def close(self) -> None:
        pass


class SqliteKeyValueStore:
    """
    SQLite-backed key/value store.

    One row per key; the value's byte size is stored alongside so quota
    checks and usage reports do not need to read every value.
    """

    def __init__(self, db_path: Path, quota_bytes: Optional[int] = DEFAULT_QUOTA_BYTES):
        """
        Args:
            db_path: Path to SQLite database file
            quota_bytes: Maximum total size of all values (None or 0 = unlimited)
        """
        self._db_path = db_path
        self._quota = quota_bytes or None
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)

        # WAL lets a reader (e.g. a second CLI process) see the last committed write
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                size INTEGER NOT NULL
            )
        """)
        self._conn.commit()

    @property
    def quota_bytes(self) -> Optional[int]:
        return self._quota

    def get(self, key: str) -> Optional[str]:
        row = self._conn.execute(
            "SELECT value FROM kv WHERE key = ?", (key,)
        ).fetchone()
        return row[0] if row is not None else None

    def set(self, key: str, value: str) -> None:
        """
        Write a value, replacing any previous one.

        Raises:
            StorageQuotaExceeded: If the write would exceed the quota
        """
        size = value_size(value)
        with self._lock:
            if self._quota:
                row = self._conn.execute(
                    "SELECT COALESCE(SUM(size), 0) FROM kv WHERE key != ?", (key,)
                ).fetchone()
                _check_quota(key, row[0] + size, self._quota)
            self._conn.execute(
                "INSERT OR REPLACE INTO kv (key, value, size) VALUES (?, ?, ?)",
                (key, value, size),
            )
            self._conn.commit()

    def remove(self, key: str) -> bool:
        with self._lock:
            cursor = self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            self._conn.commit()
        return cursor.rowcount > 0

    def keys(self, prefix: str = "") -> list[str]:
        # Prefix match without LIKE so '_' and '%' in keys stay literal
        cursor = self._conn.execute(
            "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
            (len(prefix), prefix),
        )
        return [row[0] for row in cursor]

    def size_of(self, key: str) -> int:
        row = self._conn.execute(
            "SELECT size FROM kv WHERE key = ?", (key,)
        ).fetchone()
        return row[0] if row is not None else 0

    def total_size(self) -> int:
        row = self._conn.execute("SELECT COALESCE(SUM(size), 0) FROM kv").fetchone()
        return row[0]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()
