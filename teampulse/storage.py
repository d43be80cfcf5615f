"""
Backing key-value stores for the persistent cache tier and offline records.

The contract mirrors browser local storage: synchronous string get/set/remove
with a finite capacity. A write that would exceed the capacity raises
StorageQuotaExceeded and leaves the previous value in place.
"""
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from .errors import StorageError, StorageQuotaExceeded

logger = logging.getLogger("storage")


class KeyValueStore(ABC):
    """Synchronous string-keyed storage with a finite capacity."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the key is absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value. Raises StorageQuotaExceeded when full."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove a key. Missing keys are ignored."""

    @abstractmethod
    def keys(self) -> List[str]:
        """All stored keys."""

    @staticmethod
    def _record_size(key: str, value: str) -> int:
        return len(key) + len(value)


class InMemoryKeyValueStore(KeyValueStore):
    """
    Dict-backed store with optional capacity.

    Used for tests and for `storage_backend="memory"` deployments where the
    persistent tier only needs to outlive individual cache objects.
    """

    def __init__(self, capacity_bytes: Optional[int] = None):
        self.capacity_bytes = capacity_bytes
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError(f"Value for '{key}' must be a string")
        with self._lock:
            if self.capacity_bytes is not None:
                used = sum(
                    self._record_size(k, v)
                    for k, v in self._data.items()
                    if k != key
                )
                required = used + self._record_size(key, value)
                if required > self.capacity_bytes:
                    raise StorageQuotaExceeded(key, required, self.capacity_bytes)
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data)

    @property
    def used_bytes(self) -> int:
        with self._lock:
            return sum(self._record_size(k, v) for k, v in self._data.items())


SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class SqliteKeyValueStore(KeyValueStore):
    """
    SQLite-backed store.

    One row per key. Capacity is enforced over the summed key and value
    lengths, the same accounting the in-memory store uses.
    """

    def __init__(self, db_path: Path, capacity_bytes: Optional[int] = None):
        self.db_path = Path(db_path)
        self.capacity_bytes = capacity_bytes
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection with automatic commit/rollback."""
        conn = sqlite3.connect(str(self.db_path))
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"SQLite error on {self.db_path}: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get(self, key: str) -> Optional[str]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError(f"Value for '{key}' must be a string")
        with self._write_lock, self._get_connection() as conn:
            if self.capacity_bytes is not None:
                row = conn.execute(
                    "SELECT COALESCE(SUM(LENGTH(key) + LENGTH(value)), 0) "
                    "FROM kv WHERE key != ?",
                    (key,),
                ).fetchone()
                required = row[0] + self._record_size(key, value)
                if required > self.capacity_bytes:
                    raise StorageQuotaExceeded(key, required, self.capacity_bytes)
            conn.execute(
                "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "updated_at = excluded.updated_at",
                (key, value, datetime.now(timezone.utc).isoformat()),
            )

    def remove(self, key: str) -> None:
        with self._write_lock, self._get_connection() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))

    def keys(self) -> List[str]:
        with self._get_connection() as conn:
            return [row[0] for row in conn.execute("SELECT key FROM kv ORDER BY key")]
