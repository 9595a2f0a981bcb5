"""
Key-Value State Store for Cadence.

Provides portable persistence for:
- SM-2 schedule map per item key
- Daily activity counts and streak record
- The singleton timed practice session
- Exercise progress (hints, solution views, self-ratings)

Every record is one JSON document stored under a namespaced key
("<prefix>-<suffix>"). The store itself only deals in strings.

Database location: ~/.cadence/state.db
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

# =============================================================================
# Errors
# =============================================================================


class StorageUnavailable(Exception):
    """The backing store could not be read or written."""


class CorruptRecord(Exception):
    """A stored value is not valid structured data."""


# =============================================================================
# Persistence Port
# =============================================================================


class KeyValueStore(Protocol):
    """Synchronous string key-value store scoped to one profile."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryKeyValueStore:
    """In-memory store, used by tests and as a throwaway profile."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class SqliteKeyValueStore:
    """
    SQLite-backed key-value persistence.

    A single two-column table keeps the on-disk format trivially portable:
    the values are the same JSON documents the in-memory store holds.
    """

    DEFAULT_DB_PATH = Path.home() / ".cadence" / "state.db"

    def __init__(self, db_path: Path | None = None):
        """
        Initialize the state store.

        Args:
            db_path: Custom database path (defaults to ~/.cadence/state.db)
        """
        self.db_path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn: sqlite3.Connection | None = None
        self._init_schema()

        logger.debug(f"SqliteKeyValueStore initialized at {self.db_path}")

    @property
    def conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_schema(self) -> None:
        try:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            self.conn.commit()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot initialize {self.db_path}: {e}") from e

    def get(self, key: str) -> str | None:
        try:
            row = self.conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Read failed for {key}: {e}") from e
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        try:
            self.conn.execute(
                """
                INSERT INTO kv_store (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
                (key, value),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Write failed for {key}: {e}") from e

    def remove(self, key: str) -> None:
        try:
            self.conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            self.conn.commit()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Delete failed for {key}: {e}") from e

    def keys(self) -> list[str]:
        try:
            rows = self.conn.execute("SELECT key FROM kv_store ORDER BY key").fetchall()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Key listing failed: {e}") from e
        return [row["key"] for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None


# =============================================================================
# Record Store
# =============================================================================


class RecordStore:
    """
    Namespaced JSON records on top of a KeyValueStore.

    Never raises on storage faults: a failed write is kept in memory and
    served to later reads from this instance, a failed read returns the
    caller's default, and a value that is not valid JSON is discarded.
    """

    def __init__(self, backend: KeyValueStore, prefix: str = "course"):
        self.backend = backend
        self.prefix = prefix
        self._fallback: dict[str, Any] = {}

    def key(self, suffix: str) -> str:
        """storage key for a record type: key('srs') -> 'course-srs'."""
        return f"{self.prefix}-{suffix}"

    def load(self, suffix: str, default: Any = None) -> Any:
        """
        Load a record.

        Args:
            suffix: Record type (e.g. "srs", "streaks")
            default: Returned when the record is absent, unreadable or corrupt

        Returns:
            The decoded JSON document
        """
        key = self.key(suffix)
        if key in self._fallback:
            return self._fallback[key]

        try:
            raw = self.backend.get(key)
        except StorageUnavailable as e:
            logger.warning(f"Storage unavailable reading {key}: {e}")
            return default

        if raw is None:
            return default

        try:
            return decode_record(raw)
        except CorruptRecord as e:
            logger.warning(f"Discarding corrupt record {key}: {e}")
            return default

    def save(self, suffix: str, data: Any) -> None:
        """Persist a record, keeping it in memory if the backend refuses."""
        key = self.key(suffix)
        try:
            self.backend.set(key, json.dumps(data))
            self._fallback.pop(key, None)
        except StorageUnavailable as e:
            logger.warning(f"Storage unavailable writing {key}, keeping in memory: {e}")
            self._fallback[key] = data

    def delete(self, suffix: str) -> None:
        key = self.key(suffix)
        self._fallback.pop(key, None)
        try:
            self.backend.remove(key)
        except StorageUnavailable as e:
            logger.warning(f"Storage unavailable deleting {key}: {e}")

    def load_raw(self, key: str) -> str | None:
        """Read an undecoded value by full key (used by backup export)."""
        if key in self._fallback:
            return json.dumps(self._fallback[key])
        try:
            return self.backend.get(key)
        except StorageUnavailable as e:
            logger.warning(f"Storage unavailable reading {key}: {e}")
            return None

    def save_raw(self, key: str, value: str) -> bool:
        """Write an undecoded value by full key. Returns False on failure."""
        try:
            self.backend.set(key, value)
            self._fallback.pop(key, None)
            return True
        except StorageUnavailable as e:
            logger.warning(f"Storage unavailable writing {key}: {e}")
            return False


def decode_record(raw: str) -> Any:
    """Decode a stored JSON value, raising CorruptRecord on bad data."""
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise CorruptRecord(str(e)) from e


def open_record_store(db_path: Path | None = None, prefix: str = "course") -> RecordStore:
    """
    Open the profile's record store.

    Falls back to an in-memory profile if the SQLite file cannot be opened,
    so callers always get a working store.
    """
    try:
        backend: KeyValueStore = SqliteKeyValueStore(db_path)
    except (StorageUnavailable, OSError) as e:
        logger.warning(f"State database unavailable, using in-memory store: {e}")
        backend = MemoryKeyValueStore()
    return RecordStore(backend, prefix=prefix)
