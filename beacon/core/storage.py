"""beacon.core.storage

Durable client-side state: a flat map of namespaced string keys to strings.

Two backends:
- ``MemoryStorage``: process lifetime only (tests, ephemeral hosts)
- ``SqliteStorage``: a single key/value table that survives restarts

Reads are defensive. A value that will not parse is treated as absent. Writes that fail
are logged and the caller carries on with its in-memory copy.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from beacon.core.exceptions import StorageError

logger = logging.getLogger(__name__)

# Durable keys. One namespace, one place.
EVENTS_KEY = "beacon_events"
EVENT_HASHES_KEY = "beacon_event_hashes"
SESSION_ID_KEY = "beacon_session_id"
IP_CACHE_KEY = "beacon_ip_cache"
GEO_CACHE_KEY = "beacon_geo_cache"

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT DEFAULT (datetime('now'))
);
"""


@runtime_checkable
class Storage(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Dict-backed storage. Optionally capped to emulate a quota."""

    def __init__(self, *, max_bytes: int | None = None) -> None:
        self._data: dict[str, str] = {}
        self._max_bytes = max_bytes

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self._max_bytes is not None:
            used = sum(len(v) for k, v in self._data.items() if k != key)
            if used + len(value) > self._max_bytes:
                raise StorageError(f"quota_exceeded:{key}")
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


@dataclass
class SqliteStorage:
    """SQLite-backed key/value storage."""

    db_path: Path

    def __post_init__(self) -> None:
        self.db_path = Path(self.db_path)
        self._lock = threading.RLock()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"open_failed:{self.db_path}: {e}") from e
        try:
            with self.conn:
                self.conn.executescript(SCHEMA)
                self.conn.execute("PRAGMA journal_mode=WAL")
                self.conn.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.Error as e:
            self.conn.close()
            raise StorageError(f"open_failed:{self.db_path}: {e}") from e

    def close(self) -> None:
        self.conn.close()

    def get(self, key: str) -> str | None:
        try:
            with self._lock:
                row = self.conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"read_failed:{key}: {e}") from e
        return None if row is None else str(row[0])

    def set(self, key: str, value: str) -> None:
        try:
            with self._lock, self.conn:
                self.conn.execute(
                    """
                    INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, datetime('now'))
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                    """,
                    (key, value),
                )
        except sqlite3.Error as e:
            raise StorageError(f"write_failed:{key}: {e}") from e

    def remove(self, key: str) -> None:
        try:
            with self._lock, self.conn:
                self.conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise StorageError(f"delete_failed:{key}: {e}") from e


def load_json(storage: Storage, key: str, *, expected: type | tuple[type, ...] | None = None) -> Any | None:
    """Read and parse a JSON value. Anything unreadable comes back as ``None``."""

    try:
        raw = storage.get(key)
    except Exception:  # noqa: BLE001 - storage isolation boundary
        logger.warning("storage_read_failed", extra={"key": key}, exc_info=True)
        return None
    if raw is None:
        return None
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("storage_value_corrupt", extra={"key": key})
        return None
    if expected is not None and not isinstance(data, expected):
        logger.warning("storage_value_unexpected_shape", extra={"key": key})
        return None
    return data


def save_json(storage: Storage, key: str, value: Any) -> bool:
    """Serialize and write a JSON value. Returns False (and logs) if the write failed."""

    try:
        storage.set(key, json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str))
    except Exception:  # noqa: BLE001 - persistence failures are never fatal
        logger.warning("storage_write_failed", extra={"key": key}, exc_info=True)
        return False
    return True
