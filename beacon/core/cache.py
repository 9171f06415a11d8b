"""beacon.core.cache

TTL cache with a durable mirror.

An answer from a cache is an answer that used to be right.
The TTL bounds how long it is trusted. The stale window bounds how long it is
still better than nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from beacon.core.storage import Storage, load_json, save_json
from beacon.core.time import Clock, now_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CacheHit:
    value: dict[str, Any]
    resolved_at: int
    fresh: bool


class PersistentTTLCache:
    """Keyed dict-valued cache mirrored to one storage key.

    Entries are written as ``{key: {"value": {...}, "resolvedAt": ms}}``. An entry is
    fresh for ``ttl_ms`` and still servable on request for ``stale_ms``; past that it
    is dropped.
    """

    def __init__(
        self,
        storage: Storage,
        storage_key: str,
        *,
        ttl_ms: int,
        stale_ms: int | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self._storage = storage
        self._storage_key = storage_key
        self.ttl_ms = int(ttl_ms)
        self.stale_ms = int(stale_ms if stale_ms is not None else ttl_ms)
        self._clock = clock
        self._store: dict[str, tuple[int, dict[str, Any]]] = {}
        self._hydrate()

    def _hydrate(self) -> None:
        raw = load_json(self._storage, self._storage_key, expected=dict)
        if not raw:
            return
        for k, entry in raw.items():
            if not isinstance(entry, dict):
                continue
            value = entry.get("value")
            resolved_at = entry.get("resolvedAt")
            if isinstance(value, dict) and isinstance(resolved_at, int | float):
                self._store[str(k)] = (int(resolved_at), value)
        logger.debug("cache_hydrated", extra={"key": self._storage_key, "entries": len(self._store)})

    def _persist(self) -> None:
        save_json(
            self._storage,
            self._storage_key,
            {k: {"value": v, "resolvedAt": ts} for k, (ts, v) in self._store.items()},
        )

    def lookup(self, key: str, *, allow_stale: bool = False) -> CacheHit | None:
        item = self._store.get(key)
        if item is None:
            return None
        resolved_at, value = item
        age = self._clock() - resolved_at
        if age < self.ttl_ms:
            return CacheHit(value=dict(value), resolved_at=resolved_at, fresh=True)
        if age < self.stale_ms:
            return CacheHit(value=dict(value), resolved_at=resolved_at, fresh=False) if allow_stale else None
        self._store.pop(key, None)
        self._persist()
        return None

    def get(self, key: str) -> dict[str, Any] | None:
        hit = self.lookup(key)
        return None if hit is None else hit.value

    def set(self, key: str, value: dict[str, Any]) -> None:
        self._store[str(key)] = (self._clock(), dict(value))
        self._persist()

    def invalidate(self, key: str) -> None:
        if self._store.pop(key, None) is not None:
            self._persist()

    def clear(self) -> None:
        self._store.clear()
        self._persist()

    def __len__(self) -> int:
        return len(self._store)
