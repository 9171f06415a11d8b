"""beacon.processing.dedup

Fingerprints and the last-seen index behind deduplication.

The fingerprint is a 32-bit rolling hash over an event's discriminating fields. It is
not cryptographic and does not need to be: a rare collision merges two unrelated events
for one window, nothing worse.
"""

from __future__ import annotations

import logging

from beacon.core.config import DEFAULT_DEDUPLICATE_WINDOW_MS
from beacon.core.events import Event, EventType
from beacon.core.storage import EVENT_HASHES_KEY, MemoryStorage, Storage, load_json, save_json
from beacon.core.time import Clock, now_ms

logger = logging.getLogger(__name__)


def hash_string(text: str) -> str:
    """``h = h*31 + c`` over UTF-16 code units, wrapped to a signed 32-bit integer."""

    h = 0
    units = text.encode("utf-16-le")
    for i in range(0, len(units), 2):
        h = (h * 31 + int.from_bytes(units[i : i + 2], "little")) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return str(h)


def fingerprint_source(event: Event) -> str:
    f = event.field
    if event.type == EventType.ERROR:
        return f"{event.type}_{f('errorType')}_{f('message')}_{f('stack')}"
    if event.type == EventType.PERFORMANCE:
        return f"{event.type}_{f('url')}_{event.name}"
    if event.type == EventType.BEHAVIOR:
        return f"{event.type}_{event.name}_{f('element')}"
    return f"{event.type}_{event.name}"


def fingerprint(event: Event) -> str:
    """Stable fingerprint of an event's discriminating fields."""

    return hash_string(fingerprint_source(event))


class HashIndex:
    """fingerprint -> lastSeenAt, mirrored to durable storage.

    Instance-owned: two monitors in one process never share an index.
    """

    def __init__(self, storage: Storage | None = None, *, clock: Clock = now_ms) -> None:
        self._storage = storage if storage is not None else MemoryStorage()
        self._clock = clock
        self._seen: dict[str, int] = {}
        self.hydrate()

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, fp: object) -> bool:
        return fp in self._seen

    def last_seen(self, fp: str) -> int | None:
        return self._seen.get(fp)

    def fingerprint(self, event: Event) -> str:
        return fingerprint(event)

    def hydrate(self) -> None:
        raw = load_json(self._storage, EVENT_HASHES_KEY, expected=dict) or {}
        self._seen = {str(k): int(v) for k, v in raw.items() if isinstance(v, int | float)}

    def persist(self) -> bool:
        return save_json(self._storage, EVENT_HASHES_KEY, self._seen)

    def is_duplicate(self, event: Event, window_ms: int = DEFAULT_DEDUPLICATE_WINDOW_MS) -> bool:
        """True if the same fingerprint was seen less than ``window_ms`` ago.

        The record is refreshed either way.
        """

        fp = fingerprint(event)
        now = self._clock()
        last = self._seen.get(fp)
        self._seen[fp] = now
        self.persist()
        return last is not None and (now - last) < window_ms

    def sweep(self, max_age_ms: int | None = None) -> int:
        """Drop records older than ``max_age_ms`` (default: twice the dedup window)."""

        max_age = DEFAULT_DEDUPLICATE_WINDOW_MS * 2 if max_age_ms is None else int(max_age_ms)
        now = self._clock()
        stale = [fp for fp, ts in self._seen.items() if now - ts > max_age]
        for fp in stale:
            del self._seen[fp]
        if stale:
            self.persist()
            logger.debug("hash_index_swept", extra={"removed": len(stale), "remaining": len(self._seen)})
        return len(stale)

    def clear(self) -> None:
        self._seen.clear()
        self.persist()
