"""beacon.core.queue

Bounded, ordered, persisted buffer of events waiting for delivery.

Invariants:
- order is arrival order; the head is the oldest event
- never longer than ``max_cache`` after an ``enqueue`` returns (oldest evicted first)
- the durable mirror is rewritten after every mutation
- ``acknowledge`` removes by id, never by position, so events that arrive while a
  snapshot is in flight are never dropped with it
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from beacon.core.config import DEFAULT_DEDUPLICATE_WINDOW_MS, DEFAULT_MAX_CACHE
from beacon.core.events import Event, ProcessStatus, parse_events
from beacon.core.storage import EVENTS_KEY, MemoryStorage, Storage, load_json, save_json

if TYPE_CHECKING:
    from beacon.processing.dedup import HashIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EnqueueResult:
    status: ProcessStatus
    event_id: str
    evicted: tuple[str, ...] = ()

    @property
    def queued(self) -> bool:
        return self.status == ProcessStatus.SUCCESS

    @property
    def duplicate(self) -> bool:
        return self.status == ProcessStatus.DUPLICATE


class EventQueue:
    def __init__(
        self,
        storage: Storage | None = None,
        *,
        max_cache: int = DEFAULT_MAX_CACHE,
        hash_index: HashIndex | None = None,
        dedup_window_ms: int | None = DEFAULT_DEDUPLICATE_WINDOW_MS,
    ) -> None:
        if max_cache <= 0:
            raise ValueError("max_cache must be > 0")
        self._storage = storage if storage is not None else MemoryStorage()
        self.max_cache = int(max_cache)
        self.hash_index = hash_index
        # None disables dedup at enqueue time.
        self.dedup_window_ms = dedup_window_ms
        self._events: list[Event] = []

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self):
        return iter(tuple(self._events))

    @property
    def ids(self) -> list[str]:
        return [e.id for e in self._events]

    def hydrate(self) -> int:
        """Replace the in-memory queue with the durable copy. Corrupt state = empty."""

        events = parse_events(load_json(self._storage, EVENTS_KEY, expected=list))
        if len(events) > self.max_cache:
            events = events[-self.max_cache :]
        self._events = events
        logger.debug("queue_hydrated", extra={"events": len(events)})
        return len(events)

    def persist(self) -> bool:
        return save_json(self._storage, EVENTS_KEY, [e.to_wire() for e in self._events])

    def enqueue(self, event: Event) -> EnqueueResult:
        if (
            self.hash_index is not None
            and self.dedup_window_ms is not None
            and self.hash_index.is_duplicate(event, self.dedup_window_ms)
        ):
            logger.debug("event_duplicate_dropped", extra={"event_id": event.id, "event_type": str(event.type)})
            return EnqueueResult(status=ProcessStatus.DUPLICATE, event_id=event.id)

        self._events.append(event)
        evicted: list[str] = []
        while len(self._events) > self.max_cache:
            evicted.append(self._events.pop(0).id)
        if evicted:
            logger.debug("queue_evicted", extra={"evicted": len(evicted), "max_cache": self.max_cache})
        self.persist()
        return EnqueueResult(status=ProcessStatus.SUCCESS, event_id=event.id, evicted=tuple(evicted))

    def snapshot(self) -> tuple[Event, ...]:
        return tuple(self._events)

    def acknowledge(self, ids: Iterable[str]) -> int:
        """Remove exactly the events whose id is in ``ids``. Returns how many were removed."""

        drop = set(ids)
        if not drop:
            return 0
        before = len(self._events)
        self._events = [e for e in self._events if e.id not in drop]
        removed = before - len(self._events)
        if removed:
            self.persist()
        return removed

    def resize(self, max_cache: int) -> None:
        if max_cache <= 0:
            raise ValueError("max_cache must be > 0")
        self.max_cache = int(max_cache)
        if len(self._events) > self.max_cache:
            self._events = self._events[-self.max_cache :]
            self.persist()

    def clear(self) -> None:
        self._events.clear()
        self.persist()
