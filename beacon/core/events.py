"""beacon.core.events

The event contract is the primitive.

An event is created once, by a producer or by ``report()``, and never mutated. Stages
that want to change one build a copy with ``with_data``.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from beacon.core.exceptions import InvalidEventError
from beacon.core.time import Clock, now_ms


class EventType(StrEnum):
    """Canonical event type registry."""

    ERROR = "error"
    PERFORMANCE = "performance"
    BEHAVIOR = "behavior"
    CUSTOM = "custom"


class ErrorKind(StrEnum):
    """Values of ``data.errorType`` on error events."""

    JS = "js"
    RESOURCE = "resource"
    PROMISE = "promise"
    AJAX = "ajax"
    OTHER = "other"


class ProcessStatus(StrEnum):
    SUCCESS = "success"
    FILTERED = "filtered"
    DUPLICATE = "duplicate"
    FAILED = "failed"


class ErrorPayload(BaseModel):
    """Typed view of ``data`` for :pydata:`EventType.ERROR` events."""

    message: str = ""
    stack: str | None = None
    errorType: str = ErrorKind.OTHER.value
    name: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class Event(BaseModel):
    """Immutable telemetry event. ``id`` is the delivery acknowledgment key."""

    id: str
    type: EventType
    name: str
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: int

    model_config = {"frozen": True}

    def field(self, key: str) -> str:
        """String view of ``data[key]``; missing or ``None`` is ``""``."""

        value = self.data.get(key) if isinstance(self.data, dict) else None
        return "" if value is None else str(value)

    def with_data(self, data: dict[str, Any]) -> Event:
        return self.model_copy(update={"data": data})

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def canonical_json(data: Any) -> str:
    """Canonical JSON serialization used for storage and comparison."""

    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def build_event(partial: Mapping[str, Any] | Event, *, clock: Clock = now_ms) -> Event:
    """Complete a partial event.

    ``type`` is required. Defaults: ``id`` a fresh UUID4, ``name`` the type, ``data``
    an empty dict, ``timestamp`` now.

    Validation goes beyond a presence check on ``type``. A type outside ``EventType``
    or a ``data`` that is not a mapping is rejected here instead of being queued and
    sent to the collector as-is.

    Raises:
        InvalidEventError: ``type`` is missing or unknown, or a field has the wrong shape.
    """

    if isinstance(partial, Event):
        return partial
    if not isinstance(partial, Mapping):
        raise InvalidEventError(f"event must be a mapping, got {type(partial).__name__}")

    raw_type = partial.get("type")
    if not raw_type:
        raise InvalidEventError("Event type is required")
    try:
        event_type = EventType(str(raw_type))
    except ValueError as e:
        raise InvalidEventError(f"Unknown event type: {raw_type!r}") from e

    data = partial.get("data")
    try:
        return Event(
            id=str(partial.get("id") or uuid.uuid4()),
            type=event_type,
            name=str(partial.get("name") or event_type.value),
            data=dict(data) if data else {},
            timestamp=int(partial.get("timestamp") or clock()),
        )
    except (TypeError, ValueError, ValidationError) as e:
        raise InvalidEventError(f"Invalid event: {e}") from e


def parse_events(raw: Any) -> list[Event]:
    """Parse a persisted list of events, skipping entries that no longer validate."""

    if not isinstance(raw, list):
        return []
    out: list[Event] = []
    for item in raw:
        try:
            out.append(Event.model_validate(item))
        except ValidationError:
            continue
    return out
