"""beacon.core.time

Events carry epoch milliseconds on the wire. Logs and stamps carry ISO-8601.

This module is the only clock surface in the codebase; components take a ``clock``
callable so tests can move time by hand.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], int]

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


def now_ms() -> int:
    """Return the current wall clock time in epoch milliseconds."""

    return int(time.time() * 1000)


def utc_now() -> datetime:
    """Return an aware UTC datetime."""

    return datetime.now(tz=UTC)


def iso_from_ms(ts_ms: int) -> str:
    """Render epoch milliseconds as an ISO-8601 UTC string with a ``Z`` suffix."""

    dt = datetime.fromtimestamp(ts_ms / 1000, tz=UTC)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def local_timezone_name() -> str:
    """Best-effort name of the host's local timezone."""

    tz = datetime.now().astimezone().tzinfo
    name = getattr(tz, "key", None) or (tz.tzname(None) if tz is not None else None)
    return str(name or "UTC")
