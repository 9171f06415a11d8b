"""beacon.core

Core primitives: config, events, the queue, storage, time, transport.

If a module needs to exist, it should probably depend only on this package.
"""

from .config import MonitorConfig, ProcessorConfig, load_config
from .events import Event, EventType, ProcessStatus, build_event
from .exceptions import BeaconError, ConfigError, InvalidEventError
from .queue import EnqueueResult, EventQueue
from .storage import MemoryStorage, SqliteStorage, Storage
from .time import now_ms

__all__ = [
    "BeaconError",
    "ConfigError",
    "EnqueueResult",
    "Event",
    "EventQueue",
    "EventType",
    "InvalidEventError",
    "MemoryStorage",
    "MonitorConfig",
    "ProcessStatus",
    "ProcessorConfig",
    "SqliteStorage",
    "Storage",
    "build_event",
    "load_config",
    "now_ms",
]
