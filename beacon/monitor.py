"""beacon.monitor

The one object a host application holds.

It owns the config, the queue, the dedup index and the enrichment caches, and it wires
them into a delivery pipeline driven by a periodic timer. Producers only ever call
``report`` (or ``capture_exception``); reporting enqueues, the timer delivers.

Lifecycle::

    created ──start()──▶ started ──stop()──▶ stopped ──aclose()──▶ closed
                            ▲                   │
                            └─────start()───────┘
"""

from __future__ import annotations

import logging
import random
import traceback
import uuid
from collections.abc import Callable, Mapping
from enum import StrEnum
from pathlib import Path
from typing import Any

import httpx

from beacon import SDK_NAME, __version__
from beacon.core.client import ClientConfig, TransportClient
from beacon.core.config import MonitorConfig, load_config
from beacon.core.device import DeviceInfo, describe_device
from beacon.core.events import ErrorKind, ErrorPayload, Event, EventType, ProcessStatus, build_event
from beacon.core.exceptions import ConfigError, StorageError
from beacon.core.queue import EnqueueResult, EventQueue
from beacon.core.scheduler import PeriodicTask
from beacon.core.storage import SESSION_ID_KEY, MemoryStorage, SqliteStorage, Storage
from beacon.core.time import HOUR_MS, Clock, now_ms
from beacon.processing.dedup import HashIndex
from beacon.processing.enrichment import EnrichmentService
from beacon.processing.pipeline import DeliveryPipeline, FlushResult
from beacon.processing.transforms import build_transforms, sample
from beacon.security.redaction import sanitize_for_log

logger = logging.getLogger("beacon")

SWEEP_INTERVAL_MS = HOUR_MS


class MonitorState(StrEnum):
    CREATED = "created"
    STARTED = "started"
    STOPPED = "stopped"
    CLOSED = "closed"


def open_storage(config: MonitorConfig) -> Storage:
    """Open the configured backend. An unusable SQLite file degrades to in-memory storage."""

    if config.storage.backend == "memory":
        return MemoryStorage()
    try:
        return SqliteStorage(Path(config.storage.path))
    except StorageError as e:
        logger.warning("storage_open_failed", extra={"path": config.storage.path, "error": str(e)})
        return MemoryStorage()


class Monitor:
    def __init__(
        self,
        config: MonitorConfig | Mapping[str, Any],
        *,
        storage: Storage | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock = now_ms,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._config = config if isinstance(config, MonitorConfig) else load_config(**dict(config))
        self._clock = clock
        self._rng = rng
        self._apply_log_level()

        self._owns_storage = storage is None
        self.storage = storage if storage is not None else open_storage(self._config)
        self.session_id = self._load_session_id()
        self.device: DeviceInfo = describe_device(self._config.device)

        self.hash_index = HashIndex(self.storage, clock=clock)
        self.queue = EventQueue(
            self.storage,
            max_cache=self._config.max_cache,
            hash_index=self.hash_index,
            dedup_window_ms=self._dedup_window(),
        )
        cached = self.queue.hydrate()

        self.client = TransportClient(
            ClientConfig(timeout_s=self._config.transport.timeout_s, user_agent=f"{SDK_NAME}/{__version__}"),
            client=http_client,
        )
        self.enrichment = EnrichmentService(self.client, self.storage, config=self._config.enrichment, clock=clock)
        self.pipeline = DeliveryPipeline(
            self._config,
            self.queue,
            self.client,
            self.enrichment,
            transforms=build_transforms(self._config.processor),
            context_provider=self.context,
            device=self.device,
            clock=clock,
        )

        self._sample = sample(self._config.processor.sampling, rng=rng)
        self.state = MonitorState.CREATED
        self._flush_timer: PeriodicTask | None = None
        self._sweep_timer: PeriodicTask | None = None
        self._timers: list[PeriodicTask] = []
        logger.info("monitor_initialized", extra={"version": __version__, "cached_events": cached})

    # -----------------
    # Config
    # -----------------

    @property
    def config(self) -> MonitorConfig:
        return self._config

    def _dedup_window(self) -> int | None:
        p = self._config.processor
        return p.deduplicate_window if p.enable_deduplicate else None

    def _apply_log_level(self) -> None:
        if self._config.debug:
            logger.setLevel(logging.DEBUG)

    def update_config(self, **changes: Any) -> MonitorConfig:
        """Swap in a validated copy of the config. Restarts the timers if running.

        ``storage`` is fixed for the life of the monitor. Device and enrichment settings,
        cache TTLs included, take effect immediately.

        Raises:
            ConfigError: the merged config does not validate, or it changes ``storage``;
                the old one stays active.
        """

        new = self._config.updated(**changes)
        if new.storage != self._config.storage:
            raise ConfigError("storage cannot be changed on a running monitor; create a new Monitor")
        self._config = new
        self._apply_log_level()
        self.queue.resize(new.max_cache)
        self.queue.dedup_window_ms = self._dedup_window()
        self.pipeline.config = new
        self.pipeline.transforms = build_transforms(new.processor)
        self._sample = sample(new.processor.sampling, rng=self._rng)
        self.enrichment.reconfigure(new.enrichment)
        self.device = describe_device(new.device)
        self.pipeline.device = self.device

        if self.state == MonitorState.STARTED:
            self._stop_timers()
            self._start_timers()
        return new

    # -----------------
    # Identity + context
    # -----------------

    def _load_session_id(self) -> str:
        try:
            existing = self.storage.get(SESSION_ID_KEY)
        except Exception:  # noqa: BLE001 - storage isolation boundary
            logger.warning("session_id_read_failed", exc_info=True)
            existing = None
        if existing:
            return existing
        session_id = str(uuid.uuid4())
        try:
            self.storage.set(SESSION_ID_KEY, session_id)
        except Exception:  # noqa: BLE001 - keep the id for this process only
            logger.warning("session_id_write_failed", exc_info=True)
        return session_id

    def context(self) -> dict[str, Any]:
        """Batch context. Caller supplied context is merged last and wins."""

        return {
            "sdk": {"name": SDK_NAME, "version": __version__},
            "app": {"id": self._config.app_id},
            "session": {"id": self.session_id},
            "device": self.device.to_context(),
            **self._config.context,
        }

    # -----------------
    # Producers
    # -----------------

    def report(self, event: Mapping[str, Any] | Event) -> EnqueueResult:
        """Enqueue one event. Never delivers.

        The sampling draw happens here, once; a sampled-out event comes back ``FILTERED``
        and is never queued.

        Raises:
            InvalidEventError: ``type`` is missing or unknown, or ``data`` is not a mapping.
        """

        full = build_event(event, clock=self._clock)
        if self._sample(full, {}) is None:
            logger.debug("event_sampled_out", extra={"event_id": full.id, "type": str(full.type)})
            return EnqueueResult(status=ProcessStatus.FILTERED, event_id=full.id)
        result = self.queue.enqueue(full)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "event_reported",
                extra={"status": str(result.status), "event": sanitize_for_log(full.to_wire())},
            )
        return result

    def capture_exception(
        self,
        exc: BaseException,
        *,
        error_type: ErrorKind | str = ErrorKind.OTHER,
        extra: dict[str, Any] | None = None,
    ) -> EnqueueResult:
        payload = ErrorPayload(
            message=str(exc) or type(exc).__name__,
            stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            errorType=str(error_type),
            name=type(exc).__name__,
            extra=dict(extra or {}),
        )
        return self.report(
            {
                "type": EventType.ERROR,
                "name": type(exc).__name__,
                "data": payload.model_dump(exclude_none=True),
            }
        )

    # -----------------
    # Lifecycle
    # -----------------

    def _start_timers(self) -> None:
        self._flush_timer = PeriodicTask(self._config.report_interval / 1000, self.pipeline.flush, name="flush")
        self._sweep_timer = PeriodicTask(SWEEP_INTERVAL_MS / 1000, self.sweep, name="sweep")
        self._flush_timer.start()
        self._sweep_timer.start()
        self._timers.extend([self._flush_timer, self._sweep_timer])

    def _stop_timers(self) -> None:
        for timer in (self._flush_timer, self._sweep_timer):
            if timer is not None:
                timer.cancel()

    def start(self) -> None:
        """Begin periodic delivery. Requires a running event loop."""

        if self.state == MonitorState.STARTED:
            return
        if self.state == MonitorState.CLOSED:
            raise RuntimeError("monitor is closed")
        self._start_timers()
        self.state = MonitorState.STARTED
        logger.info("monitor_started", extra={"report_interval_ms": self._config.report_interval})

    def stop(self) -> None:
        """Cancel the timers. A flush already in flight is left to finish."""

        if self.state != MonitorState.STARTED:
            return
        self._stop_timers()
        self.state = MonitorState.STOPPED
        logger.info("monitor_stopped")

    async def aclose(self) -> None:
        if self.state == MonitorState.CLOSED:
            return
        self.stop()
        for timer in self._timers:
            await timer.drain()
        self._timers.clear()
        await self.client.aclose()
        close = getattr(self.storage, "close", None)
        if self._owns_storage and callable(close):
            close()
        self.state = MonitorState.CLOSED

    async def __aenter__(self) -> Monitor:
        self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    # -----------------
    # Maintenance
    # -----------------

    async def flush(self) -> FlushResult:
        """Run one delivery cycle now."""

        return await self.pipeline.flush()

    def sweep(self) -> int:
        window = self._config.processor.deduplicate_window
        return self.hash_index.sweep(window * 2)

    def clear_deduplication_cache(self) -> None:
        self.hash_index.clear()
