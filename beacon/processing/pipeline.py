"""beacon.processing.pipeline

One flush: snapshot → process → merge → transmit → acknowledge.

Per event, strictly in order, any stage may filter:

    Dequeued → CustomTransform(s) → Enrichment

Per batch, once every event is enriched:

    SimilarityMerge → Transmit → Acknowledged

Dedup is not repeated here; the queue enforced it at enqueue time.

A flush never raises. A failed transmission leaves the queue untouched and the next
timer tick tries again with the same events plus whatever arrived in between.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from beacon import PROCESSOR_NAME, __version__
from beacon.core.client import TransportClient
from beacon.core.config import MonitorConfig
from beacon.core.device import DeviceInfo
from beacon.core.events import Event, ProcessStatus
from beacon.core.exceptions import DeliveryError
from beacon.core.queue import EventQueue
from beacon.core.time import Clock, iso_from_ms, now_ms
from beacon.processing.enrichment import EnrichmentService
from beacon.processing.similarity import group_similar_errors
from beacon.processing.transforms import Transform

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProcessOutcome:
    status: ProcessStatus
    event: Event | None


@dataclass(frozen=True, slots=True)
class FlushResult:
    attempted: int = 0
    sent: int = 0
    filtered: int = 0
    merged: int = 0
    acknowledged: int = 0
    delivered: bool = False
    skipped: bool = False
    error: str | None = None
    duration_ms: int = 0


class DeliveryPipeline:
    """Borrows the queue for one snapshot per flush; only ever removes acknowledged ids."""

    def __init__(
        self,
        config: MonitorConfig,
        queue: EventQueue,
        client: TransportClient,
        enrichment: EnrichmentService,
        *,
        transforms: Sequence[Transform] = (),
        context_provider: Callable[[], dict[str, Any]] = dict,
        device: DeviceInfo | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.config = config
        self.queue = queue
        self.client = client
        self.enrichment = enrichment
        self.transforms = list(transforms)
        self._context_provider = context_provider
        self.device = device
        self._clock = clock
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    # -----------------
    # Per event
    # -----------------

    def apply_transforms(self, event: Event, context: dict[str, Any]) -> Event | None:
        """Run the chain. Each transform sees a private deep copy; the queued event is never touched."""

        current = event
        for transform in self.transforms:
            try:
                result = transform(current.model_copy(deep=True), context)
            except Exception:  # noqa: BLE001 - caller code; isolate and move on
                logger.exception(
                    "custom_transform_failed",
                    extra={"transform": getattr(transform, "__name__", repr(transform)), "event_id": event.id},
                )
                continue
            if result is None:
                return None
            if not isinstance(result, Event):
                logger.warning(
                    "custom_transform_bad_return",
                    extra={"transform": getattr(transform, "__name__", repr(transform)), "returned": type(result).__name__},
                )
                continue
            current = result
        return current

    async def enrich(self, event: Event) -> Event:
        processor = self.config.processor
        metadata: dict[str, Any] = {}
        metadata.update(
            await self.enrichment.enrich(
                collect_ip=processor.collect_user_ip,
                collect_geo=processor.collect_geo_info,
            )
        )
        if self.device is not None:
            metadata["browser"] = {
                "userAgent": self.device.user_agent,
                "language": self.device.language,
                "platform": self.device.platform,
            }

        existing = event.data.get("metadata")
        merged = {
            **(existing if isinstance(existing, dict) else {}),
            **metadata,
            "processor": {
                "name": PROCESSOR_NAME,
                "version": __version__,
                "processedAt": iso_from_ms(self._clock()),
            },
        }
        return event.with_data({**event.data, "metadata": merged})

    async def process(self, event: Event, context: dict[str, Any]) -> ProcessOutcome:
        transformed = self.apply_transforms(event, context)
        if transformed is None:
            logger.debug("event_filtered", extra={"event_id": event.id})
            return ProcessOutcome(status=ProcessStatus.FILTERED, event=None)
        try:
            enriched = await self.enrich(transformed)
        except Exception:  # noqa: BLE001 - enrichment must never cost an event
            logger.exception("event_enrichment_failed", extra={"event_id": event.id})
            return ProcessOutcome(status=ProcessStatus.FAILED, event=transformed)
        return ProcessOutcome(status=ProcessStatus.SUCCESS, event=enriched)

    # -----------------
    # Per batch
    # -----------------

    async def batch_process(self, events: Sequence[Event], context: dict[str, Any]) -> tuple[list[Event], int, int]:
        """Return ``(processed, filtered_count, merged_count)``."""

        processed: list[Event] = []
        filtered = 0
        for event in events:
            outcome = await self.process(event, context)
            if outcome.event is None:
                filtered += 1
            else:
                processed.append(outcome.event)

        merged = 0
        if self.config.processor.merge_similar_errors:
            before = len(processed)
            processed = group_similar_errors(processed, self.config.processor.similarity_threshold)
            merged = before - len(processed)
            if merged:
                logger.debug("similar_errors_merged", extra={"merged": merged})
        return processed, filtered, merged

    def headers(self) -> dict[str, str]:
        h = {"Content-Type": "application/json", "X-App-Id": self.config.app_id}
        if self.config.app_token:
            h["X-App-Token"] = self.config.app_token
        return h

    async def transmit(self, events: Sequence[Event], context: dict[str, Any]) -> None:
        await self.client.post_json(
            self.config.collect_url,
            {"events": [e.to_wire() for e in events], "context": context},
            headers=self.headers(),
        )

    async def flush(self) -> FlushResult:
        if self._in_flight:
            logger.debug("flush_skipped_in_flight")
            return FlushResult(skipped=True)

        snapshot = self.queue.snapshot()
        if not snapshot:
            return FlushResult()

        self._in_flight = True
        start = time.perf_counter()
        ids = [e.id for e in snapshot]
        try:
            context = self._context_provider()
            processed, filtered, merged = await self.batch_process(snapshot, context)

            if processed:
                try:
                    await self.transmit(processed, context)
                except DeliveryError as e:
                    logger.warning(
                        "delivery_failed",
                        extra={"events": len(processed), "status_code": e.status_code, "error": str(e)},
                    )
                    return FlushResult(
                        attempted=len(snapshot),
                        sent=0,
                        filtered=filtered,
                        merged=merged,
                        error=str(e),
                        duration_ms=int((time.perf_counter() - start) * 1000),
                    )

            acknowledged = self.queue.acknowledge(ids)
            logger.info(
                "flush_delivered",
                extra={"attempted": len(snapshot), "sent": len(processed), "acknowledged": acknowledged},
            )
            return FlushResult(
                attempted=len(snapshot),
                sent=len(processed),
                filtered=filtered,
                merged=merged,
                acknowledged=acknowledged,
                delivered=True,
                duration_ms=int((time.perf_counter() - start) * 1000),
            )
        except Exception as e:  # noqa: BLE001 - a flush must never crash the host
            logger.exception("flush_failed")
            return FlushResult(
                attempted=len(snapshot),
                error=f"{type(e).__name__}: {e}",
                duration_ms=int((time.perf_counter() - start) * 1000),
            )
        finally:
            self._in_flight = False
