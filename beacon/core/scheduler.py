"""beacon.core.scheduler

Cancellable periodic tasks on the running event loop.

Cancellation contract:
- after ``cancel()`` returns, the callback is never invoked again
- a callback already running is not interrupted; it runs in its own task
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Invoke ``callback`` every ``interval_s`` seconds until cancelled."""

    def __init__(
        self,
        interval_s: float,
        callback: Callable[[], Awaitable[object] | object],
        *,
        name: str = "periodic",
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        self.interval_s = float(interval_s)
        self.name = name
        self._callback = callback
        self._timer: asyncio.Task[None] | None = None
        self._spawned: set[asyncio.Task[object]] = set()
        self._cancelled = False
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self) -> None:
        """Schedule the timer. Requires a running event loop."""

        if self.running:
            return
        self._cancelled = False
        self._timer = asyncio.get_running_loop().create_task(self._loop(), name=f"beacon:{self.name}")

    def cancel(self) -> None:
        self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def drain(self) -> None:
        """Wait for callbacks that were already spawned."""

        if self._spawned:
            await asyncio.gather(*list(self._spawned), return_exceptions=True)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            if self._cancelled:
                return
            self.ticks += 1
            self._spawn()

    def _spawn(self) -> None:
        task = asyncio.ensure_future(self._invoke())
        self._spawned.add(task)
        task.add_done_callback(self._spawned.discard)

    async def _invoke(self) -> object:
        try:
            result = self._callback()
            if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
                return await result
            return result
        except Exception:  # noqa: BLE001 - a failing tick must not kill the timer
            logger.exception("scheduled_task_failed", extra={"task": self.name})
            return None
