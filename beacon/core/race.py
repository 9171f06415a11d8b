"""beacon.core.race

First settled success wins.

Independent providers are started together. The first one to *finish successfully*
decides the result, not the first one to start. Losers are cancelled. If every provider
fails, the caller gets all of the failures at once.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from beacon.core.exceptions import AllProvidersFailedError

T = TypeVar("T")


async def first_success(
    factories: Sequence[Callable[[], Awaitable[T]]],
    *,
    timeout_s: float | None = None,
) -> T:
    """Race ``factories`` and return the first successful result.

    Args:
        factories: zero-arg callables returning awaitables; each is started once.
        timeout_s: per-provider timeout. A provider that exceeds it counts as failed.

    Raises:
        AllProvidersFailedError: every provider raised or timed out (or none were given).
    """

    if not factories:
        raise AllProvidersFailedError([])

    async def _run(factory: Callable[[], Awaitable[T]]) -> T:
        if timeout_s is None:
            return await factory()
        return await asyncio.wait_for(factory(), timeout=timeout_s)

    pending: set[asyncio.Task[T]] = {asyncio.ensure_future(_run(f)) for f in factories}
    errors: list[BaseException] = []
    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task.cancelled():
                    errors.append(asyncio.CancelledError())
                    continue
                exc = task.exception()
                if exc is None:
                    return task.result()
                errors.append(exc)
    finally:
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    raise AllProvidersFailedError(errors)
