from __future__ import annotations

import asyncio

import pytest

from beacon.core.scheduler import PeriodicTask


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        PeriodicTask(0, lambda: None)


@pytest.mark.anyio
async def test_ticks_until_cancelled() -> None:
    calls: list[int] = []
    task = PeriodicTask(0.01, lambda: calls.append(1), name="t")
    task.start()
    assert task.running
    await asyncio.sleep(0.055)
    task.cancel()
    await task.drain()
    seen = len(calls)
    assert seen >= 2
    assert not task.running

    await asyncio.sleep(0.03)
    assert len(calls) == seen


@pytest.mark.anyio
async def test_cancel_does_not_interrupt_running_callback() -> None:
    finished = asyncio.Event()
    started = asyncio.Event()

    async def slow() -> None:
        started.set()
        await asyncio.sleep(0.03)
        finished.set()

    task = PeriodicTask(0.005, slow)
    task.start()
    await started.wait()
    task.cancel()
    await task.drain()
    assert finished.is_set()


@pytest.mark.anyio
async def test_failing_callback_keeps_timer_alive(caplog: pytest.LogCaptureFixture) -> None:
    calls: list[int] = []

    def boom() -> None:
        calls.append(1)
        raise RuntimeError("tick failed")

    task = PeriodicTask(0.005, boom, name="boom")
    task.start()
    await asyncio.sleep(0.04)
    task.cancel()
    await task.drain()
    assert len(calls) >= 2
    assert "scheduled_task_failed" in caplog.text


@pytest.mark.anyio
async def test_restart_after_cancel() -> None:
    calls: list[int] = []
    task = PeriodicTask(0.005, lambda: calls.append(1))
    task.start()
    task.cancel()
    task.start()
    await asyncio.sleep(0.03)
    task.cancel()
    assert calls
