from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from beacon import SDK_NAME, __version__
from beacon.core.config import MonitorConfig, load_config
from beacon.core.events import EventType, ProcessStatus
from beacon.core.exceptions import ConfigError, InvalidEventError
from beacon.core.storage import SESSION_ID_KEY, MemoryStorage, SqliteStorage
from beacon.monitor import Monitor, MonitorState
from tests.unit._api_test_client import Collector, make_client
from tests.unit._clock import FakeClock


def _monitor(config: MonitorConfig, collector: Collector, clock: FakeClock, storage: MemoryStorage | None = None) -> Monitor:
    return Monitor(config, storage=storage, http_client=make_client(collector.app), clock=clock)


async def _wait_for(predicate, timeout_s: float = 2.0) -> None:  # type: ignore[no-untyped-def]
    deadline = asyncio.get_running_loop().time() + timeout_s
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.mark.anyio
async def test_repeated_reports_deliver_one_event(test_config: MonitorConfig, clock: FakeClock) -> None:
    collector = Collector()
    m = _monitor(test_config, collector, clock)
    results = [m.report({"type": "error", "data": {"message": "boom", "errorType": "js"}}) for _ in range(3)]
    assert [r.duplicate for r in results] == [False, True, True]

    result = await m.flush()
    assert result.delivered
    assert len(collector.batches) == 1
    assert len(collector.events) == 1
    await m.aclose()


@pytest.mark.anyio
async def test_report_requires_type(test_config: MonitorConfig, clock: FakeClock) -> None:
    m = _monitor(test_config, Collector(), clock)
    with pytest.raises(InvalidEventError):
        m.report({"name": "x"})
    assert len(m.queue) == 0
    await m.aclose()


def test_monitor_accepts_a_mapping(clock: FakeClock) -> None:
    m = Monitor({"app_id": "app", "server_url": "http://test/api", "storage": {"backend": "memory"}}, clock=clock)
    assert m.config.collect_url == "http://test/api/collect"


def test_monitor_rejects_invalid_config() -> None:
    with pytest.raises(ConfigError):
        Monitor({"app_id": "", "server_url": "http://test/api", "storage": {"backend": "memory"}})


def test_session_id_and_queue_survive_restart(test_config: MonitorConfig, clock: FakeClock, storage: MemoryStorage) -> None:
    first = _monitor(test_config, Collector(), clock, storage)
    first.report({"type": "custom", "name": "signup"})
    assert storage.get(SESSION_ID_KEY) == first.session_id

    second = _monitor(test_config, Collector(), clock, storage)
    assert second.session_id == first.session_id
    assert [e.name for e in second.queue] == ["signup"]
    # the dedup index came back too
    assert second.report({"type": "custom", "name": "signup"}).duplicate


def test_context_layers_caller_context_last(clock: FakeClock) -> None:
    cfg = load_config(
        app_id="app",
        server_url="http://test/api",
        storage={"backend": "memory"},
        context={"app": {"id": "override", "release": "1.2"}, "user": {"id": "u1"}},
    )
    m = _monitor(cfg, Collector(), clock)
    ctx = m.context()
    assert ctx["sdk"] == {"name": SDK_NAME, "version": __version__}
    assert ctx["session"] == {"id": m.session_id}
    assert ctx["device"]["browser"] == "Python"
    assert ctx["app"] == {"id": "override", "release": "1.2"}
    assert ctx["user"] == {"id": "u1"}


def test_capture_exception(test_config: MonitorConfig, clock: FakeClock) -> None:
    m = _monitor(test_config, Collector(), clock)
    try:
        raise KeyError("missing")
    except KeyError as e:
        result = m.capture_exception(e, error_type="promise", extra={"route": "/cart"})

    assert result.queued
    event = next(iter(m.queue))
    assert event.type == EventType.ERROR
    assert event.name == "KeyError"
    assert event.data["errorType"] == "promise"
    assert event.data["name"] == "KeyError"
    assert "missing" in event.data["message"]
    assert "Traceback" in event.data["stack"]
    assert event.data["extra"] == {"route": "/cart"}


def test_update_config(test_config: MonitorConfig, clock: FakeClock) -> None:
    m = _monitor(test_config, Collector(), clock)
    for i in range(5):
        m.report({"type": "custom", "name": f"e{i}"})

    new = m.update_config(max_cache=2, processor={"enable_deduplicate": False, "filter_sensitive": True})
    assert m.config is new
    assert len(m.queue) == 2
    assert m.queue.dedup_window_ms is None
    assert m.pipeline.config is new
    assert len(m.pipeline.transforms) == 1

    m.report({"type": "custom", "name": "same"})
    assert m.report({"type": "custom", "name": "same"}).queued


def test_update_config_invalid_keeps_previous(test_config: MonitorConfig, clock: FakeClock) -> None:
    m = _monitor(test_config, Collector(), clock)
    with pytest.raises(ConfigError):
        m.update_config(report_interval=0)
    assert m.config is test_config


def test_sweep_and_clear_deduplication_cache(test_config: MonitorConfig, clock: FakeClock) -> None:
    m = _monitor(test_config, Collector(), clock)
    m.report({"type": "custom", "name": "a"})
    clock.advance(test_config.processor.deduplicate_window * 2 + 1)
    m.report({"type": "custom", "name": "b"})
    assert m.sweep() == 1
    assert len(m.hash_index) == 1

    m.clear_deduplication_cache()
    assert len(m.hash_index) == 0
    assert m.report({"type": "custom", "name": "b"}).queued


@pytest.mark.anyio
async def test_timer_delivers_and_aclose_stops(clock: FakeClock) -> None:
    cfg = load_config(
        app_id="app",
        server_url="http://test/api",
        report_interval=20,
        storage={"backend": "memory"},
        processor={"collect_user_ip": False},
    )
    collector = Collector()
    m = _monitor(cfg, collector, clock)

    async with m:
        assert m.state == MonitorState.STARTED
        m.report({"type": "behavior", "name": "click", "data": {"element": "#buy"}})
        await _wait_for(lambda: len(collector.events) == 1)
        await _wait_for(lambda: len(m.queue) == 0)

    assert m.state == MonitorState.CLOSED
    with pytest.raises(RuntimeError):
        m.start()


@pytest.mark.anyio
async def test_stop_then_start_again(test_config: MonitorConfig, clock: FakeClock) -> None:
    m = _monitor(test_config, Collector(), clock)
    m.start()
    m.start()
    assert m.state == MonitorState.STARTED
    m.stop()
    assert m.state == MonitorState.STOPPED
    m.start()
    m.update_config(report_interval=50)
    assert m.state == MonitorState.STARTED
    await m.aclose()
    assert m.state == MonitorState.CLOSED
    await m.aclose()


@pytest.mark.anyio
async def test_failed_delivery_keeps_events_for_next_flush(test_config: MonitorConfig, clock: FakeClock) -> None:
    collector = Collector(status_code=503)
    m = _monitor(test_config, collector, clock)
    m.report({"type": "custom", "name": "a"})

    assert not (await m.flush()).delivered
    assert len(m.queue) == 1

    collector.status_code = 202
    assert (await m.flush()).delivered
    assert len(m.queue) == 0
    await m.aclose()


@pytest.mark.anyio
async def test_injected_storage_is_left_open(test_config: MonitorConfig, clock: FakeClock, tmp_path: Path) -> None:
    storage = SqliteStorage(tmp_path / "beacon.db")
    m = Monitor(test_config, storage=storage, http_client=make_client(Collector().app), clock=clock)
    m.report({"type": "custom", "name": "a"})
    await m.aclose()
    assert storage.get(SESSION_ID_KEY) == m.session_id
    storage.close()


@pytest.mark.anyio
@pytest.mark.parametrize("layout", ["parent_is_a_file", "not_a_database"])
async def test_unusable_sqlite_store_falls_back_to_memory(
    layout: str, tmp_path: Path, clock: FakeClock, caplog: pytest.LogCaptureFixture
) -> None:
    if layout == "parent_is_a_file":
        (tmp_path / "blocker").write_text("x")
        db = tmp_path / "blocker" / "beacon.db"
    else:
        db = tmp_path / "beacon.db"
        db.write_bytes(b"definitely not sqlite " * 64)
    cfg = load_config(
        app_id="app",
        server_url="http://test/api",
        storage={"backend": "sqlite", "path": str(db)},
        processor={"collect_user_ip": False},
    )
    collector = Collector()
    m = Monitor(cfg, http_client=make_client(collector.app), clock=clock)
    assert isinstance(m.storage, MemoryStorage)
    assert "storage_open_failed" in caplog.text

    m.report({"type": "custom", "name": "a"})
    assert (await m.flush()).delivered
    assert [e["name"] for e in collector.events] == ["a"]
    await m.aclose()


@pytest.mark.anyio
async def test_sampling_is_drawn_once_per_event(clock: FakeClock) -> None:
    cfg = load_config(
        app_id="app",
        server_url="http://test/api",
        storage={"backend": "memory"},
        processor={"collect_user_ip": False, "sampling": {"performance": 0.1}},
    )
    draws = iter([0.9, 0.05])
    collector = Collector(status_code=500)
    m = Monitor(cfg, http_client=make_client(collector.app), clock=clock, rng=lambda: next(draws))

    dropped = m.report({"type": "performance", "name": "lcp"})
    assert dropped.status == ProcessStatus.FILTERED
    assert not dropped.queued
    assert m.report({"type": "performance", "name": "fcp"}).queued
    assert len(m.queue) == 1

    # retries never draw again
    assert not (await m.flush()).delivered
    collector.status_code = 200
    assert (await m.flush()).delivered
    assert {e["name"] for e in collector.events} == {"fcp"}
    assert len(m.queue) == 0
    await m.aclose()


def test_update_config_applies_enrichment_and_device(test_config: MonitorConfig, clock: FakeClock) -> None:
    m = _monitor(test_config, Collector(), clock)
    m.update_config(
        enrichment={"ip_cache_ttl_ms": 2000, "geo_cache_ttl_ms": 1000, "geo_cache_stale_ms": 5000},
        device={"language": "fr-FR"},
    )
    assert m.enrichment.ip_cache.ttl_ms == 2000
    assert (m.enrichment.geo_cache.ttl_ms, m.enrichment.geo_cache.stale_ms) == (1000, 5000)
    assert m.device.language == "fr-FR"
    assert m.pipeline.device is m.device
    assert m.context()["device"]["language"] == "fr-FR"


def test_update_config_rejects_storage_change(test_config: MonitorConfig, clock: FakeClock, tmp_path: Path) -> None:
    m = _monitor(test_config, Collector(), clock)
    with pytest.raises(ConfigError):
        m.update_config(storage={"backend": "sqlite", "path": str(tmp_path / "elsewhere.db")})
    assert m.config is test_config
