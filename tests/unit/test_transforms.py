from __future__ import annotations

import re

from beacon.core.config import ProcessorConfig, SamplingConfig
from beacon.core.events import Event, EventType
from beacon.security.redaction import FILTERED
from beacon.processing.transforms import build_transforms, ignore_errors, redact, sample, truncate_fields


def _event(type_: EventType = EventType.ERROR, **data: object) -> Event:
    return Event(id="a", type=type_, name="n", data=dict(data), timestamp=1)


def test_sample_uses_rate_per_type() -> None:
    rates = SamplingConfig(behavior=0.5)
    keep = sample(rates, rng=lambda: 0.49)
    drop = sample(rates, rng=lambda: 0.5)
    e = _event(EventType.BEHAVIOR)
    assert keep(e, {}) is e
    assert drop(e, {}) is None
    # full rate never consults the rng
    assert drop(_event(EventType.ERROR), {}) is not None


def test_sample_zero_drops_everything() -> None:
    never = sample(SamplingConfig(custom=0.0), rng=lambda: 0.0)
    assert never(_event(EventType.CUSTOM), {}) is None


def test_ignore_errors_substring_regex_and_compiled() -> None:
    t = ignore_errors(["ResizeObserver", "re:^Script error\\.?$", re.compile(r"chunk \d+ failed")])
    assert t(_event(message="ResizeObserver loop limit exceeded"), {}) is None
    assert t(_event(message="Script error."), {}) is None
    assert t(_event(message="Loading chunk 42 failed"), {}) is None
    kept = _event(message="TypeError: x is undefined")
    assert t(kept, {}) is kept


def test_ignore_errors_leaves_other_types_alone() -> None:
    t = ignore_errors(["boom"])
    e = _event(EventType.CUSTOM, message="boom")
    assert t(e, {}) is e


def test_redact_filters_sensitive_keys() -> None:
    e = _event(message="m", password="hunter2", nested={"apiKey": "k", "ok": 1})
    out = redact(e, {})
    assert out is not None
    assert out.data["password"] == FILTERED
    assert out.data["nested"] == {"apiKey": FILTERED, "ok": 1}
    assert out.data["message"] == "m"
    assert e.data["password"] == "hunter2"


def test_truncate_fields() -> None:
    t = truncate_fields(5)
    out = t(_event(message="abcdefgh", short="abc", items=["123456"], n=12345678), {})
    assert out is not None
    assert out.data == {"message": "abcde...", "short": "abc", "items": ["12345..."], "n": 12345678}


def test_build_transforms_order() -> None:
    def custom(event, context):  # type: ignore[no-untyped-def]
        return event

    cfg = ProcessorConfig(
        ignore_errors=["x"],
        filter_sensitive=True,
        max_content_length=10,
        custom_processors=[custom],
    )
    chain = build_transforms(cfg)
    assert len(chain) == 4
    assert chain[0].__name__ == "_ignore_errors"
    assert chain[1] is redact
    assert chain[-1] is custom


def test_build_transforms_minimal() -> None:
    assert build_transforms(ProcessorConfig()) == []
