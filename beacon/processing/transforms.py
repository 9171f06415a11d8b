"""beacon.processing.transforms

Event transforms: ``(event, context) -> event | None``.

Returning ``None`` filters the event. Transforms are expected to be pure; the pipeline
isolates the ones that are not.

The built-ins here cover what most hosts want before anything leaves the process:
sampling, ignoring known noise, scrubbing secrets, and capping field sizes.
"""

from __future__ import annotations

import random
import re
from collections.abc import Callable, Iterable
from typing import Any

from beacon.core.config import ProcessorConfig, SamplingConfig
from beacon.core.events import Event, EventType
from beacon.security.redaction import filter_sensitive

Transform = Callable[[Event, dict[str, Any]], Event | None]

_REGEX_PREFIX = "re:"


def sample(rates: SamplingConfig, *, rng: Callable[[], float] = random.random) -> Transform:
    """Keep each event with the probability configured for its type."""

    def _sample(event: Event, context: dict[str, Any]) -> Event | None:
        rate = rates.rate_for(event.type.value)
        if rate >= 1.0:
            return event
        return event if rng() < rate else None

    _sample.__name__ = "sample"
    return _sample


def ignore_errors(patterns: Iterable[str | re.Pattern[str]]) -> Transform:
    """Drop error events whose message matches any pattern.

    Plain strings match as substrings. ``re:``-prefixed strings and compiled patterns
    are regular expressions.
    """

    compiled: list[re.Pattern[str]] = []
    substrings: list[str] = []
    for p in patterns:
        if isinstance(p, re.Pattern):
            compiled.append(p)
        elif p.startswith(_REGEX_PREFIX):
            compiled.append(re.compile(p[len(_REGEX_PREFIX) :]))
        elif p:
            substrings.append(p)

    def _ignore_errors(event: Event, context: dict[str, Any]) -> Event | None:
        if event.type != EventType.ERROR:
            return event
        message = event.field("message")
        if not message:
            return event
        if any(s in message for s in substrings) or any(r.search(message) for r in compiled):
            return None
        return event

    return _ignore_errors


def redact(event: Event, context: dict[str, Any]) -> Event | None:
    """Replace values under sensitive-looking keys in ``data``."""

    return event.with_data(filter_sensitive(event.data))


def truncate_fields(max_length: int) -> Transform:
    """Cap every string value in ``data`` at ``max_length`` characters."""

    def _cut(obj: Any) -> Any:
        if isinstance(obj, str):
            return obj if len(obj) <= max_length else obj[:max_length] + "..."
        if isinstance(obj, dict):
            return {k: _cut(v) for k, v in obj.items()}
        if isinstance(obj, list):
            return [_cut(v) for v in obj]
        return obj

    def _truncate_fields(event: Event, context: dict[str, Any]) -> Event | None:
        return event.with_data(_cut(event.data))

    return _truncate_fields


def build_transforms(config: ProcessorConfig) -> list[Transform]:
    """Built-ins enabled by ``config``, followed by the caller's custom processors.

    Sampling is not part of the chain. ``Monitor.report`` draws it once per event.
    """

    chain: list[Transform] = []
    if config.ignore_errors:
        chain.append(ignore_errors(config.ignore_errors))
    if config.filter_sensitive:
        chain.append(redact)
    if config.max_content_length:
        chain.append(truncate_fields(config.max_content_length))
    chain.extend(config.custom_processors)
    return chain
