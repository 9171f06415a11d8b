"""beacon.processing.similarity

Near-duplicate error merging within one batch.

Two errors are the same error if they have the same ``errorType`` and their messages
are within an edit-distance budget of each other. Grouping is greedy and single-pass:
quadratic in the number of errors, which is bounded by ``max_cache``.

Output order: group representatives first (in group creation order), then every
non-error event in its original relative order.
"""

from __future__ import annotations

from collections.abc import Sequence

from beacon.core.config import DEFAULT_SIMILARITY_THRESHOLD
from beacon.core.events import Event, EventType


def levenshtein(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""

    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        cur = [i] + [0] * len(b)
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            cur[j] = min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + cost)
        prev = cur
    return prev[-1]


def error_similarity(a: str, b: str) -> float:
    """``1 - distance / max(len)``. Two empty messages are identical."""

    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longest


def errors_similar(a: Event, b: Event, threshold: float = DEFAULT_SIMILARITY_THRESHOLD) -> bool:
    if a.type != EventType.ERROR or b.type != EventType.ERROR:
        return False
    if a.data.get("errorType") != b.data.get("errorType"):
        return False
    return error_similarity(a.field("message"), b.field("message")) >= threshold


def group_similar_errors(
    events: Sequence[Event],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> list[Event]:
    """Collapse similar error events into one representative per group.

    A representative of a group with more than one member gains ``occurrences``,
    ``firstOccurrence`` and ``lastOccurrence`` (timestamps of the first and last member
    in input order).
    """

    if len(events) <= 1:
        return list(events)

    errors = [e for e in events if e.type == EventType.ERROR]
    others = [e for e in events if e.type != EventType.ERROR]

    groups: list[list[Event]] = []
    for event in errors:
        for group in groups:
            if errors_similar(group[0], event, threshold):
                group.append(event)
                break
        else:
            groups.append([event])

    merged: list[Event] = []
    for group in groups:
        representative = group[0]
        if len(group) > 1:
            representative = representative.with_data(
                {
                    **representative.data,
                    "occurrences": len(group),
                    "firstOccurrence": group[0].timestamp,
                    "lastOccurrence": group[-1].timestamp,
                }
            )
        merged.append(representative)

    return merged + others
