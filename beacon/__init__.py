"""beacon: client-side telemetry.

Signals go in through ``Monitor.report``. Batches come out at ``{server_url}collect``.
Everything between is queueing, dedup, enrichment and bookkeeping.
"""

from __future__ import annotations

__all__ = [
    "__version__",
    "SDK_NAME",
    "PROCESSOR_NAME",
]

__version__ = "1.0.9"

SDK_NAME = "beacon-sdk"

# Stamped into data.metadata.processor on every delivered event.
PROCESSOR_NAME = "BeaconProcessor"
