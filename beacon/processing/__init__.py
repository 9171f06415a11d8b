"""beacon.processing

Everything that happens to an event between the queue and the wire.
"""

from .dedup import HashIndex, fingerprint
from .enrichment import EnrichmentService, GeoInfo, IpInfo, is_private_ip
from .pipeline import DeliveryPipeline, FlushResult
from .similarity import group_similar_errors

__all__ = [
    "DeliveryPipeline",
    "EnrichmentService",
    "FlushResult",
    "GeoInfo",
    "HashIndex",
    "IpInfo",
    "fingerprint",
    "group_similar_errors",
    "is_private_ip",
]
