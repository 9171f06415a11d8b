"""beacon.core.exceptions

Errors are part of the interface.

Two of them reach the caller: a bad config and a bad event. The rest are recovered
inside the pipeline and only ever show up in logs.
"""

from __future__ import annotations


class BeaconError(Exception):
    """Base exception for beacon."""


class ConfigError(BeaconError, ValueError):
    """Configuration is missing, invalid, or inconsistent."""


class InvalidEventError(BeaconError, ValueError):
    """A reported event is missing a required field or has an unknown type."""


class DeliveryError(BeaconError):
    """The collection endpoint did not accept a batch."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EnrichmentError(BeaconError):
    """A metadata resolver failed or timed out."""


class AllProvidersFailedError(EnrichmentError):
    """Every raced provider failed."""

    def __init__(self, errors: list[BaseException]) -> None:
        super().__init__(f"all {len(errors)} providers failed")
        self.errors = list(errors)


class StorageError(BeaconError):
    """Durable storage is unavailable, full, or corrupt."""
