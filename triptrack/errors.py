"""Failure taxonomy for the trip tracking core."""

from __future__ import annotations


class TrackingError(Exception):
    """Base class for tracking failures."""


class PermissionDenied(TrackingError):
    """Raised when the user declined foreground or background location access."""

    def __init__(self, scope: str, message: str | None = None) -> None:
        self.scope = scope
        super().__init__(message or f"{scope.capitalize()} location permission denied")


class TransportUnavailable(TrackingError):
    """The realtime channel was not connected when a sample was ready."""


class IngestFailure(TrackingError):
    """The durable HTTP ingest call failed; the sample is dropped."""


class DiscoveryFailure(TrackingError):
    """The booking list poll failed; the last known active trip is kept."""


class BackgroundRegistrationLost(TrackingError):
    """The background location registration is no longer running."""


__all__ = [
    "TrackingError",
    "PermissionDenied",
    "TransportUnavailable",
    "IngestFailure",
    "DiscoveryFailure",
    "BackgroundRegistrationLost",
]
