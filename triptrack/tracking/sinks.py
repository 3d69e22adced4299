"""Delivery strategies for position samples."""

from __future__ import annotations

from abc import ABC, abstractmethod

from triptrack.data.api_client import ApiClient, ApiClientError
from triptrack.data.models import PositionSample
from triptrack.errors import IngestFailure, TransportUnavailable
from triptrack.realtime.channel import RealtimeChannel


class LocationSink(ABC):
    """Something that can deliver a sample for a trip.

    ``deliver`` raises a ``TrackingError`` subclass when the sample could not
    be handed off; callers treat every sink independently.
    """

    name = "sink"

    @abstractmethod
    def deliver(self, trip_id: str, sample: PositionSample) -> None:
        raise NotImplementedError


class RealtimeSink(LocationSink):
    """Push samples over the shared socket connection."""

    name = "realtime"

    def __init__(self, channel: RealtimeChannel) -> None:
        self._channel = channel

    def deliver(self, trip_id: str, sample: PositionSample) -> None:
        if not self._channel.send_position(trip_id, sample):
            raise TransportUnavailable("Socket not connected, sample dropped")


class DurableSink(LocationSink):
    """Persist samples through the per-trip HTTP ingest endpoint."""

    name = "durable"

    def __init__(self, client: ApiClient) -> None:
        self._client = client

    def deliver(self, trip_id: str, sample: PositionSample) -> None:
        try:
            self._client.post_location(trip_id, sample)
        except ApiClientError as exc:
            raise IngestFailure(str(exc)) from exc


__all__ = ["DurableSink", "LocationSink", "RealtimeSink"]
