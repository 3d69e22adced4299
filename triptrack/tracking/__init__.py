"""Tracking session coordination and delivery sinks."""

from triptrack.tracking.coordinator import TrackingCoordinator
from triptrack.tracking.durable import BACKGROUND_LOCATION_TASK, DurableChannel
from triptrack.tracking.sinks import DurableSink, LocationSink, RealtimeSink
from triptrack.tracking.watcher import TripWatcher

__all__ = [
    "BACKGROUND_LOCATION_TASK",
    "DurableChannel",
    "DurableSink",
    "LocationSink",
    "RealtimeSink",
    "TrackingCoordinator",
    "TripWatcher",
]
