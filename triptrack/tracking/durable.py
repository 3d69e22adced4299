"""HTTP-backed background delivery channel."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
import threading
from typing import Any, Callable

from triptrack.data.models import PositionSample
from triptrack.errors import IngestFailure, PermissionDenied
from triptrack.location.background import BackgroundOptions, BackgroundTaskRegistry
from triptrack.location.permissions import PermissionGate
from triptrack.tracking.sinks import LocationSink

logger = logging.getLogger(__name__)

BACKGROUND_LOCATION_TASK = "background-location-tracking"

DeliveryListener = Callable[[str, datetime], None]


class DurableChannel:
    """
    Best-effort delivery of samples while the app is backgrounded.

    The trip id travels in the registration payload. Failed posts are logged
    and dropped; the next background sample supersedes them.
    """

    def __init__(
        self,
        registry: BackgroundTaskRegistry,
        sink: LocationSink,
        permissions: PermissionGate,
        options: BackgroundOptions | None = None,
    ) -> None:
        self._registry = registry
        self._sink = sink
        self._permissions = permissions
        self._options = options or BackgroundOptions()
        self._lock = threading.Lock()
        self._trip_id: str | None = None
        self._registered_trip_id: str | None = None
        self._last_error: str | None = None
        self._listeners: list[DeliveryListener] = []
        registry.define_task(BACKGROUND_LOCATION_TASK, self._handle_task)

    @property
    def current_trip_id(self) -> str | None:
        with self._lock:
            return self._trip_id

    @property
    def last_error(self) -> str | None:
        with self._lock:
            return self._last_error

    def add_delivery_listener(self, listener: DeliveryListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def is_running(self) -> bool:
        return self._registry.has_started(BACKGROUND_LOCATION_TASK)

    def start(self, trip_id: str) -> bool:
        """Register background updates for ``trip_id``; True if a registration is running."""
        if not self._permissions.request_foreground():
            self._record_error(str(PermissionDenied("foreground")))
            return False
        if not self._permissions.request_background():
            self._record_error(str(PermissionDenied("background")))
            return False

        with self._lock:
            self._trip_id = trip_id
            registered_trip_id = self._registered_trip_id

        if self.is_running() and registered_trip_id == trip_id:
            logger.info("Background tracking already running for booking %s", trip_id)
            return True

        try:
            self._registry.start_location_updates(
                BACKGROUND_LOCATION_TASK, self._options, {"trip_id": trip_id}
            )
        except Exception as exc:
            self._record_error(f"Failed to start background tracking: {exc}")
            logger.error("Failed to start background tracking: %s", exc)
            return False

        with self._lock:
            self._registered_trip_id = trip_id
            self._last_error = None
        logger.info("Background location tracking started for booking %s", trip_id)
        return True

    def stop(self) -> None:
        with self._lock:
            self._trip_id = None
            self._registered_trip_id = None
        try:
            self._registry.stop_location_updates(BACKGROUND_LOCATION_TASK)
        except Exception as exc:
            logger.error("Failed to stop background tracking: %s", exc)

    def _record_error(self, message: str) -> None:
        with self._lock:
            self._last_error = message
        logger.warning("%s", message)

    def _handle_task(
        self, payload: dict[str, Any], samples: list[PositionSample], error: Exception | None
    ) -> None:
        if error is not None:
            logger.error("Background location error: %s", error)
            return

        trip_id = payload.get("trip_id")
        with self._lock:
            current = self._trip_id
        if not trip_id or trip_id != current or not samples:
            return

        sample = samples[0]
        try:
            self._sink.deliver(trip_id, sample)
        except IngestFailure as exc:
            self._record_error(f"Background location send error: {exc}")
            return

        with self._lock:
            if self._trip_id != trip_id:
                return
            listeners = list(self._listeners)
        sent_at = datetime.now(timezone.utc)
        logger.debug("Background location sent for booking %s", trip_id)
        for listener in listeners:
            try:
                listener(trip_id, sent_at)
            except Exception:
                logger.exception("Delivery listener failed")


__all__ = ["BACKGROUND_LOCATION_TASK", "DurableChannel"]
