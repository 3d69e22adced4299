"""Host-side subscription to a trip's live position stream."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from triptrack.data.models import PositionSample
from triptrack.realtime.channel import RealtimeChannel

logger = logging.getLogger(__name__)

PositionCallback = Callable[[str, PositionSample], None]


class TripWatcher:
    """
    Follow one or more trips over the realtime channel.

    Rooms are re-joined on every reconnection. The latest-timestamped sample
    wins: updates older than the one already shown are dropped, since the two
    delivery paths do not preserve order.
    """

    def __init__(self, channel: RealtimeChannel) -> None:
        self._channel = channel
        self._lock = threading.Lock()
        self._callbacks: dict[str, list[PositionCallback]] = {}
        self._latest: dict[str, PositionSample] = {}
        channel.on_position_update(self._handle_update)
        channel.add_connect_listener(self._rejoin)

    def watch(self, trip_id: str, callback: PositionCallback | None = None) -> bool:
        """Start following ``trip_id``; returns whether the room was joined now."""
        with self._lock:
            callbacks = self._callbacks.setdefault(trip_id, [])
            if callback is not None:
                callbacks.append(callback)
        return self._channel.subscribe(trip_id)

    def unwatch(self, trip_id: str) -> None:
        with self._lock:
            self._callbacks.pop(trip_id, None)
            self._latest.pop(trip_id, None)

    def latest(self, trip_id: str) -> PositionSample | None:
        with self._lock:
            return self._latest.get(trip_id)

    @property
    def watched_trip_ids(self) -> list[str]:
        with self._lock:
            return list(self._callbacks)

    def _rejoin(self) -> None:
        for trip_id in self.watched_trip_ids:
            self._channel.subscribe(trip_id)

    def _handle_update(self, payload: dict) -> None:
        trip_id = str(payload.get("bookingId") or "")
        try:
            sample = PositionSample.from_payload(payload)
        except (KeyError, TypeError, ValueError) as exc:
            logger.debug("Ignoring malformed location update: %s", exc)
            return

        with self._lock:
            if trip_id not in self._callbacks:
                return
            current = self._latest.get(trip_id)
            if current is not None and sample.captured_at < current.captured_at:
                logger.debug("Dropping out-of-order update for %s", trip_id)
                return
            self._latest[trip_id] = sample
            callbacks = list(self._callbacks[trip_id])

        for callback in callbacks:
            try:
                callback(trip_id, sample)
            except Exception:
                logger.exception("Position callback failed for %s", trip_id)


__all__ = ["TripWatcher"]
