"""Threaded poller that discovers the user's currently ongoing trip."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from triptrack.data.api_client import ApiClient, ApiClientError
from triptrack.data.models import BookingStatus
from triptrack.errors import DiscoveryFailure

logger = logging.getLogger(__name__)

_UNSET = object()


class ActiveTripMonitor:
    """Background poller that reports changes to the active trip id."""

    JOIN_TIMEOUT_SECONDS = 2.0

    def __init__(
        self,
        client: ApiClient,
        poll_interval_seconds: float = 30,
        on_change: Callable[[str | None], None] | None = None,
    ) -> None:
        self._client = client
        self._poll_interval_seconds = poll_interval_seconds
        self._on_change = on_change
        self._active_trip_id: object = _UNSET
        self._last_error: str | None = None
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        # Bumped on stop/reset; a poll that started under an older generation is discarded.
        self._generation = 0

    def get_active_trip_id(self) -> str | None:
        """Return the last known active trip id, if any."""
        with self._lock:
            value = self._active_trip_id
        return None if value is _UNSET else value  # type: ignore[return-value]

    def get_last_error(self) -> str | None:
        with self._lock:
            return self._last_error

    @property
    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self) -> None:
        """Start the background polling thread."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="active-trip-monitor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop polling and forget the known trip.

        A poll still in flight when this is called is discarded, and the next
        refresh after a restart reports the active trip again.
        """
        self._stop_event.set()
        self.reset()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.JOIN_TIMEOUT_SECONDS)

    def reset(self) -> None:
        """Forget the known trip so the next refresh always notifies."""
        with self._lock:
            self._generation += 1
            self._active_trip_id = _UNSET
            self._last_error = None

    def refresh(self) -> str | None:
        """Poll the booking list once and return the active trip id.

        A failed poll keeps the previously known id so a network hiccup never
        interrupts an in-progress trip.
        """
        with self._lock:
            generation = self._generation
        try:
            bookings = self._client.get_my_bookings()
        except ApiClientError as exc:
            failure = DiscoveryFailure(str(exc))
            with self._lock:
                if generation == self._generation:
                    self._last_error = str(failure)
            logger.warning("Active trip check failed, keeping previous state: %s", failure)
            return self.get_active_trip_id()

        ongoing = [b for b in bookings if b.status is BookingStatus.ONGOING]
        if len(ongoing) > 1:
            logger.warning(
                "Found %d ongoing bookings, tracking the first (%s)", len(ongoing), ongoing[0].id
            )
        trip_id = ongoing[0].id if ongoing else None

        with self._lock:
            if generation != self._generation:
                logger.debug("Discarding booking poll that finished after stop")
                return None
            previous = self._active_trip_id
            self._active_trip_id = trip_id
            self._last_error = None

        if previous != trip_id:
            if trip_id:
                logger.info("Found ongoing booking %s", trip_id)
            else:
                logger.info("No ongoing booking found")
            self._notify(trip_id)
        return trip_id

    def _notify(self, trip_id: str | None) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(trip_id)
        except Exception:
            logger.exception("Active trip change handler failed for %s", trip_id)

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.refresh()
            self._stop_event.wait(timeout=self._poll_interval_seconds)


__all__ = ["ActiveTripMonitor"]
