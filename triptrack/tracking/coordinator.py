"""Tracking coordinator: decides when and through which channel to track."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
import threading

from triptrack.config import TrackingConfig
from triptrack.data.models import (
    AppState,
    PositionSample,
    StartOutcome,
    TrackerState,
    TrackingSession,
)
from triptrack.data.trip_monitor import ActiveTripMonitor
from triptrack.errors import (
    BackgroundRegistrationLost,
    PermissionDenied,
    TrackingError,
    TransportUnavailable,
)
from triptrack.location.sampler import PositionSampler
from triptrack.realtime.channel import RealtimeChannel, ReconnectSupervisor
from triptrack.tracking.durable import DurableChannel
from triptrack.tracking.sinks import LocationSink, RealtimeSink

logger = logging.getLogger(__name__)

_TRACKING_STATES = (TrackerState.FOREGROUND_TRACKING, TrackerState.BACKGROUND_TRACKING)


class TrackingCoordinator:
    """
    Owns the tracking session for the single active trip.

    States: idle -> starting -> foreground_tracking | background_tracking
    -> stopping -> idle. The durable registration runs for the whole session;
    the realtime path runs whenever it can (it is started on foreground resume
    if the session began in the background). Only one instance should exist
    per process.

    Two locks: ``_lock`` serializes state-machine operations and may be held
    while sampler/registration threads are joined; ``_session_lock`` guards
    the session fields touched from those threads and is only held briefly.
    """

    def __init__(
        self,
        sampler: PositionSampler,
        channel: RealtimeChannel,
        durable: DurableChannel,
        config: TrackingConfig,
        sinks: list[LocationSink] | None = None,
        app_state: AppState = AppState.ACTIVE,
        supervisor: ReconnectSupervisor | None = None,
        monitor: ActiveTripMonitor | None = None,
    ) -> None:
        self._sampler = sampler
        self._channel = channel
        self._durable = durable
        self._config = config
        self._sinks = sinks if sinks is not None else [RealtimeSink(channel)]
        self._app_state = app_state
        self._supervisor = supervisor
        self._monitor = monitor

        self._lock = threading.RLock()
        self._session_lock = threading.Lock()
        self._state = TrackerState.IDLE
        self._session = TrackingSession()
        self._last_sample: PositionSample | None = None

        channel.add_connect_listener(self.on_realtime_connected)
        durable.add_delivery_listener(self._on_durable_delivered)

    @property
    def state(self) -> TrackerState:
        with self._session_lock:
            return self._state

    @property
    def session(self) -> TrackingSession:
        with self._session_lock:
            return self._session.snapshot()

    @property
    def app_state(self) -> AppState:
        return self._app_state

    def attach_monitor(self, monitor: ActiveTripMonitor) -> None:
        self._monitor = monitor

    def on_active_trip_changed(self, trip_id: str | None) -> None:
        """Active-trip monitor callback."""
        try:
            if trip_id:
                self.start_tracking(trip_id)
            else:
                self.stop_tracking()
        except Exception:
            logger.exception("Failed to apply active trip change (%s)", trip_id)

    def start_tracking(self, trip_id: str) -> StartOutcome:
        if not trip_id:
            raise ValueError("trip_id is required to start tracking")

        with self._lock:
            with self._session_lock:
                current_trip = self._session.trip_id
                state = self._state
            if current_trip == trip_id and state in _TRACKING_STATES:
                logger.debug("Already tracking booking %s", trip_id)
                return StartOutcome.ALREADY_TRACKING
            if current_trip is not None:
                logger.info("Switching tracked booking %s -> %s", current_trip, trip_id)
                self._stop_locked()

            with self._session_lock:
                self._state = TrackerState.STARTING
                self._session = TrackingSession(trip_id=trip_id)
                self._last_sample = None
            logger.info("Starting tracking for booking %s", trip_id)

            durable_ok = self._start_durable_locked(trip_id)
            realtime_ok = False
            if self._app_state is AppState.ACTIVE:
                realtime_ok = self._start_realtime_locked(trip_id)

            with self._session_lock:
                self._state = (
                    TrackerState.FOREGROUND_TRACKING if realtime_ok else TrackerState.BACKGROUND_TRACKING
                )
                permission_denied = self._session.permission_denied
                new_state = self._state

            if not realtime_ok and not durable_ok:
                logger.warning("No tracking channel available for booking %s", trip_id)
            logger.info("Tracking booking %s in state %s", trip_id, new_state.value)

            if permission_denied:
                return StartOutcome.PERMISSION_DENIED
            if realtime_ok or durable_ok:
                return StartOutcome.STARTED
            return StartOutcome.DEGRADED

    def stop_tracking(self) -> None:
        with self._lock:
            with self._session_lock:
                idle = self._state is TrackerState.IDLE and self._session.trip_id is None
            if idle:
                if self._durable.is_running():
                    # A registration can outlive the process that created it.
                    logger.info("Stopping background registration left over without an ongoing booking")
                    self._durable.stop()
                return
            self._stop_locked()

    def logout(self) -> None:
        """Stop polling and tracking for the signed-out user."""
        if self._monitor is not None:
            self._monitor.stop()
        self.stop_tracking()
        self._durable.stop()

    def on_app_state_change(self, app_state: AppState) -> None:
        with self._lock:
            previous = self._app_state
            self._app_state = app_state
            if self._supervisor is not None:
                self._supervisor.set_foreground(app_state is AppState.ACTIVE)
            if previous is app_state:
                return

            with self._session_lock:
                trip_id = self._session.trip_id
                state = self._state
            if trip_id is None or state not in _TRACKING_STATES:
                return

            if app_state is AppState.ACTIVE:
                self._resume_locked(trip_id)
            elif app_state is AppState.BACKGROUND:
                logger.info("App moved to background, durable channel is primary for %s", trip_id)
                self._ensure_durable_locked(trip_id)
                with self._session_lock:
                    self._state = TrackerState.BACKGROUND_TRACKING

    def on_realtime_connected(self) -> None:
        """Resume sending after a (re)connection by pushing the latest sample."""
        with self._session_lock:
            trip_id = self._session.trip_id if self._session.realtime_active else None
            sample = self._last_sample
        if trip_id is None:
            return
        logger.info("Realtime channel connected, resuming updates for booking %s", trip_id)
        if sample is not None:
            self._dispatch(trip_id, sample)

    def _resume_locked(self, trip_id: str) -> None:
        logger.info("App returned to foreground, verifying tracking for %s", trip_id)
        self._ensure_durable_locked(trip_id)

        with self._session_lock:
            realtime_active = self._session.realtime_active and self._sampler.is_running
            permission_denied = self._session.permission_denied
        if not realtime_active and not permission_denied:
            realtime_active = self._start_realtime_locked(trip_id)
        elif realtime_active:
            self._channel.ensure_connected()

        with self._session_lock:
            self._state = (
                TrackerState.FOREGROUND_TRACKING if realtime_active else TrackerState.BACKGROUND_TRACKING
            )

    def _ensure_durable_locked(self, trip_id: str) -> None:
        if self._durable.is_running() and self._durable.current_trip_id == trip_id:
            with self._session_lock:
                self._session.durable_active = True
            return

        with self._session_lock:
            was_active = self._session.durable_active
            if was_active:
                self._session.last_error = str(
                    BackgroundRegistrationLost(f"Background tracking lost for {trip_id}")
                )
        if was_active:
            logger.warning("Background tracking lost for %s, restarting", trip_id)
        restarted = self._start_durable_locked(trip_id)
        if restarted and was_active:
            logger.info("Background tracking restarted for %s", trip_id)

    def _start_durable_locked(self, trip_id: str) -> bool:
        started = self._durable.start(trip_id)
        with self._session_lock:
            self._session.durable_active = started
            if not started and self._durable.last_error:
                self._session.last_error = self._durable.last_error
        if not started:
            logger.warning("Background tracking could not start for %s, foreground only", trip_id)
        return started

    def _start_realtime_locked(self, trip_id: str) -> bool:
        try:
            self._sampler.start(
                self._on_sample,
                self._config.location_interval_ms,
                self._config.location_distance_m,
            )
        except PermissionDenied as exc:
            with self._session_lock:
                self._session.permission_denied = True
                self._session.last_error = str(exc)
            logger.warning("Realtime tracking unavailable for %s: %s", trip_id, exc)
            return False
        except Exception as exc:
            with self._session_lock:
                self._session.last_error = str(exc)
            logger.error("Foreground tracking failed to start for %s: %s", trip_id, exc)
            return False

        self._channel.ensure_connected()
        with self._session_lock:
            self._session.realtime_active = True
        return True

    def _stop_locked(self) -> None:
        with self._session_lock:
            trip_id = self._session.trip_id
            self._state = TrackerState.STOPPING
            self._session.realtime_active = False
        logger.info("Stopping tracking for booking %s", trip_id)

        self._sampler.stop()
        self._durable.stop()

        with self._session_lock:
            self._session = TrackingSession()
            self._last_sample = None
            self._state = TrackerState.IDLE
        logger.info("Tracking stopped")

    def _on_sample(self, sample: PositionSample) -> None:
        with self._session_lock:
            trip_id = self._session.trip_id if self._session.realtime_active else None
            if trip_id is None:
                return
            self._last_sample = sample
        self._dispatch(trip_id, sample)

    def _dispatch(self, trip_id: str, sample: PositionSample) -> bool:
        delivered = False
        for sink in self._sinks:
            try:
                sink.deliver(trip_id, sample)
                delivered = True
            except TransportUnavailable as exc:
                logger.debug("%s sink unavailable for %s: %s", sink.name, trip_id, exc)
            except TrackingError as exc:
                self._record_error(trip_id, f"{sink.name}: {exc}")
                logger.warning("%s sink failed for %s: %s", sink.name, trip_id, exc)
            except Exception as exc:
                self._record_error(trip_id, f"{sink.name}: {exc}")
                logger.exception("%s sink raised for %s", sink.name, trip_id)

        if delivered:
            self._mark_sent(trip_id, datetime.now(timezone.utc))
            logger.debug(
                "Location sent: %.6f, %.6f | Speed: %.1f m/s",
                sample.latitude,
                sample.longitude,
                sample.speed,
            )
        return delivered

    def _on_durable_delivered(self, trip_id: str, sent_at: datetime) -> None:
        self._mark_sent(trip_id, sent_at)

    def _mark_sent(self, trip_id: str, sent_at: datetime) -> None:
        with self._session_lock:
            # Results for a session that has since stopped are ignored.
            if self._session.trip_id == trip_id:
                self._session.last_sample_sent_at = sent_at

    def _record_error(self, trip_id: str, message: str) -> None:
        with self._session_lock:
            if self._session.trip_id == trip_id:
                self._session.last_error = message


__all__ = ["TrackingCoordinator"]
