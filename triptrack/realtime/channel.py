"""Process-wide Socket.IO channel for realtime position delivery."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError, SocketIOError

from triptrack.config import RealtimeConfig
from triptrack.data.models import ConnectionState, PositionSample

logger = logging.getLogger(__name__)

JOIN_TRACKING_EVENT = "join_tracking"
SEND_LOCATION_EVENT = "send_location"
RECEIVE_LOCATION_EVENT = "receive_location"

PositionListener = Callable[[dict[str, Any]], None]
ConnectListener = Callable[[], None]


class RealtimeChannel:
    """
    Shared, auto-reconnecting connection to the tracking socket server.

    Rooms joined through ``subscribe`` are not rejoined after a reconnect;
    owners register a connect listener and restore their own state. Samples
    sent while disconnected are dropped.
    """

    def __init__(
        self,
        url: str,
        config: RealtimeConfig,
        client_factory: Callable[..., Any] = socketio.Client,
    ) -> None:
        self._url = url
        self._config = config
        self._sio = client_factory(
            reconnection=True,
            reconnection_attempts=config.reconnection_attempts,
            reconnection_delay=config.reconnection_delay_seconds,
            reconnection_delay_max=config.reconnection_delay_max_seconds,
        )
        self._state = ConnectionState.DISCONNECTED
        self._last_error: str | None = None
        self._lock = threading.Lock()
        self._position_listeners: list[PositionListener] = []
        self._connect_listeners: list[ConnectListener] = []

        self._sio.on("connect", self._handle_connect)
        self._sio.on("disconnect", self._handle_disconnect)
        self._sio.on("connect_error", self._handle_connect_error)
        self._sio.on(RECEIVE_LOCATION_EVENT, self._handle_receive_location)

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED and bool(self._sio.connected)

    @property
    def last_error(self) -> str | None:
        with self._lock:
            return self._last_error

    def connect(self) -> None:
        """Start connecting in the background; no-op if connected or connecting."""
        with self._lock:
            if self._state is not ConnectionState.DISCONNECTED:
                return
        threading.Thread(target=self.try_connect, name="realtime-connect", daemon=True).start()

    def ensure_connected(self) -> bool:
        """Return True if connected, otherwise kick off a connection attempt."""
        if self.is_connected:
            return True
        self.connect()
        return False

    def try_connect(self) -> bool:
        """Connect and block until the attempt completes."""
        with self._lock:
            if self._state is ConnectionState.CONNECTED:
                return True
            if self._state is ConnectionState.CONNECTING:
                return False
            self._state = ConnectionState.CONNECTING

        logger.info("Connecting to socket: %s", self._url)
        try:
            self._sio.connect(
                self._url,
                transports=["websocket"],
                wait_timeout=self._config.connect_timeout_seconds,
            )
        except (SocketConnectionError, ValueError) as exc:
            # ValueError: the client's own reconnect task is mid-attempt.
            with self._lock:
                self._state = ConnectionState.DISCONNECTED
                self._last_error = str(exc)
            logger.warning("Socket connection error: %s", exc)
            return False
        except Exception:
            with self._lock:
                self._state = ConnectionState.DISCONNECTED
            raise

        if self._sio.connected:
            with self._lock:
                already_announced = self._state is ConnectionState.CONNECTED
                self._state = ConnectionState.CONNECTED
            if not already_announced:
                self._fire_connect_listeners()
            return True

        with self._lock:
            self._state = ConnectionState.DISCONNECTED
        return False

    def disconnect(self) -> None:
        """Tear down the connection at application shutdown."""
        logger.info("Disconnecting socket")
        try:
            self._sio.disconnect()
        except Exception as exc:
            logger.warning("Socket disconnect failed: %s", exc)
        with self._lock:
            self._state = ConnectionState.DISCONNECTED

    def send_position(self, trip_id: str, sample: PositionSample) -> bool:
        """Emit one sample for ``trip_id``; returns False instead of raising when offline."""
        if not self.is_connected:
            logger.debug("Socket not connected, dropping sample for %s", trip_id)
            return False

        payload = {"bookingId": trip_id, **sample.to_payload()}
        try:
            self._sio.emit(SEND_LOCATION_EVENT, payload)
        except SocketIOError as exc:
            logger.warning("Failed to send location for %s: %s", trip_id, exc)
            return False
        logger.debug("Location sent: %.6f, %.6f", sample.latitude, sample.longitude)
        return True

    def subscribe(self, trip_id: str) -> bool:
        """Join the tracking room for ``trip_id``; returns False if offline."""
        if not self.is_connected:
            logger.warning("Socket not connected, cannot join tracking room %s", trip_id)
            self.connect()
            return False
        try:
            self._sio.emit(JOIN_TRACKING_EVENT, str(trip_id))
        except SocketIOError as exc:
            logger.warning("Failed to join tracking room %s: %s", trip_id, exc)
            return False
        logger.info("Joined tracking room: %s", trip_id)
        return True

    def on_position_update(self, listener: PositionListener) -> None:
        with self._lock:
            self._position_listeners.append(listener)

    def off_position_update(self, listener: PositionListener) -> None:
        with self._lock:
            if listener in self._position_listeners:
                self._position_listeners.remove(listener)

    def add_connect_listener(self, listener: ConnectListener) -> None:
        with self._lock:
            self._connect_listeners.append(listener)

    def remove_connect_listener(self, listener: ConnectListener) -> None:
        with self._lock:
            if listener in self._connect_listeners:
                self._connect_listeners.remove(listener)

    def _handle_connect(self) -> None:
        with self._lock:
            was_connected = self._state is ConnectionState.CONNECTED
            self._state = ConnectionState.CONNECTED
            self._last_error = None
        logger.info("Socket connected")
        if not was_connected:
            self._fire_connect_listeners()

    def _handle_disconnect(self, *args: Any) -> None:
        reason = args[0] if args else "unknown"
        with self._lock:
            self._state = ConnectionState.DISCONNECTED
        logger.info("Socket disconnected: %s", reason)

    def _handle_connect_error(self, data: Any = None) -> None:
        with self._lock:
            self._last_error = str(data)
        logger.warning("Socket connection error: %s", data)

    def _handle_receive_location(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            logger.debug("Ignoring malformed location payload: %r", payload)
            return
        with self._lock:
            listeners = list(self._position_listeners)
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                logger.exception("Position update listener failed")

    def _fire_connect_listeners(self) -> None:
        with self._lock:
            listeners = list(self._connect_listeners)
        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.exception("Connect listener failed")


class ReconnectSupervisor:
    """
    Keeps the channel connected while the app is in the foreground.

    The socket client gives up after its bounded reconnection attempts; this
    loop retries on top of it with exponential backoff and never gives up
    while foregrounded. It idles while the app is backgrounded.
    """

    def __init__(self, channel: RealtimeChannel, base_delay_seconds: float, max_delay_seconds: float) -> None:
        self._channel = channel
        self._base_delay_seconds = max(base_delay_seconds, 0.01)
        self._max_delay_seconds = max(max_delay_seconds, self._base_delay_seconds)
        self._foreground = threading.Event()
        self._foreground.set()
        self._wake = threading.Event()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._failures = 0

    @property
    def failures(self) -> int:
        return self._failures

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="reconnect-supervisor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        self._wake.set()

    def set_foreground(self, foreground: bool) -> None:
        if foreground:
            self._foreground.set()
            self._failures = 0
            self._wake.set()
        else:
            self._foreground.clear()

    def next_delay(self) -> float:
        if self._failures == 0:
            return self._base_delay_seconds
        return min(self._base_delay_seconds * (2 ** self._failures), self._max_delay_seconds)

    def check_once(self) -> bool:
        """Reconnect if needed; returns True when the channel ends up connected."""
        if not self._foreground.is_set():
            return self._channel.is_connected
        if self._channel.is_connected:
            self._failures = 0
            return True
        if self._channel.try_connect():
            if self._failures:
                logger.info("Socket reconnected after %d failed attempts", self._failures)
            self._failures = 0
            return True
        self._failures += 1
        logger.warning("Socket still disconnected, retrying in %.1fs", self.next_delay())
        return False

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.check_once()
            except Exception:
                self._failures += 1
                logger.exception("Reconnect check failed")
            self._wake.wait(timeout=self.next_delay())
            self._wake.clear()


__all__ = [
    "JOIN_TRACKING_EVENT",
    "RECEIVE_LOCATION_EVENT",
    "SEND_LOCATION_EVENT",
    "RealtimeChannel",
    "ReconnectSupervisor",
]
