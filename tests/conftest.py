from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest
from socketio.exceptions import BadNamespaceError, ConnectionError as SocketConnectionError

from triptrack.config import RealtimeConfig, TrackingConfig
from triptrack.data.models import AppState, PositionSample
from triptrack.errors import PermissionDenied
from triptrack.location.fix_source import FixSource
from triptrack.location.permissions import PermissionGate
from triptrack.realtime.channel import RealtimeChannel
from triptrack.tracking.coordinator import TrackingCoordinator
from triptrack.tracking.durable import DurableChannel
from triptrack.tracking.sinks import DurableSink, RealtimeSink

BASE_TIME = datetime(2026, 10, 16, 9, 0, tzinfo=timezone.utc)


def make_sample(lat: float = 24.86, lng: float = 67.0, seconds: int = 0, speed: float = 3.5) -> PositionSample:
    return PositionSample(
        latitude=lat,
        longitude=lng,
        heading=90.0,
        speed=speed,
        captured_at=BASE_TIME + timedelta(seconds=seconds),
    )


class FakeSocketClient:
    """Stand-in for socketio.Client that records emits."""

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.handlers: dict[str, Callable[..., Any]] = {}
        self.emitted: list[tuple[str, Any]] = []
        self.connected = False
        self.fail_connect = False
        self.connect_errors: list[Exception] = []
        self.connect_calls = 0

    def on(self, event: str, handler: Callable[..., Any] | None = None) -> None:
        self.handlers[event] = handler

    def connect(self, url: str, transports: list[str] | None = None, wait_timeout: float | None = None) -> None:
        self.connect_calls += 1
        if self.connect_errors:
            raise self.connect_errors.pop(0)
        if self.fail_connect:
            raise SocketConnectionError("Connection refused by the server")
        self.connected = True
        self.handlers["connect"]()

    def disconnect(self) -> None:
        self.connected = False
        self.handlers["disconnect"]("client disconnect")

    def emit(self, event: str, data: Any = None) -> None:
        if not self.connected:
            raise BadNamespaceError("/ is not a connected namespace.")
        self.emitted.append((event, data))

    def drop(self) -> None:
        """Simulate the server side going away."""
        self.connected = False
        self.handlers["disconnect"]("transport close")

    def server_emit(self, event: str, payload: Any) -> None:
        self.handlers[event](payload)


class ScriptedFixSource(FixSource):
    """Returns queued fixes in order, then None."""

    def __init__(self, fixes: list[PositionSample] | None = None) -> None:
        self.fixes = list(fixes or [])
        self.is_open = False
        self.open_calls = 0
        self.close_calls = 0

    def open(self) -> None:
        self.is_open = True
        self.open_calls += 1

    def close(self) -> None:
        self.is_open = False
        self.close_calls += 1

    def read_fix(self) -> PositionSample | None:
        if not self.is_open or not self.fixes:
            return None
        return self.fixes.pop(0)


class FakeSampler:
    """Synchronous sampler double; samples are pushed with ``emit``."""

    def __init__(self, deny: bool = False) -> None:
        self.deny = deny
        self.on_sample: Callable[[PositionSample], None] | None = None
        self.running = False
        self.start_calls = 0
        self.stop_calls = 0

    @property
    def is_running(self) -> bool:
        return self.running

    def start(self, on_sample, min_interval_ms, min_distance_m, on_error=None) -> None:
        if self.deny:
            raise PermissionDenied("foreground")
        self.stop()
        self.start_calls += 1
        self.running = True
        self.on_sample = on_sample

    def stop(self) -> None:
        if self.running:
            self.stop_calls += 1
        self.running = False

    def emit(self, sample: PositionSample) -> None:
        assert self.on_sample is not None
        self.on_sample(sample)


class FakeRegistry:
    """In-memory background task registry."""

    def __init__(self) -> None:
        self.handlers: dict[str, Callable[..., None]] = {}
        self.running: dict[str, dict[str, Any]] = {}
        self.start_calls = 0

    def define_task(self, name: str, handler: Callable[..., None]) -> None:
        self.handlers[name] = handler

    def has_started(self, name: str) -> bool:
        return name in self.running

    def start_location_updates(self, name: str, options: Any, payload: dict[str, Any]) -> None:
        self.start_calls += 1
        self.running[name] = dict(payload)

    def stop_location_updates(self, name: str) -> None:
        self.running.pop(name, None)

    def terminate(self, name: str) -> None:
        self.running.pop(name, None)

    def fire(self, name: str, sample: PositionSample) -> None:
        self.handlers[name](self.running[name], [sample], None)


@pytest.fixture()
def realtime_config() -> RealtimeConfig:
    return RealtimeConfig(
        reconnection_attempts=5,
        reconnection_delay_seconds=0.01,
        reconnection_delay_max_seconds=0.05,
        connect_timeout_seconds=1,
        supervisor_max_backoff_seconds=0.08,
    )


@pytest.fixture()
def tracking_config() -> TrackingConfig:
    return TrackingConfig(
        location_interval_ms=5000,
        location_distance_m=20,
        monitor_interval_seconds=30,
        background_interval_ms=10000,
        background_distance_m=20,
    )


@pytest.fixture()
def socket_client() -> FakeSocketClient:
    return FakeSocketClient()


@pytest.fixture()
def channel(socket_client: FakeSocketClient, realtime_config: RealtimeConfig) -> RealtimeChannel:
    return RealtimeChannel(
        "http://tracking.test:5000", realtime_config, client_factory=lambda **_: socket_client
    )


class Harness:
    """Coordinator wired to fakes, with handles on every collaborator."""

    def __init__(
        self,
        channel: RealtimeChannel,
        socket_client: FakeSocketClient,
        tracking_config: TrackingConfig,
        permissions: PermissionGate,
        sampler: FakeSampler,
        app_state: AppState,
    ) -> None:
        self.socket = socket_client
        self.channel = channel
        # Keep connection attempts synchronous and under the test's control.
        self.channel.connect = MagicMock()
        self.sampler = sampler
        self.registry = FakeRegistry()
        self.api = MagicMock()
        self.durable = DurableChannel(self.registry, DurableSink(self.api), permissions)
        self.coordinator = TrackingCoordinator(
            sampler,
            channel,
            self.durable,
            tracking_config,
            sinks=[RealtimeSink(channel)],
            app_state=app_state,
        )

    def connect_socket(self) -> None:
        self.socket.connect(self.channel.url)

    def sent_locations(self) -> list[dict[str, Any]]:
        return [data for event, data in self.socket.emitted if event == "send_location"]


@pytest.fixture()
def make_harness(
    channel: RealtimeChannel, socket_client: FakeSocketClient, tracking_config: TrackingConfig
) -> Callable[..., Harness]:
    def _make(
        foreground: bool = True,
        background: bool = True,
        deny_sampler: bool = False,
        app_state: AppState = AppState.ACTIVE,
    ) -> Harness:
        return Harness(
            channel,
            socket_client,
            tracking_config,
            PermissionGate(foreground=foreground, background=background),
            FakeSampler(deny=deny_sampler),
            app_state,
        )

    return _make


@pytest.fixture()
def sample_at() -> Callable[..., PositionSample]:
    return make_sample


@pytest.fixture()
def scripted_fix_source() -> Callable[..., ScriptedFixSource]:
    return ScriptedFixSource


@pytest.fixture()
def fake_socket_client_cls() -> type[FakeSocketClient]:
    return FakeSocketClient
