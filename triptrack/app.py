"""Wiring for the tracking pipeline."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Callable

import socketio

from triptrack.config import AppConfig
from triptrack.data.api_client import ApiClient
from triptrack.data.models import AppState
from triptrack.data.trip_monitor import ActiveTripMonitor
from triptrack.location.background import BackgroundOptions, BackgroundTaskRegistry
from triptrack.location.fix_source import FixSource, GpsdFixSource
from triptrack.location.permissions import PermissionGate
from triptrack.location.sampler import PositionSampler
from triptrack.realtime.channel import RealtimeChannel, ReconnectSupervisor
from triptrack.tracking.coordinator import TrackingCoordinator
from triptrack.tracking.durable import DurableChannel
from triptrack.tracking.sinks import DurableSink, RealtimeSink
from triptrack.tracking.watcher import TripWatcher

logger = logging.getLogger(__name__)


@dataclass
class Tracker:
    """The assembled pipeline for one process."""

    client: ApiClient
    channel: RealtimeChannel
    supervisor: ReconnectSupervisor
    registry: BackgroundTaskRegistry
    durable: DurableChannel
    coordinator: TrackingCoordinator
    monitor: ActiveTripMonitor
    watcher: TripWatcher

    def start(self) -> None:
        """Connect the shared channel and begin active-trip discovery."""
        self.channel.connect()
        self.supervisor.start()
        self.monitor.start()

    def shutdown(self) -> None:
        logger.info("Shutting down tracker")
        self.monitor.stop()
        self.coordinator.stop_tracking()
        self.supervisor.stop()
        self.channel.disconnect()


def build_tracker(
    config: AppConfig,
    fix_source_factory: Callable[[], FixSource] = GpsdFixSource,
    app_state: AppState = AppState.ACTIVE,
    socket_client_factory: Callable[..., Any] = socketio.Client,
) -> Tracker:
    """Build every component from configuration."""
    client = ApiClient(config.api.base_url, config.api.token, config.api.timeout_seconds)
    permissions = PermissionGate.from_config(config.permissions)

    channel = RealtimeChannel(config.api.socket_url, config.realtime, client_factory=socket_client_factory)
    supervisor = ReconnectSupervisor(
        channel,
        base_delay_seconds=config.realtime.reconnection_delay_seconds,
        max_delay_seconds=config.realtime.supervisor_max_backoff_seconds,
    )
    supervisor.set_foreground(app_state is AppState.ACTIVE)

    registry = BackgroundTaskRegistry(fix_source_factory)
    durable = DurableChannel(
        registry,
        DurableSink(client),
        permissions,
        BackgroundOptions(
            interval_ms=config.tracking.background_interval_ms,
            distance_m=config.tracking.background_distance_m,
        ),
    )

    sampler = PositionSampler(fix_source_factory(), permissions)
    coordinator = TrackingCoordinator(
        sampler,
        channel,
        durable,
        config.tracking,
        sinks=[RealtimeSink(channel)],
        app_state=app_state,
        supervisor=supervisor,
    )
    monitor = ActiveTripMonitor(
        client,
        poll_interval_seconds=config.tracking.monitor_interval_seconds,
        on_change=coordinator.on_active_trip_changed,
    )
    coordinator.attach_monitor(monitor)

    return Tracker(
        client=client,
        channel=channel,
        supervisor=supervisor,
        registry=registry,
        durable=durable,
        coordinator=coordinator,
        monitor=monitor,
        watcher=TripWatcher(channel),
    )


__all__ = ["Tracker", "build_tracker"]
