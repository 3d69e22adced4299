"""Background location task registrations.

A registration samples on its own thread, independent of the foreground
sampler, and hands batches of samples to the task handler defined for its
name. Registrations can die underneath the application (the platform may
kill them under pressure); ``has_started`` reports False from then on.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
from typing import Any, Callable

from triptrack.data.models import PositionSample
from triptrack.location.fix_source import FixSource
from triptrack.location.sampler import PositionSampler

logger = logging.getLogger(__name__)

TaskHandler = Callable[[dict[str, Any], list[PositionSample], Exception | None], None]


@dataclass(frozen=True)
class BackgroundOptions:
    """Sampling options for a background registration."""

    interval_ms: int = 10000
    distance_m: float = 20


class BackgroundTaskRegistry:
    """Holds task handlers and their running location registrations."""

    def __init__(self, fix_source_factory: Callable[[], FixSource], poll_seconds: float = 1.0) -> None:
        self._fix_source_factory = fix_source_factory
        self._poll_seconds = poll_seconds
        self._handlers: dict[str, TaskHandler] = {}
        self._running: dict[str, PositionSampler] = {}
        self._lock = threading.Lock()

    def define_task(self, name: str, handler: TaskHandler) -> None:
        with self._lock:
            self._handlers[name] = handler

    def has_started(self, name: str) -> bool:
        with self._lock:
            sampler = self._running.get(name)
        return bool(sampler and sampler.is_running)

    def start_location_updates(
        self, name: str, options: BackgroundOptions, payload: dict[str, Any]
    ) -> None:
        """Register location updates for task ``name``; replaces a dead registration."""
        with self._lock:
            handler = self._handlers.get(name)
            if handler is None:
                raise KeyError(f"Task '{name}' is not defined")
            stale = self._running.pop(name, None)
        if stale is not None:
            stale.stop()

        task_payload = dict(payload)
        sampler = PositionSampler(self._fix_source_factory(), poll_seconds=self._poll_seconds)
        sampler.start(
            on_sample=lambda sample: handler(task_payload, [sample], None),
            min_interval_ms=options.interval_ms,
            min_distance_m=options.distance_m,
            on_error=lambda exc: handler(task_payload, [], exc),
        )
        with self._lock:
            self._running[name] = sampler
        logger.info("Background location task '%s' registered", name)

    def stop_location_updates(self, name: str) -> None:
        with self._lock:
            sampler = self._running.pop(name, None)
        if sampler is not None:
            sampler.stop()
            logger.info("Background location task '%s' unregistered", name)

    def terminate(self, name: str) -> None:
        """Kill a registration without unregistering it, as the platform would."""
        with self._lock:
            sampler = self._running.get(name)
        if sampler is not None:
            sampler.stop()
            logger.warning("Background location task '%s' was terminated", name)

    def stop_all(self) -> None:
        with self._lock:
            names = list(self._running)
        for name in names:
            self.stop_location_updates(name)


__all__ = ["BackgroundOptions", "BackgroundTaskRegistry", "TaskHandler"]
