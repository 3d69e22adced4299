"""Rate-limited position sampling on a background thread."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Iterator

from triptrack.data.models import PositionSample
from triptrack.errors import PermissionDenied
from triptrack.location.fix_source import FixSource
from triptrack.location.geo import haversine_meters
from triptrack.location.permissions import PermissionGate

logger = logging.getLogger(__name__)


class PositionSampler:
    """
    Produce position samples at a bounded rate while started.

    A sample is emitted only when both ``min_interval_ms`` has elapsed and the
    device moved at least ``min_distance_m`` since the previous emission. The
    first fix after a start is always emitted. Fix sources report every fix,
    so displacement gating happens here.

    Only one subscription exists per sampler; starting again replaces it.
    """

    JOIN_TIMEOUT_SECONDS = 2.0

    def __init__(
        self,
        fix_source: FixSource,
        permissions: PermissionGate | None = None,
        poll_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fix_source = fix_source
        self._permissions = permissions
        self._poll_seconds = poll_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return bool(thread and thread.is_alive() and not self._stop_event.is_set())

    def start(
        self,
        on_sample: Callable[[PositionSample], None],
        min_interval_ms: int,
        min_distance_m: float,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        """Begin sampling; raises PermissionDenied without the foreground grant."""
        if self._permissions is not None and not self._permissions.request_foreground():
            raise PermissionDenied("foreground")

        with self._lock:
            self._stop_locked()
            self._fix_source.open()
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._thread = threading.Thread(
                target=self._run,
                args=(on_sample, on_error, min_interval_ms, min_distance_m, stop_event),
                name="position-sampler",
                daemon=True,
            )
            self._thread.start()
        logger.info(
            "Position sampling started (interval %.0fs, distance %.0fm)",
            min_interval_ms / 1000,
            min_distance_m,
        )

    def stop(self) -> None:
        """Release the subscription. No-op when not started."""
        with self._lock:
            self._stop_locked()

    def stream(
        self,
        min_interval_ms: int,
        min_distance_m: float,
        stop_event: threading.Event | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> Iterator[PositionSample]:
        """Lazily yield gated samples until ``stop_event`` is set (forever if None)."""
        last_sample: PositionSample | None = None
        last_emitted_at: float | None = None
        event = stop_event or threading.Event()

        while not event.is_set():
            try:
                fix = self._fix_source.read_fix()
            except Exception as exc:
                if on_error is not None:
                    on_error(exc)
                else:
                    logger.warning("Location fix read failed: %s", exc)
                fix = None

            if fix is not None:
                now = self._clock()
                if last_sample is None or self._passes_gate(
                    last_sample, last_emitted_at, fix, now, min_interval_ms, min_distance_m
                ):
                    last_sample = fix
                    last_emitted_at = now
                    yield fix
                    continue
            event.wait(timeout=self._poll_seconds)

    @staticmethod
    def _passes_gate(
        last_sample: PositionSample,
        last_emitted_at: float | None,
        fix: PositionSample,
        now: float,
        min_interval_ms: int,
        min_distance_m: float,
    ) -> bool:
        if last_emitted_at is not None and (now - last_emitted_at) * 1000 < min_interval_ms:
            return False
        if min_distance_m <= 0:
            return True
        moved = haversine_meters(
            last_sample.latitude, last_sample.longitude, fix.latitude, fix.longitude
        )
        return moved >= min_distance_m

    def _stop_locked(self) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout=self.JOIN_TIMEOUT_SECONDS)
        self._thread = None
        self._fix_source.close()
        logger.info("Position sampling stopped")

    def _run(
        self,
        on_sample: Callable[[PositionSample], None],
        on_error: Callable[[Exception], None] | None,
        min_interval_ms: int,
        min_distance_m: float,
        stop_event: threading.Event,
    ) -> None:
        for sample in self.stream(min_interval_ms, min_distance_m, stop_event, on_error):
            if stop_event.is_set():
                break
            try:
                on_sample(sample)
            except Exception:
                logger.exception("Sample handler failed")
            # Give the next fix a chance to arrive before polling again.
            stop_event.wait(timeout=self._poll_seconds)


__all__ = ["PositionSampler"]
