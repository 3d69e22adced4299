"""Position fix sources (gpsd hardware and a simulated drive)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
import random

from triptrack.data.models import PositionSample
from triptrack.location.geo import offset_position


class FixSource(ABC):
    """
    Abstract base class for position fix sources.

    Implementations:
    - GpsdFixSource: fixes from a running gpsd daemon
    - SimulatedFixSource: random-walk drive for development and tests
    """

    @abstractmethod
    def open(self) -> None:
        """Acquire the underlying location subscription."""

    @abstractmethod
    def close(self) -> None:
        """Release the subscription. Safe to call more than once."""

    @abstractmethod
    def read_fix(self) -> PositionSample | None:
        """Return the current fix, or None if no valid fix is available."""


class GpsdFixSource(FixSource):
    """Read fixes from gpsd via the ``gpsd-py3`` client."""

    def __init__(self, host: str = "127.0.0.1", port: int = 2947) -> None:
        self._host = host
        self._port = port
        self._gpsd = None

    def open(self) -> None:
        try:
            import gpsd
        except ImportError as exc:
            raise RuntimeError("gpsd fix source requires the 'gpsd-py3' package.") from exc

        gpsd.connect(host=self._host, port=self._port)
        self._gpsd = gpsd

    def close(self) -> None:
        self._gpsd = None

    def read_fix(self) -> PositionSample | None:
        if self._gpsd is None:
            return None
        packet = self._gpsd.get_current()
        # Mode: 0=unknown, 1=no fix, 2=2D fix, 3=3D fix
        if packet.mode < 2:
            return None
        return PositionSample(
            latitude=packet.lat,
            longitude=packet.lon,
            heading=float(packet.track or 0.0),
            speed=float(packet.hspeed or 0.0),
            captured_at=datetime.now(timezone.utc),
        )


class SimulatedFixSource(FixSource):
    """
    Simulated drive around a starting point.

    Each read advances the vehicle by ``speed * step_seconds`` meters and
    drifts the heading slightly, with occasional stops.
    """

    def __init__(
        self,
        lat: float = 24.8607,
        lon: float = 67.0011,
        step_seconds: float = 1.0,
        seed: int | None = None,
    ) -> None:
        self._lat = lat
        self._lon = lon
        self._heading = 45.0
        self._speed_mps = 0.0
        self._step_seconds = step_seconds
        self._tick = 0
        self._random = random.Random(seed)
        self._open = False

    def open(self) -> None:
        self._open = True

    def close(self) -> None:
        self._open = False

    def read_fix(self) -> PositionSample | None:
        if not self._open:
            return None

        self._tick += 1
        if self._tick % 30 < 5:
            # Stopped at a light
            self._speed_mps = self._random.uniform(0, 1)
        else:
            self._speed_mps = self._random.uniform(8, 25)

        self._lat, self._lon = offset_position(
            self._lat, self._lon, self._heading, self._speed_mps * self._step_seconds
        )
        self._heading = (self._heading + self._random.uniform(-5, 5)) % 360

        return PositionSample(
            latitude=self._lat,
            longitude=self._lon,
            heading=round(self._heading, 1),
            speed=round(self._speed_mps, 2),
            captured_at=datetime.now(timezone.utc),
        )


__all__ = ["FixSource", "GpsdFixSource", "SimulatedFixSource"]
