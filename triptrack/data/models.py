"""Data structures shared by the tracking pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: Any) -> BookingStatus | None:
        try:
            return cls(str(value).lower())
        except ValueError:
            return None


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class TrackerState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    FOREGROUND_TRACKING = "foreground_tracking"
    BACKGROUND_TRACKING = "background_tracking"
    STOPPING = "stopping"


class AppState(str, Enum):
    """Process lifecycle states reported by the host platform."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    BACKGROUND = "background"


class StartOutcome(str, Enum):
    STARTED = "started"
    ALREADY_TRACKING = "already_tracking"
    PERMISSION_DENIED = "permission_denied"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class Booking:
    """Booking reference as seen by the tracking core."""

    id: str
    status: BookingStatus | None

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> Booking | None:
        booking_id = raw.get("id") or raw.get("_id")
        if not booking_id:
            return None
        return cls(id=str(booking_id), status=BookingStatus.parse(raw.get("status")))


@dataclass(frozen=True)
class PositionSample:
    """One GPS fix with heading/speed metadata."""

    latitude: float
    longitude: float
    heading: float = 0.0
    speed: float = 0.0
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def timestamp(self) -> str:
        return self.captured_at.isoformat()

    def to_payload(self) -> dict[str, Any]:
        """Body of the location ingest call."""
        return {
            "lat": self.latitude,
            "lng": self.longitude,
            "heading": self.heading,
            "speed": self.speed,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> PositionSample:
        """Build a sample from a ``receive_location`` event payload."""
        captured_at = _parse_time(payload.get("timestamp")) or datetime.now(timezone.utc)
        return cls(
            latitude=float(payload["lat"]),
            longitude=float(payload["lng"]),
            heading=float(payload.get("heading") or 0.0),
            speed=float(payload.get("speed") or 0.0),
            captured_at=captured_at,
        )


@dataclass
class TrackingSession:
    """In-memory record of the trip being tracked and through which channels."""

    trip_id: str | None = None
    realtime_active: bool = False
    durable_active: bool = False
    last_sample_sent_at: datetime | None = None
    last_error: str | None = None
    permission_denied: bool = False

    def snapshot(self) -> TrackingSession:
        return replace(self)


def _parse_time(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed
    except ValueError:
        return None


__all__ = [
    "AppState",
    "Booking",
    "BookingStatus",
    "ConnectionState",
    "PositionSample",
    "StartOutcome",
    "TrackerState",
    "TrackingSession",
]
