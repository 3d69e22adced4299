"""Geographic helpers used for displacement gating."""

from __future__ import annotations

import math

EARTH_RADIUS_M = 6371000  # meters


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points in meters.

    Args:
        lat1: Latitude of first point (degrees)
        lon1: Longitude of first point (degrees)
        lat2: Latitude of second point (degrees)
        lon2: Longitude of second point (degrees)

    Returns:
        Distance in meters
    """
    lat1, lon1, lat2, lon2 = map(math.radians, [lat1, lon1, lat2, lon2])

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    c = 2 * math.asin(math.sqrt(a))

    return EARTH_RADIUS_M * c


def offset_position(lat: float, lon: float, heading_deg: float, distance_m: float) -> tuple[float, float]:
    """Move a point ``distance_m`` meters along ``heading_deg`` (flat-earth approximation)."""
    heading = math.radians(heading_deg)
    dlat = (distance_m * math.cos(heading)) / EARTH_RADIUS_M
    dlon = (distance_m * math.sin(heading)) / (EARTH_RADIUS_M * math.cos(math.radians(lat)))
    return lat + math.degrees(dlat), lon + math.degrees(dlon)


__all__ = ["haversine_meters", "offset_position"]
