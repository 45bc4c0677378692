"""
Geodesy helpers shared by the fraud detector and the submission validator.

All distances are great-circle distances in meters on a sphere with a fixed
Earth radius.
"""
import math
from typing import Optional

from visit_trust.schemas.submission import GPSCoordinate

EARTH_RADIUS_M = 6371000.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two GPS coordinates in meters."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(delta_lon / 2) ** 2)
    # rounding can push a just past 1 for antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def distance_between(a: GPSCoordinate, b: GPSCoordinate) -> float:
    """Distance in meters between two valid coordinates."""
    return haversine_distance(a.latitude, a.longitude, b.latitude, b.longitude)


def bearing(a: GPSCoordinate, b: GPSCoordinate) -> float:
    """Initial bearing from `a` to `b` in degrees (0-360)."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    delta_lon = math.radians(b.longitude - a.longitude)

    y = math.sin(delta_lon) * math.cos(lat2)
    x = (math.cos(lat1) * math.sin(lat2) -
         math.sin(lat1) * math.cos(lat2) * math.cos(delta_lon))

    return (math.degrees(math.atan2(y, x)) + 360) % 360


def travel_speed(a: GPSCoordinate, b: GPSCoordinate) -> Optional[float]:
    """
    Implied speed in m/s between two timestamped fixes.

    Returns None when either timestamp is missing or the elapsed time is not
    positive.
    """
    if a.timestamp is None or b.timestamp is None:
        return None

    elapsed = abs((b.timestamp - a.timestamp).total_seconds())
    if elapsed <= 0:
        return None

    return distance_between(a, b) / elapsed


def is_within_radius(
    location: GPSCoordinate,
    target: GPSCoordinate,
    radius_m: float
) -> bool:
    return distance_between(location, target) <= radius_m


def format_distance(distance_m: float) -> str:
    """Human-readable distance: "85m", "1.2km", "25km"."""
    if distance_m < 1000:
        return f"{round(distance_m)}m"
    if distance_m < 10000:
        return f"{distance_m / 1000:.1f}km"
    return f"{round(distance_m / 1000)}km"
