"""Great-circle distance helpers."""
import math
from typing import Sequence

from .models import Coordinate

EARTH_RADIUS_KM = 6371.0


def haversine_distance(a: Coordinate, b: Coordinate) -> float:
    """
    Great-circle distance between two coordinates.

    Args:
        a: First coordinate
        b: Second coordinate

    Returns:
        Distance in kilometres
    """
    d_lat = math.radians(b.latitude - a.latitude)
    d_lon = math.radians(b.longitude - a.longitude)
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)

    h = (
        math.sin(d_lat / 2) ** 2
        + math.sin(d_lon / 2) ** 2 * math.cos(lat1) * math.cos(lat2)
    )
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def path_length(points: Sequence[Coordinate]) -> float:
    """Sum of leg distances along a sequence of coordinates."""
    return sum(
        haversine_distance(points[i - 1], points[i])
        for i in range(1, len(points))
    )


def travel_minutes(distance_km: float, speed_kmh: float) -> float:
    """Driving time in minutes at a constant average speed."""
    return distance_km / speed_kmh * 60
