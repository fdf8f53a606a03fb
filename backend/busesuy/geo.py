"""Great-circle helpers shared by every correlation step."""

import math
from typing import Callable, Iterable, Optional, TypeVar

from busesuy.models import Coordinate

EARTH_RADIUS_M = 6371000.0

T = TypeVar("T")


def haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two points in meters."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlon / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance(a: Coordinate, b: Coordinate) -> float:
    return haversine(a.lat, a.lng, b.lat, b.lng)


def nearest(
    origin: Coordinate,
    items: Iterable[T],
    key: Callable[[T], Coordinate],
) -> Optional[tuple[T, float]]:
    """Return (item, meters) for the item closest to origin, or None if there are none."""
    best: Optional[tuple[T, float]] = None
    for item in items:
        d = distance(origin, key(item))
        if best is None or d < best[1]:
            best = (item, d)
    return best
