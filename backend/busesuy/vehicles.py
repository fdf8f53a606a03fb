"""Pick the live vehicle that matters for a stop, and rate how fresh its signal is."""

from datetime import datetime
from typing import Optional, Sequence

from busesuy.geo import nearest
from busesuy.models import Coordinate, Freshness, LiveVehicle

FRESH_MAX_AGE_SEC = 60
AGING_MAX_AGE_SEC = 120


def select_vehicle(
    candidates: Sequence[LiveVehicle],
    line: str,
    destination: Optional[str],
    target_stop: Coordinate,
) -> Optional[LiveVehicle]:
    """Closest vehicle to target_stop on `line`.

    When destination is given, only vehicles whose destination text contains it
    (case-sensitive) are considered.
    """
    filtered = [
        v for v in candidates
        if v.line == line and (not destination or (v.destination_text and destination in v.destination_text))
    ]
    match = nearest(target_stop, filtered, key=lambda v: v.coordinate)
    return match[0] if match else None


def signal_age_seconds(vehicle: LiveVehicle, now: datetime) -> Optional[float]:
    if vehicle.timestamp_utc is None:
        return None
    return (now - vehicle.timestamp_utc).total_seconds()


def classify_freshness(age_seconds: Optional[float]) -> Freshness:
    if age_seconds is None or age_seconds > AGING_MAX_AGE_SEC:
        return Freshness.STALE
    if age_seconds < FRESH_MAX_AGE_SEC:
        return Freshness.FRESH
    return Freshness.AGING
