"""Traffic-aware bus-to-stop travel time."""

import logging
import math
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ValidationError

from busesuy.google_maps import distance_matrix
from busesuy.models import ArrivalEstimate, Coordinate

logger = logging.getLogger("busesuy.eta")


class _Duration(BaseModel):
    value: int
    text: str = ""


class _Element(BaseModel):
    status: str
    duration: Optional[_Duration] = None
    duration_in_traffic: Optional[_Duration] = None


def _parse_element(raw: Any) -> Optional[_Element]:
    try:
        return _Element.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Malformed Distance Matrix element: {e.error_count()} validation error(s)")
        return None


class EtaEstimator:
    def __init__(self, api_key: str, http_client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.http_client = http_client

    async def estimate(
        self,
        origin: Coordinate,
        target: Coordinate,
        signal_age_seconds: Optional[float] = None,
    ) -> ArrivalEstimate:
        """Travel time from origin (the vehicle) to target (the stop), departing now.

        An unavailable estimate is ArrivalEstimate(None, None), never an exception.
        """
        raw = await distance_matrix(origin, target, self.api_key, http_client=self.http_client)
        if raw is None:
            return ArrivalEstimate()

        element = _parse_element(raw)
        if element is None:
            return ArrivalEstimate()

        if element.status != "OK":
            # No drivable route between the two points
            logger.info(f"No ETA between vehicle and stop: element status {element.status}")
            return ArrivalEstimate()

        duration = element.duration_in_traffic or element.duration
        if duration is None:
            logger.warning("Distance Matrix element has no duration value")
            return ArrivalEstimate()

        return ArrivalEstimate(eta_seconds=duration.value, signal_age_seconds=signal_age_seconds)


def format_eta(eta_seconds: Optional[int]) -> str:
    """Rider-facing text: 'Arriving', '5 min' or 'No live data'."""
    if eta_seconds is None:
        return "No live data"
    minutes = math.floor(eta_seconds / 60 + 0.5)
    if minutes <= 0:
        return "Arriving"
    return f"{minutes} min"


def format_scheduled(minutes: Optional[int]) -> str:
    if minutes is None:
        return "See schedule"
    if minutes <= 0:
        return "Arriving"
    return f"{minutes} min (scheduled)"
