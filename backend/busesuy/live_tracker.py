"""One poll pass: correlation -> vehicle selection -> ETA, per transit step."""

import logging
from datetime import datetime, timezone
from typing import Callable

from busesuy.correlator import (
    LineDestinationStrategy,
    correlate,
    correlate_by_name,
    split_line_destination,
    target_coordinate,
)
from busesuy.eta import EtaEstimator, format_eta, format_scheduled
from busesuy.models import Itinerary, Step, StepLiveStatus
from busesuy.stm_client import StmClient
from busesuy.vehicles import classify_freshness, select_vehicle, signal_age_seconds

logger = logging.getLogger("busesuy.live")

SCHEDULED_FALLBACK_LIMIT = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LiveArrivalTracker:
    """Runs poll passes for an itinerary.

    Holds no per-itinerary state; every pass starts from the upstream feeds.
    AuthFailure from the STM client propagates to the caller.
    """

    def __init__(
        self,
        stm: StmClient,
        eta: EtaEstimator,
        now: Callable[[], datetime] = _utcnow,
        destination_strategy: LineDestinationStrategy = split_line_destination,
    ):
        self.stm = stm
        self.eta = eta
        self.now = now
        self.destination_strategy = destination_strategy

    async def run_pass(self, itinerary: Itinerary) -> list[StepLiveStatus]:
        results = []
        for leg_index, step_index, step in itinerary.transit_steps():
            status = await self.track_step(step)
            status.leg_index = leg_index
            status.step_index = step_index
            results.append(status)
        return results

    async def track_step(self, step: Step) -> StepLiveStatus:
        transit = step.transit
        departure = (transit.departure_stop.location if transit else None) or step.start_location

        stops = await self.stm.find_stops_near(departure)
        if stops:
            correlation = correlate(step, stops, destination_strategy=self.destination_strategy)
        else:
            correlation = correlate_by_name(step, destination_strategy=self.destination_strategy)

        status = StepLiveStatus(leg_index=0, step_index=0, correlation=correlation)
        if not correlation.line:
            status.display_text = "No live data"
            return status

        target = target_coordinate(correlation, stops)
        vehicles = await self.stm.get_vehicle_positions([correlation.line])
        vehicle = select_vehicle(vehicles, correlation.line, correlation.line_destination, target)

        if vehicle is not None:
            age = signal_age_seconds(vehicle, self.now())
            estimate = await self.eta.estimate(vehicle.coordinate, target, signal_age_seconds=age)
            status.vehicle = vehicle
            status.estimate = estimate
            status.freshness = classify_freshness(age)
            status.display_text = format_eta(estimate.eta_seconds)
            logger.debug(
                f"Line {correlation.line}: vehicle {vehicle.vehicle_id} "
                f"eta={estimate.eta_seconds}s age={age}s ({status.freshness.value})"
            )
            return status

        logger.info(f"No live vehicle for line {correlation.line} near stop {correlation.stop_id}")
        if correlation.stop_id is not None:
            status.scheduled = await self.stm.get_upcoming_buses(
                correlation.stop_id, [correlation.line], limit=SCHEDULED_FALLBACK_LIMIT
            )
        if status.scheduled:
            status.display_text = format_scheduled(status.scheduled[0].arrival_minutes)
        else:
            status.display_text = "No live data"
        return status
