from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TravelMode(str, Enum):
    WALKING = "WALKING"
    TRANSIT = "TRANSIT"


class Freshness(str, Enum):
    FRESH = "fresh"
    AGING = "aging"
    STALE = "stale"


class Coordinate(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float


# --- Itinerary (translated directions-provider output) ---


class TransitStop(BaseModel):
    name: str = ""
    location: Optional[Coordinate] = None


class TransitDetail(BaseModel):
    line_name: str = ""  # display name, may carry direction text: "185 - Pocitos"
    line_short_name: str = ""  # bare line code used by the STM API
    line_color: str = ""
    vehicle_type: Optional[str] = None
    vehicle_name: Optional[str] = None
    headsign: str = ""
    departure_stop: TransitStop = Field(default_factory=TransitStop)
    arrival_stop: TransitStop = Field(default_factory=TransitStop)
    departure_time: str = ""
    arrival_time: str = ""
    stop_count: int = 0


class Step(BaseModel):
    travel_mode: TravelMode
    distance_meters: int = 0
    duration_seconds: int = 0
    start_location: Coordinate
    end_location: Coordinate
    path: list[Coordinate] = Field(default_factory=list)
    instructions: str = ""
    transit: Optional[TransitDetail] = None

    @property
    def is_transit(self) -> bool:
        return self.travel_mode == TravelMode.TRANSIT and self.transit is not None


class Leg(BaseModel):
    start_address: str = ""
    end_address: str = ""
    start_location: Coordinate
    end_location: Coordinate
    distance_meters: int = 0
    duration_seconds: int = 0
    steps: list[Step] = Field(default_factory=list)


class Itinerary(BaseModel):
    legs: list[Leg]
    distance_meters: int = 0
    duration_seconds: int = 0
    overview_polyline: str = ""
    summary: str = ""

    def transit_steps(self) -> list[tuple[int, int, Step]]:
        """(leg_index, step_index, step) for every transit step, in travel order."""
        return [
            (li, si, step)
            for li, leg in enumerate(self.legs)
            for si, step in enumerate(leg.steps)
            if step.is_transit
        ]


# --- STM (transit authority) ---


class AuthToken(BaseModel):
    value: str
    expires_at: float  # epoch seconds


class AuthorityStop(BaseModel):
    id: int
    name: str = ""
    coordinate: Coordinate


class UpcomingBus(BaseModel):
    line: str
    destination: Optional[str] = None
    arrival_minutes: Optional[int] = None
    bus_id: Optional[str] = None
    last_update: Optional[str] = None


class LiveVehicle(BaseModel):
    line: str
    vehicle_id: str
    coordinate: Coordinate
    destination_text: Optional[str] = None
    timestamp_utc: Optional[datetime] = None


# --- Live-arrival engine output ---


class StmCorrelation(BaseModel):
    stop_id: Optional[int] = None  # None = no authority stop within threshold
    line: Optional[str] = None
    line_destination: Optional[str] = None
    departure_coordinate: Optional[Coordinate] = None
    stop_distance_m: Optional[float] = None

    @property
    def matched(self) -> bool:
        return self.stop_id is not None


class ArrivalEstimate(BaseModel):
    eta_seconds: Optional[int] = None
    signal_age_seconds: Optional[float] = None


class StepLiveStatus(BaseModel):
    leg_index: int
    step_index: int
    correlation: Optional[StmCorrelation] = None  # None = not yet computed
    vehicle: Optional[LiveVehicle] = None
    estimate: Optional[ArrivalEstimate] = None
    freshness: Optional[Freshness] = None
    scheduled: list[UpcomingBus] = Field(default_factory=list)
    display_text: str = ""


class LiveSnapshot(BaseModel):
    session_id: str
    view_id: str
    state: str  # "idle" or "active"
    passes_completed: int = 0
    passes_skipped: int = 0
    updated_at: Optional[datetime] = None
    last_error: Optional[str] = None
    steps: list[StepLiveStatus] = Field(default_factory=list)


# --- HTTP request / response bodies ---


class DirectionsRequest(BaseModel):
    origin: Optional[Coordinate | str] = None  # "lat,lng" strings are accepted
    destination: Optional[Coordinate | str] = None


class DirectionsResponse(BaseModel):
    routes: list[Itinerary]


class EtaRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    bus_location: Optional[Coordinate] = Field(None, alias="busLocation")
    stop_location: Optional[Coordinate] = Field(None, alias="stopLocation")


class EtaResponse(BaseModel):
    eta: Optional[int] = None


class LiveSessionRequest(BaseModel):
    view_id: str
    itinerary: Itinerary


class StopSearchResponse(BaseModel):
    stops: list[AuthorityStop]


class UpcomingBusesResponse(BaseModel):
    stop_id: int
    buses: list[UpcomingBus]
