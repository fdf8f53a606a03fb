"""Google Routes API (v2 computeRoutes) payload -> internal Itinerary models.

Pure and network-free.
"""

import logging
import re
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from busesuy.errors import ProviderError
from busesuy.models import (
    Coordinate,
    Itinerary,
    Leg,
    Step,
    TransitDetail,
    TransitStop,
    TravelMode,
)

logger = logging.getLogger("busesuy.translator")

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)s\s*$")


def decode_polyline(encoded: str) -> list[Coordinate]:
    """Decode a Google-style encoded polyline to Coordinates."""
    coords = []
    index = 0
    lat = 0
    lng = 0

    while index < len(encoded):
        # Latitude
        shift = 0
        result = 0
        while True:
            b = ord(encoded[index]) - 63
            index += 1
            result |= (b & 0x1F) << shift
            shift += 5
            if b < 0x20:
                break
        lat += (~(result >> 1) if (result & 1) else (result >> 1))

        # Longitude
        shift = 0
        result = 0
        while True:
            b = ord(encoded[index]) - 63
            index += 1
            result |= (b & 0x1F) << shift
            shift += 5
            if b < 0x20:
                break
        lng += (~(result >> 1) if (result & 1) else (result >> 1))

        coords.append(Coordinate(lat=lat / 1e5, lng=lng / 1e5))

    return coords


def parse_duration(value: Optional[str]) -> int:
    """'96s' -> 96. Missing or malformed durations count as 0."""
    if not value:
        return 0
    m = _DURATION_RE.match(str(value))
    if not m:
        logger.debug(f"Unparseable duration {value!r}")
        return 0
    return int(float(m.group(1)))


# --- Raw provider shapes ---


class _LatLng(BaseModel):
    latitude: float = 0.0
    longitude: float = 0.0


class _Location(BaseModel):
    latLng: _LatLng

    def to_coordinate(self) -> Coordinate:
        return Coordinate(lat=self.latLng.latitude, lng=self.latLng.longitude)


class _Polyline(BaseModel):
    encodedPolyline: str = ""


class _Text(BaseModel):
    text: str = ""


class _Vehicle(BaseModel):
    name: Optional[_Text] = None
    type: Optional[str] = None


class _TransitLine(BaseModel):
    name: str = ""
    nameShort: str = ""
    shortName: str = ""
    color: str = ""
    vehicle: Optional[_Vehicle] = None


class _TransitStop(BaseModel):
    name: str = ""
    location: Optional[_Location] = None


class _StopDetails(BaseModel):
    departureStop: _TransitStop = _TransitStop()
    arrivalStop: _TransitStop = _TransitStop()
    departureTime: str = ""
    arrivalTime: str = ""


class _TransitDetails(BaseModel):
    stopDetails: _StopDetails = _StopDetails()
    transitLine: _TransitLine = _TransitLine()
    headsign: str = ""
    stopCount: int = 0


class _NavigationInstruction(BaseModel):
    instructions: str = ""


class _Step(BaseModel):
    distanceMeters: int = 0
    staticDuration: Optional[str] = None
    startLocation: _Location
    endLocation: _Location
    polyline: _Polyline = _Polyline()
    travelMode: str = "WALK"
    navigationInstruction: Optional[_NavigationInstruction] = None
    transitDetails: Optional[_TransitDetails] = None


class _Leg(BaseModel):
    distanceMeters: int = 0
    duration: Optional[str] = None
    staticDuration: Optional[str] = None
    startLocation: _Location
    endLocation: _Location
    startAddress: str = ""
    endAddress: str = ""
    steps: list[_Step] = []


class _Route(BaseModel):
    legs: list[_Leg] = []
    distanceMeters: int = 0
    duration: Optional[str] = None
    staticDuration: Optional[str] = None
    polyline: _Polyline = _Polyline()
    description: str = ""


def _stop(raw: _TransitStop) -> TransitStop:
    return TransitStop(
        name=raw.name,
        location=raw.location.to_coordinate() if raw.location else None,
    )


def _transit_detail(raw: _TransitDetails) -> TransitDetail:
    line = raw.transitLine
    vehicle = line.vehicle
    return TransitDetail(
        line_name=line.name,
        line_short_name=line.shortName or line.nameShort,
        line_color=line.color,
        vehicle_type=vehicle.type if vehicle else None,
        vehicle_name=vehicle.name.text if vehicle and vehicle.name else None,
        headsign=raw.headsign,
        departure_stop=_stop(raw.stopDetails.departureStop),
        arrival_stop=_stop(raw.stopDetails.arrivalStop),
        departure_time=raw.stopDetails.departureTime,
        arrival_time=raw.stopDetails.arrivalTime,
        stop_count=raw.stopCount,
    )


def _translate_step(raw: _Step) -> Step:
    mode = TravelMode.WALKING if raw.travelMode == "WALK" else TravelMode.TRANSIT

    transit = None
    if mode == TravelMode.TRANSIT and raw.transitDetails is not None:
        transit = _transit_detail(raw.transitDetails)

    return Step(
        travel_mode=mode,
        distance_meters=raw.distanceMeters,
        duration_seconds=parse_duration(raw.staticDuration),
        start_location=raw.startLocation.to_coordinate(),
        end_location=raw.endLocation.to_coordinate(),
        path=decode_polyline(raw.polyline.encodedPolyline),
        instructions=raw.navigationInstruction.instructions if raw.navigationInstruction else "",
        transit=transit,
    )


def _translate_leg(raw: _Leg) -> Leg:
    return Leg(
        start_address=raw.startAddress,
        end_address=raw.endAddress,
        start_location=raw.startLocation.to_coordinate(),
        end_location=raw.endLocation.to_coordinate(),
        distance_meters=raw.distanceMeters,
        duration_seconds=parse_duration(raw.duration or raw.staticDuration),
        steps=[_translate_step(s) for s in raw.steps],
    )


def _routes_of(raw: Any) -> list:
    if not isinstance(raw, dict):
        raise ProviderError(f"Directions payload is not an object: {type(raw).__name__}")
    routes = raw.get("routes")
    if routes is None:
        return []
    if not isinstance(routes, list):
        raise ProviderError("Directions payload 'routes' is not a list")
    return routes


def translate(raw: Any) -> list[Itinerary]:
    """Translate a computeRoutes response into Itineraries.

    Routes without legs, or whose structure does not validate, are dropped.
    Raises ProviderError if the payload itself is unusable.
    """
    itineraries = []
    for i, raw_route in enumerate(_routes_of(raw)):
        try:
            route = _Route.model_validate(raw_route)
        except ValidationError as e:
            logger.warning(f"Dropping malformed route #{i}: {e.error_count()} validation error(s)")
            continue

        if not route.legs:
            logger.info(f"Dropping route #{i} without legs")
            continue

        try:
            legs = [_translate_leg(leg) for leg in route.legs]
        except IndexError:
            # decode_polyline ran off the end of a truncated string
            logger.warning(f"Dropping route #{i} with a truncated polyline")
            continue

        lines = [
            s.transit.line_short_name or s.transit.line_name
            for leg in legs for s in leg.steps if s.is_transit
        ]
        itineraries.append(Itinerary(
            legs=legs,
            distance_meters=route.distanceMeters or sum(leg.distance_meters for leg in legs),
            duration_seconds=parse_duration(route.duration or route.staticDuration)
            or sum(leg.duration_seconds for leg in legs),
            overview_polyline=route.polyline.encodedPolyline,
            summary=route.description or " > ".join(lines),
        ))

    return itineraries


# --- DirectionsResult-compatible shape (POST /routes) ---


def _lat_lng(location: Optional[dict]) -> Optional[dict]:
    lat_lng = (location or {}).get("latLng") or {}
    if "latitude" not in lat_lng or "longitude" not in lat_lng:
        return None
    return {"lat": lat_lng["latitude"], "lng": lat_lng["longitude"]}


def _duration_obj(value: Optional[str]) -> dict:
    return {"text": value or "", "value": parse_duration(value)}


def _distance_obj(meters: Optional[int]) -> dict:
    meters = meters or 0
    return {"text": f"{meters} m", "value": meters}


def _legacy_transit(details: dict) -> dict:
    stop_details = details.get("stopDetails") or {}
    line = details.get("transitLine") or {}
    vehicle = line.get("vehicle") or {}
    departure = stop_details.get("departureStop") or {}
    arrival = stop_details.get("arrivalStop") or {}
    return {
        **details,
        "line": {
            **line,
            "short_name": line.get("shortName") or line.get("nameShort", ""),
            "vehicle": {
                "name": (vehicle.get("name") or {}).get("text", ""),
                "type": vehicle.get("type"),
            },
        },
        "departure_stop": {"name": departure.get("name", ""), "location": _lat_lng(departure.get("location"))},
        "arrival_stop": {"name": arrival.get("name", ""), "location": _lat_lng(arrival.get("location"))},
        "num_stops": details.get("stopCount", 0),
        "headsign": details.get("headsign", ""),
        "departure_time": {"text": stop_details.get("departureTime", "")},
        "arrival_time": {"text": stop_details.get("arrivalTime", "")},
    }


def _legacy_step(step: dict) -> dict:
    details = step.get("transitDetails")
    return {
        **step,
        "travel_mode": "WALKING" if step.get("travelMode") == "WALK" else "TRANSIT",
        "duration": _duration_obj(step.get("staticDuration")),
        "distance": _distance_obj(step.get("distanceMeters")),
        "instructions": (step.get("navigationInstruction") or {}).get("instructions", ""),
        "transit": _legacy_transit(details) if details else None,
        "polyline": {"points": (step.get("polyline") or {}).get("encodedPolyline", "")},
    }


def _legacy_leg(leg: dict) -> dict:
    return {
        **leg,
        "start_address": leg.get("startAddress", ""),
        "end_address": leg.get("endAddress", ""),
        "start_location": _lat_lng(leg.get("startLocation")),
        "end_location": _lat_lng(leg.get("endLocation")),
        "duration": _duration_obj(leg.get("duration") or leg.get("staticDuration")),
        "distance": _distance_obj(leg.get("distanceMeters")),
        "steps": [_legacy_step(s) for s in leg.get("steps") or [] if isinstance(s, dict)],
    }


def to_directions_result(raw: Any) -> dict:
    """Re-shape a computeRoutes response into DirectionsResult-style dictionaries.

    Provider fields are kept; snake_case compatibility keys are added on top.
    """
    routes = []
    for route in _routes_of(raw):
        if not isinstance(route, dict) or not route.get("legs"):
            continue
        routes.append({
            **route,
            "overview_polyline": {"points": (route.get("polyline") or {}).get("encodedPolyline", "")},
            "legs": [_legacy_leg(leg) for leg in route["legs"] if isinstance(leg, dict)],
            "bounds": route.get("viewport"),
        })
    return {"routes": routes}
