"""Google Maps Platform calls: Routes API, Distance Matrix and reverse geocoding.

The API key is sent as a header or query parameter and never logged.
"""

import logging
from typing import Optional

import httpx

from busesuy.errors import ProviderError
from busesuy.models import Coordinate

logger = logging.getLogger("busesuy.google_maps")

ROUTES_API_URL = "https://routes.googleapis.com/directions/v2:computeRoutes"
DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"

ROUTES_FIELD_MASK = (
    "routes.legs,routes.duration,routes.distanceMeters,routes.polyline,"
    "routes.description,routes.warnings,routes.viewport"
)


def parse_location(value: Coordinate | str) -> Coordinate:
    """Accept a Coordinate or a "lat,lng" string."""
    if isinstance(value, Coordinate):
        return value
    try:
        lat, lng = (float(part) for part in value.split(","))
    except ValueError as e:
        raise ValueError(f"Expected 'lat,lng', got {value!r}") from e
    return Coordinate(lat=lat, lng=lng)


def _waypoint(coord: Coordinate) -> dict:
    return {"location": {"latLng": {"latitude": coord.lat, "longitude": coord.lng}}}


async def compute_routes(
    origin: Coordinate,
    destination: Coordinate,
    api_key: str,
    http_client: Optional[httpx.AsyncClient] = None,
    language: str = "es-419",
    region: str = "UY",
) -> dict:
    """Bus-only transit routes with alternatives.

    Returns the raw computeRoutes payload. Raises ProviderError when the
    provider cannot be reached or answers with an error.
    """
    if not api_key:
        raise ProviderError("Google Maps API key is not configured", status_code=500)

    body = {
        "origin": _waypoint(origin),
        "destination": _waypoint(destination),
        "travelMode": "TRANSIT",
        "computeAlternativeRoutes": True,
        "transitPreferences": {"allowedTravelModes": ["BUS"]},
        "languageCode": language,
        "regionCode": region,
    }
    headers = {
        "Content-Type": "application/json",
        "X-Goog-Api-Key": api_key,
        "X-Goog-FieldMask": ROUTES_FIELD_MASK,
    }

    try:
        if http_client:
            resp = await http_client.post(ROUTES_API_URL, json=body, headers=headers, timeout=15.0)
        else:
            async with httpx.AsyncClient(timeout=15.0) as client:
                resp = await client.post(ROUTES_API_URL, json=body, headers=headers)
    except httpx.HTTPError as e:
        logger.warning(f"Routes API request failed: {type(e).__name__}")
        raise ProviderError("Failed to fetch directions from Google Routes API") from e

    try:
        data = resp.json()
    except ValueError as e:
        logger.warning(f"Routes API returned non-JSON body (status {resp.status_code})")
        raise ProviderError("Google Routes API returned an unreadable response") from e

    error = data.get("error") if isinstance(data, dict) else None
    if not resp.is_success or error or not isinstance(data, dict):
        message = error.get("message") if isinstance(error, dict) else None
        message = message or f"status {resp.status_code}"
        logger.warning(f"Routes API error: {message}")
        raise ProviderError(f"Failed to get routes from Google: {message}")

    return data


async def distance_matrix(
    origin: Coordinate,
    destination: Coordinate,
    api_key: str,
    http_client: Optional[httpx.AsyncClient] = None,
    traffic: bool = True,
) -> Optional[dict]:
    """Single origin/destination Distance Matrix element, or None.

    With traffic=True the request asks for departure_time=now and the
    best_guess traffic model so that duration_in_traffic is returned.
    """
    if not api_key:
        logger.info("Google Maps key missing, cannot compute travel time")
        return None

    params = {
        "origins": f"{origin.lat},{origin.lng}",
        "destinations": f"{destination.lat},{destination.lng}",
        "key": api_key,
        "mode": "driving",
        "language": "es",
    }
    if traffic:
        params["departure_time"] = "now"
        params["traffic_model"] = "best_guess"

    try:
        if http_client:
            resp = await http_client.get(DISTANCE_MATRIX_URL, params=params, timeout=10.0)
        else:
            async with httpx.AsyncClient(timeout=10.0) as client:
                resp = await client.get(DISTANCE_MATRIX_URL, params=params)
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Distance Matrix request failed: {type(e).__name__}")
        return None

    if not isinstance(data, dict):
        logger.warning("Distance Matrix returned a non-object payload")
        return None
    if data.get("status") != "OK":
        logger.warning(f"Distance Matrix error: {data.get('status')} {data.get('error_message', '')}".rstrip())
        return None

    try:
        return data["rows"][0]["elements"][0]
    except (KeyError, IndexError, TypeError):
        logger.warning("Distance Matrix response has no element")
        return None


async def reverse_geocode(
    coord: Coordinate,
    api_key: str,
    http_client: Optional[httpx.AsyncClient] = None,
) -> str:
    """Short street address ("Av. 18 de Julio 1234") for a coordinate.

    Always returns a display string; failures map to fixed fallback texts.
    """
    params = {
        "latlng": f"{coord.lat},{coord.lng}",
        "key": api_key,
        "language": "es",
        "result_type": "street_address",
    }

    try:
        if http_client:
            resp = await http_client.get(GEOCODE_URL, params=params, timeout=10.0)
        else:
            async with httpx.AsyncClient(timeout=10.0) as client:
                resp = await client.get(GEOCODE_URL, params=params)
        if not resp.is_success:
            logger.error(f"Geocoding API answered {resp.status_code}")
            return "Address unavailable"
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Error calling Geocoding API: {type(e).__name__}")
        return "Error fetching address"

    if not isinstance(data, dict):
        return "Approximate location"

    results = data.get("results") or []
    if data.get("status") != "OK" or not results:
        logger.warning(f"Geocoding API returned status: {data.get('status')}")
        return "Approximate location"

    street = next((r for r in results if "street_address" in r.get("types", [])), None)
    if street:
        components = street.get("address_components", [])
        number = next((c for c in components if "street_number" in c.get("types", [])), None)
        route = next((c for c in components if "route" in c.get("types", [])), None)
        if route and number:
            return f"{route['long_name']} {number['long_name']}"
        return street.get("formatted_address", "").split(",")[0]

    return results[0].get("formatted_address", "").split(",")[0]
