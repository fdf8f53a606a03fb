import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from busesuy.errors import AuthFailure, ProviderError
from busesuy.models import (
    Coordinate,
    DirectionsRequest,
    DirectionsResponse,
    EtaRequest,
    EtaResponse,
    LiveSessionRequest,
    LiveSnapshot,
    StopSearchResponse,
    UpcomingBusesResponse,
)

logger = logging.getLogger("busesuy.routes")

router = APIRouter()


def _get_state():
    from busesuy.main import app_state
    return app_state


def _endpoints(request: DirectionsRequest) -> tuple[Coordinate, Coordinate]:
    from busesuy.google_maps import parse_location

    if not request.origin or not request.destination:
        raise HTTPException(status_code=400, detail="Origin and destination are required")
    try:
        return parse_location(request.origin), parse_location(request.destination)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


async def _fetch_routes(request: DirectionsRequest) -> dict:
    from busesuy.google_maps import compute_routes

    origin, destination = _endpoints(request)
    state = _get_state()
    settings = state["settings"]
    try:
        return await compute_routes(
            origin,
            destination,
            api_key=settings.google_maps_api_key,
            http_client=state.get("http_client"),
        )
    except ProviderError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/health")
async def health():
    return {"status": "ok", "service": "BusesUY API"}


@router.get("/stm/status")
async def get_stm_status():
    """Re-check STM connectivity and resume or idle live sessions accordingly."""
    state = _get_state()
    available = await state["stm"].check_connection()
    state["stm_available"] = available
    state["live_sessions"].set_api_status(available)
    return {
        "available": available,
        "message": "Live arrivals active" if available else "STM API unreachable, showing schedules only",
    }


@router.post("/directions", response_model=DirectionsResponse)
async def get_directions(request: DirectionsRequest):
    """Bus itineraries from Google, translated into the internal shape."""
    from busesuy.translator import translate

    raw = await _fetch_routes(request)
    try:
        itineraries = translate(raw)
    except ProviderError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    logger.info(f"Directions: {len(itineraries)} itinerar{'y' if len(itineraries) == 1 else 'ies'}")
    return DirectionsResponse(routes=itineraries)


@router.post("/routes")
async def get_routes(request: DirectionsRequest):
    """Google routes re-shaped into DirectionsResult-compatible dictionaries."""
    from busesuy.translator import to_directions_result

    raw = await _fetch_routes(request)
    try:
        return to_directions_result(raw)
    except ProviderError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/eta", response_model=EtaResponse)
async def get_eta(request: EtaRequest):
    """Traffic-aware seconds from a bus position to a stop; null when unknown."""
    if not request.bus_location or not request.stop_location:
        raise HTTPException(status_code=400, detail="Missing busLocation or stopLocation")

    state = _get_state()
    estimate = await state["eta"].estimate(request.bus_location, request.stop_location)
    return EtaResponse(eta=estimate.eta_seconds)


@router.get("/stops/nearby", response_model=StopSearchResponse)
async def get_nearby_stops(
    lat: float = Query(...),
    lng: float = Query(...),
    radius_m: Optional[int] = Query(None, ge=1, le=2000),
):
    """STM stops near a point; without a radius the 200m then 500m policy applies."""
    state = _get_state()
    try:
        stops = await state["stm"].find_stops_near(Coordinate(lat=lat, lng=lng), radius_m)
    except AuthFailure as e:
        raise HTTPException(status_code=502, detail=f"STM authentication failed: {e}")
    return StopSearchResponse(stops=stops)


@router.get("/stops/{stop_id}/upcoming", response_model=UpcomingBusesResponse)
async def get_upcoming_buses(
    stop_id: int,
    lines: str = Query(..., description="Comma-separated STM line codes"),
    limit: Optional[int] = Query(None, ge=1, le=20),
):
    state = _get_state()
    line_list = [line.strip() for line in lines.split(",") if line.strip()]
    try:
        buses = await state["stm"].get_upcoming_buses(stop_id, line_list, limit)
    except AuthFailure as e:
        raise HTTPException(status_code=502, detail=f"STM authentication failed: {e}")
    return UpcomingBusesResponse(stop_id=stop_id, buses=buses)


@router.get("/stops/{stop_id}/arrivals", response_model=UpcomingBusesResponse)
async def get_stop_arrivals(stop_id: int):
    state = _get_state()
    try:
        buses = await state["stm"].get_arrivals_for_stop(stop_id)
    except AuthFailure as e:
        raise HTTPException(status_code=502, detail=f"STM authentication failed: {e}")
    return UpcomingBusesResponse(stop_id=stop_id, buses=buses)


@router.get("/geocode/reverse")
async def reverse_geocode(lat: float = Query(...), lng: float = Query(...)):
    from busesuy.google_maps import reverse_geocode as fetch_address

    state = _get_state()
    address = await fetch_address(
        Coordinate(lat=lat, lng=lng),
        api_key=state["settings"].google_maps_api_key,
        http_client=state.get("http_client"),
    )
    return {"address": address}


@router.post("/live-sessions", response_model=LiveSnapshot)
async def start_live_session(request: LiveSessionRequest):
    """Start live polling for the itinerary a view is showing.

    Any session the view already had is cancelled first.
    """
    state = _get_state()
    if not request.itinerary.transit_steps():
        raise HTTPException(status_code=400, detail="Itinerary has no transit steps to track")

    session = state["live_sessions"].start_session(request.view_id, request.itinerary)
    return session.snapshot()


@router.get("/live-sessions/{view_id}", response_model=LiveSnapshot)
async def get_live_session(view_id: str):
    state = _get_state()
    session = state["live_sessions"].get_session(view_id)
    if not session:
        raise HTTPException(status_code=404, detail="Live session not found")
    return session.snapshot()


@router.delete("/live-sessions/{view_id}")
async def end_live_session(view_id: str):
    state = _get_state()
    if not state["live_sessions"].end_session(view_id):
        raise HTTPException(status_code=404, detail="Live session not found")
    return {"view_id": view_id, "ended": True}
