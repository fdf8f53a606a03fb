"""Montevideo STM transit-authority API client.

Fails soft on data (empty list plus a log line) and loud on auth
(AuthFailure from the token step propagates).
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, Sequence

import httpx
from pydantic import BaseModel, ValidationError, field_validator

from busesuy.config import STM_API_BASE_URL
from busesuy.errors import AuthFailure, UpstreamDataUnavailable
from busesuy.models import AuthorityStop, Coordinate, LiveVehicle, UpcomingBus

logger = logging.getLogger("busesuy.stm")

RETRY_DELAY_SEC = 0.5


class TokenSource(Protocol):
    async def get_token(self) -> str: ...

    def invalidate(self) -> None: ...


@dataclass(frozen=True)
class StopSearchPolicy:
    """Radii tried in order; the next one only when the previous found nothing."""
    radii: tuple[int, ...] = (200, 500)


# --- Raw STM payload shapes, validated at the boundary ---


def _line_to_str(value: Any) -> Any:
    # The feed sends lines as "185", 185 or {"value": 185}
    if isinstance(value, dict):
        value = value.get("value")
    if value is None:
        return value
    return str(value)


class _GeoPoint(BaseModel):
    coordinates: tuple[float, float]  # [lng, lat]

    def to_coordinate(self) -> Coordinate:
        lng, lat = self.coordinates
        return Coordinate(lat=lat, lng=lng)


class _RawBusStop(BaseModel):
    busstopId: int
    name: str = ""
    location: _GeoPoint


class _RawArrival(BaseModel):
    minutes: Optional[int] = None
    lastUpdate: Optional[str] = None
    busId: Optional[str] = None

    @field_validator("busId", mode="before")
    @classmethod
    def coerce_bus_id(cls, v):
        return None if v is None else str(v)


class _RawUpcomingBus(BaseModel):
    line: str
    destination: Optional[str] = None
    arrival: Optional[_RawArrival] = None
    arribos: list[_RawArrival] = []
    arrivalTime: Optional[int] = None

    @field_validator("line", mode="before")
    @classmethod
    def normalize_line(cls, v):
        return _line_to_str(v)

    def to_model(self) -> UpcomingBus:
        arrival = self.arrival or (self.arribos[0] if self.arribos else None)
        minutes = arrival.minutes if arrival and arrival.minutes is not None else self.arrivalTime
        return UpcomingBus(
            line=self.line,
            destination=self.destination,
            arrival_minutes=minutes,
            bus_id=arrival.busId if arrival else None,
            last_update=arrival.lastUpdate if arrival else None,
        )


class _RawBus(BaseModel):
    id: str
    line: str
    destination: Optional[str] = None
    location: _GeoPoint
    timestamp: Optional[datetime] = None

    @field_validator("line", mode="before")
    @classmethod
    def normalize_line(cls, v):
        return _line_to_str(v)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return None if v is None else str(v)

    def to_model(self) -> LiveVehicle:
        ts = self.timestamp
        if ts is not None and ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return LiveVehicle(
            line=self.line,
            vehicle_id=self.id,
            coordinate=self.location.to_coordinate(),
            destination_text=self.destination,
            timestamp_utc=ts,
        )


class _RawStopArrival(BaseModel):
    bus: Optional[_RawBus] = None
    eta: Optional[int] = None  # seconds, -1 for scheduled


def _decode_list(payload: Any, model: type[BaseModel], what: str) -> list:
    """Validate a list payload item by item; a non-list payload is unavailable data."""
    if not isinstance(payload, list):
        raise UpstreamDataUnavailable(f"{what}: expected a list, got {type(payload).__name__}")

    items = []
    for raw in payload:
        try:
            items.append(model.model_validate(raw))
        except ValidationError as e:
            logger.warning(f"Skipping malformed {what} record: {e.error_count()} validation error(s)")
    return items


class StmClient:
    """Typed wrapper over the STM bus endpoints."""

    def __init__(
        self,
        credentials: TokenSource,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: str = STM_API_BASE_URL,
        stop_policy: StopSearchPolicy = StopSearchPolicy(),
        timeout: float = 10.0,
        retry_delay: float = RETRY_DELAY_SEC,
    ):
        self.credentials = credentials
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.stop_policy = stop_policy
        self.timeout = timeout
        self.retry_delay = retry_delay

    async def _get(self, path: str, params: Optional[dict] = None, retries: int = 1) -> Any:
        """GET an STM path and return parsed JSON, or [] on any data failure.

        AuthFailure from the token step is not caught.
        """
        token = await self.credentials.get_token()
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        url = f"{self.base_url}{path}"

        try:
            if self.http_client:
                resp = await self.http_client.get(url, params=params, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.get(url, params=params, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"STM request to {path} failed: {type(e).__name__}: {e}")
            if retries > 0:
                logger.info(f"Retrying {path} after transport error ({retries - 1} left)")
                await asyncio.sleep(self.retry_delay)
                return await self._get(path, params, retries - 1)
            return []

        if not resp.is_success:
            if resp.status_code == 401 and retries > 0:
                # Token revoked before its expiry
                logger.warning(f"STM rejected the bearer token for {path}, fetching a new one")
                self.credentials.invalidate()
                return await self._get(path, params, retries - 1)
            if resp.status_code >= 500 and retries > 0:
                logger.warning(f"STM server error for {path}. Status: {resp.status_code}. Retrying ({retries - 1} left)")
                await asyncio.sleep(self.retry_delay)
                return await self._get(path, params, retries - 1)
            logger.error(f"STM request to {path} failed with status {resp.status_code}")
            return []

        if resp.status_code == 204 or not resp.text.strip():
            return []

        try:
            return resp.json()
        except ValueError:
            logger.warning(f"STM response for {path} is not valid JSON")
            return []

    async def check_connection(self) -> bool:
        """True when a token can currently be obtained."""
        try:
            await self.credentials.get_token()
            return True
        except AuthFailure:
            return False

    async def find_stops_near(self, coord: Coordinate, radius_m: Optional[int] = None) -> list[AuthorityStop]:
        """Authority stops around coord.

        Without an explicit radius, every radius of the stop policy is tried in
        order until one returns stops.
        """
        radii = (radius_m,) if radius_m is not None else self.stop_policy.radii

        for radius in radii:
            payload = await self._get(
                "/buses/busstops",
                params={"lat": f"{coord.lat:.6f}", "lon": f"{coord.lng:.6f}", "dist": str(radius)},
            )
            try:
                stops = _decode_list(payload, _RawBusStop, "bus stop")
            except UpstreamDataUnavailable as e:
                logger.warning(f"Stop lookup unavailable: {e}")
                return []

            if stops:
                return [
                    AuthorityStop(id=s.busstopId, name=s.name, coordinate=s.location.to_coordinate())
                    for s in stops
                ]
            logger.info(f"No STM stops within {radius}m of ({coord.lat:.5f}, {coord.lng:.5f})")

        return []

    async def get_upcoming_buses(
        self,
        stop_id: int,
        lines: Sequence[str],
        limit: Optional[int] = None,
    ) -> list[UpcomingBus]:
        params = {"lines": ",".join(lines)}
        if limit is not None:
            params["amountperline"] = str(limit)

        payload = await self._get(f"/buses/busstops/{stop_id}/upcomingbuses", params=params)
        try:
            buses = _decode_list(payload, _RawUpcomingBus, "upcoming bus")
        except UpstreamDataUnavailable as e:
            logger.warning(f"Upcoming buses for stop {stop_id} unavailable: {e}")
            return []

        result = [b.to_model() for b in buses]
        return result[:limit] if limit is not None else result

    async def get_vehicle_positions(self, lines: Sequence[str]) -> list[LiveVehicle]:
        lines = [line for line in lines if line]
        if not lines:
            return []

        payload = await self._get("/buses", params={"lines": ",".join(lines)})
        try:
            buses = _decode_list(payload, _RawBus, "bus position")
        except UpstreamDataUnavailable as e:
            logger.warning(f"Vehicle positions for lines {lines} unavailable: {e}")
            return []

        return [b.to_model() for b in buses]

    async def get_arrivals_for_stop(self, stop_id: int) -> list[UpcomingBus]:
        """Authority arrival predictions for one stop, across all lines."""
        payload = await self._get(f"/buses/busstops/{stop_id}/arrivals")
        try:
            arrivals = _decode_list(payload, _RawStopArrival, "stop arrival")
        except UpstreamDataUnavailable as e:
            logger.warning(f"Arrivals for stop {stop_id} unavailable: {e}")
            return []

        result = []
        for a in arrivals:
            if a.bus is None:
                continue
            minutes = None if a.eta is None or a.eta < 0 else round(a.eta / 60)
            result.append(UpcomingBus(
                line=a.bus.line,
                destination=a.bus.destination,
                arrival_minutes=minutes,
                bus_id=a.bus.id,
                last_update=a.bus.timestamp.isoformat() if a.bus.timestamp else None,
            ))
        return result
