import unittest
from dataclasses import replace

import httpx

from busesuy.eta import EtaEstimator
from busesuy.google_maps import DISTANCE_MATRIX_URL, GEOCODE_URL, ROUTES_API_URL
from busesuy.live_tracker import LiveArrivalTracker
from busesuy.main import app, app_state
from busesuy.polling import LiveSessionManager
from busesuy.stm_client import StmClient

from factories import (
    STM_BASE,
    STOP_2988,
    FailingToken,
    FakeUpstream,
    StaticToken,
    itinerary_with,
    matrix_response,
    north_of,
    routes_payload,
    stm_stop,
    transit_step,
    walk_step,
)

ORIGIN = {"lat": -34.8940, "lng": -56.1590}
DESTINATION = {"lat": -34.9110, "lng": -56.1520}


class ApiTestCase(unittest.IsolatedAsyncioTestCase):
    """Drives the router in-process with app_state wired to fake upstreams; the lifespan is not run."""

    async def asyncSetUp(self):
        self.upstream = FakeUpstream()
        self.http = self.upstream.client()
        self.stm = StmClient(StaticToken(), http_client=self.http, base_url=STM_BASE, retry_delay=0)
        eta = EtaEstimator("test-key", http_client=self.http)
        tracker = LiveArrivalTracker(self.stm, eta)
        self.sessions = LiveSessionManager(tracker.run_pass, interval=3600)

        self._saved_state = dict(app_state)
        app_state.update(
            settings=replace(app_state["settings"], google_maps_api_key="test-key"),
            http_client=self.http,
            stm=self.stm,
            eta=eta,
            tracker=tracker,
            stm_available=True,
            live_sessions=self.sessions,
        )
        self.client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")

    async def asyncTearDown(self):
        await self.sessions.shutdown()
        await self.client.aclose()
        await self.http.aclose()
        app_state.clear()
        app_state.update(self._saved_state)


class TestHealth(ApiTestCase):
    async def test_health(self):
        resp = await self.client.get("/api/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "ok")


class TestDirections(ApiTestCase):
    async def test_returns_translated_itineraries(self):
        self.upstream.on("POST", ROUTES_API_URL, json_body=routes_payload())

        resp = await self.client.post("/api/directions", json={"origin": ORIGIN, "destination": DESTINATION})

        self.assertEqual(resp.status_code, 200)
        routes = resp.json()["routes"]
        self.assertEqual(len(routes), 1)
        self.assertEqual(routes[0]["legs"][0]["steps"][1]["transit"]["line_short_name"], "185")

        request = self.upstream.requests[0]
        self.assertEqual(request.headers["X-Goog-Api-Key"], "test-key")
        self.assertIn("routes.legs", request.headers["X-Goog-FieldMask"])

    async def test_accepts_lat_lng_strings(self):
        self.upstream.on("POST", ROUTES_API_URL, json_body={})

        resp = await self.client.post("/api/directions", json={"origin": "-34.894,-56.159", "destination": "-34.911,-56.152"})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"routes": []})

    async def test_missing_endpoint(self):
        resp = await self.client.post("/api/directions", json={"origin": ORIGIN})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.upstream.requests, [])

    async def test_malformed_location(self):
        resp = await self.client.post("/api/directions", json={"origin": "somewhere", "destination": DESTINATION})
        self.assertEqual(resp.status_code, 400)

    async def test_provider_error(self):
        self.upstream.on("POST", ROUTES_API_URL, status=403, json_body={"error": {"message": "API key not valid"}})

        resp = await self.client.post("/api/directions", json={"origin": ORIGIN, "destination": DESTINATION})

        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.json(), {"error": "Failed to get routes from Google: API key not valid"})

    async def test_unusable_payload(self):
        self.upstream.on("POST", ROUTES_API_URL, json_body={"routes": {"unexpected": True}})
        resp = await self.client.post("/api/directions", json={"origin": ORIGIN, "destination": DESTINATION})
        self.assertEqual(resp.status_code, 502)

    async def test_missing_api_key(self):
        app_state["settings"] = replace(app_state["settings"], google_maps_api_key="")
        resp = await self.client.post("/api/directions", json={"origin": ORIGIN, "destination": DESTINATION})
        self.assertEqual(resp.status_code, 500)

    async def test_routes_compatibility_shape(self):
        self.upstream.on("POST", ROUTES_API_URL, json_body=routes_payload())

        resp = await self.client.post("/api/routes", json={"origin": ORIGIN, "destination": DESTINATION})

        self.assertEqual(resp.status_code, 200)
        leg = resp.json()["routes"][0]["legs"][0]
        self.assertEqual(leg["end_address"], "Pocitos")
        self.assertEqual(leg["steps"][1]["transit"]["line"]["short_name"], "185")


class TestEta(ApiTestCase):
    async def test_eta_seconds(self):
        self.upstream.on("GET", DISTANCE_MATRIX_URL, json_body=matrix_response(duration=250, in_traffic=300))

        resp = await self.client.post("/api/eta", json={"busLocation": ORIGIN, "stopLocation": DESTINATION})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"eta": 300})

    async def test_unknown_eta_is_null(self):
        self.upstream.on("GET", DISTANCE_MATRIX_URL, json_body=matrix_response(element_status="NOT_FOUND"))

        resp = await self.client.post("/api/eta", json={"busLocation": ORIGIN, "stopLocation": DESTINATION})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"eta": None})

    async def test_malformed_element_is_null(self):
        self.upstream.on("GET", DISTANCE_MATRIX_URL, json_body={"status": "OK", "rows": [{"elements": ["bogus"]}]})

        resp = await self.client.post("/api/eta", json={"busLocation": ORIGIN, "stopLocation": DESTINATION})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"eta": None})

    async def test_missing_location(self):
        resp = await self.client.post("/api/eta", json={"busLocation": ORIGIN})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"error": "Missing busLocation or stopLocation"})


class TestStops(ApiTestCase):
    async def test_nearby(self):
        self.upstream.on("GET", f"{STM_BASE}/buses/busstops", json_body=[stm_stop(2988, STOP_2988, "8 de Octubre")])

        resp = await self.client.get("/api/stops/nearby", params={"lat": STOP_2988.lat, "lng": STOP_2988.lng})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual([s["id"] for s in resp.json()["stops"]], [2988])

    async def test_nearby_auth_failure(self):
        app_state["stm"] = StmClient(FailingToken(), http_client=self.http, base_url=STM_BASE)
        resp = await self.client.get("/api/stops/nearby", params={"lat": STOP_2988.lat, "lng": STOP_2988.lng})
        self.assertEqual(resp.status_code, 502)

    async def test_upcoming(self):
        self.upstream.on("GET", f"{STM_BASE}/buses/busstops/2988/upcomingbuses",
                         json_body=[{"line": 185, "arrivalTime": 4}, {"line": 121, "arrivalTime": 11}])

        resp = await self.client.get("/api/stops/2988/upcoming", params={"lines": "185, 121", "limit": 2})

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["stop_id"], 2988)
        self.assertEqual([b["line"] for b in body["buses"]], ["185", "121"])
        self.assertEqual(self.upstream.requests[0].url.params["lines"], "185,121")

    async def test_reverse_geocode(self):
        self.upstream.on("GET", GEOCODE_URL, json_body={
            "status": "OK",
            "results": [{
                "types": ["street_address"],
                "formatted_address": "Av. 18 de Julio 1234, Montevideo, Uruguay",
                "address_components": [
                    {"long_name": "1234", "types": ["street_number"]},
                    {"long_name": "Av. 18 de Julio", "types": ["route"]},
                ],
            }],
        })

        resp = await self.client.get("/api/geocode/reverse", params={"lat": -34.905, "lng": -56.19})

        self.assertEqual(resp.json(), {"address": "Av. 18 de Julio 1234"})


class TestLiveSessions(ApiTestCase):
    def _itinerary_json(self, *steps):
        return itinerary_with(*steps).model_dump(mode="json")

    async def test_session_lifecycle(self):
        body = {"view_id": "trip-1", "itinerary": self._itinerary_json(transit_step(STOP_2988))}

        resp = await self.client.post("/api/live-sessions", json=body)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["state"], "active")

        resp = await self.client.get("/api/live-sessions/trip-1")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["view_id"], "trip-1")

        resp = await self.client.delete("/api/live-sessions/trip-1")
        self.assertEqual(resp.json(), {"view_id": "trip-1", "ended": True})

        resp = await self.client.get("/api/live-sessions/trip-1")
        self.assertEqual(resp.status_code, 404)

    async def test_itinerary_without_transit(self):
        walk = walk_step(STOP_2988, north_of(STOP_2988, 300))
        resp = await self.client.post("/api/live-sessions", json={"view_id": "trip-1", "itinerary": self._itinerary_json(walk)})
        self.assertEqual(resp.status_code, 400)

    async def test_end_unknown_session(self):
        resp = await self.client.delete("/api/live-sessions/nope")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json(), {"error": "Live session not found"})

    async def test_status_check_idles_sessions_when_stm_unreachable(self):
        body = {"view_id": "trip-1", "itinerary": self._itinerary_json(transit_step(STOP_2988))}
        await self.client.post("/api/live-sessions", json=body)
        app_state["stm"] = StmClient(FailingToken(), http_client=self.http, base_url=STM_BASE)

        resp = await self.client.get("/api/stm/status")

        self.assertEqual(resp.json()["available"], False)
        snapshot = (await self.client.get("/api/live-sessions/trip-1")).json()
        self.assertEqual(snapshot["state"], "idle")
        self.assertEqual(snapshot["last_error"], "authority_unavailable")

        app_state["stm"] = self.stm
        resp = await self.client.get("/api/stm/status")

        self.assertEqual(resp.json()["available"], True)
        self.assertEqual((await self.client.get("/api/live-sessions/trip-1")).json()["state"], "active")
