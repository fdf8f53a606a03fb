import unittest

import httpx

from busesuy.eta import EtaEstimator, format_eta, format_scheduled
from busesuy.google_maps import DISTANCE_MATRIX_URL
from busesuy.models import Coordinate

from factories import STOP_2988, FakeUpstream, matrix_response, north_of

BUS = north_of(STOP_2988, 400)


class TestEtaEstimator(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.upstream = FakeUpstream()
        self.http = self.upstream.client()
        self.estimator = EtaEstimator("test-key", http_client=self.http)

    async def asyncTearDown(self):
        await self.http.aclose()

    async def test_prefers_duration_in_traffic(self):
        self.upstream.on("GET", DISTANCE_MATRIX_URL, json_body=matrix_response(duration=240, in_traffic=300))

        estimate = await self.estimator.estimate(BUS, STOP_2988, signal_age_seconds=10.0)

        self.assertEqual(estimate.eta_seconds, 300)
        self.assertEqual(estimate.signal_age_seconds, 10.0)

        params = self.upstream.requests[0].url.params
        self.assertEqual(params["departure_time"], "now")
        self.assertEqual(params["traffic_model"], "best_guess")
        self.assertEqual(params["origins"], f"{BUS.lat},{BUS.lng}")
        self.assertEqual(params["destinations"], f"{STOP_2988.lat},{STOP_2988.lng}")

    async def test_falls_back_to_duration(self):
        self.upstream.on("GET", DISTANCE_MATRIX_URL, json_body=matrix_response(duration=240))
        self.assertEqual((await self.estimator.estimate(BUS, STOP_2988)).eta_seconds, 240)

    async def test_request_error_status(self):
        self.upstream.on("GET", DISTANCE_MATRIX_URL, json_body=matrix_response(status="REQUEST_DENIED"))

        estimate = await self.estimator.estimate(BUS, STOP_2988, signal_age_seconds=10.0)

        self.assertIsNone(estimate.eta_seconds)
        self.assertIsNone(estimate.signal_age_seconds)

    async def test_no_route_between_points(self):
        self.upstream.on("GET", DISTANCE_MATRIX_URL, json_body=matrix_response(element_status="ZERO_RESULTS"))
        self.assertIsNone((await self.estimator.estimate(BUS, STOP_2988)).eta_seconds)

    async def test_http_error(self):
        self.upstream.on("GET", DISTANCE_MATRIX_URL, status=500, json_body={})
        self.assertIsNone((await self.estimator.estimate(BUS, STOP_2988)).eta_seconds)

    async def test_element_that_is_not_an_object(self):
        self.upstream.on("GET", DISTANCE_MATRIX_URL, json_body={"status": "OK", "rows": [{"elements": ["bogus"]}]})

        estimate = await self.estimator.estimate(BUS, STOP_2988, signal_age_seconds=10.0)

        self.assertIsNone(estimate.eta_seconds)
        self.assertIsNone(estimate.signal_age_seconds)

    async def test_non_numeric_duration(self):
        element = {"status": "OK", "duration": {"text": "?", "value": "n/a"}}
        self.upstream.on("GET", DISTANCE_MATRIX_URL, json_body={"status": "OK", "rows": [{"elements": [element]}]})

        self.assertIsNone((await self.estimator.estimate(BUS, STOP_2988)).eta_seconds)

    async def test_duration_that_is_not_an_object(self):
        element = {"status": "OK", "duration_in_traffic": 300}
        self.upstream.on("GET", DISTANCE_MATRIX_URL, json_body={"status": "OK", "rows": [{"elements": [element]}]})

        self.assertIsNone((await self.estimator.estimate(BUS, STOP_2988)).eta_seconds)

    async def test_missing_key_makes_no_request(self):
        estimator = EtaEstimator("", http_client=self.http)
        self.assertIsNone((await estimator.estimate(BUS, STOP_2988)).eta_seconds)
        self.assertEqual(self.upstream.requests, [])


class TestFormatting(unittest.TestCase):
    def test_format_eta(self):
        self.assertEqual(format_eta(300), "5 min")
        self.assertEqual(format_eta(89), "1 min")
        self.assertEqual(format_eta(20), "Arriving")
        self.assertEqual(format_eta(None), "No live data")

    def test_format_scheduled(self):
        self.assertEqual(format_scheduled(7), "7 min (scheduled)")
        self.assertEqual(format_scheduled(0), "Arriving")
        self.assertEqual(format_scheduled(None), "See schedule")
