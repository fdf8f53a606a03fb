import unittest
from datetime import datetime, timedelta, timezone

from busesuy.models import Freshness, LiveVehicle
from busesuy.vehicles import classify_freshness, select_vehicle, signal_age_seconds

from factories import STOP_2988, north_of

NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


def _vehicle(vehicle_id, meters, line="185", destination="Pocitos", age=10):
    return LiveVehicle(
        line=line,
        vehicle_id=vehicle_id,
        coordinate=north_of(STOP_2988, meters),
        destination_text=destination,
        timestamp_utc=NOW - timedelta(seconds=age),
    )


class TestSelectVehicle(unittest.TestCase):
    def test_picks_closest_to_stop(self):
        candidates = [_vehicle("a", 800), _vehicle("b", 150), _vehicle("c", 3000)]
        self.assertEqual(select_vehicle(candidates, "185", None, STOP_2988).vehicle_id, "b")

    def test_no_candidates(self):
        self.assertIsNone(select_vehicle([], "185", None, STOP_2988))

    def test_other_lines_ignored(self):
        candidates = [_vehicle("a", 50, line="181"), _vehicle("b", 900)]
        self.assertEqual(select_vehicle(candidates, "185", None, STOP_2988).vehicle_id, "b")

    def test_destination_filter(self):
        candidates = [
            _vehicle("a", 100, destination="Casabó"),
            _vehicle("b", 600, destination="Pocitos (por Bv. Artigas)"),
        ]
        self.assertEqual(select_vehicle(candidates, "185", "Pocitos", STOP_2988).vehicle_id, "b")

    def test_destination_filter_is_case_sensitive(self):
        candidates = [_vehicle("a", 100, destination="POCITOS")]
        self.assertIsNone(select_vehicle(candidates, "185", "Pocitos", STOP_2988))

    def test_destination_filter_excludes_unknown_destination(self):
        candidates = [_vehicle("a", 100, destination=None)]
        self.assertIsNone(select_vehicle(candidates, "185", "Pocitos", STOP_2988))


class TestFreshness(unittest.TestCase):
    def test_buckets(self):
        self.assertEqual(classify_freshness(30), Freshness.FRESH)
        self.assertEqual(classify_freshness(90), Freshness.AGING)
        self.assertEqual(classify_freshness(200), Freshness.STALE)
        self.assertEqual(classify_freshness(None), Freshness.STALE)

    def test_boundaries(self):
        self.assertEqual(classify_freshness(59.9), Freshness.FRESH)
        self.assertEqual(classify_freshness(60), Freshness.AGING)
        self.assertEqual(classify_freshness(120), Freshness.AGING)
        self.assertEqual(classify_freshness(120.5), Freshness.STALE)

    def test_signal_age(self):
        self.assertEqual(signal_age_seconds(_vehicle("a", 0, age=42), NOW), 42.0)

    def test_signal_age_without_timestamp(self):
        vehicle = _vehicle("a", 0).model_copy(update={"timestamp_utc": None})
        self.assertIsNone(signal_age_seconds(vehicle, NOW))
