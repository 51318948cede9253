import unittest
from datetime import datetime, timedelta, timezone

from compradar.ingestion.dates import parse_timestamp, to_iso

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestTimestamps(unittest.TestCase):
    def test_offsets_are_converted_to_utc(self):
        dt = parse_timestamp("2024-03-01T12:00:00+02:00", now=NOW)
        self.assertEqual(to_iso(dt), "2024-03-01T10:00:00.000Z")

    def test_missing_year_comes_from_now(self):
        self.assertEqual(to_iso(parse_timestamp("31 December", now=NOW)), "2024-12-31T00:00:00.000Z")

    def test_unparseable_is_none(self):
        self.assertIsNone(parse_timestamp("soon", now=NOW))
        self.assertIsNone(parse_timestamp("   ", now=NOW))

    def test_instants_outside_utc_range_are_none(self):
        self.assertIsNone(parse_timestamp("0001-01-01T00:00:00+05:00", now=NOW))
        self.assertIsNone(parse_timestamp("9999-12-31T23:00:00-05:00", now=NOW))
        ancient = datetime(1, 1, 1, tzinfo=timezone(timedelta(hours=5)))
        self.assertIsNone(parse_timestamp(ancient))
        self.assertIsNone(to_iso(ancient))


if __name__ == "__main__":
    unittest.main()
