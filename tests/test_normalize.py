import hashlib
import unittest
from datetime import datetime, timedelta, timezone

from compradar.ingestion.dates import to_iso
from compradar.ingestion.listing_types import RawListing
from compradar.processing.normalize import normalize_all, normalize_listing, with_link

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestNormalize(unittest.TestCase):
    def test_idempotent(self):
        raws = [
            RawListing(
                title="  Win   a Trip\n to Bali ",
                link="HTTPS://Travel.Example.com/win/?utm_source=nl&ref=home#top",
                source="  Travel Example ",
                created_at="Mon, 01 Jan 2024 00:00:00 GMT",
                deadline="31 December 2024",
                prize=" A week  in Bali ",
                tags=[" travel ", ""],
            ),
            RawListing(title="Win a TV", link="/relative/only", source=None, created_at="not a date"),
            RawListing(title="Win cash", link="//cdn.example.com/cash/", created_at=NOW + timedelta(days=30)),
            RawListing(title="Win a bike", link="bikes.example/win"),
        ]
        for raw in raws:
            once = normalize_listing(raw, now=NOW)
            self.assertEqual(normalize_listing(once, now=NOW), once)

    def test_fields(self):
        item = normalize_listing(
            RawListing(
                title="  Win   a Trip ",
                link="HTTPS://Travel.Example.com/win/?utm_source=nl&id=4#top",
                source=None,
                created_at="2024-01-01T00:00:00Z",
                deadline="2023-12-01",
                tags=["Travel"],
            ),
            now=NOW,
        )
        self.assertEqual(item.title, "Win a Trip")
        self.assertEqual(item.link, "https://travel.example.com/win?id=4")
        self.assertEqual(item.id, item.link)
        self.assertEqual(item.source, "travel.example.com")
        self.assertEqual(item.created_at, "2024-01-01T00:00:00.000Z")
        # past deadlines are kept for the freshness filter
        self.assertEqual(item.deadline, "2023-12-01T00:00:00.000Z")
        self.assertEqual(item.tags, ["Travel"])

    def test_future_created_at_is_clamped(self):
        item = normalize_listing(RawListing(title="Win", link="https://a.example/x", created_at=NOW + timedelta(days=365)), now=NOW)
        self.assertEqual(item.created_at, to_iso(NOW))

    def test_small_future_skew_is_tolerated(self):
        soon = NOW + timedelta(minutes=5)
        item = normalize_listing(RawListing(title="Win", link="https://a.example/x", created_at=soon), now=NOW)
        self.assertEqual(item.created_at, to_iso(soon))

    def test_future_deadline_is_not_clamped(self):
        later = NOW + timedelta(days=365)
        item = normalize_listing(RawListing(title="Win", link="https://a.example/x", deadline=later), now=NOW)
        self.assertEqual(item.deadline, to_iso(later))

    def test_linkless_id_is_title_source_hash(self):
        item = normalize_listing(RawListing(title=" Win a TV ", link="/relative", source="ACME "), now=NOW)
        self.assertEqual(item.link, "")
        self.assertEqual(item.source, "acme")
        self.assertEqual(item.id, hashlib.sha1("Win a TV|acme".encode("utf-8")).hexdigest())

    def test_unknown_source_without_link(self):
        item = normalize_listing(RawListing(title="Win a TV", link=""), now=NOW)
        self.assertEqual(item.source, "unknown")

    def test_unparseable_created_at_is_null(self):
        item = normalize_listing(RawListing(title="Win", link="https://a.example/x", created_at="soonish"), now=NOW)
        self.assertIsNone(item.created_at)

    def test_normalize_all_drops_blank_titles(self):
        items = normalize_all([RawListing(title="   ", link="https://a.example/1"), RawListing(title="Win", link="https://a.example/2")], now=NOW)
        self.assertEqual([i.link for i in items], ["https://a.example/2"])

    def test_with_link_rederives_source_and_id(self):
        item = normalize_listing(RawListing(title="Win", link="https://agg.example/x", source="Agg"), now=NOW)
        moved = with_link(item, "https://www.Brand.example/offer/?fbclid=1")
        self.assertEqual(moved.link, "https://www.brand.example/offer")
        self.assertEqual(moved.source, "brand.example")
        self.assertEqual(moved.id, moved.link)
        self.assertIs(with_link(item, ""), item)
        self.assertIs(with_link(item, "https://agg.example/x/"), item)


if __name__ == "__main__":
    unittest.main()
