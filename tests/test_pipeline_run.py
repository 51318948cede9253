import json
import os
import tempfile
import unittest
from contextlib import ExitStack
from datetime import datetime, timezone
from unittest import mock

from compradar.contracts.source_config import SourceConfigError
from compradar.ingestion.http import FetchError, FetchResult
from compradar.ingestion.listing_types import Listing
from compradar.pipeline.run import run_once, sort_catalog
from compradar.pipeline.settings import PipelineSettings

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
FEED_URL = "https://feed.example/rss"
INDEX = "https://www.comps.example/competitions/"
HOLIDAY = "https://www.competitions.com.au/win-a-holiday"

SOURCES = {
    "rss": [FEED_URL],
    "sites": [{"index": INDEX, "item_selector": ".card"}],
}

RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel><title>Feed</title>
  <item><title><![CDATA[Win a Trip]]></title><link>https://x.com/a?utm_source=nl</link>
        <pubDate>Mon, 01 Jan 2024 00:00:00 GMT</pubDate></item>
  <item><title>Win a holiday</title><link>{holiday}</link>
        <pubDate>Mon, 20 May 2024 00:00:00 GMT</pubDate></item>
  <item><title>Win last year's prize</title><link>https://x.com/old</link>
        <pubDate>Sat, 01 Jan 2022 00:00:00 GMT</pubDate></item>
</channel></rss>
""".format(holiday=HOLIDAY)

PAGES = {
    FEED_URL: RSS,
    INDEX: '<div class="card"><a href="/competitions/win-a-car">Win a car</a></div>',
    INDEX.rstrip("/") + "/win-a-car": """
        <html><head><meta property="article:published_time" content="2024-05-01T09:00:00Z"></head>
        <body><main><h1>Win a brand new car</h1><p>Entries close 31 December 2024</p></main></body></html>
    """,
    HOLIDAY: '<h1>Win a holiday</h1><a href="https://brand.example/win">Enter Now &rarr;</a>',
    "https://x.com/a": '<link rel="canonical" href="https://x.com/a/trip">',
    "https://brand.example/win": "<html></html>",
}


def _fetcher(pages):
    def fetch(url, config=None):
        if url not in pages:
            raise FetchError(url, "http_404")
        return FetchResult(
            url=url, final_url=url, status_code=200, content_type="text/html", content=pages[url].encode("utf-8")
        )

    return fetch


def _patched(stack, pages):
    fake = _fetcher(pages)
    for target in (
        "compradar.ingestion.feeds.fetch_feed",
        "compradar.crawling.site_crawler.fetch_html",
        "compradar.resolution.aggregators.fetch_html",
        "compradar.resolution.canonical.fetch_html",
    ):
        stack.enter_context(mock.patch(target, side_effect=fake))


class TestRunOnce(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = self._tmp.name
        self.sources_path = os.path.join(self.dir, "sources.json")
        with open(self.sources_path, "w", encoding="utf-8") as f:
            json.dump(SOURCES, f)
        self.settings = PipelineSettings(sources_file=self.sources_path, output_dir=os.path.join(self.dir, "public"))

    def tearDown(self):
        self._tmp.cleanup()

    def _read(self, path):
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def test_end_to_end(self):
        with ExitStack() as stack:
            _patched(stack, PAGES)
            items, health = run_once(self.settings, now=NOW, sleep=lambda s: None)

        catalog = self._read(self.settings.catalog_path)
        self.assertEqual([i["link"] for i in catalog], [i.link for i in items])
        self.assertEqual(
            [i["link"] for i in catalog],
            ["https://brand.example/win", "https://www.comps.example/competitions/win-a-car", "https://x.com/a/trip"],
        )
        car = catalog[1]
        self.assertEqual(car["deadline"], "2024-12-31T00:00:00.000Z")
        self.assertEqual(car["source"], "comps.example")

        report = self._read(self.settings.health_path)
        self.assertEqual(
            report["counts"],
            {"raw": 4, "normalized": 4, "upgraded": 1, "canonicalized": 1, "deduped": 4, "kept": 3},
        )
        self.assertEqual(report["sources"]["rssCount"], 1)
        self.assertEqual(report["sources"]["siteCount"], 1)
        self.assertEqual(report["sources"]["rss"][FEED_URL], {"items": 3})
        site = report["sources"]["sites"]["comps.example"]
        self.assertEqual(site["items"], 1)
        self.assertEqual(site["index"], INDEX)
        self.assertEqual(site["pagesCrawled"], 1)
        self.assertEqual(report["perSource"], {"brand.example": 1, "comps.example": 1, "x.com": 1})
        self.assertTrue(report["startedAt"].endswith("Z"))
        self.assertEqual(health.to_dict(), report)

    def test_resolution_can_be_disabled(self):
        settings = PipelineSettings(
            sources_file=self.sources_path,
            output_dir=os.path.join(self.dir, "public"),
            resolve_aggregators=False,
            resolve_canonical=False,
        )
        with ExitStack() as stack:
            _patched(stack, PAGES)
            items, health = run_once(settings, now=NOW, sleep=lambda s: None)
        self.assertIn(HOLIDAY, [i.link for i in items])
        self.assertEqual(health.counts["upgraded"], 0)
        self.assertEqual(health.counts["canonicalized"], 0)

    def test_every_source_failing_still_writes_artifacts(self):
        with ExitStack() as stack:
            _patched(stack, {})
            items, _ = run_once(self.settings, now=NOW, sleep=lambda s: None)

        self.assertEqual(items, [])
        self.assertEqual(self._read(self.settings.catalog_path), [])
        report = self._read(self.settings.health_path)
        self.assertEqual(set(report["counts"].values()), {0})
        self.assertEqual(report["sources"]["rss"][FEED_URL]["items"], 0)
        self.assertEqual(report["perSource"], {})

    def test_config_failure_aborts_before_any_fetch(self):
        settings = PipelineSettings(
            sources_file=os.path.join(self.dir, "missing.json"), output_dir=os.path.join(self.dir, "public")
        )
        with mock.patch("compradar.ingestion.feeds.fetch_feed") as fetch_feed, mock.patch(
            "compradar.crawling.site_crawler.fetch_html"
        ) as fetch_html:
            with self.assertRaises(SourceConfigError):
                run_once(settings, now=NOW)
        fetch_feed.assert_not_called()
        fetch_html.assert_not_called()
        self.assertFalse(os.path.exists(settings.catalog_path))
        self.assertFalse(os.path.exists(settings.health_path))


class TestSortCatalog(unittest.TestCase):
    def test_newest_first_then_title_undated_last(self):
        def item(title, created_at):
            return Listing(id=title, title=title, link="", source="s", created_at=created_at)

        out = sort_catalog(
            [
                item("b", "2024-01-01T00:00:00.000Z"),
                item("z", None),
                item("a", "2024-01-01T00:00:00.000Z"),
                item("c", "2024-03-01T00:00:00.000Z"),
            ]
        )
        self.assertEqual([i.title for i in out], ["c", "a", "b", "z"])


if __name__ == "__main__":
    unittest.main()
