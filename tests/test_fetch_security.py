import unittest
from unittest import mock

import requests

from compradar.ingestion.http import FEED_ACCEPT, FetchError, fetch, fetch_feed, validate_fetch_url


def _response(status=200, body=b"<html></html>", url="https://example.com/final", content_type="text/html; charset=utf-8"):
    resp = mock.MagicMock()
    resp.status_code = status
    resp.url = url
    resp.headers = {"Content-Type": content_type}
    resp.encoding = "utf-8"
    resp.iter_content.return_value = [body]
    return resp


class TestFetchUrlGuard(unittest.TestCase):
    def test_blocks_localhost(self):
        self.assertEqual(validate_fetch_url("http://localhost:1234/"), "blocked_host")

    def test_blocks_private_ip(self):
        self.assertEqual(validate_fetch_url("http://127.0.0.1:1234/"), "blocked_private_ip")
        self.assertEqual(validate_fetch_url("http://192.168.1.10/"), "blocked_private_ip")

    def test_blocks_non_http_scheme(self):
        self.assertEqual(validate_fetch_url("file:///etc/passwd"), "bad_scheme")

    def test_blocked_url_raises_without_request(self):
        with mock.patch("compradar.ingestion.http.requests.get") as get:
            with self.assertRaises(FetchError) as ctx:
                fetch("http://localhost/")
        get.assert_not_called()
        self.assertEqual(ctx.exception.reason, "blocked_host")


class TestFetch(unittest.TestCase):
    def test_non_2xx_is_failure(self):
        resp = _response(status=404)
        with mock.patch("compradar.ingestion.http.requests.get", return_value=resp):
            with self.assertRaises(FetchError) as ctx:
                fetch("https://example.com/missing")
        self.assertEqual(ctx.exception.reason, "http_404")
        resp.close.assert_called_once()

    def test_transport_error_is_failure(self):
        with mock.patch("compradar.ingestion.http.requests.get", side_effect=requests.ConnectTimeout("slow")):
            with self.assertRaises(FetchError):
                fetch("https://example.com/slow")

    def test_body_cap(self):
        resp = _response(body=b"x" * 2048)
        with mock.patch("compradar.ingestion.http.requests.get", return_value=resp):
            with self.assertRaises(FetchError) as ctx:
                fetch("https://example.com/big", max_bytes=1024)
        self.assertEqual(ctx.exception.reason, "too_large")

    def test_success_reports_final_url_and_headers_sent(self):
        resp = _response(body=b"<rss></rss>", url="https://example.com/feed.xml", content_type="application/rss+xml")
        with mock.patch("compradar.ingestion.http.requests.get", return_value=resp) as get:
            result = fetch_feed("https://example.com/feed")
        self.assertEqual(result.final_url, "https://example.com/feed.xml")
        self.assertEqual(result.content, b"<rss></rss>")
        self.assertIsNone(result.encoding)
        headers = get.call_args.kwargs["headers"]
        self.assertEqual(headers["Accept"], FEED_ACCEPT)
        self.assertIn("CompRadar", headers["User-Agent"])
        self.assertTrue(get.call_args.kwargs["allow_redirects"])


if __name__ == "__main__":
    unittest.main()
