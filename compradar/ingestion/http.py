"""Outbound HTTP for every pipeline stage.

Policy:
- Every request carries a descriptive User-Agent and an Accept header matching
  what we expect back (feed vs HTML).
- Redirects are followed; the post-redirect URL is reported back.
- Non-2xx, transport errors, timeouts, oversized bodies and blocked URLs all
  surface as FetchError so callers can apply their own fallback.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import requests


DEFAULT_USER_AGENT = "CompRadar/1.0 (+competition listings ingester)"

FEED_ACCEPT = (
    "application/rss+xml, application/atom+xml, application/feed+json;q=0.9, "
    "application/json;q=0.9, application/xml;q=0.8, text/xml;q=0.8, */*;q=0.5"
)
HTML_ACCEPT = "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8"


class FetchError(Exception):
    """A single request failed; never fatal for the run."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


@dataclass(frozen=True)
class FetchResult:
    url: str
    final_url: str
    status_code: int
    content_type: str
    content: bytes
    encoding: Optional[str] = None

    @property
    def text(self) -> str:
        try:
            return self.content.decode(self.encoding or "utf-8", errors="replace")
        except LookupError:
            return self.content.decode("utf-8", errors="replace")

    @property
    def is_html(self) -> bool:
        ct = self.content_type.lower()
        return "html" in ct or (not ct and self.content.lstrip()[:1] == b"<")


_PRIVATE_NETS = [
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]


def _is_private_ip(hostname: str) -> bool:
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return any(ip in net for net in _PRIVATE_NETS)


def validate_fetch_url(url: str) -> Optional[str]:
    """Return error string if URL should not be fetched (SSRF/abuse protections)."""
    try:
        p = urlparse(url)
    except ValueError:
        return "invalid_url"
    if p.scheme not in ("http", "https"):
        return "bad_scheme"
    host = (p.hostname or "").strip().lower()
    if not host:
        return "missing_host"
    if host in ("localhost", "localhost.localdomain"):
        return "blocked_host"
    if _is_private_ip(host):
        return "blocked_private_ip"
    return None


def fetch(
    url: str,
    *,
    accept: str = HTML_ACCEPT,
    timeout: float = 15.0,
    max_bytes: int = 2_000_000,
    user_agent: str = DEFAULT_USER_AGENT,
) -> FetchResult:
    err = validate_fetch_url(url)
    if err:
        raise FetchError(url, err)
    try:
        resp = requests.get(
            url,
            headers={"User-Agent": user_agent, "Accept": accept},
            timeout=(min(5.0, timeout), timeout),
            allow_redirects=True,
            stream=True,
        )
    except requests.RequestException as e:
        raise FetchError(url, f"{type(e).__name__}: {e}") from e
    try:
        if not 200 <= resp.status_code < 300:
            raise FetchError(url, f"http_{resp.status_code}")
        content = b""
        for chunk in resp.iter_content(chunk_size=64 * 1024):
            if not chunk:
                continue
            content += chunk
            if len(content) > max_bytes:
                raise FetchError(url, "too_large")
    except requests.RequestException as e:
        raise FetchError(url, f"{type(e).__name__}: {e}") from e
    finally:
        resp.close()
    content_type = resp.headers.get("Content-Type", "")
    return FetchResult(
        url=url,
        final_url=resp.url or url,
        status_code=resp.status_code,
        content_type=content_type,
        content=content,
        # requests assumes ISO-8859-1 for text/* without a charset; let the parsers sniff instead
        encoding=resp.encoding if "charset=" in content_type.lower() else None,
    )


@dataclass(frozen=True)
class HttpConfig:
    timeout: float = 15.0
    max_bytes: int = 2_000_000
    user_agent: str = DEFAULT_USER_AGENT


def fetch_html(url: str, config: Optional[HttpConfig] = None) -> FetchResult:
    c = config or HttpConfig()
    return fetch(url, accept=HTML_ACCEPT, timeout=c.timeout, max_bytes=c.max_bytes, user_agent=c.user_agent)


def fetch_feed(url: str, config: Optional[HttpConfig] = None) -> FetchResult:
    c = config or HttpConfig()
    return fetch(url, accept=FEED_ACCEPT, timeout=c.timeout, max_bytes=c.max_bytes, user_agent=c.user_agent)
