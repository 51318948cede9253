"""Canonical URL resolution.

Every linked listing is fetched once (redirects followed). The post-redirect
URL becomes the primary link unless the page declares a usable canonical URL.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from compradar.ingestion.http import FetchError, HttpConfig, fetch_html
from compradar.ingestion.listing_types import Listing
from compradar.ingestion.url_utils import host_of, to_absolute
from compradar.processing.normalize import with_link
from compradar.resolution.pool import run_bounded

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CanonicalResult:
    primary: str
    final: str


CANONICAL_HINTS = (
    ("link", {"rel": "canonical"}, "href"),
    ("meta", {"property": "og:url"}, "content"),
    ("meta", {"name": "twitter:url"}, "content"),
    ("meta", {"property": "twitter:url"}, "content"),
)


def declared_canonical(html: str, base_url: str) -> Optional[str]:
    soup = BeautifulSoup(html, "html.parser")
    for tag, attrs, attr in CANONICAL_HINTS:
        el = soup.find(tag, attrs=attrs)
        value = (el.get(attr) or "").strip() if el is not None else ""
        if value:
            return to_absolute(base_url, value)
    return None


def is_degenerate(candidate: str, final: str) -> bool:
    """Root or single-segment canonical pointing at another host (e.g. a site homepage)."""
    segments = [s for s in urlparse(candidate).path.split("/") if s]
    return len(segments) <= 1 and host_of(candidate) != host_of(final)


def resolve_url(link: str, http: Optional[HttpConfig] = None) -> CanonicalResult:
    try:
        resp = fetch_html(link, http)
    except FetchError as e:
        logger.debug("[canonical] fetch failed %s (%s)", link, e.reason)
        return CanonicalResult(primary=link, final=link)
    final = resp.final_url or link
    if not resp.is_html:
        return CanonicalResult(primary=final, final=final)
    candidate = declared_canonical(resp.text, final)
    if candidate and not is_degenerate(candidate, final):
        return CanonicalResult(primary=candidate, final=final)
    return CanonicalResult(primary=final, final=final)


def resolve_one(listing: Listing, http: Optional[HttpConfig] = None) -> Listing:
    if not listing.link:
        return listing
    result = resolve_url(listing.link, http)
    return with_link(listing, result.primary)


def resolve_canonical(
    listings: Sequence[Listing],
    http: Optional[HttpConfig] = None,
    *,
    concurrency: int = 8,
) -> Tuple[List[Listing], int]:
    out = run_bounded(
        listings,
        lambda x: resolve_one(x, http),
        size=concurrency,
        fallback=lambda x: x,
        name="canonical",
    )
    changed = sum(1 for before, after in zip(listings, out) if after.link != before.link)
    logger.info("[canonical] %d/%d link(s) changed", changed, len(out))
    return out, changed
