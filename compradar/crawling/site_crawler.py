"""Site crawler: listing index pages -> detail pages -> RawListing.

Crawling is strictly sequential per site and throttled per request. Link
discovery, path policy and detail extraction are separate steps so each can be
tested on static HTML.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from bs4 import BeautifulSoup

from compradar.contracts.source_config import SiteSource
from compradar.crawling.extractors import (
    Page,
    extract_deadline,
    extract_prize,
    extract_published,
    extract_title,
    surrounding_text,
)
from compradar.ingestion.dates import utc_now
from compradar.ingestion.http import FetchError, HttpConfig, fetch_html
from compradar.ingestion.listing_types import RawListing
from compradar.ingestion.url_utils import clean_url, host_of, to_absolute

logger = logging.getLogger(__name__)


FALLBACK_HREF_RE = re.compile(r"win|prize|competitions?|giveaway|contest", re.I)
COMPETITION_KEYWORD_RE = re.compile(
    r"\b(?:win|wins|winner|prizes?|competitions?|comps?|giveaways?|contests?|sweepstakes?|raffles?|enter)\b", re.I
)
GENERIC_LISTING_RE = re.compile(r"competitions?|giveaways?|contests?|sweepstakes", re.I)
GENERIC_TITLE_MAX_LEN = 40


@dataclass(frozen=True)
class CrawlOptions:
    http: HttpConfig = HttpConfig()
    default_pages: int = 1
    default_page_param: str = "page"
    require_competition_keyword: bool = True
    reject_generic_listings: bool = True


@dataclass(frozen=True)
class SiteStats:
    label: str
    index: str
    index_pages: int = 0
    links_indexed: int = 0
    links_kept: int = 0
    detail_pages: int = 0
    items: int = 0
    rejected: int = 0


class _Throttle:
    """Sleeps ``delay`` seconds before every request except the first."""

    def __init__(self, delay: float, sleep: Callable[[float], None]):
        self.delay = max(0.0, delay)
        self.sleep = sleep
        self._started = False

    def wait(self) -> None:
        if self._started and self.delay > 0:
            self.sleep(self.delay)
        self._started = True


# -----------------------------
# Index pages / link discovery
# -----------------------------
def index_page_urls(index_url: str, pages: int, page_param: str) -> List[str]:
    """Page 1 is the index itself; pages 2..N set ``page_param`` in the query."""
    urls = [index_url]
    p = urlparse(index_url)
    for n in range(2, max(1, pages) + 1):
        query = [(k, v) for k, v in parse_qsl(p.query, keep_blank_values=True) if k != page_param]
        query.append((page_param, str(n)))
        urls.append(urlunparse(p._replace(query=urlencode(query))))
    return urls


def section_prefix(index_url: str) -> str:
    segments = [s for s in urlparse(index_url).path.split("/") if s]
    return f"/{segments[0]}/" if segments else "/"


def path_allowed(path: str, *, allow: Sequence[str], block: Sequence[str], default_prefix: str) -> bool:
    """Block patterns exclude first; then allow patterns (or the index section) must match."""
    if any(re.search(pat, path) for pat in block):
        return False
    if allow:
        return any(re.search(pat, path) for pat in allow)
    return path.startswith(default_prefix) or path == default_prefix.rstrip("/")


def _anchor_hrefs(elements) -> List[str]:
    out = []
    for el in elements:
        a = el if el.name == "a" else el.find("a", href=True)
        if a is not None and a.get("href"):
            out.append(a["href"])
    return out


def candidate_hrefs(soup: BeautifulSoup, selector: Optional[str], base_host: str, page_url: str) -> List[str]:
    """Selector matches, all anchors without a selector, or the keyword fallback when the selector is empty."""
    if selector:
        try:
            hrefs = _anchor_hrefs(soup.select(selector))
        except (ValueError, NotImplementedError) as e:
            logger.warning("[%s] bad selector %r: %s", base_host, selector, e)
            hrefs = []
        if hrefs:
            return hrefs
        logger.info('[%s] no matches for "%s". Using smart fallback', base_host, selector)
        return [h for h in _anchor_hrefs(soup.find_all("a", href=True)) if _fallback_ok(h, base_host, page_url)]
    return _anchor_hrefs(soup.find_all("a", href=True))


def _fallback_ok(href: str, base_host: str, page_url: str) -> bool:
    h = href.strip()
    if h.startswith("//"):
        return False
    if not h.startswith("/"):
        absolute = to_absolute(page_url, h)
        if not absolute or host_of(absolute) != base_host:
            return False
        h = urlparse(absolute).path
    return bool(FALLBACK_HREF_RE.search(h))


def discover_links(
    site: SiteSource, page_url: str, html: str, *, seen: Sequence[str] = ()
) -> Tuple[List[str], int]:
    """Return (new cleaned detail URLs in discovery order, raw candidate count) for one index page."""
    soup = BeautifulSoup(html, "html.parser")
    raw = candidate_hrefs(soup, site.href_selector, site.host, page_url)
    known = set(seen)
    prefix = section_prefix(site.index)
    out: List[str] = []
    for href in raw:
        absolute = to_absolute(page_url, href)
        if not absolute:
            continue
        if host_of(absolute) != site.host:
            continue
        key = clean_url(absolute)
        if key in known:
            continue
        path = urlparse(key).path or "/"
        if not path_allowed(path, allow=site.allow_patterns, block=site.block_patterns, default_prefix=prefix):
            continue
        known.add(key)
        out.append(key)
    return out, len(raw)


# -----------------------------
# Detail pages
# -----------------------------
def looks_like_competition(
    title: str,
    context: str,
    deadline: Optional[str],
    *,
    require_keyword: bool = True,
    reject_generic: bool = True,
) -> bool:
    if reject_generic and not deadline and len(title) <= GENERIC_TITLE_MAX_LEN and GENERIC_LISTING_RE.search(title):
        return False
    if require_keyword and not (COMPETITION_KEYWORD_RE.search(title) or COMPETITION_KEYWORD_RE.search(context)):
        return False
    return True


def extract_listing(
    site: SiteSource, url: str, html: str, *, now: datetime, options: CrawlOptions = CrawlOptions()
) -> Optional[RawListing]:
    """Build a RawListing from a detail page, or None when it does not look like a competition."""
    page = Page.parse(url, html)
    title = extract_title(page, selector=site.title_selector)
    deadline = extract_deadline(page, custom_regex=site.deadline_text_regex, now=now)
    if not looks_like_competition(
        title,
        surrounding_text(page),
        deadline,
        require_keyword=options.require_competition_keyword,
        reject_generic=options.reject_generic_listings,
    ):
        return None
    return RawListing(
        title=title,
        link=url,
        source=site.source or site.host,
        created_at=extract_published(page, now=now),
        deadline=deadline,
        prize=extract_prize(page, selector=site.prize_selector),
    )


def crawl_site(
    site: SiteSource,
    options: CrawlOptions = CrawlOptions(),
    *,
    now: Optional[datetime] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[List[RawListing], SiteStats]:
    now = now or utc_now()
    label = site.label
    throttle = _Throttle(site.throttle_ms / 1000.0, sleep)
    pages = site.pages or options.default_pages
    page_param = site.page_param or options.default_page_param
    index_urls = index_page_urls(site.index, pages, page_param)
    index_keys = {clean_url(u) for u in index_urls}

    logger.info("[%s] crawl start: %s (%d index page(s))", label, site.index, len(index_urls))

    hrefs: List[str] = []
    index_fetched = 0
    indexed = 0
    for page_url in index_urls:
        throttle.wait()
        try:
            resp = fetch_html(page_url, options.http)
        except FetchError as e:
            logger.warning("[%s] index fetch failed: %s (%s)", label, page_url, e.reason)
            continue
        index_fetched += 1
        found, raw_count = discover_links(site, resp.final_url or page_url, resp.text, seen=hrefs)
        indexed += raw_count
        hrefs.extend(h for h in found if h not in index_keys)

    if site.max_items:
        hrefs = hrefs[: site.max_items]
    logger.info(
        "[%s] index -> %d link(s)%s", label, len(hrefs), " (limited)" if site.max_items else ""
    )

    items: List[RawListing] = []
    detail_pages = 0
    rejected = 0
    for href in hrefs:
        throttle.wait()
        try:
            resp = fetch_html(href, options.http)
            detail_pages += 1
            item = extract_listing(site, href, resp.text, now=now, options=options)
        except FetchError as e:
            logger.warning("[%s] parse fail %s -> %s", label, href, e.reason)
            continue
        except (ValueError, OverflowError, re.error) as e:
            logger.warning("[%s] parse fail %s -> %s", label, href, e)
            continue
        if item is None:
            rejected += 1
            logger.debug("[%s] skipped non-competition page: %s", label, href)
            continue
        items.append(item)
        logger.debug("[%s] parsed: %s", label, item.title)

    logger.info("[%s] done: %d item(s), %d rejected", label, len(items), rejected)
    stats = SiteStats(
        label=label,
        index=site.index,
        index_pages=index_fetched,
        links_indexed=indexed,
        links_kept=len(hrefs),
        detail_pages=detail_pages,
        items=len(items),
        rejected=rejected,
    )
    return items, stats
