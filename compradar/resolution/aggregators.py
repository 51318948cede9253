"""Aggregator -> original link resolution.

Aggregator sites republish competitions hosted elsewhere. For listings whose
link lives on a known aggregator we fetch the aggregator page and try, in order:

1. the best out-of-domain anchor, scored on its text ("Enter now", "Official
   website", ...) with URL shorteners penalized;
2. URLs / bare domains mentioned in the visible text.

Redirect wrappers (``?url=``, ``/out/https%3A...``) are unwrapped before hosts
are compared. Anything that fails leaves the listing untouched.
"""

from __future__ import annotations

import logging
import re
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, unquote, urlparse

from bs4 import BeautifulSoup

from compradar.contracts.source_config import AggregatorHosts
from compradar.ingestion.http import FetchError, HttpConfig, fetch_html
from compradar.ingestion.listing_types import Listing
from compradar.ingestion.url_utils import host_of, to_absolute
from compradar.processing.normalize import with_link
from compradar.resolution.pool import run_bounded

logger = logging.getLogger(__name__)


REDIRECT_PARAMS = {
    "to",
    "url",
    "u",
    "target",
    "dest",
    "destination",
    "redirect",
    "redirect_url",
    "redirect_uri",
    "goto",
    "out",
    "link",
}
REDIRECT_PATH_RE = re.compile(r"/(?:out|go|redirect|visit|click)/(https?(?::|%3A).+)$", re.I)

ANCHOR_BOOSTS = tuple(
    (re.compile(r"\b" + phrase + r"\b"), weight)
    for phrase, weight in (
        ("enter", 3),
        ("official", 2),
        ("website", 2),
        ("apply", 2),
        ("visit", 2),
        ("go to", 2),
        ("details", 1),
        ("click here", 1),
    )
)
SHORTENER_PENALTY = 2

_TEXT_URL_RE = re.compile(
    r"https?://[^\s<>\"'()\[\]]+"
    r"|(?<![@\w./-])(?:www\.)?[a-z0-9](?:[a-z0-9-]*[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9-]*[a-z0-9])?)*\.[a-z]{2,24}"
    r"(?:/[^\s<>\"'()\[\]]*)?",
    re.I,
)
_NOT_A_TLD = {"js", "css", "png", "jpg", "jpeg", "gif", "svg", "webp", "php", "html", "htm", "pdf", "txt", "xml", "json", "asp", "aspx"}


def host_in(host: str, hosts: Iterable[str]) -> bool:
    """Exact host or any subdomain of one of ``hosts``."""
    return any(host == h or host.endswith("." + h) for h in hosts)


def is_aggregator_link(link: str, hosts: FrozenSet[str]) -> bool:
    return bool(link) and host_in(host_of(link), hosts)


def unwrap_redirect(url: str, *, max_depth: int = 3) -> str:
    current = url
    for _ in range(max_depth):
        p = urlparse(current)
        host = host_of(current)
        nxt = None
        for key, value in parse_qsl(p.query, keep_blank_values=True):
            k = key.lower()
            if k in REDIRECT_PARAMS or (k == "q" and host.startswith("google.")):
                cand = value.strip()
                if cand.startswith("//"):
                    cand = "https:" + cand
                if cand.lower().startswith(("http://", "https://")):
                    nxt = cand
                    break
        if nxt is None:
            m = REDIRECT_PATH_RE.search(p.path)
            if m:
                nxt = re.sub(r"^(https?:)/+", r"\1//", unquote(m.group(1)), flags=re.I)
        if not nxt or nxt == current:
            break
        current = nxt
    return current


def score_anchor(text: str, host: str, shorteners: FrozenSet[str]) -> int:
    t = " ".join(text.lower().split())
    score = sum(weight for pattern, weight in ANCHOR_BOOSTS if pattern.search(t))
    if host_in(host, shorteners):
        score -= SHORTENER_PENALTY
    return score


def _acceptable(url: str, page_host: str, hosts: AggregatorHosts) -> Optional[str]:
    """Return the candidate's host if it is an outbound, non-ignored http(s) link."""
    if urlparse(url).scheme.lower() not in ("http", "https"):
        return None
    host = host_of(url)
    if not host or host == page_host or host_in(host, hosts.hosts) or host_in(host, hosts.ignored_hosts):
        return None
    return host


def best_anchor(soup: BeautifulSoup, page_url: str, hosts: AggregatorHosts) -> Optional[str]:
    page_host = host_of(page_url)
    best: Tuple[int, Optional[str]] = (0, None)
    for a in soup.find_all("a", href=True):
        absolute = to_absolute(page_url, a["href"])
        if not absolute:
            continue
        target = unwrap_redirect(absolute)
        host = _acceptable(target, page_host, hosts)
        if not host:
            continue
        text = " ".join([a.get_text(" "), a.get("title") or "", a.get("aria-label") or ""])
        score = score_anchor(text, host, hosts.shortener_hosts)
        if score > best[0]:
            best = (score, target)
    return best[1]


def _visible_text(soup: BeautifulSoup) -> str:
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    root = soup.body or soup
    return root.get_text(" ")


def links_in_text(text: str) -> List[str]:
    out = []
    for m in _TEXT_URL_RE.finditer(text or ""):
        token = m.group(0).rstrip(".,;:!?'\"")
        if not token.lower().startswith(("http://", "https://")):
            domain = token.split("/", 1)[0]
            if domain.rsplit(".", 1)[-1].lower() in _NOT_A_TLD:
                continue
            token = "https://" + token
        if token not in out:
            out.append(token)
    return out


def best_text_link(soup: BeautifulSoup, page_url: str, hosts: AggregatorHosts) -> Optional[str]:
    page_host = host_of(page_url)
    shortened = None
    for token in links_in_text(_visible_text(soup)):
        target = unwrap_redirect(token)
        host = _acceptable(target, page_host, hosts)
        if not host:
            continue
        if host_in(host, hosts.shortener_hosts):
            shortened = shortened or target
            continue
        return target
    return shortened


def find_original_link(page_url: str, html: str, hosts: AggregatorHosts) -> Optional[str]:
    soup = BeautifulSoup(html, "html.parser")
    return best_anchor(soup, page_url, hosts) or best_text_link(soup, page_url, hosts)


def resolve_aggregator(listing: Listing, hosts: AggregatorHosts, http: Optional[HttpConfig] = None) -> Listing:
    if not is_aggregator_link(listing.link, hosts.hosts):
        return listing
    try:
        resp = fetch_html(listing.link, http)
    except FetchError as e:
        logger.info("[aggregator] fetch failed %s (%s); keeping link", listing.link, e.reason)
        return listing
    original = find_original_link(resp.final_url or listing.link, resp.text, hosts)
    if not original:
        logger.info("[aggregator] no original link found on %s", listing.link)
        return listing
    upgraded = with_link(listing, original)
    if upgraded is not listing:
        logger.debug("[aggregator] %s -> %s", listing.link, upgraded.link)
    return upgraded


def resolve_aggregators(
    listings: Sequence[Listing],
    hosts: AggregatorHosts,
    http: Optional[HttpConfig] = None,
    *,
    concurrency: int = 6,
) -> Tuple[List[Listing], int]:
    """Upgrade aggregator links in place-order. Returns (listings, upgraded_count)."""
    out = run_bounded(
        listings,
        lambda x: resolve_aggregator(x, hosts, http),
        size=concurrency,
        fallback=lambda x: x,
        name="aggregator",
    )
    upgraded = sum(1 for before, after in zip(listings, out) if after.link != before.link)
    return out, upgraded
