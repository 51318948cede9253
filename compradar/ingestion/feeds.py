"""Feed reader: RSS, Atom and JSON item lists -> RawListing.

feedparser tells RSS (item-based) and Atom (entry-based) apart and unwraps
CDATA; JSON item lists (JSON Feed and look-alikes) are detected by a leading
``{`` and an ``items`` array. A failing feed yields no records, never an error.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import feedparser

from compradar.contracts.source_config import FeedSource
from compradar.ingestion.dates import from_struct_time, parse_timestamp, to_iso
from compradar.ingestion.http import FetchError, HttpConfig, fetch_feed
from compradar.ingestion.listing_types import RawListing
from compradar.ingestion.url_utils import to_absolute

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedStats:
    url: str
    items: int
    dialect: Optional[str] = None
    error: Optional[str] = None


def _collapse(s: Any) -> str:
    return " ".join(str(s or "").split())


def _first(entry: Any, strategies: Sequence[Callable[[Any], Optional[str]]]) -> str:
    for strategy in strategies:
        value = _collapse(strategy(entry))
        if value:
            return value
    return ""


def _is_http(value: str) -> bool:
    return value.lower().startswith(("http://", "https://"))


# --- feedparser entries ---

_TITLE_STRATEGIES = (
    lambda e: e.get("title"),
    lambda e: (e.get("title_detail") or {}).get("value"),
    lambda e: e.get("media_title"),
)


def _alternate_href(e: Any) -> Optional[str]:
    for link in e.get("links") or []:
        if link.get("rel", "alternate") == "alternate" and link.get("href"):
            return link["href"]
    return None


def _any_href(e: Any) -> Optional[str]:
    for link in e.get("links") or []:
        if link.get("href"):
            return link["href"]
    return None


def _guid_link(e: Any) -> Optional[str]:
    guid = _collapse(e.get("id") or e.get("guid"))
    return guid if _is_http(guid) else None


_LINK_STRATEGIES = (lambda e: e.get("link"), _alternate_href, _any_href, _guid_link)

_DATE_FIELDS = ("published", "updated", "created")


def _entry_timestamp(e: Any) -> Optional[str]:
    for name in _DATE_FIELDS:
        dt = from_struct_time(e.get(f"{name}_parsed"))
        if dt is None:
            dt = parse_timestamp(e.get(name))
        if dt is not None:
            return to_iso(dt)
    return None


def _entry_tags(e: Any) -> List[str]:
    out: List[str] = []
    for t in e.get("tags") or []:
        term = _collapse(t.get("term") or t.get("label"))
        if term and term not in out:
            out.append(term)
    return out


# --- JSON item lists ---

_JSON_LINK_FIELDS = ("url", "link", "external_url", "id")
_JSON_DATE_FIELDS = ("date_published", "published", "pubDate", "date_modified", "updated", "createdAt")


def _resolve_link(base_url: Optional[str], link: str) -> str:
    if not base_url or _is_http(link):
        return link
    return to_absolute(base_url, link) or link


def _json_tags(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [_collapse(t) for t in value if _collapse(t)]


def _parse_json_items(payload: Dict[str, Any], label: Optional[str], base_url: Optional[str] = None) -> List[RawListing]:
    out: List[RawListing] = []
    for item in payload.get("items") or []:
        if not isinstance(item, dict):
            continue
        title = _collapse(item.get("title"))
        link = ""
        for key in _JSON_LINK_FIELDS:
            candidate = _collapse(item.get(key))
            if candidate and (key != "id" or _is_http(candidate)):
                link = _resolve_link(base_url, candidate)
                break
        created = None
        for key in _JSON_DATE_FIELDS:
            created = to_iso(parse_timestamp(item.get(key)))
            if created is not None:
                break
        tags = _json_tags(item.get("tags"))
        if title and link:
            out.append(RawListing(title=title, link=link, source=label, created_at=created, tags=tags))
    return out


def detect_dialect(content: bytes) -> str:
    head = content.lstrip()[:1]
    return "json" if head in (b"{", b"[") else "xml"


def parse_feed(
    content: bytes, *, label: Optional[str] = None, base_url: Optional[str] = None
) -> Tuple[List[RawListing], str]:
    """Parse a fetched feed document. Returns (records, dialect).

    Relative item links are resolved against ``base_url`` (the feed's own URL).
    """
    if detect_dialect(content) == "json":
        payload = json.loads(content.decode("utf-8-sig"))
        if isinstance(payload, list):
            payload = {"items": payload}
        if not isinstance(payload, dict) or not isinstance(payload.get("items"), list):
            raise ValueError("JSON document has no items list")
        return _parse_json_items(payload, label, base_url), "json"

    headers = {"content-location": base_url} if base_url else None
    parsed = feedparser.parse(content, response_headers=headers)
    if parsed.bozo and not parsed.entries:
        raise ValueError(f"unparseable feed: {parsed.get('bozo_exception')}")
    version = parsed.get("version") or ""
    dialect = "atom" if version.startswith("atom") else "rss" if version.startswith("rss") else (version or "xml")

    out: List[RawListing] = []
    for entry in parsed.entries:
        title = _first(entry, _TITLE_STRATEGIES)
        link = _first(entry, _LINK_STRATEGIES)
        if not title or not link:
            continue
        out.append(
            RawListing(
                title=title,
                link=_resolve_link(base_url, link),
                source=label,
                created_at=_entry_timestamp(entry),
                tags=_entry_tags(entry),
            )
        )
    return out, dialect


def read_feed(feed: FeedSource, http: Optional[HttpConfig] = None) -> Tuple[List[RawListing], FeedStats]:
    try:
        resp = fetch_feed(feed.url, http)
        items, dialect = parse_feed(resp.content, label=feed.label, base_url=resp.final_url or feed.url)
    except FetchError as e:
        logger.warning("Failed feed: %s (%s)", feed.url, e.reason)
        return [], FeedStats(url=feed.url, items=0, error=e.reason)
    except (ValueError, OverflowError, UnicodeDecodeError) as e:
        logger.warning("Failed feed: %s (parse error: %s)", feed.url, e)
        return [], FeedStats(url=feed.url, items=0, error=f"parse: {e}")
    logger.info("[RSS] %s -> %d items (%s)", feed.url, len(items), dialect)
    return items, FeedStats(url=feed.url, items=len(items), dialect=dialect)
