"""Sources document contract.

The sources document (``sources.json``) lists what a run ingests:

    {
      "rss": ["https://example.com/feed", {"url": "...", "label": "..."}],
      "sites": [{"index": "https://site.example/competitions/", ...}],
      "aggregators": {"hosts": [...], "ignored_hosts": [...], "shortener_hosts": [...]}
    }

This module defines:
- A JSON Schema (for validation)
- Typed, immutable source definitions built from a valid document

A document that fails validation is fatal for the run (SourceConfigError).
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple
from urllib.parse import urlparse

from jsonschema import Draft202012Validator

from compradar.ingestion.url_utils import host_of


DEFAULT_AGGREGATOR_HOSTS = frozenset(
    {
        "competitions.com.au",
        "netrewards.com.au",
        "loquax.co.uk",
        "theprizefinder.com",
        "competitioncloud.com",
        "prizefinder.co.uk",
        "contestgirl.com",
        "sweepstakesadvantage.com",
        "ilovegiveaways.com",
    }
)

DEFAULT_IGNORED_HOSTS = frozenset(
    {
        "facebook.com",
        "l.facebook.com",
        "twitter.com",
        "x.com",
        "instagram.com",
        "pinterest.com",
        "linkedin.com",
        "youtube.com",
        "tiktok.com",
        "whatsapp.com",
        "wa.me",
        "t.me",
        "reddit.com",
        "google.com",
        "apps.apple.com",
        "play.google.com",
        "addtoany.com",
        "sharethis.com",
        "gravatar.com",
        "wordpress.org",
    }
)

DEFAULT_SHORTENER_HOSTS = frozenset(
    {
        "bit.ly",
        "tinyurl.com",
        "ow.ly",
        "t.co",
        "goo.gl",
        "buff.ly",
        "rebrand.ly",
        "shorturl.at",
        "is.gd",
        "cutt.ly",
        "lnkd.in",
    }
)


_STRING_LIST = {"type": "array", "items": {"type": "string", "minLength": 1}}

_FEED_ENTRY = {
    "oneOf": [
        {"type": "string", "minLength": 1},
        {
            "type": "object",
            "required": ["url"],
            "properties": {
                "url": {"type": "string", "minLength": 1},
                "label": {"type": "string"},
            },
            "additionalProperties": True,
        },
    ]
}

SOURCES_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "properties": {
        "rss": {"type": "array", "items": _FEED_ENTRY},
        "feeds": {"type": "array", "items": _FEED_ENTRY},
        "sites": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["index"],
                "properties": {
                    "index": {"type": "string", "minLength": 1},
                    "host": {"type": "string"},
                    "site": {"type": "string"},
                    "pages": {"type": "integer", "minimum": 1},
                    "page_param": {"type": "string", "minLength": 1},
                    "href_selector": {"type": "string"},
                    "item_selector": {"type": "string"},
                    "title_selector": {"type": "string"},
                    "prize_selector": {"type": "string"},
                    "allow_patterns": _STRING_LIST,
                    "block_patterns": _STRING_LIST,
                    "throttle_ms": {"type": "number", "minimum": 0},
                    "index_limit": {"type": "integer", "minimum": 0},
                    "max_items": {"type": "integer", "minimum": 0},
                    "source": {"type": "string"},
                    "deadline_text_regex": {"type": "string"},
                },
                "additionalProperties": True,
            },
        },
        "aggregators": {
            "type": "object",
            "properties": {
                "hosts": _STRING_LIST,
                "ignored_hosts": _STRING_LIST,
                "shortener_hosts": _STRING_LIST,
            },
            "additionalProperties": True,
        },
    },
    "additionalProperties": True,
}


_VALIDATOR = Draft202012Validator(SOURCES_SCHEMA)


class SourceConfigError(ValueError):
    """Missing or invalid sources document. Fatal: the run aborts before any fetch."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = list(errors or [])
        detail = ("\n" + "\n".join(self.errors)) if self.errors else ""
        super().__init__(message + detail)


@dataclass(frozen=True)
class FeedSource:
    url: str
    label: Optional[str] = None


@dataclass(frozen=True)
class SiteSource:
    index: str
    host: str
    pages: Optional[int] = None
    page_param: Optional[str] = None
    href_selector: Optional[str] = None
    title_selector: Optional[str] = None
    prize_selector: Optional[str] = None
    allow_patterns: Tuple[str, ...] = ()
    block_patterns: Tuple[str, ...] = ()
    throttle_ms: float = 0.0
    max_items: Optional[int] = None
    source: Optional[str] = None
    deadline_text_regex: Optional[str] = None

    @property
    def label(self) -> str:
        return self.host or host_of(self.index) or "site"


@dataclass(frozen=True)
class AggregatorHosts:
    hosts: FrozenSet[str] = DEFAULT_AGGREGATOR_HOSTS
    ignored_hosts: FrozenSet[str] = DEFAULT_IGNORED_HOSTS
    shortener_hosts: FrozenSet[str] = DEFAULT_SHORTENER_HOSTS


@dataclass(frozen=True)
class SourcesConfig:
    feeds: Tuple[FeedSource, ...] = ()
    sites: Tuple[SiteSource, ...] = ()
    aggregators: AggregatorHosts = field(default_factory=AggregatorHosts)


def validate_sources(payload: Any) -> List[str]:
    """Return a list of human-readable validation errors (empty means valid)."""
    errors = []
    for e in sorted(_VALIDATOR.iter_errors(payload), key=lambda x: [str(p) for p in x.path]):
        path = ".".join(str(p) for p in e.path) if e.path else "<root>"
        errors.append(f"{path}: {e.message}")
    if errors or not isinstance(payload, dict):
        return errors

    for key in ("rss", "feeds"):
        for i, entry in enumerate(payload.get(key) or []):
            url = entry if isinstance(entry, str) else entry.get("url", "")
            if not _is_http_url(url):
                errors.append(f"{key}.{i}: not an absolute http(s) URL: {url!r}")
    for i, site in enumerate(payload.get("sites") or []):
        if not _is_http_url(site.get("index", "")):
            errors.append(f"sites.{i}.index: not an absolute http(s) URL: {site.get('index')!r}")
        patterns = list(site.get("allow_patterns") or []) + list(site.get("block_patterns") or [])
        if site.get("deadline_text_regex"):
            patterns.append(site["deadline_text_regex"])
        for pat in patterns:
            try:
                re.compile(pat)
            except re.error as exc:
                errors.append(f"sites.{i}: invalid regular expression {pat!r}: {exc}")
    return errors


def _is_http_url(url: str) -> bool:
    try:
        p = urlparse(str(url).strip())
    except ValueError:
        return False
    return p.scheme in ("http", "https") and bool(p.netloc)


def _host_set(values: Optional[List[str]], default: FrozenSet[str]) -> FrozenSet[str]:
    if values is None:
        return default
    return frozenset(v.strip().lower().removeprefix("www.") for v in values if v.strip())


def _site_from_dict(d: Dict[str, Any]) -> SiteSource:
    index = d["index"].strip()
    raw_host = (d.get("host") or d.get("site") or "").strip().lower()
    host = re.sub(r"^https?://", "", raw_host).split("/")[0].removeprefix("www.")
    cap = d.get("index_limit") if d.get("index_limit") is not None else d.get("max_items")
    return SiteSource(
        index=index,
        host=host or host_of(index),
        pages=d.get("pages"),
        page_param=d.get("page_param"),
        href_selector=(d.get("href_selector") or d.get("item_selector") or None),
        title_selector=d.get("title_selector") or None,
        prize_selector=d.get("prize_selector") or None,
        allow_patterns=tuple(d.get("allow_patterns") or ()),
        block_patterns=tuple(d.get("block_patterns") or ()),
        throttle_ms=float(d.get("throttle_ms") or 0),
        max_items=int(cap) if cap else None,
        source=(d.get("source") or None),
        deadline_text_regex=d.get("deadline_text_regex") or None,
    )


def parse_sources(payload: Any) -> SourcesConfig:
    errors = validate_sources(payload)
    if errors:
        raise SourceConfigError("Invalid sources document", errors)

    feeds: List[FeedSource] = []
    for entry in list(payload.get("rss") or []) + list(payload.get("feeds") or []):
        if isinstance(entry, str):
            feeds.append(FeedSource(url=entry.strip()))
        else:
            feeds.append(FeedSource(url=entry["url"].strip(), label=(entry.get("label") or None)))

    sites = [_site_from_dict(s) for s in payload.get("sites") or []]

    agg = payload.get("aggregators") or {}
    aggregators = AggregatorHosts(
        hosts=_host_set(agg.get("hosts"), DEFAULT_AGGREGATOR_HOSTS),
        ignored_hosts=_host_set(agg.get("ignored_hosts"), DEFAULT_IGNORED_HOSTS),
        shortener_hosts=_host_set(agg.get("shortener_hosts"), DEFAULT_SHORTENER_HOSTS),
    )
    return SourcesConfig(feeds=tuple(feeds), sites=tuple(sites), aggregators=aggregators)


def load_sources(path: str) -> SourcesConfig:
    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    except FileNotFoundError as e:
        raise SourceConfigError(f"Sources document not found: {path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise SourceConfigError(f"Sources document unreadable: {path}: {e}") from e
    return parse_sources(payload)
