"""URL canonicalization helpers for ingestion/dedup."""

from __future__ import annotations

import hashlib
import re
from typing import Iterable, Optional
from urllib.parse import unquote, urljoin, urlparse, urlunparse


DEFAULT_STRIP_QUERY_PARAMS = {
    # tracking
    "gclid",
    "fbclid",
    "mc_cid",
    "mc_eid",
    "trk",
    "ref",
    "mkt_tok",
    "dclid",
    "igshid",
    "yclid",
}

TRACKING_PARAM_PREFIXES = ("utm_",)

_BARE_DOMAIN_RE = re.compile(r"^(?:www\.)?[a-z0-9-]+(?:\.[a-z0-9-]+)*\.[a-z]{2,24}(?::\d+)?(?:[/?#]|$)", re.I)


def _is_tracking_param(key: str, strip: set) -> bool:
    k = key.lower()
    return k in strip or any(k.startswith(p) for p in TRACKING_PARAM_PREFIXES)


def clean_url(url: str, *, strip_params: Optional[Iterable[str]] = None) -> str:
    """Canonicalize a URL for dedup.

    - Lowercase scheme + hostname
    - Remove fragments
    - Strip tracking query parameters (remaining params keep order and encoding)
    - Drop trailing slashes from non-root paths

    Anything that is not an absolute http(s) URL is returned stripped, untouched.
    """
    if not url:
        return ""
    strip = set(strip_params) if strip_params is not None else DEFAULT_STRIP_QUERY_PARAMS
    raw = url.strip()
    try:
        p = urlparse(raw)
    except ValueError:
        return raw
    scheme = (p.scheme or "").lower()
    if scheme not in ("http", "https") or not p.netloc:
        return raw
    netloc = p.netloc.lower()

    path = p.path or "/"
    if len(path) > 1:
        path = path.rstrip("/") or "/"

    kept = []
    for part in p.query.split("&"):
        if not part:
            continue
        key = unquote(part.split("=", 1)[0])
        if _is_tracking_param(key, strip):
            continue
        kept.append(part)
    query = "&".join(kept)

    return urlunparse((scheme, netloc, path, p.params, query, ""))


def coerce_absolute(url: str) -> str:
    """Turn protocol-relative and bare-domain links into https URLs.

    Returns "" when the value cannot be made absolute without a base URL.
    """
    u = (url or "").strip()
    if not u:
        return ""
    if u.startswith("//"):
        return "https:" + u
    scheme = urlparse(u).scheme.lower()
    if scheme in ("http", "https"):
        return u
    if not scheme and _BARE_DOMAIN_RE.match(u):
        return "https://" + u
    return ""


def to_absolute(base_url: str, href: Optional[str]) -> Optional[str]:
    """Resolve an href found on ``base_url``; None for non-web links."""
    h = (href or "").strip()
    if not h or h.startswith(("#", "mailto:", "javascript:", "tel:", "data:")):
        return None
    if h.startswith("//"):
        h = "https:" + h
    try:
        absolute = urljoin(base_url, h)
    except ValueError:
        return None
    if urlparse(absolute).scheme.lower() not in ("http", "https"):
        return None
    return absolute


def host_of(url: str) -> str:
    """Lowercase hostname without a leading ``www.``."""
    try:
        host = (urlparse(url or "").hostname or "").lower().strip()
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


def source_from_link(link: str) -> str:
    return host_of(link) or "unknown"


def content_hash(title: str, source: str) -> str:
    """Stable id for listings without a usable link."""
    return hashlib.sha1(f"{title}|{source}".encode("utf-8")).hexdigest()
