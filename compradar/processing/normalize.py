"""RawListing -> Listing normalization.

Pure and deterministic for a fixed ``now``: running it on its own output is a
no-op, which lets later stages re-normalize after swapping a link.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Union

from compradar.ingestion.dates import parse_timestamp, to_iso, utc_now
from compradar.ingestion.listing_types import Listing, RawListing
from compradar.ingestion.url_utils import clean_url, coerce_absolute, content_hash, source_from_link

DEFAULT_SKEW_MINUTES = 10


def collapse(s: Optional[str]) -> str:
    return " ".join((s or "").split())


def normalize_link(link: Optional[str]) -> str:
    return clean_url(coerce_absolute(link or ""))


def clamp_future(dt: Optional[datetime], *, now: datetime, skew_minutes: int = DEFAULT_SKEW_MINUTES) -> Optional[datetime]:
    if dt is None:
        return None
    return now if dt > now + timedelta(minutes=skew_minutes) else dt


def listing_id(link: str, title: str, source: str) -> str:
    return link or content_hash(title, source)


def normalize_listing(
    raw: Union[RawListing, Listing],
    *,
    now: Optional[datetime] = None,
    skew_minutes: int = DEFAULT_SKEW_MINUTES,
) -> Listing:
    now = now or utc_now()
    link = normalize_link(raw.link)
    title = collapse(raw.title)
    source = collapse(raw.source).lower() or (source_from_link(link) if link else "unknown")
    created = clamp_future(parse_timestamp(raw.created_at, now=now), now=now, skew_minutes=skew_minutes)
    deadline = parse_timestamp(raw.deadline, now=now)
    prize = collapse(raw.prize) or None
    tags = [collapse(t) for t in (raw.tags or []) if collapse(t)]
    return Listing(
        id=listing_id(link, title, source),
        title=title,
        link=link,
        source=source,
        created_at=to_iso(created),
        deadline=to_iso(deadline),
        prize=prize,
        tags=tags,
    )


def normalize_all(
    raws: Iterable[RawListing], *, now: Optional[datetime] = None, skew_minutes: int = DEFAULT_SKEW_MINUTES
) -> List[Listing]:
    """Normalize a batch; records whose title collapses to nothing are dropped."""
    now = now or utc_now()
    out = []
    for raw in raws:
        item = normalize_listing(raw, now=now, skew_minutes=skew_minutes)
        if item.title:
            out.append(item)
    return out


def with_link(listing: Listing, link: str) -> Listing:
    """Swap in a resolved link; source and id are re-derived from it."""
    cleaned = normalize_link(link)
    if not cleaned or cleaned == listing.link:
        return listing
    source = source_from_link(cleaned)
    return dataclasses.replace(listing, link=cleaned, source=source, id=listing_id(cleaned, listing.title, source))
