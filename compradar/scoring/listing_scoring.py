"""Listing completeness scoring.

Used by dedup to pick one record per duplicate group: a known deadline matters
most, then a publish time, then a longer (usually more specific) title.
"""

from __future__ import annotations

from typing import Tuple

from compradar.ingestion.listing_types import Listing


DEADLINE_WEIGHT = 3.0
CREATED_AT_WEIGHT = 2.0


def score_listing(item: Listing) -> float:
    score = 0.0
    if item.deadline:
        score += DEADLINE_WEIGHT
    if item.created_at:
        score += CREATED_AT_WEIGHT
    return score + len(item.title) / 1000.0


def content_key(item: Listing) -> Tuple[str, ...]:
    """Total order over record contents; never depends on input position."""
    return (
        item.id,
        item.link,
        item.title,
        item.source,
        item.created_at or "",
        item.deadline or "",
        item.prize or "",
        "\x1f".join(item.tags),
    )


def better(a: Listing, b: Listing) -> Listing:
    """Return the preferred of two duplicates (higher score, then smaller content key)."""
    sa, sb = score_listing(a), score_listing(b)
    if sa != sb:
        return a if sa > sb else b
    return a if content_key(a) <= content_key(b) else b
