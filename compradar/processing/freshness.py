"""Freshness filter: past deadlines and stale undated listings."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from compradar.ingestion.dates import parse_timestamp, utc_now
from compradar.ingestion.listing_types import Listing


def is_fresh(
    item: Listing,
    *,
    now: datetime,
    drop_past_deadlines: bool = True,
    max_age_days: int = 400,
) -> bool:
    deadline = parse_timestamp(item.deadline, now=now)
    if deadline is not None:
        return not (drop_past_deadlines and deadline < now)
    if max_age_days > 0:
        created = parse_timestamp(item.created_at, now=now)
        if created is not None and created < now - timedelta(days=max_age_days):
            return False
    return True


def filter_fresh(
    items: Iterable[Listing],
    *,
    now: Optional[datetime] = None,
    drop_past_deadlines: bool = True,
    max_age_days: int = 400,
) -> List[Listing]:
    now = now or utc_now()
    return [
        it
        for it in items
        if is_fresh(it, now=now, drop_past_deadlines=drop_past_deadlines, max_age_days=max_age_days)
    ]
