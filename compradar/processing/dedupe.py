"""Two-pass duplicate merge.

Pass 1 merges records sharing a cleaned link. Pass 2 merges the survivors (and
all linkless records) sharing a lowercase (title, source) signature. Each group
keeps its best-scored member and sits where the group was first seen.
"""

from __future__ import annotations

from typing import Callable, Dict, Hashable, List, Optional, Sequence, Tuple

from compradar.ingestion.listing_types import Listing
from compradar.scoring.listing_scoring import better


def _merge(items: Sequence[Listing], key: Callable[[Listing], Optional[Hashable]]) -> List[Listing]:
    slots: List[Listing] = []
    index: Dict[Hashable, int] = {}
    for item in items:
        k = key(item)
        if k is None:
            slots.append(item)
            continue
        pos = index.get(k)
        if pos is None:
            index[k] = len(slots)
            slots.append(item)
        else:
            slots[pos] = better(slots[pos], item)
    return slots


def link_key(item: Listing) -> Optional[str]:
    return item.link or None


def signature(item: Listing) -> Tuple[str, str]:
    return (item.title.lower(), item.source.lower())


def dedupe_by_link(items: Sequence[Listing]) -> List[Listing]:
    return _merge(items, link_key)


def dedupe_by_signature(items: Sequence[Listing]) -> List[Listing]:
    return _merge(items, signature)


def dedupe(items: Sequence[Listing]) -> List[Listing]:
    return dedupe_by_signature(dedupe_by_link(items))
