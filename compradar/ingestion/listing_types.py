"""Shared ingestion data types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union


@dataclass(frozen=True)
class RawListing:
    """Listing as emitted by the feed reader / site crawler (pre-normalization).

    ``link`` may still be relative or scheme-less and ``created_at`` may be free
    text; the normalizer is responsible for cleaning both.
    """

    title: str
    link: str
    source: Optional[str] = None
    created_at: Optional[Union[str, datetime]] = None
    deadline: Optional[Union[str, datetime]] = None
    prize: Optional[str] = None
    tags: Optional[List[str]] = None


@dataclass(frozen=True)
class Listing:
    """Normalized competition record, the unit of the published catalog."""

    id: str
    title: str
    link: str
    source: str
    created_at: Optional[str] = None
    deadline: Optional[str] = None
    prize: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "link": self.link,
            "source": self.source,
            "createdAt": self.created_at,
            "deadline": self.deadline,
            "tags": list(self.tags),
        }
        if self.prize:
            d["prize"] = self.prize
        return d
