"""Per-run health report (ingestion.json)."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Sequence

from compradar.crawling.site_crawler import SiteStats
from compradar.ingestion.feeds import FeedStats
from compradar.ingestion.listing_types import Listing

STAGES = ("raw", "normalized", "upgraded", "canonicalized", "deduped", "kept")


@dataclass(frozen=True)
class RunHealth:
    started_at: str
    finished_at: str
    counts: Mapping[str, int]
    rss: Mapping[str, Mapping[str, Any]]
    sites: Mapping[str, Mapping[str, Any]]
    per_source: Mapping[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "counts": {k: self.counts.get(k, 0) for k in STAGES},
            "sources": {
                "rssCount": len(self.rss),
                "siteCount": len(self.sites),
                "rss": {k: dict(v) for k, v in self.rss.items()},
                "sites": {k: dict(v) for k, v in self.sites.items()},
            },
            "perSource": dict(self.per_source),
        }


def per_source_counts(items: Iterable[Listing]) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for it in items:
        key = it.source or "unknown"
        out[key] = out.get(key, 0) + 1
    return out


def _feed_entry(s: FeedStats) -> Dict[str, Any]:
    entry: Dict[str, Any] = {"items": s.items}
    if s.error:
        entry["error"] = s.error
    return entry


def _site_entry(s: SiteStats) -> Dict[str, Any]:
    return {
        "items": s.items,
        "index": s.index,
        "pagesCrawled": s.index_pages,
        "linksIndexed": s.links_indexed,
        "linksKept": s.links_kept,
        "detailPages": s.detail_pages,
        "rejected": s.rejected,
    }


def build_health(
    *,
    started_at: str,
    finished_at: str,
    counts: Mapping[str, int],
    feed_stats: Sequence[FeedStats],
    site_stats: Sequence[SiteStats],
    kept: Sequence[Listing],
) -> RunHealth:
    """Assemble the immutable report once all stages have finished."""
    rss = {s.url: MappingProxyType(_feed_entry(s)) for s in feed_stats}
    sites = {s.label: MappingProxyType(_site_entry(s)) for s in site_stats}
    return RunHealth(
        started_at=started_at,
        finished_at=finished_at,
        counts=MappingProxyType({k: int(counts.get(k, 0)) for k in STAGES}),
        rss=MappingProxyType(rss),
        sites=MappingProxyType(sites),
        per_source=MappingProxyType(per_source_counts(kept)),
    )
