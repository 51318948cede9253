"""One ingestion cycle: sources -> catalog + health report.

feeds / sites (sequential) -> normalize -> aggregator resolution (pool)
-> canonical resolution (pool) -> dedupe -> freshness -> sort -> write.
"""

from __future__ import annotations

import json
import logging
import os
import time
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence, Tuple

from compradar.contracts.source_config import SourcesConfig, load_sources
from compradar.crawling.site_crawler import CrawlOptions, SiteStats, crawl_site
from compradar.ingestion.dates import to_iso, utc_now
from compradar.ingestion.feeds import FeedStats, read_feed
from compradar.ingestion.listing_types import Listing, RawListing
from compradar.pipeline.settings import PipelineSettings
from compradar.processing.dedupe import dedupe
from compradar.processing.freshness import filter_fresh
from compradar.processing.normalize import normalize_all
from compradar.reporting.run_health import RunHealth, build_health
from compradar.resolution.aggregators import resolve_aggregators
from compradar.resolution.canonical import resolve_canonical

logger = logging.getLogger(__name__)


def crawl_options(settings: PipelineSettings) -> CrawlOptions:
    return CrawlOptions(
        http=settings.http,
        default_pages=settings.default_index_pages,
        default_page_param=settings.default_page_param,
        require_competition_keyword=settings.require_competition_keyword,
        reject_generic_listings=settings.reject_generic_listings,
    )


def sort_catalog(items: Sequence[Listing]) -> List[Listing]:
    """Newest first (undated last), then title, then id."""
    out = sorted(items, key=lambda it: (it.title, it.id))
    out.sort(key=lambda it: it.created_at or "", reverse=True)
    return out


def collect(
    config: SourcesConfig,
    settings: PipelineSettings,
    *,
    now: datetime,
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[List[RawListing], List[FeedStats], List[SiteStats]]:
    raw: List[RawListing] = []
    feed_stats: List[FeedStats] = []
    site_stats: List[SiteStats] = []

    for feed in config.feeds:
        items, stats = read_feed(feed, settings.http)
        raw.extend(items)
        feed_stats.append(stats)

    options = crawl_options(settings)
    for site in config.sites:
        items, stats = crawl_site(site, options, now=now, sleep=sleep)
        raw.extend(items)
        site_stats.append(stats)
    return raw, feed_stats, site_stats


def run_pipeline(
    config: SourcesConfig,
    settings: Optional[PipelineSettings] = None,
    *,
    now: Optional[datetime] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[List[Listing], RunHealth]:
    settings = settings or PipelineSettings()
    now = now or utc_now()
    started_at = to_iso(utc_now())
    logger.info("Pull started (%d feed(s), %d site(s))", len(config.feeds), len(config.sites))

    raw, feed_stats, site_stats = collect(config, settings, now=now, sleep=sleep)
    normalized = normalize_all(raw, now=now, skew_minutes=settings.future_skew_minutes)

    items = normalized
    upgraded = 0
    if settings.resolve_aggregators:
        items, upgraded = resolve_aggregators(
            items, config.aggregators, settings.http, concurrency=settings.aggregator_concurrency
        )
    canonicalized = 0
    if settings.resolve_canonical:
        items, canonicalized = resolve_canonical(items, settings.http, concurrency=settings.canonical_concurrency)

    deduped = dedupe(items)
    kept = sort_catalog(
        filter_fresh(
            deduped,
            now=now,
            drop_past_deadlines=settings.drop_past_deadlines,
            max_age_days=settings.max_item_age_days,
        )
    )

    counts = {
        "raw": len(raw),
        "normalized": len(normalized),
        "upgraded": upgraded,
        "canonicalized": canonicalized,
        "deduped": len(deduped),
        "kept": len(kept),
    }
    logger.info("Totals: %s", " ".join(f"{k}={v}" for k, v in counts.items()))
    health = build_health(
        started_at=started_at,
        finished_at=to_iso(utc_now()),
        counts=counts,
        feed_stats=feed_stats,
        site_stats=site_stats,
        kept=kept,
    )
    return kept, health


def write_json(path: str, payload: Any) -> None:
    """Replace ``path`` atomically (write a sibling temp file, then rename)."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)
        f.write("\n")
    os.replace(tmp, path)


def write_catalog(path: str, items: Sequence[Listing]) -> None:
    write_json(path, [it.to_dict() for it in items])
    logger.info("Wrote %s with %d item(s)", path, len(items))


def write_health(path: str, health: RunHealth) -> None:
    write_json(path, health.to_dict())
    logger.info("Wrote %s", path)


def run_once(settings: Optional[PipelineSettings] = None, **kwargs: Any) -> Tuple[List[Listing], RunHealth]:
    """Load sources (SourceConfigError propagates before any fetch), run, write both artifacts."""
    settings = settings or PipelineSettings.from_env()
    config = load_sources(settings.sources_file)
    logger.info("[sources] %s loaded (%d RSS, %d sites)", settings.sources_file, len(config.feeds), len(config.sites))
    items, health = run_pipeline(config, settings, **kwargs)
    write_catalog(settings.catalog_path, items)
    write_health(settings.health_path, health)
    return items, health
