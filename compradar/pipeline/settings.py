"""Runtime knobs for a pipeline run.

Everything comes from the environment (``load_dotenv()`` is called by the
worker script before ``from_env``). Invalid values fall back to defaults so a
typo in .env never aborts a run; only the sources document is fatal.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from compradar.ingestion.http import DEFAULT_USER_AGENT, HttpConfig

logger = logging.getLogger(__name__)


def _env_int(env: Mapping[str, str], name: str, default: int, *, min_value: Optional[int] = None) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; falling back to %s", name, raw, default)
        return default
    if min_value is not None:
        value = max(min_value, value)
    return value


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; falling back to %s", name, raw, default)
        return default


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = (env.get(name) or "").strip().lower()
    if not raw:
        return default
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    logger.warning("Invalid %s=%r; falling back to %s", name, raw, default)
    return default


@dataclass(frozen=True)
class PipelineSettings:
    sources_file: str = "sources.json"
    output_dir: str = "public"
    catalog_filename: str = "feeds.json"
    health_filename: str = "ingestion.json"

    http_timeout: float = 15.0
    http_max_bytes: int = 2_000_000
    user_agent: str = DEFAULT_USER_AGENT

    # Freshness
    drop_past_deadlines: bool = True
    max_item_age_days: int = 400
    future_skew_minutes: int = 10

    # Resolution stages
    resolve_aggregators: bool = True
    resolve_canonical: bool = True
    aggregator_concurrency: int = 6
    canonical_concurrency: int = 8

    # Site crawling defaults
    default_index_pages: int = 1
    default_page_param: str = "page"
    require_competition_keyword: bool = True
    reject_generic_listings: bool = True

    @property
    def http(self) -> HttpConfig:
        return HttpConfig(timeout=self.http_timeout, max_bytes=self.http_max_bytes, user_agent=self.user_agent)

    @property
    def catalog_path(self) -> str:
        return os.path.join(self.output_dir, self.catalog_filename)

    @property
    def health_path(self) -> str:
        return os.path.join(self.output_dir, self.health_filename)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "PipelineSettings":
        e = os.environ if env is None else env
        d = cls()
        return cls(
            sources_file=(e.get("SOURCES_FILE") or d.sources_file).strip(),
            output_dir=(e.get("OUTPUT_DIR") or d.output_dir).strip(),
            catalog_filename=(e.get("CATALOG_FILENAME") or d.catalog_filename).strip(),
            health_filename=(e.get("HEALTH_FILENAME") or d.health_filename).strip(),
            http_timeout=_env_float(e, "HTTP_TIMEOUT", d.http_timeout),
            http_max_bytes=_env_int(e, "HTTP_MAX_BYTES", d.http_max_bytes, min_value=1024),
            user_agent=(e.get("USER_AGENT") or d.user_agent).strip(),
            drop_past_deadlines=_env_bool(e, "DROP_PAST_DEADLINES", d.drop_past_deadlines),
            max_item_age_days=_env_int(e, "MAX_ITEM_AGE_DAYS", d.max_item_age_days, min_value=0),
            future_skew_minutes=_env_int(e, "FUTURE_CREATEDAT_SKEW_MIN", d.future_skew_minutes, min_value=0),
            resolve_aggregators=_env_bool(e, "RESOLVE_AGGREGATORS", d.resolve_aggregators),
            resolve_canonical=_env_bool(e, "RESOLVE_CANONICAL", d.resolve_canonical),
            aggregator_concurrency=_env_int(e, "AGGREGATOR_CONCURRENCY", d.aggregator_concurrency, min_value=1),
            canonical_concurrency=_env_int(e, "CANONICAL_CONCURRENCY", d.canonical_concurrency, min_value=1),
            default_index_pages=_env_int(e, "DEFAULT_INDEX_PAGES", d.default_index_pages, min_value=1),
            default_page_param=(e.get("DEFAULT_PAGE_PARAM") or d.default_page_param).strip(),
            require_competition_keyword=_env_bool(e, "REQUIRE_COMPETITION_KEYWORD", d.require_competition_keyword),
            reject_generic_listings=_env_bool(e, "REJECT_GENERIC_LISTINGS", d.reject_generic_listings),
        )
