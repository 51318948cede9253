#!/usr/bin/env python3
"""Competition listings ingestion worker.

Runs one ingestion cycle (or scheduled) over the configured sources:
- syndication feeds (RSS / Atom / JSON)
- crawled listing sites

Writes the catalog (feeds.json) and the run health report (ingestion.json).
"""

from __future__ import annotations

import logging
import os
import sys
import time
from typing import List

import schedule
from dotenv import load_dotenv

from compradar.contracts.source_config import SourceConfigError
from compradar.pipeline.run import run_once
from compradar.pipeline.settings import PipelineSettings

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file = (os.environ.get("LOG_FILE") or "").strip()
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=(os.environ.get("LOG_LEVEL") or "INFO").upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


def run_cycle(settings: PipelineSettings) -> None:
    items, health = run_once(settings)
    logger.info("[ingest] kept=%d sources=%d", len(items), len(health.per_source))


def run_scheduled(settings: PipelineSettings, interval_minutes: int) -> None:
    run_cycle(settings)
    schedule.every(interval_minutes).minutes.do(run_cycle, settings)
    while True:
        schedule.run_pending()
        time.sleep(5)


def main() -> int:
    load_dotenv()
    configure_logging()
    settings = PipelineSettings.from_env()
    mode = (os.environ.get("INGEST_MODE") or "once").lower().strip()
    try:
        if mode in ("scheduled", "daemon"):
            try:
                interval = max(1, int(os.environ.get("INGEST_INTERVAL_MINUTES") or 60))
            except ValueError:
                interval = 60
            run_scheduled(settings, interval)
        else:
            run_cycle(settings)
    except SourceConfigError as e:
        logger.error("[sources] %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
