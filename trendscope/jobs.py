"""Scheduled jobs: refresh trending keywords and prune old rows."""

from __future__ import annotations

import logging

from .collector.aggregator import TrendAggregator
from .collector.models import TrendCollectionResult
from .config import AppConfig
from .db import TrendStore

logger = logging.getLogger(__name__)


def collect_trending(config: AppConfig, store: TrendStore, *, aggregator: TrendAggregator | None = None) -> list[TrendCollectionResult]:
    """Collect recent videos for every configured trending keyword.

    Each result is persisted by the aggregator. The job fails only when every
    keyword came back with nothing but adapter errors.
    """
    if not config.trending_keywords:
        logger.info("No trending keywords configured; skipping collection.")
        return []

    aggregator = aggregator or TrendAggregator.from_config(config, store=store)
    results: list[TrendCollectionResult] = []
    for keyword in config.trending_keywords:
        result = aggregator.collect_trending_sync(
            keyword,
            max_results=config.default_max_results,
            lookback_days=config.trending_lookback_days,
        )
        results.append(result)

    failed = [r.keyword for r in results if r.errors and r.total_videos == 0]
    logger.info(
        "Trending refresh finished: %d keywords, %d videos, %d empty with errors.",
        len(results),
        sum(r.total_videos for r in results),
        len(failed),
    )
    if len(failed) == len(results):
        raise RuntimeError(f"Every trending collection failed: {', '.join(failed)}")
    return results


def purge_old_trends(config: AppConfig, store: TrendStore) -> int:
    """Delete stored videos older than the retention window."""
    removed = store.purge_older_than(config.retention_days)
    logger.info("Retention purge removed %d videos older than %d days.", removed, config.retention_days)
    return removed
