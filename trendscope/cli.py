from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Optional, Sequence

import uvicorn

from .api import create_app
from .collector.aggregator import TrendAggregator
from .collector.errors import CollectionValidationError
from .collector.formatter import error_envelope, format_result
from .collector.models import DeduplicationOptions, Platform
from .config import AppConfig, ConfigError, load_config
from .db import TrendListQuery, TrendStore
from .logging_utils import configure_logging

logger = logging.getLogger(__name__)


def _options_from_args(args: argparse.Namespace) -> dict[str, Any]:
    options: dict[str, Any] = {"keyword": args.keyword, "max_results": args.max_results}
    if args.platform:
        options["platforms"] = args.platform
    if args.country:
        options["country"] = args.country
    if args.language:
        options["language"] = args.language
    date_filter = {
        key: value
        for key, value in (("published_after", args.published_after), ("published_before", args.published_before))
        if value
    }
    if date_filter:
        options["date_filter"] = date_filter
    return options


def _dump(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


async def collect_async(args: argparse.Namespace, config: AppConfig, store: Optional[TrendStore]) -> int:
    aggregator = TrendAggregator.from_config(config, store=store)
    try:
        if args.trending:
            extra = {k: v for k, v in _options_from_args(args).items() if k not in ("keyword", "max_results", "date_filter")}
            result = await aggregator.collect_trending(
                args.keyword,
                max_results=args.max_results,
                lookback_days=config.trending_lookback_days,
                **extra,
            )
        else:
            dedup = DeduplicationOptions(
                by_title=args.dedup_by_title or config.dedup_by_title,
                title_similarity_threshold=config.title_similarity_threshold,
            )
            result = await aggregator.collect(_options_from_args(args), dedup_options=dedup)
    except CollectionValidationError as exc:
        _dump(error_envelope("validation_error", str(exc), exc.problems))
        return 2

    _dump(format_result(result))
    for error in result.errors:
        logger.warning("%s (%s): %s", error.platform.value, error.source.value, error.error)
    return 0 if result.total_videos or not result.errors else 1


def list_stored(args: argparse.Namespace, store: TrendStore) -> int:
    query = TrendListQuery(
        keyword=args.keyword,
        platform=args.platform,
        country=args.country,
        sort_by=args.sort_by,
        sort_order=args.sort_order,
        limit=args.limit,
        offset=args.offset,
    )
    rows, total = store.list_trends(query)
    _dump({"trends": rows, "total": total})
    return 0


def serve(args: argparse.Namespace, config: AppConfig) -> int:
    """Serve the HTTP API with results persisted to the configured database."""
    app = create_app(config, store=TrendStore.from_config(config))
    host = args.host or config.api_host
    port = args.port or config.api_port
    logger.info("Serving TrendScope API on %s:%d (auth %s).", host, port, "off" if config.auth_disabled else "on")
    # log_config=None keeps the handlers installed by configure_logging
    uvicorn.run(app, host=host, port=port, log_config=None)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="trendscope", description="Short-form video trend collector")
    sub = p.add_subparsers(dest="command", required=True)

    c = sub.add_parser("collect", help="Collect videos for a keyword and print the result as JSON")
    c.add_argument("keyword")
    c.add_argument("--platform", action="append", choices=[p.value for p in Platform],
                   help="Restrict to a platform; repeat for several")
    c.add_argument("--max-results", type=int, default=None)
    c.add_argument("--country", choices=["KR", "US", "JP"])
    c.add_argument("--language")
    c.add_argument("--published-after", help="ISO-8601 timestamp")
    c.add_argument("--published-before", help="ISO-8601 timestamp")
    c.add_argument("--dedup-by-title", action="store_true")
    c.add_argument("--trending", action="store_true", help="Only videos from the configured lookback window")
    c.add_argument("--store", action="store_true", help="Persist the result to the database")

    ls = sub.add_parser("list", help="List stored videos")
    ls.add_argument("--keyword")
    ls.add_argument("--platform", choices=[p.value for p in Platform])
    ls.add_argument("--country", choices=["KR", "US", "JP"])
    ls.add_argument("--sort-by", default="collected_at",
                    choices=["collected_at", "view_count", "like_count", "published_at"])
    ls.add_argument("--sort-order", default="desc", choices=["asc", "desc"])
    ls.add_argument("--limit", type=int, default=20)
    ls.add_argument("--offset", type=int, default=0)

    sub.add_parser("purge", help="Delete stored videos older than the retention window")

    s = sub.add_parser("serve", help="Run the HTTP API")
    s.add_argument("--host", help="Defaults to APP_API_HOST")
    s.add_argument("--port", type=int, help="Defaults to APP_API_PORT")
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = load_config()
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    configure_logging(config, file_output=False)

    if args.command == "collect":
        if args.max_results is None:
            args.max_results = config.default_max_results
        store = TrendStore.from_config(config) if args.store else None
        return asyncio.run(collect_async(args, config, store))
    if args.command == "serve":
        return serve(args, config)

    store = TrendStore.from_config(config)
    if args.command == "list":
        return list_stored(args, store)
    removed = store.purge_older_than(config.retention_days)
    logger.info("Removed %d stored videos.", removed)
    return 0


if __name__ == "__main__":
    sys.exit(main())
