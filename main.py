"""Entry point for the scheduled TrendScope collector.

``python main.py`` runs the scheduler until stopped. ``python main.py --once
collect_trending`` runs a single registered job and exits with its outcome.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import socket
import sys
import threading
import time
import uuid
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Final, Optional, Sequence

from trendscope.app import JOB_SPECS, TrendScopeApp
from trendscope.config import AppConfig, ConfigError, load_config

LOGGER = logging.getLogger(__name__)
_RUN_GUARD: Final[threading.Lock] = threading.Lock()
_IS_RUNNING = False

EXIT_OK: Final[int] = 0
EXIT_JOB_FAILED: Final[int] = 1
EXIT_USAGE: Final[int] = 2


@dataclass(frozen=True, slots=True)
class RunContext:
    """Trace metadata stamped on every bootstrap event of one process."""

    trace_id: str
    instance_id: str
    mode: str
    wall_clock_ns: int

    @property
    def started_at_iso(self) -> str:
        seconds = self.wall_clock_ns / 1_000_000_000
        return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def _build_run_context(mode: str) -> RunContext:
    return RunContext(
        trace_id=os.getenv("TRENDSCOPE_TRACE_ID") or uuid.uuid4().hex,
        instance_id=os.getenv("TRENDSCOPE_INSTANCE_ID") or socket.gethostname(),
        mode=mode,
        wall_clock_ns=time.time_ns(),
    )


def _log_event(level: int, event: str, context: RunContext, **fields: Any) -> None:
    """Emit structured JSON logs with consistent tracing metadata."""
    payload: dict[str, Any] = {
        "event": event,
        "trace_id": context.trace_id,
        "instance_id": context.instance_id,
        "mode": context.mode,
        "started_at": context.started_at_iso,
        **fields,
    }
    LOGGER.log(level, json.dumps(payload, default=str, separators=(",", ":")))


def _emit_metric(name: str, value: float, unit: str, context: RunContext, **labels: Any) -> None:
    _log_event(logging.INFO, "metric", context, metric_name=name, value=value, unit=unit, **labels)


def _acquire_run_guard() -> bool:
    """Refuse a second start in the same process so jobs are not scheduled twice."""
    global _IS_RUNNING
    with _RUN_GUARD:
        if _IS_RUNNING:
            return False
        _IS_RUNNING = True
        return True


def _release_run_guard() -> None:
    global _IS_RUNNING
    with _RUN_GUARD:
        _IS_RUNNING = False


def _elapsed_ms(start_ns: int) -> float:
    return round((time.perf_counter_ns() - start_ns) / 1_000_000, 2)


def _stop_app(app: TrendScopeApp, context: RunContext, reason: str) -> None:
    """Best-effort request for the scheduler to halt gracefully."""
    _log_event(logging.WARNING, "trendscope.stop_requested", context, reason=reason)
    with suppress(Exception):
        app.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scheduled short-form video trend collector")
    parser.add_argument(
        "--once",
        metavar="JOB_ID",
        choices=[job.job_id for job in JOB_SPECS],
        help="Run one registered job immediately and exit",
    )
    return parser


def _load_config(context: RunContext) -> Optional[AppConfig]:
    try:
        return load_config()
    except ConfigError as exc:
        _log_event(logging.CRITICAL, "trendscope.config_invalid", context, error_message=str(exc))
        print(f"Configuration error: {exc}", file=sys.stderr)
        return None


def _run_once(app: TrendScopeApp, job_id: str, context: RunContext) -> int:
    start_ns = time.perf_counter_ns()
    try:
        succeeded = app.run_once(job_id)
    finally:
        app.store.close()
    duration_ms = _elapsed_ms(start_ns)
    _emit_metric("job_duration_ms", duration_ms, "milliseconds", context, job_id=job_id, succeeded=succeeded)
    _log_event(
        logging.INFO if succeeded else logging.ERROR,
        "trendscope.job_finished",
        context,
        job_id=job_id,
        succeeded=succeeded,
        duration_ms=duration_ms,
    )
    return EXIT_OK if succeeded else EXIT_JOB_FAILED


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Bootstrap the collector and run either the scheduler or one job."""
    args = build_parser().parse_args(argv)
    context = _build_run_context("once" if args.once else "scheduler")
    if not _acquire_run_guard():
        _log_event(logging.INFO, "trendscope.already_running", context, detail="duplicate_main_invocation")
        return EXIT_OK

    app: TrendScopeApp | None = None
    try:
        config = _load_config(context)
        if config is None:
            return EXIT_USAGE

        bootstrap_start_ns = time.perf_counter_ns()
        app = TrendScopeApp(config)
        bootstrap_ms = _elapsed_ms(bootstrap_start_ns)
        _emit_metric("bootstrap_duration_ms", bootstrap_ms, "milliseconds", context)
        _log_event(
            logging.INFO,
            "trendscope.bootstrap_complete",
            context,
            duration_ms=bootstrap_ms,
            environment=config.environment,
            jobs=[job.job_id for job in JOB_SPECS],
            trending_keywords=list(config.trending_keywords),
            database_path=str(config.database_path),
        )
        if not config.trending_keywords:
            _log_event(logging.WARNING, "trendscope.no_trending_keywords", context)

        if args.once:
            return _run_once(app, args.once, context)

        run_start_ns = time.perf_counter_ns()
        app.start()
        _emit_metric("run_duration_ms", _elapsed_ms(run_start_ns), "milliseconds", context)
        _log_event(logging.INFO, "trendscope.run_completed", context)
        return EXIT_OK
    except KeyboardInterrupt:
        if app is not None:
            _stop_app(app, context, reason="keyboard_interrupt")
        _log_event(logging.WARNING, "trendscope.interrupted", context, signal="SIGINT")
        return EXIT_OK
    except Exception as exc:
        if app is not None:
            _stop_app(app, context, reason="unhandled_exception")
        error_fields = {"error_type": type(exc).__name__, "error_message": str(exc)}
        _emit_metric("run_failure", 1.0, "count", context, **error_fields)
        _log_event(logging.CRITICAL, "trendscope.run_failed", context, **error_fields)
        raise
    finally:
        _release_run_guard()


if __name__ == "__main__":
    sys.exit(main())
