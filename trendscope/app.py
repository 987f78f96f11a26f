"""Top-level application controller for the scheduled TrendScope collector."""

from __future__ import annotations

import json
import logging
import signal
import threading
from dataclasses import dataclass
from types import FrameType
from typing import Any, Callable, Final, Literal, Optional

from .config import AppConfig, load_config
from .db import TrendStore
from .jobs import collect_trending, purge_old_trends
from .logging_utils import configure_logging
from .scheduler import SchedulerManager

logger = logging.getLogger(__name__)

JobTrigger = Literal["interval", "cron"]


def _log_event(level: int, event: str, **fields: Any) -> None:
    """Emit structured log events with consistent metadata."""
    payload = {"event": event, **fields}
    logger.log(level, json.dumps(payload, default=str, separators=(",", ":")))


@dataclass(frozen=True, slots=True)
class JobSpec:
    """Describes a single scheduled job and its config-driven cadence."""

    func: Callable[[AppConfig, TrendStore], Any]
    trigger: JobTrigger
    job_id: str
    schedule_fields: tuple[tuple[str, str], ...]

    def build_schedule_kwargs(self, config: AppConfig) -> dict[str, int]:
        """Read scheduler keyword arguments from the AppConfig instance."""
        return {key: getattr(config, attr) for key, attr in self.schedule_fields}


JOB_SPECS: Final[tuple[JobSpec, ...]] = (
    JobSpec(collect_trending, "interval", "collect_trending", (("minutes", "trending_interval_minutes"),)),
    JobSpec(purge_old_trends, "cron", "purge_old_trends", (("hour", "purge_hour"),)),
)


class TrendScopeApp:
    """Coordinates scheduling, execution, and graceful shutdown for the collector."""

    def __init__(self, config: Optional[AppConfig] = None, *, configure_logs: bool = True) -> None:
        self.config = config or load_config()
        if configure_logs:
            configure_logging(self.config)
        self.store = TrendStore.from_config(self.config)
        self.scheduler = SchedulerManager(self.config, self.store)
        self._stop_event = threading.Event()
        self._lifecycle_lock = threading.Lock()
        self._is_running = False
        self._signals_installed = False
        self._configure_jobs()
        _log_event(logging.INFO, "trendscope.initialized", environment=self.config.environment)

    def _configure_jobs(self) -> None:
        """Register scheduled jobs with the background scheduler."""
        for job in JOB_SPECS:
            schedule_kwargs = job.build_schedule_kwargs(self.config)
            try:
                self.scheduler.add_recurring_job(
                    func=job.func,
                    trigger=job.trigger,
                    id=job.job_id,
                    **schedule_kwargs,
                )
            except Exception as exc:  # pragma: no cover - unexpected scheduler failure
                _log_event(
                    logging.CRITICAL,
                    "trendscope.job_registration_failed",
                    job_id=job.job_id,
                    trigger=job.trigger,
                    schedule=schedule_kwargs,
                    error=str(exc),
                )
                raise RuntimeError(f"Failed to register job {job.job_id}") from exc
            else:
                _log_event(
                    logging.DEBUG,
                    "trendscope.job_registered",
                    job_id=job.job_id,
                    trigger=job.trigger,
                    schedule=schedule_kwargs,
                )

    def _install_signal_handlers(self) -> None:
        """Attach SIGTERM/SIGINT handlers when running on the main thread."""
        if self._signals_installed:
            return
        if threading.current_thread() is not threading.main_thread():
            _log_event(logging.WARNING, "trendscope.signal_handlers_skipped", reason="not_main_thread")
            return

        signal.signal(signal.SIGTERM, self._handle_signal)
        signal.signal(signal.SIGINT, self._handle_signal)
        self._signals_installed = True
        _log_event(logging.INFO, "trendscope.signal_handlers_installed")

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        _log_event(logging.WARNING, "trendscope.signal_received", signal=signum)
        self.stop()

    def run_once(self, job_id: str) -> bool:
        """Run one registered job immediately, outside the scheduler."""
        for job in JOB_SPECS:
            if job.job_id == job_id:
                return self.scheduler.run_job(job.func, job.job_id)
        raise KeyError(f"Unknown job: {job_id}")

    def start(self) -> None:
        """Start the scheduler and block until termination is requested."""
        with self._lifecycle_lock:
            if self._is_running:
                _log_event(logging.INFO, "trendscope.start_ignored", reason="already_running")
                return
            self._is_running = True
            self._stop_event.clear()

        self._install_signal_handlers()
        _log_event(logging.INFO, "trendscope.starting", jobs=len(JOB_SPECS))

        try:
            self.scheduler.start()
            _log_event(logging.INFO, "trendscope.started")
            self.store.record_health(component="trendscope", status="pass", detail="scheduler_started")
            self._stop_event.wait()
        except Exception as exc:
            _log_event(logging.CRITICAL, "trendscope.start_failed", error=str(exc))
            self.store.record_health(component="trendscope", status="fail", detail=str(exc))
            raise
        finally:
            self._shutdown_resources()

    def _shutdown_resources(self) -> None:
        """Shut down the scheduler and database connections."""
        try:
            self.scheduler.shutdown()
            _log_event(logging.INFO, "trendscope.scheduler_shutdown")
        except Exception as exc:
            _log_event(logging.ERROR, "trendscope.scheduler_shutdown_failed", error=str(exc))
        finally:
            with self._lifecycle_lock:
                self._is_running = False

        try:
            self.store.close()
            _log_event(logging.INFO, "trendscope.database_closed")
        except Exception as exc:  # pragma: no cover - relies on db backend
            _log_event(logging.ERROR, "trendscope.database_close_failed", error=str(exc))

        self._stop_event.clear()

    def stop(self) -> None:
        """Signal the application to stop."""
        with self._lifecycle_lock:
            if not self._is_running:
                _log_event(logging.INFO, "trendscope.stop_ignored", reason="not_running")
                return
            if self._stop_event.is_set():
                _log_event(logging.DEBUG, "trendscope.stop_redundant")
                return
            self._stop_event.set()
            _log_event(logging.WARNING, "trendscope.stop_requested")
            self.store.record_health(component="trendscope", status="warn", detail="stop_requested")

    def health_snapshot(self) -> dict[str, Any]:
        """Return current health metadata for dashboards and CLI calls."""
        snapshot = self.scheduler.snapshot()
        return {
            "environment": self.config.environment,
            "trending_keywords": list(self.config.trending_keywords),
            "scheduler": {
                "total_jobs": snapshot.total_jobs,
                "running": snapshot.running,
                "next_runs": snapshot.next_runs,
            },
        }
