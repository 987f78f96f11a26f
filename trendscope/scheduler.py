"""Scheduler management with job-run persistence and health tracking."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import STATE_RUNNING
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .config import AppConfig
from .db import TrendStore

logger = logging.getLogger(__name__)


JobCallable = Callable[[AppConfig, TrendStore], None]


@dataclass(frozen=True, slots=True)
class SchedulerSnapshot:
    """Snapshot of job registrations and high-level runtime state."""

    total_jobs: int
    running: bool
    next_runs: dict[str, str | None]


class SchedulerManager:
    """Wrap APScheduler so every run lands in ``job_runs`` and ``health_checks``."""

    def __init__(self, config: AppConfig, store: TrendStore) -> None:
        self.config = config
        self.store = store
        self.scheduler = BackgroundScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 90,
            }
        )

    def start(self) -> None:
        self.scheduler.start()
        logger.info("Scheduler started with %d jobs", len(self.scheduler.get_jobs()))
        self.publish_health()

    def shutdown(self) -> None:
        if self.scheduler.state == STATE_RUNNING:
            self.scheduler.shutdown(wait=True)
        logger.info("Scheduler shutdown complete.")
        self.publish_health()

    def run_job(self, func: JobCallable, job_id: str) -> bool:
        """Execute one job and record its outcome; returns ``True`` on success."""
        start_time = datetime.now(timezone.utc)
        try:
            logger.debug("Running job %s", job_id)
            func(self.config, self.store)
        except Exception as exc:
            duration_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
            logger.exception("Job %s failed", job_id)
            self.store.record_job_run(
                job_id=job_id,
                status="failure",
                started_at=start_time,
                duration_ms=duration_ms,
                error=str(exc),
            )
            self.store.record_health(component=f"job:{job_id}", status="fail", detail=str(exc))
            return False

        duration_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
        logger.debug("Job %s completed in %.2fms", job_id, duration_ms)
        self.store.record_job_run(
            job_id=job_id,
            status="success",
            started_at=start_time,
            duration_ms=duration_ms,
        )
        self.store.record_health(component=f"job:{job_id}", status="pass", detail=f"{duration_ms:.2f}ms")
        return True

    def add_recurring_job(
        self,
        func: JobCallable,
        *,
        trigger: str,
        id: str,
        **trigger_kwargs,
    ) -> None:
        if trigger == "interval":
            trig = IntervalTrigger(**trigger_kwargs)
        elif trigger == "cron":
            trig = CronTrigger(**trigger_kwargs)
        else:
            raise ValueError(f"Unsupported trigger type: {trigger}")

        def wrapped_job() -> None:
            self.run_job(func, id)

        # Interval jobs fire immediately on start; passing next_run_time=None would pause a job.
        extra = {"next_run_time": datetime.now(self.scheduler.timezone)} if trigger == "interval" else {}
        self.scheduler.add_job(
            wrapped_job,
            trig,
            id=id,
            replace_existing=True,
            max_instances=1,
            **extra,
        )
        logger.info("Registered job %s with trigger %s", id, trigger)

    def snapshot(self) -> SchedulerSnapshot:
        """Return a snapshot of scheduler state for external health checks."""
        jobs = self.scheduler.get_jobs()
        next_runs = {
            job.id: job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None
            for job in jobs
        }
        running = self.scheduler.state == STATE_RUNNING
        return SchedulerSnapshot(total_jobs=len(jobs), running=running, next_runs=next_runs)

    def publish_health(self) -> None:
        """Persist scheduler health for dashboards."""
        snapshot = self.snapshot()
        status = "pass" if snapshot.running else "fail"
        detail = json.dumps({"next_runs": snapshot.next_runs}) if snapshot.next_runs else None
        self.store.record_health(component="scheduler", status=status, detail=detail)
