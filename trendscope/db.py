"""SQLite persistence for collected trends, job runs, and health tracking."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .collector.dedup import canonicalize_url
from .collector.formatter import format_video
from .collector.models import Country, Platform, TrendCollectionResult

if TYPE_CHECKING:
    from .config import AppConfig

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS collection_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    keyword TEXT NOT NULL,
    country TEXT,
    total_videos INTEGER NOT NULL,
    breakdown TEXT NOT NULL,
    quota_used TEXT,
    errors TEXT,
    collected_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_runs_keyword ON collection_runs(keyword);

CREATE TABLE IF NOT EXISTS trend_videos (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    platform TEXT NOT NULL,
    source TEXT NOT NULL,
    video_id TEXT NOT NULL,
    keyword TEXT NOT NULL,
    country TEXT,
    title TEXT NOT NULL,
    video_url TEXT NOT NULL,
    canonical_url TEXT NOT NULL,
    view_count INTEGER,
    like_count INTEGER,
    comment_count INTEGER,
    published_at TEXT,
    collected_at TEXT NOT NULL,
    payload TEXT NOT NULL,
    UNIQUE(platform, source, video_id)
);
CREATE INDEX IF NOT EXISTS idx_videos_platform ON trend_videos(platform);
CREATE INDEX IF NOT EXISTS idx_videos_keyword ON trend_videos(keyword);
CREATE INDEX IF NOT EXISTS idx_videos_country ON trend_videos(country);
CREATE INDEX IF NOT EXISTS idx_videos_collected ON trend_videos(collected_at);

CREATE TABLE IF NOT EXISTS job_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id TEXT NOT NULL,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    duration_ms REAL NOT NULL,
    error TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_job_runs_job_id ON job_runs(job_id);
CREATE TABLE IF NOT EXISTS health_checks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    component TEXT NOT NULL,
    status TEXT NOT NULL,
    detail TEXT,
    observed_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_health_component ON health_checks(component);
"""

SORT_COLUMNS: dict[str, str] = {
    "collected_at": "collected_at",
    "view_count": "view_count",
    "like_count": "like_count",
    "published_at": "published_at",
}


def _timestamp(value: datetime) -> str:
    aware = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return aware.astimezone(timezone.utc).isoformat(timespec="microseconds")


class TrendListQuery(BaseModel):
    """Filters for the stored-trend listing."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    keyword: Optional[str] = None
    platform: Optional[Platform] = None
    country: Optional[Country] = None
    sort_by: Literal["collected_at", "view_count", "like_count", "published_at"] = "collected_at"
    sort_order: Literal["asc", "desc"] = "desc"
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class TrendStore:
    """Thread-safe SQLite manager for collected trends."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._local = threading.local()
        self._init_schema_once()

    @classmethod
    def from_config(cls, config: "AppConfig") -> "TrendStore":
        return cls(config.database_path)

    # ------------------------------------------------------------------ #
    # Connection handling
    # ------------------------------------------------------------------ #

    def _get_conn(self) -> sqlite3.Connection:
        """Return a per-thread connection to the database."""
        if not hasattr(self._local, "conn"):
            conn = sqlite3.connect(self.path, check_same_thread=False, isolation_level=None)
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
            logger.debug("Opened thread-local DB connection at %s", self.path)
        return self._local.conn

    def _init_schema_once(self) -> None:
        conn = sqlite3.connect(self.path)
        try:
            conn.executescript(SCHEMA)
            conn.commit()
        finally:
            conn.close()
        logger.debug("Database schema ensured at %s", self.path)

    @contextmanager
    def cursor(self) -> Iterator[sqlite3.Cursor]:
        """Provide a transactional cursor."""
        conn = self._get_conn()
        cur = conn.cursor()
        cur.execute("BEGIN")
        try:
            yield cur
            cur.execute("COMMIT")
        except Exception:
            cur.execute("ROLLBACK")
            logger.exception("Database operation failed; rolled back transaction.")
            raise
        finally:
            cur.close()

    # ------------------------------------------------------------------ #
    # Trends
    # ------------------------------------------------------------------ #

    def save_collection(self, result: TrendCollectionResult) -> int:
        """Persist one collection run and upsert its videos; returns the run id."""
        with self.cursor() as cur:
            cur.execute(
                """
                INSERT INTO collection_runs(keyword, country, total_videos, breakdown, quota_used, errors, collected_at)
                VALUES(?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    result.keyword,
                    result.country,
                    result.total_videos,
                    json.dumps({p.value: n for p, n in result.breakdown.items()}),
                    json.dumps(result.quota_used),
                    json.dumps([e.model_dump(mode="json", by_alias=True) for e in result.errors]) if result.errors else None,
                    _timestamp(result.collected_at),
                ),
            )
            run_id = int(cur.lastrowid)
            for video in result.videos:
                cur.execute(
                    """
                    INSERT INTO trend_videos(platform, source, video_id, keyword, country, title, video_url,
                                             canonical_url, view_count, like_count, comment_count,
                                             published_at, collected_at, payload)
                    VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(platform, source, video_id) DO UPDATE SET
                        keyword = excluded.keyword,
                        country = excluded.country,
                        title = excluded.title,
                        view_count = COALESCE(excluded.view_count, trend_videos.view_count),
                        like_count = COALESCE(excluded.like_count, trend_videos.like_count),
                        comment_count = COALESCE(excluded.comment_count, trend_videos.comment_count),
                        collected_at = excluded.collected_at,
                        payload = excluded.payload
                    """,
                    (
                        video.platform.value,
                        video.source.value,
                        video.id,
                        result.keyword,
                        result.country,
                        video.title,
                        video.video_url,
                        canonicalize_url(video.video_url),
                        video.view_count,
                        video.like_count,
                        video.comment_count,
                        _timestamp(video.published_at) if video.published_at else None,
                        _timestamp(video.collected_at),
                        json.dumps(format_video(video), ensure_ascii=False),
                    ),
                )
        logger.info("Stored %d videos for %r (run %d).", result.total_videos, result.keyword, run_id)
        return run_id

    def list_trends(self, query: TrendListQuery | None = None) -> tuple[list[dict[str, Any]], int]:
        """Return one page of stored videos and the total matching count."""
        query = query or TrendListQuery()
        clauses: list[str] = []
        params: list[Any] = []
        if query.keyword:
            clauses.append("(keyword = ? OR title LIKE ?)")
            params.extend([query.keyword, f"%{query.keyword}%"])
        if query.platform:
            clauses.append("platform = ?")
            params.append(query.platform.value)
        if query.country:
            clauses.append("country = ?")
            params.append(query.country)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        column = SORT_COLUMNS[query.sort_by]
        direction = "ASC" if query.sort_order == "asc" else "DESC"

        with self.cursor() as cur:
            cur.execute(f"SELECT COUNT(*) FROM trend_videos {where}", params)
            total = int(cur.fetchone()[0])
            cur.execute(
                f"""
                SELECT keyword, country, payload FROM trend_videos {where}
                ORDER BY {column} IS NULL, {column} {direction}, id ASC
                LIMIT ? OFFSET ?
                """,
                [*params, query.limit, query.offset],
            )
            rows = [
                {**json.loads(row["payload"]), "keyword": row["keyword"], "country": row["country"]}
                for row in cur.fetchall()
            ]
        return rows, total

    def purge_older_than(self, days: int, *, now: datetime | None = None) -> int:
        """Delete videos and runs collected more than ``days`` ago."""
        cutoff = _timestamp((now or datetime.now(timezone.utc)) - timedelta(days=days))
        with self.cursor() as cur:
            cur.execute("DELETE FROM trend_videos WHERE collected_at < ?", (cutoff,))
            removed = cur.rowcount
            cur.execute("DELETE FROM collection_runs WHERE collected_at < ?", (cutoff,))
        logger.info("Purged %d videos collected before %s.", removed, cutoff)
        return removed

    # ------------------------------------------------------------------ #
    # Jobs and health
    # ------------------------------------------------------------------ #

    def record_job_run(
        self,
        *,
        job_id: str,
        status: Literal["success", "failure"],
        started_at: datetime,
        duration_ms: float,
        error: str | None = None,
    ) -> None:
        """Persist job execution metadata for health checks."""
        with self.cursor() as cur:
            cur.execute(
                """
                INSERT INTO job_runs(job_id, status, started_at, duration_ms, error)
                VALUES(?, ?, ?, ?, ?)
                """,
                (job_id, status, _timestamp(started_at), float(duration_ms), error),
            )

    def record_health(
        self,
        *,
        component: str,
        status: Literal["pass", "warn", "fail"],
        detail: str | None = None,
    ) -> None:
        """Store health-check snapshots for external dashboards."""
        with self.cursor() as cur:
            cur.execute(
                "INSERT INTO health_checks(component, status, detail) VALUES(?, ?, ?)",
                (component, status, detail),
            )

    def latest_health(self) -> dict[str, dict[str, Any]]:
        """Most recent health status per component."""
        with self.cursor() as cur:
            cur.execute(
                """
                SELECT component, status, detail, observed_at FROM health_checks
                WHERE id IN (SELECT MAX(id) FROM health_checks GROUP BY component)
                ORDER BY component
                """
            )
            return {
                row["component"]: {"status": row["status"], "detail": row["detail"], "observed_at": row["observed_at"]}
                for row in cur.fetchall()
            }

    def close(self) -> None:
        conn: Optional[sqlite3.Connection] = getattr(self._local, "conn", None)
        if conn:
            conn.close()
            del self._local.conn
            logger.debug("Thread-local database connection closed.")
