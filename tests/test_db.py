from datetime import datetime, timedelta, timezone

import pytest

from trendscope.collector.models import AdapterErrorInfo, Platform, Source, TrendCollectionResult
from trendscope.db import TrendListQuery, TrendStore

from conftest import FIXED_NOW, make_video


@pytest.fixture
def store(tmp_path):
    store = TrendStore(tmp_path / "trends.db")
    yield store
    store.close()


def _result(keyword, videos, collected_at=FIXED_NOW, errors=()):
    breakdown = {}
    for video in videos:
        breakdown[video.platform] = breakdown.get(video.platform, 0) + 1
    return TrendCollectionResult(
        keyword=keyword,
        total_videos=len(videos),
        videos=tuple(videos),
        breakdown=breakdown,
        collected_at=collected_at,
        quota_used={"serpapi": 1},
        errors=tuple(errors),
    )


def test_save_and_list(store):
    videos = [
        make_video("a", view_count=50),
        make_video("b", platform=Platform.TIKTOK, source=Source.SERPAPI, view_count=500),
        make_video("c", platform=Platform.TIKTOK, source=Source.SERPAPI),
    ]
    run_id = store.save_collection(_result("불닭", videos))
    assert run_id >= 1

    rows, total = store.list_trends(TrendListQuery(sort_by="view_count"))
    assert total == 3
    assert [row["id"] for row in rows] == ["b", "a", "c"]
    assert rows[0]["keyword"] == "불닭"
    assert rows[0]["videoUrl"] == "https://example.com/watch/b"

    rows, total = store.list_trends(TrendListQuery(platform=Platform.TIKTOK, sort_by="view_count", sort_order="asc"))
    assert total == 2
    assert [row["id"] for row in rows] == ["b", "c"]


def test_upsert_keeps_one_row_per_video(store):
    store.save_collection(_result("x", [make_video("a", view_count=10, like_count=3)]))
    store.save_collection(_result("x", [make_video("a", title="Renamed", view_count=20)]))
    rows, total = store.list_trends()
    assert total == 1
    assert rows[0]["title"] == "Renamed"
    assert rows[0]["viewCount"] == 20


def test_keyword_filter_and_pagination(store):
    store.save_collection(_result("불닭", [make_video(f"k{i}") for i in range(5)]))
    store.save_collection(_result("mukbang", [make_video("m1", title="Mukbang night")]))

    rows, total = store.list_trends(TrendListQuery(keyword="불닭", limit=2, offset=1))
    assert total == 5
    assert len(rows) == 2

    rows, total = store.list_trends(TrendListQuery(keyword="Mukbang"))
    assert [row["id"] for row in rows] == ["m1"]


def test_purge_older_than(store):
    old = FIXED_NOW - timedelta(days=40)
    store.save_collection(_result("x", [make_video("old", collected_at=old)], collected_at=old))
    store.save_collection(_result("x", [make_video("new")]))
    removed = store.purge_older_than(30, now=FIXED_NOW)
    assert removed == 1
    rows, total = store.list_trends()
    assert [row["id"] for row in rows] == ["new"]


def test_errors_are_recorded(store):
    error = AdapterErrorInfo(platform=Platform.TIKTOK, source=Source.SERPAPI, error="down")
    store.save_collection(_result("x", [], errors=[error]))
    with store.cursor() as cur:
        cur.execute("SELECT total_videos, errors FROM collection_runs")
        row = cur.fetchone()
    assert row["total_videos"] == 0
    assert "down" in row["errors"]


def test_job_runs_and_health(store):
    started = datetime(2026, 10, 19, tzinfo=timezone.utc)
    store.record_job_run(job_id="collect_trending", status="success", started_at=started, duration_ms=12.5)
    store.record_health(component="job:collect_trending", status="pass", detail="12.50ms")
    store.record_health(component="job:collect_trending", status="fail", detail="boom")
    assert store.latest_health()["job:collect_trending"]["status"] == "fail"
    with store.cursor() as cur:
        cur.execute("SELECT job_id, status FROM job_runs")
        assert tuple(cur.fetchone()) == ("collect_trending", "success")


def test_query_limits_validated():
    with pytest.raises(ValueError):
        TrendListQuery(limit=0)
    with pytest.raises(ValueError):
        TrendListQuery(limit=101)


def test_country_is_stored_and_filterable(store):
    korean = _result("불닭", [make_video("a")]).model_copy(update={"country": "KR"})
    store.save_collection(korean)
    store.save_collection(_result("burger", [make_video("b")]))

    rows, total = store.list_trends(TrendListQuery(country="KR"))
    assert total == 1
    assert rows[0]["id"] == "a"
    assert rows[0]["country"] == "KR"

    rows, _ = store.list_trends(TrendListQuery(keyword="burger"))
    assert rows[0]["country"] is None
