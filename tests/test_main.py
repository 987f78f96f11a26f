import pytest

import main as entrypoint
from trendscope.config import ConfigError
from trendscope.db import TrendStore


@pytest.fixture
def env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("APP_DATABASE_PATH", str(tmp_path / "trends.db"))
    monkeypatch.setenv("APP_LOG_PATH", str(tmp_path / "app.log"))
    for name in ("YOUTUBE_API_KEY", "SERPAPI_API_KEY", "SERPAPI_KEY"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


def test_invalid_config_exits_cleanly(monkeypatch, capsys):
    def broken():
        raise ConfigError("Invalid configuration")

    monkeypatch.setattr(entrypoint, "load_config", broken)
    assert entrypoint.main([]) == entrypoint.EXIT_USAGE
    assert "Configuration error" in capsys.readouterr().err
    assert entrypoint._acquire_run_guard() is True
    entrypoint._release_run_guard()


def test_once_runs_purge_and_records_health(env):
    assert entrypoint.main(["--once", "purge_old_trends"]) == entrypoint.EXIT_OK
    store = TrendStore(env / "trends.db")
    try:
        assert store.latest_health()["job:purge_old_trends"]["status"] == "pass"
    finally:
        store.close()


def test_once_reports_failed_trending_refresh(monkeypatch, env):
    monkeypatch.setenv("APP_TRENDING_KEYWORDS", "불닭")
    assert entrypoint.main(["--once", "collect_trending"]) == entrypoint.EXIT_JOB_FAILED


def test_unknown_job_is_rejected_by_parser():
    with pytest.raises(SystemExit):
        entrypoint.build_parser().parse_args(["--once", "nope"])


def test_duplicate_invocation_is_ignored(monkeypatch):
    monkeypatch.setattr(entrypoint, "load_config", lambda: pytest.fail("config loaded twice"))
    assert entrypoint._acquire_run_guard() is True
    try:
        assert entrypoint.main([]) == entrypoint.EXIT_OK
    finally:
        entrypoint._release_run_guard()
