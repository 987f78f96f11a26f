import json
from datetime import datetime, timezone

import httplib2
import pytest
from googleapiclient.errors import HttpError

from trendscope.collector.errors import AdapterError, ApiKeyMissingError, QuotaExceededError
from trendscope.collector.models import DateFilter, Platform
from trendscope.collector.platforms.base import AdapterRequest
from trendscope.collector.platforms.youtube import YouTubeAdapter


class _Call:
    def __init__(self, name, params, client):
        self._name = name
        self._params = params
        self._client = client

    def execute(self):
        self._client.calls.append((self._name, self._params))
        outcomes = self._client.outcomes[self._name]
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class _Resource:
    def __init__(self, name, client):
        self._name = name
        self._client = client

    def list(self, **params):
        return _Call(self._name, params, self._client)


class StubYouTube:
    """Mimics the discovery client: ``client.search().list(...).execute()``."""

    def __init__(self, search, videos=None):
        self.outcomes = {"search": list(search), "videos": list(videos or [{"items": []}])}
        self.calls = []

    def search(self):
        return _Resource("search", self)

    def videos(self):
        return _Resource("videos", self)


def _search_page(*ids):
    return {"items": [{"id": {"kind": "youtube#video", "videoId": vid}} for vid in ids]}


def _video(vid, duration="PT30S", views="10"):
    return {
        "id": vid,
        "snippet": {"title": f"Short {vid}", "channelTitle": "Chan", "thumbnails": {}},
        "contentDetails": {"duration": duration},
        "statistics": {"viewCount": views},
    }


def _http_error(status, reason="backendError", message="failure"):
    content = json.dumps({"error": {"code": status, "message": message, "errors": [{"reason": reason}]}})
    return HttpError(httplib2.Response({"status": status}), content.encode("utf-8"))


def _request(**kwargs):
    kwargs.setdefault("keyword", "불닭")
    kwargs.setdefault("max_results", 5)
    return AdapterRequest(**kwargs)


@pytest.mark.asyncio
async def test_search_then_hydrate_in_search_order():
    client = StubYouTube(
        [_search_page("aaaaaaaaaaa", "bbbbbbbbbbb", "aaaaaaaaaaa")],
        [{"items": [_video("bbbbbbbbbbb"), _video("aaaaaaaaaaa")]}],
    )
    result = await YouTubeAdapter(None, client=client, retry_wait=0).fetch(_request(country="JP", language="ja"))

    assert [item["id"] for item in result.records] == ["aaaaaaaaaaa", "bbbbbbbbbbb"]
    assert result.quota_used == 101
    search_params = client.calls[0][1]
    assert search_params["videoDuration"] == "short"
    assert search_params["order"] == "viewCount"
    assert search_params["maxResults"] == 10
    assert search_params["regionCode"] == "JP"
    assert search_params["relevanceLanguage"] == "ja"
    assert client.calls[1][1]["id"] == "aaaaaaaaaaa,bbbbbbbbbbb"


@pytest.mark.asyncio
async def test_date_filter_is_sent_without_oversampling():
    client = StubYouTube([_search_page()])
    window = DateFilter(published_after=datetime(2026, 10, 12, tzinfo=timezone.utc))
    result = await YouTubeAdapter(None, client=client).fetch(_request(date_filter=window))

    params = client.calls[0][1]
    assert params["publishedAfter"] == "2026-10-12T00:00:00Z"
    assert "publishedBefore" not in params
    assert params["maxResults"] == 5
    assert result.records == []
    assert result.quota_used == 100


@pytest.mark.asyncio
async def test_results_capped_at_max_results():
    ids = [f"{i:011d}" for i in range(8)]
    client = StubYouTube([_search_page(*ids)], [{"items": [_video(vid) for vid in ids]}])
    result = await YouTubeAdapter(None, client=client).fetch(_request(max_results=3))
    assert len(result.records) == 3


@pytest.mark.asyncio
async def test_duration_filter_drops_long_videos():
    client = StubYouTube(
        [_search_page("aaaaaaaaaaa", "bbbbbbbbbbb")],
        [{"items": [_video("aaaaaaaaaaa", "PT2M"), _video("bbbbbbbbbbb", "PT40S")]}],
    )
    result = await YouTubeAdapter(None, client=client, max_duration_seconds=60).fetch(_request())
    assert [item["id"] for item in result.records] == ["bbbbbbbbbbb"]


@pytest.mark.asyncio
async def test_missing_key_without_client():
    with pytest.raises(ApiKeyMissingError) as excinfo:
        await YouTubeAdapter(None).fetch(_request())
    assert excinfo.value.platform is Platform.YOUTUBE


@pytest.mark.asyncio
async def test_quota_exceeded_is_not_retried():
    client = StubYouTube([_http_error(403, "quotaExceeded", "The request cannot be completed")])
    with pytest.raises(QuotaExceededError):
        await YouTubeAdapter(None, client=client, retry_wait=0).fetch(_request())
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_transient_error_is_retried():
    client = StubYouTube(
        [_http_error(503), _search_page("aaaaaaaaaaa")],
        [{"items": [_video("aaaaaaaaaaa")]}],
    )
    result = await YouTubeAdapter(None, client=client, retry_wait=0).fetch(_request())
    assert [item["id"] for item in result.records] == ["aaaaaaaaaaa"]
    assert [name for name, _ in client.calls] == ["search", "search", "videos"]


@pytest.mark.asyncio
async def test_other_http_errors_carry_status_and_message():
    client = StubYouTube([_http_error(400, "badRequest", "Invalid regionCode")])
    with pytest.raises(AdapterError) as excinfo:
        await YouTubeAdapter(None, client=client, retry_wait=0).fetch(_request())
    assert excinfo.value.error == "YouTube API Error (400): Invalid regionCode"


def test_normalize_builds_watch_url():
    adapter = YouTubeAdapter("k")
    video = adapter.normalize(_video("aaaaaaaaaaa"), datetime(2026, 10, 19, tzinfo=timezone.utc))
    assert video.video_url == "https://www.youtube.com/watch?v=aaaaaaaaaaa"
    assert video.view_count == 10
