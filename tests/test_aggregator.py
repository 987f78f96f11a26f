import asyncio

import pytest

from trendscope.collector.aggregator import TrendAggregator, validate_options
from trendscope.collector.errors import AdapterError, CollectionValidationError, QuotaExceededError
from trendscope.collector.models import (
    DeduplicationOptions,
    Platform,
    Source,
    TrendCollectionOptions,
)
from trendscope.collector.platforms import FetchResult, SerpApiShortVideoAdapter, YouTubeAdapter

from conftest import FIXED_NOW, FakeAdapter, raw


def _aggregator(*adapters, **kwargs):
    kwargs.setdefault("clock", lambda: FIXED_NOW)
    return TrendAggregator(adapters, **kwargs)


def _assert_consistent(result):
    assert result.total_videos == len(result.videos) == sum(result.breakdown.values())


@pytest.mark.asyncio
async def test_buldak_example_counts_after_url_dedup():
    youtube = FakeAdapter(
        Platform.YOUTUBE,
        [
            raw("y1", url="https://www.youtube.com/watch?v=AAAAAAAAAAA"),
            raw("y2", url="https://youtu.be/AAAAAAAAAAA"),
            raw("y3", url="https://www.youtube.com/watch?v=BBBBBBBBBBB"),
        ],
        source=Source.YOUTUBE_API,
        quota=101,
    )
    tiktok = FakeAdapter(
        Platform.TIKTOK,
        [raw("t1", url="https://www.tiktok.com/@a/video/1"), raw("t2", url="https://www.tiktok.com/@b/video/2")],
    )
    result = await _aggregator(youtube, tiktok).collect(
        {"keyword": "불닭", "platforms": ["YouTube", "TikTok"]}
    )

    assert result.keyword == "불닭"
    assert result.total_videos == 4
    assert result.breakdown == {Platform.YOUTUBE: 2, Platform.TIKTOK: 2}
    assert [v.id for v in result.videos] == ["y1", "y3", "t1", "t2"]
    assert result.quota_used == {"youtube-api": 101, "serpapi": 1}
    assert result.errors == ()
    _assert_consistent(result)


@pytest.mark.asyncio
async def test_merge_order_follows_priority_not_completion_time():
    slow_youtube = FakeAdapter(Platform.YOUTUBE, [raw("y1")], source=Source.YOUTUBE_API, delay=0.05)
    fast_instagram = FakeAdapter(Platform.INSTAGRAM, [raw("i1")])
    fast_tiktok = FakeAdapter(Platform.TIKTOK, [raw("t1")])
    result = await _aggregator(fast_instagram, fast_tiktok, slow_youtube).collect({"keyword": "x"})
    assert [v.platform for v in result.videos] == [Platform.YOUTUBE, Platform.TIKTOK, Platform.INSTAGRAM]
    assert list(result.breakdown) == [Platform.YOUTUBE, Platform.TIKTOK, Platform.INSTAGRAM]


@pytest.mark.asyncio
async def test_all_adapters_failing_yields_empty_result_with_every_error():
    adapters = [
        FakeAdapter(Platform.YOUTUBE, source=Source.YOUTUBE_API,
                    error=QuotaExceededError(Platform.YOUTUBE, Source.YOUTUBE_API, "quota")),
        FakeAdapter(Platform.TIKTOK, error=AdapterError(Platform.TIKTOK, Source.SERPAPI, "SerpAPI Error (500)")),
        FakeAdapter(Platform.INSTAGRAM, error=RuntimeError("boom")),
    ]
    result = await _aggregator(*adapters).collect({"keyword": "x"})
    assert result.videos == ()
    assert result.total_videos == 0
    assert result.breakdown == {}
    assert len(result.errors) == 3
    assert {e.platform for e in result.errors} == {Platform.YOUTUBE, Platform.TIKTOK, Platform.INSTAGRAM}
    instagram_error = next(e for e in result.errors if e.platform is Platform.INSTAGRAM)
    assert "RuntimeError" in instagram_error.error


@pytest.mark.asyncio
async def test_partial_failure_keeps_successful_platforms():
    youtube = FakeAdapter(Platform.YOUTUBE, [raw("y1")], source=Source.YOUTUBE_API)
    tiktok = FakeAdapter(Platform.TIKTOK, error=AdapterError(Platform.TIKTOK, Source.SERPAPI, "down"))
    result = await _aggregator(youtube, tiktok).collect({"keyword": "x"})
    assert result.total_videos == 1
    assert result.breakdown == {Platform.YOUTUBE: 1}
    assert [(e.platform, e.error) for e in result.errors] == [(Platform.TIKTOK, "down")]


@pytest.mark.asyncio
async def test_max_results_caps_adapter_output():
    hits = [raw(f"t{i}") for i in range(20)]
    greedy = FakeAdapter(Platform.TIKTOK, hits, honour_max_results=False)
    result = await _aggregator(greedy).collect({"keyword": "x", "maxResults": 5})
    assert greedy.requests[0].max_results == 5
    assert result.total_videos == 5


@pytest.mark.asyncio
async def test_country_sets_language_when_not_given():
    adapter = FakeAdapter(Platform.YOUTUBE, [raw("y1")], source=Source.YOUTUBE_API)
    await _aggregator(adapter).collect({"keyword": "x", "country": "JP"})
    assert adapter.requests[0].language == "ja"
    assert adapter.requests[0].country == "JP"


@pytest.mark.asyncio
async def test_explicit_language_beats_country_default():
    adapter = FakeAdapter(Platform.YOUTUBE, [raw("y1")], source=Source.YOUTUBE_API)
    await _aggregator(adapter).collect({"keyword": "x", "country": "KR", "language": "en"})
    assert adapter.requests[0].language == "en"


@pytest.mark.asyncio
async def test_platform_flags_and_list_are_additive():
    youtube = FakeAdapter(Platform.YOUTUBE, [raw("y1")], source=Source.YOUTUBE_API)
    tiktok = FakeAdapter(Platform.TIKTOK, [raw("t1")])
    instagram = FakeAdapter(Platform.INSTAGRAM, [raw("i1")])
    aggregator = _aggregator(youtube, tiktok, instagram)

    result = await aggregator.collect({"keyword": "x", "platforms": ["TikTok"], "includeInstagram": True})
    assert set(result.breakdown) == {Platform.TIKTOK, Platform.INSTAGRAM}
    assert youtube.requests == []

    result = await aggregator.collect({"keyword": "x", "includeYouTube": False})
    assert set(result.breakdown) == {Platform.TIKTOK, Platform.INSTAGRAM}

    result = await aggregator.collect({"keyword": "x", "includeYouTube": False, "includeTikTok": False})
    assert set(result.breakdown) == {Platform.INSTAGRAM}


def test_shorthand_flags_use_platform_spelling():
    options = TrendCollectionOptions.model_validate(
        {"keyword": "x", "includeYouTube": False, "includeTikTok": False, "includeInstagram": True}
    )
    assert options.include_youtube is False
    assert options.include_tiktok is False
    assert options.include_instagram is True
    dumped = options.model_dump(by_alias=True)
    assert {"includeYouTube", "includeTikTok", "includeInstagram"} <= set(dumped)


@pytest.mark.asyncio
async def test_unsupported_platform_is_skipped():
    youtube = FakeAdapter(Platform.YOUTUBE, [raw("y1")], source=Source.YOUTUBE_API)
    result = await _aggregator(youtube).collect({"keyword": "x", "platforms": ["YouTube", "Facebook"]})
    assert result.breakdown == {Platform.YOUTUBE: 1}
    assert result.errors == ()


@pytest.mark.asyncio
async def test_slow_adapter_times_out_without_blocking_others():
    slow = FakeAdapter(Platform.TIKTOK, [raw("t1")], delay=1.0)
    fast = FakeAdapter(Platform.YOUTUBE, [raw("y1")], source=Source.YOUTUBE_API)
    result = await _aggregator(slow, fast, timeout_seconds=0.05).collect({"keyword": "x"})
    assert result.breakdown == {Platform.YOUTUBE: 1}
    assert len(result.errors) == 1
    assert "Timed out" in result.errors[0].error


@pytest.mark.asyncio
async def test_cancellation_propagates():
    slow = FakeAdapter(Platform.TIKTOK, [raw("t1")], delay=5.0)
    task = asyncio.create_task(_aggregator(slow).collect({"keyword": "x"}))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_title_dedup_only_across_platforms():
    youtube = FakeAdapter(
        Platform.YOUTUBE,
        [raw("y1", title="Buldak challenge part"), raw("y2", title="Buldak challenge part")],
        source=Source.YOUTUBE_API,
    )
    tiktok = FakeAdapter(Platform.TIKTOK, [raw("t1", title="buldak CHALLENGE part!")])
    result = await _aggregator(youtube, tiktok).collect(
        {"keyword": "x"}, dedup_options=DeduplicationOptions(by_title=True)
    )
    assert [v.id for v in result.videos] == ["y1", "y2"]


@pytest.mark.asyncio
async def test_store_receives_result_and_failures_do_not_propagate():
    class Sink:
        def __init__(self):
            self.saved = []

        def save_collection(self, result):
            self.saved.append(result)
            raise OSError("disk full")

    sink = Sink()
    adapter = FakeAdapter(Platform.YOUTUBE, [raw("y1")], source=Source.YOUTUBE_API)
    result = await _aggregator(adapter, store=sink).collect({"keyword": "x"})
    assert sink.saved == [result]


@pytest.mark.asyncio
async def test_collect_trending_sets_lookback_window():
    adapter = FakeAdapter(Platform.YOUTUBE, [raw("y1")], source=Source.YOUTUBE_API)
    await _aggregator(adapter).collect_trending("x", max_results=3, lookback_days=7)
    request = adapter.requests[0]
    assert request.max_results == 3
    assert request.date_filter.published_after == FIXED_NOW.replace(day=12)
    assert request.date_filter.published_before is None


@pytest.mark.parametrize(
    "options",
    [
        {"keyword": "   "},
        {"keyword": "x", "maxResults": 0},
        {"keyword": "x", "maxResults": 51},
        {"keyword": "x", "country": "FR"},
        {"keyword": "x", "dateFilter": {"publishedAfter": "2026-10-10T00:00:00Z", "publishedBefore": "2026-10-01T00:00:00Z"}},
    ],
)
def test_invalid_options_rejected_before_fan_out(options):
    with pytest.raises(CollectionValidationError) as excinfo:
        validate_options(options)
    assert excinfo.value.problems


def test_validate_options_passes_models_through():
    options = TrendCollectionOptions(keyword=" 불닭 ")
    assert validate_options(options) is options
    assert options.keyword == "불닭"


def test_duplicate_platform_adapters_rejected():
    with pytest.raises(ValueError):
        TrendAggregator([FakeAdapter(Platform.TIKTOK), FakeAdapter(Platform.TIKTOK)])


class _CannedYouTube(YouTubeAdapter):
    def __init__(self, items):
        super().__init__(None)
        self.items = items

    async def fetch(self, request):
        return FetchResult(list(self.items), 101)


class _CannedSerpApi(SerpApiShortVideoAdapter):
    def __init__(self, platform, items):
        super().__init__(None, platform)
        self.items = items

    async def fetch(self, request):
        return FetchResult(list(self.items), 1)


@pytest.mark.asyncio
async def test_malformed_upstream_records_are_dropped_not_raised():
    good = {"id": "AAAAAAAAAAA", "snippet": {"title": "good", "thumbnails": {}}}
    youtube = _CannedYouTube([good, {"snippet": {"title": "bad", "thumbnails": {"high": "not-a-dict"}}}, "junk"])
    tiktok = _CannedSerpApi(
        Platform.TIKTOK,
        [
            {"title": "ok", "link": "https://www.tiktok.com/@a/video/1", "channel": "str"},
            {"title": ["list"], "link": "https://www.tiktok.com/@a/video/2"},
        ],
    )

    result = await _aggregator(youtube, tiktok).collect({"keyword": "x"})

    _assert_consistent(result)
    assert result.breakdown == {Platform.YOUTUBE: 1, Platform.TIKTOK: 1}
    assert result.errors == ()
