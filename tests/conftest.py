from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from trendscope.collector.models import NormalizedTrendVideo, Platform, Source
from trendscope.collector.platforms.base import AdapterRequest, FetchResult, PlatformAdapter

FIXED_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeAdapter(PlatformAdapter):
    """Scripted adapter: returns canned raw records or raises a canned error."""

    def __init__(
        self,
        platform: Platform,
        records: Optional[List[Mapping[str, Any]]] = None,
        *,
        source: Source = Source.SERPAPI,
        error: Optional[BaseException] = None,
        delay: float = 0.0,
        quota: int = 1,
        honour_max_results: bool = True,
    ) -> None:
        self.platform = platform
        self.source = source
        self.records = list(records or [])
        self.raise_error = error
        self.delay = delay
        self.quota = quota
        self.honour_max_results = honour_max_results
        self.requests: List[AdapterRequest] = []

    async def fetch(self, request: AdapterRequest) -> FetchResult:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raise_error is not None:
            raise self.raise_error
        records = self.records[: request.max_results] if self.honour_max_results else self.records
        return FetchResult(list(records), self.quota)

    def normalize(self, raw: Mapping[str, Any], collected_at: datetime) -> NormalizedTrendVideo:
        return NormalizedTrendVideo(
            id=raw["id"],
            title=raw["title"],
            platform=self.platform,
            video_url=raw["url"],
            view_count=raw.get("views"),
            creator_name=raw.get("creator"),
            collected_at=collected_at,
            source=self.source,
        )


def raw(id: str, url: str | None = None, title: str | None = None, **extra: Any) -> dict[str, Any]:
    return {"id": id, "url": url or f"https://example.com/v/{id}", "title": title or f"Video {id}", **extra}


def make_video(
    id: str = "v1",
    *,
    platform: Platform = Platform.YOUTUBE,
    source: Source = Source.YOUTUBE_API,
    url: str | None = None,
    title: str | None = None,
    **fields: Any,
) -> NormalizedTrendVideo:
    fields.setdefault("collected_at", FIXED_NOW)
    return NormalizedTrendVideo(
        id=id,
        title=title or f"Video {id}",
        platform=platform,
        video_url=url or f"https://example.com/watch/{id}",
        source=source,
        **fields,
    )

