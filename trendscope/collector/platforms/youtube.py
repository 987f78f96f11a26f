from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, List, Mapping, Optional

from googleapiclient.discovery import build  # type: ignore
from googleapiclient.errors import HttpError  # type: ignore
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..errors import AdapterError, ApiKeyMissingError, QuotaExceededError
from ..models import NormalizedTrendVideo, Platform, Source
from ..normalize import normalize_youtube_item
from ..utils import iso8601_to_seconds, to_rfc3339
from .base import AdapterRequest, FetchResult, PlatformAdapter

logger = logging.getLogger(__name__)

SEARCH_QUOTA_COST = 100
VIDEOS_QUOTA_COST = 1
MAX_PAGE_SIZE = 50
QUOTA_REASONS = frozenset({"quotaExceeded", "dailyLimitExceeded"})


def _error_reasons(exc: HttpError) -> set[str]:
    try:
        payload = json.loads(exc.content.decode("utf-8"))
    except (ValueError, AttributeError, UnicodeDecodeError):
        return set()
    errors = (payload.get("error") or {}).get("errors") or []
    return {item.get("reason") for item in errors if isinstance(item, dict) and item.get("reason")}


def _error_message(exc: HttpError) -> str:
    try:
        payload = json.loads(exc.content.decode("utf-8"))
        return (payload.get("error") or {}).get("message") or str(exc)
    except (ValueError, AttributeError, UnicodeDecodeError):
        return str(exc)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, HttpError):
        status = int(getattr(exc.resp, "status", 0) or 0)
        return status == 429 or status >= 500
    return isinstance(exc, (TimeoutError, ConnectionError))


class YouTubeAdapter(PlatformAdapter):
    """YouTube Data API v3 search for short-form videos."""

    platform = Platform.YOUTUBE
    source = Source.YOUTUBE_API
    supports_date_filter = True

    def __init__(
        self,
        api_key: Optional[str],
        *,
        client: Any = None,
        max_duration_seconds: Optional[int] = None,
        retry_attempts: int = 3,
        retry_wait: float = 1.0,
    ) -> None:
        self.api_key = api_key
        self._client = client
        self.max_duration_seconds = max_duration_seconds
        self.retry_attempts = retry_attempts
        self.retry_wait = retry_wait

    async def _client_for_request(self) -> Any:
        if self._client is not None:
            return self._client
        if not self.api_key:
            raise self.error("YOUTUBE_API_KEY is not set", ApiKeyMissingError)
        # httplib2 connections are not thread-safe, so each request builds its own.
        return await asyncio.to_thread(
            build, "youtube", "v3", developerKey=self.api_key, cache_discovery=False
        )

    async def _execute(self, api_request: Any) -> dict:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, max=10),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "YouTube retry attempt %d/%d",
                        attempt.retry_state.attempt_number,
                        self.retry_attempts,
                    )
                return await asyncio.to_thread(api_request.execute)
        raise RuntimeError("YouTube retry loop exited unexpectedly")

    def _search_params(self, request: AdapterRequest) -> dict[str, Any]:
        date_filter = request.date_filter
        filtered = date_filter is not None and not date_filter.is_empty
        # Oversample when unfiltered; hydration and the duration filter drop items.
        size = request.max_results if filtered else request.max_results * 2
        params: dict[str, Any] = {
            "q": request.keyword,
            "part": "id,snippet",
            "type": "video",
            "videoDuration": "short",
            "order": "viewCount",
            "maxResults": min(MAX_PAGE_SIZE, size),
        }
        if request.country:
            params["regionCode"] = request.country
        if request.language:
            params["relevanceLanguage"] = request.language
        if filtered and date_filter.published_after:
            params["publishedAfter"] = to_rfc3339(date_filter.published_after)
        if filtered and date_filter.published_before:
            params["publishedBefore"] = to_rfc3339(date_filter.published_before)
        return params

    def _translate(self, exc: HttpError) -> AdapterError:
        status = int(getattr(exc.resp, "status", 0) or 0)
        message = _error_message(exc)
        if status == 429 or (status == 403 and _error_reasons(exc) & QUOTA_REASONS):
            return self.error(f"YouTube API quota exceeded: {message}", QuotaExceededError)
        return self.error(f"YouTube API Error ({status}): {message}")

    async def fetch(self, request: AdapterRequest) -> FetchResult:
        client = await self._client_for_request()
        quota_used = 0
        try:
            search = await self._execute(client.search().list(**self._search_params(request)))
            quota_used += SEARCH_QUOTA_COST
            ids: List[str] = []
            for item in search.get("items", []):
                video_id = (item.get("id") or {}).get("videoId")
                if video_id and video_id not in ids:
                    ids.append(video_id)
            if not ids:
                logger.info("YouTube returned no videos for %r.", request.keyword)
                return FetchResult([], quota_used)
            details = await self._execute(
                client.videos().list(part="snippet,contentDetails,statistics", id=",".join(ids))
            )
            quota_used += VIDEOS_QUOTA_COST
        except HttpError as exc:
            logger.warning("YouTube rate/HTTP issue: %s", exc)
            raise self._translate(exc) from exc
        except (TimeoutError, ConnectionError, OSError) as exc:
            raise self.error(f"Network error: {exc}") from exc

        order = {video_id: index for index, video_id in enumerate(ids)}
        items = sorted(
            (item for item in details.get("items", []) if item.get("id") in order),
            key=lambda item: order[item["id"]],
        )
        if self.max_duration_seconds:
            items = [item for item in items if self._within_duration(item)]
        logger.info("YouTube returned %d videos for %r (quota %d).", len(items), request.keyword, quota_used)
        return FetchResult(items[: request.max_results], quota_used)

    def _within_duration(self, item: Mapping[str, Any]) -> bool:
        duration = (item.get("contentDetails") or {}).get("duration")
        if not duration:
            logger.debug("Skipping video %s due to missing duration metadata", item.get("id"))
            return False
        return iso8601_to_seconds(duration) <= self.max_duration_seconds

    def normalize(self, raw: Mapping[str, Any], collected_at: datetime) -> NormalizedTrendVideo:
        return normalize_youtube_item(raw, collected_at=collected_at)
