"""SerpAPI Google Videos search, filtered down to one short-form platform."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Final, List, Mapping, Optional
from urllib.parse import urlsplit

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import AdapterError, ApiKeyMissingError, QuotaExceededError
from ..models import NormalizedTrendVideo, Platform, Source
from ..normalize import normalize_serpapi_item
from .base import AdapterRequest, FetchResult, PlatformAdapter

logger = logging.getLogger(__name__)

SERPAPI_BASE_URL: Final[str] = "https://serpapi.com/search"
HTTP_TIMEOUT = httpx.Timeout(connect=10.0, read=20.0, write=20.0, pool=30.0)
USER_AGENT = "TrendScope/1.0"
MAX_NUM = 100
NO_RESULTS_MARKER = "hasn't returned any results"

HOST_PLATFORMS: Final[tuple[tuple[str, Platform], ...]] = (
    ("tiktok.com", Platform.TIKTOK),
    ("instagram.com", Platform.INSTAGRAM),
    ("youtube.com", Platform.YOUTUBE),
    ("youtu.be", Platform.YOUTUBE),
    ("facebook.com", Platform.FACEBOOK),
    ("fb.watch", Platform.FACEBOOK),
)
SOURCE_LABELS: Final[dict[str, Platform]] = {
    "tiktok": Platform.TIKTOK,
    "instagram": Platform.INSTAGRAM,
    "youtube": Platform.YOUTUBE,
    "facebook": Platform.FACEBOOK,
}


class _RetryableStatus(Exception):
    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


def detect_platform(record: Mapping[str, Any]) -> Platform:
    """Infer which platform hosts a search hit, by link host then source label."""
    host = (urlsplit(str(record.get("link") or "")).hostname or "").lower()
    for domain, platform in HOST_PLATFORMS:
        if host == domain or host.endswith("." + domain):
            return platform
    label = str(record.get("source") or "").strip().lower()
    return SOURCE_LABELS.get(label, Platform.OTHER)


def _error_text(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or "Unknown error"
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return "Unknown error"


class SerpApiShortVideoAdapter(PlatformAdapter):
    """Short-form search for one platform through SerpAPI's ``google_videos`` engine."""

    source = Source.SERPAPI
    supports_date_filter = False

    def __init__(
        self,
        api_key: Optional[str],
        platform: Platform,
        *,
        device: str = "mobile",
        oversample: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: httpx.Timeout = HTTP_TIMEOUT,
        retry_attempts: int = 3,
        retry_wait: float = 1.0,
    ) -> None:
        self.api_key = api_key
        self.platform = platform
        self.device = device
        self.oversample = oversample
        self._transport = transport
        self._timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_wait = retry_wait

    def _params(self, request: AdapterRequest) -> dict[str, str]:
        params = {
            "engine": "google_videos",
            "api_key": self.api_key or "",
            "q": request.keyword,
            "device": self.device,
            "num": str(min(MAX_NUM, request.max_results * self.oversample)),
        }
        if request.language:
            params["hl"] = request.language
        if request.country:
            params["gl"] = request.country.lower()
        return params

    async def _search(self, params: Mapping[str, str]) -> dict[str, Any]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, max=10),
            retry=retry_if_exception_type((_RetryableStatus, httpx.TransportError)),
            reraise=True,
        )
        async with httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            async for attempt in retrying:
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            "SerpAPI retry attempt %d/%d for %s",
                            attempt.retry_state.attempt_number,
                            self.retry_attempts,
                            self.platform.value,
                        )
                    response = await client.get(SERPAPI_BASE_URL, params=params)
                    if response.status_code == 429 or response.status_code >= 500:
                        raise _RetryableStatus(response)
                    return self._parse(response)
        raise RuntimeError("SerpAPI retry loop exited unexpectedly")

    def _parse(self, response: httpx.Response) -> dict[str, Any]:
        if response.status_code >= 400:
            message = _error_text(response)
            if "credit" in message.lower():
                raise self.error(f"SerpAPI quota or credits exceeded: {message}", QuotaExceededError)
            raise self.error(f"SerpAPI Error ({response.status_code}): {message}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise self.error(f"SerpAPI returned invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise self.error("SerpAPI returned an unexpected payload")
        return payload

    def _translate(self, exc: Exception) -> AdapterError:
        if isinstance(exc, _RetryableStatus):
            status = exc.response.status_code
            message = _error_text(exc.response)
            if status == 429:
                return self.error(f"SerpAPI quota or credits exceeded: {message}", QuotaExceededError)
            return self.error(f"SerpAPI Error ({status}): {message}")
        return self.error(f"Network error: {exc}")

    def _records(self, payload: Mapping[str, Any]) -> List[Mapping[str, Any]]:
        short_videos = payload.get("short_videos") or []
        if short_videos:
            return list(short_videos)
        video_results = payload.get("video_results") or []
        if video_results:
            logger.debug("SerpAPI had no short_videos; using %d video_results", len(video_results))
        return list(video_results)

    async def fetch(self, request: AdapterRequest) -> FetchResult:
        if not self.api_key:
            raise self.error("SERPAPI_API_KEY is not set", ApiKeyMissingError)
        if request.date_filter is not None and not request.date_filter.is_empty:
            logger.debug("SerpAPI ignores date filters; searching %s without one.", self.platform.value)
        try:
            payload = await self._search(self._params(request))
        except (_RetryableStatus, httpx.TransportError) as exc:
            raise self._translate(exc) from exc

        error = payload.get("error")
        if error:
            if NO_RESULTS_MARKER in str(error):
                return FetchResult([], 1)
            if "credit" in str(error).lower():
                raise self.error(f"SerpAPI quota or credits exceeded: {error}", QuotaExceededError)
            raise self.error(f"SerpAPI Error: {error}")

        matching = [
            record
            for record in self._records(payload)
            if isinstance(record, Mapping) and detect_platform(record) is self.platform
        ]
        logger.info(
            "SerpAPI produced %d %s candidates for %r.", len(matching), self.platform.value, request.keyword
        )
        return FetchResult(matching[: request.max_results], 1)

    def normalize(self, raw: Mapping[str, Any], collected_at: datetime) -> NormalizedTrendVideo:
        return normalize_serpapi_item(raw, platform=self.platform, collected_at=collected_at)
