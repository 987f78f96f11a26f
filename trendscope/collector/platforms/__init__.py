"""Platform adapters and the default adapter set."""

from __future__ import annotations

from typing import TYPE_CHECKING, List

from ..models import Platform
from .base import AdapterRequest, FetchResult, PlatformAdapter
from .serpapi import SerpApiShortVideoAdapter
from .youtube import YouTubeAdapter

if TYPE_CHECKING:
    from ...config import AppConfig


def build_default_adapters(config: "AppConfig") -> List[PlatformAdapter]:
    """YouTube through its Data API, TikTok and Instagram through SerpAPI."""
    serpapi_key = config.secret("serpapi_api_key")
    shared = {
        "retry_attempts": config.adapter_retry_attempts,
        "retry_wait": config.adapter_retry_wait_seconds,
    }
    return [
        YouTubeAdapter(
            config.secret("youtube_api_key"),
            max_duration_seconds=config.youtube_max_duration_seconds,
            **shared,
        ),
        SerpApiShortVideoAdapter(serpapi_key, Platform.TIKTOK, device=config.serpapi_device, **shared),
        SerpApiShortVideoAdapter(serpapi_key, Platform.INSTAGRAM, device=config.serpapi_device, **shared),
    ]


__all__ = [
    "AdapterRequest",
    "FetchResult",
    "PlatformAdapter",
    "SerpApiShortVideoAdapter",
    "YouTubeAdapter",
    "build_default_adapters",
]
