"""Wire-level shaping of collection results."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

from .models import NormalizedTrendVideo, TrendCollectionResult

RESULT_KEY_ORDER: tuple[str, ...] = (
    "keyword",
    "totalVideos",
    "videos",
    "breakdown",
    "collectedAt",
    "quotaUsed",
    "errors",
)


def format_video(video: NormalizedTrendVideo) -> dict[str, Any]:
    """camelCase JSON for one video; fields that were never reported are omitted."""
    return video.model_dump(mode="json", by_alias=True, exclude_none=True)


def format_result(result: TrendCollectionResult) -> dict[str, Any]:
    """camelCase JSON for a collection result, dropping ``errors`` when empty."""
    payload = {
        "keyword": result.keyword,
        "totalVideos": result.total_videos,
        "videos": [format_video(video) for video in result.videos],
        "breakdown": {platform.value: count for platform, count in result.breakdown.items()},
        "collectedAt": result.model_dump(mode="json", include={"collected_at"})["collected_at"],
        "quotaUsed": dict(result.quota_used),
    }
    if result.errors:
        payload["errors"] = [error.model_dump(mode="json", by_alias=True) for error in result.errors]
    return {key: payload[key] for key in RESULT_KEY_ORDER if key in payload}


def success_envelope(data: Any) -> dict[str, Any]:
    return {"success": True, "data": data}


def error_envelope(
    error: str,
    message: str,
    details: Optional[Sequence[Mapping[str, Any]]] = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": False, "error": error, "message": message}
    if details:
        payload["details"] = [dict(item) for item in details]
    return payload
