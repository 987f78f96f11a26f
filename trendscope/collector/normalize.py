"""Map platform-native raw records onto ``NormalizedTrendVideo``."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from .errors import NormalizationWarning
from .models import NormalizedTrendVideo, Platform, Source
from .utils import parse_count, short_hash

logger = logging.getLogger(__name__)

Normalizer = Callable[[Mapping[str, Any], datetime], NormalizedTrendVideo]

YOUTUBE_WATCH_URL = "https://www.youtube.com/watch?v={video_id}"


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _text(value: Any) -> Optional[str]:
    """Stripped string or ``None``; upstream sometimes sends numbers or objects."""
    if isinstance(value, str):
        return value.strip() or None
    return None


def _pick_thumbnail(thumbnails: Any) -> str:
    thumbnails = _mapping(thumbnails)
    for size in ("high", "medium", "default"):
        url = _text(_mapping(thumbnails.get(size)).get("url"))
        if url:
            return url
    return ""


def _tags(value: Any) -> Optional[tuple[str, ...]]:
    if not isinstance(value, (list, tuple)):
        return None
    tags = tuple(tag for tag in value if isinstance(tag, str) and tag)
    return tags or None


def normalize_youtube_item(raw: Mapping[str, Any], *, collected_at: datetime) -> NormalizedTrendVideo:
    """Convert a ``videos.list`` item from the YouTube Data API."""
    video_id = _text(raw.get("id"))
    snippet = _mapping(raw.get("snippet"))
    title = _text(snippet.get("title"))
    if not video_id:
        raise NormalizationWarning("YouTube item without a video id")
    if not title:
        raise NormalizationWarning(f"YouTube item {video_id} has no title")

    details = _mapping(raw.get("contentDetails"))
    stats = _mapping(raw.get("statistics"))
    try:
        return NormalizedTrendVideo(
            id=video_id,
            title=title,
            platform=Platform.YOUTUBE,
            thumbnail_url=_pick_thumbnail(snippet.get("thumbnails")),
            video_url=YOUTUBE_WATCH_URL.format(video_id=video_id),
            published_at=snippet.get("publishedAt"),
            duration=_text(details.get("duration")),
            creator_name=_text(snippet.get("channelTitle")),
            creator_id=_text(snippet.get("channelId")),
            view_count=parse_count(stats.get("viewCount")),
            like_count=parse_count(stats.get("likeCount")),
            comment_count=parse_count(stats.get("commentCount")),
            description=_text(snippet.get("description")),
            tags=_tags(snippet.get("tags")),
            collected_at=collected_at,
            source=Source.YOUTUBE_API,
        )
    except ValidationError as exc:
        raise NormalizationWarning(f"YouTube item {video_id} failed validation: {exc}") from exc


def normalize_serpapi_item(
    raw: Mapping[str, Any],
    *,
    platform: Platform,
    collected_at: datetime,
) -> NormalizedTrendVideo:
    """Convert a SerpAPI ``short_videos`` or ``video_results`` entry.

    ``platform`` comes from the adapter that asked for the record; the
    upstream ``source`` label is only used for filtering.
    """
    link = _text(raw.get("link"))
    title = _text(raw.get("title"))
    if not link:
        raise NormalizationWarning("SerpAPI result without a link")
    if not title:
        raise NormalizationWarning(f"SerpAPI result {link} has no title")

    creator_name = _text(raw.get("profile_name")) or _text(_mapping(raw.get("channel")).get("name"))
    try:
        return NormalizedTrendVideo(
            id=short_hash(link),
            title=title,
            platform=platform,
            thumbnail_url=_text(raw.get("thumbnail")) or "",
            video_url=link,
            duration=_text(raw.get("duration")),
            creator_name=creator_name,
            clip_url=_text(raw.get("clip")),
            collected_at=collected_at,
            source=Source.SERPAPI,
        )
    except ValidationError as exc:
        raise NormalizationWarning(f"SerpAPI result {link} failed validation: {exc}") from exc


def normalize_batch(
    raws: Iterable[Mapping[str, Any]],
    normalizer: Normalizer,
    *,
    collected_at: datetime,
    label: str = "",
) -> List[NormalizedTrendVideo]:
    """Normalize every record, dropping malformed ones with a warning.

    Never raises for a bad record; anything the normalizer throws drops that
    record only.
    """
    videos: List[NormalizedTrendVideo] = []
    dropped = 0
    for raw in raws:
        if not isinstance(raw, Mapping):
            dropped += 1
            logger.warning("Dropped non-mapping %s record of type %s", label or "raw", type(raw).__name__)
            continue
        try:
            videos.append(normalizer(raw, collected_at))
        except NormalizationWarning as warning:
            dropped += 1
            logger.warning("Dropped malformed %s record: %s", label or "raw", warning)
        except Exception as exc:
            dropped += 1
            logger.warning(
                "Dropped %s record the normalizer could not read (%s: %s)",
                label or "raw",
                type(exc).__name__,
                exc,
            )
    if dropped:
        logger.info("Normalized %d %s records (%d dropped).", len(videos), label, dropped)
    return videos
