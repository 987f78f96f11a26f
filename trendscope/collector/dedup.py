"""Duplicate removal across and within platform results.

Two passes run in order. The URL pass treats equal canonical ``video_url``
values as the same video and keeps the first one seen, backfilling optional
fields the kept record is missing. The title pass then compares the survivors
by title similarity, but only across different platform/source pairs, since
near-identical titles on one platform are usually distinct videos of a series.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from typing import Any, Iterable, List, Optional, Sequence
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .models import DeduplicationOptions, NormalizedTrendVideo

logger = logging.getLogger(__name__)

TRACKING_PARAMS = frozenset(
    {
        "fbclid",
        "gclid",
        "igshid",
        "igsh",
        "si",
        "feature",
        "is_from_webapp",
        "sender_device",
        "_r",
        "_t",
        "ref",
    }
)
STRIPPED_HOST_PREFIXES = ("www.", "m.")
YOUTUBE_HOSTS = frozenset({"youtube.com", "music.youtube.com"})
YOUTUBE_PATH_RE = re.compile(r"^/(?:shorts|embed|live)/([A-Za-z0-9_-]{11})")
YOUTU_BE_PATH_RE = re.compile(r"^/([A-Za-z0-9_-]{11})")

BACKFILL_FIELDS: tuple[str, ...] = (
    "thumbnail_url",
    "published_at",
    "duration",
    "creator_name",
    "creator_id",
    "view_count",
    "like_count",
    "comment_count",
    "description",
    "tags",
    "clip_url",
)

_WHITESPACE_RE = re.compile(r"\s+")


def _is_tracking_param(key: str) -> bool:
    lowered = key.lower()
    return lowered.startswith("utm_") or lowered in TRACKING_PARAMS


def _youtube_id(host: str, path: str, query: Sequence[tuple[str, str]]) -> Optional[str]:
    if host == "youtu.be":
        match = YOUTU_BE_PATH_RE.match(path)
        return match.group(1) if match else None
    if host not in YOUTUBE_HOSTS:
        return None
    if path.rstrip("/") == "/watch":
        for key, value in query:
            if key == "v" and value:
                return value
        return None
    match = YOUTUBE_PATH_RE.match(path)
    return match.group(1) if match else None


def canonicalize_url(url: str) -> str:
    """Reduce a video URL to a form where equality means the same video."""
    parts = urlsplit(url.strip())
    host = (parts.hostname or "").lower()
    for prefix in STRIPPED_HOST_PREFIXES:
        if host.startswith(prefix):
            host = host[len(prefix):]
            break
    if parts.port and parts.port not in (80, 443):
        host = f"{host}:{parts.port}"

    query = parse_qsl(parts.query, keep_blank_values=True)
    video_id = _youtube_id(host, parts.path, query)
    if video_id:
        return f"https://youtube.com/watch?v={video_id}"

    kept = sorted((key, value) for key, value in query if not _is_tracking_param(key))
    path = parts.path.rstrip("/")
    return urlunsplit(("https", host, path, urlencode(kept), ""))


def normalize_title(title: str) -> str:
    """Lower-case, drop punctuation and symbols, collapse whitespace."""
    folded = unicodedata.normalize("NFKC", title).lower()
    cleaned = "".join(
        " " if unicodedata.category(ch)[0] in ("P", "S") else ch for ch in folded
    )
    return _WHITESPACE_RE.sub(" ", cleaned).strip()


def _title_tokens(title: str) -> frozenset[str]:
    normalized = normalize_title(title)
    return frozenset(normalized.split(" ")) if normalized else frozenset()


def _jaccard(left: frozenset[str], right: frozenset[str]) -> float:
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)


def title_similarity(first: str, second: str) -> float:
    """Jaccard similarity over normalized title words, in [0, 1]."""
    return _jaccard(_title_tokens(first), _title_tokens(second))


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def backfill(kept: NormalizedTrendVideo, duplicate: NormalizedTrendVideo) -> NormalizedTrendVideo:
    """Copy optional fields the kept record lacks; present values are never replaced."""
    updates = {
        field: getattr(duplicate, field)
        for field in BACKFILL_FIELDS
        if _is_missing(getattr(kept, field)) and not _is_missing(getattr(duplicate, field))
    }
    if not updates:
        return kept
    return kept.model_copy(update=updates)


def _dedupe_by_url(videos: Iterable[NormalizedTrendVideo]) -> List[NormalizedTrendVideo]:
    survivors: List[NormalizedTrendVideo] = []
    index_by_url: dict[str, int] = {}
    for video in videos:
        key = canonicalize_url(video.video_url)
        position = index_by_url.get(key)
        if position is None:
            index_by_url[key] = len(survivors)
            survivors.append(video)
            continue
        survivors[position] = backfill(survivors[position], video)
        logger.debug("URL duplicate %s dropped in favour of %s", video.id, survivors[position].id)
    return survivors


def _dedupe_by_title(videos: Iterable[NormalizedTrendVideo], threshold: float) -> List[NormalizedTrendVideo]:
    kept: List[tuple[NormalizedTrendVideo, frozenset[str]]] = []
    for video in videos:
        tokens = _title_tokens(video.title)
        origin = (video.platform, video.source)
        duplicate_of = next(
            (
                existing
                for existing, existing_tokens in kept
                if (existing.platform, existing.source) != origin
                and _jaccard(tokens, existing_tokens) >= threshold
            ),
            None,
        )
        if duplicate_of is not None:
            logger.debug("Title duplicate %s dropped in favour of %s", video.id, duplicate_of.id)
            continue
        kept.append((video, tokens))
    return [video for video, _ in kept]


def deduplicate(
    videos: Sequence[NormalizedTrendVideo],
    options: DeduplicationOptions | None = None,
) -> List[NormalizedTrendVideo]:
    """Remove duplicates while preserving first-seen order."""
    options = options or DeduplicationOptions()
    result = list(videos)
    if options.by_url:
        result = _dedupe_by_url(result)
    if options.by_title:
        result = _dedupe_by_title(result, options.title_similarity_threshold)
    if len(result) != len(videos):
        logger.info("Deduplicated %d videos down to %d.", len(videos), len(result))
    return result
