"""Canonical data shapes for trend collection."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Final, Iterable, Literal, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class Platform(str, Enum):
    YOUTUBE = "YouTube"
    TIKTOK = "TikTok"
    INSTAGRAM = "Instagram"
    FACEBOOK = "Facebook"
    OTHER = "Other"


class Source(str, Enum):
    YOUTUBE_API = "youtube-api"
    SERPAPI = "serpapi"


# Merge and invocation order; earlier platforms win deduplication ties.
PLATFORM_PRIORITY: Final[tuple[Platform, ...]] = (
    Platform.YOUTUBE,
    Platform.TIKTOK,
    Platform.INSTAGRAM,
    Platform.FACEBOOK,
    Platform.OTHER,
)

Country = Literal["KR", "US", "JP"]

COUNTRY_LANGUAGE: Final[dict[str, str]] = {
    "KR": "ko",
    "US": "en",
    "JP": "ja",
}

DEFAULT_MAX_RESULTS: Final[int] = 10

PLATFORM_FLAGS: Final[dict[Platform, str]] = {
    Platform.YOUTUBE: "include_youtube",
    Platform.TIKTOK: "include_tiktok",
    Platform.INSTAGRAM: "include_instagram",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class NormalizedTrendVideo(_CamelModel):
    """One discovered video, decoupled from the platform that reported it.

    ``id`` is only unique within its ``platform`` + ``source`` pair. ``video_url``
    is the identity used by URL deduplication, so it must be absolute.
    Statistics left as ``None`` mean "not reported", which is distinct from 0.
    """

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    platform: Platform
    thumbnail_url: str = ""
    video_url: str
    published_at: Optional[datetime] = None
    duration: Optional[str] = None
    creator_name: Optional[str] = None
    creator_id: Optional[str] = None
    view_count: Optional[int] = Field(default=None, ge=0)
    like_count: Optional[int] = Field(default=None, ge=0)
    comment_count: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None
    tags: Optional[tuple[str, ...]] = None
    clip_url: Optional[str] = None
    collected_at: datetime
    source: Source

    @field_validator("video_url")
    @classmethod
    def _absolute_url(cls, value: str) -> str:
        value = value.strip()
        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"video_url must be an absolute http(s) URL: {value!r}")
        return value

    @field_validator("published_at", "collected_at")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


class DateFilter(_CamelModel):
    """Server-side publish window; adapters without support ignore it."""

    published_after: Optional[datetime] = None
    published_before: Optional[datetime] = None

    @field_validator("published_after", "published_before")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @model_validator(mode="after")
    def _ordered(self) -> "DateFilter":
        if self.published_after and self.published_before and self.published_after > self.published_before:
            raise ValueError("publishedAfter must not be later than publishedBefore")
        return self

    @property
    def is_empty(self) -> bool:
        return self.published_after is None and self.published_before is None


class TrendCollectionOptions(_CamelModel):
    """Per-request collection settings."""

    keyword: str
    max_results: int = Field(default=DEFAULT_MAX_RESULTS, ge=1, le=50)
    platforms: Optional[tuple[Platform, ...]] = None
    # to_camel would yield includeYoutube / includeTiktok
    include_youtube: Optional[bool] = Field(default=None, alias="includeYouTube")
    include_tiktok: Optional[bool] = Field(default=None, alias="includeTikTok")
    include_instagram: Optional[bool] = None
    country: Optional[Country] = None
    language: Optional[str] = Field(default=None, min_length=2, max_length=8)
    date_filter: Optional[DateFilter] = None

    @field_validator("keyword")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("keyword must not be empty")
        return stripped

    def resolved_language(self) -> str | None:
        """Explicit language wins; otherwise the country's default locale."""
        if self.language:
            return self.language
        if self.country:
            return COUNTRY_LANGUAGE[self.country]
        return None

    def selected_platforms(self, supported: Iterable[Platform]) -> set[Platform]:
        """Collapse the explicit list and the shorthand flags into one set.

        The two mechanisms are additive: an explicit list plus any flag set to
        ``True``. With only flags given, every supported platform runs unless
        its flag is ``False``. With neither, every supported platform runs.
        """
        supported = set(supported)
        flags = {platform: getattr(self, attr) for platform, attr in PLATFORM_FLAGS.items()}
        if self.platforms:
            selected = set(self.platforms)
            selected.update(platform for platform, flag in flags.items() if flag is True)
            return selected
        if any(flag is not None for flag in flags.values()):
            return {platform for platform in supported if flags.get(platform) is not False}
        return supported


class DeduplicationOptions(_CamelModel):
    by_url: bool = True
    by_title: bool = False
    title_similarity_threshold: float = Field(default=0.9, ge=0.0, le=1.0)


class AdapterErrorInfo(_CamelModel):
    platform: Platform
    source: Source
    error: str


class TrendCollectionResult(_CamelModel):
    """Response envelope for one collection request."""

    keyword: str
    total_videos: int
    videos: tuple[NormalizedTrendVideo, ...] = ()
    breakdown: dict[Platform, int] = Field(default_factory=dict)
    collected_at: datetime
    quota_used: dict[str, int] = Field(default_factory=dict)
    errors: tuple[AdapterErrorInfo, ...] = ()
    # Request country, kept for storage filters; not part of the wire payload.
    country: Optional[Country] = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def _consistent_counts(self) -> "TrendCollectionResult":
        if not (self.total_videos == len(self.videos) == sum(self.breakdown.values())):
            raise ValueError(
                "total_videos, len(videos) and sum(breakdown) disagree: "
                f"{self.total_videos}, {len(self.videos)}, {sum(self.breakdown.values())}"
            )
        if any(count < 1 for count in self.breakdown.values()):
            raise ValueError("breakdown only lists platforms with at least one video")
        return self
