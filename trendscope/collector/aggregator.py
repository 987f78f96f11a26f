"""Fan a keyword out to the platform adapters and merge what comes back."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterable, List, Mapping, Optional, Protocol, Sequence

from pydantic import ValidationError

from .dedup import deduplicate
from .errors import AdapterError, AdapterTimeoutError, CollectionValidationError
from .models import (
    PLATFORM_PRIORITY,
    DateFilter,
    DeduplicationOptions,
    NormalizedTrendVideo,
    Platform,
    TrendCollectionOptions,
    TrendCollectionResult,
    utcnow,
)
from .normalize import normalize_batch
from .platforms import AdapterRequest, PlatformAdapter, build_default_adapters

if TYPE_CHECKING:
    from ..config import AppConfig

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0


class CollectionState(str, Enum):
    FANNING_OUT = "fanning-out"
    MERGING = "merging"
    COMPLETE = "complete"


class ResultSink(Protocol):
    def save_collection(self, result: TrendCollectionResult) -> Any: ...


@dataclass(slots=True)
class AdapterOutcome:
    """Buffered result of one adapter call: either videos or an error."""

    adapter: PlatformAdapter
    videos: List[NormalizedTrendVideo] = field(default_factory=list)
    quota_used: int = 0
    error: Optional[AdapterError] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(slots=True)
class CollectionRun:
    """Per-request bookkeeping for one pass through fan-out, merge and completion."""

    options: TrendCollectionOptions
    platforms: tuple[Platform, ...]
    state: CollectionState = CollectionState.FANNING_OUT
    history: List[CollectionState] = field(default_factory=lambda: [CollectionState.FANNING_OUT])
    outcomes: List[AdapterOutcome] = field(default_factory=list)

    def advance(self, state: CollectionState) -> None:
        logger.debug("Collection for %r: %s -> %s", self.options.keyword, self.state.value, state.value)
        self.state = state
        self.history.append(state)


def validate_options(options: TrendCollectionOptions | Mapping[str, Any]) -> TrendCollectionOptions:
    """Coerce caller input into options, rejecting it before any adapter runs."""
    if isinstance(options, TrendCollectionOptions):
        return options
    try:
        return TrendCollectionOptions.model_validate(options)
    except ValidationError as exc:
        problems = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        summary = "; ".join(f"{p['field']}: {p['message']}" for p in problems)
        raise CollectionValidationError(f"Invalid trend collection options: {summary}", problems) from exc


class TrendAggregator:
    """Runs the enabled adapters concurrently and assembles one deduplicated result.

    Every adapter outcome is buffered before merging, so the order of ``videos``
    depends only on the platform priority table and each adapter's own order,
    never on which adapter finished first.
    """

    def __init__(
        self,
        adapters: Iterable[PlatformAdapter],
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        priority: Sequence[Platform] = PLATFORM_PRIORITY,
        dedup_options: Optional[DeduplicationOptions] = None,
        store: Optional[ResultSink] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._adapters: dict[Platform, PlatformAdapter] = {}
        for adapter in adapters:
            if adapter.platform in self._adapters:
                raise ValueError(f"Duplicate adapter for platform {adapter.platform.value}")
            self._adapters[adapter.platform] = adapter
        self.timeout_seconds = timeout_seconds
        self.priority = tuple(priority)
        self.dedup_options = dedup_options or DeduplicationOptions()
        self.store = store
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: "AppConfig",
        *,
        adapters: Optional[Iterable[PlatformAdapter]] = None,
        store: Optional[ResultSink] = None,
    ) -> "TrendAggregator":
        return cls(
            adapters if adapters is not None else build_default_adapters(config),
            timeout_seconds=config.adapter_timeout_seconds,
            priority=config.platform_priority,
            dedup_options=DeduplicationOptions(
                by_url=True,
                by_title=config.dedup_by_title,
                title_similarity_threshold=config.title_similarity_threshold,
            ),
            store=store,
        )

    @property
    def supported_platforms(self) -> tuple[Platform, ...]:
        return self._ordered(self._adapters)

    def _rank(self, platform: Platform) -> tuple[int, int]:
        if platform in self.priority:
            return (0, self.priority.index(platform))
        return (1, list(Platform).index(platform))

    def _ordered(self, platforms: Iterable[Platform]) -> tuple[Platform, ...]:
        return tuple(sorted(set(platforms), key=self._rank))

    def _resolve_platforms(self, options: TrendCollectionOptions) -> tuple[Platform, ...]:
        selected = options.selected_platforms(self._adapters)
        unsupported = selected - set(self._adapters)
        if unsupported:
            logger.warning(
                "No adapter for requested platforms %s; skipping.",
                ", ".join(p.value for p in self._ordered(unsupported)),
            )
        return self._ordered(selected & set(self._adapters))

    async def _run_adapter(self, adapter: PlatformAdapter, request: AdapterRequest) -> AdapterOutcome:
        try:
            fetched = await asyncio.wait_for(adapter.fetch(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            error = adapter.error(f"Timed out after {self.timeout_seconds:g}s", AdapterTimeoutError)
        except AdapterError as exc:
            error = exc
        except Exception as exc:
            logger.exception("%r raised an unexpected error", adapter)
            error = adapter.error(f"{type(exc).__name__}: {exc}")
        else:
            videos = normalize_batch(
                fetched.records[: request.max_results],
                adapter.normalize,
                collected_at=self._clock(),
                label=adapter.platform.value,
            )
            logger.info("Collected %d %s videos for %r.", len(videos), adapter.platform.value, request.keyword)
            return AdapterOutcome(adapter, videos, fetched.quota_used)

        logger.error("%s collection error for %r: %s", adapter.platform.value, request.keyword, error.error)
        return AdapterOutcome(adapter, error=error)

    async def collect(
        self,
        options: TrendCollectionOptions | Mapping[str, Any],
        *,
        dedup_options: Optional[DeduplicationOptions] = None,
    ) -> TrendCollectionResult:
        """Collect, normalize and deduplicate videos for one keyword.

        Raises ``CollectionValidationError`` for bad options. Upstream failures,
        including every adapter failing, yield a result with ``errors`` instead.
        """
        options = validate_options(options)
        run = CollectionRun(options=options, platforms=self._resolve_platforms(options))
        request = AdapterRequest(
            keyword=options.keyword,
            max_results=options.max_results,
            country=options.country,
            language=options.resolved_language(),
            date_filter=options.date_filter,
        )
        logger.info(
            "Collecting %r on %s (country=%s, language=%s)",
            options.keyword,
            ", ".join(p.value for p in run.platforms) or "no platforms",
            options.country or "-",
            request.language or "auto",
        )

        run.outcomes = list(
            await asyncio.gather(*(self._run_adapter(self._adapters[p], request) for p in run.platforms))
        )

        run.advance(CollectionState.MERGING)
        merged: List[NormalizedTrendVideo] = []
        quota_used: Counter[str] = Counter()
        for outcome in run.outcomes:
            merged.extend(outcome.videos)
            quota_used[outcome.adapter.source.value] += outcome.quota_used
        videos = deduplicate(merged, dedup_options or self.dedup_options)
        counts = Counter(video.platform for video in videos)
        breakdown = {platform: counts[platform] for platform in self._ordered(counts)}

        run.advance(CollectionState.COMPLETE)
        result = TrendCollectionResult(
            keyword=options.keyword,
            total_videos=len(videos),
            videos=tuple(videos),
            breakdown=breakdown,
            collected_at=self._clock(),
            quota_used=dict(quota_used),
            errors=tuple(o.error.to_info() for o in run.outcomes if o.error is not None),
            country=options.country,
        )
        logger.info(
            "Collected %d videos for %r after deduplicating %d (%d adapter errors).",
            result.total_videos,
            options.keyword,
            len(merged),
            len(result.errors),
        )
        await self._report(result)
        return result

    async def _report(self, result: TrendCollectionResult) -> None:
        if self.store is None:
            return
        try:
            await asyncio.to_thread(self.store.save_collection, result)
        except Exception:
            logger.exception("Failed to persist collection for %r.", result.keyword)

    async def collect_trending(
        self,
        keyword: str,
        max_results: int = 10,
        lookback_days: int = 7,
        **options: Any,
    ) -> TrendCollectionResult:
        """Collect videos published in the last ``lookback_days`` days."""
        published_after = self._clock() - timedelta(days=lookback_days)
        return await self.collect(
            {
                "keyword": keyword,
                "max_results": max_results,
                "date_filter": DateFilter(published_after=published_after),
                **options,
            }
        )

    def collect_sync(
        self,
        options: TrendCollectionOptions | Mapping[str, Any],
        *,
        dedup_options: Optional[DeduplicationOptions] = None,
    ) -> TrendCollectionResult:
        """Synchronous entry point used by the scheduler and the CLI."""
        return asyncio.run(self.collect(options, dedup_options=dedup_options))

    def collect_trending_sync(self, keyword: str, max_results: int = 10, lookback_days: int = 7) -> TrendCollectionResult:
        return asyncio.run(self.collect_trending(keyword, max_results, lookback_days))
