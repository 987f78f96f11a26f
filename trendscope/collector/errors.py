"""Failure kinds raised while collecting trends."""

from __future__ import annotations

from typing import Any, Sequence

from .models import AdapterErrorInfo, Platform, Source


class TrendCollectorError(Exception):
    """Base class for collector failures."""


class AdapterError(TrendCollectorError):
    """One platform adapter failed; collected by the aggregator, never surfaced raw."""

    def __init__(self, platform: Platform, source: Source, error: str) -> None:
        super().__init__(f"{platform.value}/{source.value}: {error}")
        self.platform = platform
        self.source = source
        self.error = error

    def to_info(self) -> AdapterErrorInfo:
        return AdapterErrorInfo(platform=self.platform, source=self.source, error=self.error)


class QuotaExceededError(AdapterError):
    """Upstream quota or credits are exhausted."""


class ApiKeyMissingError(AdapterError):
    """The adapter has no credential configured."""


class AdapterTimeoutError(AdapterError):
    """The adapter did not answer within the per-adapter timeout."""


class CollectionValidationError(TrendCollectorError, ValueError):
    """Collection options were rejected before any adapter ran."""

    def __init__(self, message: str, problems: Sequence[dict[str, Any]] = ()) -> None:
        super().__init__(message)
        self.problems = list(problems)


class NormalizationWarning(UserWarning):
    """A single raw record could not be normalized and was dropped."""
