"""Common contract for upstream search integrations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, List, Mapping, Optional

from ..errors import AdapterError
from ..models import DateFilter, NormalizedTrendVideo, Platform, Source


@dataclass(frozen=True, slots=True)
class AdapterRequest:
    """What every adapter receives for one keyword search."""

    keyword: str
    max_results: int
    country: Optional[str] = None
    language: Optional[str] = None
    date_filter: Optional[DateFilter] = None


@dataclass(slots=True)
class FetchResult:
    """Raw platform-native records plus the upstream quota the call consumed."""

    records: List[Mapping[str, Any]] = field(default_factory=list)
    quota_used: int = 0


class PlatformAdapter:
    """Wraps one upstream search API behind the raw-record contract.

    ``fetch`` must cap its records at ``request.max_results``, return an empty
    result for zero hits, and raise ``AdapterError`` for any upstream failure.
    Adapters hold no per-request state so one instance can serve concurrent
    requests.
    """

    platform: Platform
    source: Source
    supports_date_filter: ClassVar[bool] = False

    async def fetch(self, request: AdapterRequest) -> FetchResult:
        raise NotImplementedError

    def normalize(self, raw: Mapping[str, Any], collected_at: datetime) -> NormalizedTrendVideo:
        raise NotImplementedError

    def error(self, message: str, error_cls: type[AdapterError] = AdapterError) -> AdapterError:
        return error_cls(self.platform, self.source, message)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.platform.value}/{self.source.value}>"
