"""Utility helpers shared across the collector."""

from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone
from typing import Any, Optional

ISO_DURATION_RE = re.compile(r"P(?:(\d+)D)?T?(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")


def iso8601_to_seconds(duration: str) -> int:
    """Convert ISO8601 duration strings (PxDTxxHxxMxxS) into seconds."""
    match = ISO_DURATION_RE.fullmatch(duration or "")
    if not match:
        return 0
    days, hours, minutes, seconds = match.groups()
    return (
        int(days or 0) * 86400
        + int(hours or 0) * 3600
        + int(minutes or 0) * 60
        + int(seconds or 0)
    )


def format_duration(duration: str) -> str:
    """Render an ISO8601 duration as ``H:MM:SS`` or ``M:SS``."""
    total = iso8601_to_seconds(duration)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def to_rfc3339(value: datetime) -> str:
    """Format a datetime the way Google APIs expect (UTC, ``Z`` suffix)."""
    aware = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return aware.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_count(value: Any) -> Optional[int]:
    """Parse upstream counters, keeping ``None`` for unreported values."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    try:
        parsed = int(str(value).replace(",", "").strip())
    except ValueError:
        return None
    return parsed if parsed >= 0 else None


def short_hash(value: str, length: int = 16) -> str:
    """Stable identifier derived from a URL."""
    return hashlib.md5(value.encode("utf-8")).hexdigest()[:length]
