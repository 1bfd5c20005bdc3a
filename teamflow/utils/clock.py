from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Timezone-aware current time (UTC)."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes coming back from the store as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_ago(days: int, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) - timedelta(days=days)


def now_iso_ms() -> str:
    """ISO-8601 UTC with millisecond precision (e.g., 2025-08-30T06:59:12.123Z)."""
    return utcnow().isoformat(timespec="milliseconds").replace("+00:00", "Z")


def monotonic_start_ns() -> int:
    """Monotonic reference point for measuring durations."""
    return time.monotonic_ns()


def since_ms(start_ns: int, end_ns: Optional[int] = None) -> float:
    """Elapsed milliseconds using a monotonic clock."""
    end = end_ns if end_ns is not None else time.monotonic_ns()
    return (end - start_ns) / 1_000_000.0
