from __future__ import annotations

import time
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from .config import settings


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_local(dt: datetime) -> datetime:
    if settings.timezone:
        return dt.astimezone(ZoneInfo(settings.timezone))
    return dt.astimezone()


def now_local() -> datetime:
    return to_local(now_utc())


class Clock:
    """Wall clock plus a monotonic counter for durations."""

    def now(self) -> datetime:
        return now_local()

    def monotonic(self) -> float:
        return time.monotonic()


def elapsed_seconds(since: datetime | None, now: datetime) -> float | None:
    """Seconds from *since* to *now*; a clock read backwards counts as zero."""
    if since is None:
        return None
    return max(0.0, (now - since).total_seconds())
