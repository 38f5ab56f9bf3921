from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, time
from typing import Optional


def parse_hhmm(s: str) -> time:
    try:
        h, m = s.strip().split(":")
        return time(hour=int(h), minute=int(m))
    except ValueError:
        raise ValueError(f"Invalid time format: {s!r}, expected HH:MM") from None


@dataclass(frozen=True)
class PreferredWindow:
    start: time
    end: time

    @classmethod
    def parse(cls, start: str, end: str) -> Optional["PreferredWindow"]:
        """Build a window from two "HH:MM" strings; blank strings disable it."""
        if not start.strip() or not end.strip():
            return None
        return cls(start=parse_hhmm(start), end=parse_hhmm(end))

    def matches(self, t: time) -> bool:
        # Handle overnight windows (e.g., 22:00 -> 06:00)
        if self.start <= self.end:
            return self.start <= t < self.end
        return t >= self.start or t < self.end

    def contains(self, local_dt: datetime) -> bool:
        return self.matches(local_dt.timetz().replace(tzinfo=None))

    @property
    def label(self) -> str:
        return f"{self.start.strftime('%H:%M')}-{self.end.strftime('%H:%M')}"
