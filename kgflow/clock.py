"""
Time source for the engine.

Every timestamp the engine records comes from a ``Clock``. A clock built
with a fixed instant (``KGFLOW_NOW``) always returns that instant and
reports zero elapsed time, so two runs with the same inputs produce the
same outputs.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone


def parse_instant(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        instant = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        instant = datetime.fromisoformat(text)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant


def format_instant(instant: datetime) -> str:
    """ISO-8601 in UTC with a ``Z`` suffix and millisecond precision."""
    instant = instant.astimezone(timezone.utc)
    return instant.strftime("%Y-%m-%dT%H:%M:%S.") + f"{instant.microsecond // 1000:03d}Z"


class Clock:
    def __init__(self, fixed: str | datetime | None = None):
        self.fixed = parse_instant(fixed) if fixed is not None else None

    @property
    def is_fixed(self) -> bool:
        return self.fixed is not None

    def now(self) -> datetime:
        if self.fixed is not None:
            return self.fixed
        return datetime.now(timezone.utc)

    def isoformat(self) -> str:
        return format_instant(self.now())

    def monotonic(self) -> float:
        """Seconds from an arbitrary origin; constant under a fixed clock."""
        if self.fixed is not None:
            return 0.0
        return time.perf_counter()

    def elapsed_ms(self, started: float) -> float:
        return round((self.monotonic() - started) * 1000, 3)

    def __repr__(self) -> str:
        return f"Clock(fixed={self.fixed.isoformat() if self.fixed else None})"


__all__ = ["Clock", "format_instant", "parse_instant"]
