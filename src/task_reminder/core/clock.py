# src/task_reminder/core/clock.py

from __future__ import annotations

import time
from datetime import datetime, timezone


class SystemClock:
    """Wall-clock time as POSIX seconds (UTC)."""

    def now(self) -> float:
        return time.time()


def to_datetime(ts: float, tz=timezone.utc) -> datetime:
    return datetime.fromtimestamp(float(ts), tz=tz)


def to_timestamp(dt: datetime) -> float:
    if dt.tzinfo is None:
        raise ValueError("naive datetime; attach a timezone first")
    return dt.timestamp()
