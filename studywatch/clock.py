"""
Clock helpers.

Every timestamp in StudyWatch is an integer count of epoch milliseconds.
Day and week boundaries follow the local clock, never UTC.
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta
from typing import Callable

Clock = Callable[[], int]

MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def to_local(ts: int) -> datetime:
    return datetime.fromtimestamp(ts / 1000)


def from_local(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def start_of_local_day(ts: int) -> int:
    """Midnight (local) of the day containing ts."""
    dt = to_local(ts)
    return from_local(datetime(dt.year, dt.month, dt.day))


def start_of_next_local_day(ts: int) -> int:
    dt = to_local(ts)
    return from_local(datetime(dt.year, dt.month, dt.day) + timedelta(days=1))


def start_of_local_week(ts: int) -> int:
    """Sunday midnight (local) of the week containing ts."""
    dt = to_local(ts)
    days_since_sunday = (dt.weekday() + 1) % 7
    day = datetime(dt.year, dt.month, dt.day) - timedelta(days=days_since_sunday)
    return from_local(day)


def local_date_key(ts: int) -> str:
    """YYYY-MM-DD of ts on the local calendar."""
    return to_local(ts).date().isoformat()


def fmt_hms(ms: int) -> str:
    """Format a duration as HH:MM:SS."""
    seconds = max(0, int(ms)) // MS_PER_SECOND
    h = seconds // 3600
    m = (seconds % 3600) // 60
    s = seconds % 60
    return f"{h:02}:{m:02}:{s:02}"


def fmt_duration(ms: int) -> str:
    """Short human form: '1h 30m', '12m', '45s'."""
    seconds = max(0, int(ms)) // MS_PER_SECOND
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m"
    return f"{secs}s"
