"""
Data models for StudyWatch.

Plain dataclasses mirroring the SQLite rows, so services never handle raw
sqlite3.Row objects. All timestamps are epoch milliseconds.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class Session:
    """One study sitting, from Start until End. May contain pauses."""
    id: str = ""
    start_ts: int = 0
    end_ts: Optional[int] = None

    @property
    def is_unclosed(self) -> bool:
        return self.end_ts is None


@dataclass
class Topic:
    """A study topic (e.g. 'Mathematics')."""
    id: str = ""
    name: str = ""
    created_at: int = 0


@dataclass
class Subtopic:
    """A subtopic belonging to a topic (e.g. 'Linear Algebra')."""
    id: str = ""
    topic_id: str = ""
    name: str = ""
    created_at: int = 0


@dataclass
class Segment:
    """
    A contiguous interval of active (non-paused) study time.

    end_ts is None while the segment is open, i.e. while the timer runs.
    topic_id / subtopic_id may be None (untagged time) or point at a record
    that no longer exists.
    """
    id: str = ""
    session_id: str = ""
    topic_id: Optional[str] = None
    subtopic_id: Optional[str] = None
    start_ts: int = 0
    end_ts: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.end_ts is None


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Defines the four record kinds the tracker persists. Nothing else is
#   stored for time tracking: today's total, streaks and weekly totals are
#   all derived from Segments on demand.
#
# Key classes and why they exist:
#   - Session: a sitting. end_ts=None is the durable "still studying" marker
#     that startup recovery looks for.
#   - Segment: the granular log. Pausing closes one, resuming opens another,
#     switching topic closes and reopens at the same instant.
#   - Topic / Subtopic: two-level tagging, immutable once created.
#
# Interviewer-friendly talking points:
#   1. Integer milliseconds instead of datetimes: sums are exact and a
#      5-second session is exactly 5000, never 4999.999.
#   2. String UUIDs as ids: globally unique, so records never collide if
#      two databases are ever merged.
