"""
Statistics — history and analytics derived from the full segment log.

Everything here is recomputed from segments on demand: per-day totals for the
heatmap and streaks, weekly totals and goal progress, all-time time per topic,
an hourly distribution, and the rows of the session history list.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

from studywatch.clock import (
    MS_PER_HOUR,
    MS_PER_MINUTE,
    local_date_key,
    start_of_local_day,
    start_of_local_week,
    start_of_next_local_day,
    to_local,
)
from studywatch.data.models import Segment, Session, Subtopic, Topic
from studywatch.data.settings import GoalSettings
from studywatch.services.ledger import overlap, segment_duration

logger = logging.getLogger(__name__)

UNKNOWN_LABEL = "Unknown"
NO_TOPIC_LABEL = "No Topic"
NO_SUBTOPIC_LABEL = "No Subtopic"


def hours(ms: int) -> float:
    return ms / MS_PER_HOUR


# ── Name resolution ─────────────────────────────────────────────────────────

def resolve_topic_name(topic_id: Optional[str], topics: Mapping[str, Topic]) -> str:
    """Display name for a topic id; never fails on deleted or missing topics."""
    if topic_id is None:
        return NO_TOPIC_LABEL
    topic = topics.get(topic_id)
    return topic.name if topic else UNKNOWN_LABEL


def resolve_subtopic_name(subtopic_id: Optional[str], subtopics: Mapping[str, Subtopic]) -> str:
    if subtopic_id is None:
        return NO_SUBTOPIC_LABEL
    sub = subtopics.get(subtopic_id)
    return sub.name if sub else UNKNOWN_LABEL


# ── Per-day / per-week ──────────────────────────────────────────────────────

def day_totals(segments: Iterable[Segment], now: int) -> Dict[str, int]:
    """
    Milliseconds studied per local calendar day, keyed 'YYYY-MM-DD'.

    A segment crossing midnight is split between the two days.
    """
    totals: Dict[str, int] = defaultdict(int)
    for seg in segments:
        end = seg.end_ts if seg.end_ts is not None else now
        cursor = seg.start_ts
        while cursor < end:
            boundary = min(start_of_next_local_day(cursor), end)
            totals[local_date_key(cursor)] += overlap(seg, cursor, boundary)
            cursor = boundary
    return dict(totals)


def range_total(segments: Iterable[Segment], window_start: int, window_end: int) -> int:
    return sum(overlap(s, window_start, window_end) for s in segments)


def week_total(segments: Iterable[Segment], now: int) -> int:
    """Time since Sunday midnight (local) of the current week."""
    return range_total(segments, start_of_local_week(now), now)


def previous_week_total(segments: Iterable[Segment], now: int) -> int:
    this_week = start_of_local_week(now)
    last_week = start_of_local_week(this_week - 1)
    return range_total(segments, last_week, this_week)


def week_day_totals(segments: Sequence[Segment], now: int) -> List[int]:
    """Seven totals, Sunday first, for the current local week."""
    result: List[int] = []
    day_start = start_of_local_week(now)
    for _ in range(7):
        day_end = start_of_next_local_day(day_start)
        result.append(range_total(segments, day_start, min(day_end, now)) if day_start < now else 0)
        day_start = day_end
    return result


def hourly_distribution(segments: Iterable[Segment], now: int) -> np.ndarray:
    """Minutes studied per hour of day (24 buckets), by segment start hour."""
    hours: List[int] = []
    minutes: List[float] = []
    for seg in segments:
        if seg.end_ts is None:
            continue
        hours.append(to_local(seg.start_ts).hour)
        minutes.append(segment_duration(seg, now) / MS_PER_MINUTE)
    if not hours:
        return np.zeros(24)
    return np.bincount(np.asarray(hours), weights=np.asarray(minutes), minlength=24)


def peak_hour(segments: Iterable[Segment], now: int) -> Optional[int]:
    dist = hourly_distribution(segments, now)
    if not dist.any():
        return None
    return int(np.argmax(dist))


# ── Streaks ─────────────────────────────────────────────────────────────────

def calculate_streak(totals: Mapping[str, int], today: date) -> int:
    """
    Consecutive days with study time ending today.

    If nothing was studied today yet, a streak ending yesterday still counts.
    """
    day = today
    if totals.get(day.isoformat(), 0) <= 0:
        day = today - timedelta(days=1)
        if totals.get(day.isoformat(), 0) <= 0:
            return 0
    streak = 0
    while totals.get(day.isoformat(), 0) > 0:
        streak += 1
        day -= timedelta(days=1)
    return streak


def longest_streak(totals: Mapping[str, int]) -> int:
    days = sorted(date.fromisoformat(k) for k, v in totals.items() if v > 0)
    best = run = 0
    previous: Optional[date] = None
    for day in days:
        run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
        best = max(best, run)
        previous = day
    return best


def perfect_days_streak(totals: Mapping[str, int], daily_target_ms: int) -> int:
    """Longest run of consecutive days meeting the daily goal."""
    return longest_streak({k: v for k, v in totals.items() if v >= daily_target_ms})


# ── Topics ──────────────────────────────────────────────────────────────────

def time_by_topic(segments: Iterable[Segment], now: int) -> Dict[Optional[str], int]:
    """All-time milliseconds per topic id (None = untagged)."""
    totals: Dict[Optional[str], int] = defaultdict(int)
    for seg in segments:
        totals[seg.topic_id] += segment_duration(seg, now)
    return dict(totals)


@dataclass
class TopicTotal:
    topic_id: Optional[str]
    name: str
    total_ms: int
    percent: float


def topic_breakdown(segments: Sequence[Segment], topics: Iterable[Topic], now: int) -> List[TopicTotal]:
    topic_map = {t.id: t for t in topics}
    by_topic = time_by_topic(segments, now)
    grand_total = sum(by_topic.values())
    rows = [
        TopicTotal(
            topic_id=tid,
            name=resolve_topic_name(tid, topic_map),
            total_ms=ms,
            percent=(ms / grand_total * 100.0) if grand_total else 0.0,
        )
        for tid, ms in by_topic.items()
        if ms > 0
    ]
    rows.sort(key=lambda r: r.total_ms, reverse=True)
    return rows


# ── Goals ───────────────────────────────────────────────────────────────────

@dataclass
class GoalProgress:
    daily_ms: int
    daily_target_ms: int
    weekly_ms: int
    weekly_target_ms: int

    @property
    def daily_percent(self) -> float:
        return min(self.daily_ms / self.daily_target_ms * 100.0, 100.0)

    @property
    def weekly_percent(self) -> float:
        return min(self.weekly_ms / self.weekly_target_ms * 100.0, 100.0)

    @property
    def daily_met(self) -> bool:
        return self.daily_ms >= self.daily_target_ms

    @property
    def weekly_met(self) -> bool:
        return self.weekly_ms >= self.weekly_target_ms


def goal_progress(segments: Sequence[Segment], goals: GoalSettings, now: int) -> GoalProgress:
    return GoalProgress(
        daily_ms=range_total(segments, start_of_local_day(now), now),
        daily_target_ms=goals.daily_target_minutes * MS_PER_MINUTE,
        weekly_ms=week_total(segments, now),
        weekly_target_ms=goals.weekly_target_minutes * MS_PER_MINUTE,
    )


# ── Session history ─────────────────────────────────────────────────────────

@dataclass
class SessionSummary:
    """One row of the history list."""
    session_id: str
    start_ts: int
    end_ts: Optional[int]
    duration_ms: int
    topics: Dict[str, int] = field(default_factory=dict)

    @property
    def date_key(self) -> str:
        return local_date_key(self.start_ts)

    @property
    def duration_hours(self) -> float:
        return hours(self.duration_ms)

    @property
    def topic_hours(self) -> Dict[str, float]:
        return {name: hours(ms) for name, ms in self.topics.items()}


def session_summaries(
    sessions: Iterable[Session],
    segments: Iterable[Segment],
    topics: Iterable[Topic],
    now: int,
) -> List[SessionSummary]:
    """Most recent first. Zero-length segments are left out of the topic split."""
    topic_map = {t.id: t for t in topics}
    by_session: Dict[str, List[Segment]] = defaultdict(list)
    for seg in segments:
        by_session[seg.session_id].append(seg)

    rows: List[SessionSummary] = []
    for session in sessions:
        split: Dict[str, int] = defaultdict(int)
        total = 0
        for seg in by_session.get(session.id, []):
            ms = segment_duration(seg, now)
            if ms <= 0:
                continue
            total += ms
            split[resolve_topic_name(seg.topic_id, topic_map)] += ms
        rows.append(SessionSummary(
            session_id=session.id,
            start_ts=session.start_ts,
            end_ts=session.end_ts,
            duration_ms=total,
            topics=dict(split),
        ))
    rows.sort(key=lambda r: r.start_ts, reverse=True)
    return rows


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Everything the history, heatmap, goals and weekly report screens show.
#   Input is always the raw segment list; output is plain dicts/dataclasses.
#
# Key points:
#   - day_totals splits segments at local midnight, so a late-night sitting
#     is credited to both days correctly.
#   - Missing topics resolve to "Unknown", untagged time to "No Topic".
#     Deleting a topic never breaks a chart.
#   - hourly_distribution uses numpy.bincount with weights: one vectorised
#     call instead of a 24-way accumulation loop.
#
# Interviewer-friendly talking points:
#   1. Weeks start on Sunday and days at local midnight. There is no UTC
#      normalisation because the user's own clock defines "today".
#   2. Streaks forgive "not yet today": if you studied yesterday, the streak
#      is still alive this morning.
