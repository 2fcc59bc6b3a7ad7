"""
Achievements — milestone catalogue and unlock bookkeeping.

Progress is computed from the segment log (see build_progress); unlocked ids
and their unlock times are persisted as one JSON object in the settings table.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence

from studywatch.clock import MS_PER_HOUR, MS_PER_MINUTE, to_local
from studywatch.data.models import Segment
from studywatch.data.repository import Repository
from studywatch.data.settings import GoalSettings
from studywatch.services import stats

logger = logging.getLogger(__name__)

ACHIEVEMENTS_KEY = "achievements"


class AchievementCategory:
    TIME = "time"
    STREAK = "streak"
    SESSIONS = "sessions"
    SPECIAL = "special"


@dataclass(frozen=True)
class Achievement:
    id: str
    name: str
    description: str
    icon: str
    category: str
    requirement: int  # ms for TIME, days for STREAK/SPECIAL, count for SESSIONS


@dataclass
class AchievementProgress:
    total_time_ms: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    total_sessions: int = 0
    perfect_days: int = 0


ACHIEVEMENTS: List[Achievement] = [
    Achievement("time-1h", "First Hour", "Study for 1 hour total", "⏱️", AchievementCategory.TIME, 1 * MS_PER_HOUR),
    Achievement("time-10h", "Getting Started", "Study for 10 hours total", "📚", AchievementCategory.TIME, 10 * MS_PER_HOUR),
    Achievement("time-50h", "Dedicated Learner", "Study for 50 hours total", "🎯", AchievementCategory.TIME, 50 * MS_PER_HOUR),
    Achievement("time-100h", "Century Club", "Study for 100 hours total", "💯", AchievementCategory.TIME, 100 * MS_PER_HOUR),
    Achievement("time-500h", "Master Scholar", "Study for 500 hours total", "🏆", AchievementCategory.TIME, 500 * MS_PER_HOUR),
    Achievement("time-1000h", "Legendary", "Study for 1000 hours total", "👑", AchievementCategory.TIME, 1000 * MS_PER_HOUR),

    Achievement("streak-3", "On a Roll", "3-day study streak", "🔥", AchievementCategory.STREAK, 3),
    Achievement("streak-7", "Week Warrior", "7-day study streak", "⚡", AchievementCategory.STREAK, 7),
    Achievement("streak-14", "Fortnight Focus", "14-day study streak", "💪", AchievementCategory.STREAK, 14),
    Achievement("streak-30", "Monthly Master", "30-day study streak", "🌟", AchievementCategory.STREAK, 30),
    Achievement("streak-60", "Unstoppable", "60-day study streak", "🚀", AchievementCategory.STREAK, 60),
    Achievement("streak-100", "Centurion", "100-day study streak", "💎", AchievementCategory.STREAK, 100),

    Achievement("sessions-10", "Getting Going", "Complete 10 study sessions", "✨", AchievementCategory.SESSIONS, 10),
    Achievement("sessions-50", "Consistent", "Complete 50 study sessions", "📈", AchievementCategory.SESSIONS, 50),
    Achievement("sessions-100", "Centurion Sessions", "Complete 100 study sessions", "🎖️", AchievementCategory.SESSIONS, 100),
    Achievement("sessions-500", "Session Master", "Complete 500 study sessions", "🏅", AchievementCategory.SESSIONS, 500),

    Achievement("perfect-week", "Perfect Week", "Meet daily goal 7 days in a row", "🌈", AchievementCategory.SPECIAL, 7),
    Achievement("perfect-month", "Perfect Month", "Meet daily goal 30 days in a row", "🎊", AchievementCategory.SPECIAL, 30),
]


def build_progress(segments: Sequence[Segment], completed_sessions: int,
                   goals: GoalSettings, now: int) -> AchievementProgress:
    totals = stats.day_totals(segments, now)
    return AchievementProgress(
        total_time_ms=sum(totals.values()),
        current_streak=stats.calculate_streak(totals, to_local(now).date()),
        longest_streak=stats.longest_streak(totals),
        total_sessions=completed_sessions,
        perfect_days=stats.perfect_days_streak(totals, goals.daily_target_minutes * MS_PER_MINUTE),
    )


def _metric(achievement: Achievement, progress: AchievementProgress) -> int:
    if achievement.category == AchievementCategory.TIME:
        return progress.total_time_ms
    if achievement.category == AchievementCategory.STREAK:
        return progress.longest_streak
    if achievement.category == AchievementCategory.SESSIONS:
        return progress.total_sessions
    if achievement.category == AchievementCategory.SPECIAL:
        return progress.perfect_days
    return 0


def achievement_progress(achievement: Achievement, progress: AchievementProgress) -> float:
    """Percent towards the achievement, capped at 100."""
    return min(_metric(achievement, progress) / achievement.requirement * 100.0, 100.0)


class AchievementTracker:
    """Remembers which achievements are unlocked and when."""

    def __init__(self, repo: Repository) -> None:
        self.repo = repo

    def unlocked(self) -> Dict[str, int]:
        raw = self.repo.get_setting(ACHIEVEMENTS_KEY)
        if raw is None:
            return {}
        try:
            data = json.loads(raw)
            return {str(k): int(v) for k, v in data.items()}
        except (ValueError, TypeError, AttributeError) as exc:
            logger.warning("Ignoring unreadable achievements record: %s", exc)
            return {}

    def check_and_unlock(self, progress: AchievementProgress, now: int) -> List[Achievement]:
        """Unlock every newly met achievement and return them."""
        unlocked = self.unlocked()
        newly: List[Achievement] = []
        for achievement in ACHIEVEMENTS:
            if achievement.id in unlocked:
                continue
            if _metric(achievement, progress) >= achievement.requirement:
                unlocked[achievement.id] = now
                newly.append(achievement)
        if newly:
            self.repo.put_setting(ACHIEVEMENTS_KEY, unlocked)
            logger.info("Unlocked achievements: %s", ", ".join(a.id for a in newly))
        return newly

    def unlocked_on(self, achievement_id: str) -> Optional[date]:
        ts = self.unlocked().get(achievement_id)
        return to_local(ts).date() if ts is not None else None
