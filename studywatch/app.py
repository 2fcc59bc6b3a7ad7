"""
StudyWatch application wiring.

Builds the store, timer engine, Pomodoro overlay and wellness reminders around
one Database handle, and offers the start/pause/resume/end actions the UI
binds to (driving the Pomodoro countdown too when Pomodoro mode is on).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List, Optional

from studywatch.clock import Clock, now_ms, to_local
from studywatch.data.database import Database
from studywatch.data.repository import Repository
from studywatch.data.settings import GoalSettings, PomodoroSettings, SettingsStore, WellnessSettings
from studywatch.services import stats
from studywatch.services.achievements import Achievement, AchievementTracker, build_progress
from studywatch.services.pomodoro import PomodoroTimer
from studywatch.services.timer_engine import TimerEngine
from studywatch.services.wellness import WellnessService

logger = logging.getLogger(__name__)

LOG_FILE = "studywatch.log"


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = LOG_FILE) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


class StudyWatchApp:
    """Composition root. open() recovers any unfinished session; close() releases the store."""

    def __init__(
        self,
        db_path: Optional[Path] = None,
        clock: Clock = now_ms,
        on_work_complete: Optional[Callable[[], None]] = None,
        on_break_complete: Optional[Callable[[], None]] = None,
        on_hydration: Optional[Callable[[str], None]] = None,
        on_posture: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.db = Database(db_path)
        self.clock = clock
        self.pomodoro_enabled = False

        self._on_work_complete = on_work_complete
        self._on_break_complete = on_break_complete
        self._on_hydration = on_hydration
        self._on_posture = on_posture

        self.repo: Optional[Repository] = None
        self.settings: Optional[SettingsStore] = None
        self.engine: Optional[TimerEngine] = None
        self.pomodoro: Optional[PomodoroTimer] = None
        self.wellness: Optional[WellnessService] = None
        self.achievements: Optional[AchievementTracker] = None

    # -- lifecycle -----------------------------------------------------------

    def open(self) -> None:
        conn = self.db.open()
        self.repo = Repository(conn)
        self.settings = SettingsStore(self.repo)

        self.engine = TimerEngine(self.repo, clock=self.clock)
        self.pomodoro = PomodoroTimer(
            self.repo,
            settings=self.settings.load(PomodoroSettings),
            clock=self.clock,
            on_work_complete=self._on_work_complete,
            on_break_complete=self._on_break_complete,
        )
        self.wellness = WellnessService(
            self.engine,
            settings=self.settings.load(WellnessSettings),
            on_hydration=self._on_hydration,
            on_posture=self._on_posture,
        )
        self.achievements = AchievementTracker(self.repo)

        state = self.engine.recover()
        if self.pomodoro.restore():
            self.pomodoro_enabled = True
        logger.info("StudyWatch ready (timer %s).", state)

    def close(self) -> None:
        if self.engine:
            self.engine.shutdown()
        if self.pomodoro:
            self.pomodoro.shutdown()
        if self.wellness:
            self.wellness.stop_all()
        self.db.close()

    # -- timer actions -------------------------------------------------------

    def start(self) -> None:
        self.engine.start_session()
        if self.pomodoro_enabled:
            self.pomodoro.start()

    def pause(self) -> None:
        self.engine.pause_session()
        if self.pomodoro_enabled and self.pomodoro.is_active and not self.pomodoro.is_paused:
            self.pomodoro.pause()

    def resume(self) -> None:
        self.engine.resume_session()
        if self.pomodoro_enabled and self.pomodoro.is_active and self.pomodoro.is_paused:
            self.pomodoro.resume()

    def end(self) -> List[Achievement]:
        """End the session (and the Pomodoro cycle); returns newly unlocked achievements."""
        self.engine.end_current_session()
        if self.pomodoro.is_active:
            self.pomodoro.stop()
        return self.check_achievements()

    def set_visible(self, visible: bool) -> None:
        self.engine.set_visible(visible)
        self.pomodoro.set_visible(visible)

    # -- derived views -------------------------------------------------------

    def goal_progress(self) -> stats.GoalProgress:
        return stats.goal_progress(
            self.repo.list_segments(), self.settings.load(GoalSettings), self.clock(),
        )

    def current_streak(self) -> int:
        now = self.clock()
        totals = stats.day_totals(self.repo.list_segments(), now)
        return stats.calculate_streak(totals, to_local(now).date())

    def check_achievements(self) -> List[Achievement]:
        progress = build_progress(
            self.repo.list_segments(),
            self.repo.count_sessions(),
            self.settings.load(GoalSettings),
            self.clock(),
        )
        return self.achievements.check_and_unlock(progress, self.clock())

    def delete_sessions(self, session_ids: List[str]) -> int:
        count = self.repo.delete_sessions(session_ids)
        self.engine.refresh_data()
        return count


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   The one place where objects are constructed and connected: database →
#   repository → engine / Pomodoro / wellness / achievements.
#
# Key points:
#   - No global singletons. Two StudyWatchApp instances with two paths are
#     fully isolated, which is exactly what the tests rely on.
#   - open() runs recovery before anything else, so the UI's first frame
#     already shows a resumed session if the app was closed mid-study.
#   - Logging goes to both console and file: console for development, file
#     for diagnosing user-reported issues.
