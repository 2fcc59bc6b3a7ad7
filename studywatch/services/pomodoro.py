"""
Pomodoro Overlay — work/break phase cycling on top of the study timer.

The countdown is kept independently of the Timer Engine. Its state is
snapshotted (remaining time + the instant it was measured) on every change and
whenever the window is hidden, so a reload can fast-forward to where the
countdown should be.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, replace
from typing import Callable, Dict, List, Optional

from studywatch.clock import MS_PER_HOUR, MS_PER_MINUTE, Clock, now_ms
from studywatch.data.repository import Repository
from studywatch.data.settings import PomodoroSettings, SettingsStore
from studywatch.errors import InvalidTransition
from studywatch.services.ticker import DEFAULT_TICK_INTERVAL_MS, Ticker

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "pomodoro_state"
SNAPSHOT_MAX_AGE_MS = 24 * MS_PER_HOUR

POMODORO_PRESETS: Dict[str, PomodoroSettings] = {
    "Classic": PomodoroSettings(work_duration=25, short_break_duration=5, long_break_duration=15),
    "Short Focus": PomodoroSettings(work_duration=15, short_break_duration=3, long_break_duration=10),
    "Deep Work": PomodoroSettings(work_duration=50, short_break_duration=10, long_break_duration=30),
    "Sprint": PomodoroSettings(work_duration=10, short_break_duration=2, long_break_duration=5),
}


class PomodoroPhase:
    WORK = "work"
    BREAK = "break"


@dataclass(frozen=True)
class PomodoroState:
    is_active: bool = False
    is_paused: bool = False
    mode: str = PomodoroPhase.WORK
    current_session: int = 1
    time_remaining: int = 0  # ms
    is_long_break: bool = False


Listener = Callable[[PomodoroState], None]


class PomodoroTimer:
    """
    Work/break countdown.

        inactive → work → break → work → ... → (stop) inactive
    A break is long when the work phase it follows was number
    `sessions_before_long_break` or later; a long break resets the counter.
    """

    def __init__(
        self,
        repo: Repository,
        settings: Optional[PomodoroSettings] = None,
        clock: Clock = now_ms,
        on_work_complete: Optional[Callable[[], None]] = None,
        on_break_complete: Optional[Callable[[], None]] = None,
        tick_interval_ms: int = DEFAULT_TICK_INTERVAL_MS,
    ) -> None:
        self.repo = repo
        self.clock = clock
        self._settings_store = SettingsStore(repo)
        self.settings = settings or self._settings_store.load(PomodoroSettings)

        # Callbacks the UI will set (sound, notifications)
        self.on_work_complete = on_work_complete
        self.on_break_complete = on_break_complete

        self.state = self._idle_state()
        self._last_tick = clock()
        self._visible = True
        self._listeners: List[Listener] = []

        self.ticker = Ticker(self.tick, tick_interval_ms)

    # ── Read-only views ─────────────────────────────────────────────────────

    @property
    def is_active(self) -> bool:
        return self.state.is_active

    @property
    def is_paused(self) -> bool:
        return self.state.is_paused

    @property
    def mode(self) -> str:
        return self.state.mode

    @property
    def current_session(self) -> int:
        return self.state.current_session

    @property
    def is_long_break(self) -> bool:
        return self.state.is_long_break

    @property
    def time_remaining(self) -> int:
        return self.state.time_remaining

    @property
    def total_duration(self) -> int:
        return self.phase_duration(self.state.mode, self.state.is_long_break)

    @property
    def progress(self) -> float:
        """Percent of the current phase already elapsed."""
        total = self.total_duration
        if total <= 0:
            return 0.0
        return (total - self.state.time_remaining) / total * 100.0

    def phase_duration(self, mode: str, is_long_break: bool = False) -> int:
        s = self.settings
        if mode == PomodoroPhase.WORK:
            return s.work_duration * MS_PER_MINUTE
        if is_long_break:
            return s.long_break_duration * MS_PER_MINUTE
        return s.short_break_duration * MS_PER_MINUTE

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    # ── Controls ────────────────────────────────────────────────────────────

    def start(self) -> None:
        now = self.clock()
        self.state = PomodoroState(
            is_active=True,
            mode=PomodoroPhase.WORK,
            current_session=1,
            time_remaining=self.phase_duration(PomodoroPhase.WORK),
        )
        self._last_tick = now
        logger.info("Pomodoro started: %d min work.", self.settings.work_duration)
        self._changed(now)

    def pause(self) -> None:
        if not self.state.is_active or self.state.is_paused:
            raise InvalidTransition("Pomodoro is not running.")
        now = self.clock()
        self._advance(now)
        self.state = replace(self.state, is_paused=True)
        self._changed(now)

    def resume(self) -> None:
        if not self.state.is_active or not self.state.is_paused:
            raise InvalidTransition("Pomodoro is not paused.")
        now = self.clock()
        self._last_tick = now
        self.state = replace(self.state, is_paused=False)
        self._changed(now)

    def stop(self) -> None:
        self.ticker.stop()
        self.state = self._idle_state()
        self.repo.delete_setting(SNAPSHOT_KEY)
        logger.info("Pomodoro stopped.")
        self._notify()

    def skip(self) -> None:
        """End the current phase now, as if the countdown had reached zero."""
        if not self.state.is_active:
            raise InvalidTransition("Pomodoro is not active.")
        self._next_phase(self.clock())

    def update_settings(self, settings: PomodoroSettings) -> None:
        self._settings_store.save(settings)
        self.settings = settings
        if not self.state.is_active:
            self.state = replace(self.state, time_remaining=self.phase_duration(PomodoroPhase.WORK))
        self._notify()

    def apply_preset(self, name: str) -> None:
        preset = POMODORO_PRESETS[name]
        self.update_settings(replace(
            preset, sessions_before_long_break=self.settings.sessions_before_long_break,
        ))

    # ── Time keeping ────────────────────────────────────────────────────────

    def tick(self) -> None:
        if not self._running:
            return
        self._advance(self.clock())
        self._notify()

    def set_visible(self, visible: bool) -> None:
        self._visible = visible
        now = self.clock()
        if not visible:
            self.ticker.stop()
            if self.state.is_active:
                self._advance(now)
                self._save_snapshot(now)
            return
        if self._running:
            self._advance(now)
            self._notify()
        self._sync_ticker()

    def restore(self) -> bool:
        """
        Pick up a snapshot left by a previous run.

        Snapshots older than SNAPSHOT_MAX_AGE_MS are dropped. Returns True when
        an active countdown was restored.
        """
        raw = self.repo.get_setting(SNAPSHOT_KEY)
        if raw is None:
            return False
        now = self.clock()
        try:
            data = json.loads(raw)
            saved_at = int(data["saved_at"])
            last_tick = int(data["last_tick"])
            state = PomodoroState(**data["state"])
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding unreadable Pomodoro snapshot: %s", exc)
            self.repo.delete_setting(SNAPSHOT_KEY)
            return False

        if now - saved_at > SNAPSHOT_MAX_AGE_MS:
            logger.info("Pomodoro snapshot is older than 24h; starting fresh.")
            self.repo.delete_setting(SNAPSHOT_KEY)
            return False
        if not state.is_active:
            return False

        self.state = state
        self._last_tick = last_tick
        self._advance(now)
        logger.info("Pomodoro restored: %s phase, %d ms left%s.",
                    self.state.mode, self.state.time_remaining,
                    " (paused)" if self.state.is_paused else "")
        self._notify()
        self._sync_ticker()
        return True

    def shutdown(self) -> None:
        self.ticker.stop()
        if self.state.is_active:
            now = self.clock()
            self._advance(now)
            self._save_snapshot(now)

    # ── Helpers ─────────────────────────────────────────────────────────────

    @property
    def _running(self) -> bool:
        return self.state.is_active and not self.state.is_paused

    def _idle_state(self) -> PomodoroState:
        return PomodoroState(time_remaining=self.phase_duration(PomodoroPhase.WORK))

    def _advance(self, now: int) -> None:
        """Subtract wall time since the last tick; fire one transition at zero."""
        if not self._running:
            self._last_tick = now
            return
        elapsed = max(0, now - self._last_tick)
        self._last_tick = now
        remaining = self.state.time_remaining - elapsed
        if remaining <= 0:
            self._next_phase(now)
        else:
            self.state = replace(self.state, time_remaining=remaining)

    def _next_phase(self, now: int) -> None:
        s = self.settings
        current = self.state
        if current.mode == PomodoroPhase.WORK:
            is_long = current.current_session >= s.sessions_before_long_break
            logger.info("Work phase %d complete; %s break.",
                        current.current_session, "long" if is_long else "short")
            if self.on_work_complete:
                self.on_work_complete()
            self.state = replace(
                current,
                mode=PomodoroPhase.BREAK,
                is_long_break=is_long,
                time_remaining=self.phase_duration(PomodoroPhase.BREAK, is_long),
            )
        else:
            next_session = 1 if current.is_long_break else current.current_session + 1
            logger.info("Break complete; work phase %d.", next_session)
            if self.on_break_complete:
                self.on_break_complete()
            self.state = replace(
                current,
                mode=PomodoroPhase.WORK,
                current_session=next_session,
                is_long_break=False,
                time_remaining=self.phase_duration(PomodoroPhase.WORK),
            )
        self._last_tick = now
        self._changed(now)

    def _changed(self, now: int) -> None:
        self._save_snapshot(now)
        self._notify()
        self._sync_ticker()

    def _save_snapshot(self, now: int) -> None:
        self.repo.put_setting(SNAPSHOT_KEY, {
            "state": asdict(self.state),
            "last_tick": self._last_tick,
            "saved_at": now,
        })

    def _sync_ticker(self) -> None:
        if self._running and self._visible:
            self.ticker.start()
        else:
            self.ticker.stop()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self.state)


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Runs the Pomodoro cadence: 25 min work, 5 min break, and after the
#   configured number of work phases a long break. Completion callbacks let
#   the UI play sounds without this file knowing about audio.
#
# Key design decisions:
#   - Remaining time is always recomputed as (remaining - wall time since
#     last tick), never by counting ticks, so a hidden window or a sleeping
#     laptop cannot make the countdown drift.
#   - The snapshot stores remaining time together with the instant it was
#     measured. That pair is enough to reconstruct the countdown after a
#     crash, so the ticker never has to write to disk.
#   - Overshooting zero fires exactly one transition; the next phase starts
#     fresh from "now" instead of chaining through several phases.
#   - Snapshots older than 24h are ignored: an abandoned timer from last
#     week should not fast-forward through dozens of phases.
#
# Interviewer-friendly talking points:
#   1. PomodoroState is a frozen dataclass; every change builds a new one
#      with replace(), so listeners never see a half-updated state.
#   2. Independent from the TimerEngine: the app facade drives both, which
#      keeps each state machine small enough to test exhaustively.
