"""
Wellness Service — hydration and posture reminders while studying.

Reminder timers run only while the study timer is running. Pausing or ending
the session stops them; resuming starts a fresh interval.
"""

from __future__ import annotations

import itertools
import logging
from typing import Callable, Iterator, Optional

from PySide6.QtCore import QTimer

from studywatch.clock import MS_PER_MINUTE
from studywatch.data.settings import WellnessSettings
from studywatch.services.timer_engine import TimerEngine, TimerSnapshot, TimerState

logger = logging.getLogger(__name__)

HYDRATION_MESSAGES = [
    "Time to drink some water!",
    "Stay hydrated! Take a sip.",
    "Water break! Your body will thank you.",
    "Hydration check! Grab your water bottle.",
]

POSTURE_MESSAGES = [
    "Posture check! Sit up straight.",
    "Roll your shoulders back and relax.",
    "Check your posture - spine straight, feet flat.",
    "Quick stretch! Straighten up and breathe.",
]


class WellnessService:
    """
    Fires reminder callbacks on fixed intervals during running sessions.

    Uses QTimers so callbacks run on the Qt event loop (safe for UI updates).
    """

    def __init__(
        self,
        engine: TimerEngine,
        settings: Optional[WellnessSettings] = None,
        on_hydration: Optional[Callable[[str], None]] = None,
        on_posture: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.engine = engine
        self.settings = settings or WellnessSettings()

        # Callbacks the UI will set
        self.on_hydration = on_hydration
        self.on_posture = on_posture

        self._hydration_messages: Iterator[str] = itertools.cycle(HYDRATION_MESSAGES)
        self._posture_messages: Iterator[str] = itertools.cycle(POSTURE_MESSAGES)

        self._hydration_timer = QTimer()
        self._hydration_timer.timeout.connect(self._remind_hydration)

        self._posture_timer = QTimer()
        self._posture_timer.timeout.connect(self._remind_posture)

        self._running = False
        engine.add_listener(self._on_engine_update)
        self._on_engine_update(engine.snapshot)

    # ── Public API ──────────────────────────────────────────────────────────

    @property
    def hydration_active(self) -> bool:
        return self._hydration_timer.isActive()

    @property
    def posture_active(self) -> bool:
        return self._posture_timer.isActive()

    def update_settings(self, settings: WellnessSettings) -> None:
        """Apply new intervals/toggles; running timers restart with them."""
        self.settings = settings
        self.stop_all()
        if self._running:
            self._start_timers()

    def stop_all(self) -> None:
        self._hydration_timer.stop()
        self._posture_timer.stop()

    # ── Engine state ────────────────────────────────────────────────────────

    def _on_engine_update(self, snap: TimerSnapshot) -> None:
        running = snap.state == TimerState.RUNNING
        if running == self._running:
            return
        self._running = running
        if running:
            self._start_timers()
        else:
            self.stop_all()

    def _start_timers(self) -> None:
        s = self.settings
        if s.hydration_enabled:
            self._hydration_timer.start(s.hydration_interval_minutes * MS_PER_MINUTE)
            logger.info("Hydration reminders every %d min.", s.hydration_interval_minutes)
        if s.posture_enabled:
            self._posture_timer.start(s.posture_interval_minutes * MS_PER_MINUTE)
            logger.info("Posture reminders every %d min.", s.posture_interval_minutes)

    # ── Timer callbacks ─────────────────────────────────────────────────────

    def _remind_hydration(self) -> None:
        if self.engine.state != TimerState.RUNNING:
            self._hydration_timer.stop()
            return
        message = next(self._hydration_messages)
        logger.info("Hydration reminder.")
        if self.on_hydration:
            self.on_hydration(message)

    def _remind_posture(self) -> None:
        if self.engine.state != TimerState.RUNNING:
            self._posture_timer.stop()
            return
        message = next(self._posture_messages)
        logger.info("Posture reminder.")
        if self.on_posture:
            self.on_posture(message)


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Runs two background timers that nudge the user to drink water and fix
#   their posture, but only while the study timer is actually running.
#
# Key design decisions:
#   - Listens to the TimerEngine instead of being called by it: the engine
#     does not know wellness reminders exist.
#   - Callbacks are injected so the service is UI-agnostic (testable with a
#     plain list.append).
#   - The callbacks re-check the engine state, so a timer that fires right
#     after a pause does nothing.
