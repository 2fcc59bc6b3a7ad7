"""
Timer Engine — owns the session/segment lifecycle.

Handles: start, pause, resume, end, topic changes, startup recovery of an
unclosed session, and the recomputation loop that keeps the live totals
current while the timer runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from studywatch.clock import Clock, now_ms
from studywatch.data.models import Segment, Session
from studywatch.data.repository import Repository
from studywatch.errors import InvalidTransition, StorageUnavailable
from studywatch.services.ledger import LedgerTotals, compute_totals
from studywatch.services.ticker import DEFAULT_TICK_INTERVAL_MS, Ticker

logger = logging.getLogger(__name__)

T = TypeVar("T", Session, Segment)


class TimerState:
    """The three states of the study timer."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


@dataclass(frozen=True)
class TimerSnapshot:
    """Everything a view needs to render the timer, pushed to listeners."""
    state: str
    session_id: Optional[str]
    topic_id: Optional[str]
    subtopic_id: Optional[str]
    today_time: int
    all_time_total: int
    topic_time: int
    subtopic_time: int
    history_version: int


Listener = Callable[[TimerSnapshot], None]


def _latest(items: Sequence[T]) -> T:
    """Most recently started item; later insertion wins a tie."""
    return max(enumerate(items), key=lambda pair: (pair[1].start_ts, pair[0]))[1]


class TimerEngine:
    """
    Manages the study timer.

    Only ONE session can be unclosed at a time. State transitions:
        idle → running ↔ paused → idle
    A segment is open exactly while the state is running.
    """

    def __init__(
        self,
        repo: Repository,
        clock: Clock = now_ms,
        tick_interval_ms: int = DEFAULT_TICK_INTERVAL_MS,
    ) -> None:
        self.repo = repo
        self.clock = clock

        self.state: str = TimerState.IDLE
        self.session_id: Optional[str] = None
        self.current_topic_id: Optional[str] = None
        self.current_subtopic_id: Optional[str] = None

        # Live aggregates (milliseconds)
        self.today_time = 0
        self.all_time_total = 0
        self.topic_time = 0
        self.subtopic_time = 0
        self.history_version = 0

        self._open_segment_id: Optional[str] = None
        self._all_segments: List[Segment] = []
        self._session_segments: List[Segment] = []
        self._visible = True
        self._listeners: List[Listener] = []

        self.ticker = Ticker(self.tick, tick_interval_ms)

    # ── Observers ───────────────────────────────────────────────────────────

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def snapshot(self) -> TimerSnapshot:
        return TimerSnapshot(
            state=self.state,
            session_id=self.session_id,
            topic_id=self.current_topic_id,
            subtopic_id=self.current_subtopic_id,
            today_time=self.today_time,
            all_time_total=self.all_time_total,
            topic_time=self.topic_time,
            subtopic_time=self.subtopic_time,
            history_version=self.history_version,
        )

    @property
    def session_segments(self) -> Tuple[Segment, ...]:
        return tuple(self._session_segments)

    @property
    def open_segment_id(self) -> Optional[str]:
        return self._open_segment_id

    # ── Recovery ────────────────────────────────────────────────────────────

    def recover(self) -> str:
        """
        Restore the timer from the store. Run once at startup.

        An unclosed session with an open segment was running when the app
        went away, so it keeps running (the time in between counts). One
        without an open segment was paused. Returns the resulting state.
        """
        self._stop_loop()

        unclosed = self.repo.list_unclosed_sessions()
        if not unclosed:
            all_segments = self.repo.list_segments()
            self._set_idle(all_segments)
            logger.info("Recovery: no unclosed session, timer idle.")
            self.tick()
            return self.state

        session = _latest(unclosed)
        for orphan in unclosed:
            if orphan.id != session.id:
                self._close_orphan_session(orphan)

        session_segments = self.repo.get_segments_by_session(session.id)
        open_segments = [s for s in session_segments if s.is_open]
        if len(open_segments) > 1:
            keep = _latest(open_segments)
            for seg in open_segments:
                if seg.id != keep.id:
                    logger.warning(
                        "Recovery: session %s has several open segments; closing %s",
                        session.id, seg.id,
                    )
                    self.repo.close_segment(seg.id, seg.start_ts)
            session_segments = self.repo.get_segments_by_session(session.id)
            open_segments = [keep]

        all_segments = self.repo.list_segments()

        self.session_id = session.id
        self._all_segments = all_segments
        self._session_segments = session_segments
        if open_segments:
            seg = open_segments[0]
            self._open_segment_id = seg.id
            self.current_topic_id = seg.topic_id
            self.current_subtopic_id = seg.subtopic_id
            self.state = TimerState.RUNNING
            logger.info("Recovery: session %s was running since %d; resuming.",
                        session.id, seg.start_ts)
        else:
            last = session_segments[-1] if session_segments else None
            self._open_segment_id = None
            self.current_topic_id = last.topic_id if last else None
            self.current_subtopic_id = last.subtopic_id if last else None
            self.state = TimerState.PAUSED
            logger.info("Recovery: session %s restored as paused.", session.id)

        self.tick()
        self._start_loop()
        return self.state

    def _close_orphan_session(self, session: Session) -> None:
        """Close a superseded unclosed session at its last known timestamp."""
        segments = self.repo.get_segments_by_session(session.id)
        last_known = session.start_ts
        for seg in segments:
            if seg.is_open:
                self.repo.close_segment(seg.id, seg.start_ts)
                last_known = max(last_known, seg.start_ts)
            else:
                last_known = max(last_known, seg.start_ts, seg.end_ts)
        self.repo.end_session(session.id, last_known)
        logger.warning("Recovery: closed orphaned session %s at %d", session.id, last_known)

    # ── Session lifecycle ───────────────────────────────────────────────────

    def start_session(self) -> None:
        """Start a new, untagged session."""
        if self.state != TimerState.IDLE:
            raise InvalidTransition("A session is already active.")
        self._begin_session(None, None)

    def pause_session(self) -> None:
        self._require_state(TimerState.RUNNING, "pause")
        self._stop_loop()
        now = self.clock()
        try:
            if self._open_segment_id is not None:
                self.repo.close_segment(self._open_segment_id, now)
        except StorageUnavailable:
            self._start_loop()
            raise
        self._segment_closed(now)
        logger.info("Session %s paused.", self.session_id)
        self._history_changed()

    def resume_session(self) -> None:
        """Resume with the tags that were active before the pause."""
        self._require_state(TimerState.PAUSED, "resume")
        self._resume(self.current_topic_id, self.current_subtopic_id)

    def end_current_session(self) -> None:
        """End the session, closing the open segment if the timer is running."""
        if self.state == TimerState.IDLE or self.session_id is None:
            raise InvalidTransition("No active session to end.")
        self._stop_loop()
        now = self.clock()
        try:
            if self._open_segment_id is not None:
                self.repo.close_segment(self._open_segment_id, now)
        except StorageUnavailable:
            self._start_loop()
            raise
        was_running = self.state == TimerState.RUNNING
        self._segment_closed(now)
        try:
            self.repo.end_session(self.session_id, now)
        except StorageUnavailable:
            # The close is committed: the store now holds a paused session.
            logger.error("Session %s could not be ended; left paused.", self.session_id)
            if was_running:
                self._history_changed()
            raise
        ended = self.session_id
        self._set_idle(self._all_segments)
        logger.info("Session %s ended.", ended)
        self._history_changed()

    # ── Topic / subtopic ────────────────────────────────────────────────────

    def set_topic(self, topic_id: Optional[str]) -> None:
        """Switch topic. Clears the subtopic, which belongs to the old topic."""
        if self.state == TimerState.RUNNING:
            self._retag(topic_id, None)
            return
        self.current_topic_id = topic_id
        self.current_subtopic_id = None
        self.tick()

    def set_subtopic(self, subtopic_id: Optional[str]) -> None:
        if self.state == TimerState.RUNNING:
            self._retag(self.current_topic_id, subtopic_id)
            return
        self.current_subtopic_id = subtopic_id
        self.tick()

    def resume_with_context(self, topic_id: Optional[str],
                            subtopic_id: Optional[str]) -> None:
        """Continue studying a given topic/subtopic from any state."""
        if self.state == TimerState.IDLE:
            self._begin_session(topic_id, subtopic_id)
        elif self.state == TimerState.PAUSED:
            self._resume(topic_id, subtopic_id)
        else:
            self._retag(topic_id, subtopic_id)

    # ── Recomputation loop ──────────────────────────────────────────────────

    def tick(self) -> LedgerTotals:
        """Recompute the live totals from cached segments and notify listeners."""
        totals = compute_totals(
            self._all_segments,
            self.clock(),
            self.current_topic_id,
            self.current_subtopic_id,
            self._session_segments,
        )
        self.all_time_total = totals.all_time
        self.today_time = totals.today_time
        self.topic_time = totals.topic_time
        self.subtopic_time = totals.subtopic_time
        self._notify()
        return totals

    def set_visible(self, visible: bool) -> None:
        """Suspend the loop while hidden. Time keeps accruing from timestamps."""
        self._visible = visible
        if not visible:
            self._stop_loop()
            return
        if self.state == TimerState.RUNNING:
            self.tick()
            self._start_loop()

    def refresh_data(self) -> None:
        """Reload segments after history was edited elsewhere and bump history_version."""
        all_segments, session_segments = self._load_segments(self.session_id)
        self._all_segments = all_segments
        self._session_segments = session_segments
        self._history_changed()

    def shutdown(self) -> None:
        """Stop the loop. Store state is untouched, so recover() picks it up later."""
        self._stop_loop()

    # ── Helpers ─────────────────────────────────────────────────────────────

    def _begin_session(self, topic_id: Optional[str], subtopic_id: Optional[str]) -> None:
        now = self.clock()
        session = self.repo.create_session(now)
        try:
            segment = self.repo.open_segment(session.id, topic_id, subtopic_id, now)
        except StorageUnavailable:
            self._abandon_session(session.id, now)
            raise
        self.session_id = session.id
        self.current_topic_id = topic_id
        self.current_subtopic_id = subtopic_id
        self._open_segment_id = segment.id
        self._all_segments = self._all_segments + [segment]
        self._session_segments = [segment]
        self.state = TimerState.RUNNING
        logger.info("Session %s started.", session.id)
        self._history_changed()
        self._start_loop()

    def _resume(self, topic_id: Optional[str], subtopic_id: Optional[str]) -> None:
        segment = self.repo.open_segment(self.session_id, topic_id, subtopic_id, self.clock())
        self.current_topic_id = topic_id
        self.current_subtopic_id = subtopic_id
        self._cache_opened(segment)
        self.state = TimerState.RUNNING
        logger.info("Session %s resumed.", self.session_id)
        self._history_changed()
        self._start_loop()

    def _retag(self, topic_id: Optional[str], subtopic_id: Optional[str]) -> None:
        """Close the open segment and open a new one with new tags at the same instant."""
        now = self.clock()
        if self._open_segment_id is not None:
            self.repo.close_segment(self._open_segment_id, now)
        try:
            segment = self.repo.open_segment(self.session_id, topic_id, subtopic_id, now)
        except StorageUnavailable:
            # The close is committed: fall back to paused with the requested tags.
            self._stop_loop()
            self._segment_closed(now)
            self.current_topic_id = topic_id
            self.current_subtopic_id = subtopic_id
            logger.error("Session %s could not be retagged; left paused.", self.session_id)
            self._history_changed()
            raise
        self._cache_closed(self._open_segment_id, now)
        self._cache_opened(segment)
        self.current_topic_id = topic_id
        self.current_subtopic_id = subtopic_id
        logger.debug("Session %s retagged: topic=%s subtopic=%s",
                     self.session_id, topic_id, subtopic_id)
        self._history_changed()

    def _cache_opened(self, segment: Segment) -> None:
        self._open_segment_id = segment.id
        self._all_segments = self._all_segments + [segment]
        self._session_segments = self._session_segments + [segment]

    def _cache_closed(self, segment_id: Optional[str], end_ts: int) -> None:
        """Mirror a committed close_segment() in the cached lists."""
        if segment_id is None:
            return

        def close(segments: List[Segment]) -> List[Segment]:
            return [
                replace(s, end_ts=end_ts) if s.id == segment_id and s.is_open else s
                for s in segments
            ]

        self._all_segments = close(self._all_segments)
        self._session_segments = close(self._session_segments)

    def _segment_closed(self, end_ts: int) -> None:
        """Mirror a committed close of the open segment; the session is now paused."""
        self._cache_closed(self._open_segment_id, end_ts)
        self._open_segment_id = None
        self.state = TimerState.PAUSED

    def _abandon_session(self, session_id: str, now: int) -> None:
        """Best effort: close a session whose first segment could not be written."""
        try:
            self.repo.end_session(session_id, now)
        except StorageUnavailable:
            logger.error("Could not close abandoned session %s; recovery will repair it.",
                         session_id)

    def _load_segments(self, session_id: Optional[str]) -> Tuple[List[Segment], List[Segment]]:
        all_segments = self.repo.list_segments()
        if session_id is None:
            return all_segments, []
        return all_segments, [s for s in all_segments if s.session_id == session_id]

    def _set_idle(self, all_segments: List[Segment]) -> None:
        self.state = TimerState.IDLE
        self.session_id = None
        self.current_topic_id = None
        self.current_subtopic_id = None
        self._open_segment_id = None
        self._all_segments = all_segments
        self._session_segments = []

    def _history_changed(self) -> None:
        self.history_version += 1
        self.tick()

    def _start_loop(self) -> None:
        if self.state == TimerState.RUNNING and self._visible:
            self.ticker.start()

    def _stop_loop(self) -> None:
        self.ticker.stop()

    def _notify(self) -> None:
        snap = self.snapshot
        for listener in list(self._listeners):
            listener(snap)

    def _require_state(self, expected: str, action: str) -> None:
        if self.state != expected:
            raise InvalidTransition(
                f"Cannot {action}: current state is '{self.state}', "
                f"expected '{expected}'."
            )
        if self.session_id is None:
            raise InvalidTransition("No active session.")


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   The state machine for a study sitting: idle → running ↔ paused → idle.
#   Every transition is one or two segment writes, mirrored into the cached
#   segment lists, then a recompute through the ledger.
#
# Key design decisions:
#   - Writes first, memory second: a transition mirrors exactly the writes
#     that committed. A failed first write leaves the engine where it was;
#     if a segment close committed and the next write failed (retag, end),
#     the engine drops to paused, which is what the store now says.
#   - Pause and end stop the ticker BEFORE writing, so no tick can land
#     after the segment was closed.
#   - The ticker only re-runs the ledger on cached segments. It never does
#     I/O, and hiding the window just stops it; the open segment's start_ts
#     still carries the true elapsed time.
#   - Recovery trusts the durable markers (end_ts IS NULL) and repairs
#     duplicates deterministically instead of crashing.
#
# Interviewer-friendly talking points:
#   1. Crash safety comes from the data model, not from periodic saves: an
#      open segment is already a complete record of "studying since X".
#   2. Injected clock + tick_now(): the tests replay a whole sitting in
#      microseconds without sleeping.
#   3. history_version is a cheap change counter: history views compare it
#      instead of re-querying the database on every frame.
