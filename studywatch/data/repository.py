"""
Repository — the single place where SQL lives.

Every other module talks to Repository, never to raw SQL. Any sqlite3 failure
surfaces as StorageUnavailable; nothing here retries or swallows errors.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, List, Optional

from studywatch.clock import now_ms
from studywatch.errors import InvalidTransition, StorageUnavailable

from .models import Segment, Session, Subtopic, Topic

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


class Repository:
    """Data-access layer wrapping a sqlite3 connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    @contextmanager
    def _storage(self, action: str) -> Iterator[sqlite3.Connection]:
        try:
            yield self.conn
        except sqlite3.Error as exc:
            logger.error("Storage failure while trying to %s: %s", action, exc)
            raise StorageUnavailable(f"Failed to {action}: {exc}") from exc

    # ── Sessions ────────────────────────────────────────────────────────────

    def create_session(self, start_ts: Optional[int] = None) -> Session:
        session = Session(id=_new_id(), start_ts=start_ts if start_ts is not None else now_ms())
        with self._storage("create session") as conn:
            conn.execute(
                "INSERT INTO sessions (id, start_ts, end_ts) VALUES (?, ?, NULL)",
                (session.id, session.start_ts),
            )
            conn.commit()
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._storage("read session") as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return self._row_to_session(row) if row else None

    def list_unclosed_sessions(self) -> List[Session]:
        with self._storage("query unclosed sessions") as conn:
            rows = conn.execute(
                "SELECT * FROM sessions WHERE end_ts IS NULL ORDER BY rowid"
            ).fetchall()
        return [self._row_to_session(r) for r in rows]

    def get_unclosed_session(self) -> Optional[Session]:
        """The unclosed session, or the most recently started one if several exist."""
        sessions = self.list_unclosed_sessions()
        if not sessions:
            return None
        return max(sessions, key=lambda s: s.start_ts)

    def end_session(self, session_id: str, end_ts: Optional[int] = None) -> None:
        ts = end_ts if end_ts is not None else now_ms()
        with self._storage("end session") as conn:
            conn.execute(
                "UPDATE sessions SET end_ts = ? WHERE id = ? AND end_ts IS NULL",
                (ts, session_id),
            )
            conn.commit()

    def list_sessions(self, include_unclosed: bool = True) -> List[Session]:
        query = "SELECT * FROM sessions"
        if not include_unclosed:
            query += " WHERE end_ts IS NOT NULL"
        query += " ORDER BY rowid"
        with self._storage("list sessions") as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_session(r) for r in rows]

    def count_sessions(self) -> int:
        """Number of completed sessions."""
        with self._storage("count sessions") as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM sessions WHERE end_ts IS NOT NULL"
            ).fetchone()
        return row[0]

    def delete_session(self, session_id: str) -> None:
        """Delete a completed session and its segments."""
        session = self.get_session(session_id)
        if session is None:
            return
        if session.is_unclosed:
            raise InvalidTransition("Cannot delete the session that is still in progress.")
        with self._storage("delete session") as conn:
            conn.execute("DELETE FROM segments WHERE session_id = ?", (session_id,))
            conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            conn.commit()
        logger.info("Deleted session %s", session_id)

    def delete_sessions(self, session_ids: Iterable[str]) -> int:
        count = 0
        for sid in session_ids:
            self.delete_session(sid)
            count += 1
        return count

    # ── Topics ──────────────────────────────────────────────────────────────

    def create_topic(self, name: str, created_at: Optional[int] = None) -> Topic:
        topic = Topic(id=_new_id(), name=name,
                      created_at=created_at if created_at is not None else now_ms())
        with self._storage("create topic") as conn:
            conn.execute(
                "INSERT INTO topics (id, name, created_at) VALUES (?, ?, ?)",
                (topic.id, topic.name, topic.created_at),
            )
            conn.commit()
        return topic

    def get_topic(self, topic_id: str) -> Optional[Topic]:
        with self._storage("read topic") as conn:
            row = conn.execute(
                "SELECT * FROM topics WHERE id = ?", (topic_id,)
            ).fetchone()
        return self._row_to_topic(row) if row else None

    def list_topics(self) -> List[Topic]:
        with self._storage("list topics") as conn:
            rows = conn.execute("SELECT * FROM topics ORDER BY rowid").fetchall()
        return [self._row_to_topic(r) for r in rows]

    # ── Subtopics ───────────────────────────────────────────────────────────

    def create_subtopic(self, topic_id: str, name: str,
                        created_at: Optional[int] = None) -> Subtopic:
        sub = Subtopic(id=_new_id(), topic_id=topic_id, name=name,
                       created_at=created_at if created_at is not None else now_ms())
        with self._storage("create subtopic") as conn:
            conn.execute(
                "INSERT INTO subtopics (id, topic_id, name, created_at) VALUES (?, ?, ?, ?)",
                (sub.id, sub.topic_id, sub.name, sub.created_at),
            )
            conn.commit()
        return sub

    def get_subtopic(self, subtopic_id: str) -> Optional[Subtopic]:
        with self._storage("read subtopic") as conn:
            row = conn.execute(
                "SELECT * FROM subtopics WHERE id = ?", (subtopic_id,)
            ).fetchone()
        return self._row_to_subtopic(row) if row else None

    def list_subtopics(self, topic_id: str) -> List[Subtopic]:
        with self._storage("list subtopics") as conn:
            rows = conn.execute(
                "SELECT * FROM subtopics WHERE topic_id = ? ORDER BY rowid",
                (topic_id,),
            ).fetchall()
        return [self._row_to_subtopic(r) for r in rows]

    def list_all_subtopics(self) -> List[Subtopic]:
        with self._storage("list subtopics") as conn:
            rows = conn.execute("SELECT * FROM subtopics ORDER BY rowid").fetchall()
        return [self._row_to_subtopic(r) for r in rows]

    # ── Segments ────────────────────────────────────────────────────────────

    def open_segment(self, session_id: str, topic_id: Optional[str],
                     subtopic_id: Optional[str],
                     start_ts: Optional[int] = None) -> Segment:
        seg = Segment(
            id=_new_id(), session_id=session_id,
            topic_id=topic_id, subtopic_id=subtopic_id,
            start_ts=start_ts if start_ts is not None else now_ms(),
        )
        with self._storage("open segment") as conn:
            conn.execute(
                "INSERT INTO segments (id, session_id, topic_id, subtopic_id, start_ts, end_ts) "
                "VALUES (?, ?, ?, ?, ?, NULL)",
                (seg.id, seg.session_id, seg.topic_id, seg.subtopic_id, seg.start_ts),
            )
            conn.commit()
        return seg

    def close_segment(self, segment_id: str, end_ts: Optional[int] = None) -> None:
        """Set end_ts on an open segment. Already-closed segments are left alone."""
        ts = end_ts if end_ts is not None else now_ms()
        with self._storage("close segment") as conn:
            conn.execute(
                "UPDATE segments SET end_ts = ? WHERE id = ? AND end_ts IS NULL",
                (ts, segment_id),
            )
            conn.commit()

    def get_segment(self, segment_id: str) -> Optional[Segment]:
        with self._storage("read segment") as conn:
            row = conn.execute(
                "SELECT * FROM segments WHERE id = ?", (segment_id,)
            ).fetchone()
        return self._row_to_segment(row) if row else None

    def get_segments_by_session(self, session_id: str) -> List[Segment]:
        with self._storage("read session segments") as conn:
            rows = conn.execute(
                "SELECT * FROM segments WHERE session_id = ? ORDER BY rowid",
                (session_id,),
            ).fetchall()
        return [self._row_to_segment(r) for r in rows]

    def get_open_segments(self, session_id: str) -> List[Segment]:
        with self._storage("query open segments") as conn:
            rows = conn.execute(
                "SELECT * FROM segments WHERE session_id = ? AND end_ts IS NULL ORDER BY rowid",
                (session_id,),
            ).fetchall()
        return [self._row_to_segment(r) for r in rows]

    def list_segments(self) -> List[Segment]:
        with self._storage("list segments") as conn:
            rows = conn.execute("SELECT * FROM segments ORDER BY rowid").fetchall()
        return [self._row_to_segment(r) for r in rows]

    # ── Settings (JSON values) ──────────────────────────────────────────────

    def get_setting(self, key: str) -> Optional[str]:
        with self._storage("read setting") as conn:
            row = conn.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def put_setting(self, key: str, value: Any) -> None:
        """Store value as JSON text under key (insert or replace)."""
        with self._storage("write setting") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, json.dumps(value)),
            )
            conn.commit()

    def delete_setting(self, key: str) -> None:
        with self._storage("delete setting") as conn:
            conn.execute("DELETE FROM settings WHERE key = ?", (key,))
            conn.commit()

    # ── Row mappers ─────────────────────────────────────────────────────────

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        return Session(id=row["id"], start_ts=row["start_ts"], end_ts=row["end_ts"])

    @staticmethod
    def _row_to_topic(row: sqlite3.Row) -> Topic:
        return Topic(id=row["id"], name=row["name"], created_at=row["created_at"])

    @staticmethod
    def _row_to_subtopic(row: sqlite3.Row) -> Subtopic:
        return Subtopic(id=row["id"], topic_id=row["topic_id"],
                        name=row["name"], created_at=row["created_at"])

    @staticmethod
    def _row_to_segment(row: sqlite3.Row) -> Segment:
        return Segment(
            id=row["id"], session_id=row["session_id"],
            topic_id=row["topic_id"], subtopic_id=row["subtopic_id"],
            start_ts=row["start_ts"], end_ts=row["end_ts"],
        )


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   The Repository is the ONLY place raw SQL lives. The timer engine, the
#   Pomodoro overlay and the statistics code call methods like
#   repo.open_segment() instead of writing SQL strings.
#
# Key methods:
#   - open_segment / close_segment: the two writes every timer transition
#     is built from.
#   - list_unclosed_sessions / get_open_segments: what startup recovery asks.
#   - get_setting / put_setting: JSON blobs for typed settings and the
#     Pomodoro crash snapshot.
#
# Interviewer-friendly talking points:
#   1. _storage() turns every sqlite3.Error into StorageUnavailable, so the
#      engine never has to know which driver sits underneath.
#   2. close_segment only touches rows with end_ts IS NULL: closing twice is
#      harmless, which keeps recovery idempotent.
#   3. ORDER BY rowid keeps insertion order, so iteration is deterministic
#      even when two segments share a start timestamp.
