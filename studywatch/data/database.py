"""
SQLite database initialization and connection management.

Single responsibility: own the connection and create tables.
All actual queries live in Repository.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Optional

from studywatch.errors import StorageUnavailable

logger = logging.getLogger(__name__)

# Default DB lives next to the repo root
DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent.parent / "studywatch.db"

SCHEMA_SQL = """
-- Sessions ------------------------------------------------------------------
CREATE TABLE IF NOT EXISTS sessions (
    id          TEXT    PRIMARY KEY,
    start_ts    INTEGER NOT NULL,
    end_ts      INTEGER
);

-- Topics --------------------------------------------------------------------
CREATE TABLE IF NOT EXISTS topics (
    id          TEXT    PRIMARY KEY,
    name        TEXT    NOT NULL,
    created_at  INTEGER NOT NULL
);

-- Subtopics -----------------------------------------------------------------
CREATE TABLE IF NOT EXISTS subtopics (
    id          TEXT    PRIMARY KEY,
    topic_id    TEXT    NOT NULL,
    name        TEXT    NOT NULL,
    created_at  INTEGER NOT NULL
);

-- Segments (source of truth) ------------------------------------------------
CREATE TABLE IF NOT EXISTS segments (
    id          TEXT    PRIMARY KEY,
    session_id  TEXT    NOT NULL REFERENCES sessions(id),
    topic_id    TEXT,
    subtopic_id TEXT,
    start_ts    INTEGER NOT NULL,
    end_ts      INTEGER
);

-- Settings / snapshots (JSON values) ----------------------------------------
CREATE TABLE IF NOT EXISTS settings (
    key         TEXT    PRIMARY KEY,
    value       TEXT    NOT NULL
);

-- Indexes for common queries -------------------------------------------------
CREATE INDEX IF NOT EXISTS idx_segments_session ON segments(session_id);
CREATE INDEX IF NOT EXISTS idx_segments_topic   ON segments(topic_id);
CREATE INDEX IF NOT EXISTS idx_subtopics_topic  ON subtopics(topic_id);
"""


class Database:
    """Thin wrapper around a SQLite connection. One instance per store."""

    def __init__(self, db_path: Optional[Path] = None) -> None:
        self.db_path = db_path or DEFAULT_DB_PATH
        self.conn: Optional[sqlite3.Connection] = None

    # -- lifecycle -----------------------------------------------------------

    def open(self) -> sqlite3.Connection:
        """Open (or return existing) connection and ensure schema exists."""
        if self.conn is not None:
            return self.conn
        logger.info("Opening SQLite store at %s", self.db_path)
        try:
            conn = sqlite3.connect(str(self.db_path))
            conn.row_factory = sqlite3.Row          # dict-like rows
            if str(self.db_path) != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.executescript(SCHEMA_SQL)
            conn.commit()
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"Cannot open store at {self.db_path}: {exc}") from exc
        self.conn = conn
        logger.info("Database schema ensured.")
        return self.conn

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Database connection closed.")

    @property
    def is_open(self) -> bool:
        return self.conn is not None


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Manages the SQLite connection and makes sure all tables exist on open.
#
# Key pieces:
#   - SCHEMA_SQL: the full DDL. CREATE IF NOT EXISTS makes it idempotent,
#     safe to run every launch.
#   - Database: an explicit handle with open()/close(). Tests build their own
#     in-memory instance, so nothing is shared between them.
#
# Interviewer-friendly talking points:
#   1. foreign_keys=ON: a segment can never point at a missing session.
#      Topic ids are deliberately NOT foreign keys, since segments must
#      survive their topic disappearing.
#   2. Open failures become StorageUnavailable so callers only catch one
#      error type, whatever sqlite3 raised underneath.
