"""Shared fixtures: in-memory store, fake clock, and a QCoreApplication for QTimer."""

import sqlite3
import sys
from datetime import datetime
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from PySide6.QtCore import QCoreApplication

from studywatch.data.database import SCHEMA_SQL
from studywatch.data.repository import Repository


def local_ms(year, month, day, hour=0, minute=0, second=0) -> int:
    """Epoch ms of a local wall-clock time."""
    return int(datetime(year, month, day, hour, minute, second).timestamp() * 1000)


class FakeClock:
    """Callable millisecond clock that only moves when told to."""

    def __init__(self, start: int) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def clock():
    # A Wednesday morning in January (no DST transitions nearby)
    return FakeClock(local_ms(2026, 1, 14, 10, 0))


@pytest.fixture
def conn():
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    conn.executescript(SCHEMA_SQL)
    conn.commit()
    yield conn
    conn.close()


@pytest.fixture
def repo(conn):
    return Repository(conn)
