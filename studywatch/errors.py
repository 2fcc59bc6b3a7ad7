"""
Exceptions raised by StudyWatch.

Storage problems and invalid timer actions are the only two things the core
raises. Dangling topic references and clock skew are corrected locally.
"""

from __future__ import annotations


class StudyWatchError(Exception):
    """Base class for all StudyWatch errors."""


class StorageUnavailable(StudyWatchError):
    """The SQLite store could not be opened, read, or written."""


class InvalidTransition(StudyWatchError, RuntimeError):
    """A timer action was requested in a state that does not allow it."""
