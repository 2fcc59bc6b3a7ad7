"""
Typed settings records with defaults.

Each record knows its storage key. SettingsStore.load() merges whatever is
stored over the defaults and falls back to the defaults when the stored value
is unreadable, so call sites never parse JSON themselves.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from typing import Any, ClassVar, Dict, Type, TypeVar

from .repository import Repository

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="_SettingsRecord")


class _SettingsRecord:
    KEY: ClassVar[str] = ""

    def validate(self) -> None:
        """Raise ValueError when a field is out of range."""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]


@dataclass
class PomodoroSettings(_SettingsRecord):
    """Durations in minutes."""
    KEY: ClassVar[str] = "pomodoro_settings"

    work_duration: int = 25
    short_break_duration: int = 5
    long_break_duration: int = 15
    sessions_before_long_break: int = 4

    def validate(self) -> None:
        for name in ("work_duration", "short_break_duration",
                     "long_break_duration", "sessions_before_long_break"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")


@dataclass
class WellnessSettings(_SettingsRecord):
    KEY: ClassVar[str] = "wellness_settings"

    hydration_enabled: bool = True
    hydration_interval_minutes: int = 30
    posture_enabled: bool = True
    posture_interval_minutes: int = 20
    timer_notifications_enabled: bool = True

    def validate(self) -> None:
        for name in ("hydration_interval_minutes", "posture_interval_minutes"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")


@dataclass
class GoalSettings(_SettingsRecord):
    """Daily and weekly study targets in minutes."""
    KEY: ClassVar[str] = "goal_settings"

    daily_target_minutes: int = 120
    weekly_target_minutes: int = 600

    def validate(self) -> None:
        for name in ("daily_target_minutes", "weekly_target_minutes"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")


class SettingsStore:
    """Load-or-default access to typed settings records."""

    def __init__(self, repo: Repository) -> None:
        self.repo = repo

    def load(self, cls: Type[T]) -> T:
        raw = self.repo.get_setting(cls.KEY)
        if raw is None:
            return cls()
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("stored settings are not an object")
            known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
            record = cls(**{k: v for k, v in data.items() if k in known})
            record.validate()
        except (ValueError, TypeError) as exc:
            logger.warning("Ignoring invalid %s (%s); using defaults.", cls.KEY, exc)
            return cls()
        return record

    def save(self, record: _SettingsRecord) -> None:
        record.validate()
        self.repo.put_setting(record.KEY, record.to_dict())
        logger.info("Saved %s", record.KEY)
