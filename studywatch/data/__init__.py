from .database import Database
from .models import Segment, Session, Subtopic, Topic
from .repository import Repository
from .settings import GoalSettings, PomodoroSettings, SettingsStore, WellnessSettings

__all__ = [
    "Database", "Segment", "Session", "Subtopic", "Topic", "Repository",
    "GoalSettings", "PomodoroSettings", "SettingsStore", "WellnessSettings",
]
