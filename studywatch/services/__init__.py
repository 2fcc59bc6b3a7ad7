from .ledger import LedgerTotals, compute_totals
from .pomodoro import PomodoroPhase, PomodoroState, PomodoroTimer
from .ticker import Ticker
from .timer_engine import TimerEngine, TimerSnapshot, TimerState

__all__ = [
    "LedgerTotals", "compute_totals",
    "PomodoroPhase", "PomodoroState", "PomodoroTimer",
    "Ticker",
    "TimerEngine", "TimerSnapshot", "TimerState",
]
