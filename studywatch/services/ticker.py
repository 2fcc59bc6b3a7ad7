"""
Ticker — a cancellable repeating callback on the Qt event loop.

Wraps QTimer so callers get start()/stop() plus tick_now(), which runs the
callback synchronously. Tests drive everything through tick_now() and a fake
clock instead of waiting on real time.
"""

from __future__ import annotations

import logging
from typing import Callable

from PySide6.QtCore import QTimer

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL_MS = 100


class Ticker:
    """Calls `callback` every `interval_ms` while started."""

    def __init__(self, callback: Callable[[], None],
                 interval_ms: int = DEFAULT_TICK_INTERVAL_MS) -> None:
        self._callback = callback
        self._timer = QTimer()
        self._timer.setInterval(interval_ms)
        self._timer.timeout.connect(self._callback)

    @property
    def interval_ms(self) -> int:
        return self._timer.interval()

    @property
    def is_active(self) -> bool:
        return self._timer.isActive()

    def start(self) -> None:
        if not self._timer.isActive():
            self._timer.start()

    def stop(self) -> None:
        self._timer.stop()

    def tick_now(self) -> None:
        """Run one tick immediately, whether or not the timer is started."""
        self._callback()
