"""
Timer primitive used for listener TTLs and the idle sweeper.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Protocol


class TimerHandle(Protocol):
    """A scheduled callback that can be cancelled before it fires."""

    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """
    Schedules callbacks after a delay and reports the current time.

    Both durations and timestamps are expressed in milliseconds.
    """

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle: ...

    def now(self) -> float: ...


class ThreadingScheduler:
    """
    Default scheduler backed by daemon `threading.Timer` instances.

    Callbacks run on the timer thread, so anything they touch must be thread-safe.
    """

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay_ms / 1000.0, callback)
        timer.daemon = True
        timer.start()
        return timer

    def now(self) -> float:
        return time.monotonic() * 1000.0
