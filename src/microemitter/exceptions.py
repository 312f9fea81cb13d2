"""
Exceptions and warnings raised by microemitter.
"""

from __future__ import annotations

from typing import Any, Sequence


class MicroEmitterError(Exception):
    """Base class for all microemitter errors."""


class EventTimeoutError(MicroEmitterError, TimeoutError):
    """
    Raised by `wait_for()` and `race()` when none of the awaited events fired in time.

    Attributes:
        events: The awaited event name(s).
        timeout: The configured timeout in milliseconds.
    """

    def __init__(self, events: Sequence[Any], timeout: float, message: str) -> None:
        super().__init__(message)
        self.events = tuple(events)
        self.timeout = timeout

    @classmethod
    def for_event(cls, event: Any, timeout: float) -> "EventTimeoutError":
        return cls(
            (event,), timeout, f'Timeout waiting for event "{event}" after {timeout}ms'
        )

    @classmethod
    def for_race(cls, events: Sequence[Any], timeout: float) -> "EventTimeoutError":
        names = ", ".join(str(e) for e in events)
        return cls(
            events,
            timeout,
            f"Timeout: none of the events [{names}] occurred within {timeout}ms",
        )


class MaxListenersExceededWarning(RuntimeWarning):
    """Issued when one event accumulates more listeners than the configured soft cap."""
