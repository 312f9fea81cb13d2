"""
Microemitter
------------

In-process publish/subscribe dispatcher for Python.

Features:

- `on()` / `once()` / `prepend_listener()` with `priority`, `times`, `ttl` and `filter` options.
- Wildcard patterns: `user.*` (one segment), `user.**` (any depth), `job.?` (one character).
- Catch-all listeners via `on_any()`, and `pipe()` to forward emissions to other emitters.
- `emit()` is **sync** and honors `stop_propagation()`; `emit_async()` awaits returned awaitables.
- `wait_for()` and `race()` turn events into awaitable results, with optional timeouts.
- Optional idle sweeper evicting listeners that have not fired for a while.
- Decorator-based API with `@receiver(event)` on a default emitter.
- No runtime dependencies.
"""

from .core import (
    clear,
    emit,
    emit_async,
    get_emitter,
    listeners,
    off,
    on,
    once,
    receiver,
    wait_for,
)
from .emitter import EmitterOptions, EventEmitter, RaceResult
from .exceptions import (
    EventTimeoutError,
    MaxListenersExceededWarning,
    MicroEmitterError,
)
from .metadata import ListenerOptions
from .registry import EventNames, Feature
from .scheduler import Scheduler, ThreadingScheduler

__all__ = [
    "EventEmitter",
    "EmitterOptions",
    "ListenerOptions",
    "RaceResult",
    "EventNames",
    "Feature",
    "Scheduler",
    "ThreadingScheduler",
    "MicroEmitterError",
    "EventTimeoutError",
    "MaxListenersExceededWarning",
    "receiver",
    "emit",
    "emit_async",
    "wait_for",
    "on",
    "once",
    "off",
    "clear",
    "listeners",
    "get_emitter",
]
