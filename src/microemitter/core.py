"""
microemitter.core
-----------------

A process-wide default emitter with module-level helpers.
"""

from typing import Any, Callable, Hashable, List, Optional, Tuple

from .emitter import EventEmitter
from .metadata import Listener

# -------------------- module-level default emitter --------------------

_default_emitter = EventEmitter()


def get_emitter() -> EventEmitter:
    """Return the default emitter used by the module-level helpers."""
    return _default_emitter


# Registration
def on(event: Hashable, listener: Listener, **options: Any) -> EventEmitter:
    """
    Register a listener on the default emitter.
    Higher priority listeners run first. For equal priority, registration order is preserved.

    Args:
        event (Hashable): The event name or wildcard pattern.
        listener (Listener): The listener to register.
        **options: `priority`, `times`, `ttl` (ms) and `filter`.

    Returns:
        EventEmitter: The default emitter, for chaining.
    """
    return _default_emitter.on(event, listener, **options)


def once(event: Hashable, listener: Listener, **options: Any) -> EventEmitter:
    """Register a listener on the default emitter that fires at most once."""
    return _default_emitter.once(event, listener, **options)


def off(event: Optional[Hashable] = None, listener: Optional[Listener] = None) -> EventEmitter:
    """
    Unregister listeners from the default emitter.
    If `listener` is None, remove all listeners for `event`; if both are None, remove everything.
    """
    return _default_emitter.off(event, listener)


def clear() -> None:
    """
    Remove all listeners and pipes from the default emitter.

    Returns:
        None
    """
    _default_emitter.remove_all_listeners()


def listeners(event: Hashable) -> List[Listener]:
    """Return the listeners registered for `event`, in the order they would run."""
    return _default_emitter.listeners(event)


# Decorator
def receiver(
    event: Hashable,
    *,
    once: bool = False,  # pylint: disable=redefined-outer-name
    emitter: Optional[EventEmitter] = None,
    **options: Any,
) -> Callable[[Listener], Listener]:
    """
    Decorator to register a function as a listener for `event`.

    Args:
        event (Hashable): The event name or wildcard pattern.
        once (bool, optional): Whether the listener should fire only once. Defaults to False.
        emitter (EventEmitter, optional): The emitter to register on.
                                          Defaults to None, meaning the default emitter.
        **options: `priority`, `times`, `ttl` (ms) and `filter`.

    Returns:
        Callable[[Listener], Listener]: The decorator function.

    Example:
    @receiver("user.*", priority=1)
    def on_user(user):
        print("user event for", user)
    """
    return (emitter or _default_emitter).receiver(event, once=once, **options)


# Dispatch
def emit(event: Hashable, *args: Any) -> bool:
    """
    Synchronously deliver `args` to every listener of `event` on the default emitter.
    Exceptions raised by listeners propagate.

    Returns:
        bool: False if nothing was registered for `event`.
    """
    return _default_emitter.emit(event, *args)


async def emit_async(event: Hashable, *args: Any) -> bool:
    """
    Deliver `args` on the default emitter and wait for awaitables returned by listeners.
    Listener exceptions are logged, not raised.

    Example:
    await emit_async("my_event", arg1, arg2)
    """
    return await _default_emitter.emit_async(event, *args)


async def wait_for(event: Hashable, timeout: Optional[float] = None) -> Tuple[Any, ...]:
    """Wait for the next emission of `event` on the default emitter."""
    return await _default_emitter.wait_for(event, timeout)
