"""
Event emitter implementation.
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Hashable,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
)

from .exceptions import EventTimeoutError
from .metadata import FilterFunc, Listener, ListenerOptions
from .patterns import is_pattern
from .registry import (
    DEFAULT_MAX_LISTENERS,
    Candidates,
    EventNames,
    Feature,
    ListenerRegistry,
)
from .scheduler import Scheduler, ThreadingScheduler
from .sweeper import IdleSweeper

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_THRESHOLD = 300000  # 5 minutes, in ms

Plan = Iterator[Tuple[Callable[..., Any], Tuple[Any, ...]]]


@dataclass(frozen=True)
class EmitterOptions:
    """
    Construction options for `EventEmitter`.

    Args:
        auto_cleanup (bool): Run the idle sweeper. Defaults to False.
        auto_cleanup_threshold (int): Idle period in ms after which a listener is evicted.
                                      Defaults to 300000.
        max_listeners (int): Per-event soft cap before a leak warning. 0 disables the warning.
        scheduler (Optional[Scheduler]): Timer primitive. Defaults to `ThreadingScheduler`.
    """

    auto_cleanup: bool = False
    auto_cleanup_threshold: int = DEFAULT_CLEANUP_THRESHOLD
    max_listeners: int = DEFAULT_MAX_LISTENERS
    scheduler: Optional[Scheduler] = None

    def __post_init__(self) -> None:
        if self.auto_cleanup_threshold <= 0:
            raise ValueError("auto_cleanup_threshold must be positive")
        if self.max_listeners < 0:
            raise ValueError("max_listeners must not be negative")


@dataclass(frozen=True)
class RaceResult:
    """The winning event of `EventEmitter.race()` and the arguments it was emitted with."""

    event: Hashable
    args: Tuple[Any, ...]


def _check_callable(listener: Any) -> None:
    if not callable(listener):
        raise TypeError("listener must be callable")


def _settle(
    loop: asyncio.AbstractEventLoop,
    future: "asyncio.Future[Any]",
    value: Any = None,
    error: Optional[BaseException] = None,
) -> None:
    """Complete `future` on its own loop, even when called from another thread."""

    def apply() -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(value)

    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None
    if running is loop:
        apply()
    else:
        loop.call_soon_threadsafe(apply)


class EventEmitter:
    """
    An in-process publish/subscribe dispatcher.

    Listeners are registered for exact event names, for wildcard patterns (`user.*`,
    `user.**`, `job.?`) or for every event (`on_any`). `emit()` delivers synchronously in
    priority order; `emit_async()` also waits for awaitables returned by listeners.

    Exceptions raised by a listener during `emit()` propagate to the caller and abort the
    rest of that emission. During `emit_async()` they are logged and swallowed.

    Args:
        options (Optional[EmitterOptions]): Construction options.
        **overrides: Field overrides applied on top of `options`.
    """

    def __init__(self, options: Optional[EmitterOptions] = None, **overrides: Any) -> None:
        opts = options or EmitterOptions()
        if overrides:
            opts = dataclasses.replace(opts, **overrides)
        self.options = opts
        self._scheduler: Scheduler = opts.scheduler or ThreadingScheduler()
        self._registry = ListenerRegistry(
            self._scheduler,
            max_listeners=opts.max_listeners,
            track_access=opts.auto_cleanup,
        )
        self._propagation_stopped = False
        self._sweeper: Optional[IdleSweeper] = None
        if opts.auto_cleanup:
            self._sweeper = IdleSweeper(
                self._registry, self._scheduler, opts.auto_cleanup_threshold
            )
            self._sweeper.start()

    @property
    def features(self) -> Feature:
        """Which optional collections (wildcards, pipes, catch-all, filters) are in use."""
        return self._registry.flags

    @property
    def sweeper(self) -> Optional[IdleSweeper]:
        return self._sweeper

    # -------------------- registration API --------------------
    def add_listener(
        self,
        event: Hashable,
        listener: Listener,
        *,
        priority: int = 0,
        times: Optional[int] = None,
        ttl: Optional[float] = None,
        filter: Optional[FilterFunc] = None,  # pylint: disable=redefined-builtin
    ) -> "EventEmitter":
        """
        Register a listener for an event name or wildcard pattern.
        Higher priority listeners run first. For equal priority, registration order is preserved.

        Args:
            event (Hashable): Event name. A string containing `*` or `?` is a pattern.
            listener (Listener): Called with the emitted arguments.
            priority (int, optional): Defaults to 0. Higher priority listeners run first.
            times (Optional[int], optional): Remove the listener after N selections.
            ttl (Optional[float], optional): Remove the listener after this many ms.
            filter (Optional[FilterFunc], optional): Predicate over the argument tuple.

        Returns:
            EventEmitter: self, for chaining.
        """
        options = ListenerOptions(priority=priority, times=times, ttl=ttl, filter=filter)
        return self._add(event, listener, options)

    def on(self, event: Hashable, listener: Listener, **options: Any) -> "EventEmitter":
        """Alias for `add_listener`."""
        return self.add_listener(event, listener, **options)

    def once(
        self,
        event: Hashable,
        listener: Listener,
        *,
        priority: int = 0,
        ttl: Optional[float] = None,
        filter: Optional[FilterFunc] = None,  # pylint: disable=redefined-builtin
    ) -> "EventEmitter":
        """
        Register a listener that is detached right before its first invocation.
        A listener skipped by its filter stays registered.
        """
        options = ListenerOptions(priority=priority, ttl=ttl, filter=filter)
        return self._add(event, listener, options, once=True)

    def prepend_listener(
        self,
        event: Hashable,
        listener: Listener,
        *,
        priority: int = 0,
        times: Optional[int] = None,
        ttl: Optional[float] = None,
        filter: Optional[FilterFunc] = None,  # pylint: disable=redefined-builtin
    ) -> "EventEmitter":
        """Like `add_listener`, but ahead of listeners registered with the same priority."""
        options = ListenerOptions(priority=priority, times=times, ttl=ttl, filter=filter)
        return self._add(event, listener, options.bumped())

    def prepend_once_listener(
        self,
        event: Hashable,
        listener: Listener,
        *,
        priority: int = 0,
        ttl: Optional[float] = None,
        filter: Optional[FilterFunc] = None,  # pylint: disable=redefined-builtin
    ) -> "EventEmitter":
        """Like `once`, but ahead of once-listeners registered with the same priority."""
        options = ListenerOptions(priority=priority, ttl=ttl, filter=filter)
        return self._add(event, listener, options.bumped(), once=True)

    def on_any(self, listener: Listener) -> "EventEmitter":
        """Register a catch-all listener, called as `listener(event, *args)` for every emission."""
        _check_callable(listener)
        self._registry.insert_catch_all(listener)
        return self

    def off_any(self, listener: Optional[Listener] = None) -> "EventEmitter":
        """Remove one catch-all listener, or all of them if `listener` is None."""
        self._registry.remove_catch_all(listener)
        return self

    def _add(
        self,
        event: Hashable,
        listener: Listener,
        options: ListenerOptions,
        *,
        once: bool = False,
    ) -> "EventEmitter":
        _check_callable(listener)
        if is_pattern(event):
            if once:
                options = dataclasses.replace(options, times=1)
            self._registry.insert_wildcard(event, listener, options)  # type: ignore[arg-type]
        else:
            self._registry.insert(event, listener, options, once=once)
        return self

    def update(
        self,
        event: Hashable,
        listener: Listener,
        *,
        predicate: Optional[Callable[[Listener], bool]] = None,
        **options: Any,
    ) -> "EventEmitter":
        """
        Replace listeners for `event` with `listener`.

        Args:
            event (Hashable): The event to update.
            listener (Listener): The new listener.
            predicate (Optional[Callable[[Listener], bool]], optional): Only existing
                listeners for which this returns True are removed. Defaults to None,
                which removes every listener for `event`.
            **options: Registration options for the new listener.

        Returns:
            EventEmitter: self, for chaining.
        """
        if predicate is None:
            self._registry.remove_all(event)
        else:
            for existing in self._registry.raw_list_for(event):
                if predicate(existing):
                    self._registry.remove_one(event, existing)
        return self.add_listener(event, listener, **options)

    def remove_listener(
        self, event: Optional[Hashable] = None, listener: Optional[Listener] = None
    ) -> "EventEmitter":
        """
        Unregister listeners. Removing something that is not registered is a no-op.

        - No arguments: remove everything.
        - Only `event`: remove every listener for `event`.
        - Both: remove one registration of `listener` (or of a `times` wrapper around it).

        Returns:
            EventEmitter: self, for chaining.
        """
        if event is None:
            self._registry.remove_all()
        elif listener is None:
            self._registry.remove_all(event)
        else:
            self._registry.remove_one(event, listener)
        return self

    def off(
        self, event: Optional[Hashable] = None, listener: Optional[Listener] = None
    ) -> "EventEmitter":
        """Alias for `remove_listener`."""
        return self.remove_listener(event, listener)

    def remove_all_listeners(self, event: Optional[Hashable] = None) -> "EventEmitter":
        """Remove all listeners for `event`, or everything (including pipes) if None."""
        self._registry.remove_all(event)
        return self

    # -------------------- decorator --------------------
    def receiver(self, event: Hashable, *, once: bool = False, **options: Any):
        """
        Decorator to register a function as a listener for `event`.

        Args:
            event (Hashable): The event or pattern to listen to.
            once (bool, optional): Register with `once()` instead of `on()`.
            **options: Registration options (`priority`, `times`, `ttl`, `filter`).

        Returns:
            Callable[[Listener], Listener]: The decorator function.
        """

        def wrapper(func: Listener) -> Listener:
            if once:
                self.once(event, func, **options)
            else:
                self.on(event, func, **options)
            return func

        return wrapper

    # -------------------- dispatch --------------------
    def emit(self, event: Hashable, *args: Any) -> bool:
        """
        Synchronously call every listener for `event`.

        Order: regular listeners, once-listeners, matching wildcard listeners,
        catch-all listeners (with `event` prepended), then each piped emitter.
        A listener calling `stop_propagation()` skips everything after it.

        Args:
            event (Hashable): The event to emit.
            *args: Positional arguments passed to the listeners.

        Returns:
            bool: False if nothing at all was registered for `event`.
        """
        candidates = self._registry.snapshot(event)
        if candidates.empty:
            return False

        outer = self._propagation_stopped
        self._propagation_stopped = False
        try:
            for func, call_args in self._plan(event, args, candidates, honor_stop=True):
                func(*call_args)
        finally:
            self._propagation_stopped = outer
        return True

    async def emit_async(self, event: Hashable, *args: Any) -> bool:
        """
        Call every listener for `event` and wait for the awaitables they return.

        Propagation stop is not honored. Exceptions raised by a listener, or by an
        awaitable it returned, are logged and do not fail the call.

        Returns:
            bool: False if nothing at all was registered for `event`.
        """
        candidates = self._registry.snapshot(event)
        if candidates.empty:
            return False

        pending: List[Awaitable[Any]] = []
        for func, call_args in self._plan(
            event, args, candidates, honor_stop=False, forward="emit_async", recover=True
        ):
            try:
                result = func(*call_args)
            except Exception:  # pylint: disable=broad-except
                logger.exception("Listener %r failed during emit_async(%r)", func, event)
                continue
            if inspect.isawaitable(result):
                pending.append(result)

        if pending:
            results = await asyncio.gather(*pending, return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException):
                    logger.error(
                        "Awaited listener for %r failed", event, exc_info=result
                    )
        return True

    def _plan(
        self,
        event: Hashable,
        args: Tuple[Any, ...],
        candidates: Candidates,
        *,
        honor_stop: bool,
        forward: str = "emit",
        recover: bool = False,
    ) -> Plan:
        """
        Yield `(callable, arguments)` pairs in resolution order.

        Selection (invocation budget, last access, filter) and once-detachment happen
        lazily, right before each pair is handed out, so a stop raised by the previous
        listener is seen before the next one is touched. With `recover`, a filter that
        raises is logged and its listener skipped.
        """
        registry = self._registry

        for listener in candidates.regular:
            if honor_stop and self._propagation_stopped:
                return
            if self._select(event, listener, args, recover):
                yield listener, args

        for listener in candidates.once:
            if honor_stop and self._propagation_stopped:
                return
            if self._select(event, listener, args, recover) and registry.remove_once(
                event, listener
            ):
                yield listener, args

        for pattern, listener in candidates.wildcards:
            if honor_stop and self._propagation_stopped:
                return
            if self._select(pattern, listener, args, recover):
                yield listener, args

        if candidates.catch_all:
            tagged = (event,) + args
            for listener in candidates.catch_all:
                if honor_stop and self._propagation_stopped:
                    return
                yield listener, tagged

        if candidates.pipes:
            forwarded = (event,) + args
            for target in candidates.pipes:
                if honor_stop and self._propagation_stopped:
                    return
                yield getattr(target, forward), forwarded

    def _select(
        self, key: Hashable, listener: Listener, args: Tuple[Any, ...], recover: bool = False
    ) -> bool:
        registry = self._registry
        if not registry.metadata:
            return True
        meta = registry.metadata.get(listener)
        if meta is None:
            return True

        meta.last_access = self._scheduler.now()
        # the budget is spent on selection, before the filter has a say
        if meta.remaining_invocations > 0:
            meta.remaining_invocations -= 1
            if meta.remaining_invocations == 0:
                registry.remove_one(key, listener)
        if not registry.flags & Feature.FILTERS or meta.filter is None:
            return True
        if not recover:
            return bool(meta.filter(args))
        try:
            return bool(meta.filter(args))
        except Exception:  # pylint: disable=broad-except
            logger.exception("Filter of listener %r failed for %r", listener, key)
            return False

    def stop_propagation(self) -> None:
        """Skip every remaining listener of the emission currently in progress."""
        self._propagation_stopped = True

    # -------------------- pipes --------------------
    def pipe(self, target: "EventEmitter") -> "EventEmitter":
        """
        Forward every emission to `target.emit()` after local listeners ran.
        The target is referenced, not owned. Pipe cycles recurse without bound.
        """
        self._registry.add_pipe(target)
        logger.debug("Piped %r to %r", self, target)
        return self

    def unpipe(self, target: Optional["EventEmitter"] = None) -> "EventEmitter":
        """Stop forwarding to `target`, or to every target if None."""
        self._registry.remove_pipe(target)
        return self

    # -------------------- async combinators --------------------
    async def wait_for(self, event: Hashable, timeout: Optional[float] = None) -> Tuple[Any, ...]:
        """
        Wait for the next emission of `event` and return its arguments.

        Args:
            event (Hashable): The event or pattern to wait for.
            timeout (Optional[float], optional): Give up after this many ms.

        Raises:
            EventTimeoutError: If `timeout` elapsed first. The listener is detached.
        """
        loop = asyncio.get_running_loop()
        future: "asyncio.Future[Tuple[Any, ...]]" = loop.create_future()
        timer: Optional[asyncio.TimerHandle] = None
        settled = False

        def handler(*args: Any) -> None:
            nonlocal settled
            if settled:
                return
            settled = True
            if timer is not None:
                timer.cancel()
            _settle(loop, future, value=args)

        def expire() -> None:
            nonlocal settled
            if settled:
                return
            settled = True
            self.remove_listener(event, handler)
            _settle(loop, future, error=EventTimeoutError.for_event(event, timeout))

        self.once(event, handler)
        if timeout is not None:
            timer = loop.call_later(timeout / 1000.0, expire)
        try:
            return await future
        finally:
            if timer is not None:
                timer.cancel()
            self.remove_listener(event, handler)

    async def race(
        self, events: Sequence[Hashable], timeout: Optional[float] = None
    ) -> RaceResult:
        """
        Wait for whichever of `events` is emitted first.

        Every other listener registered by this call is detached once a winner is known.

        Args:
            events (Sequence[Hashable]): The candidate events.
            timeout (Optional[float], optional): Give up after this many ms.

        Returns:
            RaceResult: The winning event and its arguments.

        Raises:
            ValueError: If `events` is empty.
            EventTimeoutError: If `timeout` elapsed first.
        """
        names = list(events)
        if not names:
            raise ValueError("race() needs at least one event")

        loop = asyncio.get_running_loop()
        future: "asyncio.Future[RaceResult]" = loop.create_future()
        timer: Optional[asyncio.TimerHandle] = None
        handlers: List[Tuple[Hashable, Listener]] = []
        settled = False

        def detach() -> None:
            if timer is not None:
                timer.cancel()
            while handlers:
                name, handler = handlers.pop()
                self.remove_listener(name, handler)

        def make_handler(name: Hashable) -> Listener:
            def handler(*args: Any) -> None:
                nonlocal settled
                if settled:
                    return
                settled = True
                detach()
                _settle(loop, future, value=RaceResult(name, args))

            return handler

        def expire() -> None:
            nonlocal settled
            if settled:
                return
            settled = True
            detach()
            _settle(loop, future, error=EventTimeoutError.for_race(names, timeout))

        for name in names:
            handler = make_handler(name)
            handlers.append((name, handler))
            self.once(name, handler)
        if timeout is not None:
            timer = loop.call_later(timeout / 1000.0, expire)
        try:
            return await future
        finally:
            detach()

    # -------------------- introspection --------------------
    def listener_count(self, event: Optional[Hashable] = None) -> int:
        """
        Number of listeners for `event` (exact, once and matching wildcards),
        or of every listener including catch-all ones if `event` is None.
        """
        return self._registry.count(event)

    def event_names(self) -> EventNames:
        """Names with regular listeners, names with once-listeners, and wildcard patterns."""
        return self._registry.names()

    def listeners(self, event: Hashable) -> List[Listener]:
        """Listeners for `event` in resolution order, `times` wrappers included."""
        return self._registry.list_for(event)

    def raw_listeners(self, event: Hashable) -> List[Listener]:
        """Like `listeners`, with each `times` wrapper replaced by the original callable."""
        return self._registry.raw_list_for(event)

    def set_max_listeners(self, n: int) -> "EventEmitter":
        if n < 0:
            raise ValueError("max_listeners must not be negative")
        self._registry.max_listeners = n
        return self

    def get_max_listeners(self) -> int:
        return self._registry.max_listeners

    # -------------------- lifecycle --------------------
    def destroy(self) -> None:
        """Remove every listener and pipe, cancel pending timers and stop the sweeper."""
        self._registry.remove_all()
        if self._sweeper is not None:
            self._sweeper.stop()
        logger.debug("Destroyed %r", self)
