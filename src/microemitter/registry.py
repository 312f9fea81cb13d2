"""
Listener registry: per-event listener sequences, wildcard entries, catch-all listeners and
pipe targets, plus the feature flags the emitter uses to skip whole dispatch phases.
"""

from __future__ import annotations

import enum
import logging
import sys
import threading
import warnings
from dataclasses import dataclass, field
from functools import partial
from re import Pattern
from typing import (
    Any,
    Dict,
    Hashable,
    List,
    NamedTuple,
    Optional,
    Tuple,
)

from .exceptions import MaxListenersExceededWarning
from .metadata import (
    DEFAULT_OPTIONS,
    UNLIMITED,
    CountedListener,
    Listener,
    ListenerMetadata,
    ListenerOptions,
    MetadataStore,
    unwrap,
)
from .patterns import compile_pattern
from .scheduler import Scheduler

logger = logging.getLogger(__name__)

DEFAULT_MAX_LISTENERS = 10


class Feature(enum.IntFlag):
    """Which optional collections are currently non-empty."""

    NONE = 0
    WILDCARDS = 1
    PIPES = 2
    CATCH_ALL = 4
    FILTERS = 8


EXTRAS = Feature.WILDCARDS | Feature.PIPES | Feature.CATCH_ALL


@dataclass(order=True)
class WildcardEntry:
    # Sorting fields (priority descending, then registration order ascending)
    sort_index: Tuple[int, int] = field(init=False, repr=False)
    priority: int
    order: int
    listener: Listener = field(compare=False)
    pattern: Pattern[str] = field(compare=False)

    def __post_init__(self) -> None:
        self.sort_index = (-self.priority, self.order)


class Candidates(NamedTuple):
    """Everything an emission of one event has to visit, in resolution order."""

    regular: List[Listener]
    once: List[Listener]
    wildcards: List[Tuple[str, Listener]]
    catch_all: List[Listener]
    pipes: List[Any]

    @property
    def empty(self) -> bool:
        return not (
            self.regular or self.once or self.wildcards or self.catch_all or self.pipes
        )


class EventNames(NamedTuple):
    regular: List[Hashable]
    once: List[Hashable]
    wildcards: List[str]


class ListenerRegistry:
    """
    Owns every collection of one emitter. Thread-safe registration and snapshotting.

    Args:
        scheduler (Scheduler): Timer primitive used to arm TTL expiry.
        max_listeners (int): Soft cap per event before a leak warning. 0 disables it.
        track_access (bool): Attach metadata to every listener so idle ones can be found.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        *,
        max_listeners: int = DEFAULT_MAX_LISTENERS,
        track_access: bool = False,
    ) -> None:
        self.lock = threading.RLock()
        self.metadata = MetadataStore()
        self.flags = Feature.NONE
        self.max_listeners = max_listeners
        self.track_access = track_access
        self._scheduler = scheduler
        self._events: Dict[Hashable, List[Listener]] = {}
        self._once: Dict[Hashable, List[Listener]] = {}
        self._wildcards: Dict[str, List[WildcardEntry]] = {}
        self._catch_all: List[Listener] = []
        self._pipes: List[Any] = []
        self._counter = 0  # wildcard registration order

    # -------------------- insertion --------------------
    def insert(
        self,
        key: Hashable,
        listener: Listener,
        options: ListenerOptions = DEFAULT_OPTIONS,
        *,
        once: bool = False,
    ) -> Listener:
        """
        Register `listener` for the exact event `key`.

        Returns the value actually stored, which is a `CountedListener` when
        `options.times` is set.
        """
        with self.lock:
            stored = self._attach_metadata(key, listener, options)
            store = self._once if once else self._events
            seq = store.setdefault(key, [])
            self._insert_sorted(seq, stored, options.priority)
            self._check_leak(key, seq)
            return stored

    def insert_wildcard(
        self, pattern: str, listener: Listener, options: ListenerOptions = DEFAULT_OPTIONS
    ) -> Listener:
        with self.lock:
            stored = self._attach_metadata(pattern, listener, options)
            self._counter += 1
            entry = WildcardEntry(
                priority=options.priority,
                order=self._counter,
                listener=stored,
                pattern=compile_pattern(pattern),
            )
            self._wildcards.setdefault(pattern, []).append(entry)
            self.flags |= Feature.WILDCARDS
            return stored

    def insert_catch_all(self, listener: Listener) -> None:
        with self.lock:
            self._catch_all.append(listener)
            self.flags |= Feature.CATCH_ALL

    def add_pipe(self, target: Any) -> None:
        with self.lock:
            self._pipes.append(target)
            self.flags |= Feature.PIPES

    def _attach_metadata(
        self, key: Hashable, listener: Listener, options: ListenerOptions
    ) -> Listener:
        if options.is_default and not self.track_access:
            return listener

        # budgets and timers belong to one registration, never to a shared callable
        wrap = options.limited or options.expires or listener in self.metadata
        stored: Listener = CountedListener(listener) if wrap else listener
        meta = ListenerMetadata(
            priority=options.priority,
            remaining_invocations=options.times if options.limited else UNLIMITED,
            original_listener=listener if wrap else None,
            last_access=self._scheduler.now(),
            filter=options.filter,
        )
        if options.expires:
            meta.expiry_handle = self._scheduler.call_later(
                options.ttl, partial(self._expire, key, stored)
            )
        self.metadata.put(stored, meta)
        self._sync_filters()
        return stored

    def _insert_sorted(self, seq: List[Listener], listener: Listener, priority: int) -> None:
        priority_of = self.metadata.priority_of
        # fast path: default priority appended behind non-negative neighbours
        if priority == 0 and (not seq or priority_of(seq[-1]) >= 0):
            seq.append(listener)
            return
        for i, existing in enumerate(seq):
            if priority > priority_of(existing):
                seq.insert(i, listener)
                return
        seq.append(listener)

    def _check_leak(self, key: Hashable, seq: List[Listener]) -> None:
        n = len(seq)
        if self.max_listeners and n > self.max_listeners and n & (n - 1) == 0:
            warnings.warn(
                f'Possible memory leak: {n} listeners for "{key}". '
                f"Max: {self.max_listeners}",
                MaxListenersExceededWarning,
                stacklevel=_caller_stacklevel(),
            )

    def _expire(self, key: Hashable, listener: Listener) -> None:
        with self.lock:
            removed = self.remove_one(key, listener)
        if removed:
            logger.debug("Listener %r for %r expired", unwrap(listener), key)

    # -------------------- removal --------------------
    def remove_one(self, key: Hashable, listener: Listener) -> bool:
        """
        Remove one registration of `listener` (or of the callable it wraps) for `key`.
        Returns False if nothing matched.
        """
        with self.lock:
            if isinstance(key, str) and key in self._wildcards:
                if self._remove_wildcard(key, listener):
                    return True
            return self._remove_from(self._events, key, listener) or self._remove_from(
                self._once, key, listener
            )

    def remove_once(self, key: Hashable, listener: Listener) -> bool:
        """Detach a once-listener. Returns False if it was already gone."""
        with self.lock:
            return self._remove_from(self._once, key, listener)

    def remove_all(self, key: Optional[Hashable] = None) -> None:
        """Remove every listener for `key`, or absolutely everything if `key` is None."""
        with self.lock:
            if key is None:
                self._events.clear()
                self._once.clear()
                self._wildcards.clear()
                self._catch_all.clear()
                self._pipes.clear()
                self.metadata.clear()
                self.flags = Feature.NONE
                return

            for store in (self._events, self._once):
                for listener in store.pop(key, ()):
                    self.metadata.purge(listener)
            if isinstance(key, str):
                for entry in self._wildcards.pop(key, ()):
                    self.metadata.purge(entry.listener)
                self._set_flag(Feature.WILDCARDS, bool(self._wildcards))
            self._sync_filters()

    def remove_catch_all(self, listener: Optional[Listener] = None) -> None:
        with self.lock:
            if listener is None:
                self._catch_all.clear()
            else:
                for i, existing in enumerate(self._catch_all):
                    if existing is listener:
                        del self._catch_all[i]
                        break
            self._set_flag(Feature.CATCH_ALL, bool(self._catch_all))

    def remove_pipe(self, target: Optional[Any] = None) -> None:
        with self.lock:
            if target is None:
                self._pipes.clear()
            else:
                for i, existing in enumerate(self._pipes):
                    if existing is target:
                        del self._pipes[i]
                        break
            self._set_flag(Feature.PIPES, bool(self._pipes))

    def _remove_from(
        self, store: Dict[Hashable, List[Listener]], key: Hashable, listener: Listener
    ) -> bool:
        seq = store.get(key)
        if not seq:
            return False
        index = _index_of(seq, listener)
        if index < 0:
            return False
        removed = seq.pop(index)
        if not seq:
            del store[key]
        self._forget(removed)
        return True

    def _remove_wildcard(self, pattern: str, listener: Listener) -> bool:
        entries = self._wildcards[pattern]
        index = _index_of([entry.listener for entry in entries], listener)
        if index < 0:
            return False
        removed = entries.pop(index)
        if not entries:
            del self._wildcards[pattern]
            self._set_flag(Feature.WILDCARDS, bool(self._wildcards))
        self._forget(removed.listener)
        return True

    def _forget(self, listener: Listener) -> None:
        self.metadata.purge(listener)
        self._sync_filters()

    # -------------------- flags --------------------
    def _set_flag(self, flag: Feature, present: bool) -> None:
        if present:
            self.flags |= flag
        else:
            self.flags &= ~flag

    def _sync_filters(self) -> None:
        self._set_flag(Feature.FILTERS, self.metadata.has_filters)

    # -------------------- lookup --------------------
    def snapshot(self, key: Hashable) -> Candidates:
        """Copy everything an emission of `key` has to visit, so listeners may mutate us."""
        with self.lock:
            regular = list(self._events.get(key, ()))
            once = list(self._once.get(key, ()))
            if not self.flags & EXTRAS:
                return Candidates(regular, once, [], [], [])
            return Candidates(
                regular,
                once,
                [(pattern, entry.listener) for pattern, entry in self._matching(key)],
                list(self._catch_all),
                list(self._pipes),
            )

    def _matching(self, key: Hashable) -> List[Tuple[str, WildcardEntry]]:
        if not self.flags & Feature.WILDCARDS or not isinstance(key, str):
            return []
        found = []
        for pattern, entries in self._wildcards.items():
            if entries[0].pattern.fullmatch(key) is None:
                continue
            found.extend((pattern, entry) for entry in entries)
        found.sort(key=lambda item: item[1].sort_index)
        return found

    def list_for(self, key: Hashable) -> List[Listener]:
        """Exact, once and matching wildcard listeners for `key`, in resolution order."""
        with self.lock:
            found = list(self._events.get(key, ()))
            found.extend(self._once.get(key, ()))
            found.extend(entry.listener for _, entry in self._matching(key))
            return found

    def raw_list_for(self, key: Hashable) -> List[Listener]:
        """Like `list_for` but with each counted wrapper replaced by its original callable."""
        return [self._original(listener) for listener in self.list_for(key)]

    def _original(self, listener: Listener) -> Listener:
        meta = self.metadata.get(listener)
        if meta is not None and meta.original_listener is not None:
            return meta.original_listener
        return unwrap(listener)

    def count(self, key: Optional[Hashable] = None) -> int:
        with self.lock:
            if key is None:
                total = len(self._catch_all)
                total += sum(len(entries) for entries in self._wildcards.values())
                total += sum(len(seq) for seq in self._events.values())
                total += sum(len(seq) for seq in self._once.values())
                return total
            return len(self.list_for(key))

    def names(self) -> EventNames:
        with self.lock:
            return EventNames(
                regular=list(self._events),
                once=list(self._once),
                wildcards=list(self._wildcards),
            )

    def idle(self, now: float, threshold: float) -> List[Tuple[Hashable, Listener]]:
        """Return `(key, listener)` pairs not selected within the last `threshold` ms."""
        with self.lock:
            candidates: List[Tuple[Hashable, Listener]] = []
            for store in (self._events, self._once):
                for key, seq in store.items():
                    candidates.extend((key, listener) for listener in seq)
            for pattern, entries in self._wildcards.items():
                candidates.extend((pattern, entry.listener) for entry in entries)

            stale = []
            for key, listener in candidates:
                meta = self.metadata.get(listener)
                if meta is not None and now - meta.last_access > threshold:
                    stale.append((key, listener))
            return stale


def _index_of(seq: List[Listener], listener: Listener) -> int:
    # exact registrations win over counted wrappers of the same callable
    for i, existing in enumerate(seq):
        if existing is listener:
            return i
    for i, existing in enumerate(seq):
        if unwrap(existing) is listener:
            return i
    return -1


def _caller_stacklevel() -> int:
    """Stack level of the first frame outside this package, as seen from the warning site."""
    package = __name__.partition(".")[0]
    frame = sys._getframe(2)  # pylint: disable=protected-access
    level = 2
    while frame is not None:
        module = frame.f_globals.get("__name__", "")
        if module != package and not module.startswith(package + "."):
            break
        frame = frame.f_back
        level += 1
    return level
