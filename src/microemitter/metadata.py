"""
Per-listener options and the metadata side-table.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from .scheduler import TimerHandle

Listener = Callable[..., Any]
FilterFunc = Callable[[Tuple[Any, ...]], bool]

UNLIMITED = -1


@dataclass(frozen=True)
class ListenerOptions:
    """
    Options accepted by every add-listener call.

    Args:
        priority (int): Higher runs earlier. Defaults to 0.
        times (Optional[int]): Remove the listener after this many selections.
                               None (or a non-positive value) means unlimited.
        ttl (Optional[float]): Remove the listener after this many milliseconds.
        filter (Optional[FilterFunc]): Predicate over the argument tuple; a False
                                       result skips the listener for that emission.
    """

    priority: int = 0
    times: Optional[int] = None
    ttl: Optional[float] = None
    filter: Optional[FilterFunc] = None  # pylint: disable=redefined-builtin

    @property
    def limited(self) -> bool:
        return self.times is not None and self.times > 0

    @property
    def expires(self) -> bool:
        return self.ttl is not None and self.ttl > 0

    @property
    def is_default(self) -> bool:
        """True when the registration can skip metadata entirely."""
        return (
            self.priority == 0
            and not self.limited
            and not self.expires
            and self.filter is None
        )

    def bumped(self) -> "ListenerOptions":
        """Return a copy with priority raised by one, used by the prepend variants."""
        return ListenerOptions(
            priority=self.priority + 1, times=self.times, ttl=self.ttl, filter=self.filter
        )


DEFAULT_OPTIONS = ListenerOptions()


@dataclass
class ListenerMetadata:
    priority: int = 0
    remaining_invocations: int = UNLIMITED
    expiry_handle: Optional[TimerHandle] = None
    original_listener: Optional[Listener] = None
    last_access: float = 0.0
    filter: Optional[FilterFunc] = None  # pylint: disable=redefined-builtin

    def cancel_expiry(self) -> None:
        if self.expiry_handle is not None:
            self.expiry_handle.cancel()
            self.expiry_handle = None


class CountedListener:
    """
    Stand-in registered in place of a listener added with `times=N` or a `ttl`, or of
    a callable that already carries metadata from another registration.

    It gives each such registration its own identity and keeps a reference to the
    callable it forwards to, so `raw_listeners()` and removal by the original callable
    keep working. The invocation budget lives in the listener's metadata.
    """

    __slots__ = ("original", "__weakref__")

    def __init__(self, original: Listener) -> None:
        self.original = original

    def __call__(self, *args: Any) -> Any:
        return self.original(*args)

    def __repr__(self) -> str:
        return f"<CountedListener for {self.original!r}>"


def unwrap(listener: Listener) -> Listener:
    """Return the callable a registered listener stands for."""
    if type(listener) is CountedListener:  # pylint: disable=unidiomatic-typecheck
        return listener.original
    return listener


class MetadataStore:
    """
    Side-table from listener identity to its `ListenerMetadata`.

    Entries are keyed by `id()` and hold the listener alongside the metadata so the id
    cannot be recycled while the entry exists. Every removal path of the registry purges
    the entry, so the store never outlives the listener's registration. Callables that
    cannot be weakly referenced (bound builtins such as `list.append`) are supported.
    """

    def __init__(self) -> None:
        self._entries: Dict[int, Tuple[Listener, ListenerMetadata]] = {}
        self._filtered = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __contains__(self, listener: Listener) -> bool:
        return self.get(listener) is not None

    @property
    def has_filters(self) -> bool:
        return self._filtered > 0

    def get(self, listener: Listener) -> Optional[ListenerMetadata]:
        entry = self._entries.get(id(listener))
        if entry is None or entry[0] is not listener:
            return None
        return entry[1]

    def put(self, listener: Listener, meta: ListenerMetadata) -> None:
        """Associate `meta` with `listener`, purging any previous entry first."""
        self.purge(listener)
        self._entries[id(listener)] = (listener, meta)
        if meta.filter is not None:
            self._filtered += 1

    def purge(self, listener: Listener) -> None:
        """Drop the entry for `listener`, cancelling its pending expiry timer."""
        entry = self._entries.get(id(listener))
        if entry is None or entry[0] is not listener:
            return
        del self._entries[id(listener)]
        meta = entry[1]
        meta.cancel_expiry()
        if meta.filter is not None:
            self._filtered -= 1

    def clear(self) -> None:
        for _, meta in self._entries.values():
            meta.cancel_expiry()
        self._entries.clear()
        self._filtered = 0

    def priority_of(self, listener: Listener) -> int:
        meta = self.get(listener)
        return meta.priority if meta is not None else 0
