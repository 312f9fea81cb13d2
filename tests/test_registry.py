"""Tests for the listener registry and metadata store."""

import warnings

import pytest

from microemitter import Feature, ListenerOptions, MaxListenersExceededWarning
from microemitter.metadata import CountedListener, ListenerMetadata, MetadataStore
from microemitter.registry import ListenerRegistry


@pytest.fixture
def registry(scheduler):
    return ListenerRegistry(scheduler)


def test_default_registration_has_no_metadata(registry):
    """Test that a plain registration takes the metadata-free path."""

    def h(): ...

    assert registry.insert("evt", h) is h
    assert len(registry.metadata) == 0
    assert registry.list_for("evt") == [h]


def test_priority_insertion_is_stable_descending(registry):
    """Test ordered insert: higher priority first, ties keep registration order."""
    listeners = {name: (lambda: None) for name in "abcde"}
    registry.insert("evt", listeners["a"])
    registry.insert("evt", listeners["b"], ListenerOptions(priority=5))
    registry.insert("evt", listeners["c"], ListenerOptions(priority=-1))
    registry.insert("evt", listeners["d"], ListenerOptions(priority=5))
    registry.insert("evt", listeners["e"])

    order = [listeners[n] for n in ("b", "d", "a", "e", "c")]
    assert registry.list_for("evt") == order


def test_times_registration_stores_wrapper(registry):
    """Test that a limited registration is stored as a counted wrapper."""

    def h(): ...

    stored = registry.insert("evt", h, ListenerOptions(times=2))
    assert isinstance(stored, CountedListener)
    assert stored.original is h
    assert registry.list_for("evt") == [stored]
    assert registry.raw_list_for("evt") == [h]
    assert registry.metadata.get(stored).remaining_invocations == 2


def test_remove_by_original_callable(registry):
    """Test that removing the original callable removes its counted wrapper."""

    def h(): ...

    stored = registry.insert("evt", h, ListenerOptions(times=3))
    assert registry.remove_one("evt", h)
    assert registry.count("evt") == 0
    assert stored not in registry.metadata


def test_remove_unknown_listener_is_noop(registry):
    """Test that removing an unregistered listener is not an error."""
    assert not registry.remove_one("evt", lambda: None)
    registry.insert("evt", lambda: None)
    assert not registry.remove_one("evt", lambda: None)
    assert registry.count("evt") == 1


def test_removal_cancels_ttl_timer(registry, scheduler):
    """Test that removing a listener cancels its pending expiry timer."""

    def h(): ...

    registry.insert("evt", h, ListenerOptions(ttl=100))
    assert len(scheduler.pending) == 1
    registry.remove_one("evt", h)
    assert not scheduler.pending
    assert len(registry.metadata) == 0


def test_ttl_expiry_removes_listener(registry, scheduler):
    """Test that the TTL timer removes the listener."""

    def h(): ...

    registry.insert("evt", h, ListenerOptions(ttl=100))
    scheduler.advance(99)
    assert registry.count("evt") == 1
    scheduler.advance(1)
    assert registry.count("evt") == 0


def test_feature_flags_track_collections(registry):
    """Test that feature flags mirror the non-emptiness of each collection."""

    def h(*_): ...

    target = object()
    assert registry.flags == Feature.NONE

    registry.insert_wildcard("user.*", h)
    registry.insert_catch_all(h)
    registry.add_pipe(target)
    registry.insert("evt", h, ListenerOptions(filter=lambda args: True))
    assert registry.flags == (
        Feature.WILDCARDS | Feature.CATCH_ALL | Feature.PIPES | Feature.FILTERS
    )

    registry.remove_one("user.*", h)
    assert not registry.flags & Feature.WILDCARDS
    registry.remove_catch_all(h)
    assert not registry.flags & Feature.CATCH_ALL
    registry.remove_pipe(target)
    assert not registry.flags & Feature.PIPES
    registry.remove_one("evt", h)
    assert registry.flags == Feature.NONE


def test_remove_all_for_key_keeps_other_keys(registry):
    """Test that removing one key leaves other keys, catch-all and pipes alone."""

    def h(*_): ...

    registry.insert("a", h)
    registry.insert("a", h, once=True)
    registry.insert("b", h)
    registry.insert_catch_all(h)
    registry.remove_all("a")
    assert registry.count("a") == 0
    assert registry.count("b") == 1
    assert registry.flags & Feature.CATCH_ALL


def test_remove_all_for_pattern_clears_wildcard_flag(registry):
    """Test that removing every entry of the last pattern clears the wildcard flag."""
    registry.insert_wildcard("a.*", lambda: None)
    registry.remove_all("a.*")
    assert registry.flags == Feature.NONE


def test_count_and_names(registry):
    """Test counting across collections and the three name lists."""

    def h(*_): ...

    registry.insert("user.created", h)
    registry.insert("user.created", h, once=True)
    registry.insert_wildcard("user.*", h)
    registry.insert_wildcard("order.*", h)
    registry.insert_catch_all(h)

    assert registry.count("user.created") == 3
    assert registry.count() == 5
    names = registry.names()
    assert names.regular == ["user.created"]
    assert names.once == ["user.created"]
    assert names.wildcards == ["user.*", "order.*"]


def test_wildcards_resolve_in_registration_order(registry):
    """Test that listeners from several matching patterns keep registration order."""
    first, second, third = (lambda: 1), (lambda: 2), (lambda: 3)
    registry.insert_wildcard("user.**", first)
    registry.insert_wildcard("user.*", second)
    registry.insert_wildcard("user.**", third)
    assert registry.list_for("user.created") == [first, second, third]


def test_leak_warning_at_power_of_two(scheduler):
    """Test that the leak warning fires only at powers of two above the cap."""
    registry = ListenerRegistry(scheduler, max_listeners=2)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        for _ in range(9):
            registry.insert("evt", lambda: None)
    leaks = [w for w in caught if issubclass(w.category, MaxListenersExceededWarning)]
    # at 4 and 8 listeners
    assert len(leaks) == 2
    assert registry.count("evt") == 9


def test_leak_warning_disabled_with_zero(scheduler):
    """Test that max_listeners=0 disables the leak warning."""
    registry = ListenerRegistry(scheduler, max_listeners=0)
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        for _ in range(40):
            registry.insert("evt", lambda: None)


def test_idle_listeners(registry, scheduler):
    """Test that idle() reports listeners whose last access is older than the threshold."""

    def h(): ...

    def fresh(): ...

    registry.insert("evt", h, ListenerOptions(priority=1))
    scheduler.advance(500)
    registry.insert("evt", fresh, ListenerOptions(priority=1))
    assert registry.idle(scheduler.now(), 100) == [("evt", h)]


def test_metadata_store_supports_builtin_methods():
    """Test that callables which cannot be weakly referenced still get metadata."""
    store = MetadataStore()
    out = []
    meta = ListenerMetadata(priority=3, filter=lambda args: True)
    bound = out.append
    store.put(bound, meta)
    assert store.get(bound) is meta
    assert store.priority_of(bound) == 3
    assert store.has_filters
    store.purge(bound)
    assert store.get(bound) is None
    assert not store.has_filters
