"""Tests for the module-level default emitter helpers."""

import asyncio

import pytest

from microemitter import (
    EventEmitter,
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


@pytest.fixture(autouse=True)
def _clean_default_emitter():
    clear()
    yield
    clear()


def test_sync_and_async_listeners():
    """Test that emit() calls listeners registered with the decorator."""
    out = []

    @receiver("evt")
    def a(x):
        out.append(("a", x))

    assert emit("evt", 1) is True
    assert out == [("a", 1)]


@pytest.mark.asyncio
async def test_emit_async():
    """Test emit_async() on the default emitter."""
    out = []

    @receiver("evt2")
    async def h(x):
        await asyncio.sleep(0)
        out.append(("h", x))

    assert await emit_async("evt2", 7) is True
    assert out == [("h", 7)]


def test_priority_and_once():
    """Test priority and once parameters."""
    out = []

    on("p", lambda: out.append(1), priority=0)
    on("p", lambda: out.append(2), priority=10)
    once("p", lambda: out.append(3), priority=10)

    emit("p")
    # once-listeners run after regular ones
    assert out == [2, 1, 3]
    out.clear()
    emit("p")
    assert out == [2, 1]


def test_receiver_decorator_with_emitter():
    """Test receiver decorator with emitter parameter."""
    another = EventEmitter()
    out = []

    @receiver("evt")
    def handle_default(x):
        out.append(("default", x))

    @receiver("evt", emitter=another)
    def handle_another(x):
        out.append(("another", x))

    emit("evt", 1)
    assert out == [("default", 1)]
    out.clear()
    another.emit("evt", 2)
    assert out == [("another", 2)]
    another.destroy()


def test_receiver_decorator_with_all_params():
    """Test receiver decorator with once and priority."""
    out = []

    @receiver("evt", priority=5, once=True)
    def handler(x):
        out.append(x)

    emit("evt", "test")
    emit("evt", "test2")
    assert out == ["test"]


def test_receiver_decorator_times():
    """Test receiver decorator with times."""
    out = []

    @receiver("evt", times=2)
    def handler(x):
        out.append(x)

    for i in range(4):
        emit("evt", i)
    assert out == [0, 1]


def test_off_and_listeners():
    """Test off() and listeners()."""

    def h(): ...

    on("x", h)
    assert h in listeners("x")
    off("x", h)
    assert h not in listeners("x")


def test_off_removes_all_listeners_for_event():
    """Test off() without a listener removes every listener for the event."""
    out = []

    on("evt", lambda: out.append(1))
    on("evt", lambda: out.append(2))
    off("evt")

    assert emit("evt") is False
    assert not out


def test_clear_removes_all_events():
    """Test clear() removes all listeners from all events."""
    out = []

    on("evt1", lambda: out.append(1))
    on("evt2.*", lambda: out.append(2))

    clear()

    emit("evt1")
    emit("evt2.x")
    assert not out
    assert get_emitter().listener_count() == 0


def test_listeners_empty_event():
    """Test listeners() for an unknown event."""
    assert listeners("nonexistent") == []


def test_emit_with_multiple_args():
    """Test emit() with multiple positional arguments."""
    result = {}

    def handler(a, b, c):
        result.update(a=a, b=b, c=c)

    on("evt", handler)
    emit("evt", 1, 2, 3)
    assert result == {"a": 1, "b": 2, "c": 3}


@pytest.mark.asyncio
async def test_wait_for_default_emitter():
    """Test wait_for() on the default emitter."""
    asyncio.get_running_loop().call_soon(emit, "ready", "ok")
    assert await wait_for("ready", timeout=1000) == ("ok",)


def test_multiple_events_isolation():
    """Test that different events are isolated."""
    out = []

    on("evt1", lambda: out.append("evt1"))
    on("evt2", lambda: out.append("evt2"))

    emit("evt1")
    assert out == ["evt1"]

    emit("evt2")
    assert out == ["evt1", "evt2"]
