"""Shared fixtures for microemitter tests."""

import heapq
import itertools

import pytest

from microemitter import EventEmitter


class _Timer:
    def __init__(self, due, callback):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Manual clock: callbacks only fire when the test calls `advance()`."""

    def __init__(self):
        self.clock = 0.0
        self._queue = []
        self._seq = itertools.count()

    def now(self):
        return self.clock

    def call_later(self, delay_ms, callback):
        timer = _Timer(self.clock + delay_ms, callback)
        heapq.heappush(self._queue, (timer.due, next(self._seq), timer))
        return timer

    @property
    def pending(self):
        return [t for _, _, t in self._queue if not t.cancelled]

    def advance(self, ms):
        target = self.clock + ms
        while self._queue and self._queue[0][0] <= target:
            due, _, timer = heapq.heappop(self._queue)
            self.clock = due
            if not timer.cancelled:
                timer.callback()
        self.clock = target


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def emitter(scheduler):
    em = EventEmitter(scheduler=scheduler)
    yield em
    em.destroy()
