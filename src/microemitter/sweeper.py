"""
Periodic eviction of listeners that have not been selected for a while.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .registry import ListenerRegistry
from .scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class IdleSweeper:
    """
    Every `interval` ms, remove listeners whose last access is older than `threshold` ms.

    Only listeners carrying metadata have a last-access time; the emitter makes sure every
    registration carries metadata while a sweeper is attached.
    """

    def __init__(
        self,
        registry: ListenerRegistry,
        scheduler: Scheduler,
        threshold: float,
        interval: Optional[float] = None,
    ) -> None:
        self.registry = registry
        self.threshold = threshold
        self.interval = interval if interval is not None else threshold
        self._scheduler = scheduler
        self._lock = threading.Lock()
        self._handle: Optional[TimerHandle] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._arm()

    def stop(self) -> None:
        with self._lock:
            self._running = False
            if self._handle is not None:
                self._handle.cancel()
                self._handle = None

    def sweep(self) -> int:
        """Evict idle listeners now. Returns how many were removed."""
        now = self._scheduler.now()
        removed = 0
        for key, listener in self.registry.idle(now, self.threshold):
            if self.registry.remove_one(key, listener):
                removed += 1
        if removed:
            logger.debug("Evicted %d idle listener(s)", removed)
        return removed

    def _arm(self) -> None:
        self._handle = self._scheduler.call_later(self.interval, self._tick)

    def _tick(self) -> None:
        with self._lock:
            if not self._running:
                return
        try:
            self.sweep()
        finally:
            with self._lock:
                if self._running:
                    self._arm()
