"""Fixed-cadence request throttle.

Every caller reserves the next slot on a shared watermark:

    with lock:
        if next_allowed < now: next_allowed = now
        wait = next_allowed - now
        next_allowed += interval
    sleep(wait)          # outside the lock

The Nth concurrent caller therefore waits roughly ``(N-1) * interval``;
calls leave strictly spaced with no burst. The lock is only held for the
read-and-advance, never across the sleep, so a ``threading.Lock`` is used and
the throttle is safe from both event-loop tasks and worker threads.

Waiters are not served FIFO: ordering among tasks racing for the lock is
whatever the scheduler gives, but each reserved slot is strictly later than
every slot reserved before it.
"""
from __future__ import annotations

import asyncio
import threading
import time
from typing import Callable


class RequestThrottle:
    def __init__(self, interval_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        if interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        self.interval = float(interval_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._next_allowed = 0.0

    def reserve(self) -> float:
        """Claim the next slot and return how long the caller must wait for it."""
        with self._lock:
            now = self._clock()
            if self._next_allowed < now:
                self._next_allowed = now
            wait = self._next_allowed - now
            self._next_allowed += self.interval
            return wait

    async def acquire(self) -> float:
        wait = self.reserve()
        if wait > 0:
            await asyncio.sleep(wait)
        return wait

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "interval_seconds": self.interval,
                "next_allowed_in": max(0.0, self._next_allowed - self._clock()),
            }


__all__ = ["RequestThrottle"]
