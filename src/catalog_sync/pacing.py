"""
Pacing policies for batch operations.

The orchestrator calls ``wait()`` before starting each item. Policies decide
how long that blocks, which keeps rate-limit strategy out of the
orchestration logic. All policies are safe to share between worker threads.
"""

import threading
import time
from typing import Callable, Optional


class Pacer:
    """Base pacing policy: never waits."""

    def wait(self) -> float:
        """Block until the next item may start. Returns seconds slept."""
        return 0.0


class NoDelayPacer(Pacer):
    pass


class FixedDelayPacer(Pacer):
    """
    Enforces a minimum interval between item starts.

    The first call returns immediately; later calls sleep only for whatever
    part of the interval has not already elapsed.
    """

    def __init__(
        self,
        delay: float = 0.15,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if delay < 0:
            raise ValueError("delay must not be negative")
        self.delay = delay
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_start: Optional[float] = None

    def wait(self) -> float:
        with self._lock:
            slept = 0.0
            now = self._clock()
            if self._last_start is not None:
                remaining = self.delay - (now - self._last_start)
                if remaining > 0:
                    self._sleep(remaining)
                    slept = remaining
                    now = self._clock()
            self._last_start = now
            return slept


class TokenBucketPacer(Pacer):
    """
    Allows bursts of up to ``capacity`` items, refilled at ``rate`` per second.
    """

    def __init__(
        self,
        rate: float,
        capacity: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if rate <= 0:
            raise ValueError("rate must be positive")
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.rate = rate
        self.capacity = capacity
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._tokens = float(capacity)
        self._updated = clock()

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = min(self.capacity, self._tokens + (now - self._updated) * self.rate)
        self._updated = now

    def wait(self) -> float:
        with self._lock:
            self._refill()
            slept = 0.0
            if self._tokens < 1:
                deficit = (1 - self._tokens) / self.rate
                self._sleep(deficit)
                slept = deficit
                self._refill()
            self._tokens = max(0.0, self._tokens - 1)
            return slept
