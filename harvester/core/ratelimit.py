from __future__ import annotations

import threading
import time
from typing import Callable, TypeVar

T = TypeVar("T")


class TokenBucket:
    """
    Blocking token bucket: at most `calls` acquisitions per `period_sec`.

    The bucket starts full and refills continuously. A non-positive `calls`
    disables throttling, so `acquire()` returns immediately.
    """

    def __init__(
        self,
        calls: int,
        period_sec: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if period_sec <= 0:
            raise ValueError("period_sec must be > 0")
        self.calls = calls
        self.period_sec = period_sec
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._tokens = float(max(calls, 0))
        self._last_refill = clock()

    @property
    def enabled(self) -> bool:
        return self.calls > 0

    def acquire(self) -> None:
        if not self.enabled:
            return
        refill_rate = self.calls / self.period_sec
        while True:
            with self._lock:
                now = self._clock()
                elapsed = now - self._last_refill
                self._tokens = min(float(self.calls), self._tokens + elapsed * refill_rate)
                self._last_refill = now
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                wait = (1.0 - self._tokens) / refill_rate
            self._sleep(wait)

    def call(self, func: Callable[..., T], *args, **kwargs) -> T:
        self.acquire()
        return func(*args, **kwargs)
