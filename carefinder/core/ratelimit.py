import threading
import time
from typing import Callable


class TokenBucket:
    """Non-blocking token bucket shared by every caller of one external API.

    ``try_acquire`` never sleeps: an empty bucket returns False and the caller
    reports a retryable rate-limit condition instead of queueing.
    """

    def __init__(self, capacity: float, refill_rate: float, clock: Callable[[], float] = time.monotonic):
        if capacity <= 0 or refill_rate <= 0:
            raise ValueError("capacity and refill_rate must be positive")
        self.capacity = float(capacity)
        self.refill_rate = float(refill_rate)
        self._clock = clock
        self._tokens = float(capacity)
        self._last = clock()
        # threading.Lock also covers callers on worker threads (asyncio.to_thread)
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
        self._last = now

    def try_acquire(self, tokens: float = 1) -> bool:
        with self._lock:
            self._refill()
            if self._tokens >= tokens:
                self._tokens -= tokens
                return True
            return False

    @property
    def available(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    @classmethod
    def per_second(cls, rate: float, clock: Callable[[], float] = time.monotonic) -> "TokenBucket":
        return cls(capacity=rate, refill_rate=rate, clock=clock)
