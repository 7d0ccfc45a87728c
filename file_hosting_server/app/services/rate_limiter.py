import asyncio
import threading
import time
from typing import Callable

from logger_config import setup_logger

logger = setup_logger()


class RateLimiter:
    """Token bucket shared by every download of the process.

    Tokens refill at ``bytes_per_second``. Each ``acquire(n)`` reserves *n*
    tokens at once, possibly driving the bucket negative, and then sleeps for
    the debt it created. Reservations are taken under a lock, so concurrent
    downloads are served in reservation order and together never exceed the
    configured rate by more than one chunk.

    ``burst_bytes`` caps the credit accumulated while idle. With the default
    of 0 the limiter enforces a strict average rate.

    A ``bytes_per_second`` of 0 disables limiting entirely.
    """

    def __init__(self, bytes_per_second: int = 0, burst_bytes: int = 0,
                 clock: Callable[[], float] = time.monotonic):
        if bytes_per_second < 0:
            raise ValueError("bytes_per_second must not be negative")
        if burst_bytes < 0:
            raise ValueError("burst_bytes must not be negative")

        self._rate = bytes_per_second
        self._burst = float(burst_bytes)
        self._clock = clock
        self._lock = threading.Lock()
        self._tokens = 0.0
        self._last_refill = clock()
        self._total_bytes = 0
        self._total_wait = 0.0

    @property
    def unlimited(self) -> bool:
        return self._rate == 0

    @property
    def bytes_per_second(self) -> int:
        return self._rate

    def reserve(self, n_bytes: int) -> float:
        """Take n_bytes from the bucket and return how long the caller must wait."""
        with self._lock:
            now = self._clock()
            self._tokens = min(self._burst, self._tokens + (now - self._last_refill) * self._rate)
            self._last_refill = now
            self._tokens -= n_bytes
            self._total_bytes += n_bytes
            delay = -self._tokens / self._rate if self._tokens < 0 else 0.0
            self._total_wait += delay
            return delay

    def refund(self, n_bytes: int) -> None:
        """Give back a reservation whose bytes were never sent."""
        with self._lock:
            self._tokens = min(self._burst, self._tokens + n_bytes)
            self._total_bytes -= n_bytes

    async def acquire(self, n_bytes: int) -> None:
        """Wait until n_bytes may be sent."""
        if self._rate == 0:
            return

        delay = self.reserve(n_bytes)
        if delay <= 0:
            return
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            self.refund(n_bytes)
            raise

    @property
    def stats(self) -> dict:
        """Get limiter statistics."""
        with self._lock:
            return {
                'bytes_per_second': self._rate,
                'unlimited': self._rate == 0,
                'total_bytes': self._total_bytes,
                'total_wait_seconds': round(self._total_wait, 3),
            }
