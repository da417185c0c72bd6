from __future__ import annotations

import threading
import time
from collections.abc import Callable
from urllib.parse import urlsplit

from .context import DeadlineExceeded, FetchContext

CATCH_ALL_HOST = "_"


class TokenBucket:
    """
    Classic token bucket. Starts full (burst tokens) and refills at `rate` tokens/second.
    Tokens may go negative: each reservation queues behind the previous ones.
    """

    def __init__(self, rate: float, burst: int, clock: Callable[[], float] = time.monotonic) -> None:
        if rate <= 0:
            raise ValueError("rate must be > 0")
        if burst < 1:
            raise ValueError("burst must be >= 1")
        self.rate = float(rate)
        self.burst = int(burst)
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def reserve(self) -> float:
        """Take one token; return how long the caller must wait before using it."""
        with self._lock:
            now = self._clock()
            self._tokens = min(float(self.burst), self._tokens + (now - self._last) * self.rate)
            self._last = now
            self._tokens -= 1.0
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.rate

    def release(self) -> None:
        """Give back a token whose wait was abandoned."""
        with self._lock:
            self._tokens = min(float(self.burst), self._tokens + 1.0)


class HostLimiter:
    """
    Lazily-populated hostname -> TokenBucket map, shared by every connector in a cycle.
    URLs without a usable host share the catch-all bucket.
    """

    def __init__(self, rate: float = 1.0, burst: int = 2) -> None:
        self.rate = float(rate)
        self.burst = int(burst)
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def bucket_for(self, url: str) -> TokenBucket:
        key = host_key(url)
        with self._lock:
            b = self._buckets.get(key)
            if b is None:
                b = TokenBucket(self.rate, self.burst)
                self._buckets[key] = b
            return b

    def wait(self, ctx: FetchContext, url: str) -> None:
        """Block until a token for url's host is available, or raise DeadlineExceeded."""
        ctx.check()
        bucket = self.bucket_for(url)
        delay = bucket.reserve()
        if delay <= 0:
            return
        rem = ctx.remaining()
        if rem is not None and rem < delay:
            bucket.release()
            raise DeadlineExceeded(f"rate limit wait {delay:.2f}s exceeds deadline for {host_key(url)}")
        if not ctx.wait(delay):
            bucket.release()
            ctx.check()
            raise DeadlineExceeded("rate limit wait interrupted")

    def hosts(self) -> list[str]:
        with self._lock:
            return sorted(self._buckets)


def host_key(url: str) -> str:
    try:
        host = urlsplit((url or "").strip()).hostname
    except ValueError:
        host = None
    return (host or CATCH_ALL_HOST).lower()
