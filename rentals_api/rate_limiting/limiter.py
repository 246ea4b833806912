"""
Sliding window rate limiter shared by every client of the same subgraph.
"""

import asyncio
import time
from collections import defaultdict, deque


class RateLimiter:
    """
    Allows at most ``max_requests`` requests per ``window_sec`` for each key.

    Usage:
        limiter = RateLimiter(max_requests=10, window_sec=1.0)
        async with limiter.acquire("subgraph"):
            ...
    """

    def __init__(self, max_requests: int, window_sec: float = 1.0):
        self.max_requests = max_requests
        self.window_sec = window_sec
        self._windows: dict[str, deque[float]] = defaultdict(deque)
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def acquire(self, key: str = "default") -> "_Slot":
        return _Slot(self, key)

    async def wait(self, key: str) -> None:
        """Block until a request under ``key`` fits in the window, then record it."""
        async with self._locks[key]:
            window = self._windows[key]
            while True:
                now = time.monotonic()
                while window and window[0] <= now - self.window_sec:
                    window.popleft()
                if len(window) < self.max_requests:
                    window.append(now)
                    return
                await asyncio.sleep(window[0] + self.window_sec - now)


class _Slot:
    def __init__(self, limiter: RateLimiter, key: str):
        self.limiter = limiter
        self.key = key

    async def __aenter__(self):
        await self.limiter.wait(self.key)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None


_limiters: dict[str, RateLimiter] = {}


def get_rate_limiter(name: str, max_requests: int, window_sec: float = 1.0) -> RateLimiter:
    """Get or create the limiter registered under ``name``."""
    if name not in _limiters:
        _limiters[name] = RateLimiter(max_requests, window_sec)
    return _limiters[name]
