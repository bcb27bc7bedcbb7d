"""
In-process sliding-window rate limiting, keyed by client address.
Counters live in this process only.
"""
import threading
import time
from collections import defaultdict, deque
from typing import Deque, Dict

from fastapi import Request

from spendbox.core.config import settings
from spendbox.core.errors import TooManyRequests


class RateLimiter:
    """Allows at most `max_requests` per `window_seconds` for each identifier."""

    def __init__(self, name: str, max_requests: int, window_seconds: int):
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._requests: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def is_allowed(self, identifier: str) -> bool:
        now = time.monotonic()
        window_start = now - self.window_seconds
        with self._lock:
            hits = self._requests[identifier]
            while hits and hits[0] <= window_start:
                hits.popleft()
            if len(hits) >= self.max_requests:
                return False
            hits.append(now)
            return True

    def get_remaining(self, identifier: str) -> int:
        window_start = time.monotonic() - self.window_seconds
        with self._lock:
            current = [t for t in self._requests.get(identifier, ()) if t > window_start]
        return max(0, self.max_requests - len(current))

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()

    async def __call__(self, request: Request) -> None:
        identifier = request.client.host if request.client else "unknown"
        if not self.is_allowed(identifier):
            raise TooManyRequests()


auth_limiter = RateLimiter("auth", settings.AUTH_RATE_LIMIT, settings.AUTH_RATE_WINDOW_SECONDS)
upload_limiter = RateLimiter("upload", settings.UPLOAD_RATE_LIMIT, settings.UPLOAD_RATE_WINDOW_SECONDS)
api_limiter = RateLimiter("api", settings.API_RATE_LIMIT, settings.API_RATE_WINDOW_SECONDS)


def reset_all() -> None:
    for limiter in (auth_limiter, upload_limiter, api_limiter):
        limiter.reset()
