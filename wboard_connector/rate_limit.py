"""
Fixed-window rate limiting per client IP.
A window starts with the first request and ends `window_seconds` later regardless of traffic;
the counter then resets. Every request is counted, including rejected ones.
"""
import hashlib
import math
import time
from dataclasses import dataclass

from wboard_connector.transients import Clock, TransientStore

KEY_PREFIX = "wboard_rate_"


@dataclass(frozen=True)
class RateWindow:
    count: int
    expires_at: float


class RateLimiter:
    def __init__(
        self,
        store: TransientStore,
        max_requests: int,
        window_seconds: int,
        clock: Clock = time.time,
    ):
        self._store = store
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock

    @staticmethod
    def _key(client_key: str) -> str:
        return KEY_PREFIX + hashlib.md5(client_key.encode("utf-8")).hexdigest()

    def check_and_increment(self, client_key: str) -> RateWindow:
        """Count this request against the key's current window."""
        count, expires_at = self._store.incr(self._key(client_key), self.window_seconds)
        return RateWindow(count=count, expires_at=expires_at)

    def exceeded(self, window: RateWindow) -> bool:
        if self.max_requests <= 0:
            return False
        return window.count > self.max_requests

    def retry_after(self, window: RateWindow) -> int:
        """Seconds until the window resets (>= 1), for the Retry-After header."""
        return max(1, math.ceil(window.expires_at - self._clock()))
