"""
services/login_throttle.py — Per-email throttle for failed login attempts.

Token bucket per key: `limit` tokens refilled evenly over `window_seconds`.
Every failed credential check spends one token; once the bucket is empty the
orchestrator rejects further attempts with TOO_MANY_ATTEMPTS *before* running
bcrypt, so a brute-force loop cannot use the server as a hashing oracle.
Successful logins do not spend tokens.

State is in-process and guarded by a lock; multi-process deployments get one
bucket per worker, which still bounds the attempt rate per worker.
Only keys with spent tokens are stored; a bucket is dropped once it has
refilled, so the map holds recent offenders rather than every email seen.
"""

from __future__ import annotations

import threading
import time
from typing import Callable


class LoginThrottle:

    def __init__(
            self,
            limit: int,
            window_seconds: int,
            clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit <= 0 or window_seconds <= 0:
            raise ValueError("limit and window_seconds must be positive.")
        self.limit = limit
        self.window_seconds = window_seconds
        self._refill_rate = float(limit) / float(window_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (tokens, last_refill_timestamp); only keys below `limit`.
        self._buckets: dict[str, tuple[float, float]] = {}
        self._last_purge = clock()

    def allows(self, key: str) -> bool:
        """True if at least one attempt is left for `key`."""
        with self._lock:
            return self._tokens(key, self._clock()) >= 1.0

    def record_failure(self, key: str) -> None:
        with self._lock:
            now = self._clock()
            tokens = self._tokens(key, now)
            self._buckets[key] = (max(0.0, tokens - 1.0), now)
            self._purge(now)

    def retry_after_seconds(self, key: str) -> int:
        """Seconds until one more attempt is available (0 if allowed now)."""
        with self._lock:
            tokens = self._tokens(key, self._clock())
            if tokens >= 1.0:
                return 0
            return int((1.0 - tokens) / self._refill_rate) + 1

    def reset(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)

    def _refilled(self, bucket: tuple[float, float], now: float) -> float:
        tokens, last = bucket
        return min(float(self.limit), tokens + (now - last) * self._refill_rate)

    def _tokens(self, key: str, now: float) -> float:
        """Current tokens of `key`; a bucket back at `limit` is dropped."""
        bucket = self._buckets.get(key)
        if bucket is None:
            return float(self.limit)
        tokens = self._refilled(bucket, now)
        if tokens >= self.limit:
            del self._buckets[key]
        return tokens

    def _purge(self, now: float) -> None:
        # Every bucket refills completely within one window of its last
        # failure, so a sweep per window keeps the map to recent offenders.
        if now - self._last_purge < self.window_seconds:
            return
        self._last_purge = now
        full = [
            key for key, bucket in self._buckets.items()
            if self._refilled(bucket, now) >= self.limit
        ]
        for key in full:
            del self._buckets[key]
