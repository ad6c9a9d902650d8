"""
Fixed-window rate limiting for the login and API surface.

Two endpoint classes share one window length:
  • auth – 10 requests/window (login, 2FA login verification)
  • api  – 100 requests/window (everything else)

Counters are kept in process memory, or in Redis when a client is supplied
so several instances share one budget. Redis errors fall back to memory.
"""
import os
import math
import time
import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis

logger = logging.getLogger(__name__)

AUTH = "auth"
API = "api"

DEFAULT_WINDOW_MS = 60 * 1000
DEFAULT_LIMITS = {AUTH: 10, API: 100}


@dataclass
class RateLimitDecision:
    """Result of a rate-limit check, with what a 429 response needs."""
    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # epoch milliseconds of the window end
    retry_after: int = 0  # seconds, only meaningful when denied

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


@dataclass
class _WindowRecord:
    count: int
    window_end: int


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    """
    Fixed-window rate limiter keyed by (endpoint class, client identity).

    Per key: no record or an expired window resets to count 1 and allows;
    otherwise the count is incremented while below the class maximum, and
    the request is denied once it is reached. A periodic sweep drops
    expired records; expiry is also checked on every access.

    Example usage:
        limiter = RateLimiter()
        decision = limiter.check("auth", "203.0.113.7")
        if not decision.allowed:
            ...  # respond 429 with decision.headers()
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        window_ms: Optional[int] = None,
        limits: Optional[Dict[str, int]] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.redis = redis_client
        self.window_ms = window_ms or int(os.getenv("RATE_LIMIT_WINDOW_MS", str(DEFAULT_WINDOW_MS)))
        # Explicit limits override per class; unnamed classes keep their defaults
        self.limits = {
            AUTH: int(os.getenv("RATE_LIMIT_AUTH_MAX", str(DEFAULT_LIMITS[AUTH]))),
            API: int(os.getenv("RATE_LIMIT_API_MAX", str(DEFAULT_LIMITS[API]))),
            **(limits or {}),
        }
        self._clock = clock
        self._lock = threading.Lock()
        self._memory_store: Dict[str, _WindowRecord] = {}

    @property
    def backend(self) -> str:
        return "redis" if self.redis is not None else "memory"

    def limit_for(self, endpoint_class: str) -> int:
        if endpoint_class not in self.limits:
            logger.warning(f"Unknown rate limit class '{endpoint_class}', using '{API}' budget")
            return self.limits[API]
        return self.limits[endpoint_class]

    def check(self, endpoint_class: str, client_identity: str) -> RateLimitDecision:
        """
        Count a request and decide whether it is admitted.

        Never raises; a denial is reported through the returned decision.
        """
        key = f"{endpoint_class}:{client_identity}"
        limit = self.limit_for(endpoint_class)

        if self.redis is not None:
            try:
                return self._check_redis(key, limit)
            except redis.RedisError as e:
                logger.warning(f"Redis error in rate limit check: {e}")

        return self._check_memory(key, limit)

    def _check_memory(self, key: str, limit: int) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            record = self._memory_store.get(key)

            if record is None or now > record.window_end:
                record = _WindowRecord(count=1, window_end=now + self.window_ms)
                self._memory_store[key] = record
                return RateLimitDecision(True, limit, max(0, limit - 1), record.window_end)

            if record.count < limit:
                record.count += 1
                return RateLimitDecision(True, limit, limit - record.count, record.window_end)

            retry_after = math.ceil((record.window_end - now) / 1000)
            return RateLimitDecision(False, limit, 0, record.window_end, retry_after)

    def _check_redis(self, key: str, limit: int) -> RateLimitDecision:
        """Atomic fixed window in Redis: SET NX with PX starts the window."""
        full_key = f"sitegate:ratelimit:{key}"
        now = self._clock()

        pipe = self.redis.pipeline()
        pipe.set(full_key, 0, px=self.window_ms, nx=True)
        pipe.incr(full_key)
        pipe.pttl(full_key)
        _, count, ttl_ms = pipe.execute()

        if ttl_ms is None or ttl_ms < 0:
            ttl_ms = self.window_ms
        reset_at = now + ttl_ms

        if count <= limit:
            return RateLimitDecision(True, limit, limit - count, reset_at)
        return RateLimitDecision(False, limit, 0, reset_at, math.ceil(ttl_ms / 1000))

    def sweep(self) -> int:
        """
        Delete in-memory records whose window has expired.

        Returns:
            Number of records removed.
        """
        with self._lock:
            now = self._clock()
            expired = [key for key, record in self._memory_store.items() if now > record.window_end]
            for key in expired:
                del self._memory_store[key]

        if expired:
            logger.debug(f"Rate limit sweep removed {len(expired)} expired records")
        return len(expired)

    async def run_sweeper(self, interval_seconds: float = 60.0) -> None:
        """Sweep expired records forever; run as a background task."""
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()

    def reset(self) -> None:
        """Drop all in-memory records."""
        with self._lock:
            self._memory_store.clear()
