"""
Tests for the fixed-window rate limiter.

Covers:
- Window state machine (count, deny, reset on expiry)
- Per-class and per-client isolation
- Parallel checks against one key
- 429 headers
- Sweeping expired records
- Redis backend and its in-memory fallback
"""
import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest
import redis

from sitegate.auth.rate_limit import RateLimiter, RateLimitDecision

CLIENT = "203.0.113.7"


class TestFixedWindow:
    """Test the per-key window state machine."""

    def test_tenth_allowed_eleventh_denied(self, limiter):
        """Test the auth budget of 10 requests per window."""
        decisions = [limiter.check("auth", CLIENT) for _ in range(11)]

        assert all(d.allowed for d in decisions[:10])
        assert not decisions[10].allowed
        assert 0 < decisions[10].retry_after <= 60

    def test_remaining_counts_down(self, limiter):
        first = limiter.check("auth", CLIENT)
        second = limiter.check("auth", CLIENT)

        assert first.remaining == 9
        assert second.remaining == 8
        assert first.limit == 10

    def test_retry_after_reflects_time_left(self, limiter, clock):
        for _ in range(10):
            limiter.check("auth", CLIENT)
        clock.advance(30_000)

        decision = limiter.check("auth", CLIENT)

        assert not decision.allowed
        assert decision.retry_after == 30

    def test_new_window_allowed_again(self, limiter, clock):
        """Test that an expired window starts over at count 1."""
        for _ in range(11):
            limiter.check("auth", CLIENT)
        clock.advance(60_001)

        decision = limiter.check("auth", CLIENT)

        assert decision.allowed
        assert decision.remaining == 9

    def test_window_is_fixed_not_sliding(self, limiter, clock):
        """Test that requests inside the window do not extend it."""
        start = limiter.check("auth", CLIENT)
        clock.advance(50_000)
        later = limiter.check("auth", CLIENT)

        assert later.reset_at == start.reset_at

    def test_denied_requests_do_not_extend_window(self, limiter, clock):
        for _ in range(10):
            limiter.check("auth", CLIENT)
        clock.advance(59_000)
        denied = limiter.check("auth", CLIENT)
        clock.advance(1_001)

        assert not denied.allowed
        assert limiter.check("auth", CLIENT).allowed


class TestIsolation:
    """Test that budgets are keyed by class and client."""

    def test_clients_are_independent(self, limiter):
        for _ in range(10):
            limiter.check("auth", CLIENT)

        assert not limiter.check("auth", CLIENT).allowed
        assert limiter.check("auth", "198.51.100.1").allowed

    def test_classes_are_independent(self, limiter):
        for _ in range(10):
            limiter.check("auth", CLIENT)

        decision = limiter.check("api", CLIENT)

        assert decision.allowed
        assert decision.limit == 100

    def test_unknown_class_uses_api_budget(self, limiter):
        assert limiter.check("reports", CLIENT).limit == 100

    def test_limits_from_environment(self, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_AUTH_MAX", "3")
        monkeypatch.setenv("RATE_LIMIT_WINDOW_MS", "1000")

        configured = RateLimiter()

        assert configured.limit_for("auth") == 3
        assert configured.window_ms == 1000

    def test_partial_limits_keep_other_defaults(self, clock):
        partial = RateLimiter(window_ms=60_000, limits={"auth": 5}, clock=clock)

        assert partial.check("auth", CLIENT).limit == 5
        assert partial.check("api", CLIENT).limit == 100
        assert partial.check("reports", CLIENT).limit == 100


class TestConcurrency:
    """Test the in-memory store under parallel requests."""

    def test_parallel_checks_admit_exactly_the_limit(self, limiter):
        barrier = threading.Barrier(50)

        def hit(_):
            barrier.wait()
            return limiter.check("auth", CLIENT).allowed

        with ThreadPoolExecutor(max_workers=50) as pool:
            results = list(pool.map(hit, range(50)))

        assert results.count(True) == 10
        assert not limiter.check("auth", CLIENT).allowed


class TestHeaders:
    """Test response headers for limited requests."""

    def test_denied_headers(self):
        decision = RateLimitDecision(allowed=False, limit=10, remaining=0, reset_at=1_700_000_060_000, retry_after=42)

        assert decision.headers() == {
            "X-RateLimit-Limit": "10",
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": "1700000060000",
            "Retry-After": "42",
        }

    def test_allowed_headers_omit_retry_after(self, limiter):
        headers = limiter.check("api", CLIENT).headers()

        assert "Retry-After" not in headers
        assert headers["X-RateLimit-Remaining"] == "99"


class TestSweep:
    """Test removal of expired records."""

    def test_sweep_removes_only_expired(self, limiter, clock):
        limiter.check("auth", "old-client")
        clock.advance(40_000)
        limiter.check("auth", "new-client")
        clock.advance(20_001)

        assert limiter.sweep() == 1
        assert limiter.sweep() == 0

    def test_sweep_on_empty_store(self, limiter):
        assert limiter.sweep() == 0

    def test_reset_clears_counters(self, limiter):
        for _ in range(10):
            limiter.check("auth", CLIENT)
        limiter.reset()

        assert limiter.check("auth", CLIENT).allowed

    def test_run_sweeper_until_cancelled(self, limiter, clock):
        """Test the background task sweeps and stops on cancellation."""
        limiter.check("auth", CLIENT)
        clock.advance(60_001)

        async def run():
            task = asyncio.create_task(limiter.run_sweeper(0))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(run())

        assert limiter.sweep() == 0


class TestRedisBackend:
    """Test the shared-store backend with a mocked Redis client."""

    @pytest.fixture
    def redis_client(self):
        return MagicMock()

    @pytest.fixture
    def redis_limiter(self, redis_client, clock):
        return RateLimiter(redis_client, window_ms=60_000, limits={"auth": 10, "api": 100}, clock=clock)

    def test_backend_name(self, redis_limiter, limiter):
        assert redis_limiter.backend == "redis"
        assert limiter.backend == "memory"

    def test_allowed_within_limit(self, redis_limiter, redis_client, clock):
        redis_client.pipeline.return_value.execute.return_value = [True, 3, 45_000]

        decision = redis_limiter.check("auth", CLIENT)

        assert decision.allowed
        assert decision.remaining == 7
        assert decision.reset_at == clock.now + 45_000

    def test_denied_over_limit(self, redis_limiter, redis_client):
        redis_client.pipeline.return_value.execute.return_value = [None, 11, 42_000]

        decision = redis_limiter.check("auth", CLIENT)

        assert not decision.allowed
        assert decision.retry_after == 42

    def test_window_started_with_set_nx_px(self, redis_limiter, redis_client):
        pipe = redis_client.pipeline.return_value
        pipe.execute.return_value = [True, 1, 60_000]

        redis_limiter.check("auth", CLIENT)

        pipe.set.assert_called_once_with(f"sitegate:ratelimit:auth:{CLIENT}", 0, px=60_000, nx=True)
        pipe.incr.assert_called_once_with(f"sitegate:ratelimit:auth:{CLIENT}")

    def test_redis_error_falls_back_to_memory(self, redis_limiter, redis_client):
        """Test that an unavailable store never blocks or raises."""
        redis_client.pipeline.return_value.execute.side_effect = redis.ConnectionError("down")

        decision = redis_limiter.check("auth", CLIENT)

        assert decision.allowed
        assert decision.remaining == 9
