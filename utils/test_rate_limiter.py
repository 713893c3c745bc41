"""
Tests for the quota governor and courtesy rate limiter.
"""

import pytest
import asyncio
import time

from utils.rate_limiter import AsyncRateLimiter, GovernorPool, QuotaGovernor


class SleepRecorder:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class TestQuotaGovernor:
    """Test QuotaGovernor header tracking and throttling"""

    @pytest.mark.asyncio
    async def test_first_call_never_waits(self):
        """No headers seen yet means no throttling"""
        sleep = SleepRecorder()
        governor = QuotaGovernor("github", floor=100, sleep=sleep)

        await governor.acquire()

        assert sleep.calls == []
        assert governor.remaining is None

    @pytest.mark.asyncio
    async def test_waits_until_reset_when_below_floor(self):
        """Remaining below the floor sleeps until reset plus safety margin"""
        sleep = SleepRecorder()
        governor = QuotaGovernor("github", floor=100, safety_margin=5.0, clock=lambda: 1000.0, sleep=sleep)

        governor.observe({"X-RateLimit-Remaining": "42", "X-RateLimit-Reset": "1060"})
        await governor.acquire()

        assert sleep.calls == [65.0]
        assert governor.waits == 1
        # Window rolled over; next response reports the new budget
        assert governor.remaining is None
        assert governor.reset_at is None

    @pytest.mark.asyncio
    async def test_no_wait_above_floor(self):
        """Remaining at or above the floor proceeds and decrements locally"""
        sleep = SleepRecorder()
        governor = QuotaGovernor("github", floor=100, clock=lambda: 1000.0, sleep=sleep)

        governor.observe({"X-RateLimit-Remaining": "150", "X-RateLimit-Reset": "1060"})
        await governor.acquire()

        assert sleep.calls == []
        assert governor.remaining == 149

    @pytest.mark.asyncio
    async def test_reset_in_the_past_sleeps_only_margin(self):
        """A reset instant already passed never yields a negative sleep"""
        sleep = SleepRecorder()
        governor = QuotaGovernor("github", floor=100, safety_margin=5.0, clock=lambda: 2000.0, sleep=sleep)

        governor.observe({"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1000"})
        await governor.acquire()

        assert sleep.calls == [0.0]

    def test_observe_ignores_malformed_headers(self):
        """Malformed or missing headers leave the state untouched"""
        governor = QuotaGovernor("github")
        governor.observe({"X-RateLimit-Remaining": "12", "X-RateLimit-Reset": "1700000000"})
        governor.observe({"X-RateLimit-Remaining": "abc", "X-RateLimit-Reset": ""})

        assert governor.remaining == 12
        assert governor.reset_at == 1700000000.0

    @pytest.mark.asyncio
    async def test_cooldown_sleeps_and_clears_state(self):
        """cooldown() waits a fixed time and forgets the stale budget"""
        sleep = SleepRecorder()
        governor = QuotaGovernor("github", sleep=sleep)
        governor.observe({"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1700000000"})

        await governor.cooldown(60.0)

        assert sleep.calls == [60.0]
        assert governor.remaining is None

    @pytest.mark.asyncio
    async def test_wait_until_reset_ignores_floor(self):
        """An explicit reset wait sleeps even with a zero floor"""
        sleep = SleepRecorder()
        governor = QuotaGovernor("github", floor=0, safety_margin=5.0, clock=lambda: 1000.0, sleep=sleep)
        governor.observe({"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1030"})

        await governor.wait_until_reset(1030.0)

        assert sleep.calls == [35.0]
        assert governor.remaining is None
        assert governor.waits == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_budget(self):
        """Concurrent acquires each spend one unit of the shared budget"""
        sleep = SleepRecorder()
        governor = QuotaGovernor("github", floor=0, clock=lambda: 0.0, sleep=sleep)
        governor.observe({"X-RateLimit-Remaining": "10", "X-RateLimit-Reset": "60"})

        await asyncio.gather(*(governor.acquire() for _ in range(5)))

        assert governor.remaining == 5


class TestGovernorPool:
    """Test GovernorPool factory"""

    def test_get_returns_same_governor(self):
        """Callers of one API share one governor"""
        pool = GovernorPool()
        assert pool.get("github") is pool.get("github")

    def test_get_different_apis(self):
        """Different quota resources get different governors"""
        pool = GovernorPool()
        assert pool.get("github") is not pool.get("github_search")

    def test_floor_override(self):
        """A per-resource floor overrides the pool default"""
        pool = GovernorPool(floor=100, safety_margin=2.0)

        search = pool.get("github_search", floor=2)
        core = pool.get("github")

        assert search.floor == 2
        assert core.floor == 100
        assert search.safety_margin == 2.0

    def test_courtesy_limits(self):
        """Header-less services get predefined courtesy rates"""
        pool = GovernorPool()

        hn = pool.courtesy_limiter("hacker_news")
        assert hn.rate == 100
        assert hn.period == 60
        assert pool.courtesy_limiter("hacker_news") is hn

        assert pool.courtesy_limiter("gharchive").rate is None
        assert pool.courtesy_limiter("unknown_api").rate is None


class TestAsyncRateLimiter:
    """Test AsyncRateLimiter class"""

    def test_rate_limiter_init(self):
        """AsyncRateLimiter should accept rate and period"""
        limiter = AsyncRateLimiter(rate=10, period=1)
        assert limiter.rate == 10
        assert limiter.period == 1

    @pytest.mark.asyncio
    async def test_acquire_returns_quickly_under_limit(self):
        """acquire() should return immediately when under rate limit"""
        limiter = AsyncRateLimiter(rate=100, period=1)

        start = time.monotonic()
        for _ in range(5):
            await limiter.acquire()
        elapsed = time.monotonic() - start

        assert elapsed < 0.5

    @pytest.mark.asyncio
    async def test_acquire_throttles_when_exceeded(self):
        """acquire() should throttle when rate limit exceeded"""
        # 2 requests per second
        limiter = AsyncRateLimiter(rate=2, period=1)

        start = time.monotonic()
        for _ in range(3):
            await limiter.acquire()
        elapsed = time.monotonic() - start

        # Third request should wait ~0.5 seconds
        assert elapsed >= 0.3

    @pytest.mark.asyncio
    async def test_unlimited_never_throttles(self):
        """Unlimited limiter should never throttle"""
        limiter = AsyncRateLimiter(rate=None, period=1)

        start = time.monotonic()
        for _ in range(100):
            await limiter.acquire()
        elapsed = time.monotonic() - start

        assert elapsed < 0.1

    @pytest.mark.asyncio
    async def test_concurrent_acquire(self):
        """Multiple concurrent acquires should be safe"""
        limiter = AsyncRateLimiter(rate=10, period=1)
        results = []

        async def acquire_and_record(id: int):
            await limiter.acquire()
            results.append(id)

        await asyncio.gather(*(acquire_and_record(i) for i in range(5)))

        assert sorted(results) == [0, 1, 2, 3, 4]
