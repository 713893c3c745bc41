"""
Quota Governor and Courtesy Limiter for Repo Discovery.

Provides:
- QuotaGovernor: tracks a remote API's account-level quota from response
  headers and throttles callers before the budget runs dry
- AsyncRateLimiter: token-bucket limiter for APIs that publish no quota headers
- GovernorPool: one governor per remote service, owned by the pipeline and
  injected into every caller that shares the quota

Both limiters are async-safe: all quota state is mutated under a single
asyncio.Lock so that two call sites never spend the same budget window twice.

Usage:
    pool = GovernorPool(floor=100, safety_margin=5.0)
    governor = pool.get("github")

    await governor.acquire()            # may sleep until the reset instant
    response = await client.get(url)
    governor.observe(response.headers)  # feed remaining/reset back in
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]

REMAINING_HEADER = "X-RateLimit-Remaining"
RESET_HEADER = "X-RateLimit-Reset"


class QuotaGovernor:
    """
    Shared remaining-count / reset-clock pair for one remote quota.

    The governor never checks quota pre-emptively against the network. It
    inspects the headers of the previous response and, when the remaining
    budget fell below ``floor``, makes the next caller sleep until the
    reported reset instant plus ``safety_margin`` seconds.

    Args:
        api_name: Name of the remote service (for logging)
        floor: Remaining-units threshold below which callers wait
        safety_margin: Seconds added to the reset instant
        clock: Wall-clock source returning epoch seconds
        sleep: Coroutine used to wait (injectable for tests)
    """

    def __init__(
        self,
        api_name: str,
        floor: int = 100,
        safety_margin: float = 5.0,
        clock: Callable[[], float] = time.time,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.api_name = api_name
        self.floor = floor
        self.safety_margin = safety_margin
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()

        self.remaining: Optional[int] = None
        self.reset_at: Optional[float] = None
        self.waits = 0

    async def acquire(self) -> None:
        """
        Wait, if needed, before issuing the next call.

        Spends one unit of the known budget so concurrent callers see the
        decrement before their own responses arrive.
        """
        async with self._lock:
            if (
                self.remaining is not None
                and self.remaining < self.floor
                and self.reset_at is not None
            ):
                wait_time = max(self.reset_at - self._clock() + self.safety_margin, 0.0)
                logger.warning(
                    f"{self.api_name} quota low ({self.remaining} remaining), "
                    f"sleeping {wait_time:.0f}s until reset"
                )
                self.waits += 1
                await self._sleep(wait_time)
                # The window has rolled over; the next response tells us the new budget
                self.remaining = None
                self.reset_at = None

            if self.remaining is not None:
                self.remaining -= 1

    def observe(self, headers: Mapping[str, str]) -> None:
        """Record quota headers from a response. Missing or malformed headers are ignored."""
        remaining = _parse_int(headers.get(REMAINING_HEADER))
        reset_at = _parse_int(headers.get(RESET_HEADER))

        if remaining is not None:
            self.remaining = remaining
        if reset_at is not None and reset_at > 0:
            self.reset_at = float(reset_at)

    async def wait_until_reset(self, reset_at: float) -> None:
        """Block every caller until ``reset_at`` plus the safety margin, then forget the spent budget."""
        async with self._lock:
            wait_time = max(reset_at - self._clock() + self.safety_margin, 0.0)
            logger.warning(f"{self.api_name} quota exhausted, sleeping {wait_time:.0f}s until reset")
            self.waits += 1
            await self._sleep(wait_time)
            self.remaining = None
            self.reset_at = None

    async def cooldown(self, seconds: float) -> None:
        """Block every caller for a fixed cooldown (quota exhausted, no usable headers)."""
        async with self._lock:
            logger.warning(f"{self.api_name} quota exhausted, cooling down {seconds:.0f}s")
            self.waits += 1
            await self._sleep(seconds)
            self.remaining = None
            self.reset_at = None


class AsyncRateLimiter:
    """
    Async rate limiter using token bucket algorithm.

    Used for services that publish no quota headers (the forum search API),
    where a conservative request rate is the only protection.

    Args:
        rate: Maximum requests per period (None = unlimited)
        period: Time period in seconds
    """

    def __init__(self, rate: Optional[int] = None, period: int = 1):
        self.rate = rate
        self.period = period
        self._lock = asyncio.Lock()
        self._tokens: float = float(rate) if rate else float("inf")
        self._last_refill: Optional[float] = None

    async def acquire(self) -> None:
        """Block until a token is available. Unlimited limiters return immediately."""
        if self.rate is None:
            return

        async with self._lock:
            now = time.monotonic()

            if self._last_refill is None:
                self._last_refill = now
                self._tokens = float(self.rate)

            elapsed = now - self._last_refill
            self._tokens = min(self.rate, self._tokens + elapsed * (self.rate / self.period))
            self._last_refill = now

            if self._tokens < 1:
                wait_time = (1 - self._tokens) * (self.period / self.rate)
                logger.debug(f"Rate limit: waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)
                self._tokens = 1

            self._tokens -= 1


class GovernorPool:
    """
    Factory for per-service quota governors.

    One pool is created per pipeline run and handed to every fetcher, so
    all callers of the same service share a single governor.
    """

    # Conservative request rates for services without quota headers
    COURTESY_LIMITS: Dict[str, Dict[str, Optional[int]]] = {
        "hacker_news": {"rate": 100, "period": 60},
        "gharchive": {"rate": None, "period": 1},
    }

    def __init__(
        self,
        floor: int = 100,
        safety_margin: float = 5.0,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.floor = floor
        self.safety_margin = safety_margin
        self._sleep = sleep
        self._governors: Dict[str, QuotaGovernor] = {}
        self._limiters: Dict[str, AsyncRateLimiter] = {}

    def get(self, api_name: str, floor: Optional[int] = None) -> QuotaGovernor:
        """
        Get or create the quota governor for one quota resource.

        ``floor`` overrides the pool default on first creation; resources with
        a small budget (the search API allows 30 calls a minute) need one.
        """
        if api_name not in self._governors:
            floor = self.floor if floor is None else floor
            self._governors[api_name] = QuotaGovernor(
                api_name,
                floor=floor,
                safety_margin=self.safety_margin,
                sleep=self._sleep,
            )
            logger.debug(f"Created quota governor for {api_name} (floor={floor})")
        return self._governors[api_name]

    def courtesy_limiter(self, api_name: str) -> AsyncRateLimiter:
        """Get or create the token-bucket limiter for a header-less service."""
        if api_name not in self._limiters:
            limits = self.COURTESY_LIMITS.get(api_name, {"rate": None, "period": 1})
            self._limiters[api_name] = AsyncRateLimiter(
                rate=limits["rate"],
                period=limits["period"],
            )
        return self._limiters[api_name]


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
