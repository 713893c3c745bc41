"""
Rate-Limited Fetcher for Repo Discovery.

Wraps a single outbound HTTP GET with quota inspection and backoff:

1. Before the call, the shared QuotaGovernor may sleep if the PREVIOUS
   response left the budget below the floor.
2. After the call, quota headers are fed back into the governor.
3. "Forbidden, quota exhausted" is retried exactly once: after the reset
   instant when headers say when that is, otherwise after Retry-After or a
   fixed cooldown.
4. 404 is terminal for the item, 202 is reported as pending, anything else
   non-2xx is logged and returned as a skippable error.

Transport and decode failures never escape ``fetch``; they come back as a
FetchResult with status ERROR so the caller can degrade that one unit.

Usage:
    fetcher = RateLimitedFetcher(client, pool.get("github"), base_url=GITHUB_API)
    result = await fetcher.fetch("/repos/owner/name")
    if result.ok:
        repo = result.payload
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from collectors.retry_strategy import (
    FetchStatus,
    QuotaPolicy,
    classify_status,
    get_retry_after_seconds,
    has_reset_header,
)
from utils.rate_limiter import QuotaGovernor, Sleeper

logger = logging.getLogger(__name__)

Decoder = Callable[[httpx.Response], Any]


# =============================================================================
# ERRORS
# =============================================================================

class FetchError(Exception):
    """A fetch did not produce a usable payload."""

    def __init__(self, message: str, result: Optional["FetchResult"] = None):
        super().__init__(message)
        self.result = result


class NotFoundError(FetchError):
    """The remote resource does not exist (deleted, renamed or private)."""


class QuotaExhaustedError(FetchError):
    """The quota was still exhausted after the single backoff retry."""


# =============================================================================
# RESULT
# =============================================================================

@dataclass
class FetchResult:
    """Typed outcome of one fetch."""
    status: FetchStatus
    url: str
    status_code: Optional[int] = None
    payload: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == FetchStatus.OK

    def unwrap(self) -> Any:
        """Return the payload or raise the matching FetchError subclass."""
        if self.status == FetchStatus.OK:
            return self.payload
        message = f"{self.url}: {self.status.value}"
        if self.status_code is not None:
            message += f" (HTTP {self.status_code})"
        if self.error:
            message += f" - {self.error}"
        if self.status == FetchStatus.NOT_FOUND:
            raise NotFoundError(message, self)
        if self.status == FetchStatus.RATE_LIMITED:
            raise QuotaExhaustedError(message, self)
        raise FetchError(message, self)


def decode_json(response: httpx.Response) -> Any:
    """Default decoder; empty bodies decode to None."""
    if not response.content:
        return None
    return response.json()


# =============================================================================
# FETCHER
# =============================================================================

class RateLimitedFetcher:
    """
    Quota-aware GET wrapper shared by every caller of one remote service.

    Args:
        client: httpx.AsyncClient (timeouts are configured on the client)
        governor: QuotaGovernor shared by all callers of the same quota
        policy: Backoff configuration
        base_url: Prefix for relative paths
        default_headers: Headers sent with every request (auth, accept)
        sleep: Coroutine used for the PENDING delay (injectable for tests)
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        governor: QuotaGovernor,
        policy: Optional[QuotaPolicy] = None,
        base_url: str = "",
        default_headers: Optional[Dict[str, str]] = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.client = client
        self.governor = governor
        self.policy = policy or QuotaPolicy()
        self.base_url = base_url.rstrip("/")
        self.default_headers = dict(default_headers or {})
        self._sleep = sleep

        # Statistics
        self.request_count = 0
        self.error_count = 0

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}{path}"

    async def fetch(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        decoder: Decoder = decode_json,
    ) -> FetchResult:
        """
        Perform one GET and classify the outcome.

        Returns:
            FetchResult; never raises for HTTP, transport or decode failures
        """
        url = self._url(path)
        request_headers = {**self.default_headers, **(headers or {})}

        for attempt in range(2):
            await self.governor.acquire()

            try:
                response = await self.client.get(url, params=params, headers=request_headers)
            except httpx.HTTPError as e:
                self.error_count += 1
                logger.warning(f"GET {url} failed: {type(e).__name__}: {e}")
                return FetchResult(FetchStatus.ERROR, url, error=f"{type(e).__name__}: {e}")

            self.request_count += 1
            self.governor.observe(response.headers)
            status = classify_status(response)

            if status == FetchStatus.RATE_LIMITED:
                if attempt == 0:
                    await self._back_off(response)
                    logger.info(f"Retrying {url} after quota backoff")
                    continue
                self.error_count += 1
                logger.error(f"GET {url} still rate limited after backoff, giving up")
                return FetchResult(
                    status, url, response.status_code, headers=dict(response.headers),
                    error="quota exhausted",
                )

            return self._finish(url, response, status, decoder)

        # Unreachable: the loop always returns on its second pass
        raise RuntimeError("Unexpected state in RateLimitedFetcher.fetch")

    async def _back_off(self, response: httpx.Response) -> None:
        """
        Wait before the single retry of a quota-exhausted response.

        A spent primary quota waits for its reset instant. Secondary limits
        report a healthy remaining count, so they honour Retry-After or fall
        back to the fixed cooldown.
        """
        if response.headers.get("X-RateLimit-Remaining") == "0" and has_reset_header(response):
            reset_at = float(response.headers["X-RateLimit-Reset"])
            await self.governor.wait_until_reset(reset_at)
            return

        retry_after = get_retry_after_seconds(response)
        if retry_after is None:
            retry_after = self.policy.cooldown
        await self.governor.cooldown(retry_after)

    def _finish(
        self,
        url: str,
        response: httpx.Response,
        status: FetchStatus,
        decoder: Decoder,
    ) -> FetchResult:
        headers = dict(response.headers)

        if status == FetchStatus.NOT_FOUND:
            logger.info(f"GET {url} -> 404, skipping item")
            return FetchResult(status, url, 404, headers=headers, error="not found")

        if status == FetchStatus.PENDING:
            logger.debug(f"GET {url} -> 202, remote still computing")
            return FetchResult(status, url, 202, headers=headers)

        if status == FetchStatus.ERROR:
            self.error_count += 1
            logger.warning(f"GET {url} -> HTTP {response.status_code}, skipping")
            return FetchResult(
                status, url, response.status_code, headers=headers,
                error=f"HTTP {response.status_code}",
            )

        try:
            payload = decoder(response)
        except (json.JSONDecodeError, ValueError) as e:
            self.error_count += 1
            logger.warning(f"GET {url} returned undecodable body: {e}")
            return FetchResult(
                FetchStatus.ERROR, url, response.status_code, headers=headers,
                error=f"decode error: {e}",
            )

        return FetchResult(status, url, response.status_code, payload=payload, headers=headers)

    async def fetch_until_ready(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> FetchResult:
        """
        Fetch an endpoint that may answer 202 while it computes.

        Re-asks exactly once after ``policy.pending_delay`` seconds; a second
        202 is returned as-is so the caller can fall back to a default.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(2),
            wait=wait_fixed(self.policy.pending_delay),
            retry=retry_if_result(lambda r: r.status == FetchStatus.PENDING),
            retry_error_callback=lambda state: state.outcome.result(),
            sleep=self._sleep,
        )
        return await retrying(self.fetch, path, params=params, headers=headers)
