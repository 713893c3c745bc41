"""
Quota and Retry Policy for Repo Discovery Fetchers.

Provides:
- QuotaPolicy: floor / safety margin / cooldown knobs for the quota governor
- classify_status: map an HTTP response onto a FetchStatus
- is_quota_exhausted: detect "forbidden, quota exhausted" responses
- get_retry_after_seconds: Retry-After header parsing

Usage:
    from collectors.retry_strategy import QuotaPolicy, classify_status

    policy = QuotaPolicy(floor=100, safety_margin=5.0, cooldown=60.0)
    status = classify_status(response)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class FetchStatus(str, Enum):
    """Outcome classes for a single outbound call."""
    OK = "ok"
    NOT_FOUND = "not_found"        # terminal for this item, skip it
    PENDING = "pending"            # 202: remote still computing, retry after a delay
    RATE_LIMITED = "rate_limited"  # quota exhausted, retried once then given up
    ERROR = "error"                # any other non-success status, skippable


@dataclass(frozen=True)
class QuotaPolicy:
    """Configuration for quota backoff."""

    floor: int = 100             # Sleep when remaining drops below this
    safety_margin: float = 5.0   # Seconds past the reset instant
    cooldown: float = 60.0       # Fixed wait when headers are uninformative
    pending_delay: float = 2.0   # Wait before re-asking a 202 endpoint


def is_quota_exhausted(response: httpx.Response) -> bool:
    """
    True for 403/429 responses that report a spent quota.

    GitHub signals exhaustion either with ``X-RateLimit-Remaining: 0`` or,
    for secondary limits, with a "rate limit" message and no useful headers.
    """
    if response.status_code not in (403, 429):
        return False

    if response.headers.get("X-RateLimit-Remaining") == "0":
        return True

    if response.status_code == 429:
        return True

    try:
        return "rate limit" in response.text.lower()
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        return False


def has_reset_header(response: httpx.Response) -> bool:
    """True when the response carries a usable reset epoch."""
    value = response.headers.get("X-RateLimit-Reset")
    if not value:
        return False
    try:
        return int(value) > 0
    except ValueError:
        return False


def classify_status(response: httpx.Response) -> FetchStatus:
    """Map a response onto the fetch outcome taxonomy."""
    status = response.status_code

    if status == 202:
        return FetchStatus.PENDING
    if 200 <= status < 300:
        return FetchStatus.OK
    if status == 404:
        return FetchStatus.NOT_FOUND
    if is_quota_exhausted(response):
        return FetchStatus.RATE_LIMITED
    return FetchStatus.ERROR


def get_retry_after_seconds(response: httpx.Response) -> Optional[float]:
    """
    Extract Retry-After header value from a response.

    Returns:
        Wait time in seconds, or None if header not present or not numeric
    """
    retry_after = response.headers.get("Retry-After")
    if retry_after is None:
        return None

    try:
        return float(retry_after)
    except ValueError:
        return None
