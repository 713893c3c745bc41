"""
Pipeline Configuration for Repo Discovery

Startup is two-phase: configuration is loaded into one immutable value
first, then every collaborator (HTTP clients, governors, stores) is built
from that value. Nothing reads the environment after this module has run.

Usage:
    config = PipelineConfig.from_env()         # loads .env, then os.environ
    config.require_github_token()              # raises ConfigurationError if absent
    config = dataclasses.replace(config, db_path="other.db")
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from collectors.retry_strategy import QuotaPolicy

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Required configuration is missing or malformed. Fatal at startup."""


def _int_env(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}")


def _float_env(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}")


@dataclass(frozen=True)
class PipelineConfig:
    """Configuration for every job in the discovery pipeline"""

    # Credentials
    github_token: Optional[str] = None

    # Storage
    db_path: str = "discovery.db"

    # Quota governor
    quota_floor: int = 100
    # The search API has its own budget of 30 calls per minute
    search_quota_floor: int = 2
    quota_safety_margin_seconds: float = 5.0
    quota_cooldown_seconds: float = 60.0
    request_timeout_seconds: float = 30.0

    # Discovery
    archive_min_stars: int = 5
    category_top_k: int = 30
    category_tags_per_category: int = 2
    category_min_stars: int = 50
    category_pushed_within_days: int = 90
    forum_lookback_hours: int = 24

    # Re-score policy
    rescore_threshold: int = 10

    # Persistence batching
    lookup_batch_size: int = 500
    write_batch_size: int = 100

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> PipelineConfig:
        """
        Load configuration from a .env file and environment variables.

        Args:
            dotenv_path: Explicit .env file (default: search from the working directory)
            env: Mapping to read instead of os.environ (tests)
        """
        if env is None:
            load_dotenv(dotenv_path)
            env = os.environ

        return cls(
            github_token=env.get("GITHUB_TOKEN") or None,
            db_path=env.get("DISCOVERY_DB_PATH", "discovery.db"),
            quota_floor=_int_env(env, "QUOTA_FLOOR", 100),
            search_quota_floor=_int_env(env, "SEARCH_QUOTA_FLOOR", 2),
            quota_safety_margin_seconds=_float_env(env, "QUOTA_SAFETY_MARGIN_SECONDS", 5.0),
            quota_cooldown_seconds=_float_env(env, "QUOTA_COOLDOWN_SECONDS", 60.0),
            request_timeout_seconds=_float_env(env, "REQUEST_TIMEOUT_SECONDS", 30.0),
            archive_min_stars=_int_env(env, "ARCHIVE_MIN_STARS", 5),
            rescore_threshold=_int_env(env, "RESCORE_THRESHOLD", 10),
            category_top_k=_int_env(env, "CATEGORY_TOP_K", 30),
            category_tags_per_category=_int_env(env, "CATEGORY_TAGS_PER_CATEGORY", 2),
            category_min_stars=_int_env(env, "CATEGORY_MIN_STARS", 50),
            category_pushed_within_days=_int_env(env, "CATEGORY_PUSHED_WITHIN_DAYS", 90),
            forum_lookback_hours=_int_env(env, "FORUM_LOOKBACK_HOURS", 24),
            lookup_batch_size=_int_env(env, "LOOKUP_BATCH_SIZE", 500),
            write_batch_size=_int_env(env, "WRITE_BATCH_SIZE", 100),
        )

    def require_github_token(self) -> str:
        if not self.github_token:
            raise ConfigurationError("GITHUB_TOKEN is not set")
        return self.github_token

    @property
    def quota_policy(self) -> QuotaPolicy:
        return QuotaPolicy(
            floor=self.quota_floor,
            safety_margin=self.quota_safety_margin_seconds,
            cooldown=self.quota_cooldown_seconds,
        )

    def to_dict(self) -> dict:
        """Loggable view with the token masked."""
        return {
            "github_token": "***" if self.github_token else None,
            "db_path": self.db_path,
            "quota_floor": self.quota_floor,
            "search_quota_floor": self.search_quota_floor,
            "quota_safety_margin_seconds": self.quota_safety_margin_seconds,
            "quota_cooldown_seconds": self.quota_cooldown_seconds,
            "request_timeout_seconds": self.request_timeout_seconds,
            "archive_min_stars": self.archive_min_stars,
            "rescore_threshold": self.rescore_threshold,
            "category_top_k": self.category_top_k,
            "forum_lookback_hours": self.forum_lookback_hours,
        }
