"""
Signal Collector

For one deduplicated candidate, gathers the metrics the score needs:

- 7/30-day star gains: from snapshot history when a snapshot from 7 days
  ago exists, otherwise from a windowed scan of the stargazer feed
- contributor count (paginated, capped)
- 30-day commit count (stats endpoint, one retry on 202)
- forum mentions in the last 7 and 30 days

All sub-fetches for a candidate run concurrently. A failed sub-fetch
degrades that one metric to 0 and is recorded in ``degraded``; the
candidate itself is never dropped for it.

Usage:
    collector = SignalCollector(github_client, hn_client, store=store)
    signals = await collector.collect(repo)
    result = calculate_score(signals.metrics)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, List, Optional, TypeVar

from collectors.fetcher import FetchError
from collectors.github import GitHubClient, GitHubRepo, StarVelocity
from collectors.hacker_news import HackerNewsClient
from scoring.early_signal import MetricRecord
from storage.repo_store import RepoStore, SnapshotHistory

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _resolved(value: T) -> T:
    return value


@dataclass
class CollectedSignals:
    repo: GitHubRepo
    metrics: MetricRecord
    # Metrics that fell back to 0 because their fetch failed
    degraded: List[str] = field(default_factory=list)
    star_source: str = "stargazers"


class SignalCollector:
    """
    Gathers derived metrics for candidates through the shared clients.

    Args:
        github: GitHub client (shares the pipeline's quota governor)
        hn: Forum client for mention counts
        store: Optional store for snapshot-based star deltas
        now: Fixed clock for reproducible windows (tests)
    """

    def __init__(
        self,
        github: GitHubClient,
        hn: HackerNewsClient,
        store: Optional[RepoStore] = None,
        now: Optional[datetime] = None,
    ):
        self.github = github
        self.hn = hn
        self.store = store
        self._now = now

    @property
    def now(self) -> datetime:
        return self._now or datetime.now(timezone.utc)

    async def _degrade(self, metric: str, coro: Awaitable[T], default: T, degraded: List[str], label: str) -> T:
        try:
            return await coro
        except FetchError as e:
            logger.warning(f"{label}: {metric} unavailable, using default ({e})")
            degraded.append(metric)
            return default

    async def _snapshot_history(self, repo: GitHubRepo) -> SnapshotHistory:
        if self.store is None:
            return SnapshotHistory()
        stored = await self.store.get_repositories_by_github_ids([repo.github_id])
        existing = stored.get(repo.github_id)
        if existing is None:
            return SnapshotHistory()
        return await self.store.get_snapshot_history(existing.id, self.now.date(), current_stars=repo.stars)

    async def collect(self, repo: GitHubRepo) -> CollectedSignals:
        """Collect all metrics for one repository. Never raises FetchError."""
        label = repo.full_name
        degraded: List[str] = []
        now = self.now
        history = await self._snapshot_history(repo)

        if history.stars_7d is not None:
            star_source = "snapshots"
            velocity_task = _resolved(StarVelocity(
                stars_7d=history.stars_7d,
                stars_30d=history.stars_30d if history.stars_30d is not None else history.stars_7d,
            ))
        else:
            star_source = "stargazers"
            velocity_task = self._degrade(
                "stars_7d",
                self.github.star_velocity(repo.owner, repo.name, repo.stars, now=now),
                StarVelocity(),
                degraded,
                label,
            )

        velocity, contributors, commits, mentions_7d, mentions_30d = await asyncio.gather(
            velocity_task,
            self._degrade("contributors", self.github.contributor_count(repo.owner, repo.name), 0, degraded, label),
            self._degrade("commits_30d", self.github.commits_last_30d(repo.owner, repo.name), 0, degraded, label),
            self._degrade(
                "mentions_7d",
                self.hn.count_mentions(repo.owner, repo.name, since=now - timedelta(days=7)),
                0, degraded, label,
            ),
            self._degrade(
                "mentions_30d",
                self.hn.count_mentions(repo.owner, repo.name, since=now - timedelta(days=30)),
                0, degraded, label,
            ),
        )

        metrics = MetricRecord(
            stars=repo.stars,
            stars_7d=velocity.stars_7d,
            stars_30d=velocity.stars_30d,
            contributors=contributors,
            forks=repo.forks,
            mentions_7d=mentions_7d,
            mentions_30d=mentions_30d,
            commits_30d=commits,
            stars_prev_7d=history.stars_prev_7d,
        )

        if degraded:
            logger.info(f"{label}: degraded metrics {', '.join(degraded)}")

        return CollectedSignals(repo=repo, metrics=metrics, degraded=degraded, star_source=star_source)
