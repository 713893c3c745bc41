"""
Pipeline Orchestrator for Repo Discovery

Ties together the nightly discovery pipeline:
  discover() -> merge() -> collect signals() -> score() -> re-score policy()

Coordinates:
- Construction of every collaborator from one PipelineConfig
- One quota governor per remote quota, shared by every caller
- Sequential strategy execution in a fixed order
- Per-candidate signal collection, scoring and persistence
- Run statistics and operator logs

Usage:
    from workflows.pipeline import DiscoveryPipeline

    config = PipelineConfig.from_env()
    async with DiscoveryPipeline(config) as pipeline:
        stats = await pipeline.run_full(strategies=["category_search"], limit=50)

        # Or run stages independently
        merged, stats = await pipeline.discover()
        await pipeline.run_snapshot()
        await pipeline.run_tool_scan()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from collectors.base import BaseStrategy, Candidate, StrategyResult, StrategyStatus
from collectors.fetcher import FetchError, NotFoundError, RateLimitedFetcher
from collectors.gharchive import ArchiveReader, ArchiveStarSurgeStrategy
from collectors.github import GITHUB_API, GitHubClient, GitHubRepo, github_headers
from collectors.github_search import (
    CategorySearchStrategy,
    MidTierSearchStrategy,
    NewbornSearchStrategy,
)
from collectors.hacker_news import HN_ALGOLIA_API, HackerNewsClient, HackerNewsMentionStrategy
from scoring.early_signal import DEFAULT_SCORING, ScoringConfig, calculate_score
from storage.repo_store import RepoStore, RepositoryRecord
from utils.rate_limiter import GovernorPool, Sleeper
from workflows.config import PipelineConfig
from workflows.enrichment import (
    CategoryEnricher,
    Enricher,
    PolicyAction,
    ReScorePolicy,
    RepoFacts,
)
from workflows.merger import MergeResult, merge_candidates
from workflows.signal_collector import SignalCollector
from workflows.snapshot import SnapshotJob, SnapshotStats
from workflows.tool_scan import ToolScanJob, ToolScanStats

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

# Fixed execution order; merging keeps the first sighting, so order matters
STRATEGY_ORDER: List[str] = [
    CategorySearchStrategy.name,
    MidTierSearchStrategy.name,
    NewbornSearchStrategy.name,
    HackerNewsMentionStrategy.name,
    ArchiveStarSurgeStrategy.name,
]

USER_AGENT = "repo-discovery/1.0"


@dataclass
class PipelineStats:
    """Statistics from a pipeline run"""

    command: str = "full"
    dry_run: bool = False

    # Discovery stats
    strategies: List[Dict[str, Any]] = field(default_factory=list)
    candidates_found: int = 0
    candidates_merged: int = 0
    unique_by_strategy: Dict[str, int] = field(default_factory=dict)

    # Repository stats
    repos_persisted: int = 0
    repos_scored: int = 0
    repos_enriched: int = 0
    repos_score_only: int = 0
    repos_enrich_failed: int = 0
    repos_skipped: int = 0
    repos_errored: int = 0
    metrics_degraded: int = 0

    # Job stats (snapshot / tool-scan commands)
    job: Dict[str, Any] = field(default_factory=dict)

    # Errors
    errors: List[str] = field(default_factory=list)

    # Timing
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    def complete(self):
        """Mark pipeline as completed"""
        self.completed_at = datetime.now(timezone.utc)

    @property
    def duration_seconds(self) -> Optional[float]:
        """Pipeline duration in seconds"""
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def strategies_failed(self) -> int:
        return sum(1 for s in self.strategies if s["status"] == StrategyStatus.ERROR.value)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/display"""
        return {
            "command": self.command,
            "dry_run": self.dry_run,
            "discovery": {
                "strategies": self.strategies,
                "candidates_found": self.candidates_found,
                "candidates_merged": self.candidates_merged,
                "unique_by_strategy": self.unique_by_strategy,
            },
            "repositories": {
                "persisted": self.repos_persisted,
                "scored": self.repos_scored,
                "enriched": self.repos_enriched,
                "score_only": self.repos_score_only,
                "enrich_failed": self.repos_enrich_failed,
                "skipped": self.repos_skipped,
                "errored": self.repos_errored,
                "metrics_degraded": self.metrics_degraded,
            },
            "job": self.job,
            "errors": self.errors,
            "timing": {
                "started_at": self.started_at.isoformat(),
                "completed_at": self.completed_at.isoformat() if self.completed_at else None,
                "duration_seconds": self.duration_seconds,
            },
        }


def repo_from_candidate(candidate: Candidate) -> Optional[GitHubRepo]:
    """Rebuild search-result facts carried in a candidate; None when they are incomplete."""
    meta = candidate.raw_metadata
    if candidate.external_id is None or "stars" not in meta or "forks" not in meta:
        return None
    return GitHubRepo.from_api({
        "id": candidate.external_id,
        "owner": {"login": candidate.owner},
        "name": candidate.name,
        "description": meta.get("description"),
        "stargazers_count": meta.get("stars"),
        "forks_count": meta.get("forks"),
        "language": meta.get("language"),
        "html_url": meta.get("url"),
        "topics": meta.get("topics"),
        "pushed_at": meta.get("pushed_at"),
        "created_at": meta.get("created_at"),
    })


# =============================================================================
# PIPELINE ORCHESTRATOR
# =============================================================================

class DiscoveryPipeline:
    """
    Main pipeline orchestrator.

    Stages:
    1. Discover: run strategies in STRATEGY_ORDER, one after another
    2. Merge: dedupe candidates, first sighting wins
    3. Collect: gather metrics per candidate (sub-fetches concurrent)
    4. Score: pure Early Signal Score
    5. Persist: re-score policy commits counters, score and enrichment

    Nothing after startup raises for a single bad source or repository; the
    run reports partial results instead.
    """

    def __init__(
        self,
        config: PipelineConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        enricher: Optional[Enricher] = None,
        scoring: ScoringConfig = DEFAULT_SCORING,
        sleep: Sleeper = asyncio.sleep,
        now: Optional[datetime] = None,
    ):
        """
        Initialize pipeline with configuration.

        Args:
            config: Immutable configuration; every collaborator is built from it
            http_client: Shared client (default: one created from the config)
            enricher: Enrichment collaborator (default: CategoryEnricher)
            scoring: Score weights and thresholds
            sleep: Coroutine used by quota waits (tests)
            now: Fixed clock (tests)
        """
        self.config = config
        self.enricher: Enricher = enricher or CategoryEnricher()
        self.scoring = scoring
        self._now = now

        self._http = http_client
        self._owns_http = http_client is None
        self._sleep = sleep

        # Components (initialized in initialize())
        self.store: Optional[RepoStore] = None
        self.pool: Optional[GovernorPool] = None
        self.github: Optional[GitHubClient] = None
        self.hn: Optional[HackerNewsClient] = None
        self.archive: Optional[ArchiveReader] = None

        self._initialized = False

    async def __aenter__(self) -> "DiscoveryPipeline":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def initialize(self) -> None:
        """Build every collaborator from the config"""
        if self._initialized:
            return

        logger.info("Initializing discovery pipeline...")

        self.store = RepoStore(
            self.config.db_path,
            lookup_batch_size=self.config.lookup_batch_size,
            write_batch_size=self.config.write_batch_size,
        )
        await self.store.initialize()

        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=self.config.request_timeout_seconds,
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
            )

        policy = self.config.quota_policy
        self.pool = GovernorPool(
            floor=policy.floor,
            safety_margin=policy.safety_margin,
            sleep=self._sleep,
        )

        headers = github_headers(self.config.github_token)
        core = RateLimitedFetcher(
            self._http, self.pool.get("github"), policy,
            base_url=GITHUB_API, default_headers=headers, sleep=self._sleep,
        )
        search = RateLimitedFetcher(
            self._http, self.pool.get("github_search", floor=self.config.search_quota_floor), policy,
            base_url=GITHUB_API, default_headers=headers, sleep=self._sleep,
        )
        self.github = GitHubClient(core, search_fetcher=search)

        hn_fetcher = RateLimitedFetcher(
            self._http, self.pool.get("hacker_news"), policy,
            base_url=HN_ALGOLIA_API, sleep=self._sleep,
        )
        self.hn = HackerNewsClient(hn_fetcher, limiter=self.pool.courtesy_limiter("hacker_news"))
        self.archive = ArchiveReader(self._http, limiter=self.pool.courtesy_limiter("gharchive"))

        self._initialized = True
        logger.info("Pipeline initialization complete")

    async def close(self) -> None:
        """Clean up resources"""
        if self.store:
            await self.store.close()
            self.store = None
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None
        self._initialized = False

    # =========================================================================
    # DISCOVERY
    # =========================================================================

    def build_strategies(self, names: Optional[Sequence[str]] = None) -> List[BaseStrategy]:
        """
        Build strategies in STRATEGY_ORDER, optionally restricted to ``names``.

        Raises:
            ValueError: unknown strategy name
        """
        if names:
            unknown = [n for n in names if n not in STRATEGY_ORDER]
            if unknown:
                raise ValueError(f"Unknown strategies: {', '.join(unknown)}. Available: {', '.join(STRATEGY_ORDER)}")
        selected = [n for n in STRATEGY_ORDER if not names or n in names]

        cfg = self.config
        builders = {
            CategorySearchStrategy.name: lambda: CategorySearchStrategy(
                self.github,
                tags_per_category=cfg.category_tags_per_category,
                min_stars=cfg.category_min_stars,
                pushed_within_days=cfg.category_pushed_within_days,
                top_k=cfg.category_top_k,
                now=self._now,
            ),
            MidTierSearchStrategy.name: lambda: MidTierSearchStrategy(self.github, now=self._now),
            NewbornSearchStrategy.name: lambda: NewbornSearchStrategy(self.github, now=self._now),
            HackerNewsMentionStrategy.name: lambda: HackerNewsMentionStrategy(
                self.hn, self.github, lookback_hours=cfg.forum_lookback_hours, now=self._now,
            ),
            ArchiveStarSurgeStrategy.name: lambda: ArchiveStarSurgeStrategy(
                self.archive, min_stars=cfg.archive_min_stars,
                day=(self._now.date() - timedelta(days=1)) if self._now else None,
            ),
        }
        return [builders[name]() for name in selected]

    async def discover(
        self,
        strategies: Optional[Sequence[str]] = None,
        stats: Optional[PipelineStats] = None,
    ) -> Tuple[MergeResult, PipelineStats]:
        """Run strategies sequentially and merge their candidates."""
        await self.initialize()
        stats = stats or PipelineStats(command="discover")

        results: List[StrategyResult] = []
        for strategy in self.build_strategies(strategies):
            result = await strategy.run()
            results.append(result)
            stats.strategies.append(result.to_dict())
            stats.candidates_found += result.candidates_found
            if result.status == StrategyStatus.ERROR:
                stats.errors.append(f"{result.strategy}: {result.error_message}")
            logger.info(f"Strategy {result.strategy}: {result.candidates_found} candidates ({result.status.value})")

        merged = merge_candidates(results)
        stats.candidates_merged = len(merged.candidates)
        stats.unique_by_strategy = dict(merged.unique_by_strategy)
        return merged, stats

    async def persist_candidates(self, candidates: Sequence[Candidate]) -> int:
        """
        Insert candidates not yet stored; existing rows are left untouched.

        Candidates without a numeric id cannot be stored and are skipped.
        """
        with_ids = [c for c in candidates if c.external_id is not None]
        skipped = len(candidates) - len(with_ids)
        if skipped:
            logger.info(f"Skipping {skipped} candidates without a GitHub id")

        existing = await self.store.get_existing_github_ids(c.external_id for c in with_ids)
        new = [c for c in with_ids if c.external_id not in existing]
        logger.info(f"{len(existing)} candidates already stored, {len(new)} new")

        records = [
            RepositoryRecord(
                github_id=c.external_id,
                owner=c.owner,
                name=c.name,
                description=c.raw_metadata.get("description"),
                language=c.raw_metadata.get("language"),
                url=c.raw_metadata.get("url") or f"https://github.com/{c.owner}/{c.name}",
                stars=c.stars,
                forks=int(c.raw_metadata.get("forks") or 0),
            )
            for c in new
        ]
        return await self.store.upsert_repositories(records, ignore_existing=True)

    async def run_discover(self, strategies: Optional[Sequence[str]] = None, dry_run: bool = False) -> PipelineStats:
        """Discovery and merge only; stores newly seen repositories."""
        stats = PipelineStats(command="discover", dry_run=dry_run)
        merged, stats = await self.discover(strategies, stats)
        if not dry_run:
            stats.repos_persisted = await self.persist_candidates(merged.candidates)
        return await self._finish(stats)

    # =========================================================================
    # SCORING
    # =========================================================================

    async def _resolve(self, candidate: Candidate) -> GitHubRepo:
        repo = repo_from_candidate(candidate)
        if repo is not None:
            return repo
        return await self.github.get_repository(candidate.owner, candidate.name)

    async def score_candidate(
        self,
        candidate: Candidate,
        collector: SignalCollector,
        policy: Optional[ReScorePolicy],
        stats: PipelineStats,
    ) -> None:
        label = candidate.full_name
        try:
            repo = await self._resolve(candidate)
        except NotFoundError:
            logger.info(f"{label} skipped: not found on GitHub")
            stats.repos_skipped += 1
            return
        except FetchError as e:
            logger.warning(f"{label} skipped: {e}")
            stats.repos_errored += 1
            return

        signals = await collector.collect(repo)
        if signals.degraded:
            stats.metrics_degraded += 1
        result = calculate_score(signals.metrics, self.scoring)
        stats.repos_scored += 1
        logger.info(f"{label} -> score {result.score} (penalty {result.breakdown.manipulation_penalty})")

        if policy is None:
            return

        outcome = await policy.apply(
            RepositoryRecord(
                github_id=repo.github_id,
                owner=repo.owner,
                name=repo.name,
                description=repo.description,
                language=repo.language,
                url=repo.url,
                stars=repo.stars,
                forks=repo.forks,
                contributors=int(signals.metrics.contributors),
            ),
            RepoFacts(
                owner=repo.owner,
                name=repo.name,
                description=repo.description,
                language=repo.language,
                stars=repo.stars,
                forks=repo.forks,
                contributors=int(signals.metrics.contributors),
                topics=list(repo.topics),
                category_hint=candidate.raw_metadata.get("category_hint"),
            ),
            result,
        )
        if outcome.action == PolicyAction.ENRICHED:
            stats.repos_enriched += 1
        elif outcome.action == PolicyAction.SCORE_ONLY:
            stats.repos_score_only += 1
        else:
            stats.repos_enrich_failed += 1

    async def run_full(
        self,
        strategies: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        dry_run: bool = False,
    ) -> PipelineStats:
        """
        Run the complete pipeline.

        Args:
            strategies: Strategy names to run (None = all, in STRATEGY_ORDER)
            limit: Score at most this many merged candidates
            dry_run: Score only; no writes, no enrichment

        Returns:
            PipelineStats with detailed metrics
        """
        if limit is not None and limit < 0:
            raise ValueError(f"limit must not be negative, got {limit}")

        await self.initialize()
        stats = PipelineStats(command="full", dry_run=dry_run)
        logger.info(f"Starting full pipeline (strategies={strategies or 'all'}, limit={limit}, dry_run={dry_run})")

        merged, stats = await self.discover(strategies, stats)
        candidates = merged.candidates[:limit] if limit is not None else merged.candidates

        collector = SignalCollector(self.github, self.hn, store=self.store, now=self._now)
        policy = None if dry_run else ReScorePolicy(self.store, self.enricher, self.config.rescore_threshold)

        for index, candidate in enumerate(candidates, start=1):
            logger.info(f"[{index}/{len(candidates)}] {candidate.full_name} (via {candidate.source})")
            try:
                await self.score_candidate(candidate, collector, policy, stats)
            except Exception as e:
                # One repository's failure never stops the batch
                logger.exception(f"{candidate.full_name} failed: {e}")
                stats.repos_errored += 1
                stats.errors.append(f"{candidate.full_name}: {type(e).__name__}: {e}")

        return await self._finish(stats)

    # =========================================================================
    # DAILY JOBS
    # =========================================================================

    async def run_snapshot(self, dry_run: bool = False) -> PipelineStats:
        await self.initialize()
        stats = PipelineStats(command="snapshot", dry_run=dry_run)
        job = SnapshotJob(
            self.store,
            self.github,
            today=self._now.date() if self._now else None,
            page_size=self.config.lookup_batch_size,
        )
        result: SnapshotStats = await job.run(dry_run=dry_run)
        stats.job = result.to_dict()
        stats.repos_errored = result.errors
        return await self._finish(stats)

    async def run_tool_scan(self, dry_run: bool = False) -> PipelineStats:
        await self.initialize()
        stats = PipelineStats(command="tool-scan", dry_run=dry_run)
        job = ToolScanJob(self.store, self.github, today=self._now.date() if self._now else None)
        result: ToolScanStats = await job.run(dry_run=dry_run)
        stats.job = result.to_dict()
        return await self._finish(stats)

    async def _finish(self, stats: PipelineStats) -> PipelineStats:
        stats.complete()
        self._log_summary(stats)
        if not stats.dry_run:
            await self.store.save_pipeline_run(stats.command, stats.started_at, stats.completed_at, stats.to_dict())
        return stats

    def _log_summary(self, stats: PipelineStats) -> None:
        logger.info("=" * 60)
        logger.info(f"{stats.command} run complete in {stats.duration_seconds:.1f}s")
        if stats.strategies:
            logger.info(
                f"  Candidates: {stats.candidates_found} found, {stats.candidates_merged} after merge, "
                f"{stats.strategies_failed} strategies failed"
            )
        if stats.command == "full":
            logger.info(
                f"  Repositories: {stats.repos_scored} scored, {stats.repos_enriched} enriched, "
                f"{stats.repos_score_only} score-only, {stats.repos_enrich_failed} enrichment failed, "
                f"{stats.repos_skipped} skipped, {stats.repos_errored} errored"
            )
        if stats.command == "discover":
            logger.info(f"  Repositories: {stats.repos_persisted} new")
        if stats.job:
            logger.info(f"  Job: {stats.job}")
        logger.info("=" * 60)

