"""
Daily Snapshot Job

Refreshes counters for every stored repository and appends today's
snapshot:

1. Range-paginated scan of live repositories.
2. Per page, one batched lookup of the snapshots taken 7 days ago.
3. Per repository, fetch current details by numeric id.
   404 marks the repository absent (never deleted); any other failure is
   logged and counted, and the scan continues.
4. Write the refreshed counters and insert today's snapshot with
   ``stars_7d = stars - stars_7_days_ago`` (0 without that snapshot).
   Snapshot inserts ignore an existing (repository, date) row, so running
   twice on one day is a no-op.

Repositories gaining at least 50 stars in a week, or holding 500+ stars,
that have never been enriched are logged as promotion candidates.

Usage:
    job = SnapshotJob(store, github_client)
    stats = await job.run()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from collectors.fetcher import FetchError, NotFoundError
from collectors.github import GitHubClient
from storage.repo_store import RepoStore, RepositoryRecord, SnapshotRow, StoredRepository

logger = logging.getLogger(__name__)

PROMOTION_MIN_STARS_7D = 50
PROMOTION_MIN_STARS = 500


@dataclass
class SnapshotStats:
    scanned: int = 0
    updated: int = 0
    absent: int = 0
    errors: int = 0
    snapshots_inserted: int = 0
    promotion_candidates: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scanned": self.scanned,
            "updated": self.updated,
            "absent": self.absent,
            "errors": self.errors,
            "snapshots_inserted": self.snapshots_inserted,
            "promotion_candidates": len(self.promotion_candidates),
        }


class SnapshotJob:
    """
    Daily counter refresh over all stored repositories.

    Args:
        store: Initialized RepoStore
        github: GitHub client sharing the pipeline's quota governor
        today: Snapshot date (default: today, UTC)
        page_size: Repositories per scan page and per snapshot lookup
        promotion_limit: How many promotion candidates to report
    """

    def __init__(
        self,
        store: RepoStore,
        github: GitHubClient,
        today: Optional[date] = None,
        page_size: int = 500,
        promotion_limit: int = 50,
    ):
        self.store = store
        self.github = github
        self.today = today or datetime.now(timezone.utc).date()
        self.page_size = page_size
        self.promotion_limit = promotion_limit

    async def run(self, dry_run: bool = False) -> SnapshotStats:
        stats = SnapshotStats()
        page: List[StoredRepository] = []
        gainers: List[SnapshotRow] = []

        logger.info(f"=== Snapshot {self.today.isoformat()} ===")

        async for repo in self.store.iter_repositories(page_size=self.page_size):
            page.append(repo)
            if len(page) >= self.page_size:
                gainers.extend(await self._process_page(page, stats, dry_run))
                page = []
        if page:
            gainers.extend(await self._process_page(page, stats, dry_run))

        stats.promotion_candidates = await self._promotion_candidates(gainers)

        logger.info(
            f"Snapshot complete: {stats.scanned} scanned, {stats.updated} updated, "
            f"{stats.absent} absent, {stats.errors} errors, {stats.snapshots_inserted} new snapshots"
        )
        return stats

    async def _process_page(
        self,
        page: List[StoredRepository],
        stats: SnapshotStats,
        dry_run: bool,
    ) -> List[SnapshotRow]:
        week_ago = await self.store.get_snapshots_on(self.today - timedelta(days=7), [r.id for r in page])
        rows: List[SnapshotRow] = []

        for repo in page:
            stats.scanned += 1
            try:
                fresh = await self.github.get_repository_by_id(repo.github_id)
            except NotFoundError:
                logger.info(f"{repo.full_name} no longer exists upstream, marking absent")
                stats.absent += 1
                if not dry_run:
                    await self.store.mark_absent(repo.id)
                continue
            except FetchError as e:
                logger.warning(f"{repo.full_name} snapshot skipped: {e}")
                stats.errors += 1
                continue

            previous = week_ago.get(repo.id)
            stars_7d = max(fresh.stars - previous.stars, 0) if previous else 0
            rows.append(SnapshotRow(
                repo_id=repo.id,
                snapshot_date=self.today,
                stars=fresh.stars,
                forks=fresh.forks,
                stars_7d=stars_7d,
            ))

            if not dry_run:
                await self.store.upsert_repository(RepositoryRecord(
                    github_id=fresh.github_id,
                    owner=fresh.owner,
                    name=fresh.name,
                    description=fresh.description,
                    language=fresh.language,
                    url=fresh.url,
                    stars=fresh.stars,
                    forks=fresh.forks,
                ))
            stats.updated += 1

        if rows and not dry_run:
            stats.snapshots_inserted += await self.store.insert_snapshots(rows)

        logger.info(f"Snapshot page: {len(page)} repos, {len(rows)} refreshed")
        return [
            r for r in rows
            if r.stars_7d >= PROMOTION_MIN_STARS_7D or r.stars >= PROMOTION_MIN_STARS
        ]

    async def _promotion_candidates(self, gainers: List[SnapshotRow]) -> List[Dict[str, Any]]:
        if not gainers:
            return []
        enriched = await self.store.get_enriched_repo_ids([r.repo_id for r in gainers])
        pending = sorted(
            (r for r in gainers if r.repo_id not in enriched),
            key=lambda r: (r.stars_7d, r.stars),
            reverse=True,
        )[: self.promotion_limit]

        candidates = []
        for row in pending:
            repo = await self.store.get_repository(row.repo_id)
            name = repo.full_name if repo else f"repo #{row.repo_id}"
            candidates.append({"repo_id": row.repo_id, "full_name": name, "stars": row.stars, "stars_7d": row.stars_7d})
            logger.info(f"  promotion candidate: {name} (+{row.stars_7d} this week, {row.stars} total)")
        return candidates
