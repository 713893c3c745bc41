"""
Tool Attribution Scan

Daily counts of public commits attributed to AI coding tools, taken from
the commit search API's ``total_count``.

Each tool has a query template and a start date. The scan resumes from the
day after the last stored day per tool and stops two days before today,
because the search index lags behind. Each day's count is upserted as a
tool contribution on an aggregate placeholder repository (github id 0),
replacing any earlier count for that day.

A failed day stops that tool's scan so the next run resumes at the gap.

Usage:
    job = ToolScanJob(store, github_client)
    stats = await job.run()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from collectors.fetcher import FetchError
from collectors.github import GitHubClient
from storage.repo_store import RepoStore, RepositoryRecord

logger = logging.getLogger(__name__)

INDEX_LAG_DAYS = 2

AGGREGATE_REPOSITORY = RepositoryRecord(
    github_id=0,
    owner="_discovery",
    name="_commit_search_aggregate",
    description="Aggregate AI coding tool commit counts across public GitHub",
    url="https://github.com",
)


@dataclass(frozen=True)
class ToolQuery:
    label: str
    template: str  # "{date}" is replaced with YYYY-MM-DD
    start_date: date

    def query(self, day: date) -> str:
        return self.template.format(date=day.isoformat())


TOOLS: List[ToolQuery] = [
    ToolQuery("Claude Code", '"Co-Authored-By: Claude" committer-date:{date}', date(2025, 10, 8)),
    ToolQuery("Cursor", '"Co-authored-by: Cursor" committer-date:{date}', date(2025, 10, 8)),
    ToolQuery("GitHub Copilot", "author:copilot-swe-agent committer-date:{date}", date(2025, 10, 8)),
    ToolQuery("Aider", '"Co-authored-by: aider" committer-date:{date}', date(2025, 10, 8)),
    ToolQuery("Gemini CLI", '"gemini-code-assist" committer-date:{date}', date(2025, 10, 8)),
    ToolQuery("Devin", "author-email:bot@devin.ai committer-date:{date}", date(2025, 10, 8)),
]


@dataclass
class ToolScanStats:
    days_counted: int = 0
    errors: int = 0
    by_tool: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {"days_counted": self.days_counted, "errors": self.errors, "by_tool": dict(self.by_tool)}


class ToolScanJob:
    """Resumable daily commit counter for a fixed table of tools."""

    def __init__(
        self,
        store: RepoStore,
        github: GitHubClient,
        tools: Sequence[ToolQuery] = tuple(TOOLS),
        today: Optional[date] = None,
        lag_days: int = INDEX_LAG_DAYS,
    ):
        self.store = store
        self.github = github
        self.tools = list(tools)
        self.today = today or datetime.now(timezone.utc).date()
        self.lag_days = lag_days

    async def _aggregate_repo_id(self, dry_run: bool) -> Optional[int]:
        if dry_run:
            found = await self.store.get_repositories_by_github_ids([AGGREGATE_REPOSITORY.github_id])
            repo = found.get(AGGREGATE_REPOSITORY.github_id)
            return repo.id if repo else None
        return await self.store.upsert_repository(AGGREGATE_REPOSITORY)

    async def _first_pending_day(self, repo_id: Optional[int], tool: ToolQuery) -> date:
        if repo_id is None:
            return tool.start_date
        latest = await self.store.latest_tool_period(repo_id, tool.label)
        if latest is None:
            return tool.start_date
        return max(tool.start_date, date.fromisoformat(latest) + timedelta(days=1))

    async def run(self, dry_run: bool = False) -> ToolScanStats:
        stats = ToolScanStats()
        repo_id = await self._aggregate_repo_id(dry_run)
        last_day = self.today - timedelta(days=self.lag_days)

        for tool in self.tools:
            day = await self._first_pending_day(repo_id, tool)
            counted = 0
            if day > last_day:
                logger.info(f"{tool.label}: up to date")

            while day <= last_day:
                try:
                    count = await self.github.count_commits(tool.query(day))
                except FetchError as e:
                    logger.warning(f"{tool.label} {day.isoformat()}: {e}; resuming here next run")
                    stats.errors += 1
                    break

                logger.info(f"{tool.label} {day.isoformat()}: {count:,} commits")
                if not dry_run and repo_id is not None:
                    await self.store.upsert_tool_contribution(repo_id, tool.label, count, day.isoformat())
                counted += 1
                day += timedelta(days=1)

            stats.by_tool[tool.label] = counted
            stats.days_counted += counted

        logger.info(f"Tool scan complete: {stats.days_counted} tool-days counted, {stats.errors} errors")
        return stats
