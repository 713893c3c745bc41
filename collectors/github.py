"""
GitHub REST Client for Repo Discovery

Every GitHub call in the project goes through this module, and every call
goes through the shared RateLimitedFetcher so that all callers spend the
same account-level quota under one governor.

Payloads are decoded into explicit schema structs at the boundary.
Malformed or missing fields degrade to defaults; only a missing numeric id
or owner/name makes a search item unusable (it is dropped and logged).

Endpoints used:
- GET /search/repositories        (discovery strategies)
- GET /search/commits             (tool attribution counts)
- GET /repos/{owner}/{repo}       (resolution of forum mentions and archive ids)
- GET /repositories/{id}         (daily snapshots)
- GET /repos/{owner}/{repo}/stargazers          (star velocity window)
- GET /repos/{owner}/{repo}/contributors        (contributor count)
- GET /repos/{owner}/{repo}/stats/commit_activity  (30-day commits, may 202)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from collectors.base import Candidate
from collectors.fetcher import FetchError, RateLimitedFetcher
from collectors.retry_strategy import FetchStatus

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

GITHUB_API = "https://api.github.com"
USER_AGENT = "repo-discovery/1.0"

STARGAZER_ACCEPT = "application/vnd.github.v3.star+json"
COMMIT_SEARCH_ACCEPT = "application/vnd.github.cloak-preview+json"

# Search returns at most 1,000 results per query
SEARCH_RESULT_CAP = 1000
# Stargazer pagination stops at page 400 regardless of star count
STARGAZER_PAGE_CAP = 400

STARGAZER_PAGES_SCANNED = 3
CONTRIBUTOR_PAGES_MAX = 5
PER_PAGE = 100


def github_headers(token: Optional[str]) -> Dict[str, str]:
    headers = {
        "Accept": "application/vnd.github+json",
        "User-Agent": USER_AGENT,
        "X-GitHub-Api-Version": "2022-11-28",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


# =============================================================================
# SCHEMA STRUCTS
# =============================================================================

def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


@dataclass
class GitHubRepo:
    """Repository facts decoded from a search item or a repository payload."""
    github_id: int
    owner: str
    name: str
    description: Optional[str] = None
    stars: int = 0
    forks: int = 0
    language: Optional[str] = None
    url: str = ""
    topics: List[str] = field(default_factory=list)
    pushed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @classmethod
    def from_api(cls, item: Any) -> Optional["GitHubRepo"]:
        """
        Decode one repository payload.

        Returns None when the payload lacks a usable id or owner/name.
        """
        if not isinstance(item, dict):
            return None

        github_id = _as_int(item.get("id"), default=-1)
        if github_id < 0:
            return None

        owner = None
        owner_obj = item.get("owner")
        if isinstance(owner_obj, dict):
            owner = _as_str(owner_obj.get("login"))
        name = _as_str(item.get("name"))

        full_name = _as_str(item.get("full_name"))
        if (not owner or not name) and full_name and "/" in full_name:
            owner, name = full_name.split("/", 1)

        if not owner or not name:
            return None

        topics = item.get("topics")
        return cls(
            github_id=github_id,
            owner=owner,
            name=name,
            description=_as_str(item.get("description")),
            stars=max(_as_int(item.get("stargazers_count")), 0),
            forks=max(_as_int(item.get("forks_count")), 0),
            language=_as_str(item.get("language")),
            url=_as_str(item.get("html_url")) or f"https://github.com/{owner}/{name}",
            topics=[t for t in topics if isinstance(t, str)] if isinstance(topics, list) else [],
            pushed_at=_parse_timestamp(item.get("pushed_at")),
            created_at=_parse_timestamp(item.get("created_at")),
        )

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "stars": self.stars,
            "forks": self.forks,
            "language": self.language,
            "url": self.url,
            "topics": list(self.topics),
            "pushed_at": self.pushed_at.isoformat() if self.pushed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def to_candidate(self, **extra: Any) -> Candidate:
        metadata = self.to_metadata()
        metadata.update(extra)
        return Candidate(
            external_id=self.github_id,
            owner=self.owner,
            name=self.name,
            raw_metadata=metadata,
        )


@dataclass
class StarVelocity:
    """New stars inside the 7- and 30-day windows."""
    stars_7d: int = 0
    stars_30d: int = 0


# =============================================================================
# CLIENT
# =============================================================================

class GitHubClient:
    """
    Typed wrapper over the GitHub REST API.

    Search endpoints have their own, much smaller quota than the rest of the
    API, so they go through ``search_fetcher`` (its own governor) when one is
    given.

    Methods raise FetchError (or its NotFoundError / QuotaExhaustedError
    subclasses) when a call produces no usable payload. Callers decide how
    far the failure propagates.

    Usage:
        client = GitHubClient(core_fetcher, search_fetcher=search_fetcher)
        repos = await client.search_repositories("topic:llm stars:>50")
        velocity = await client.star_velocity("owner", "repo", total_stars=1200)
    """

    def __init__(self, fetcher: RateLimitedFetcher, search_fetcher: Optional[RateLimitedFetcher] = None):
        self.fetcher = fetcher
        self.search_fetcher = search_fetcher or fetcher

    async def search_repositories(
        self,
        query: str,
        sort: str = "stars",
        order: str = "desc",
        per_page: int = PER_PAGE,
        max_pages: int = 1,
    ) -> List[GitHubRepo]:
        """
        Run one repository search, following pages up to ``max_pages``.

        A failure on the first page raises; a failure on a later page
        keeps what was already collected.
        """
        repos: List[GitHubRepo] = []
        max_pages = min(max_pages, SEARCH_RESULT_CAP // per_page)

        for page in range(1, max_pages + 1):
            result = await self.search_fetcher.fetch(
                "/search/repositories",
                params={"q": query, "sort": sort, "order": order, "per_page": per_page, "page": page},
            )
            if not result.ok:
                if page == 1:
                    result.unwrap()
                logger.warning(f"Search page {page} for '{query}' failed: {result.error}")
                break

            payload = result.payload if isinstance(result.payload, dict) else {}
            items = payload.get("items")
            items = items if isinstance(items, list) else []

            for item in items:
                repo = GitHubRepo.from_api(item)
                if repo is None:
                    logger.debug(f"Dropping malformed search item for '{query}'")
                    continue
                repos.append(repo)

            total = _as_int(payload.get("total_count"))
            if total >= SEARCH_RESULT_CAP and page == 1:
                logger.debug(f"Query '{query}' matches {total} repos; results truncated at the search cap")

            if len(items) < per_page:
                break

        return repos

    async def get_repository(self, owner: str, name: str) -> GitHubRepo:
        """Fetch one repository. Raises NotFoundError for deleted/private repos."""
        payload = (await self.fetcher.fetch(f"/repos/{owner}/{name}")).unwrap()
        repo = GitHubRepo.from_api(payload)
        if repo is None:
            raise FetchError(f"Malformed repository payload for {owner}/{name}")
        return repo

    async def get_repository_by_id(self, github_id: int) -> GitHubRepo:
        """Fetch by numeric id, which survives renames and transfers."""
        payload = (await self.fetcher.fetch(f"/repositories/{github_id}")).unwrap()
        repo = GitHubRepo.from_api(payload)
        if repo is None:
            raise FetchError(f"Malformed repository payload for id {github_id}")
        return repo

    async def star_velocity(
        self,
        owner: str,
        name: str,
        total_stars: int,
        now: Optional[datetime] = None,
    ) -> StarVelocity:
        """
        Count stars added in the last 7 and 30 days.

        Stargazers are listed oldest first with timestamps, so the scan starts
        at the last page and walks backwards, stopping once a page reaches
        past the 30-day window or after STARGAZER_PAGES_SCANNED pages.
        """
        if total_stars <= 0:
            return StarVelocity()

        now = now or datetime.now(timezone.utc)
        week_ago = now - timedelta(days=7)
        month_ago = now - timedelta(days=30)

        last_page = min(math.ceil(total_stars / PER_PAGE), STARGAZER_PAGE_CAP)
        first_page = max(1, last_page - STARGAZER_PAGES_SCANNED + 1)
        velocity = StarVelocity()

        for page in range(last_page, first_page - 1, -1):
            entries = (await self.fetcher.fetch(
                f"/repos/{owner}/{name}/stargazers",
                params={"per_page": PER_PAGE, "page": page},
                headers={"Accept": STARGAZER_ACCEPT},
            )).unwrap()

            if not isinstance(entries, list) or not entries:
                continue

            oldest: Optional[datetime] = None
            for entry in entries:
                starred_at = _parse_timestamp(entry.get("starred_at")) if isinstance(entry, dict) else None
                if starred_at is None:
                    continue
                if oldest is None or starred_at < oldest:
                    oldest = starred_at
                if starred_at >= month_ago:
                    velocity.stars_30d += 1
                if starred_at >= week_ago:
                    velocity.stars_7d += 1

            if oldest is not None and oldest < month_ago:
                break

        return velocity

    async def contributor_count(self, owner: str, name: str) -> int:
        """Count contributors, capped at CONTRIBUTOR_PAGES_MAX pages."""
        count = 0
        for page in range(1, CONTRIBUTOR_PAGES_MAX + 1):
            data = (await self.fetcher.fetch(
                f"/repos/{owner}/{name}/contributors",
                params={"per_page": PER_PAGE, "page": page},
            )).unwrap()
            # Empty repositories answer 204 with no body
            if not isinstance(data, list):
                break
            count += len(data)
            if len(data) < PER_PAGE:
                break
        return count

    async def commits_last_30d(self, owner: str, name: str) -> int:
        """
        Sum the last four weeks of the weekly commit-activity stats.

        The stats endpoint answers 202 while it computes; the fetcher re-asks
        once. A second 202 raises so the caller can default to zero.
        """
        result = await self.fetcher.fetch_until_ready(f"/repos/{owner}/{name}/stats/commit_activity")
        if result.status == FetchStatus.PENDING:
            raise FetchError(f"Commit stats for {owner}/{name} still computing", result)
        weeks = result.unwrap()

        if not isinstance(weeks, list):
            return 0
        recent = weeks[-4:]
        return sum(max(_as_int(week.get("total")), 0) for week in recent if isinstance(week, dict))

    async def count_commits(self, query: str) -> int:
        """Total number of commits matching a commit-search query."""
        payload = (await self.search_fetcher.fetch(
            "/search/commits",
            params={"q": query, "per_page": 1},
            headers={"Accept": COMMIT_SEARCH_ACCEPT},
        )).unwrap()
        if not isinstance(payload, dict):
            raise FetchError(f"Malformed commit search payload for '{query}'")
        return max(_as_int(payload.get("total_count")), 0)
