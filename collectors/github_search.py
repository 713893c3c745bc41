"""
GitHub Search Strategies - Discover repositories through the search API.

Three strategies share one GitHubClient (and so one quota governor):

1. CategorySearchStrategy: representative topic tags per directory category,
   filtered by a star floor and a pushed-within bound, top-K by stars.
2. MidTierSearchStrategy: star bands below the category floor's usual
   top-K, partitioned by language so no single query truncates at the
   search API's 1,000-result cap.
3. NewbornSearchStrategy: repositories created within the last 30 days that
   were also pushed recently, across two star bands.

Every query is one unit of work: a failed query is logged and counted, the
remaining queries still run.

Usage:
    client = GitHubClient(fetcher)
    result = await CategorySearchStrategy(client).run()
    print(result.candidates_found)
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from collectors.base import BaseStrategy, Candidate
from collectors.fetcher import FetchError
from collectors.github import GitHubClient, GitHubRepo

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

# Directory category slug -> representative topic tags (most representative first)
CATEGORY_TOPICS: Dict[str, List[str]] = {
    "ai-ml": ["machine-learning", "llm", "artificial-intelligence", "deep-learning", "generative-ai"],
    "developer-tools": ["developer-tools", "cli", "devtools", "productivity", "code-editor"],
    "security": ["security", "cybersecurity", "cryptography", "penetration-testing", "privacy"],
    "data-analytics": ["data-science", "analytics", "database", "data-visualization", "etl"],
    "web-frameworks": ["web-framework", "frontend", "backend", "api", "fullstack"],
    "infrastructure-devops": ["devops", "kubernetes", "docker", "infrastructure", "cloud"],
    "mobile": ["ios", "android", "react-native", "flutter", "mobile"],
    "open-source-utilities": ["utility", "automation", "tools", "open-source", "productivity"],
}

MID_TIER_STAR_BANDS: List[Tuple[int, int]] = [(100, 2000), (2000, 10000)]
TRACKED_LANGUAGES: List[str] = ["Python", "TypeScript", "JavaScript", "Go", "Rust"]

# (low, high) with high=None meaning open-ended
NEWBORN_STAR_BANDS: List[Tuple[int, Optional[int]]] = [(20, 200), (200, None)]


def _date_bound(now: datetime, days: int) -> str:
    return (now - timedelta(days=days)).date().isoformat()


def _star_range(low: int, high: Optional[int]) -> str:
    if high is None:
        return f"stars:>={low}"
    return f"stars:{low}..{high}"


# =============================================================================
# BASE
# =============================================================================

class GitHubSearchStrategy(BaseStrategy):
    """Shared plumbing for strategies that issue repository search queries."""

    def __init__(self, client: GitHubClient, now: Optional[datetime] = None):
        super().__init__()
        self.client = client
        self._now = now

    @property
    def now(self) -> datetime:
        return self._now or datetime.now(timezone.utc)

    async def _search(self, query: str, max_pages: int = 1) -> List[GitHubRepo]:
        """Run one query as one unit of work; failures yield no repos."""
        try:
            repos = await self.client.search_repositories(query, max_pages=max_pages)
        except FetchError as e:
            self._record_unit_failure(f"query '{query}'", e)
            return []
        logger.debug(f"[{self.name}] '{query}' -> {len(repos)} repos")
        return repos


# =============================================================================
# STRATEGIES
# =============================================================================

class CategorySearchStrategy(GitHubSearchStrategy):
    """
    Topic-tag search per directory category.

    Only the first ``tags_per_category`` tags of each category are queried
    to bound quota usage. Results are merged across tags within a category,
    deduplicated by id, and truncated to the ``top_k`` most-starred.
    """

    name = "category_search"

    def __init__(
        self,
        client: GitHubClient,
        categories: Optional[Dict[str, List[str]]] = None,
        tags_per_category: int = 2,
        min_stars: int = 50,
        pushed_within_days: int = 90,
        top_k: int = 30,
        now: Optional[datetime] = None,
    ):
        super().__init__(client, now=now)
        self.categories = categories if categories is not None else CATEGORY_TOPICS
        self.tags_per_category = tags_per_category
        self.min_stars = min_stars
        self.pushed_within_days = pushed_within_days
        self.top_k = top_k

    def build_queries(self, category: str) -> List[str]:
        pushed_since = _date_bound(self.now, self.pushed_within_days)
        topics = self.categories.get(category, [])[: self.tags_per_category]
        return [f"topic:{topic} stars:>{self.min_stars} pushed:>{pushed_since}" for topic in topics]

    async def _discover(self) -> List[Candidate]:
        candidates: List[Candidate] = []

        for category in self.categories:
            by_id: Dict[int, GitHubRepo] = {}
            for query in self.build_queries(category):
                for repo in await self._search(query):
                    by_id.setdefault(repo.github_id, repo)

            ranked = sorted(by_id.values(), key=lambda r: r.stars, reverse=True)[: self.top_k]
            logger.info(f"Category '{category}': {len(by_id)} repos, keeping top {len(ranked)}")
            candidates.extend(repo.to_candidate(category_hint=category) for repo in ranked)

        return candidates


class MidTierSearchStrategy(GitHubSearchStrategy):
    """
    Star-band search restricted to recent pushes.

    Each band is split into one query per tracked language plus one
    catch-all query excluding all of them.
    """

    name = "mid_tier_search"

    def __init__(
        self,
        client: GitHubClient,
        star_bands: Sequence[Tuple[int, int]] = tuple(MID_TIER_STAR_BANDS),
        languages: Sequence[str] = tuple(TRACKED_LANGUAGES),
        pushed_within_days: int = 7,
        max_pages: int = 2,
        now: Optional[datetime] = None,
    ):
        super().__init__(client, now=now)
        self.star_bands = list(star_bands)
        self.languages = list(languages)
        self.pushed_within_days = pushed_within_days
        self.max_pages = max_pages

    def build_queries(self) -> List[str]:
        pushed_since = _date_bound(self.now, self.pushed_within_days)
        excluded = " ".join(f"-language:{lang}" for lang in self.languages)
        queries = []
        for low, high in self.star_bands:
            base = f"{_star_range(low, high)} pushed:>{pushed_since}"
            queries.extend(f"{base} language:{lang}" for lang in self.languages)
            queries.append(f"{base} {excluded}".strip())
        return queries

    async def _discover(self) -> List[Candidate]:
        candidates: List[Candidate] = []
        for query in self.build_queries():
            repos = await self._search(query, max_pages=self.max_pages)
            candidates.extend(repo.to_candidate() for repo in repos)
        return candidates


class NewbornSearchStrategy(GitHubSearchStrategy):
    """Recently created repositories that are already gathering stars."""

    name = "newborn_search"

    def __init__(
        self,
        client: GitHubClient,
        star_bands: Sequence[Tuple[int, Optional[int]]] = tuple(NEWBORN_STAR_BANDS),
        created_within_days: int = 30,
        pushed_within_days: int = 7,
        max_pages: int = 1,
        now: Optional[datetime] = None,
    ):
        super().__init__(client, now=now)
        self.star_bands = list(star_bands)
        self.created_within_days = created_within_days
        self.pushed_within_days = pushed_within_days
        self.max_pages = max_pages

    def build_queries(self) -> List[str]:
        created_since = _date_bound(self.now, self.created_within_days)
        pushed_since = _date_bound(self.now, self.pushed_within_days)
        return [
            f"created:>{created_since} pushed:>{pushed_since} {_star_range(low, high)}"
            for low, high in self.star_bands
        ]

    async def _discover(self) -> List[Candidate]:
        candidates: List[Candidate] = []
        for query in self.build_queries():
            repos = await self._search(query, max_pages=self.max_pages)
            candidates.extend(repo.to_candidate() for repo in repos)
        return candidates
