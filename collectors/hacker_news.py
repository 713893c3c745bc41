"""
Hacker News Collector - Discover repositories through forum mentions.

API: Algolia HN Search API (no authentication required, no quota headers)

Two uses:
1. HackerNewsMentionStrategy: stories and comments from the last 24 hours
   that link to github.com; owner/name pairs are pulled out of URLs, titles
   and bodies, deduplicated, and resolved to numeric ids through the
   GitHub client.
2. HackerNewsClient.count_mentions(): number of posts/comments mentioning
   ``owner/name`` since a timestamp (feeds the mention signals).

The API publishes no quota headers, so every request first takes a token
from a conservative courtesy limiter.

Usage:
    hn = HackerNewsClient(fetcher, limiter=pool.courtesy_limiter("hacker_news"))
    result = await HackerNewsMentionStrategy(hn, github_client).run()

    mentions = await hn.count_mentions("owner", "repo", since=week_ago)
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from collectors.base import BaseStrategy, Candidate
from collectors.fetcher import FetchError, NotFoundError, RateLimitedFetcher
from collectors.github import GitHubClient
from utils.rate_limiter import AsyncRateLimiter

logger = logging.getLogger(__name__)

# Algolia-powered Hacker News Search API
HN_ALGOLIA_API = "https://hn.algolia.com/api/v1"

GITHUB_REPO_RE = re.compile(r"github\.com/([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+)")

# Second path segments that are never repository names
NON_REPO_SEGMENTS = frozenset({
    "issues", "pull", "blob", "tree", "wiki", "releases", "actions", "settings",
})

# First path segments that are site sections, not owners
NON_OWNER_SEGMENTS = frozenset({
    "orgs", "sponsors", "topics", "features", "marketplace", "collections",
    "settings", "apps", "about", "pricing", "trending", "explore",
})


# =============================================================================
# LINK EXTRACTION
# =============================================================================

def extract_github_repos(text: Optional[str]) -> List[Tuple[str, str]]:
    """
    Pull ``(owner, name)`` pairs out of free text.

    Comment bodies arrive HTML-escaped (``&#x2F;`` for slashes), so the text
    is unescaped first. ``.git`` suffixes and trailing punctuation are
    stripped; anything after ``#`` or ``?`` is already excluded by the
    pattern.
    """
    if not text:
        return []

    results: List[Tuple[str, str]] = []
    for match in GITHUB_REPO_RE.finditer(html.unescape(text)):
        owner, name = match.group(1), match.group(2)
        if name.endswith(".git"):
            name = name[: -len(".git")]
        name = name.rstrip(".")

        if not owner or not name:
            continue
        if name.lower() in NON_REPO_SEGMENTS or owner.lower() in NON_OWNER_SEGMENTS:
            continue
        results.append((owner, name))

    return results


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class ForumHit:
    """One search hit, decoded defensively."""
    object_id: str
    title: str = ""
    url: str = ""
    text: str = ""

    @classmethod
    def from_api(cls, hit: Any) -> Optional["ForumHit"]:
        if not isinstance(hit, dict):
            return None

        def text_field(key: str) -> str:
            value = hit.get(key)
            return value if isinstance(value, str) else ""

        return cls(
            object_id=str(hit.get("objectID", "")),
            title=text_field("title"),
            url=text_field("url"),
            text=text_field("story_text") or text_field("comment_text"),
        )

    def repo_links(self) -> List[Tuple[str, str]]:
        links = extract_github_repos(self.url) + extract_github_repos(self.title)
        if "github.com" in self.text:
            links.extend(extract_github_repos(self.text))
        return links


# =============================================================================
# CLIENT
# =============================================================================

class HackerNewsClient:
    """Thin search client over the shared fetcher, throttled by a courtesy limiter."""

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        limiter: Optional[AsyncRateLimiter] = None,
    ):
        self.fetcher = fetcher
        self.limiter = limiter or AsyncRateLimiter()

    async def search(self, params: Dict[str, Any]) -> Dict[str, Any]:
        await self.limiter.acquire()
        payload = (await self.fetcher.fetch("/search", params=params)).unwrap()
        return payload if isinstance(payload, dict) else {}

    async def recent_hits(self, tag: str, since: datetime, hits_per_page: int = 100) -> List[ForumHit]:
        """Hits of one kind (story/comment) mentioning github.com since ``since``."""
        payload = await self.search({
            "query": "github.com",
            "tags": tag,
            "numericFilters": f"created_at_i>{int(since.timestamp())}",
            "hitsPerPage": hits_per_page,
        })
        raw_hits = payload.get("hits")
        hits = [ForumHit.from_api(h) for h in raw_hits] if isinstance(raw_hits, list) else []
        logger.info(f"HN {tag}s: {payload.get('nbHits', 0)} hits (fetched {len(hits)})")
        return [h for h in hits if h is not None]

    async def count_mentions(self, owner: str, name: str, since: datetime) -> int:
        """Number of posts and comments mentioning ``owner/name`` since ``since``."""
        payload = await self.search({
            "query": f"{owner}/{name}",
            "numericFilters": f"created_at_i>{int(since.timestamp())}",
            "hitsPerPage": 1,
        })
        hits = payload.get("nbHits", 0)
        return hits if isinstance(hits, int) and hits > 0 else 0


# =============================================================================
# STRATEGY
# =============================================================================

class HackerNewsMentionStrategy(BaseStrategy):
    """
    Repositories linked from recent Hacker News stories and comments.

    When a GitHubClient is supplied each extracted pair is resolved to its
    numeric id (one call per unique pair); pairs that no longer exist are
    skipped. Without a client, candidates carry owner/name only.
    """

    name = "hacker_news"

    TAGS = ("story", "comment")

    def __init__(
        self,
        hn_client: HackerNewsClient,
        github_client: Optional[GitHubClient] = None,
        lookback_hours: int = 24,
        now: Optional[datetime] = None,
    ):
        super().__init__()
        self.hn = hn_client
        self.github = github_client
        self.lookback_hours = lookback_hours
        self._now = now

    async def collect_pairs(self) -> List[Tuple[str, str]]:
        """Unique ``(owner, name)`` pairs in first-seen order, keyed case-insensitively."""
        since = (self._now or datetime.now(timezone.utc)) - timedelta(hours=self.lookback_hours)
        pairs: Dict[str, Tuple[str, str]] = {}

        for tag in self.TAGS:
            try:
                hits = await self.hn.recent_hits(tag, since)
            except FetchError as e:
                self._record_unit_failure(f"{tag} search", e)
                continue

            for hit in hits:
                for owner, name in hit.repo_links():
                    pairs.setdefault(f"{owner}/{name}".lower(), (owner, name))

        logger.info(f"Unique GitHub repos from HN: {len(pairs)}")
        return list(pairs.values())

    async def _discover(self) -> List[Candidate]:
        pairs = await self.collect_pairs()

        if self.github is None:
            return [Candidate(external_id=None, owner=o, name=n) for o, n in pairs]

        candidates: List[Candidate] = []
        for owner, name in pairs:
            try:
                repo = await self.github.get_repository(owner, name)
            except NotFoundError:
                logger.info(f"Skipping {owner}/{name}: not found on GitHub")
                continue
            except FetchError as e:
                self._record_unit_failure(f"resolve {owner}/{name}", e)
                continue
            candidates.append(repo.to_candidate(mentioned_as=f"{owner}/{name}"))

        return candidates
