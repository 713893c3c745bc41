"""
Tests for the Hacker News collector.

Covers link extraction edge cases, the search client (via
httpx.MockTransport) and the mention strategy (via mocks).
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
import httpx

from collectors.base import StrategyStatus
from collectors.fetcher import FetchError, NotFoundError, RateLimitedFetcher
from collectors.github import GitHubRepo
from collectors.hacker_news import (
    HN_ALGOLIA_API,
    ForumHit,
    HackerNewsClient,
    HackerNewsMentionStrategy,
    extract_github_repos,
)
from utils.rate_limiter import QuotaGovernor

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


async def no_sleep(seconds: float) -> None:
    return None


class TestExtractGithubRepos:
    """Test owner/name extraction from free text"""

    def test_plain_url(self):
        assert extract_github_repos("https://github.com/acme/widget") == [("acme", "widget")]

    def test_strips_git_suffix_and_trailing_dot(self):
        text = "clone github.com/acme/widget.git or see github.com/acme/other."
        assert extract_github_repos(text) == [("acme", "widget"), ("acme", "other")]

    def test_fragment_and_query_excluded(self):
        assert extract_github_repos("https://github.com/acme/widget#readme") == [("acme", "widget")]
        assert extract_github_repos("https://github.com/acme/widget?tab=readme") == [("acme", "widget")]

    def test_html_escaped_comment_body(self):
        text = 'see <a href="https:&#x2F;&#x2F;github.com&#x2F;acme&#x2F;widget">repo</a>'
        assert extract_github_repos(text) == [("acme", "widget")]

    def test_rejects_site_sections(self):
        assert extract_github_repos("https://github.com/orgs/acme") == []
        assert extract_github_repos("https://github.com/sponsors/someone") == []
        assert extract_github_repos("https://github.com/topics/llm") == []

    def test_deep_links_resolve_to_repository(self):
        assert extract_github_repos("https://github.com/acme/widget/issues/12") == [("acme", "widget")]

    def test_empty(self):
        assert extract_github_repos(None) == []
        assert extract_github_repos("no links here") == []


class TestForumHit:
    """Test hit decoding"""

    def test_comment_text_used(self):
        hit = ForumHit.from_api({"objectID": 5, "comment_text": "github.com/acme/widget rocks"})

        assert hit.object_id == "5"
        assert hit.repo_links() == [("acme", "widget")]

    def test_story_with_url_and_title(self):
        hit = ForumHit.from_api({
            "objectID": "1",
            "title": "Show HN: github.com/acme/tool",
            "url": "https://github.com/acme/widget",
        })
        assert hit.repo_links() == [("acme", "widget"), ("acme", "tool")]

    def test_not_a_dict(self):
        assert ForumHit.from_api("hit") is None


def make_hn(handler):
    requests = []

    def recording(request):
        requests.append(request)
        return handler(request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    fetcher = RateLimitedFetcher(
        http, QuotaGovernor("hacker_news", sleep=no_sleep), base_url=HN_ALGOLIA_API, sleep=no_sleep,
    )
    return HackerNewsClient(fetcher), requests


class TestHackerNewsClient:
    """Test forum search calls"""

    @pytest.mark.asyncio
    async def test_recent_hits_filters_by_time_and_tag(self):
        since = datetime(2025, 3, 1, tzinfo=timezone.utc)
        client, requests = make_hn(lambda request: httpx.Response(200, json={
            "nbHits": 2,
            "hits": [{"objectID": "1", "url": "https://github.com/acme/widget"}, "junk"],
        }))

        hits = await client.recent_hits("story", since)

        assert [h.object_id for h in hits] == ["1"]
        params = requests[0].url.params
        assert requests[0].url.path == "/api/v1/search"
        assert params["tags"] == "story"
        assert params["numericFilters"] == f"created_at_i>{int(since.timestamp())}"

    @pytest.mark.asyncio
    async def test_count_mentions_reads_total(self):
        client, requests = make_hn(lambda request: httpx.Response(200, json={"nbHits": 17, "hits": []}))

        count = await client.count_mentions("acme", "widget", since=NOW)

        assert count == 17
        assert requests[0].url.params["query"] == "acme/widget"

    @pytest.mark.asyncio
    async def test_count_mentions_malformed_total(self):
        client, _ = make_hn(lambda request: httpx.Response(200, json={"nbHits": "lots"}))

        assert await client.count_mentions("acme", "widget", since=NOW) == 0

    @pytest.mark.asyncio
    async def test_search_failure_raises(self):
        client, _ = make_hn(lambda request: httpx.Response(503))

        with pytest.raises(FetchError):
            await client.count_mentions("acme", "widget", since=NOW)


class TestHackerNewsMentionStrategy:
    """Test the mention discovery strategy"""

    def hn_with_hits(self, stories, comments):
        hn = MagicMock()

        async def recent_hits(tag, since):
            return stories if tag == "story" else comments

        hn.recent_hits = AsyncMock(side_effect=recent_hits)
        return hn

    @pytest.mark.asyncio
    async def test_pairs_deduplicated_case_insensitively(self):
        hn = self.hn_with_hits(
            [ForumHit("1", url="https://github.com/Acme/Widget")],
            [ForumHit("2", text="try github.com/acme/widget and github.com/other/thing")],
        )
        strategy = HackerNewsMentionStrategy(hn, now=NOW)

        pairs = await strategy.collect_pairs()

        assert pairs == [("Acme", "Widget"), ("other", "thing")]

    @pytest.mark.asyncio
    async def test_without_github_client_candidates_have_no_id(self):
        hn = self.hn_with_hits([ForumHit("1", url="https://github.com/acme/widget")], [])

        result = await HackerNewsMentionStrategy(hn, now=NOW).run()

        assert result.candidates[0].external_id is None
        assert result.candidates[0].full_name == "acme/widget"
        assert result.candidates[0].source == "hacker_news"

    @pytest.mark.asyncio
    async def test_resolves_ids_and_skips_missing(self):
        hn = self.hn_with_hits(
            [ForumHit("1", url="https://github.com/acme/widget")],
            [ForumHit("2", text="github.com/acme/deleted github.com/acme/flaky")],
        )
        github = MagicMock()

        async def get_repository(owner, name):
            if name == "deleted":
                raise NotFoundError("gone")
            if name == "flaky":
                raise FetchError("HTTP 502")
            return GitHubRepo(github_id=42, owner=owner, name=name, stars=300)

        github.get_repository = AsyncMock(side_effect=get_repository)

        result = await HackerNewsMentionStrategy(hn, github, now=NOW).run()

        assert [c.external_id for c in result.candidates] == [42]
        assert result.candidates[0].stars == 300
        assert result.status == StrategyStatus.PARTIAL_SUCCESS
        assert result.units_failed == 1

    @pytest.mark.asyncio
    async def test_failed_tag_search_keeps_other_tag(self):
        hn = MagicMock()

        async def recent_hits(tag, since):
            if tag == "story":
                raise FetchError("HTTP 503")
            return [ForumHit("2", text="github.com/acme/widget")]

        hn.recent_hits = AsyncMock(side_effect=recent_hits)

        result = await HackerNewsMentionStrategy(hn, now=NOW).run()

        assert result.candidates_found == 1
        assert result.units_failed == 1
