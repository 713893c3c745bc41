"""
Tests for the GitHub search strategies.

The GitHub client is replaced with an AsyncMock; query construction and
result handling are what is under test.
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from collectors.base import StrategyStatus
from collectors.fetcher import FetchError
from collectors.github import GitHubRepo
from collectors.github_search import (
    CATEGORY_TOPICS,
    CategorySearchStrategy,
    MidTierSearchStrategy,
    NewbornSearchStrategy,
)

NOW = datetime(2025, 3, 1, tzinfo=timezone.utc)


def repo(github_id, stars, name=None):
    return GitHubRepo(github_id=github_id, owner="acme", name=name or f"r{github_id}", stars=stars, forks=1)


def mock_client(search_results=None, side_effect=None):
    client = MagicMock()
    client.search_repositories = AsyncMock(return_value=search_results or [], side_effect=side_effect)
    return client


class TestCategorySearchStrategy:
    """Test topic-tag category search"""

    def test_build_queries_uses_first_tags(self):
        strategy = CategorySearchStrategy(mock_client(), tags_per_category=2, now=NOW)

        queries = strategy.build_queries("ai-ml")

        assert queries == [
            "topic:machine-learning stars:>50 pushed:>2024-12-01",
            "topic:llm stars:>50 pushed:>2024-12-01",
        ]

    def test_every_category_has_five_topics(self):
        assert len(CATEGORY_TOPICS) == 8
        assert all(len(topics) == 5 for topics in CATEGORY_TOPICS.values())

    @pytest.mark.asyncio
    async def test_dedupes_and_keeps_top_k_by_stars(self):
        client = mock_client()
        client.search_repositories.side_effect = [
            [repo(1, 500), repo(2, 300)],
            [repo(2, 300), repo(3, 900), repo(4, 50)],
        ]
        strategy = CategorySearchStrategy(
            client, categories={"ai-ml": ["llm", "rag"]}, top_k=2, now=NOW,
        )

        result = await strategy.run()

        assert result.status == StrategyStatus.SUCCESS
        assert [c.external_id for c in result.candidates] == [3, 1]
        assert all(c.raw_metadata["category_hint"] == "ai-ml" for c in result.candidates)
        assert all(c.source == "category_search" for c in result.candidates)

    @pytest.mark.asyncio
    async def test_failed_query_is_partial_success(self):
        client = mock_client()
        client.search_repositories.side_effect = [FetchError("HTTP 422"), [repo(9, 100)]]
        strategy = CategorySearchStrategy(client, categories={"security": ["security", "privacy"]}, now=NOW)

        result = await strategy.run()

        assert result.status == StrategyStatus.PARTIAL_SUCCESS
        assert result.units_failed == 1
        assert [c.external_id for c in result.candidates] == [9]


class TestMidTierSearchStrategy:
    """Test star-band search partitioned by language"""

    def test_queries_partition_each_band_by_language(self):
        strategy = MidTierSearchStrategy(mock_client(), languages=["Python", "Go"], now=NOW)

        queries = strategy.build_queries()

        assert queries == [
            "stars:100..2000 pushed:>2025-02-22 language:Python",
            "stars:100..2000 pushed:>2025-02-22 language:Go",
            "stars:100..2000 pushed:>2025-02-22 -language:Python -language:Go",
            "stars:2000..10000 pushed:>2025-02-22 language:Python",
            "stars:2000..10000 pushed:>2025-02-22 language:Go",
            "stars:2000..10000 pushed:>2025-02-22 -language:Python -language:Go",
        ]

    @pytest.mark.asyncio
    async def test_requests_two_pages_per_query(self):
        client = mock_client([repo(1, 150)])
        strategy = MidTierSearchStrategy(client, star_bands=[(100, 2000)], languages=["Rust"], now=NOW)

        result = await strategy.run()

        assert client.search_repositories.await_count == 2
        for call in client.search_repositories.await_args_list:
            assert call.kwargs["max_pages"] == 2
        assert result.candidates_found == 2


class TestNewbornSearchStrategy:
    """Test recently-created repository search"""

    def test_queries(self):
        strategy = NewbornSearchStrategy(mock_client(), now=NOW)

        assert strategy.build_queries() == [
            "created:>2025-01-30 pushed:>2025-02-22 stars:20..200",
            "created:>2025-01-30 pushed:>2025-02-22 stars:>=200",
        ]

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_strategy_without_raising(self):
        client = mock_client(side_effect=RuntimeError("boom"))
        strategy = NewbornSearchStrategy(client, now=NOW)

        result = await strategy.run()

        assert result.status == StrategyStatus.ERROR
        assert result.candidates == []
        assert "RuntimeError" in result.error_message
