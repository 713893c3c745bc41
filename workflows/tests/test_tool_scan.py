"""Tests for the resumable tool attribution scan."""
import pytest
from datetime import date
from unittest.mock import AsyncMock, MagicMock

from collectors.fetcher import FetchError
from storage.repo_store import RepoStore
from workflows.tool_scan import AGGREGATE_REPOSITORY, ToolQuery, ToolScanJob

TOOLS = [
    ToolQuery("Tool A", '"Co-authored-by: A" committer-date:{date}', date(2025, 3, 1)),
    ToolQuery("Tool B", "author:b-bot committer-date:{date}", date(2025, 3, 1)),
]
TODAY = date(2025, 3, 6)


@pytest.fixture
async def store():
    store = RepoStore(":memory:")
    await store.initialize()
    yield store
    await store.close()


def make_github(fail_on=None, base=0):
    async def count_commits(query):
        if fail_on and fail_on in query:
            raise FetchError("search/commits: rate_limited (HTTP 403)")
        day = int(query[-2:])
        return base + day * (10 if "Co-authored-by" in query else 1)

    github = MagicMock()
    github.count_commits = AsyncMock(side_effect=count_commits)
    return github


async def aggregate_id(store):
    found = await store.get_repositories_by_github_ids([AGGREGATE_REPOSITORY.github_id])
    return found[0].id


class TestToolQuery:
    def test_query_substitutes_date(self):
        assert TOOLS[1].query(date(2025, 3, 4)) == "author:b-bot committer-date:2025-03-04"


class TestToolScanJob:
    """Test lagged, resumable daily counting."""

    @pytest.mark.asyncio
    async def test_counts_up_to_index_lag(self, store):
        stats = await ToolScanJob(store, make_github(), tools=TOOLS, today=TODAY).run()

        # 2025-03-01 through 2025-03-04; the last two days are still indexing
        assert stats.by_tool == {"Tool A": 4, "Tool B": 4}
        rows = await store.get_tool_contributions(await aggregate_id(store), "Tool A")
        assert [r["period"] for r in rows] == ["2025-03-01", "2025-03-02", "2025-03-03", "2025-03-04"]
        assert rows[0]["count"] == 10

    @pytest.mark.asyncio
    async def test_failed_day_stops_tool_and_rerun_resumes(self, store):
        first = await ToolScanJob(store, make_github(fail_on="b-bot committer-date:2025-03-03"),
                                  tools=TOOLS, today=TODAY).run()

        assert first.by_tool == {"Tool A": 4, "Tool B": 2}
        assert first.errors == 1

        github = make_github()
        second = await ToolScanJob(store, github, tools=TOOLS, today=TODAY).run()

        assert second.by_tool == {"Tool A": 0, "Tool B": 2}
        queried = [call.args[0] for call in github.count_commits.await_args_list]
        assert queried == [
            "author:b-bot committer-date:2025-03-03",
            "author:b-bot committer-date:2025-03-04",
        ]
        repo_id = await aggregate_id(store)
        assert len(await store.get_tool_contributions(repo_id, "Tool B")) == 4

    @pytest.mark.asyncio
    async def test_recount_replaces_not_accumulates(self, store):
        await ToolScanJob(store, make_github(), tools=TOOLS[:1], today=date(2025, 3, 3)).run()
        repo_id = await aggregate_id(store)
        # A later count for the same day overwrites the earlier one
        await store.upsert_tool_contribution(repo_id, "Tool A", 999, "2025-03-01")

        rows = await store.get_tool_contributions(repo_id, "Tool A")

        assert rows == [{"label": "Tool A", "count": 999, "period": "2025-03-01"}]

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, store):
        stats = await ToolScanJob(store, make_github(), tools=TOOLS, today=TODAY).run(dry_run=True)

        assert stats.days_counted == 8
        assert await store.get_repositories_by_github_ids([0]) == {}

    @pytest.mark.asyncio
    async def test_aggregate_row_hidden_from_repository_scans(self, store):
        await ToolScanJob(store, make_github(), tools=TOOLS, today=TODAY).run()

        assert [r async for r in store.iter_repositories()] == []
        assert (await store.get_stats())["repositories"] == 0
