"""
End-to-end tests for the discovery pipeline against a fake upstream.

Tests the complete flow:
1. Archive discovery with failed and unreadable hours
2. Resolution, signal collection and scoring
3. Persistence through the re-score policy
4. Daily snapshots re-run on the same day

Every remote service is served by one httpx.MockTransport, so no network
access is needed.
"""

import gzip
import json
import pytest
from datetime import datetime, timedelta, timezone
import httpx

from workflows.config import PipelineConfig
from workflows.pipeline import DiscoveryPipeline

NOW = datetime(2025, 3, 1, 6, 0, tzinfo=timezone.utc)
ARCHIVE_DAY = "2025-02-28"

ROCKET = {
    "id": 101,
    "owner": {"login": "acme"},
    "name": "rocket",
    "full_name": "acme/rocket",
    "description": "A fast LLM agent runtime",
    "stargazers_count": 250,
    "forks_count": 40,
    "language": "Rust",
    "html_url": "https://github.com/acme/rocket",
    "topics": ["llm", "agents"],
}


def star(repo_id, name):
    return {"type": "WatchEvent", "repo": {"id": repo_id, "name": name}}


def gz_lines(lines):
    return gzip.compress(("\n".join(lines) + "\n").encode())


def stream(data, size=64):
    async def body():
        for start in range(0, len(data), size):
            yield data[start:start + size]
    return body()


class FakeUpstream:
    """Serves archive hours, GitHub REST and forum search from fixed data."""

    def __init__(self):
        self.requests = []
        events = [star(101, "acme/rocket")] * 6 + [star(102, "acme/small")] * 2
        self.hours = {
            0: gz_lines([json.dumps(e) for e in events]),
            # Zero usable lines: must count 0, not fail
            2: gz_lines(["not json", "[1, 2, 3]"]),
        }

    async def __call__(self, request):
        self.requests.append(request)
        host, path = request.url.host, request.url.path

        if host == "data.gharchive.org":
            for hour, body in self.hours.items():
                if path == f"/{ARCHIVE_DAY}-{hour}.json.gz":
                    return httpx.Response(200, content=stream(body))
            if path == f"/{ARCHIVE_DAY}-1.json.gz":
                return httpx.Response(500)
            return httpx.Response(404)

        if host == "hn.algolia.com":
            return httpx.Response(200, json={"nbHits": 3, "hits": []})

        if host == "api.github.com":
            if path in ("/repos/acme/rocket", "/repositories/101"):
                return httpx.Response(200, json=ROCKET)
            if path == "/repos/acme/rocket/stargazers":
                starred_at = (NOW - timedelta(days=2)).isoformat().replace("+00:00", "Z")
                return httpx.Response(200, json=[{"starred_at": starred_at}] * 10)
            if path == "/repos/acme/rocket/contributors":
                return httpx.Response(200, json=[{"login": f"dev{i}"} for i in range(12)])
            if path == "/repos/acme/rocket/stats/commit_activity":
                return httpx.Response(200, json=[{"total": 5}] * 6)
            return httpx.Response(404, json={"message": "Not Found"})

        return httpx.Response(404)

    def paths(self, host):
        return [r.url.path for r in self.requests if r.url.host == host]


async def no_sleep(seconds):
    return None


@pytest.fixture
async def upstream():
    fake = FakeUpstream()
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake))
    fake.client = client
    yield fake
    await client.aclose()


def make_pipeline(upstream, db_path):
    config = PipelineConfig(github_token="test-token", db_path=str(db_path))
    return DiscoveryPipeline(config, http_client=upstream.client, sleep=no_sleep, now=NOW)


class TestArchiveToScore:
    """Archive discovery through scoring and persistence"""

    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_failed_and_empty_hours_do_not_stop_the_run(self, upstream, tmp_path):
        """
        Given: one good archive hour, one unreadable hour and 22 failed hours
        When: the full pipeline runs on the archive strategy
        Then: the run completes as a partial success and scores the surging repo
        """
        async with make_pipeline(upstream, tmp_path / "d.db") as pipeline:
            stats = await pipeline.run_full(strategies=["gharchive"])

            assert stats.strategies[0]["strategy"] == "gharchive"
            assert stats.strategies[0]["status"] == "partial_success"
            assert stats.strategies[0]["units_failed"] == 22
            # acme/small has 2 stars, under the threshold of 5
            assert stats.candidates_merged == 1
            assert stats.repos_scored == 1
            assert stats.repos_enriched == 1
            assert stats.repos_errored == 0
            assert pipeline.archive.bad_lines == 2

            stored = await pipeline.store.get_repositories_by_github_ids([101])
            repo = stored[101]
            assert (repo.stars, repo.forks, repo.contributors) == (250, 40, 12)
            enrichment = await pipeline.store.get_enrichment(repo.id)
            assert enrichment.category == "AI / Machine Learning"
            assert 0 <= enrichment.score <= 100
            assert enrichment.score_breakdown["final_score"] == enrichment.score

            runs = await pipeline.store.get_pipeline_runs()
            assert [r["command"] for r in runs] == ["full"]

        # Auth header reaches GitHub, never the archive
        github_requests = [r for r in upstream.requests if r.url.host == "api.github.com"]
        assert all(r.headers["Authorization"] == "Bearer test-token" for r in github_requests)
        archive_requests = [r for r in upstream.requests if r.url.host == "data.gharchive.org"]
        assert len(archive_requests) == 24
        assert all("Authorization" not in r.headers for r in archive_requests)

    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_second_run_reuses_enrichment(self, upstream, tmp_path):
        """
        Given: a repository scored and enriched by an earlier run
        When: the pipeline runs again on unchanged upstream data
        Then: the score is refreshed without calling the enricher again
        """
        db_path = tmp_path / "d.db"
        async with make_pipeline(upstream, db_path) as pipeline:
            first = await pipeline.run_full(strategies=["gharchive"])
        async with make_pipeline(upstream, db_path) as pipeline:
            second = await pipeline.run_full(strategies=["gharchive"])
            stats = await pipeline.store.get_stats()

        assert first.repos_enriched == 1
        assert second.repos_enriched == 0
        assert second.repos_score_only == 1
        assert stats["repositories"] == 1
        assert stats["enrichments"] == 1
        assert stats["pipeline_runs"] == 2

    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_dry_run_writes_nothing(self, upstream, tmp_path):
        async with make_pipeline(upstream, tmp_path / "d.db") as pipeline:
            stats = await pipeline.run_full(strategies=["gharchive"], dry_run=True)
            store_stats = await pipeline.store.get_stats()

        assert stats.repos_scored == 1
        assert stats.repos_enriched == 0
        assert store_stats["repositories"] == 0
        assert store_stats["pipeline_runs"] == 0

    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_negative_limit_rejected_before_any_work(self, upstream, tmp_path):
        async with make_pipeline(upstream, tmp_path / "n.db") as pipeline:
            with pytest.raises(ValueError, match="must not be negative"):
                await pipeline.run_full(strategies=["gharchive"], limit=-1)

        assert upstream.paths("data.gharchive.org") == []


class TestSnapshotIdempotence:
    """Two snapshot runs on the same day"""

    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_same_day_runs_produce_identical_rows(self, upstream, tmp_path):
        """
        Given: a stored repository
        When: the snapshot job runs twice on the same day in separate processes
        Then: exactly one snapshot row exists and it is unchanged by the second run
        """
        db_path = tmp_path / "d.db"
        async with make_pipeline(upstream, db_path) as pipeline:
            await pipeline.run_discover(strategies=["gharchive"])
            first = await pipeline.run_snapshot()
            repo_id = (await pipeline.store.get_repositories_by_github_ids([101]))[101].id
            rows_after_first = await pipeline.store.list_snapshots(repo_id)

        async with make_pipeline(upstream, db_path) as pipeline:
            second = await pipeline.run_snapshot()
            rows_after_second = await pipeline.store.list_snapshots(repo_id)

        assert first.job["snapshots_inserted"] == 1
        assert second.job["snapshots_inserted"] == 0
        assert rows_after_first == rows_after_second
        assert len(rows_after_second) == 1
        assert rows_after_second[0].snapshot_date.isoformat() == "2025-03-01"
        assert rows_after_second[0].stars == 250
        assert upstream.paths("api.github.com").count("/repositories/101") == 2
