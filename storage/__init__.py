"""
Storage layer for Repo Discovery.

Provides persistent SQLite storage for discovered repositories, their daily
snapshots, tool attribution counts, enrichments and pipeline runs.

Quick start:
    from storage import repo_store, RepositoryRecord

    async with repo_store("discovery.db") as store:
        repo_id = await store.upsert_repository(RepositoryRecord(
            github_id=123, owner="acme", name="widget", stars=420,
        ))

        # Which of these are already known?
        known = await store.get_existing_github_ids([123, 456])
"""

from storage.repo_store import (
    CURRENT_SCHEMA_VERSION,
    RepoStore,
    RepositoryRecord,
    SnapshotHistory,
    SnapshotRow,
    StoredEnrichment,
    StoredRepository,
    repo_store,
)

__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "RepoStore",
    "RepositoryRecord",
    "SnapshotHistory",
    "SnapshotRow",
    "StoredEnrichment",
    "StoredRepository",
    "repo_store",
]

__version__ = "1.0.0"
