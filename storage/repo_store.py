"""
Repository Storage Layer for Repo Discovery

Provides persistent SQLite storage with:
- Repositories keyed by numeric GitHub id (owner/name also unique)
- Daily snapshots, append-only, one row per (repository, date)
- Tool contribution counts, replaced per (repository, label, period)
- One live enrichment per repository
- Pipeline run history
- Migration support

Every write is an upsert keyed by a unique constraint, so re-running a job
for the same day or period overwrites or no-ops and never duplicates rows.

Tables:
  - repositories: Discovered repositories and their latest counters
  - snapshots: Daily counter facts
  - tool_contributions: Commit counts per attribution label and period
  - enrichments: Cached summary/rationale/category plus score and breakdown
  - pipeline_runs: Per-run statistics
  - schema_migrations: Track applied migrations

Usage:
    store = RepoStore("discovery.db")
    await store.initialize()

    repo_id = await store.upsert_repository(RepositoryRecord(
        github_id=123, owner="acme", name="widget", stars=420,
    ))
    await store.insert_snapshots([SnapshotRow(repo_id, date.today(), 420, 30, 12)])

    await store.close()
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence, Set

import aiosqlite

from storage.sqlite_pragmas import apply_sqlite_pragmas

logger = logging.getLogger(__name__)


# =============================================================================
# SCHEMA VERSION
# =============================================================================

CURRENT_SCHEMA_VERSION = 1

# SQL for creating tables (migrations applied in order)
MIGRATIONS = {
    1: """
    -- Repositories: one row per GitHub repository ever discovered
    CREATE TABLE IF NOT EXISTS repositories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        github_id INTEGER NOT NULL UNIQUE,
        owner TEXT NOT NULL COLLATE NOCASE,
        name TEXT NOT NULL COLLATE NOCASE,
        description TEXT,
        language TEXT,
        url TEXT,
        stars INTEGER NOT NULL DEFAULT 0,
        forks INTEGER NOT NULL DEFAULT 0,
        contributors INTEGER,
        is_absent INTEGER NOT NULL DEFAULT 0,  -- upstream reported it gone
        first_seen_at TEXT NOT NULL,  -- ISO 8601
        updated_at TEXT NOT NULL,  -- ISO 8601
        UNIQUE(owner, name)
    );

    CREATE INDEX IF NOT EXISTS idx_repositories_stars ON repositories(stars);

    -- Snapshots: immutable daily facts
    CREATE TABLE IF NOT EXISTS snapshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        repo_id INTEGER NOT NULL REFERENCES repositories(id),
        snapshot_date TEXT NOT NULL,  -- YYYY-MM-DD
        stars INTEGER NOT NULL,
        forks INTEGER NOT NULL,
        stars_7d INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        UNIQUE(repo_id, snapshot_date)
    );

    CREATE INDEX IF NOT EXISTS idx_snapshots_date ON snapshots(snapshot_date);

    -- Tool contributions: replaced, never accumulated
    CREATE TABLE IF NOT EXISTS tool_contributions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        repo_id INTEGER NOT NULL REFERENCES repositories(id),
        label TEXT NOT NULL,
        count INTEGER NOT NULL,
        period TEXT NOT NULL,  -- YYYY-MM or YYYY-MM-DD
        updated_at TEXT NOT NULL,
        UNIQUE(repo_id, label, period)
    );

    -- Enrichments: at most one live row per repository
    CREATE TABLE IF NOT EXISTS enrichments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        repo_id INTEGER NOT NULL UNIQUE REFERENCES repositories(id),
        summary TEXT,
        rationale TEXT,
        category TEXT,
        score INTEGER NOT NULL CHECK (score BETWEEN 0 AND 100),
        score_breakdown TEXT,  -- JSON
        computed_at TEXT NOT NULL,  -- when the text was generated
        score_updated_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_enrichments_score ON enrichments(score);

    -- Pipeline runs
    CREATE TABLE IF NOT EXISTS pipeline_runs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        run_id TEXT NOT NULL UNIQUE,
        command TEXT NOT NULL,
        started_at TEXT NOT NULL,
        completed_at TEXT,
        stats TEXT,  -- JSON
        created_at TEXT NOT NULL
    );

    -- Migration tracking
    CREATE TABLE IF NOT EXISTS schema_migrations (
        version INTEGER PRIMARY KEY,
        applied_at TEXT NOT NULL,
        description TEXT
    );
    """,
}


# =============================================================================
# DATA CLASSES
# =============================================================================

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _chunks(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


@dataclass
class RepositoryRecord:
    """Repository facts to write. None leaves the stored value unchanged."""
    github_id: int
    owner: str
    name: str
    description: Optional[str] = None
    language: Optional[str] = None
    url: Optional[str] = None
    stars: int = 0
    forks: int = 0
    contributors: Optional[int] = None


@dataclass
class StoredRepository:
    """A repository row."""
    id: int
    github_id: int
    owner: str
    name: str
    description: Optional[str]
    language: Optional[str]
    url: Optional[str]
    stars: int
    forks: int
    contributors: Optional[int]
    is_absent: bool
    first_seen_at: str
    updated_at: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass
class SnapshotRow:
    repo_id: int
    snapshot_date: date
    stars: int
    forks: int
    stars_7d: int = 0


@dataclass
class SnapshotHistory:
    """
    Week-over-week star gains derived from snapshots.

    ``stars_7d`` needs a snapshot from 7 days ago, ``stars_prev_7d`` also
    needs one from 14 days ago and ``stars_30d`` one from 30 days ago. Each
    is None when its snapshot is missing.
    """
    stars_7d: Optional[int] = None
    stars_prev_7d: Optional[int] = None
    stars_30d: Optional[int] = None


@dataclass
class StoredEnrichment:
    repo_id: int
    summary: Optional[str]
    rationale: Optional[str]
    category: Optional[str]
    score: int
    score_breakdown: Dict[str, Any] = field(default_factory=dict)
    computed_at: Optional[str] = None
    score_updated_at: Optional[str] = None


_REPO_COLUMNS = (
    "id, github_id, owner, name, description, language, url, stars, forks, "
    "contributors, is_absent, first_seen_at, updated_at"
)


def _row_to_repository(row: tuple) -> StoredRepository:
    return StoredRepository(
        id=row[0],
        github_id=row[1],
        owner=row[2],
        name=row[3],
        description=row[4],
        language=row[5],
        url=row[6],
        stars=row[7],
        forks=row[8],
        contributors=row[9],
        is_absent=bool(row[10]),
        first_seen_at=row[11],
        updated_at=row[12],
    )


# =============================================================================
# REPO STORE
# =============================================================================

class RepoStore:
    """
    Async SQLite storage for discovered repositories and their derived facts.

    Features:
    - Automatic schema migrations
    - Transaction support
    - Batched key-set lookups (``lookup_batch_size`` keys per query)
    - Range-paginated full scans
    """

    def __init__(
        self,
        db_path: str | Path = "discovery.db",
        lookup_batch_size: int = 500,
        write_batch_size: int = 100,
    ):
        """
        Initialize repository store.

        Args:
            db_path: Path to SQLite database file (":memory:" for tests)
            lookup_batch_size: Keys per IN-clause lookup
            write_batch_size: Rows per batched write
        """
        self.db_path = str(db_path)
        self.lookup_batch_size = lookup_batch_size
        self.write_batch_size = write_batch_size
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """
        Initialize database connection and apply migrations.
        Should be called once at startup.
        """
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self.db_path)
        await apply_sqlite_pragmas(self._db, wal=self.db_path != ":memory:")

        await self._apply_migrations()

        logger.info(f"RepoStore initialized: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Context manager for transactions.

        Usage:
            async with store.transaction() as conn:
                await conn.execute(...)
                await conn.execute(...)
                # Commits on success, rolls back on exception
        """
        db = self._conn()

        async with self._lock:
            try:
                await db.execute("BEGIN")
                yield db
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    # =========================================================================
    # MIGRATIONS
    # =========================================================================

    async def _apply_migrations(self) -> None:
        """Apply pending schema migrations."""
        db = self._conn()

        try:
            cursor = await db.execute("SELECT MAX(version) FROM schema_migrations")
            row = await cursor.fetchone()
            current_version = row[0] if row and row[0] else 0
        except aiosqlite.OperationalError:
            # Table doesn't exist yet
            current_version = 0

        for version in sorted(MIGRATIONS.keys()):
            if version <= current_version:
                continue

            logger.info(f"Applying migration v{version}...")

            async with self.transaction() as conn:
                await conn.executescript(MIGRATIONS[version])
                await conn.execute(
                    """
                    INSERT INTO schema_migrations (version, applied_at, description)
                    VALUES (?, ?, ?)
                    """,
                    (version, _now_iso(), f"Schema version {version}"),
                )

            logger.info(f"Migration v{version} applied successfully")

    # =========================================================================
    # REPOSITORIES
    # =========================================================================

    async def _release_name(self, conn: aiosqlite.Connection, record: RepositoryRecord) -> None:
        """
        Free owner/name held by a different github id.

        Happens when a repository was deleted or renamed and another one took
        its name. The stale row keeps its history under a suffixed name and
        is marked absent.
        """
        cursor = await conn.execute(
            """
            UPDATE repositories
            SET name = name || '~' || github_id, is_absent = 1, updated_at = ?
            WHERE owner = ? AND name = ? AND github_id != ?
            """,
            (_now_iso(), record.owner, record.name, record.github_id),
        )
        if cursor.rowcount:
            logger.info(f"Released stale owner/name {record.owner}/{record.name} for github id {record.github_id}")

    async def _upsert_repository(self, conn: aiosqlite.Connection, record: RepositoryRecord) -> int:
        await self._release_name(conn, record)
        now = _now_iso()
        cursor = await conn.execute(
            """
            INSERT INTO repositories (
                github_id, owner, name, description, language, url,
                stars, forks, contributors, is_absent, first_seen_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
            ON CONFLICT(github_id) DO UPDATE SET
                owner = excluded.owner,
                name = excluded.name,
                description = COALESCE(excluded.description, repositories.description),
                language = COALESCE(excluded.language, repositories.language),
                url = COALESCE(excluded.url, repositories.url),
                stars = excluded.stars,
                forks = excluded.forks,
                contributors = COALESCE(excluded.contributors, repositories.contributors),
                is_absent = 0,
                updated_at = excluded.updated_at
            RETURNING id
            """,
            (
                record.github_id, record.owner, record.name, record.description,
                record.language, record.url, record.stars, record.forks,
                record.contributors, now, now,
            ),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return row[0]

    async def upsert_repository(self, record: RepositoryRecord) -> int:
        """Insert or update one repository. Returns the internal id."""
        async with self.transaction() as conn:
            return await self._upsert_repository(conn, record)

    async def upsert_repositories(
        self,
        records: Sequence[RepositoryRecord],
        ignore_existing: bool = False,
    ) -> int:
        """
        Write repositories in batches of ``write_batch_size``.

        Args:
            records: Repositories to write
            ignore_existing: Insert new rows only; existing rows are untouched

        Returns:
            Number of rows inserted or updated
        """
        written = 0
        for batch in _chunks(list(records), self.write_batch_size):
            async with self.transaction() as conn:
                if ignore_existing:
                    now = _now_iso()
                    cursor = await conn.executemany(
                        """
                        INSERT OR IGNORE INTO repositories (
                            github_id, owner, name, description, language, url,
                            stars, forks, contributors, is_absent, first_seen_at, updated_at
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                        """,
                        [
                            (
                                r.github_id, r.owner, r.name, r.description, r.language,
                                r.url, r.stars, r.forks, r.contributors, now, now,
                            )
                            for r in batch
                        ],
                    )
                    inserted = max(cursor.rowcount, 0)
                    written += inserted
                    if inserted < len(batch):
                        logger.debug(
                            f"Ignored {len(batch) - inserted} of {len(batch)} repositories "
                            f"already stored by github id or owner/name"
                        )
                else:
                    for record in batch:
                        await self._upsert_repository(conn, record)
                        written += 1
        return written

    async def get_existing_github_ids(self, github_ids: Iterable[int]) -> Set[int]:
        """Which of ``github_ids`` are already stored, looked up in batches."""
        db = self._conn()
        ids = sorted(set(github_ids))
        existing: Set[int] = set()

        for batch in _chunks(ids, self.lookup_batch_size):
            placeholders = ",".join("?" * len(batch))
            cursor = await db.execute(
                f"SELECT github_id FROM repositories WHERE github_id IN ({placeholders})",
                tuple(batch),
            )
            existing.update(row[0] for row in await cursor.fetchall())

        return existing

    async def get_repositories_by_github_ids(self, github_ids: Iterable[int]) -> Dict[int, StoredRepository]:
        db = self._conn()
        ids = sorted(set(github_ids))
        found: Dict[int, StoredRepository] = {}

        for batch in _chunks(ids, self.lookup_batch_size):
            placeholders = ",".join("?" * len(batch))
            cursor = await db.execute(
                f"SELECT {_REPO_COLUMNS} FROM repositories WHERE github_id IN ({placeholders})",
                tuple(batch),
            )
            for row in await cursor.fetchall():
                repo = _row_to_repository(row)
                found[repo.github_id] = repo

        return found

    async def get_repository(self, repo_id: int) -> Optional[StoredRepository]:
        db = self._conn()
        cursor = await db.execute(f"SELECT {_REPO_COLUMNS} FROM repositories WHERE id = ?", (repo_id,))
        row = await cursor.fetchone()
        return _row_to_repository(row) if row else None

    async def iter_repositories(
        self,
        page_size: int = 1000,
        include_absent: bool = False,
        min_github_id: int = 1,
    ) -> AsyncIterator[StoredRepository]:
        """
        Scan all repositories by id range, ``page_size`` rows per query.

        Rows with ``github_id < min_github_id`` (aggregate placeholders) are
        skipped.
        """
        db = self._conn()
        last_id = 0
        absent_clause = "" if include_absent else "AND is_absent = 0"

        while True:
            cursor = await db.execute(
                f"""
                SELECT {_REPO_COLUMNS} FROM repositories
                WHERE id > ? AND github_id >= ? {absent_clause}
                ORDER BY id
                LIMIT ?
                """,
                (last_id, min_github_id, page_size),
            )
            rows = await cursor.fetchall()
            if not rows:
                return
            for row in rows:
                yield _row_to_repository(row)
            last_id = rows[-1][0]
            if len(rows) < page_size:
                return

    async def mark_absent(self, repo_id: int) -> None:
        """Flag a repository the upstream source reports as gone. Never purges."""
        async with self.transaction() as conn:
            await conn.execute(
                "UPDATE repositories SET is_absent = 1, updated_at = ? WHERE id = ?",
                (_now_iso(), repo_id),
            )

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    async def insert_snapshots(self, rows: Sequence[SnapshotRow]) -> int:
        """
        Insert snapshots, ignoring any (repository, date) already present.

        Returns:
            Number of new rows
        """
        inserted = 0
        for batch in _chunks(list(rows), self.write_batch_size):
            now = _now_iso()
            async with self.transaction() as conn:
                cursor = await conn.executemany(
                    """
                    INSERT INTO snapshots (repo_id, snapshot_date, stars, forks, stars_7d, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(repo_id, snapshot_date) DO NOTHING
                    """,
                    [
                        (r.repo_id, r.snapshot_date.isoformat(), r.stars, r.forks, r.stars_7d, now)
                        for r in batch
                    ],
                )
                inserted += max(cursor.rowcount, 0)
        return inserted

    async def get_snapshots_on(self, day: date, repo_ids: Iterable[int]) -> Dict[int, SnapshotRow]:
        """Snapshots taken on ``day`` for the given repositories, looked up in batches."""
        db = self._conn()
        ids = sorted(set(repo_ids))
        found: Dict[int, SnapshotRow] = {}

        for batch in _chunks(ids, self.lookup_batch_size):
            placeholders = ",".join("?" * len(batch))
            cursor = await db.execute(
                f"""
                SELECT repo_id, snapshot_date, stars, forks, stars_7d FROM snapshots
                WHERE snapshot_date = ? AND repo_id IN ({placeholders})
                """,
                (day.isoformat(), *batch),
            )
            for row in await cursor.fetchall():
                found[row[0]] = SnapshotRow(
                    repo_id=row[0],
                    snapshot_date=date.fromisoformat(row[1]),
                    stars=row[2],
                    forks=row[3],
                    stars_7d=row[4],
                )

        return found

    async def list_snapshots(self, repo_id: int) -> List[SnapshotRow]:
        db = self._conn()
        cursor = await db.execute(
            """
            SELECT repo_id, snapshot_date, stars, forks, stars_7d FROM snapshots
            WHERE repo_id = ? ORDER BY snapshot_date
            """,
            (repo_id,),
        )
        return [
            SnapshotRow(row[0], date.fromisoformat(row[1]), row[2], row[3], row[4])
            for row in await cursor.fetchall()
        ]

    async def get_snapshot_history(
        self,
        repo_id: int,
        today: date,
        current_stars: Optional[int] = None,
    ) -> SnapshotHistory:
        """
        Star gains over the last two weeks from snapshots 7 and 14 days back.

        ``current_stars`` stands in for today's snapshot when one has not
        been written yet.
        """
        db = self._conn()
        days = [today - timedelta(days=offset) for offset in (0, 7, 14, 30)]
        cursor = await db.execute(
            """
            SELECT snapshot_date, stars FROM snapshots
            WHERE repo_id = ? AND snapshot_date IN (?, ?, ?, ?)
            """,
            (repo_id, *(d.isoformat() for d in days)),
        )
        stars_on = {date.fromisoformat(row[0]): row[1] for row in await cursor.fetchall()}

        now_stars = stars_on.get(days[0], current_stars)
        week_ago = stars_on.get(days[1])
        two_weeks_ago = stars_on.get(days[2])
        month_ago = stars_on.get(days[3])

        history = SnapshotHistory()
        if now_stars is None:
            return history
        if week_ago is not None:
            history.stars_7d = max(now_stars - week_ago, 0)
            if two_weeks_ago is not None:
                history.stars_prev_7d = max(week_ago - two_weeks_ago, 0)
        if month_ago is not None:
            history.stars_30d = max(now_stars - month_ago, 0)
        return history

    # =========================================================================
    # TOOL CONTRIBUTIONS
    # =========================================================================

    async def upsert_tool_contribution(self, repo_id: int, label: str, count: int, period: str) -> None:
        """Replace the count for (repository, label, period)."""
        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO tool_contributions (repo_id, label, count, period, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(repo_id, label, period) DO UPDATE SET
                    count = excluded.count,
                    updated_at = excluded.updated_at
                """,
                (repo_id, label, count, period, _now_iso()),
            )

    async def latest_tool_period(self, repo_id: int, label: str) -> Optional[str]:
        db = self._conn()
        cursor = await db.execute(
            "SELECT MAX(period) FROM tool_contributions WHERE repo_id = ? AND label = ?",
            (repo_id, label),
        )
        row = await cursor.fetchone()
        return row[0] if row and row[0] else None

    async def get_tool_contributions(self, repo_id: int, label: Optional[str] = None) -> List[Dict[str, Any]]:
        db = self._conn()
        query = "SELECT label, count, period FROM tool_contributions WHERE repo_id = ?"
        params: List[Any] = [repo_id]
        if label is not None:
            query += " AND label = ?"
            params.append(label)
        cursor = await db.execute(query + " ORDER BY label, period", tuple(params))
        return [{"label": r[0], "count": r[1], "period": r[2]} for r in await cursor.fetchall()]

    # =========================================================================
    # ENRICHMENTS
    # =========================================================================

    async def get_enrichment(self, repo_id: int) -> Optional[StoredEnrichment]:
        db = self._conn()
        cursor = await db.execute(
            """
            SELECT repo_id, summary, rationale, category, score, score_breakdown,
                   computed_at, score_updated_at
            FROM enrichments WHERE repo_id = ?
            """,
            (repo_id,),
        )
        row = await cursor.fetchone()
        if not row:
            return None
        return StoredEnrichment(
            repo_id=row[0],
            summary=row[1],
            rationale=row[2],
            category=row[3],
            score=row[4],
            score_breakdown=json.loads(row[5]) if row[5] else {},
            computed_at=row[6],
            score_updated_at=row[7],
        )

    async def _upsert_enrichment(self, conn: aiosqlite.Connection, enrichment: StoredEnrichment) -> None:
        now = _now_iso()
        await conn.execute(
            """
            INSERT INTO enrichments (
                repo_id, summary, rationale, category, score, score_breakdown,
                computed_at, score_updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(repo_id) DO UPDATE SET
                summary = excluded.summary,
                rationale = excluded.rationale,
                category = excluded.category,
                score = excluded.score,
                score_breakdown = excluded.score_breakdown,
                computed_at = excluded.computed_at,
                score_updated_at = excluded.score_updated_at
            """,
            (
                enrichment.repo_id, enrichment.summary, enrichment.rationale,
                enrichment.category, enrichment.score, json.dumps(enrichment.score_breakdown),
                enrichment.computed_at or now, now,
            ),
        )

    async def _update_enrichment_score(
        self,
        conn: aiosqlite.Connection,
        repo_id: int,
        score: int,
        breakdown: Dict[str, Any],
    ) -> bool:
        cursor = await conn.execute(
            """
            UPDATE enrichments
            SET score = ?, score_breakdown = ?, score_updated_at = ?
            WHERE repo_id = ?
            """,
            (score, json.dumps(breakdown), _now_iso(), repo_id),
        )
        return cursor.rowcount > 0

    async def upsert_enrichment(self, enrichment: StoredEnrichment) -> None:
        """Write the full enrichment record (text, category, score, breakdown)."""
        async with self.transaction() as conn:
            await self._upsert_enrichment(conn, enrichment)

    async def update_enrichment_score(self, repo_id: int, score: int, breakdown: Dict[str, Any]) -> bool:
        """
        Refresh score and breakdown, keeping the cached text.

        Returns:
            False when the repository has no enrichment row
        """
        async with self.transaction() as conn:
            return await self._update_enrichment_score(conn, repo_id, score, breakdown)

    async def save_scored_repository(
        self,
        record: RepositoryRecord,
        score: int,
        breakdown: Dict[str, Any],
        enrichment: Optional[StoredEnrichment] = None,
    ) -> int:
        """
        Commit one repository's counters with its new score in a single transaction.

        With ``enrichment`` the full record is upserted; without it only the
        score and breakdown of the existing enrichment are refreshed.

        Returns:
            The repository's internal id
        """
        async with self.transaction() as conn:
            repo_id = await self._upsert_repository(conn, record)
            if enrichment is not None:
                enrichment.repo_id = repo_id
                enrichment.score = score
                enrichment.score_breakdown = breakdown
                await self._upsert_enrichment(conn, enrichment)
            else:
                await self._update_enrichment_score(conn, repo_id, score, breakdown)
        return repo_id

    async def get_enriched_repo_ids(self, repo_ids: Iterable[int]) -> Set[int]:
        db = self._conn()
        ids = sorted(set(repo_ids))
        found: Set[int] = set()
        for batch in _chunks(ids, self.lookup_batch_size):
            placeholders = ",".join("?" * len(batch))
            cursor = await db.execute(
                f"SELECT repo_id FROM enrichments WHERE repo_id IN ({placeholders})",
                tuple(batch),
            )
            found.update(row[0] for row in await cursor.fetchall())
        return found

    # =========================================================================
    # PIPELINE RUNS
    # =========================================================================

    async def save_pipeline_run(
        self,
        command: str,
        started_at: datetime,
        completed_at: Optional[datetime],
        stats: Dict[str, Any],
    ) -> str:
        """
        Save one run's statistics.

        Returns:
            run_id: UUID string for this run
        """
        run_id = str(uuid.uuid4())

        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO pipeline_runs (run_id, command, started_at, completed_at, stats, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    run_id,
                    command,
                    started_at.isoformat(),
                    completed_at.isoformat() if completed_at else None,
                    json.dumps(stats, default=str),
                    _now_iso(),
                ),
            )

        logger.info(f"Saved {command} run {run_id}")
        return run_id

    async def get_pipeline_runs(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Recent runs in reverse chronological order."""
        db = self._conn()
        cursor = await db.execute(
            """
            SELECT run_id, command, started_at, completed_at, stats
            FROM pipeline_runs
            ORDER BY started_at DESC
            LIMIT ?
            """,
            (limit,),
        )
        return [
            {
                "run_id": row[0],
                "command": row[1],
                "started_at": row[2],
                "completed_at": row[3],
                "stats": json.loads(row[4]) if row[4] else {},
            }
            for row in await cursor.fetchall()
        ]

    # =========================================================================
    # STATS
    # =========================================================================

    async def get_stats(self) -> Dict[str, Any]:
        """Get overall database statistics."""
        db = self._conn()

        async def scalar(sql: str) -> Any:
            cursor = await db.execute(sql)
            row = await cursor.fetchone()
            return row[0] if row else None

        cursor = await db.execute(
            "SELECT category, COUNT(*) FROM enrichments GROUP BY category ORDER BY category"
        )
        by_category = {row[0] or "uncategorized": row[1] for row in await cursor.fetchall()}

        return {
            "repositories": await scalar("SELECT COUNT(*) FROM repositories WHERE github_id > 0 AND is_absent = 0"),
            "absent_repositories": await scalar("SELECT COUNT(*) FROM repositories WHERE is_absent = 1"),
            "snapshots": await scalar("SELECT COUNT(*) FROM snapshots"),
            "latest_snapshot_date": await scalar("SELECT MAX(snapshot_date) FROM snapshots"),
            "enrichments": await scalar("SELECT COUNT(*) FROM enrichments"),
            "enrichments_by_category": by_category,
            "tool_contributions": await scalar("SELECT COUNT(*) FROM tool_contributions"),
            "pipeline_runs": await scalar("SELECT COUNT(*) FROM pipeline_runs"),
            "database_path": self.db_path,
        }


# =============================================================================
# CONTEXT MANAGER FOR EASY USAGE
# =============================================================================

@asynccontextmanager
async def repo_store(
    db_path: str | Path = "discovery.db",
    **kwargs
) -> AsyncIterator[RepoStore]:
    """
    Context manager for RepoStore that handles initialization and cleanup.

    Usage:
        async with repo_store("discovery.db") as store:
            await store.upsert_repository(...)
    """
    store = RepoStore(db_path, **kwargs)
    await store.initialize()
    try:
        yield store
    finally:
        await store.close()
