"""
SQLite connection pragmas for Repo Discovery stores.

Usage:
    from storage.sqlite_pragmas import apply_sqlite_pragmas

    db = await aiosqlite.connect(path)
    await apply_sqlite_pragmas(db)
"""

import logging

import aiosqlite

logger = logging.getLogger(__name__)


async def apply_sqlite_pragmas(
    conn: aiosqlite.Connection,
    wal: bool = True,
    busy_timeout_ms: int = 5000,
    foreign_keys: bool = True,
) -> None:
    """
    Apply the pragmas every store connection runs with.

    Args:
        conn: aiosqlite connection
        wal: WAL journal, so the stats command can read while a job writes.
            In-memory databases cannot use it.
        busy_timeout_ms: Wait this long on a locked database before failing
        foreign_keys: Enforce snapshot/enrichment -> repository references
    """
    if foreign_keys:
        await conn.execute("PRAGMA foreign_keys = ON")

    if wal:
        cursor = await conn.execute("PRAGMA journal_mode = WAL")
        row = await cursor.fetchone()
        if row and str(row[0]).lower() != "wal":
            logger.warning(f"SQLite refused WAL mode, journal_mode={row[0]}")

    if busy_timeout_ms > 0:
        await conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms}")

    logger.debug(
        f"Applied SQLite pragmas: WAL={wal}, busy_timeout={busy_timeout_ms}ms, "
        f"foreign_keys={foreign_keys}"
    )
