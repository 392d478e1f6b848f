from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional

import aiosqlite

from .db import IndexConnection, open_writer
from .errors import InvalidArgument
from .search import SearchResult, result_from_row


UPSERT_USAGE_SQL = """
INSERT INTO usage_stats (file_id, launch_count, last_launched)
VALUES (?, 1, ?)
ON CONFLICT(file_id) DO UPDATE SET
    launch_count = launch_count + 1,
    last_launched = excluded.last_launched
"""


@dataclass(frozen=True)
class UsageStat:
    file_id: int
    launch_count: int
    last_launched: Optional[int]


def _require_path(conn: Optional[IndexConnection], file_path: Optional[str]) -> str:
    if conn is None:
        raise InvalidArgument("Index connection is required")
    if conn.is_destroyed:
        raise InvalidArgument(f"Index connection for {conn.path} has been destroyed")
    if not file_path:
        raise InvalidArgument("File path cannot be empty")
    return str(file_path)


async def record_launch(
    conn: Optional[IndexConnection],
    file_path: Optional[str],
    *,
    now: Optional[int] = None,
) -> bool:
    """Count one launch of ``file_path``; best-effort.

    Only ``conn.path`` is used: the write goes through its own short-lived
    read-write connection so the session's read-only handle never takes the
    write lock. Returns False when the file is not indexed yet or the write
    fails; nothing is retried.
    """
    file_path = _require_path(conn, file_path)
    launched_at = int(time.time()) if now is None else int(now)
    try:
        async with open_writer(conn.path, busy_timeout_s=conn.busy_timeout_s) as db:
            async with db.execute("SELECT id FROM files WHERE path = ?", (file_path,)) as cursor:
                row = await cursor.fetchone()
            if row is None:
                logging.debug("Launch of unindexed file not recorded: %s", file_path)
                return False
            await db.execute(UPSERT_USAGE_SQL, (int(row[0]), launched_at))
    except (aiosqlite.Error, UnicodeEncodeError) as exc:
        logging.warning("Failed to record launch of %s: %s", file_path, exc)
        return False
    return True


async def get_file_usage(conn: Optional[IndexConnection], file_path: Optional[str]) -> Optional[UsageStat]:
    file_path = _require_path(conn, file_path)
    async with conn.acquire() as db:
        async with db.execute(
            """
            SELECT u.file_id, u.launch_count, u.last_launched
            FROM files f
            JOIN usage_stats u ON u.file_id = f.id
            WHERE f.path = ?
            """,
            (file_path,),
        ) as cursor:
            row = await cursor.fetchone()
    if row is None:
        return None
    return UsageStat(file_id=int(row[0]), launch_count=int(row[1]), last_launched=row[2])


async def most_used_files(conn: Optional[IndexConnection], limit: int = 10) -> List[SearchResult]:
    """Most launched files first, most recently launched breaking ties."""
    if conn is None:
        raise InvalidArgument("Index connection is required")
    async with conn.acquire() as db:
        rows = await db.execute_fetchall(
            """
            SELECT f.filename, f.path, f.file_type, f.size, f.modified_time, u.launch_count
            FROM files f
            JOIN usage_stats u ON u.file_id = f.id
            ORDER BY u.launch_count DESC, u.last_launched DESC
            LIMIT ?
            """,
            (max(1, int(limit)),),
        )
    return [result_from_row(row) for row in rows]
