from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

import aiosqlite

from .db import IndexConnection, SQLQuery
from .errors import InvalidArgument, NotConnected


DEFAULT_MAX_RESULTS = 50
# Largest value SQLite binds as an INTEGER.
MAX_SQLITE_INT = 2**63 - 1

TIER_EXACT = 0
TIER_PREFIX = 1
TIER_SUBSTRING = 2

LIKE_ESCAPE = "\\"

# Tier first, then usage, then a case-insensitive filename. LIMIT runs after
# ORDER BY so truncation keeps the ranking intact.
SEARCH_SQL = """
SELECT f.filename, f.path, f.file_type, f.size, f.modified_time,
       COALESCE(u.launch_count, 0) AS launch_count,
       CASE
           WHEN f.filename = ? THEN 0
           WHEN f.filename LIKE ? ESCAPE '\\' THEN 1
           ELSE 2
       END AS tier
FROM files f
LEFT JOIN usage_stats u ON u.file_id = f.id
WHERE f.filename LIKE ? ESCAPE '\\'
ORDER BY tier, launch_count DESC, f.filename COLLATE NOCASE, f.path
LIMIT ?
"""


@dataclass(frozen=True)
class SearchResult:
    filename: Optional[str]
    path: Optional[str]
    file_type: Optional[str]
    size: Optional[int]
    modified_time: Optional[int]
    launch_count: int = 0
    tier: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so the query matches literally."""
    return (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def effective_limit(max_results: Optional[int]) -> int:
    if max_results is None or int(max_results) <= 0:
        return DEFAULT_MAX_RESULTS
    return min(int(max_results), MAX_SQLITE_INT)


def build_search_query(query: str, limit: int) -> SQLQuery:
    escaped = escape_like(query)
    return SQLQuery(SEARCH_SQL, (query, escaped + "%", "%" + escaped + "%", int(limit)))


def result_from_row(row: Any) -> SearchResult:
    keys = row.keys()
    return SearchResult(
        filename=row["filename"],
        path=row["path"],
        file_type=row["file_type"],
        size=row["size"],
        modified_time=row["modified_time"],
        launch_count=int(row["launch_count"] or 0) if "launch_count" in keys else 0,
        tier=int(row["tier"]) if "tier" in keys and row["tier"] is not None else None,
    )


async def search(
    conn: Optional[IndexConnection],
    query: Optional[str],
    max_results: Optional[int] = DEFAULT_MAX_RESULTS,
) -> List[SearchResult]:
    """Ranked filename lookup: exact, then prefix, then substring matches.

    An empty query is the "nothing typed yet" state and returns ``[]``
    without a database round trip. Statement failures are logged and also
    yield ``[]``; only a missing or closed connection raises.
    """
    if conn is None:
        raise InvalidArgument("Index connection is required")
    if not conn.is_connected:
        raise NotConnected(f"Index database {conn.path} is not connected")
    if not query:
        return []

    sql = build_search_query(str(query), effective_limit(max_results))
    try:
        async with conn.acquire() as db:
            rows = await db.execute_fetchall(sql.text, sql.params)
    except (aiosqlite.Error, UnicodeEncodeError, OverflowError) as exc:
        logging.warning("Search failed for query %r: %s", query, exc)
        return []
    return [result_from_row(row) for row in rows]
