from __future__ import annotations

import asyncio
import logging
import os
import sqlite3
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Tuple, cast

import aiosqlite

from .errors import FatalOpenError, InvalidArgument, NotConnected, TransientUnavailable


# Backoff for opening the index while the indexer holds a write lock.
MAX_RETRY_ATTEMPTS = 5
INITIAL_RETRY_DELAY_MS = 100
MAX_RETRY_DELAY_MS = 1600

# Shared layout of the index file. The indexer daemon owns `files`; this
# package only ever writes `usage_stats`.
INDEX_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    filename TEXT NOT NULL,
    path TEXT NOT NULL UNIQUE,
    size INTEGER,
    modified_time INTEGER,
    file_type TEXT,
    indexed_time INTEGER
);

CREATE TABLE IF NOT EXISTS usage_stats (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    file_id INTEGER NOT NULL UNIQUE,
    launch_count INTEGER NOT NULL DEFAULT 0,
    last_launched INTEGER,
    FOREIGN KEY(file_id) REFERENCES files(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_filename ON files(filename COLLATE NOCASE);
CREATE INDEX IF NOT EXISTS idx_path ON files(path);
CREATE INDEX IF NOT EXISTS idx_usage_launch_count ON usage_stats(launch_count DESC);
"""

_TRANSIENT_CODES = {sqlite3.SQLITE_BUSY, sqlite3.SQLITE_LOCKED}
_TRANSIENT_MESSAGES = (
    "database is locked",
    "database is busy",
    "database table is locked",
    "database schema is locked",
)


@dataclass(frozen=True)
class SQLQuery:
    text: str
    params: Tuple[Any, ...]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = MAX_RETRY_ATTEMPTS
    initial_delay_ms: int = INITIAL_RETRY_DELAY_MS
    max_delay_ms: int = MAX_RETRY_DELAY_MS

    def __post_init__(self) -> None:
        if int(self.max_attempts) < 1:
            raise ValueError("max_attempts must be at least 1")
        if int(self.initial_delay_ms) < 0:
            raise ValueError("initial_delay_ms cannot be negative")
        if int(self.initial_delay_ms) > int(self.max_delay_ms):
            raise ValueError("initial_delay_ms must not exceed max_delay_ms")

    def delay_ms(self, retry_index: int) -> int:
        """Delay before retry number ``retry_index`` (0-based): doubles, then clamps."""
        return min(int(self.initial_delay_ms) * (2 ** max(0, retry_index)), int(self.max_delay_ms))


def is_transient_error(exc: BaseException) -> bool:
    """True for SQLITE_BUSY / SQLITE_LOCKED, i.e. a writer currently holds the file."""
    if not isinstance(exc, sqlite3.Error):
        return False
    code = getattr(exc, "sqlite_errorcode", None)
    if code is not None:
        # Extended codes (e.g. SQLITE_BUSY_SNAPSHOT) keep the primary code in the low byte.
        return (int(code) & 0xFF) in _TRANSIENT_CODES
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MESSAGES)


def _sqlite_uri(db_path: str, mode: str) -> str:
    return f"{Path(os.path.abspath(db_path)).as_uri()}?mode={mode}"


async def _connect_read_only(db_path: str, *, busy_timeout_s: float = 0.0) -> aiosqlite.Connection:
    db = await aiosqlite.connect(_sqlite_uri(db_path, "ro"), uri=True, timeout=busy_timeout_s)
    try:
        # Opening is lazy in SQLite; touch the schema so lock contention and
        # corrupt files surface here instead of on the first search.
        await db.execute_fetchall("SELECT name FROM sqlite_master LIMIT 1")
    except BaseException:
        await db.close()
        raise
    db.row_factory = aiosqlite.Row
    return db


Connector = Callable[[str], Awaitable[aiosqlite.Connection]]
Sleeper = Callable[[float], Awaitable[Any]]


class IndexConnection:
    """Read-only handle on the index database.

    Created disconnected; :meth:`open` binds the handle with bounded retry,
    :meth:`close` releases it (idempotent), :meth:`destroy` is terminal.
    All work on the handle is serialized by one lock.
    """

    def __init__(
        self,
        path: Optional[str],
        *,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Sleeper = asyncio.sleep,
        connector: Optional[Connector] = None,
        busy_timeout_s: float = 0.0,
    ) -> None:
        if path is None or not str(path).strip():
            raise InvalidArgument("Database path cannot be empty")
        self._path = str(path)
        self.retry_policy = retry_policy or RetryPolicy()
        self.busy_timeout_s = float(busy_timeout_s)
        self._sleep = sleep
        self._connector = connector
        self._handle: Optional[aiosqlite.Connection] = None
        self._connected = False
        self._destroyed = False
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"IndexConnection(path={self._path!r}, connected={self._connected})"

    @property
    def path(self) -> str:
        return self._path

    @property
    def handle(self) -> Optional[aiosqlite.Connection]:
        return self._handle

    @property
    def is_connected(self) -> bool:
        return self._connected and self._handle is not None

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    async def _connect(self) -> aiosqlite.Connection:
        if self._connector is not None:
            return await self._connector(self._path)
        return await _connect_read_only(self._path, busy_timeout_s=self.busy_timeout_s)

    async def _release_handle(self) -> None:
        handle, self._handle = self._handle, None
        self._connected = False
        if handle is None:
            return
        try:
            await handle.close()
        except Exception:
            logging.warning("Failed to close index database %s", self._path, exc_info=True)

    async def open(self) -> None:
        async with self._lock:
            if self._destroyed:
                raise InvalidArgument(f"Index connection for {self._path} has been destroyed")
            if self.is_connected:
                return
            policy = self.retry_policy
            last_exc: Optional[BaseException] = None
            for attempt in range(1, policy.max_attempts + 1):
                await self._release_handle()
                try:
                    handle = await self._connect()
                except sqlite3.Error as exc:
                    if not is_transient_error(exc):
                        logging.warning("Failed to open index database %s: %s", self._path, exc)
                        raise FatalOpenError(
                            f"Failed to open index database {self._path}: {exc}",
                            db_path=self._path,
                        ) from exc
                    last_exc = exc
                    logging.warning(
                        "Index database is busy/locked (attempt %s/%s)",
                        attempt,
                        policy.max_attempts,
                    )
                    if attempt < policy.max_attempts:
                        await self._sleep(policy.delay_ms(attempt - 1) / 1000.0)
                    continue
                self._handle = handle
                self._connected = True
                logging.debug("Opened index database %s (attempt %s)", self._path, attempt)
                return
            logging.warning(
                "Could not open index database %s after %s attempts", self._path, policy.max_attempts
            )
            raise TransientUnavailable(
                f"Could not open index database {self._path} after {policy.max_attempts} attempts",
                attempts=policy.max_attempts,
            ) from last_exc

    async def close(self) -> None:
        async with self._lock:
            await self._release_handle()

    async def destroy(self) -> None:
        async with self._lock:
            await self._release_handle()
            self._destroyed = True

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the handle for one query; raises NotConnected if it is not open."""
        async with self._lock:
            if not self.is_connected:
                raise NotConnected(f"Index database {self._path} is not connected")
            yield cast(aiosqlite.Connection, self._handle)

    async def __aenter__(self) -> "IndexConnection":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


def create(path: Optional[str], **kwargs: Any) -> IndexConnection:
    return IndexConnection(path, **kwargs)


async def open_index(path: Optional[str], **kwargs: Any) -> IndexConnection:
    conn = IndexConnection(path, **kwargs)
    await conn.open()
    return conn


async def close(conn: Optional[IndexConnection]) -> None:
    if conn is None:
        return
    await conn.close()


async def destroy(conn: Optional[IndexConnection]) -> None:
    if conn is None:
        return
    await conn.destroy()


@asynccontextmanager
async def open_writer(db_path: str, *, busy_timeout_s: float = 0.0) -> AsyncIterator[aiosqlite.Connection]:
    """Short-lived read-write connection, closed on exit whatever happens.

    ``mode=rw`` never creates the file: a missing index is an error, not a
    fresh empty database.
    """
    if not db_path:
        raise InvalidArgument("Database path cannot be empty")
    db = await aiosqlite.connect(_sqlite_uri(db_path, "rw"), uri=True, timeout=busy_timeout_s, isolation_level=None)
    try:
        await db.execute("PRAGMA foreign_keys=ON;")
        yield db
    finally:
        await db.close()


async def create_index_schema(db_path: str) -> None:
    """Create the shared tables in a new or existing index file."""
    db_dir = os.path.dirname(os.path.abspath(db_path))
    os.makedirs(db_dir, exist_ok=True)
    async with aiosqlite.connect(db_path, isolation_level=None) as db:
        await db.executescript(INDEX_SCHEMA_SQL)
