import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

import aiosqlite

from ..config import get_settings
from ..state import _env_int
from .helpers import _ensure_parent_dir, _sqlite_path

logger = logging.getLogger("starflow.db")

_pool: "SQLitePool | None" = None

SQLITE_JOURNAL_MODE = os.getenv("SQLITE_JOURNAL_MODE", "WAL").upper()
SQLITE_BUSY_TIMEOUT = _env_int("SQLITE_BUSY_TIMEOUT", 5000, minimum=1)


async def _open_connection(db_path: str) -> aiosqlite.Connection:
    conn = await aiosqlite.connect(db_path, timeout=30)
    conn.row_factory = aiosqlite.Row
    try:
        result = await conn.execute(f"PRAGMA journal_mode={SQLITE_JOURNAL_MODE}")
        row = await result.fetchone()
        effective_mode = row[0] if row else "unknown"
        if str(effective_mode).upper() != SQLITE_JOURNAL_MODE:
            logger.warning(
                "SQLite journal_mode: requested %s, got %s",
                SQLITE_JOURNAL_MODE,
                effective_mode,
            )
        await conn.execute("PRAGMA foreign_keys=ON")
        await conn.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT}")
    except Exception as exc:
        logger.warning("Failed to apply SQLite pragmas: %s", exc)
    return conn


def _database_path() -> str:
    db_path = _sqlite_path(get_settings().database_url)
    _ensure_parent_dir(db_path)
    return db_path


class SQLitePool:
    def __init__(self, db_path: str, size: int) -> None:
        self._db_path = db_path
        self._size = max(1, size)
        self._pool: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue(maxsize=self._size)

    async def init(self) -> None:
        for _ in range(self._size):
            await self._pool.put(await _open_connection(self._db_path))

    async def close(self) -> None:
        while not self._pool.empty():
            conn = await self._pool.get()
            await conn.close()

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = await self._pool.get()
        try:
            yield conn
        finally:
            await self._pool.put(conn)


async def init_db_pool(pool_size: int | None = None) -> None:
    global _pool
    if pool_size is None:
        pool_size = _env_int("DB_POOL_SIZE", 5, minimum=1)
    pool = SQLitePool(_database_path(), pool_size)
    await pool.init()
    _pool = pool


async def close_db_pool() -> None:
    global _pool
    if _pool:
        await _pool.close()
    _pool = None


@asynccontextmanager
async def get_connection() -> AsyncIterator[aiosqlite.Connection]:
    if _pool is None:
        conn = await _open_connection(_database_path())
        try:
            yield conn
        finally:
            await conn.close()
        return
    async with _pool.connection() as conn:
        yield conn
