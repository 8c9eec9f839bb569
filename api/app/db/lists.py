import sqlite3
from typing import List, Optional

from ..classification.errors import PersistenceError
from ..models import ListInfo
from .helpers import _retry_on_lock, _row_to_list
from .pool import get_connection

_LIST_QUERY = """
    SELECT l.id, l.name, l.color, l.description, l.sort_order,
           (SELECT COUNT(*) FROM list_repositories lr WHERE lr.list_id = l.id) AS repo_count
    FROM lists l
"""


async def list_lists() -> List[ListInfo]:
    async with get_connection() as conn:
        rows = await (await conn.execute(
            _LIST_QUERY + " ORDER BY l.sort_order ASC, l.id ASC"
        )).fetchall()
    return [_row_to_list(row) for row in rows]


async def get_list(list_id: int) -> Optional[ListInfo]:
    async with get_connection() as conn:
        row = await (await conn.execute(_LIST_QUERY + " WHERE l.id = ?", (list_id,))).fetchone()
    if not row:
        return None
    return _row_to_list(row)


async def list_used_colors() -> List[str]:
    async with get_connection() as conn:
        rows = await (await conn.execute("SELECT color FROM lists ORDER BY id ASC")).fetchall()
    return [row["color"] for row in rows if row["color"]]


@_retry_on_lock()
async def create_list(name: str, color: str, description: Optional[str] = None) -> ListInfo:
    name = str(name or "").strip()
    if not name:
        raise PersistenceError("List name is required")
    async with get_connection() as conn:
        try:
            cur = await conn.execute(
                """
                INSERT INTO lists (name, color, description, sort_order)
                VALUES (?, ?, ?, (SELECT COALESCE(MAX(sort_order), 0) + 1 FROM lists))
                """,
                (name, color, description),
            )
            await conn.commit()
        except sqlite3.IntegrityError as exc:
            await conn.rollback()
            raise PersistenceError(f"List name already exists: {name}") from exc
        list_id = cur.lastrowid
        row = await (await conn.execute(_LIST_QUERY + " WHERE l.id = ?", (list_id,))).fetchone()
    return _row_to_list(row)


@_retry_on_lock()
async def delete_list(list_id: int) -> bool:
    async with get_connection() as conn:
        cur = await conn.execute("DELETE FROM lists WHERE id = ?", (list_id,))
        await conn.commit()
        return bool(cur.rowcount)


@_retry_on_lock()
async def add_repo_to_list(list_id: int, repo_id: str) -> None:
    async with get_connection() as conn:
        try:
            await conn.execute(
                """
                INSERT INTO list_repositories (list_id, repository_id)
                VALUES (?, ?)
                ON CONFLICT(list_id, repository_id) DO NOTHING
                """,
                (list_id, repo_id),
            )
            await conn.commit()
        except sqlite3.IntegrityError as exc:
            await conn.rollback()
            raise PersistenceError(f"Cannot add repository {repo_id} to list {list_id}") from exc


@_retry_on_lock()
async def remove_repo_from_list(list_id: int, repo_id: str) -> bool:
    async with get_connection() as conn:
        cur = await conn.execute(
            "DELETE FROM list_repositories WHERE list_id = ? AND repository_id = ?",
            (list_id, repo_id),
        )
        await conn.commit()
        return bool(cur.rowcount)


class SQLiteListStore:
    """List store used by the batch reconciler."""

    async def list_lists(self) -> List[ListInfo]:
        return await list_lists()

    async def create_list(self, name: str, color: str, description: Optional[str] = None) -> ListInfo:
        return await create_list(name, color, description)

    async def add_membership(self, list_id: int, repo_id: str) -> None:
        await add_repo_to_list(list_id, repo_id)
