import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..classification.errors import PersistenceError
from .helpers import _retry_on_lock, _row_to_repo
from .pool import get_connection
from ..models import RepoBase

_REPO_COLUMNS = "id, full_name, name, owner, description, language, topics, readme_summary, readme_fetched_at"


@_retry_on_lock()
async def upsert_repos(repos: List[Dict[str, Any]]) -> int:
    rows = []
    for repo in repos:
        full_name = str(repo.get("full_name") or "").strip()
        repo_id = str(repo.get("id") or "").strip()
        if not full_name or not repo_id:
            continue
        owner, _, name = full_name.partition("/")
        rows.append(
            {
                "id": repo_id,
                "full_name": full_name,
                "name": repo.get("name") or name or full_name,
                "owner": repo.get("owner") or owner,
                "description": repo.get("description"),
                "language": repo.get("language"),
                "topics": json.dumps(repo.get("topics") or []),
            }
        )
    if not rows:
        return 0
    async with get_connection() as conn:
        try:
            await conn.executemany(
                """
                INSERT INTO repositories (id, full_name, name, owner, description, language, topics)
                VALUES (:id, :full_name, :name, :owner, :description, :language, :topics)
                ON CONFLICT(id) DO UPDATE SET
                    full_name=excluded.full_name,
                    name=excluded.name,
                    owner=excluded.owner,
                    description=excluded.description,
                    language=excluded.language,
                    topics=excluded.topics
                """,
                rows,
            )
        except sqlite3.IntegrityError as exc:
            await conn.rollback()
            raise PersistenceError(f"Repository import conflicts with stored data: {exc}") from exc
        await conn.commit()
    return len(rows)


async def get_repo(repo_id: str) -> Optional[RepoBase]:
    async with get_connection() as conn:
        row = await (await conn.execute(
            f"SELECT {_REPO_COLUMNS} FROM repositories WHERE id = ?",
            (repo_id,),
        )).fetchone()
    if not row:
        return None
    return _row_to_repo(row)


async def select_uncategorized_repos(limit: int = 0) -> List[RepoBase]:
    query = f"""
        SELECT {_REPO_COLUMNS}
        FROM repositories r
        WHERE NOT EXISTS (
            SELECT 1 FROM list_repositories lr WHERE lr.repository_id = r.id
        )
        ORDER BY r.created_at ASC, r.full_name ASC
    """
    params: List[Any] = []
    if limit > 0:
        query += " LIMIT ?"
        params.append(limit)
    async with get_connection() as conn:
        rows = await (await conn.execute(query, params)).fetchall()
    return [_row_to_repo(row) for row in rows]


async def count_uncategorized_repos() -> int:
    async with get_connection() as conn:
        row = await (await conn.execute(
            """
            SELECT COUNT(*) FROM repositories r
            WHERE NOT EXISTS (
                SELECT 1 FROM list_repositories lr WHERE lr.repository_id = r.id
            )
            """
        )).fetchone()
    return int(row[0]) if row else 0


@_retry_on_lock()
async def record_readme_summary(repo_id: str, summary: str) -> None:
    timestamp = datetime.now(timezone.utc).isoformat()
    async with get_connection() as conn:
        await conn.execute(
            "UPDATE repositories SET readme_summary = ?, readme_fetched_at = ? WHERE id = ?",
            (summary or None, timestamp, repo_id),
        )
        await conn.commit()
