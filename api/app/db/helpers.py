import asyncio
import functools
import json
import logging
import os
import random
import sqlite3
from typing import Callable, List, Optional

import aiosqlite

from ..models import ListInfo, RepoBase

logger = logging.getLogger("starflow.db")


def _retry_on_lock(
    max_attempts: int = 5,
    base_delay: float = 0.05,
    max_delay: float = 0.5,
) -> Callable:
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except sqlite3.OperationalError as exc:
                    message = str(exc).lower()
                    if "database is locked" not in message and "database table is locked" not in message:
                        raise
                    if attempt >= max_attempts - 1:
                        raise
                    delay = min(max_delay, base_delay * (2**attempt))
                    jitter = random.uniform(0, delay)
                    logger.warning("SQLite locked, retrying in %.2fs", delay + jitter)
                    await asyncio.sleep(delay + jitter)
                    attempt += 1
        return wrapper
    return decorator


def _sqlite_path(database_url: str) -> str:
    if database_url.startswith("sqlite:////"):
        return "/" + database_url[len("sqlite:////"):]
    if database_url.startswith("sqlite:///"):
        return database_url[len("sqlite:///"):]
    raise ValueError("Only sqlite:/// database URLs are supported")


def _ensure_parent_dir(path: str) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


def _load_json_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    try:
        loaded = json.loads(value)
        if isinstance(loaded, list):
            return [str(item) for item in loaded if item]
    except json.JSONDecodeError:
        return []
    return []


def _row_to_repo(row: aiosqlite.Row) -> RepoBase:
    return RepoBase(
        id=row["id"],
        full_name=row["full_name"],
        name=row["name"] or "",
        owner=row["owner"] or "",
        description=row["description"],
        language=row["language"],
        topics=_load_json_list(row["topics"]),
        readme_summary=row["readme_summary"],
        readme_fetched_at=row["readme_fetched_at"],
    )


def _row_to_list(row: aiosqlite.Row) -> ListInfo:
    count = row["repo_count"] if "repo_count" in row.keys() else 0
    return ListInfo(
        id=row["id"],
        name=row["name"],
        color=row["color"],
        description=row["description"],
        sort_order=row["sort_order"] or 0,
        count=count or 0,
    )
