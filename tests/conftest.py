"""Shared test fixtures."""

from typing import List, Optional

import pytest

from api.app.classification.categories import get_category_table
from api.app.classification.errors import PersistenceError
from api.app.models import ListInfo, RepoBase


def make_repo(full_name: str, description: str | None = None, **extra) -> RepoBase:
    owner, _, name = full_name.partition("/")
    return RepoBase(
        id=extra.pop("id", full_name.replace("/", "-")),
        full_name=full_name,
        name=name,
        owner=owner,
        description=description,
        **extra,
    )


class FakeListStore:
    """In-memory list store with the same contract as the SQLite one."""

    def __init__(self, lists: Optional[List[ListInfo]] = None) -> None:
        self.lists: List[ListInfo] = list(lists or [])
        self.memberships: List[tuple] = []
        self.fail_create: set = set()
        self.fail_membership: set = set()

    async def list_lists(self) -> List[ListInfo]:
        return list(self.lists)

    async def create_list(self, name: str, color: str, description: Optional[str] = None) -> ListInfo:
        if name in self.fail_create or any(item.name == name for item in self.lists):
            raise PersistenceError(f"List name already exists: {name}")
        created = ListInfo(
            id=max((item.id for item in self.lists), default=0) + 1,
            name=name,
            color=color,
            description=description,
            sort_order=len(self.lists) + 1,
        )
        self.lists.append(created)
        return created

    async def add_membership(self, list_id: int, repo_id: str) -> None:
        if repo_id in self.fail_membership:
            raise PersistenceError(f"Cannot add repository {repo_id} to list {list_id}")
        if (list_id, repo_id) not in self.memberships:
            self.memberships.append((list_id, repo_id))


@pytest.fixture
def category_table():
    return get_category_table()


@pytest.fixture
def existing_lists():
    return [
        ListInfo(id=1, name="AI工具", color="#ef4444"),
        ListInfo(id=2, name="前端", color="#f97316"),
    ]


@pytest.fixture
def list_store(existing_lists):
    return FakeListStore(existing_lists)


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    """Point the store at a fresh SQLite file."""
    url = f"sqlite:///{tmp_path / 'starflow.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    return url
