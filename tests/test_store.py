import asyncio

import pytest

from api.app.classification.errors import PersistenceError
from api.app.db import (
    SQLiteListStore,
    add_repo_to_list,
    count_uncategorized_repos,
    create_list,
    delete_list,
    get_repo,
    init_db,
    list_lists,
    list_used_colors,
    record_readme_summary,
    remove_repo_from_list,
    select_uncategorized_repos,
    upsert_repos,
)

REPOS = [
    {"id": "1", "full_name": "acme/widget", "description": "Widgets", "language": "Python", "topics": ["cli"]},
    {"id": "2", "full_name": "acme/gadget", "description": "Gadgets", "topics": []},
    {"id": "3", "full_name": "acme/gizmo"},
]


def _run(coro):
    return asyncio.run(coro)


@pytest.fixture
def seeded(db_url):
    async def setup():
        await init_db()
        await upsert_repos(REPOS)

    _run(setup())
    return db_url


def test_upsert_and_get_repo(seeded):
    repo = _run(get_repo("1"))
    assert repo.full_name == "acme/widget"
    assert repo.owner == "acme"
    assert repo.name == "widget"
    assert repo.topics == ["cli"]

    _run(upsert_repos([{"id": "1", "full_name": "acme/widget", "description": "Better widgets"}]))
    assert _run(get_repo("1")).description == "Better widgets"
    assert _run(get_repo("missing")) is None


def test_upsert_skips_rows_without_identity(db_url):
    _run(init_db())
    assert _run(upsert_repos([{"full_name": "acme/x"}, {"id": "9"}])) == 0


def test_upsert_with_taken_full_name_raises(seeded):
    with pytest.raises(PersistenceError):
        _run(upsert_repos([{"id": "99", "full_name": "acme/widget"}]))
    assert _run(get_repo("99")) is None
    assert _run(get_repo("1")).full_name == "acme/widget"


def test_create_list_assigns_sort_order(seeded):
    first = _run(create_list("DevOps", "#ef4444"))
    second = _run(create_list("前端", "#f97316", "UI things"))
    assert (first.sort_order, second.sort_order) == (1, 2)
    assert second.description == "UI things"
    assert [item.name for item in _run(list_lists())] == ["DevOps", "前端"]
    assert _run(list_used_colors()) == ["#ef4444", "#f97316"]


def test_duplicate_list_name_raises(seeded):
    _run(create_list("DevOps", "#ef4444"))
    with pytest.raises(PersistenceError):
        _run(create_list("DevOps", "#f97316"))


def test_membership_is_idempotent_and_counted(seeded):
    devops = _run(create_list("DevOps", "#ef4444"))
    _run(add_repo_to_list(devops.id, "1"))
    _run(add_repo_to_list(devops.id, "1"))
    _run(add_repo_to_list(devops.id, "2"))

    lists = _run(list_lists())
    assert lists[0].count == 2
    assert _run(count_uncategorized_repos()) == 1
    assert [repo.id for repo in _run(select_uncategorized_repos())] == ["3"]


def test_membership_to_unknown_repo_raises(seeded):
    devops = _run(create_list("DevOps", "#ef4444"))
    with pytest.raises(PersistenceError):
        _run(add_repo_to_list(devops.id, "does-not-exist"))


def test_remove_membership_and_delete_list_cascade(seeded):
    devops = _run(create_list("DevOps", "#ef4444"))
    _run(add_repo_to_list(devops.id, "1"))
    _run(add_repo_to_list(devops.id, "2"))

    assert _run(remove_repo_from_list(devops.id, "1")) is True
    assert _run(remove_repo_from_list(devops.id, "1")) is False
    assert _run(count_uncategorized_repos()) == 2

    assert _run(delete_list(devops.id)) is True
    assert _run(delete_list(devops.id)) is False
    assert _run(count_uncategorized_repos()) == 3


def test_uncategorized_limit(seeded):
    assert len(_run(select_uncategorized_repos(2))) == 2
    assert len(_run(select_uncategorized_repos(0))) == 3


def test_record_readme_summary(seeded):
    _run(record_readme_summary("2", "A gadget toolkit"))
    repo = _run(get_repo("2"))
    assert repo.readme_summary == "A gadget toolkit"
    assert repo.readme_fetched_at is not None


def test_sqlite_list_store_adapter(seeded):
    store = SQLiteListStore()

    async def flow():
        created = await store.create_list("CLI工具", "#22c55e")
        await store.add_membership(created.id, "3")
        return await store.list_lists()

    lists = _run(flow())
    assert lists[0].name == "CLI工具"
    assert lists[0].count == 1
