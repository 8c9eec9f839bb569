import sqlite3
import unittest

from api.app.ai_client import Suggestion
from api.app.classification.reconciler import NewCategoryProposal, Reconciler
from api.app.classification.scheduler import JobResult
from api.app.models import ListInfo
from conftest import FakeListStore, make_repo


def _ok(full_name, matched=None, new_name=None):
    return JobResult(
        repo=make_repo(full_name),
        suggestion=Suggestion(
            matched_list_id=matched.id if matched else None,
            matched_list_name=matched.name if matched else None,
            confidence=0.8,
            propose_new_list=matched is None,
            new_list_name=new_name,
            reason="test",
        ),
    )


def _failed(full_name, kind="transport"):
    return JobResult(repo=make_repo(full_name), error_kind=kind, error="upstream down")


def _lists():
    return [
        ListInfo(id=1, name="AI工具", color="#ef4444"),
        ListInfo(id=2, name="前端", color="#f97316"),
    ]


class TestReconcile(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.lists = _lists()
        self.store = FakeListStore(self.lists)
        self.reconciler = Reconciler(self.store, locale="zh")

    async def test_mixed_batch_partitions_every_repo(self) -> None:
        results = [
            _ok("acme/llm-kit", matched=self.lists[0]),
            _ok("acme/deployer", new_name="DevOps"),
            _ok("acme/dockerfiles", new_name="docker"),
            _failed("acme/broken"),
            _ok("acme/mystery"),
            _ok("acme/widgets", new_name="React组件"),
        ]

        outcome = await self.reconciler.reconcile(results, self.lists)

        self.assertEqual([item.full_name for item in outcome.applied], ["acme/llm-kit", "acme/widgets"])
        self.assertEqual([item.list_id for item in outcome.applied], [1, 2])
        self.assertEqual(len(outcome.proposals), 1)
        self.assertEqual(outcome.proposals[0].name, "DevOps")
        self.assertEqual(outcome.proposals[0].examples, ["acme/deployer", "acme/dockerfiles"])
        self.assertEqual([item.full_name for item in outcome.failed], ["acme/broken"])
        self.assertEqual(outcome.failed[0].kind, "transport")
        self.assertEqual(outcome.unclassifiable, ["acme/mystery"])

        accounted = (
            len(outcome.applied)
            + sum(proposal.member_count for proposal in outcome.proposals)
            + len(outcome.failed)
            + len(outcome.unclassifiable)
        )
        self.assertEqual(accounted, len(results))
        self.assertEqual(self.store.memberships, [(1, "acme-llm-kit"), (2, "acme-widgets")])

    async def test_new_name_merges_into_existing_list(self) -> None:
        outcome = await self.reconciler.reconcile([_ok("acme/chatbot", new_name="LLM Apps")], self.lists)

        self.assertEqual(outcome.proposals, [])
        self.assertEqual(outcome.applied[0].list_name, "AI工具")

    async def test_stale_match_falls_back_to_new_name(self) -> None:
        deleted = ListInfo(id=99, name="Old", color="#000000")
        outcome = await self.reconciler.reconcile(
            [_ok("acme/cli", matched=deleted, new_name="命令行")], self.lists
        )
        self.assertEqual(outcome.applied, [])
        self.assertEqual(outcome.proposals[0].name, "CLI工具")

    async def test_persistence_error_is_recorded_and_processing_continues(self) -> None:
        self.store.fail_membership.add("acme-first")
        results = [
            _ok("acme/first", matched=self.lists[0]),
            _ok("acme/second", matched=self.lists[1]),
        ]

        outcome = await self.reconciler.reconcile(results, self.lists)

        self.assertEqual([item.full_name for item in outcome.applied], ["acme/second"])
        self.assertEqual(outcome.failed[0].kind, "persistence")
        self.assertEqual(len(outcome.commit_errors), 1)

    async def test_sqlite_error_on_membership_is_recorded_and_processing_continues(self) -> None:
        class _LockedStore(FakeListStore):
            async def add_membership(self, list_id, repo_id):
                if repo_id == "acme-second":
                    raise sqlite3.OperationalError("database is locked")
                await super().add_membership(list_id, repo_id)

        reconciler = Reconciler(_LockedStore(self.lists), locale="zh")
        results = [
            _ok("acme/first", matched=self.lists[0]),
            _ok("acme/second", matched=self.lists[0]),
            _ok("acme/third", matched=self.lists[1]),
        ]

        outcome = await reconciler.reconcile(results, self.lists)

        self.assertEqual([item.full_name for item in outcome.applied], ["acme/first", "acme/third"])
        self.assertEqual([(item.full_name, item.kind) for item in outcome.failed], [("acme/second", "persistence")])
        self.assertIn("database is locked", outcome.commit_errors[0])

    async def test_proposals_keep_first_seen_order(self) -> None:
        results = [
            _ok("acme/a", new_name="数据库"),
            _ok("acme/b", new_name="DevOps"),
            _ok("acme/c", new_name="redis"),
        ]
        outcome = await self.reconciler.reconcile(results, self.lists)
        self.assertEqual([proposal.name for proposal in outcome.proposals], ["数据库", "DevOps"])
        self.assertEqual(outcome.proposals[0].member_count, 2)


class TestCommit(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.store = FakeListStore(_lists())
        self.reconciler = Reconciler(self.store, locale="zh")

    async def test_commit_creates_selected_lists_with_fresh_colors(self) -> None:
        proposals = [
            NewCategoryProposal("DevOps", [make_repo("acme/a"), make_repo("acme/b")]),
            NewCategoryProposal("数据库", [make_repo("acme/c")], selected=False),
            NewCategoryProposal("CLI工具", [make_repo("acme/d")]),
        ]

        outcome = await self.reconciler.commit(proposals)

        self.assertEqual(outcome.created_lists, ["DevOps", "CLI工具"])
        self.assertEqual(outcome.memberships, 3)
        self.assertEqual(outcome.commit_errors, [])
        created = {item.name: item for item in self.store.lists}
        self.assertNotIn("数据库", created)
        self.assertEqual(created["DevOps"].color, "#f59e0b")
        self.assertEqual(created["CLI工具"].color, "#eab308")
        self.assertIn((created["DevOps"].id, "acme-a"), self.store.memberships)

    async def test_commit_merges_into_list_created_meanwhile(self) -> None:
        await self.store.create_list("DevOps", "#123456")
        outcome = await self.reconciler.commit([NewCategoryProposal("DevOps", [make_repo("acme/a")])])

        self.assertEqual(outcome.created_lists, [])
        self.assertEqual(outcome.merged_lists, ["DevOps"])
        self.assertEqual(outcome.memberships, 1)

    async def test_commit_continues_after_create_failure(self) -> None:
        self.store.fail_create.add("DevOps")
        proposals = [
            NewCategoryProposal("DevOps", [make_repo("acme/a")]),
            NewCategoryProposal("CLI工具", [make_repo("acme/b")]),
        ]

        outcome = await self.reconciler.commit(proposals)

        self.assertEqual(outcome.created_lists, ["CLI工具"])
        self.assertEqual(len(outcome.commit_errors), 1)
        self.assertIn("DevOps", outcome.commit_errors[0])

    async def test_commit_with_nothing_selected(self) -> None:
        outcome = await self.reconciler.commit([NewCategoryProposal("DevOps", [make_repo("acme/a")], selected=False)])
        self.assertEqual(outcome.created_lists, [])
        self.assertEqual(len(self.store.lists), 2)
