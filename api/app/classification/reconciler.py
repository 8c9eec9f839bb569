import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

from ..colors import next_color
from ..models import ListInfo, RepoBase
from .categories import CategoryTable, get_category_table
from .errors import STORE_ERRORS
from .merger import find_existing_match
from .normalizer import normalize_category
from .scheduler import JobResult

logger = logging.getLogger("starflow.classify")

PROPOSAL_EXAMPLES = 5


class ListStore(Protocol):
    async def list_lists(self) -> List[ListInfo]: ...

    async def create_list(self, name: str, color: str, description: Optional[str] = None) -> ListInfo: ...

    async def add_membership(self, list_id: int, repo_id: str) -> None: ...


@dataclass
class NewCategoryProposal:
    name: str
    repos: List[RepoBase] = field(default_factory=list)
    selected: bool = True

    @property
    def member_count(self) -> int:
        return len(self.repos)

    @property
    def examples(self) -> List[str]:
        return [repo.full_name for repo in self.repos[:PROPOSAL_EXAMPLES]]


@dataclass(frozen=True)
class AppliedItem:
    full_name: str
    list_id: int
    list_name: str


@dataclass(frozen=True)
class FailedItem:
    full_name: str
    kind: str
    message: str


@dataclass
class ReconcileOutcome:
    applied: List[AppliedItem] = field(default_factory=list)
    proposals: List[NewCategoryProposal] = field(default_factory=list)
    failed: List[FailedItem] = field(default_factory=list)
    unclassifiable: List[str] = field(default_factory=list)
    commit_errors: List[str] = field(default_factory=list)


@dataclass
class CommitOutcome:
    created_lists: List[str] = field(default_factory=list)
    merged_lists: List[str] = field(default_factory=list)
    memberships: int = 0
    commit_errors: List[str] = field(default_factory=list)


class Reconciler:
    """Turns classification results into memberships and new-list proposals."""

    def __init__(
        self,
        store: ListStore,
        locale: str = "zh",
        table: Optional[CategoryTable] = None,
    ) -> None:
        self._store = store
        self._locale = locale
        self._table = table or get_category_table()

    async def _apply(
        self,
        repo: RepoBase,
        target: ListInfo,
        outcome: ReconcileOutcome,
    ) -> None:
        try:
            await self._store.add_membership(target.id, repo.id)
        except STORE_ERRORS as exc:
            logger.warning("Failed to add %s to list %s: %s", repo.full_name, target.name, exc)
            outcome.commit_errors.append(f"{repo.full_name} -> {target.name}: {exc}")
            outcome.failed.append(FailedItem(repo.full_name, "persistence", str(exc)))
            return
        outcome.applied.append(AppliedItem(repo.full_name, target.id, target.name))

    async def reconcile(
        self,
        results: Sequence[JobResult],
        lists: Sequence[ListInfo],
    ) -> ReconcileOutcome:
        outcome = ReconcileOutcome()
        by_id: Dict[int, ListInfo] = {item.id: item for item in lists}
        known = list(lists)
        pending: Dict[str, NewCategoryProposal] = {}

        for result in results:
            repo = result.repo
            if not result.ok or result.suggestion is None:
                outcome.failed.append(
                    FailedItem(repo.full_name, result.error_kind or "error", result.error or "")
                )
                continue

            suggestion = result.suggestion
            if suggestion.matched_list_id is not None and not suggestion.propose_new_list:
                target = by_id.get(suggestion.matched_list_id)
                if target is not None:
                    await self._apply(repo, target, outcome)
                    continue

            if not suggestion.new_list_name:
                outcome.unclassifiable.append(repo.full_name)
                continue

            name = normalize_category(suggestion.new_list_name, self._locale, self._table)
            existing = find_existing_match(name, known, self._table)
            if existing is not None:
                await self._apply(repo, existing, outcome)
                continue

            proposal = pending.get(name)
            if proposal is None:
                proposal = NewCategoryProposal(name=name)
                pending[name] = proposal
                outcome.proposals.append(proposal)
            proposal.repos.append(repo)

        logger.info(
            "Reconciled %s results: %s applied, %s proposals, %s failed, %s unclassifiable",
            len(results),
            len(outcome.applied),
            len(outcome.proposals),
            len(outcome.failed),
            len(outcome.unclassifiable),
        )
        return outcome

    async def commit(self, proposals: Sequence[NewCategoryProposal]) -> CommitOutcome:
        """Create every selected proposal as a list, in proposal order."""
        outcome = CommitOutcome()
        selected = [proposal for proposal in proposals if proposal.selected]
        if not selected:
            return outcome
        known = await self._store.list_lists()
        used_colors = [item.color for item in known]

        for proposal in selected:
            target = find_existing_match(proposal.name, known, self._table)
            if target is not None:
                outcome.merged_lists.append(target.name)
            else:
                color = next_color(used_colors)
                try:
                    target = await self._store.create_list(proposal.name, color)
                except STORE_ERRORS as exc:
                    logger.warning("Failed to create list %s: %s", proposal.name, exc)
                    outcome.commit_errors.append(f"{proposal.name}: {exc}")
                    continue
                used_colors.append(target.color)
                known.append(target)
                outcome.created_lists.append(target.name)

            for repo in proposal.repos:
                try:
                    await self._store.add_membership(target.id, repo.id)
                except STORE_ERRORS as exc:
                    logger.warning("Failed to add %s to list %s: %s", repo.full_name, target.name, exc)
                    outcome.commit_errors.append(f"{repo.full_name} -> {target.name}: {exc}")
                    continue
                outcome.memberships += 1
        return outcome
