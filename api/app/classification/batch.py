import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence

from ..models import ListInfo, RepoBase
from .categories import CategoryTable
from .reconciler import (
    FailedItem,
    ListStore,
    NewCategoryProposal,
    ReconcileOutcome,
    Reconciler,
)
from .scheduler import (
    BatchConfig,
    BatchScheduler,
    CancelToken,
    ClassificationJob,
    Progress,
    SleepFn,
)

logger = logging.getLogger("starflow.classify")

PrepareFn = Callable[[List[RepoBase], CancelToken], Awaitable[List[RepoBase]]]


class BatchPhase(str, Enum):
    CONFIRM = "confirm"
    PROCESSING = "processing"
    REVIEW = "review"
    DONE = "done"


@dataclass
class BatchSummary:
    total: int = 0
    processed: int = 0
    auto_applied: int = 0
    failed: List[FailedItem] = field(default_factory=list)
    unclassifiable: List[str] = field(default_factory=list)
    created_lists: List[str] = field(default_factory=list)
    merged_lists: List[str] = field(default_factory=list)
    committed: int = 0
    commit_errors: List[str] = field(default_factory=list)
    cancelled: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return not self.commit_errors and self.error is None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class BatchRun:
    """One batch classification: confirm -> processing -> review | done.

    Matches against existing lists are applied as soon as processing ends;
    new lists wait in the review phase until committed or skipped.
    """

    def __init__(
        self,
        repos: Sequence[RepoBase],
        store: ListStore,
        classify: Callable[[RepoBase, Sequence[ListInfo]], Awaitable],
        config: Optional[BatchConfig] = None,
        locale: str = "zh",
        table: Optional[CategoryTable] = None,
        lists: Optional[Sequence[ListInfo]] = None,
        prepare: Optional[PrepareFn] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._repos = list(repos)
        self._store = store
        self._classify = classify
        self._config = config or BatchConfig.from_values()
        self._lists = list(lists) if lists is not None else None
        self._prepare = prepare
        self._sleep = sleep
        self._cancel = CancelToken()
        self._reconciler = Reconciler(store, locale=locale, table=table)
        self._task: Optional[asyncio.Task] = None
        self._committing = False

        self.phase = BatchPhase.CONFIRM
        self.progress = Progress(0, len(self._repos), "")
        self.proposals: List[NewCategoryProposal] = []
        self.summary = BatchSummary(total=len(self._repos))
        self.started_at: Optional[str] = None
        self.finished_at: Optional[str] = None

    @property
    def config(self) -> BatchConfig:
        return self._config

    @property
    def is_processing(self) -> bool:
        return self.phase == BatchPhase.PROCESSING

    @property
    def cancelled(self) -> bool:
        return self._cancel.cancelled

    def start(self) -> asyncio.Task:
        if self.phase != BatchPhase.CONFIRM:
            raise RuntimeError(f"Batch run cannot start from phase {self.phase.value}")
        self.phase = BatchPhase.PROCESSING
        self.started_at = _now_iso()
        self._task = asyncio.create_task(self._process())
        self._task.add_done_callback(_handle_task_exception)
        return self._task

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    def cancel(self) -> None:
        if self.phase in (BatchPhase.CONFIRM, BatchPhase.PROCESSING):
            self._cancel.cancel()
        if self.phase == BatchPhase.CONFIRM:
            self.summary.cancelled = True
            self._finish()

    def _on_progress(self, progress: Progress) -> None:
        if progress.completed >= self.progress.completed:
            self.progress = progress

    async def _classify_with_lists(self, repo: RepoBase):
        return await self._classify(repo, self._lists or [])

    async def _process(self) -> None:
        try:
            repos = self._repos
            if self._prepare is not None:
                repos = await self._prepare(repos, self._cancel)
            if self._lists is None:
                self._lists = await self._store.list_lists()
            scheduler = BatchScheduler(
                self._classify_with_lists,
                self._config,
                cancel_token=self._cancel,
                on_progress=self._on_progress,
                sleep=self._sleep,
            )
            results = await scheduler.run(ClassificationJob(repo) for repo in repos)
            lists = await self._store.list_lists()
            outcome = await self._reconciler.reconcile(results, lists)
        except Exception as exc:
            logger.exception("Batch classification aborted")
            self.summary.error = str(exc)
            self._finish()
            return

        self.summary.processed = len(results)
        self.summary.cancelled = self._cancel.cancelled
        self._absorb(outcome)
        self.proposals = outcome.proposals
        if self.proposals:
            self.phase = BatchPhase.REVIEW
        else:
            self._finish()

    def _absorb(self, outcome: ReconcileOutcome) -> None:
        self.summary.auto_applied = len(outcome.applied)
        self.summary.failed = list(outcome.failed)
        self.summary.unclassifiable = list(outcome.unclassifiable)
        self.summary.commit_errors.extend(outcome.commit_errors)

    def _finish(self) -> None:
        self.phase = BatchPhase.DONE
        self.finished_at = _now_iso()
        logger.info(
            "Batch run done: %s/%s processed, %s applied, %s failed, %s lists created",
            self.summary.processed,
            self.summary.total,
            self.summary.auto_applied,
            len(self.summary.failed),
            len(self.summary.created_lists),
        )

    def _require_review(self) -> None:
        if self.phase != BatchPhase.REVIEW:
            raise RuntimeError(f"Batch run is not in review (phase {self.phase.value})")

    def toggle(self, index: int, selected: bool) -> NewCategoryProposal:
        self._require_review()
        if index < 0 or index >= len(self.proposals):
            raise IndexError(f"No proposal at index {index}")
        self.proposals[index].selected = selected
        return self.proposals[index]

    async def commit(self) -> BatchSummary:
        self._require_review()
        if self._committing:
            raise RuntimeError("Proposals are already being committed")
        self._committing = True
        try:
            outcome = await self._reconciler.commit(self.proposals)
        finally:
            self._committing = False
        self.summary.created_lists = list(outcome.created_lists)
        self.summary.merged_lists = list(outcome.merged_lists)
        self.summary.committed = outcome.memberships
        self.summary.commit_errors.extend(outcome.commit_errors)
        self._finish()
        return self.summary

    def skip(self) -> BatchSummary:
        self._require_review()
        if self._committing:
            raise RuntimeError("Proposals are being committed")
        self._finish()
        return self.summary


def _handle_task_exception(task: asyncio.Task) -> None:
    try:
        exc = task.exception()
        if exc is not None:
            logger.error("Batch task failed: %s", exc, exc_info=exc)
    except asyncio.CancelledError:
        pass
