import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from ..ai_client import Suggestion
from ..models import RepoBase
from ..state import (
    CLASSIFY_CONCURRENCY_MAX,
    CLASSIFY_INTERVAL_MS_MAX,
    DEFAULT_CLASSIFY_CONCURRENCY,
    DEFAULT_CLASSIFY_INTERVAL_MS,
)
from .errors import ClassificationError, RateLimited

logger = logging.getLogger("starflow.classify")

MAX_ATTEMPTS = 3
RATE_LIMIT_MAX_WAIT_SECONDS = 60.0

ClassifyFn = Callable[[RepoBase], Awaitable[Suggestion]]
SleepFn = Callable[[float], Awaitable[Any]]
ProgressFn = Callable[["Progress"], Any]


def _clamp(value: int, minimum: int, maximum: int) -> int:
    if value < minimum:
        return minimum
    if value > maximum:
        return maximum
    return value


@dataclass(frozen=True)
class BatchConfig:
    concurrency: int = DEFAULT_CLASSIFY_CONCURRENCY
    request_interval_ms: int = DEFAULT_CLASSIFY_INTERVAL_MS

    @classmethod
    def from_values(
        cls,
        concurrency: Optional[int] = None,
        request_interval_ms: Optional[int] = None,
    ) -> "BatchConfig":
        if concurrency is None:
            concurrency = DEFAULT_CLASSIFY_CONCURRENCY
        if request_interval_ms is None:
            request_interval_ms = DEFAULT_CLASSIFY_INTERVAL_MS
        return cls(
            concurrency=_clamp(int(concurrency), 1, CLASSIFY_CONCURRENCY_MAX),
            request_interval_ms=_clamp(int(request_interval_ms), 0, CLASSIFY_INTERVAL_MS_MAX),
        )


class CancelToken:
    """Cooperative cancellation shared by every worker of one run."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass(frozen=True)
class ClassificationJob:
    repo: RepoBase


@dataclass(frozen=True)
class JobResult:
    repo: RepoBase
    suggestion: Optional[Suggestion] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.suggestion is not None and self.error_kind is None


@dataclass(frozen=True)
class Progress:
    completed: int
    total: int
    active_description: str = ""


@dataclass
class _Event:
    worker: int
    description: str = ""
    result: Optional[JobResult] = None
    started: bool = False


@dataclass
class _Collector:
    total: int
    on_progress: Optional[ProgressFn]
    results: List[JobResult] = field(default_factory=list)
    active: Dict[int, str] = field(default_factory=dict)

    def _description(self) -> str:
        if not self.active:
            return ""
        return list(self.active.values())[-1]

    async def _emit(self) -> None:
        if self.on_progress is None:
            return
        progress = Progress(len(self.results), self.total, self._description())
        try:
            outcome = self.on_progress(progress)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.warning("Progress callback failed: %s", exc)

    async def consume(self, channel: "asyncio.Queue[Optional[_Event]]") -> List[JobResult]:
        while True:
            event = await channel.get()
            if event is None:
                break
            if event.result is not None:
                self.active.pop(event.worker, None)
                self.results.append(event.result)
                await self._emit()
                continue
            # Started or waiting: only the description changes.
            self.active.pop(event.worker, None)
            self.active[event.worker] = event.description
            if not event.started:
                await self._emit()
        return list(self.results)


class BatchScheduler:
    """Runs classification jobs through a bounded worker pool.

    Workers pull from one FIFO queue and send every finished job to a single
    collector, which owns the result list and reports progress. Rate-limited
    jobs are retried in place; every other failure becomes a failed result.
    """

    def __init__(
        self,
        classify: ClassifyFn,
        config: Optional[BatchConfig] = None,
        cancel_token: Optional[CancelToken] = None,
        on_progress: Optional[ProgressFn] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._classify = classify
        self._config = config or BatchConfig.from_values()
        self._cancel = cancel_token or CancelToken()
        self._on_progress = on_progress
        self._sleep = sleep

    @property
    def cancel_token(self) -> CancelToken:
        return self._cancel

    async def run(self, jobs: Iterable[ClassificationJob]) -> List[JobResult]:
        queue: asyncio.Queue[ClassificationJob] = asyncio.Queue()
        for job in jobs:
            queue.put_nowait(job)
        total = queue.qsize()
        if total == 0:
            return []

        channel: asyncio.Queue[Optional[_Event]] = asyncio.Queue()
        collector = asyncio.create_task(_Collector(total, self._on_progress).consume(channel))
        worker_count = min(self._config.concurrency, total)
        logger.info(
            "Batch classification started: %s repos, concurrency=%s, interval=%sms",
            total,
            worker_count,
            self._config.request_interval_ms,
        )
        workers = [asyncio.create_task(self._worker(index, queue, channel)) for index in range(worker_count)]
        try:
            await asyncio.gather(*workers)
        finally:
            for worker in workers:
                if not worker.done():
                    worker.cancel()
            channel.put_nowait(None)
        results = await collector
        logger.info(
            "Batch classification finished: %s/%s processed%s",
            len(results),
            total,
            " (cancelled)" if self._cancel.cancelled else "",
        )
        return results

    async def _worker(
        self,
        index: int,
        queue: "asyncio.Queue[ClassificationJob]",
        channel: "asyncio.Queue[Optional[_Event]]",
    ) -> None:
        while True:
            if self._cancel.cancelled:
                return
            try:
                job = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            channel.put_nowait(_Event(index, job.repo.full_name, started=True))
            result = await self._run_job(index, job, channel)
            channel.put_nowait(_Event(index, job.repo.full_name, result=result))
            if self._cancel.cancelled or queue.empty():
                continue
            if self._config.request_interval_ms > 0:
                await self._sleep(self._config.request_interval_ms / 1000)

    async def _run_job(
        self,
        index: int,
        job: ClassificationJob,
        channel: "asyncio.Queue[Optional[_Event]]",
    ) -> JobResult:
        repo = job.repo
        attempt = 0
        while True:
            attempt += 1
            try:
                suggestion = await self._classify(repo)
                return JobResult(repo=repo, suggestion=suggestion, attempts=attempt)
            except RateLimited as exc:
                if attempt >= MAX_ATTEMPTS:
                    logger.warning(
                        "Classification for %s still rate limited after %s attempts",
                        repo.full_name,
                        attempt,
                    )
                    return JobResult(repo=repo, error_kind=exc.kind, error=str(exc), attempts=attempt)
                wait = min(float(exc.retry_after_seconds), RATE_LIMIT_MAX_WAIT_SECONDS)
                logger.warning(
                    "Classification for %s rate limited on attempt %s/%s. Retrying in %.0fs",
                    repo.full_name,
                    attempt,
                    MAX_ATTEMPTS,
                    wait,
                )
                channel.put_nowait(_Event(index, f"{repo.full_name} (retry in {wait:.0f}s)"))
                await self._sleep(wait)
            except ClassificationError as exc:
                logger.warning("Classification failed for %s: %s", repo.full_name, exc)
                return JobResult(repo=repo, error_kind=exc.kind, error=str(exc), attempts=attempt)
            except Exception as exc:
                logger.warning("Classification failed for %s: %s", repo.full_name, exc)
                return JobResult(repo=repo, error_kind="error", error=str(exc), attempts=attempt)
