import asyncio
import logging
from typing import List, Sequence

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from ..ai_client import AIClient
from ..classification import (
    STORE_ERRORS,
    ClassificationError,
    RateLimited,
    get_category_table,
)
from ..classification.batch import BatchRun
from ..classification.scheduler import BatchConfig, CancelToken
from ..config import get_settings
from ..db import (
    SQLiteListStore,
    count_uncategorized_repos,
    get_repo,
    list_lists,
    record_readme_summary,
    select_uncategorized_repos,
)
from ..deps import require_admin
from ..github import GitHubClient
from ..models import ListInfo, RepoBase
from ..rate_limit import limiter, RATE_LIMIT_ADMIN, RATE_LIMIT_AI, RATE_LIMIT_DEFAULT, RATE_LIMIT_HEAVY
from ..schemas import (
    BatchIdleResponse,
    BatchStartRequest,
    BatchStatusResponse,
    ClassifyRequest,
    ConnectionTestResponse,
    FailedOut,
    ProgressOut,
    ProposalOut,
    ProposalToggleRequest,
    SummaryOut,
    SuggestionOut,
)
from ..state import CLASSIFY_BATCH_LIMIT_MAX, README_FETCH_CONCURRENCY, BatchRunHolder

logger = logging.getLogger("starflow.api")

router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _resolve_locale(value: str | None) -> str:
    locale = (value or get_settings().ai_locale or "zh").strip().lower()
    if locale not in ("zh", "en"):
        raise HTTPException(status_code=400, detail=f"Unsupported locale: {locale}")
    return locale


def _holder(request: Request) -> BatchRunHolder:
    return request.app.state.batch_runs


def _current_run(request: Request) -> BatchRun:
    run = _holder(request).current
    if run is None:
        raise HTTPException(status_code=404, detail="No batch classification run")
    return run


def _readme_prepare(github_client: GitHubClient):
    async def prepare(repos: List[RepoBase], cancel_token: CancelToken) -> List[RepoBase]:
        semaphore = asyncio.Semaphore(README_FETCH_CONCURRENCY)

        async def fill(repo: RepoBase) -> RepoBase:
            if repo.readme_summary:
                return repo
            async with semaphore:
                if cancel_token.cancelled:
                    return repo
                try:
                    summary = await github_client.fetch_readme_summary(repo.full_name)
                except (httpx.HTTPError, ValueError) as exc:
                    logger.warning("README fetch failed for %s: %s", repo.full_name, exc)
                    return repo
                try:
                    await record_readme_summary(repo.id, summary)
                except STORE_ERRORS as exc:
                    logger.warning("Failed to cache README summary for %s: %s", repo.full_name, exc)
            return repo.model_copy(update={"readme_summary": summary or None})

        return list(await asyncio.gather(*(fill(repo) for repo in repos)))

    return prepare


def _batch_status(run: BatchRun) -> BatchStatusResponse:
    summary = run.summary
    return BatchStatusResponse(
        phase=run.phase.value,
        concurrency=run.config.concurrency,
        request_interval_ms=run.config.request_interval_ms,
        started_at=run.started_at,
        finished_at=run.finished_at,
        progress=ProgressOut(
            completed=run.progress.completed,
            total=run.progress.total,
            active_description=run.progress.active_description,
        ),
        proposals=[
            ProposalOut(
                index=index,
                name=proposal.name,
                member_count=proposal.member_count,
                examples=proposal.examples,
                selected=proposal.selected,
            )
            for index, proposal in enumerate(run.proposals)
        ],
        summary=SummaryOut(
            total=summary.total,
            processed=summary.processed,
            auto_applied=summary.auto_applied,
            failed=[FailedOut(full_name=item.full_name, kind=item.kind, message=item.message) for item in summary.failed],
            unclassifiable=summary.unclassifiable,
            created_lists=summary.created_lists,
            merged_lists=summary.merged_lists,
            committed=summary.committed,
            commit_errors=summary.commit_errors,
            cancelled=summary.cancelled,
            error=summary.error,
            success=summary.success,
        ),
    )


# ---------------------------------------------------------------------------
# Single repository
# ---------------------------------------------------------------------------

@router.post("/ai/classify", response_model=SuggestionOut, dependencies=[Depends(require_admin)])
@limiter.limit(RATE_LIMIT_AI)
async def classify_single(request: Request, payload: ClassifyRequest):
    repo = await get_repo(payload.repository_id)
    if repo is None:
        raise HTTPException(status_code=404, detail="Repository not found")
    locale = _resolve_locale(payload.locale)
    ai_client: AIClient = request.app.state.ai_client
    lists: Sequence[ListInfo] = await list_lists()
    try:
        suggestion = await ai_client.classify_repo(repo, lists, locale=locale)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RateLimited as exc:
        return JSONResponse(
            status_code=429,
            content={"detail": str(exc), "kind": exc.kind},
            headers={"Retry-After": str(int(exc.retry_after_seconds))},
        )
    except ClassificationError as exc:
        logger.warning("AI classification failed for %s: %s", repo.full_name, exc)
        return JSONResponse(status_code=502, content={"detail": str(exc), "kind": exc.kind})
    return SuggestionOut(**suggestion.to_dict())


@router.post("/ai/test", response_model=ConnectionTestResponse, dependencies=[Depends(require_admin)])
@limiter.limit(RATE_LIMIT_ADMIN)
async def test_ai(request: Request) -> ConnectionTestResponse:
    settings = get_settings()
    ai_client: AIClient = request.app.state.ai_client
    ok = await ai_client.test_connection()
    return ConnectionTestResponse(ok=ok, provider=settings.ai_provider, model=settings.ai_model)


# ---------------------------------------------------------------------------
# Batch runs
# ---------------------------------------------------------------------------

@router.post(
    "/classify/batch",
    response_model=BatchStatusResponse,
    status_code=202,
    dependencies=[Depends(require_admin)],
)
@limiter.limit(RATE_LIMIT_HEAVY)
async def start_batch(request: Request, payload: BatchStartRequest) -> BatchStatusResponse:
    holder = _holder(request)
    current = holder.current
    if current is not None and current.is_processing:
        raise HTTPException(status_code=409, detail="A batch classification is already running")

    locale = _resolve_locale(payload.locale)
    limit = payload.limit or CLASSIFY_BATCH_LIMIT_MAX
    repos = await select_uncategorized_repos(limit)
    config = BatchConfig.from_values(payload.concurrency, payload.request_interval_ms)
    ai_client: AIClient = request.app.state.ai_client
    table = get_category_table()

    async def classify(repo: RepoBase, lists: Sequence[ListInfo]):
        return await ai_client.classify_repo(repo, lists, locale=locale, table=table)

    prepare = _readme_prepare(request.app.state.github_client) if payload.include_readme else None
    run = BatchRun(
        repos,
        SQLiteListStore(),
        classify,
        config=config,
        locale=locale,
        table=table,
        prepare=prepare,
    )
    try:
        await holder.start(run)
    except RuntimeError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    logger.info("Batch classification queued for %s repositories", len(repos))
    return _batch_status(run)


@router.get("/classify/batch", response_model=BatchStatusResponse | BatchIdleResponse)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def batch_status(request: Request):
    run = _holder(request).current
    if run is None:
        return BatchIdleResponse(uncategorized=await count_uncategorized_repos())
    return _batch_status(run)


@router.post("/classify/batch/cancel", response_model=BatchStatusResponse, dependencies=[Depends(require_admin)])
@limiter.limit(RATE_LIMIT_ADMIN)
async def cancel_batch(request: Request) -> BatchStatusResponse:
    run = _current_run(request)
    run.cancel()
    return _batch_status(run)


@router.patch(
    "/classify/batch/proposals/{index}",
    response_model=ProposalOut,
    dependencies=[Depends(require_admin)],
)
@limiter.limit(RATE_LIMIT_ADMIN)
async def toggle_proposal(request: Request, index: int, payload: ProposalToggleRequest) -> ProposalOut:
    run = _current_run(request)
    try:
        proposal = run.toggle(index, payload.selected)
    except RuntimeError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except IndexError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return ProposalOut(
        index=index,
        name=proposal.name,
        member_count=proposal.member_count,
        examples=proposal.examples,
        selected=proposal.selected,
    )


@router.post("/classify/batch/commit", response_model=BatchStatusResponse, dependencies=[Depends(require_admin)])
@limiter.limit(RATE_LIMIT_ADMIN)
async def commit_batch(request: Request) -> BatchStatusResponse:
    run = _current_run(request)
    try:
        await run.commit()
    except RuntimeError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except STORE_ERRORS as exc:
        logger.warning("Batch commit failed: %s", exc)
        raise HTTPException(status_code=503, detail=f"List store unavailable: {exc}") from exc
    return _batch_status(run)


@router.post("/classify/batch/skip", response_model=BatchStatusResponse, dependencies=[Depends(require_admin)])
@limiter.limit(RATE_LIMIT_ADMIN)
async def skip_batch(request: Request) -> BatchStatusResponse:
    run = _current_run(request)
    try:
        run.skip()
    except RuntimeError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _batch_status(run)
