import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ..classification.errors import PersistenceError
from ..db import count_uncategorized_repos, select_uncategorized_repos, upsert_repos
from ..deps import require_admin
from ..rate_limit import limiter, RATE_LIMIT_ADMIN, RATE_LIMIT_DEFAULT
from ..schemas import RepoImportRequest, RepoImportResponse, RepoOut, UncategorizedResponse
from ..state import CLASSIFY_BATCH_LIMIT_MAX

logger = logging.getLogger("starflow.api")

router = APIRouter()


@router.post("/repositories", response_model=RepoImportResponse, dependencies=[Depends(require_admin)])
@limiter.limit(RATE_LIMIT_ADMIN)
async def import_repositories(request: Request, payload: RepoImportRequest) -> RepoImportResponse:
    for repo in payload.repositories:
        if "/" not in repo.full_name.strip("/"):
            raise HTTPException(status_code=400, detail=f"Invalid full_name: {repo.full_name}")
    try:
        imported = await upsert_repos([repo.model_dump() for repo in payload.repositories])
    except PersistenceError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    logger.info("Imported %s repositories", imported)
    return RepoImportResponse(imported=imported)


@router.get("/repositories/uncategorized", response_model=UncategorizedResponse)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def uncategorized(
    request: Request,
    limit: int = Query(default=50, ge=1, le=CLASSIFY_BATCH_LIMIT_MAX),
) -> UncategorizedResponse:
    total = await count_uncategorized_repos()
    repos = await select_uncategorized_repos(limit)
    return UncategorizedResponse(
        total=total,
        items=[
            RepoOut(
                id=repo.id,
                full_name=repo.full_name,
                name=repo.name,
                owner=repo.owner,
                description=repo.description,
                language=repo.language,
                topics=repo.topics,
                readme_summary=repo.readme_summary,
            )
            for repo in repos
        ],
    )
