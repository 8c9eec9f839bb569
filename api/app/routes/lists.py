import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request

from ..classification.errors import PersistenceError
from ..colors import next_color
from ..db import (
    add_repo_to_list,
    create_list,
    delete_list,
    get_list,
    get_repo,
    list_lists,
    list_used_colors,
    remove_repo_from_list,
)
from ..deps import _normalized_optional, require_admin
from ..rate_limit import limiter, RATE_LIMIT_ADMIN, RATE_LIMIT_DEFAULT
from ..schemas import ListCreateRequest, ListOut, MembershipRequest

logger = logging.getLogger("starflow.api")

router = APIRouter()


@router.get("/lists", response_model=List[ListOut])
@limiter.limit(RATE_LIMIT_DEFAULT)
async def lists(request: Request) -> List[ListOut]:
    return [ListOut(**item.model_dump()) for item in await list_lists()]


@router.post("/lists", response_model=ListOut, status_code=201, dependencies=[Depends(require_admin)])
@limiter.limit(RATE_LIMIT_ADMIN)
async def create_list_endpoint(request: Request, payload: ListCreateRequest) -> ListOut:
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="List name is required")
    color = payload.color or next_color(await list_used_colors())
    try:
        created = await create_list(name, color, _normalized_optional(payload.description))
    except PersistenceError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    logger.info("Created list %s (%s)", created.name, created.color)
    return ListOut(**created.model_dump())


@router.delete("/lists/{list_id}", dependencies=[Depends(require_admin)])
@limiter.limit(RATE_LIMIT_ADMIN)
async def delete_list_endpoint(request: Request, list_id: int) -> dict:
    if not await delete_list(list_id):
        raise HTTPException(status_code=404, detail="List not found")
    return {"deleted": True}


@router.post("/lists/{list_id}/repositories", dependencies=[Depends(require_admin)])
@limiter.limit(RATE_LIMIT_ADMIN)
async def add_repository(request: Request, list_id: int, payload: MembershipRequest) -> dict:
    if await get_list(list_id) is None:
        raise HTTPException(status_code=404, detail="List not found")
    if await get_repo(payload.repository_id) is None:
        raise HTTPException(status_code=404, detail="Repository not found")
    try:
        await add_repo_to_list(list_id, payload.repository_id)
    except PersistenceError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"list_id": list_id, "repository_id": payload.repository_id}


@router.delete("/lists/{list_id}/repositories/{repo_id}", dependencies=[Depends(require_admin)])
@limiter.limit(RATE_LIMIT_ADMIN)
async def remove_repository(request: Request, list_id: int, repo_id: str) -> dict:
    if not await remove_repo_from_list(list_id, repo_id):
        raise HTTPException(status_code=404, detail="Membership not found")
    return {"removed": True}
