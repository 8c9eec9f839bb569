from fastapi import APIRouter, Depends, Request

from ..config import get_settings
from ..deps import require_admin
from ..rate_limit import limiter, RATE_LIMIT_ADMIN

router = APIRouter()


@router.get("/health")
async def health() -> dict:
    settings = get_settings()
    return {
        "status": "ok",
        "ai_provider": settings.ai_provider or None,
        "locale": settings.ai_locale,
    }


@router.get("/auth/check", dependencies=[Depends(require_admin)])
@limiter.limit(RATE_LIMIT_ADMIN)
async def auth_check(request: Request) -> dict:
    return {"ok": True}
