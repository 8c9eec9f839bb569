from fastapi import APIRouter

from .health import router as health_router
from .lists import router as lists_router
from .repos import router as repos_router
from .classify import router as classify_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(lists_router)
api_router.include_router(repos_router)
api_router.include_router(classify_router)
