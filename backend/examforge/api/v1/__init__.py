"""ExamForge - API v1 Router."""
from fastapi import APIRouter

from examforge.api.v1.attempts import router as attempts_router
from examforge.api.v1.attempts import wrong_items_router
from examforge.api.v1.papers import router as papers_router
from examforge.api.v1.sources import router as sources_router

api_router = APIRouter()

api_router.include_router(sources_router)
api_router.include_router(papers_router)
api_router.include_router(attempts_router)
api_router.include_router(wrong_items_router)
