"""
ExamForge - API Dependencies
FastAPI dependencies resolving the process context, sessions and services
"""
from typing import Annotated, AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from examforge.core.context import AppContext
from examforge.services.attempts import AttemptService
from examforge.services.papers import PaperService
from examforge.services.sources import SourceService


def get_context(request: Request) -> AppContext:
    """The context built by the application lifespan."""
    return request.app.state.context


async def get_db(
    context: Annotated[AppContext, Depends(get_context)],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped database session.

    Committed when the handler returns, rolled back if it raises.
    """
    async with context.session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


ContextDep = Annotated[AppContext, Depends(get_context)]
DbDep = Annotated[AsyncSession, Depends(get_db)]


def get_source_service(db: DbDep, context: ContextDep) -> SourceService:
    return SourceService(db, context.queue, context.settings)


def get_paper_service(db: DbDep, context: ContextDep) -> PaperService:
    return PaperService(db, context.queue, context.settings)


def get_attempt_service(db: DbDep, context: ContextDep) -> AttemptService:
    return AttemptService(db, context.queue, context.settings)
