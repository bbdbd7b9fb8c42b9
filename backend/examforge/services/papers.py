"""
ExamForge - Paper Service
Create papers from ready sources and serve their questions.
"""
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from examforge.core.config import Settings
from examforge.core.constants import JobName
from examforge.core.errors import NotFoundError, PreconditionError
from examforge.jobs.queue import JobQueue
from examforge.models import Paper, PaperStatus, Question, Source, SourceStatus
from examforge.schemas.paper import CreatePaperRequest, PaperConfig

logger = logging.getLogger(__name__)

LIST_LIMIT = 50


class PaperService:
    """Per-request paper operations."""

    def __init__(self, db: AsyncSession, queue: JobQueue, settings: Settings):
        self.db = db
        self.queue = queue
        self.settings = settings

    async def create(self, request: CreatePaperRequest) -> Paper:
        """
        Insert a DRAFT paper and enqueue its generation.

        Raises:
            NotFoundError: unknown source
            PreconditionError: the source is not READY
        """
        source = await self.db.get(Source, request.source_id)
        if source is None:
            raise NotFoundError("Source not found")
        if source.status != SourceStatus.READY.value:
            raise PreconditionError(f"Source not ready (status {source.status})")

        config = request.config or PaperConfig()
        paper = Paper(
            id=uuid.uuid4(),
            source_id=source.id,
            title=(request.title or "").strip() or f"{source.title} - Paper",
            config=config.model_dump(by_alias=True),
            status=PaperStatus.DRAFT.value,
        )
        self.db.add(paper)
        await self.db.commit()

        try:
            await self.queue.enqueue(
                JobName.GENERATE_PAPER,
                {"paperId": str(paper.id)},
                attempts=self.settings.JOB_MAX_ATTEMPTS,
                backoff=self.settings.JOB_BACKOFF_SECONDS,
            )
        except Exception as e:
            logger.error("Could not enqueue generation for paper %s: %s", paper.id, e)
            await self.db.execute(
                update(Paper)
                .where(Paper.id == paper.id)
                .values(status=PaperStatus.FAILED.value, error=f"Could not enqueue generation: {e}")
            )
            await self.db.commit()
            raise
        return paper

    async def get(self, paper_id: uuid.UUID) -> Paper:
        paper = await self.db.get(Paper, paper_id)
        if paper is None:
            raise NotFoundError("Paper not found")
        return paper

    async def questions(self, paper_id: uuid.UUID) -> list[Question]:
        result = await self.db.execute(
            select(Question).where(Question.paper_id == paper_id).order_by(Question.position)
        )
        return list(result.scalars().all())

    async def list_recent(self, limit: int = LIST_LIMIT) -> list[Paper]:
        result = await self.db.execute(
            select(Paper).order_by(Paper.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())
