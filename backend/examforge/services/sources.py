"""
ExamForge - Source Service
Import study material and read back its ingestion state.
"""
import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from examforge.core.config import Settings
from examforge.core.constants import JobName
from examforge.core.errors import NotFoundError
from examforge.ingestion.github import parse_github_url
from examforge.ingestion.pipeline import content_hash
from examforge.jobs.queue import JobQueue
from examforge.models import Chunk, DocType, Document, Source, SourceStatus
from examforge.schemas.source import (
    CreateGithubSource,
    CreateMarkdownSource,
    CreatePasteSource,
    DocumentPreview,
    SourceCounts,
)

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 800
LIST_LIMIT = 50


def default_title(source_type: str) -> str:
    return f"{source_type} {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')}"


class SourceService:
    """
    Per-request source operations.

    Imports commit the source before enqueueing the job that processes it,
    so a worker never sees a job for a row that does not exist yet.
    """

    def __init__(self, db: AsyncSession, queue: JobQueue, settings: Settings):
        self.db = db
        self.queue = queue
        self.settings = settings

    async def create(self, request) -> Source:
        if isinstance(request, (CreatePasteSource, CreateMarkdownSource)):
            return await self._create_inline(request)
        return await self._create_remote(request)

    async def _create_inline(self, request) -> Source:
        is_markdown = isinstance(request, CreateMarkdownSource)
        text = request.md if is_markdown else request.text

        source = Source(
            id=uuid.uuid4(),
            type=request.type,
            title=request.title or default_title(request.type),
            status=SourceStatus.PENDING.value,
        )
        self.db.add(source)
        self.db.add(Document(
            id=uuid.uuid4(),
            source_id=source.id,
            doc_type=DocType.ARTICLE.value,
            title=source.title,
            content_hash=content_hash(text),
            content_text=text,
            content_md=text if is_markdown else None,
            meta={"sourceType": request.type},
        ))
        await self.db.commit()

        await self._enqueue(
            source,
            JobName.CHUNK_AND_EMBED,
            {"sourceId": str(source.id)},
            attempts=self.settings.JOB_MAX_ATTEMPTS,
            backoff=self.settings.JOB_BACKOFF_SECONDS,
        )
        return source

    async def _create_remote(self, request) -> Source:
        data: dict = {}
        if isinstance(request, CreateGithubSource):
            location = parse_github_url(request.url)
            uri = request.url
            title = request.title or location.full_name
            data = {
                "owner": location.owner,
                "repo": location.repo,
                "ref": location.ref,
                "subpath": location.subpath,
            }
        else:
            uri = str(request.url)
            title = request.title or default_title(request.type)

        source = Source(
            id=uuid.uuid4(),
            type=request.type,
            title=title,
            uri=uri,
            status=SourceStatus.PENDING.value,
        )
        self.db.add(source)
        await self.db.commit()

        await self._enqueue(
            source,
            JobName.FETCH_SOURCE,
            {"sourceId": str(source.id), "url": uri, **{k: v for k, v in data.items() if v}},
            attempts=self.settings.FETCH_JOB_MAX_ATTEMPTS,
            backoff=self.settings.FETCH_JOB_BACKOFF_SECONDS,
        )
        return source

    async def _enqueue(self, source: Source, name: JobName, data: dict, attempts: int, backoff: float) -> None:
        try:
            await self.queue.enqueue(name, data, attempts=attempts, backoff=backoff)
        except Exception as e:
            logger.error("Could not enqueue %s for source %s: %s", name.value, source.id, e)
            await self.db.execute(
                update(Source)
                .where(Source.id == source.id)
                .values(status=SourceStatus.FAILED.value, error=f"Could not enqueue {name.value}: {e}")
            )
            await self.db.commit()
            raise

    async def get(self, source_id: uuid.UUID) -> Source:
        source = await self.db.get(Source, source_id)
        if source is None:
            raise NotFoundError("Source not found")
        return source

    async def counts(self, source_id: uuid.UUID) -> SourceCounts:
        documents = await self.db.scalar(
            select(func.count(Document.id)).where(Document.source_id == source_id)
        )
        chunks = await self.db.scalar(
            select(func.count(Chunk.id))
            .join(Document, Document.id == Chunk.document_id)
            .where(Document.source_id == source_id)
        )
        return SourceCounts(documents=documents or 0, chunks=chunks or 0)

    async def list_recent(self, limit: int = LIST_LIMIT) -> list[Source]:
        result = await self.db.execute(
            select(Source).order_by(Source.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def preview(self, source_id: uuid.UUID) -> list[DocumentPreview]:
        """First characters of every document, in import order."""
        await self.get(source_id)
        result = await self.db.execute(
            select(Document)
            .where(Document.source_id == source_id)
            .order_by(Document.created_at, Document.id)
        )
        return [
            DocumentPreview(
                id=doc.id,
                doc_type=doc.doc_type,
                uri=doc.uri,
                title=doc.title,
                meta=doc.meta or {},
                chars=len(doc.content_text),
                preview=doc.content_text[:PREVIEW_CHARS],
            )
            for doc in result.scalars().all()
        ]

    async def delete(self, source_id: uuid.UUID) -> None:
        source = await self.get(source_id)
        await self.db.delete(source)
        await self.db.commit()
        logger.info("Deleted source %s", source_id)

