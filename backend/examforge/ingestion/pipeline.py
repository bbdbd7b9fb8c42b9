"""
ExamForge - Source Ingestion Pipeline
Fetch remote material into documents, then chunk and embed a source.
"""
import hashlib
import logging
import uuid
from typing import TYPE_CHECKING, Optional

import httpx
from sqlalchemy import delete, select, update

from examforge.core.constants import EntityKind, JobName
from examforge.core.errors import IngestionError, NotFoundError, ProviderError
from examforge.ingestion.chunker import ContentChunker
from examforge.ingestion.embedder import EmbeddingIndexer
from examforge.ingestion.github import (
    GitHubClient,
    GitHubLocation,
    build_file_url,
    detect_language,
    filter_files,
    is_doc_extension,
    parse_github_url,
)
from examforge.ingestion.web import fetch_page
from examforge.jobs.status import publish_status
from examforge.models import Chunk, DocType, Document, Source, SourceStatus, SourceType

if TYPE_CHECKING:
    from examforge.core.context import AppContext

logger = logging.getLogger(__name__)


def content_hash(text: str) -> str:
    """SHA-256 hex digest of the raw text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class SourceIngestor:
    """Handlers for the ``fetch_source`` and ``chunk_and_embed`` jobs."""

    def __init__(self, context: "AppContext"):
        self.context = context
        self.settings = context.settings
        self.session_maker = context.session_maker
        self.chunker = ContentChunker(max_chars=context.settings.CHUNK_MAX_CHARS)
        self.indexer = EmbeddingIndexer(
            context.session_maker,
            context.llm,
            batch_size=context.settings.EMBEDDING_BATCH_SIZE,
        )
        self.github = GitHubClient(context.http)

    async def _load_source(self, source_id: uuid.UUID) -> Source:
        async with self.session_maker() as session:
            source = await session.get(Source, source_id)
        if source is None:
            raise NotFoundError(f"Source not found: {source_id}")
        return source

    async def _set_status(
        self,
        source_id: uuid.UUID,
        status: SourceStatus,
        error: Optional[str] = None,
    ) -> None:
        async with self.session_maker() as session:
            async with session.begin():
                await session.execute(
                    update(Source)
                    .where(Source.id == source_id)
                    .values(status=status.value, error=error)
                )
        await publish_status(self.context.bus, EntityKind.SOURCE, source_id, status.value, error)

    # ------------------------------------------------------------------
    # chunk_and_embed
    # ------------------------------------------------------------------

    async def chunk_and_embed(self, source_id: uuid.UUID) -> int:
        """
        Replace every chunk of the source, then embed them best-effort.

        Returns the number of chunks written. Zero chunks over the whole
        source is a failure, and is detected before anything is deleted.
        """
        await self._load_source(source_id)

        async with self.session_maker() as session:
            result = await session.execute(
                select(Document)
                .where(Document.source_id == source_id)
                .order_by(Document.created_at, Document.id)
            )
            documents = list(result.scalars().all())

        if not documents:
            raise IngestionError(f"No documents found for source {source_id}")

        await self._set_status(source_id, SourceStatus.PROCESSING)

        plans = [(doc.id, self.chunker.chunk(doc.content_text)) for doc in documents]
        if not any(doc_plans for _, doc_plans in plans):
            raise IngestionError("No chunks generated (empty input?)")

        new_chunks: list[tuple[uuid.UUID, str]] = []
        async with self.session_maker() as session:
            async with session.begin():
                document_ids = select(Document.id).where(Document.source_id == source_id)
                await session.execute(delete(Chunk).where(Chunk.document_id.in_(document_ids)))

                for document_id, doc_plans in plans:
                    for index, plan in enumerate(doc_plans):
                        chunk = Chunk(
                            id=uuid.uuid4(),
                            document_id=document_id,
                            chunk_index=index,
                            text=plan.text,
                            meta=plan.meta,
                        )
                        session.add(chunk)
                        new_chunks.append((chunk.id, chunk.text))
                    logger.info("Document %s: %d chunks", document_id, len(doc_plans))

        await self.indexer.index(new_chunks)

        await self._set_status(source_id, SourceStatus.READY)
        logger.info("Source %s ready with %d chunks", source_id, len(new_chunks))
        return len(new_chunks)

    # ------------------------------------------------------------------
    # fetch_source
    # ------------------------------------------------------------------

    async def fetch(self, source_id: uuid.UUID, data: dict) -> int:
        """
        Fetch remote content into documents and chain the chunk job.

        Documents of the source are replaced, so a retried fetch does not
        duplicate them. Returns the number of documents stored.
        """
        source = await self._load_source(source_id)
        await self._set_status(source_id, SourceStatus.PROCESSING)

        if source.type == SourceType.GITHUB.value:
            documents = await self._fetch_github(source, data)
        elif source.type == SourceType.URL.value:
            documents = await self._fetch_url(source, data)
        else:
            raise IngestionError(f"Source type {source.type} has nothing to fetch")

        async with self.session_maker() as session:
            async with session.begin():
                await session.execute(delete(Document).where(Document.source_id == source_id))
                session.add_all(documents)

        await self.context.queue.enqueue(
            JobName.CHUNK_AND_EMBED,
            {"sourceId": str(source_id)},
            attempts=self.settings.JOB_MAX_ATTEMPTS,
            backoff=self.settings.JOB_BACKOFF_SECONDS,
        )
        logger.info("Source %s: stored %d documents, chunking enqueued", source_id, len(documents))
        return len(documents)

    def _github_location(self, source: Source, data: dict) -> GitHubLocation:
        if data.get("owner") and data.get("repo"):
            return GitHubLocation(
                owner=data["owner"],
                repo=data["repo"],
                ref=data.get("ref") or None,
                subpath=data.get("subpath") or None,
            )
        url = data.get("url") or source.uri
        if not url:
            raise IngestionError("GitHub source has no repository URL")
        return parse_github_url(url)

    async def _fetch_github(self, source: Source, data: dict) -> list[Document]:
        location = self._github_location(source, data)
        logger.info(
            "Fetching %s ref=%s subpath=%s",
            location.full_name, location.ref or "default", location.subpath or "/",
        )

        ref, entries = await self.github.fetch_repo_tree(location.owner, location.repo, location.ref)
        files = filter_files(
            entries,
            location.subpath,
            max_files=self.settings.GITHUB_MAX_FILES,
            max_file_size=self.settings.GITHUB_MAX_FILE_BYTES,
        )
        logger.info("Tree has %d blobs at %s, %d selected", len(entries), ref, len(files))
        if not files:
            raise IngestionError("No supported files found in the repository (or subpath).")

        documents = []
        for i, entry in enumerate(files, start=1):
            try:
                content = await self.github.fetch_file_content(
                    location.owner, location.repo, ref, entry.path
                )
            except (ProviderError, httpx.HTTPError) as e:
                logger.warning("Skipped %s [%d/%d]: %s", entry.path, i, len(files), e)
                continue
            if not content.strip():
                continue

            is_doc = is_doc_extension(entry.path)
            documents.append(Document(
                id=uuid.uuid4(),
                source_id=source.id,
                doc_type=DocType.GITHUB_FILE.value,
                uri=build_file_url(location.owner, location.repo, ref, entry.path),
                title=entry.path,
                content_hash=content_hash(content),
                content_text=content,
                content_md=content if is_doc else None,
                meta={
                    "path": entry.path,
                    "repo": location.full_name,
                    "ref": ref,
                    "language": detect_language(entry.path),
                },
            ))

        if not documents:
            raise IngestionError("None of the selected repository files could be fetched.")
        return documents

    async def _fetch_url(self, source: Source, data: dict) -> list[Document]:
        url = data.get("url") or source.uri
        if not url:
            raise IngestionError("URL source has no URL")

        page = await fetch_page(self.context.http, url)
        if not page.text.strip():
            raise IngestionError(f"No text content found at {url}")

        return [Document(
            id=uuid.uuid4(),
            source_id=source.id,
            doc_type=DocType.WEB_PAGE.value,
            uri=url,
            title=page.title,
            content_hash=content_hash(page.text),
            content_text=page.text,
            content_md=page.text if page.is_markdown else None,
            meta={"sourceType": source.type, "url": url},
        )]
