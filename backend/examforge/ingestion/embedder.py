"""
ExamForge - Embedding Indexer
Best-effort chunk embeddings, persisted one batch per transaction.
"""
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from examforge.ai.llm import LLMClient
from examforge.core.database import upsert
from examforge.core.errors import ProviderError
from examforge.models import ChunkEmbedding

logger = logging.getLogger(__name__)


class EmbeddingIndexer:
    """
    Embeds chunk text in fixed-size batches.

    Vectors are stored for a future retrieval step; nothing downstream
    depends on them, so an unavailable provider or a failing batch only
    stops indexing and is logged. Batches already written stay written.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        llm: LLMClient,
        batch_size: int = 64,
    ):
        self.session_maker = session_maker
        self.llm = llm
        self.batch_size = batch_size

    async def index(self, chunks: list[tuple[uuid.UUID, str]]) -> dict[uuid.UUID, list[float]]:
        """Embed ``(chunk_id, text)`` pairs; returns the vectors that were stored."""
        if not chunks:
            return {}
        if not self.llm.supports_embeddings:
            logger.info("Embedding provider not configured: skipping %d chunks", len(chunks))
            return {}

        logger.info("Embedding %d chunks using %s", len(chunks), self.llm.embedding_model)
        stored: dict[uuid.UUID, list[float]] = {}

        for start in range(0, len(chunks), self.batch_size):
            batch = chunks[start:start + self.batch_size]
            try:
                vectors = await self.llm.embed_texts([text for _, text in batch])
                if len(vectors) != len(batch):
                    raise ProviderError(
                        f"Embedding provider returned {len(vectors)} vectors for {len(batch)} texts"
                    )
                await self._store(batch, vectors)
            except Exception as e:
                logger.warning(
                    "Embedding failed at chunk %d (continuing without embeddings): %s",
                    start, e,
                )
                break
            stored.update({chunk_id: vector for (chunk_id, _), vector in zip(batch, vectors)})

        return stored

    async def _store(self, batch: list[tuple[uuid.UUID, str]], vectors: list[list[float]]) -> None:
        async with self.session_maker() as session:
            async with session.begin():
                for (chunk_id, _), vector in zip(batch, vectors):
                    stmt = upsert(session, ChunkEmbedding).values(
                        chunk_id=chunk_id,
                        embedding=vector,
                        model=self.llm.embedding_model,
                    )
                    stmt = stmt.on_conflict_do_update(
                        index_elements=[ChunkEmbedding.chunk_id],
                        set_={
                            "embedding": stmt.excluded.embedding,
                            "model": stmt.excluded.model,
                        },
                    )
                    await session.execute(stmt)
