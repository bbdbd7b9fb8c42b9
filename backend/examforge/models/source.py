"""
ExamForge - Source Models
Imported study material, its documents, chunks and chunk embeddings.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from examforge.core.constants import EMBEDDING_DIMENSIONS
from examforge.core.database import Base, JSONType, utcnow


class SourceType(str, Enum):
    """How the material was imported."""
    PASTE = "PASTE"
    MARKDOWN_UPLOAD = "MARKDOWN_UPLOAD"
    URL = "URL"
    GITHUB = "GITHUB"


class SourceStatus(str, Enum):
    """Source ingestion lifecycle."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    READY = "READY"
    FAILED = "FAILED"


class DocType(str, Enum):
    ARTICLE = "ARTICLE"
    GITHUB_FILE = "GITHUB_FILE"
    WEB_PAGE = "WEB_PAGE"


class Source(Base):
    """
    A unit of imported material.

    Mutated only by the fetch and chunk/embed jobs; read paths never
    change it.
    """

    __tablename__ = "sources"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    uri: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), default=SourceStatus.PENDING.value)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    documents: Mapped[list["Document"]] = relationship(
        "Document",
        back_populates="source",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Source {self.title} ({self.status})>"


class Document(Base):
    """One fetched or pasted file/article. Immutable once inserted."""

    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    source_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("sources.id", ondelete="CASCADE"),
        index=True,
    )
    doc_type: Mapped[str] = mapped_column(String(32), nullable=False)
    uri: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    title: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)  # sha256 hex
    content_text: Mapped[str] = mapped_column(Text, nullable=False)
    content_md: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    meta: Mapped[dict] = mapped_column(JSONType, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    source: Mapped["Source"] = relationship("Source", back_populates="documents")

    def __repr__(self) -> str:
        return f"<Document {self.doc_type} {self.uri or self.id}>"


class Chunk(Base):
    """
    A bounded passage of a document's text.

    ``chunk_index`` is dense and zero-based per document. Chunks are
    replaced wholesale when a source is re-chunked.
    """

    __tablename__ = "chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_chunks_document_index"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("documents.id", ondelete="CASCADE"),
        index=True,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    # {heading, paraStart, paraEnd}
    meta: Mapped[dict] = mapped_column(JSONType, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<Chunk {self.chunk_index} of {self.document_id}>"


class ChunkEmbedding(Base):
    """Optional 1:1 vector companion of a chunk."""

    __tablename__ = "chunk_embeddings"

    chunk_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("chunks.id", ondelete="CASCADE"),
        primary_key=True,
    )
    embedding = mapped_column(Vector(EMBEDDING_DIMENSIONS), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
