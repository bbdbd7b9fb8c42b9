"""
ExamForge - Paper Models
Generated exams, their questions and the chunk citations grounding them.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from examforge.core.database import Base, JSONType, utcnow


class PaperStatus(str, Enum):
    """Paper generation lifecycle."""
    DRAFT = "DRAFT"
    PROCESSING = "PROCESSING"
    READY = "READY"
    FAILED = "FAILED"


class QuestionType(str, Enum):
    MCQ = "MCQ"
    SHORT_ANSWER = "SHORT_ANSWER"


class Paper(Base):
    """A generated exam tied to exactly one source."""

    __tablename__ = "papers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    source_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("sources.id", ondelete="CASCADE"),
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    # {language, numQuestions, difficulty, mix: {mcq, shortAnswer}}
    config: Mapped[dict] = mapped_column(JSONType, default=dict)
    status: Mapped[str] = mapped_column(String(32), default=PaperStatus.DRAFT.value)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    questions: Mapped[list["Question"]] = relationship(
        "Question",
        back_populates="paper",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Question.position",
    )

    def __repr__(self) -> str:
        return f"<Paper {self.title} ({self.status})>"


class Question(Base):
    """
    One exam item.

    MCQ: ``options`` holds exactly four ``{id, text}`` entries (A-D) and
    ``answer_key`` is ``{correctOptionId, rationale}``.
    SHORT_ANSWER: ``answer_key`` is ``{referenceAnswer}`` and ``rubric`` a
    list of ``{id, points, criteria}`` summing to ``max_score``.
    """

    __tablename__ = "questions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    paper_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("papers.id", ondelete="CASCADE"),
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    difficulty: Mapped[int] = mapped_column(Integer, default=2)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    options: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    answer_key: Mapped[dict] = mapped_column(JSONType, default=dict)
    rubric: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    tags: Mapped[list] = mapped_column(JSONType, default=list)
    max_score: Mapped[float] = mapped_column(default=1.0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    paper: Mapped["Paper"] = relationship("Paper", back_populates="questions")
    citations: Mapped[list["QuestionCitation"]] = relationship(
        "QuestionCitation",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Question {self.position} {self.type}>"


class QuestionCitation(Base):
    """Question -> chunk grounding link."""

    __tablename__ = "question_citations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    question_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("questions.id", ondelete="CASCADE"),
        index=True,
    )
    chunk_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("chunks.id", ondelete="CASCADE"),
        index=True,
    )
    snippet: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
