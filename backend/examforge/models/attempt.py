"""
ExamForge - Attempt Models
Learner attempts, answers, grades and the wrong-item aggregate.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from examforge.core.database import Base, JSONType, utcnow


class AttemptStatus(str, Enum):
    """
    Attempt lifecycle; strictly forward.

    A failed grading run is an ``error`` on top of SUBMITTED, not a status.
    """
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    GRADED = "GRADED"


class Attempt(Base):
    """One learner's pass at a paper."""

    __tablename__ = "attempts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    paper_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("papers.id", ondelete="CASCADE"),
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True)
    status: Mapped[str] = mapped_column(String(32), default=AttemptStatus.IN_PROGRESS.value)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    graded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Attempt {self.id} ({self.status})>"


class Answer(Base):
    """One learner response per (attempt, question)."""

    __tablename__ = "answers"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answers_attempt_question"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    attempt_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("attempts.id", ondelete="CASCADE"),
        index=True,
    )
    question_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("questions.id", ondelete="CASCADE"),
    )
    answer_option_id: Mapped[Optional[str]] = mapped_column(String(1), nullable=True)  # MCQ
    answer_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # short answer

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )


class Grade(Base):
    """One grading result per (attempt, question); upserted on regrade."""

    __tablename__ = "grades"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_grades_attempt_question"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    attempt_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("attempts.id", ondelete="CASCADE"),
        index=True,
    )
    question_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("questions.id", ondelete="CASCADE"),
    )
    score: Mapped[float] = mapped_column(Float, nullable=False)
    max_score: Mapped[float] = mapped_column(Float, nullable=False)
    verdict: Mapped[dict] = mapped_column(JSONType, default=dict)
    feedback_md: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    citations: Mapped[list] = mapped_column(JSONType, default=list)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class WrongItem(Base):
    """Per-(user, question) aggregate of wrong or partial answers."""

    __tablename__ = "wrong_items"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    question_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("questions.id", ondelete="CASCADE"),
        primary_key=True,
    )
    last_wrong_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    wrong_count: Mapped[int] = mapped_column(Integer, default=1)
    weak_tags: Mapped[list] = mapped_column(JSONType, default=list)
