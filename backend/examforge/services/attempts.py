"""
ExamForge - Attempt Service
Start attempts, accept submissions and read back grades.
"""
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from examforge.core.config import Settings
from examforge.core.constants import JobName, parse_uuid
from examforge.core.database import upsert, utcnow
from examforge.core.errors import InputError, NotFoundError, PreconditionError
from examforge.jobs.queue import JobQueue
from examforge.models import (
    Answer,
    Attempt,
    AttemptStatus,
    Grade,
    Paper,
    PaperStatus,
    Question,
    WrongItem,
)
from examforge.schemas.attempt import SubmitAttemptRequest

logger = logging.getLogger(__name__)

LIST_LIMIT = 50
MAX_LIST_LIMIT = 200
WRONG_ITEMS_LIMIT = 200


@dataclass
class AttemptSummaryRow:
    attempt: Attempt
    paper_title: str
    total_questions: int
    graded_questions: int
    score: float
    max_score: float


class AttemptService:
    """Per-request attempt operations for the fixed principal."""

    def __init__(self, db: AsyncSession, queue: JobQueue, settings: Settings):
        self.db = db
        self.queue = queue
        self.settings = settings
        self.user_id = parse_uuid(settings.DEFAULT_USER_ID)

    async def create(self, paper_id: uuid.UUID) -> Attempt:
        paper = await self.db.get(Paper, paper_id)
        if paper is None:
            raise NotFoundError("Paper not found")
        if paper.status != PaperStatus.READY.value:
            raise PreconditionError(f"Paper not ready (status {paper.status})")

        attempt = Attempt(
            id=uuid.uuid4(),
            paper_id=paper.id,
            user_id=self.user_id,
            status=AttemptStatus.IN_PROGRESS.value,
        )
        self.db.add(attempt)
        await self.db.commit()
        return attempt

    async def get(self, attempt_id: uuid.UUID) -> Attempt:
        attempt = await self.db.get(Attempt, attempt_id)
        if attempt is None or attempt.user_id != self.user_id:
            raise NotFoundError("Attempt not found")
        return attempt

    async def paper(self, attempt: Attempt) -> Paper:
        paper = await self.db.get(Paper, attempt.paper_id)
        if paper is None:
            raise NotFoundError("Paper not found")
        return paper

    async def questions(self, paper_id: uuid.UUID) -> list[Question]:
        result = await self.db.execute(
            select(Question).where(Question.paper_id == paper_id).order_by(Question.position)
        )
        return list(result.scalars().all())

    async def answers(self, attempt_id: uuid.UUID) -> list[Answer]:
        result = await self.db.execute(select(Answer).where(Answer.attempt_id == attempt_id))
        return list(result.scalars().all())

    async def grades(self, attempt_id: uuid.UUID) -> list[Grade]:
        result = await self.db.execute(select(Grade).where(Grade.attempt_id == attempt_id))
        return list(result.scalars().all())

    async def submit(self, attempt_id: uuid.UUID, request: SubmitAttemptRequest) -> Attempt:
        """
        Mark the attempt SUBMITTED and store the answers in one transaction,
        then enqueue grading. The status flip is conditional on IN_PROGRESS,
        so of two concurrent submissions exactly one is accepted.

        Raises:
            PreconditionError: the attempt is not IN_PROGRESS (nothing is written)
            InputError: an answer names a question outside the attempt's paper
        """
        attempt = await self.get(attempt_id)
        if attempt.status != AttemptStatus.IN_PROGRESS.value:
            raise PreconditionError(f"Attempt not in progress (status {attempt.status})")

        question_ids = set((await self.db.execute(
            select(Question.id).where(Question.paper_id == attempt.paper_id)
        )).scalars().all())
        unknown = [str(a.question_id) for a in request.answers if a.question_id not in question_ids]
        if unknown:
            raise InputError(f"Questions not in this paper: {', '.join(unknown)}")

        now = utcnow()
        flipped = await self.db.execute(
            update(Attempt)
            .where(Attempt.id == attempt_id, Attempt.status == AttemptStatus.IN_PROGRESS.value)
            .values(status=AttemptStatus.SUBMITTED.value, submitted_at=now, error=None)
        )
        if flipped.rowcount == 0:
            # Another submission flipped it first
            await self.db.rollback()
            raise PreconditionError("Attempt already submitted")

        for answer in request.answers:
            stmt = upsert(self.db, Answer).values(
                id=uuid.uuid4(),
                attempt_id=attempt_id,
                question_id=answer.question_id,
                answer_option_id=answer.option_id,
                answer_text=answer.text,
                created_at=now,
                updated_at=now,
            )
            await self.db.execute(stmt.on_conflict_do_update(
                index_elements=[Answer.attempt_id, Answer.question_id],
                set_={
                    "answer_option_id": stmt.excluded.answer_option_id,
                    "answer_text": stmt.excluded.answer_text,
                    "updated_at": stmt.excluded.updated_at,
                },
            ))

        await self.db.commit()
        await self.db.refresh(attempt)

        await self._enqueue_grading(attempt)
        return attempt

    async def retry_grading(self, attempt_id: uuid.UUID) -> Attempt:
        """Re-enqueue grading of a SUBMITTED attempt whose last run failed."""
        attempt = await self.get(attempt_id)
        if attempt.status != AttemptStatus.SUBMITTED.value or not attempt.error:
            raise PreconditionError(f"Attempt has no failed grading to retry (status {attempt.status})")

        await self.db.execute(update(Attempt).where(Attempt.id == attempt_id).values(error=None))
        await self.db.commit()
        await self.db.refresh(attempt)

        await self._enqueue_grading(attempt)
        return attempt

    async def _enqueue_grading(self, attempt: Attempt) -> None:
        try:
            await self.queue.enqueue(
                JobName.GRADE_ATTEMPT,
                {"attemptId": str(attempt.id)},
                attempts=self.settings.JOB_MAX_ATTEMPTS,
                backoff=self.settings.JOB_BACKOFF_SECONDS,
            )
        except Exception as e:
            logger.error("Could not enqueue grading for attempt %s: %s", attempt.id, e)
            await self.db.execute(
                update(Attempt)
                .where(Attempt.id == attempt.id)
                .values(error=f"Could not enqueue grading: {e}")
            )
            await self.db.commit()
            raise

    async def ensure_submitted(self, attempt_id: uuid.UUID) -> Attempt:
        attempt = await self.get(attempt_id)
        if attempt.status == AttemptStatus.IN_PROGRESS.value:
            raise PreconditionError("Attempt not submitted")
        return attempt

    async def list_recent(self, limit: int = LIST_LIMIT) -> list[AttemptSummaryRow]:
        limit = max(1, min(MAX_LIST_LIMIT, limit))

        total_questions = (
            select(func.count(Question.id))
            .where(Question.paper_id == Attempt.paper_id)
            .correlate(Attempt)
            .scalar_subquery()
        )
        graded_questions = (
            select(func.count(Grade.id))
            .where(Grade.attempt_id == Attempt.id)
            .correlate(Attempt)
            .scalar_subquery()
        )
        score = (
            select(func.coalesce(func.sum(Grade.score), 0.0))
            .where(Grade.attempt_id == Attempt.id)
            .correlate(Attempt)
            .scalar_subquery()
        )
        max_score = (
            select(func.coalesce(func.sum(Grade.max_score), 0.0))
            .where(Grade.attempt_id == Attempt.id)
            .correlate(Attempt)
            .scalar_subquery()
        )

        result = await self.db.execute(
            select(Attempt, Paper.title, total_questions, graded_questions, score, max_score)
            .join(Paper, Paper.id == Attempt.paper_id)
            .where(Attempt.user_id == self.user_id)
            .order_by(Attempt.started_at.desc())
            .limit(limit)
        )
        return [
            AttemptSummaryRow(
                attempt=row[0],
                paper_title=row[1],
                total_questions=row[2] or 0,
                graded_questions=row[3] or 0,
                score=float(row[4] or 0),
                max_score=float(row[5] or 0),
            )
            for row in result.all()
        ]

    async def wrong_items(self, limit: int = WRONG_ITEMS_LIMIT) -> list[WrongItem]:
        result = await self.db.execute(
            select(WrongItem)
            .where(WrongItem.user_id == self.user_id)
            .order_by(WrongItem.last_wrong_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
