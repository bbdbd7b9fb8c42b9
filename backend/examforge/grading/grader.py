"""
ExamForge - Attempt Grader
Deterministic MCQ scoring plus rubric grading of short answers, written
atomically together with the wrong-item aggregate.
"""
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from pydantic import ValidationError
from sqlalchemy import select, update

from examforge.core.constants import EntityKind, parse_uuid
from examforge.core.database import upsert, utcnow
from examforge.core.errors import NotFoundError, ProviderError
from examforge.generation.generator import ChunkRef, build_chunk_refs
from examforge.jobs.status import publish_status
from examforge.models import (
    Answer,
    Attempt,
    AttemptStatus,
    Chunk,
    Grade,
    Question,
    QuestionCitation,
    QuestionType,
    WrongItem,
)
from examforge.schemas.llm import LlmGrade

if TYPE_CHECKING:
    from examforge.core.context import AppContext

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 6


@dataclass
class GradeResult:
    """One question's grade, ready to upsert."""
    question_id: uuid.UUID
    score: float
    max_score: float
    verdict: dict
    feedback_md: str
    citations: list[str]
    confidence: Optional[float]
    is_wrong: bool
    tags: list[str] = field(default_factory=list)


@dataclass
class McqVerdict:
    correct: bool
    expected: str
    got: str

    @property
    def score(self) -> float:
        return 1.0 if self.correct else 0.0


def grade_mcq(correct_option_id: Optional[str], submitted_option_id: Optional[str]) -> McqVerdict:
    """Case-insensitive option comparison; a missing key is never correct."""
    expected = (correct_option_id or "").strip().upper()
    got = (submitted_option_id or "").strip().upper()
    return McqVerdict(correct=bool(expected) and got == expected, expected=expected, got=got)


def mcq_feedback(verdict: McqVerdict, rationale: str) -> str:
    explanation = f"Explanation: {rationale}" if rationale else ""
    if verdict.correct:
        return f"Correct.\n\n{explanation}".strip()
    return f"Incorrect. Correct answer: {verdict.expected or '(missing)'}.\n\n{explanation}".strip()


def rubric_total(rubric) -> float:
    if not isinstance(rubric, list):
        return 0.0
    return float(sum(
        p["points"] for p in rubric
        if isinstance(p, dict) and isinstance(p.get("points"), (int, float))
    ))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def finalize_short_answer(
    grade: LlmGrade,
    rubric: list,
    max_score: float,
    reference_answer: Optional[str],
    ref_to_chunk: dict[str, uuid.UUID],
) -> tuple[float, dict]:
    """
    Turn a validated model grade into ``(score, verdict)``.

    The score is clamped into ``[0, max_score]``. When the model leaves
    gaps, missing points are backfilled from unhit rubric points and
    suggestions fall back to the missing points.
    """
    score = clamp(grade.score, 0.0, max_score)
    hit_ids = {hit.rubric_point_id for hit in grade.hit_points}

    missing_points = list(grade.missing_points)
    if not missing_points and score < max_score:
        missing_points = [
            f"{point['id']}: {point.get('criteria') or 'Missing rubric point.'}"
            for point in rubric
            if isinstance(point, dict) and isinstance(point.get("id"), str) and point["id"] not in hit_ids
        ]

    suggestions = list(grade.actionable_suggestions) or missing_points[:MAX_SUGGESTIONS]

    suggested_answer = (grade.suggested_answer or "").strip() or (reference_answer or "").strip() or None

    recommended = [
        str(ref_to_chunk[ref])
        for ref in grade.recommended_review_chunk_ids
        if ref in ref_to_chunk
    ]

    verdict = {
        "hitPoints": [hit.model_dump(by_alias=True, exclude_none=True) for hit in grade.hit_points],
        "missingPoints": missing_points,
        "misconceptions": list(grade.misconceptions),
        "actionableSuggestions": suggestions,
        "suggestedAnswer": suggested_answer,
        "recommendedReviewChunkIds": recommended,
    }
    return score, verdict


class AttemptGrader:
    """Handler for the ``grade_attempt`` job."""

    TEMPERATURE = 0.1

    SYSTEM_PROMPT = "\n".join([
        "You are a strict exam grader AND a helpful tutor.",
        "Only use the provided reference chunks as evidence (do not use outside knowledge).",
        "Grade by rubric points.",
        "Be concrete: point to evidence and include chunk refs like (c1).",
        "Return JSON only.",
    ])

    INSTRUCTIONS = "\n".join([
        "Grade the studentAnswer based on the rubric and referenceChunks in the input JSON.",
        "",
        "You MUST output a JSON object with EXACTLY these keys:",
        "- score (number)",
        "- maxScore (number)",
        "- hitPoints (array of { rubricPointId, comment })",
        "- missingPoints (array of strings)",
        "- misconceptions (array of strings)",
        "- actionableSuggestions (array of strings)",
        "- suggestedAnswer (string)",
        "- feedbackMd (string, markdown)",
        "- recommendedReviewChunkIds (array of chunk refs like c1,c2...)",
        "- confidence (number between 0 and 1)",
        "",
        "Rules:",
        "- score must be between 0 and maxScore (maxScore={max_score}).",
        "- Use the same language as the question prompt.",
        "- hitPoints: include 1+ items when score > 0; each comment should mention what the student did right and cite evidence (c#).",
        "- missingPoints: when score < maxScore, include 1+ items; each item should start with the rubric id like `p2:` and explain what's missing and how to fix it, citing evidence (c#).",
        "- misconceptions: list specific misunderstandings (if none, return empty array).",
        "- actionableSuggestions: 3-6 concrete next steps the student can do, each should cite evidence (c#).",
        "- suggestedAnswer: a short corrected answer (1-4 sentences) that would get full points; must be supported by referenceChunks.",
        "- recommendedReviewChunkIds: pick 1-3 refs that best support the missingPoints (empty only if full score).",
        "- feedbackMd: write like a teacher, with sections: Overall, What you did well, What to improve, Suggested corrected answer, Evidence to review.",
        "Return JSON only.",
    ])

    def __init__(self, context: "AppContext"):
        self.context = context
        self.settings = context.settings
        self.session_maker = context.session_maker
        self.llm = context.llm

    async def grade(self, attempt_id: uuid.UUID) -> Optional[list[GradeResult]]:
        """
        Grade a SUBMITTED attempt. Any other status is a no-op and returns None.
        """
        async with self.session_maker() as session:
            attempt = await session.get(Attempt, attempt_id)
            if attempt is None:
                raise NotFoundError(f"Attempt not found: {attempt_id}")
            if attempt.status != AttemptStatus.SUBMITTED.value:
                logger.info("Attempt %s is %s, skipping grading", attempt_id, attempt.status)
                return None
            if attempt.error:
                await session.execute(
                    update(Attempt).where(Attempt.id == attempt_id).values(error=None)
                )
                await session.commit()

            questions = (await session.execute(
                select(Question)
                .where(Question.paper_id == attempt.paper_id)
                .order_by(Question.position)
            )).scalars().all()
            answers = {
                a.question_id: a
                for a in (await session.execute(
                    select(Answer).where(Answer.attempt_id == attempt_id)
                )).scalars().all()
            }
            citation_rows = (await session.execute(
                select(QuestionCitation.question_id, Chunk.id, Chunk.text)
                .join(Chunk, Chunk.id == QuestionCitation.chunk_id)
                .join(Question, Question.id == QuestionCitation.question_id)
                .where(Question.paper_id == attempt.paper_id)
                .order_by(QuestionCitation.question_id, QuestionCitation.id)
            )).all()

        cited: dict[uuid.UUID, list[tuple[uuid.UUID, str]]] = {}
        for question_id, chunk_id, text in citation_rows:
            cited.setdefault(question_id, []).append((chunk_id, text))

        results = []
        for question in questions:
            answer = answers.get(question.id)
            if question.type == QuestionType.MCQ.value:
                results.append(self._grade_mcq(question, answer, cited.get(question.id, [])))
            else:
                results.append(await self._grade_short_answer(question, answer, cited.get(question.id, [])))

        if not await self._persist(attempt_id, attempt.user_id, results):
            logger.info("Attempt %s was graded concurrently, discarding this run", attempt_id)
            return None

        await publish_status(self.context.bus, EntityKind.ATTEMPT, attempt_id, AttemptStatus.GRADED.value)
        logger.info(
            "Attempt %s graded: %s/%s",
            attempt_id,
            sum(r.score for r in results),
            sum(r.max_score for r in results),
        )
        return results

    def _grade_mcq(self, question: Question, answer: Optional[Answer], cited) -> GradeResult:
        key = question.answer_key or {}
        verdict = grade_mcq(key.get("correctOptionId"), answer.answer_option_id if answer else None)
        rationale = key.get("rationale") if isinstance(key.get("rationale"), str) else ""
        return GradeResult(
            question_id=question.id,
            score=verdict.score,
            max_score=1.0,
            verdict={"correct": verdict.correct, "expected": verdict.expected, "got": verdict.got},
            feedback_md=mcq_feedback(verdict, rationale),
            citations=[str(chunk_id) for chunk_id, _ in cited],
            confidence=1.0,
            is_wrong=not verdict.correct,
            tags=list(question.tags or []),
        )

    async def _grade_short_answer(self, question: Question, answer: Optional[Answer], cited) -> GradeResult:
        rubric = question.rubric or []
        max_score = rubric_total(rubric)
        citations = [str(chunk_id) for chunk_id, _ in cited]
        tags = list(question.tags or [])

        if not self.llm.has_credentials:
            message = self.llm.missing_credentials_message
            return GradeResult(
                question_id=question.id,
                score=0.0,
                max_score=max_score,
                verdict={"error": message},
                feedback_md=f"Cannot grade this answer: {message}.",
                citations=citations,
                confidence=0.0,
                is_wrong=True,
                tags=tags,
            )

        refs = build_chunk_refs(cited, self.settings.CHUNK_PROMPT_CHARS)
        reference_answer = (question.answer_key or {}).get("referenceAnswer")
        grade = await self._request_grade(question, answer, refs, rubric, max_score, reference_answer)

        score, verdict = finalize_short_answer(
            grade,
            rubric,
            max_score,
            reference_answer,
            {r.ref: r.chunk_id for r in refs},
        )
        return GradeResult(
            question_id=question.id,
            score=score,
            max_score=max_score,
            verdict=verdict,
            feedback_md=grade.feedback_md,
            citations=citations,
            confidence=grade.confidence,
            is_wrong=score < max_score,
            tags=tags,
        )

    async def _request_grade(
        self,
        question: Question,
        answer: Optional[Answer],
        refs: list[ChunkRef],
        rubric: list,
        max_score: float,
        reference_answer: Optional[str],
    ) -> LlmGrade:
        payload = json.dumps(
            {
                "prompt": question.prompt,
                "referenceAnswer": reference_answer or "",
                "rubric": rubric,
                "maxScore": max_score,
                "studentAnswer": (answer.answer_text if answer else None) or "",
                "referenceChunks": [{"ref": r.ref, "text": r.text} for r in refs],
            },
            ensure_ascii=False,
            indent=2,
        )
        instructions = self.INSTRUCTIONS.replace("{max_score}", f"{max_score:g}")
        raw = await self.llm.generate_json(
            prompt=f"{instructions}\n\nINPUT_JSON:\n{payload}\n",
            system_prompt=self.SYSTEM_PROMPT,
            temperature=self.TEMPERATURE,
            agent_name="AttemptGrader",
        )
        try:
            return LlmGrade.model_validate(raw)
        except ValidationError as e:
            raise ProviderError(f"Model returned an invalid grade: {e}") from e

    async def _persist(self, attempt_id: uuid.UUID, user_id, results: list[GradeResult]) -> bool:
        """
        Flip the attempt to GRADED and write every grade in one transaction.

        Returns False (and writes nothing) when the attempt is no longer
        SUBMITTED, i.e. another delivery of this job already graded it.
        """
        user_id = parse_uuid(user_id or self.settings.DEFAULT_USER_ID)
        now = utcnow()

        async with self.session_maker() as session:
            async with session.begin():
                flipped = await session.execute(
                    update(Attempt)
                    .where(Attempt.id == attempt_id, Attempt.status == AttemptStatus.SUBMITTED.value)
                    .values(status=AttemptStatus.GRADED.value, graded_at=now, error=None)
                )
                if flipped.rowcount == 0:
                    return False

                for result in results:
                    stmt = upsert(session, Grade).values(
                        id=uuid.uuid4(),
                        attempt_id=attempt_id,
                        question_id=result.question_id,
                        score=result.score,
                        max_score=result.max_score,
                        verdict=result.verdict,
                        feedback_md=result.feedback_md,
                        citations=result.citations,
                        confidence=result.confidence,
                    )
                    await session.execute(stmt.on_conflict_do_update(
                        index_elements=[Grade.attempt_id, Grade.question_id],
                        set_={
                            "score": stmt.excluded.score,
                            "max_score": stmt.excluded.max_score,
                            "verdict": stmt.excluded.verdict,
                            "feedback_md": stmt.excluded.feedback_md,
                            "citations": stmt.excluded.citations,
                            "confidence": stmt.excluded.confidence,
                        },
                    ))

                    if result.is_wrong:
                        stmt = upsert(session, WrongItem).values(
                            user_id=user_id,
                            question_id=result.question_id,
                            last_wrong_at=now,
                            wrong_count=1,
                            weak_tags=result.tags,
                        )
                        await session.execute(stmt.on_conflict_do_update(
                            index_elements=[WrongItem.user_id, WrongItem.question_id],
                            set_={
                                "last_wrong_at": stmt.excluded.last_wrong_at,
                                "wrong_count": WrongItem.wrong_count + 1,
                                "weak_tags": stmt.excluded.weak_tags,
                            },
                        ))
        return True
