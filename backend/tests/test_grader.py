"""
ExamForge - Attempt Grader Tests
"""
import json
import uuid

import pytest
from sqlalchemy import select, update

from examforge.grading.grader import (
    AttemptGrader,
    clamp,
    finalize_short_answer,
    grade_mcq,
    mcq_feedback,
    rubric_total,
)
from examforge.models import Answer, Attempt, AttemptStatus, Grade, PaperStatus, WrongItem
from examforge.schemas.llm import LlmGrade

from factories import DEFAULT_USER_ID, add_mcq, add_short_answer, create_attempt, create_paper, create_source

RUBRIC = [
    {"id": "p1", "points": 2, "criteria": "Names the organelle"},
    {"id": "p2", "points": 3, "criteria": "Explains ATP production"},
]


async def _answer(session_maker, attempt_id, question_id, option=None, text=None) -> None:
    async with session_maker() as session:
        async with session.begin():
            session.add(Answer(
                attempt_id=attempt_id,
                question_id=question_id,
                answer_option_id=option,
                answer_text=text,
            ))


async def _grades(session_maker, attempt_id) -> dict[uuid.UUID, Grade]:
    async with session_maker() as session:
        result = await session.execute(select(Grade).where(Grade.attempt_id == attempt_id))
        return {g.question_id: g for g in result.scalars().all()}


async def _wrong_items(session_maker) -> dict[uuid.UUID, WrongItem]:
    async with session_maker() as session:
        result = await session.execute(select(WrongItem))
        return {w.question_id: w for w in result.scalars().all()}


async def _ready_paper(session_maker, texts=("Mitochondria make ATP.",)):
    source_id, chunk_ids = await create_source(session_maker, texts=texts)
    paper_id = await create_paper(session_maker, source_id, status=PaperStatus.READY)
    return paper_id, chunk_ids


# =============================================================================
# Pure scoring
# =============================================================================

def test_grade_mcq_is_case_insensitive():
    assert grade_mcq("B", " b ").correct
    assert grade_mcq("B", "b").score == 1.0
    assert not grade_mcq("B", "C").correct
    assert not grade_mcq("B", None).correct
    assert not grade_mcq(None, "").correct


def test_mcq_feedback():
    assert mcq_feedback(grade_mcq("B", "B"), "Because.") == "Correct.\n\nExplanation: Because."
    assert mcq_feedback(grade_mcq("B", "A"), "") == "Incorrect. Correct answer: B."
    assert mcq_feedback(grade_mcq(None, "A"), "") == "Incorrect. Correct answer: (missing)."


def test_rubric_total_and_clamp():
    assert rubric_total(RUBRIC) == 5.0
    assert rubric_total([{"id": "p1", "points": "2"}, {"id": "p2", "points": 1.5}]) == 1.5
    assert rubric_total(None) == 0.0
    assert clamp(7, 0, 5) == 5
    assert clamp(-1, 0, 5) == 0


def test_finalize_backfills_missing_points_and_suggestions():
    grade = LlmGrade.model_validate({
        "score": 2,
        "maxScore": 5,
        "hitPoints": [{"rubricPointId": "p1"}],
        "feedbackMd": "Partly right.",
        "recommendedReviewChunkIds": ["c1", "c7"],
    })
    chunk_id = uuid.uuid4()

    score, verdict = finalize_short_answer(grade, RUBRIC, 5.0, "Reference.", {"c1": chunk_id})

    assert score == 2
    assert verdict["missingPoints"] == ["p2: Explains ATP production"]
    assert verdict["actionableSuggestions"] == ["p2: Explains ATP production"]
    assert verdict["suggestedAnswer"] == "Reference."
    assert verdict["recommendedReviewChunkIds"] == [str(chunk_id)]
    assert verdict["hitPoints"] == [{"rubricPointId": "p1"}]


def test_finalize_clamps_and_keeps_model_fields():
    grade = LlmGrade.model_validate({
        "score": 9,
        "maxScore": 9,
        "missingPoints": [],
        "actionableSuggestions": ["Keep going"],
        "suggestedAnswer": "Model answer.",
        "feedbackMd": "Great.",
    })
    score, verdict = finalize_short_answer(grade, RUBRIC, 5.0, "Reference.", {})

    assert score == 5.0
    assert verdict["missingPoints"] == []
    assert verdict["actionableSuggestions"] == ["Keep going"]
    assert verdict["suggestedAnswer"] == "Model answer."


def test_finalize_caps_fallback_suggestions():
    rubric = [{"id": f"p{i}", "points": 1, "criteria": f"Point {i}"} for i in range(8)]
    grade = LlmGrade.model_validate({"score": 0, "maxScore": 8, "feedbackMd": "Missing everything."})

    _, verdict = finalize_short_answer(grade, rubric, 8.0, None, {})

    assert len(verdict["missingPoints"]) == 8
    assert len(verdict["actionableSuggestions"]) == 6
    assert verdict["suggestedAnswer"] is None


# =============================================================================
# Attempt grading
# =============================================================================

@pytest.mark.asyncio
async def test_mcq_only_attempt_totals_and_wrong_items(context, session_maker, fake_redis):
    paper_id, _ = await _ready_paper(session_maker)
    right = await add_mcq(session_maker, paper_id, 0, correct="B")
    wrong = await add_mcq(session_maker, paper_id, 1, correct="C", tags=("organelles",))
    attempt_id = await create_attempt(session_maker, paper_id)
    await _answer(session_maker, attempt_id, right, option="b")
    await _answer(session_maker, attempt_id, wrong, option="A")

    results = await AttemptGrader(context).grade(attempt_id)

    assert sum(r.score for r in results) == 1
    assert sum(r.max_score for r in results) == 2
    grades = await _grades(session_maker, attempt_id)
    assert grades[right].verdict == {"correct": True, "expected": "B", "got": "B"}
    assert grades[wrong].feedback_md.startswith("Incorrect. Correct answer: C.")

    wrong_items = await _wrong_items(session_maker)
    assert list(wrong_items) == [wrong]
    assert wrong_items[wrong].wrong_count == 1
    assert wrong_items[wrong].weak_tags == ["organelles"]
    assert wrong_items[wrong].user_id == uuid.UUID(DEFAULT_USER_ID)

    async with session_maker() as session:
        attempt = await session.get(Attempt, attempt_id)
    assert attempt.status == AttemptStatus.GRADED.value
    assert attempt.graded_at is not None
    events = [json.loads(m) for c, m in fake_redis.published if c == f"attempt:{attempt_id}"]
    assert events == [{"type": "attempt", "id": str(attempt_id), "status": "GRADED"}]


@pytest.mark.asyncio
async def test_unanswered_mcq_is_wrong(context, session_maker):
    paper_id, _ = await _ready_paper(session_maker)
    question_id = await add_mcq(session_maker, paper_id, 0)
    attempt_id = await create_attempt(session_maker, paper_id)

    results = await AttemptGrader(context).grade(attempt_id)

    assert results[0].score == 0
    assert results[0].verdict["got"] == ""
    assert question_id in await _wrong_items(session_maker)


@pytest.mark.asyncio
async def test_wrong_count_accumulates_across_attempts(context, session_maker):
    paper_id, _ = await _ready_paper(session_maker)
    question_id = await add_mcq(session_maker, paper_id, 0, correct="B")
    grader = AttemptGrader(context)

    for _ in range(2):
        attempt_id = await create_attempt(session_maker, paper_id)
        await _answer(session_maker, attempt_id, question_id, option="D")
        await grader.grade(attempt_id)

    assert (await _wrong_items(session_maker))[question_id].wrong_count == 2


@pytest.mark.asyncio
async def test_short_answer_uses_cited_chunks_and_clamps(context, session_maker, fake_llm):
    paper_id, chunk_ids = await _ready_paper(session_maker)
    question_id = await add_short_answer(session_maker, paper_id, 0, rubric=RUBRIC, chunk_ids=tuple(chunk_ids))
    attempt_id = await create_attempt(session_maker, paper_id)
    await _answer(session_maker, attempt_id, question_id, text="Mitochondria make ATP.")
    fake_llm.responses = [{
        "score": 12,
        "maxScore": 5,
        "hitPoints": [{"rubricPointId": "p1", "comment": "Named it (c1)"}, {"rubricPointId": "p2"}],
        "feedbackMd": "## Overall\nExcellent.",
        "recommendedReviewChunkIds": [],
        "confidence": 0.9,
    }]

    results = await AttemptGrader(context).grade(attempt_id)

    assert results[0].score == 5.0
    assert results[0].max_score == 5.0
    assert not results[0].is_wrong
    grade = (await _grades(session_maker, attempt_id))[question_id]
    assert grade.feedback_md == "## Overall\nExcellent."
    assert grade.confidence == 0.9
    assert grade.citations == [str(chunk_ids[0])]
    assert await _wrong_items(session_maker) == {}

    call = fake_llm.calls[0]
    assert call["temperature"] == AttemptGrader.TEMPERATURE
    assert "maxScore=5" in call["prompt"]
    assert '"ref": "c1"' in call["prompt"]
    assert "Mitochondria make ATP." in call["prompt"]


@pytest.mark.asyncio
async def test_partial_short_answer_is_a_wrong_item(context, session_maker, fake_llm):
    paper_id, _ = await _ready_paper(session_maker)
    question_id = await add_short_answer(session_maker, paper_id, 0, rubric=RUBRIC)
    attempt_id = await create_attempt(session_maker, paper_id)
    await _answer(session_maker, attempt_id, question_id, text="It is an organelle.")
    fake_llm.responses = [{
        "score": 2,
        "maxScore": 5,
        "rubricBreakdown": [
            {"id": "p1", "pointsAwarded": 2, "pointsPossible": 2},
            {"id": "p2", "pointsAwarded": 0, "pointsPossible": 3},
        ],
    }]

    results = await AttemptGrader(context).grade(attempt_id)

    assert results[0].is_wrong
    assert results[0].verdict["missingPoints"] == ["p2: missing 3 point(s)"]
    assert results[0].verdict["suggestedAnswer"] == "It produces ATP through respiration."
    assert question_id in await _wrong_items(session_maker)


@pytest.mark.asyncio
async def test_short_answer_without_credentials_is_visible_zero(context, session_maker, fake_llm):
    paper_id, _ = await _ready_paper(session_maker)
    question_id = await add_short_answer(session_maker, paper_id, 0, rubric=RUBRIC)
    attempt_id = await create_attempt(session_maker, paper_id)
    fake_llm.has_credentials = False

    results = await AttemptGrader(context).grade(attempt_id)

    assert results[0].score == 0
    assert results[0].max_score == 5.0
    assert results[0].verdict == {"error": "OPENAI_API_KEY is not set"}
    assert results[0].feedback_md == "Cannot grade this answer: OPENAI_API_KEY is not set."
    assert results[0].confidence == 0.0
    assert fake_llm.calls == []
    assert question_id in await _wrong_items(session_maker)


@pytest.mark.asyncio
async def test_only_submitted_attempts_are_graded(context, session_maker):
    paper_id, _ = await _ready_paper(session_maker)
    await add_mcq(session_maker, paper_id, 0)
    in_progress = await create_attempt(session_maker, paper_id, status=AttemptStatus.IN_PROGRESS)

    assert await AttemptGrader(context).grade(in_progress) is None
    assert await _grades(session_maker, in_progress) == {}


@pytest.mark.asyncio
async def test_regrading_a_graded_attempt_is_a_noop(context, session_maker):
    paper_id, _ = await _ready_paper(session_maker)
    question_id = await add_mcq(session_maker, paper_id, 0, correct="B")
    attempt_id = await create_attempt(session_maker, paper_id)
    grader = AttemptGrader(context)

    await grader.grade(attempt_id)
    async with session_maker() as session:
        graded_at = (await session.get(Attempt, attempt_id)).graded_at

    assert await grader.grade(attempt_id) is None

    async with session_maker() as session:
        assert (await session.get(Attempt, attempt_id)).graded_at == graded_at
    assert (await _wrong_items(session_maker))[question_id].wrong_count == 1


@pytest.mark.asyncio
async def test_regrading_overwrites_existing_grade_rows(context, session_maker):
    paper_id, _ = await _ready_paper(session_maker)
    right = await add_mcq(session_maker, paper_id, 0, correct="B")
    wrong = await add_mcq(session_maker, paper_id, 1, correct="C")
    attempt_id = await create_attempt(session_maker, paper_id)
    await _answer(session_maker, attempt_id, right, option="B")
    await _answer(session_maker, attempt_id, wrong, option="D")
    grader = AttemptGrader(context)

    await grader.grade(attempt_id)
    first = {
        qid: (g.id, g.score, g.max_score, g.verdict, g.feedback_md)
        for qid, g in (await _grades(session_maker, attempt_id)).items()
    }

    async with session_maker() as session:
        async with session.begin():
            await session.execute(
                update(Attempt)
                .where(Attempt.id == attempt_id)
                .values(status=AttemptStatus.SUBMITTED.value)
            )
    await grader.grade(attempt_id)

    async with session_maker() as session:
        rows = (await session.execute(
            select(Grade).where(Grade.attempt_id == attempt_id)
        )).scalars().all()
    assert len(rows) == 2
    assert {g.question_id: (g.id, g.score, g.max_score, g.verdict, g.feedback_md) for g in rows} == first
    assert (await _wrong_items(session_maker))[wrong].wrong_count == 2


@pytest.mark.asyncio
async def test_persist_refuses_when_attempt_already_graded(context, session_maker):
    paper_id, _ = await _ready_paper(session_maker)
    await add_mcq(session_maker, paper_id, 0)
    attempt_id = await create_attempt(session_maker, paper_id, status=AttemptStatus.GRADED)
    grader = AttemptGrader(context)

    assert await grader._persist(attempt_id, DEFAULT_USER_ID, []) is False


@pytest.mark.asyncio
async def test_grading_clears_previous_error(context, session_maker):
    paper_id, _ = await _ready_paper(session_maker)
    await add_mcq(session_maker, paper_id, 0)
    attempt_id = await create_attempt(session_maker, paper_id, error="provider timeout")

    await AttemptGrader(context).grade(attempt_id)

    async with session_maker() as session:
        attempt = await session.get(Attempt, attempt_id)
    assert attempt.error is None
    assert attempt.status == AttemptStatus.GRADED.value
