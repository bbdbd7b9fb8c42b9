"""
ExamForge - Attempt API Endpoints
Take a paper, submit answers and review the graded result.
"""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from examforge.api.deps import ContextDep, get_attempt_service
from examforge.api.v1._events import event_stream
from examforge.core.constants import EntityKind
from examforge.models import Attempt
from examforge.schemas.attempt import (
    AnswerView,
    AttemptDetailResponse,
    AttemptListResponse,
    AttemptResponse,
    AttemptResultResponse,
    AttemptStatusResponse,
    AttemptSummary,
    CreateAttemptRequest,
    GradeView,
    PaperBrief,
    SubmitAttemptRequest,
    Totals,
    WrongItemListResponse,
    WrongItemView,
)
from examforge.schemas.paper import QuestionKeyView, QuestionView
from examforge.services.attempts import LIST_LIMIT, MAX_LIST_LIMIT, AttemptService

router = APIRouter(prefix="/attempts", tags=["Attempts"])
wrong_items_router = APIRouter(prefix="/wrong-items", tags=["Attempts"])

ServiceDep = Annotated[AttemptService, Depends(get_attempt_service)]


@router.get("", response_model=AttemptListResponse)
async def list_attempts(
    service: ServiceDep,
    limit: int = Query(default=LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
):
    rows = await service.list_recent(limit)
    return AttemptListResponse(items=[
        AttemptSummary(
            **AttemptResponse.model_validate(row.attempt).model_dump(),
            paper_title=row.paper_title,
            total_questions=row.total_questions,
            graded_questions=row.graded_questions,
            score=row.score,
            max_score=row.max_score,
        )
        for row in rows
    ])


@router.post("", response_model=AttemptStatusResponse, status_code=status.HTTP_201_CREATED)
async def create_attempt(request: CreateAttemptRequest, service: ServiceDep):
    attempt = await service.create(request.paper_id)
    return AttemptStatusResponse(id=attempt.id, status=attempt.status)


@router.get("/{attempt_id}", response_model=AttemptDetailResponse)
async def get_attempt(attempt_id: uuid.UUID, service: ServiceDep):
    attempt = await service.get(attempt_id)
    paper = await service.paper(attempt)
    questions = await service.questions(attempt.paper_id)
    answers = await service.answers(attempt_id)
    return AttemptDetailResponse(
        attempt=AttemptResponse.model_validate(attempt),
        paper=PaperBrief.model_validate(paper),
        questions=[QuestionView.model_validate(q) for q in questions],
        answers=[AnswerView.model_validate(a) for a in answers],
    )


@router.post("/{attempt_id}/submit", response_model=AttemptStatusResponse)
async def submit_attempt(attempt_id: uuid.UUID, request: SubmitAttemptRequest, service: ServiceDep):
    """Store the answers and start grading."""
    attempt = await service.submit(attempt_id, request)
    return AttemptStatusResponse(id=attempt.id, status=attempt.status)


@router.post("/{attempt_id}/retry-grading", response_model=AttemptStatusResponse)
async def retry_grading(attempt_id: uuid.UUID, service: ServiceDep):
    """Re-run grading for a submitted attempt whose grading failed."""
    attempt = await service.retry_grading(attempt_id)
    return AttemptStatusResponse(id=attempt.id, status=attempt.status)


@router.get("/{attempt_id}/result", response_model=AttemptResultResponse)
async def get_result(attempt_id: uuid.UUID, service: ServiceDep):
    """
    Grades with totals. Totals count every question's max score, so a
    partially graded attempt shows how much is still outstanding.
    """
    attempt = await service.ensure_submitted(attempt_id)
    questions = await service.questions(attempt.paper_id)
    answers = await service.answers(attempt_id)
    grades = await service.grades(attempt_id)
    return AttemptResultResponse(
        attempt=AttemptResponse.model_validate(attempt),
        totals=Totals(
            score=sum(g.score for g in grades),
            max=sum(q.max_score for q in questions),
        ),
        questions=[QuestionKeyView.model_validate(q) for q in questions],
        answers=[AnswerView.model_validate(a) for a in answers],
        grades=[GradeView.model_validate(g) for g in grades],
    )


@router.get("/{attempt_id}/events")
async def attempt_events(attempt_id: uuid.UUID, context: ContextDep):
    """Server-sent grading status updates for one attempt."""
    return await event_stream(context, Attempt, EntityKind.ATTEMPT, attempt_id)


@wrong_items_router.get("", response_model=WrongItemListResponse)
async def list_wrong_items(service: ServiceDep):
    """Questions answered wrongly or partially, most recent first."""
    items = await service.wrong_items()
    return WrongItemListResponse(items=[WrongItemView.model_validate(i) for i in items])
