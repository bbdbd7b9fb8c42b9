"""
ExamForge - Paper API Endpoints
Generate papers from ready sources.
"""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, status

from examforge.api.deps import ContextDep, get_paper_service
from examforge.api.v1._events import event_stream
from examforge.core.constants import EntityKind
from examforge.models import Paper
from examforge.schemas.paper import (
    AnswerKeyResponse,
    CreatePaperRequest,
    PaperCreatedResponse,
    PaperListResponse,
    PaperResponse,
    PaperSummary,
    QuestionKeyView,
    QuestionView,
)
from examforge.services.papers import PaperService

router = APIRouter(prefix="/papers", tags=["Papers"])

ServiceDep = Annotated[PaperService, Depends(get_paper_service)]


@router.get("", response_model=PaperListResponse)
async def list_papers(service: ServiceDep):
    papers = await service.list_recent()
    return PaperListResponse(items=[PaperSummary.model_validate(p) for p in papers])


@router.post("", response_model=PaperCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_paper(request: CreatePaperRequest, service: ServiceDep):
    """Create a DRAFT paper; generation runs in the background."""
    paper = await service.create(request)
    return PaperCreatedResponse(id=paper.id, status=paper.status)


@router.get("/{paper_id}", response_model=PaperResponse)
async def get_paper(paper_id: uuid.UUID, service: ServiceDep):
    """The paper and its questions, without answer keys."""
    paper = await service.get(paper_id)
    questions = await service.questions(paper_id)
    return PaperResponse(
        **PaperSummary.model_validate(paper).model_dump(),
        questions=[QuestionView.model_validate(q) for q in questions],
    )


@router.get("/{paper_id}/answer-key", response_model=AnswerKeyResponse)
async def get_answer_key(paper_id: uuid.UUID, service: ServiceDep):
    await service.get(paper_id)
    questions = await service.questions(paper_id)
    return AnswerKeyResponse(
        paper_id=paper_id,
        questions=[QuestionKeyView.model_validate(q) for q in questions],
    )


@router.get("/{paper_id}/events")
async def paper_events(paper_id: uuid.UUID, context: ContextDep):
    """Server-sent status updates for one paper."""
    return await event_stream(context, Paper, EntityKind.PAPER, paper_id)
