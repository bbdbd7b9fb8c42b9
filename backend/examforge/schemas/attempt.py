"""
ExamForge - Attempt Schemas
Pydantic schemas for taking, submitting and reviewing attempts
"""
import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import Field

from examforge.schemas.common import ApiModel
from examforge.schemas.paper import QuestionKeyView, QuestionView


class CreateAttemptRequest(ApiModel):
    paper_id: uuid.UUID


class SubmittedAnswer(ApiModel):
    question_id: uuid.UUID
    option_id: Optional[Literal["A", "B", "C", "D"]] = None
    text: Optional[str] = Field(default=None, max_length=20_000)


class SubmitAttemptRequest(ApiModel):
    answers: list[SubmittedAnswer] = Field(..., min_length=1, max_length=200)


class AttemptStatusResponse(ApiModel):
    id: uuid.UUID
    status: str


class AttemptResponse(ApiModel):
    id: uuid.UUID
    paper_id: uuid.UUID
    status: str
    error: Optional[str] = None
    started_at: datetime
    submitted_at: Optional[datetime] = None
    graded_at: Optional[datetime] = None


class AnswerView(ApiModel):
    question_id: uuid.UUID
    answer_option_id: Optional[str] = None
    answer_text: Optional[str] = None


class PaperBrief(ApiModel):
    id: uuid.UUID
    title: str
    status: str


class AttemptDetailResponse(ApiModel):
    attempt: AttemptResponse
    paper: PaperBrief
    questions: list[QuestionView]
    answers: list[AnswerView]


class GradeView(ApiModel):
    question_id: uuid.UUID
    score: float
    max_score: float
    verdict: dict[str, Any] = Field(default_factory=dict)
    feedback_md: Optional[str] = None
    citations: list[str] = Field(default_factory=list)
    confidence: Optional[float] = None


class Totals(ApiModel):
    score: float
    max: float


class AttemptResultResponse(ApiModel):
    attempt: AttemptResponse
    totals: Totals
    questions: list[QuestionKeyView]
    answers: list[AnswerView]
    grades: list[GradeView]


class AttemptSummary(AttemptResponse):
    paper_title: str
    total_questions: int
    graded_questions: int
    score: float
    max_score: float


class AttemptListResponse(ApiModel):
    items: list[AttemptSummary]


class WrongItemView(ApiModel):
    question_id: uuid.UUID
    last_wrong_at: datetime
    wrong_count: int
    weak_tags: list[str] = Field(default_factory=list)


class WrongItemListResponse(ApiModel):
    items: list[WrongItemView]
