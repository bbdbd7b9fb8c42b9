"""
ExamForge - Paper Schemas
Pydantic schemas for paper creation and the question views served to learners
"""
import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import Field

from examforge.schemas.common import ApiModel


class PaperMix(ApiModel):
    """Share of question types, in percent."""
    mcq: int = Field(default=60, ge=0, le=100)
    short_answer: int = Field(default=40, ge=0, le=100)


class PaperConfig(ApiModel):
    language: Literal["zh", "en"] = "en"
    num_questions: int = Field(default=10, ge=5, le=50)
    difficulty: int = Field(default=2, ge=1, le=3)
    mix: PaperMix = Field(default_factory=PaperMix)


class CreatePaperRequest(ApiModel):
    source_id: uuid.UUID
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    config: Optional[PaperConfig] = None


class PaperCreatedResponse(ApiModel):
    id: uuid.UUID
    status: str


class QuestionView(ApiModel):
    """A question as shown while taking the paper (no answer key)."""
    id: uuid.UUID
    position: int
    type: str
    difficulty: int
    prompt: str
    options: Optional[list[dict[str, Any]]] = None
    tags: list[str] = Field(default_factory=list)
    max_score: float


class QuestionKeyView(QuestionView):
    answer_key: dict[str, Any] = Field(default_factory=dict)
    rubric: Optional[list[dict[str, Any]]] = None


class PaperSummary(ApiModel):
    id: uuid.UUID
    source_id: uuid.UUID
    title: str
    config: dict[str, Any] = Field(default_factory=dict)
    status: str
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class PaperResponse(PaperSummary):
    questions: list[QuestionView] = Field(default_factory=list)


class PaperListResponse(ApiModel):
    items: list[PaperSummary]


class AnswerKeyResponse(ApiModel):
    paper_id: uuid.UUID
    questions: list[QuestionKeyView]
