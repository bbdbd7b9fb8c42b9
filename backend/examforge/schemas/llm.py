"""
ExamForge - LLM Output Schemas
Canonical shapes for generated papers and rubric grades.
Provider variants are normalized (see ``normalizers``) before validation.
"""
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from examforge.schemas.normalizers import (
    GRADE_ADAPTERS,
    OPTION_IDS,
    PAPER_ADAPTERS,
    QUESTION_ADAPTERS,
    RUBRIC_POINT_ADAPTERS,
    normalize,
)

OptionId = Literal["A", "B", "C", "D"]


class LlmModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Citation(LlmModel):
    chunk_id: str = Field(..., min_length=1)
    snippet: Optional[str] = Field(default=None, max_length=400)


class McqOption(LlmModel):
    id: OptionId
    text: str = Field(..., min_length=1, max_length=800)


class RubricPoint(LlmModel):
    id: str = Field(..., min_length=1, max_length=50)
    points: float = Field(..., ge=0, le=10)
    criteria: str = Field(..., min_length=1, max_length=800)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data):
        return normalize(data, RUBRIC_POINT_ADAPTERS)


class _QuestionBase(LlmModel):
    difficulty: int = Field(default=2, ge=1, le=3)
    prompt: str = Field(..., min_length=1, max_length=2000)
    tags: list[Annotated[str, Field(min_length=1, max_length=50)]] = Field(
        default_factory=lambda: ["general"], min_length=1, max_length=20
    )
    citations: list[Citation] = Field(..., min_length=1, max_length=8)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data):
        return normalize(data, QUESTION_ADAPTERS)


class LlmMcqQuestion(_QuestionBase):
    type: Literal["MCQ"]
    options: list[McqOption] = Field(..., min_length=4, max_length=4)
    answer_key: OptionId
    rationale: str = Field(..., min_length=1, max_length=2000)

    @model_validator(mode="after")
    def _distinct_options(self):
        if sorted(option.id for option in self.options) != list(OPTION_IDS):
            raise ValueError("MCQ options must use each of the ids A, B, C, D exactly once")
        return self


class LlmShortAnswerQuestion(_QuestionBase):
    type: Literal["SHORT_ANSWER"]
    reference_answer: str = Field(..., min_length=1, max_length=3000)
    rubric: list[RubricPoint] = Field(..., min_length=1, max_length=10)

    @property
    def max_score(self) -> float:
        return float(sum(point.points for point in self.rubric))


LlmQuestion = Annotated[
    Union[LlmMcqQuestion, LlmShortAnswerQuestion],
    Field(discriminator="type"),
]


class LlmPaper(LlmModel):
    paper_title: str = Field(..., min_length=1, max_length=200)
    questions: list[LlmQuestion] = Field(..., min_length=1, max_length=50)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data):
        data = normalize(data, PAPER_ADAPTERS)
        # The discriminator is read before member validators run,
        # so question-level adapters have to be applied here too.
        if isinstance(data, dict) and isinstance(data.get("questions"), list):
            data["questions"] = [normalize(q, QUESTION_ADAPTERS) for q in data["questions"]]
        return data


class HitPoint(LlmModel):
    rubric_point_id: str = Field(..., min_length=1, max_length=50)
    comment: Optional[str] = Field(default=None, max_length=800)


class LlmGrade(LlmModel):
    # Out-of-range scores are clamped by the grader, not rejected
    score: float
    max_score: float
    hit_points: list[HitPoint] = Field(default_factory=list)
    missing_points: list[str] = Field(default_factory=list)
    misconceptions: list[str] = Field(default_factory=list)
    actionable_suggestions: list[str] = Field(default_factory=list)
    suggested_answer: Optional[str] = Field(default=None, max_length=4000)
    feedback_md: str = Field(..., min_length=1, max_length=4000)
    recommended_review_chunk_ids: list[str] = Field(default_factory=list)
    confidence: Optional[float] = Field(default=None, ge=0, le=1)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data):
        return normalize(data, GRADE_ADAPTERS)
