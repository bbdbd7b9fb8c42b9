"""
ExamForge - Source Schemas
Pydantic schemas for source import requests and responses
"""
import uuid
from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import Field, HttpUrl, field_validator

from examforge.core.errors import InputError
from examforge.ingestion.github import parse_github_url
from examforge.schemas.common import ApiModel

MAX_TEXT_CHARS = 200_000


class _CreateSourceBase(ApiModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)


class CreatePasteSource(_CreateSourceBase):
    type: Literal["PASTE"]
    text: str = Field(..., min_length=1, max_length=MAX_TEXT_CHARS)


class CreateMarkdownSource(_CreateSourceBase):
    type: Literal["MARKDOWN_UPLOAD"]
    md: str = Field(..., min_length=1, max_length=MAX_TEXT_CHARS)


class CreateUrlSource(_CreateSourceBase):
    type: Literal["URL"]
    url: HttpUrl


class CreateGithubSource(_CreateSourceBase):
    type: Literal["GITHUB"]
    url: str = Field(..., min_length=1, max_length=500)

    @field_validator("url")
    @classmethod
    def _github_url(cls, value: str) -> str:
        try:
            parse_github_url(value)
        except InputError as e:
            raise ValueError(str(e)) from e
        return value.strip()


SourceImport = Union[CreatePasteSource, CreateMarkdownSource, CreateUrlSource, CreateGithubSource]


class SourceCreatedResponse(ApiModel):
    id: uuid.UUID
    status: str


class SourceCounts(ApiModel):
    documents: int = 0
    chunks: int = 0


class SourceResponse(ApiModel):
    """A source with its status."""

    id: uuid.UUID
    type: str
    title: str
    uri: Optional[str] = None
    status: str
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class SourceDetailResponse(SourceResponse):
    counts: SourceCounts


class SourceListResponse(ApiModel):
    items: list[SourceResponse]


class DocumentPreview(ApiModel):
    id: uuid.UUID
    doc_type: str
    uri: Optional[str] = None
    title: Optional[str] = None
    meta: dict = Field(default_factory=dict)
    chars: int
    preview: str


class SourcePreviewResponse(ApiModel):
    source_id: uuid.UUID
    documents: list[DocumentPreview]
