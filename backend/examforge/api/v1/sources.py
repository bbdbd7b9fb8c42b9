"""
ExamForge - Source API Endpoints
Import study material and follow its ingestion.
"""
import uuid
from typing import Annotated

from fastapi import APIRouter, Body, Depends, Response, status

from examforge.api.deps import ContextDep, get_source_service
from examforge.api.v1._events import event_stream
from examforge.core.constants import EntityKind
from examforge.models import Source
from examforge.schemas.source import (
    SourceCreatedResponse,
    SourceDetailResponse,
    SourceListResponse,
    SourceImport,
    SourcePreviewResponse,
    SourceResponse,
)
from examforge.services.sources import SourceService

router = APIRouter(prefix="/sources", tags=["Sources"])

ServiceDep = Annotated[SourceService, Depends(get_source_service)]


@router.get("", response_model=SourceListResponse)
async def list_sources(service: ServiceDep):
    """Most recently imported sources first."""
    sources = await service.list_recent()
    return SourceListResponse(items=[SourceResponse.model_validate(s) for s in sources])


@router.post("", response_model=SourceCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_source(
    request: Annotated[SourceImport, Body(discriminator="type")],
    service: ServiceDep,
):
    """
    Import material. Inline text is chunked right away; URLs and GitHub
    repositories are fetched first.
    """
    source = await service.create(request)
    return SourceCreatedResponse(id=source.id, status=source.status)


@router.get("/{source_id}", response_model=SourceDetailResponse)
async def get_source(source_id: uuid.UUID, service: ServiceDep):
    source = await service.get(source_id)
    counts = await service.counts(source_id)
    return SourceDetailResponse(
        **SourceResponse.model_validate(source).model_dump(),
        counts=counts,
    )


@router.get("/{source_id}/preview", response_model=SourcePreviewResponse)
async def preview_source(source_id: uuid.UUID, service: ServiceDep):
    documents = await service.preview(source_id)
    return SourcePreviewResponse(source_id=source_id, documents=documents)


@router.delete("/{source_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_source(source_id: uuid.UUID, service: ServiceDep):
    await service.delete(source_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{source_id}/events")
async def source_events(source_id: uuid.UUID, context: ContextDep):
    """Server-sent status updates for one source."""
    return await event_stream(context, Source, EntityKind.SOURCE, source_id)
