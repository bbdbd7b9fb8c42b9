"""
ExamForge - Live update endpoint helper
"""
import uuid

from fastapi.responses import StreamingResponse

from examforge.core.constants import EntityKind, topic_for
from examforge.core.context import AppContext
from examforge.core.errors import NotFoundError
from examforge.jobs.status import status_event
from examforge.realtime.sse import SSE_HEADERS, live_updates


async def event_stream(context: AppContext, model, kind: EntityKind, entity_id: uuid.UUID) -> StreamingResponse:
    """
    Snapshot the entity's current status, then stream its live updates.

    The snapshot uses its own short session so no connection is held open
    for the lifetime of the stream.
    """
    async with context.session_maker() as session:
        entity = await session.get(model, entity_id)
        if entity is None:
            raise NotFoundError(f"{kind.value.capitalize()} not found")
        snapshot = status_event(kind, entity_id, entity.status, entity.error)

    return StreamingResponse(
        live_updates(
            context.bus,
            topic_for(kind, entity_id),
            snapshot,
            keepalive=context.settings.SSE_KEEPALIVE_SECONDS,
        ),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
