"""
ExamForge - Status Events
Status-change payloads and failure bookkeeping shared by the job handlers.
"""
import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from examforge.core.constants import EntityKind, topic_for
from examforge.models import Attempt, Paper, Source
from examforge.realtime.bus import EventBus

logger = logging.getLogger(__name__)

FAILED = "FAILED"

# Longest error message persisted on an entity
MAX_ERROR_LENGTH = 2000


def status_event(kind: EntityKind | str, entity_id, status: str, error: Optional[str] = None) -> dict:
    """``{type, id, status, error?}``"""
    event = {"type": EntityKind(kind).value, "id": str(entity_id), "status": status}
    if error:
        event["error"] = error
    return event


async def publish_status(
    bus: EventBus,
    kind: EntityKind | str,
    entity_id,
    status: str,
    error: Optional[str] = None,
) -> None:
    """Publish a status event; call only after the write it describes has committed."""
    await bus.publish(topic_for(kind, entity_id), status_event(kind, entity_id, status, error))


def error_message(exc: BaseException) -> str:
    message = str(exc).strip() or exc.__class__.__name__
    return message[:MAX_ERROR_LENGTH]


async def record_failure(
    session_maker: async_sessionmaker[AsyncSession],
    kind: EntityKind | str,
    entity_id,
    message: str,
) -> None:
    """
    Persist a human-readable failure on the owning entity.

    Sources and papers move to FAILED; attempts keep SUBMITTED and only
    carry the error so grading can be retried.
    """
    kind = EntityKind(kind)
    if kind is EntityKind.SOURCE:
        stmt = update(Source).where(Source.id == entity_id).values(status=FAILED, error=message)
    elif kind is EntityKind.PAPER:
        stmt = update(Paper).where(Paper.id == entity_id).values(status=FAILED, error=message)
    else:
        stmt = update(Attempt).where(Attempt.id == entity_id).values(error=message)

    async with session_maker() as session:
        async with session.begin():
            await session.execute(stmt)
    logger.info("Recorded failure on %s %s: %s", kind.value, entity_id, message)
