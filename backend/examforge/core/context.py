"""
ExamForge - Application Context
Process-wide resources, built once at startup and passed to every component.
"""
import logging
from dataclasses import dataclass
from typing import Any

import httpx
import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from examforge.ai.llm import LLMClient
from examforge.core.config import Settings
from examforge.core.database import create_engine, create_session_maker
from examforge.jobs.queue import JobQueue
from examforge.realtime.bus import EventBus

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything a handler, service or route needs from the process."""
    settings: Settings
    engine: AsyncEngine
    session_maker: async_sessionmaker[AsyncSession]
    redis: Any
    bus: EventBus
    llm: LLMClient
    queue: JobQueue
    http: httpx.AsyncClient

    async def close(self) -> None:
        """Release every resource; the context is unusable afterwards."""
        await self.bus.close()
        await self.redis.aclose()
        await self.http.aclose()
        self.queue.close()
        await self.engine.dispose()
        logger.info("Application context closed")


def build_context(settings: Settings) -> AppContext:
    """Construct the process-wide context. Call exactly once per process."""
    engine = create_engine(settings)
    redis = aioredis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
    return AppContext(
        settings=settings,
        engine=engine,
        session_maker=create_session_maker(engine),
        redis=redis,
        bus=EventBus(redis, poll_interval=settings.EVENT_POLL_SECONDS),
        llm=LLMClient(settings),
        queue=JobQueue.from_settings(settings),
        http=httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS),
    )
