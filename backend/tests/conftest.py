"""
ExamForge - Test Configuration
Pytest fixtures and in-memory fakes for the database, Redis, the LLM and the job queue
"""
import asyncio
from collections.abc import AsyncGenerator
from typing import Any, Callable, Optional

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from examforge.core.config import Settings
from examforge.core.constants import EMBEDDING_DIMENSIONS, JobName
from examforge.core.context import AppContext
from examforge.core.database import Base, create_session_maker
from examforge.main import create_app
from examforge.realtime.bus import EventBus

from factories import DEFAULT_USER_ID


# =============================================================================
# FAKES
# =============================================================================

class FakePubSub:
    """Subset of ``redis.asyncio.client.PubSub`` used by the event bus."""

    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.channels: set[str] = set()
        self.messages: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def subscribe(self, *channels: str) -> None:
        if self.redis.fail_subscribe:
            raise ConnectionError("redis unavailable")
        self.channels.update(channels)

    async def unsubscribe(self, *channels: str) -> None:
        self.channels.difference_update(channels)

    async def get_message(self, ignore_subscribe_messages: bool = False, timeout: float = 0.0):
        try:
            return await asyncio.wait_for(self.messages.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def aclose(self) -> None:
        self.closed = True


class FakeRedis:
    """In-process pub/sub with a record of everything published."""

    def __init__(self):
        self.published: list[tuple[str, str]] = []
        self.pubsubs: list[FakePubSub] = []
        self.fail_publish = False
        self.fail_subscribe = False
        self.closed = False

    def pubsub(self) -> FakePubSub:
        pubsub = FakePubSub(self)
        self.pubsubs.append(pubsub)
        return pubsub

    async def publish(self, channel: str, message: str) -> int:
        if self.fail_publish:
            raise ConnectionError("redis unavailable")
        self.published.append((channel, message))
        receivers = 0
        for pubsub in self.pubsubs:
            if channel in pubsub.channels:
                pubsub.messages.put_nowait({"type": "message", "channel": channel, "data": message})
                receivers += 1
        return receivers

    async def aclose(self) -> None:
        self.closed = True


class FakeLLM:
    """
    Scripted stand-in for ``LLMClient``.

    ``responses`` are returned by ``generate_json`` in order; an exception
    instance in the list is raised instead.
    """

    embedding_model = "fake-embedding"

    def __init__(self):
        self.has_credentials = True
        self.supports_embeddings = False
        self.missing_credentials_message = "OPENAI_API_KEY is not set"
        self.responses: list[Any] = []
        self.calls: list[dict] = []
        self.embed_calls: list[list[str]] = []
        self.embed_error: Optional[Exception] = None
        self.fail_embed_on_call: Optional[int] = None

    async def generate_json(self, prompt: str, system_prompt=None, temperature: float = 0.7, agent_name: str = ""):
        self.calls.append({
            "prompt": prompt,
            "system_prompt": system_prompt,
            "temperature": temperature,
            "agent_name": agent_name,
        })
        if not self.responses:
            raise AssertionError("FakeLLM has no scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(prompt)
        return response

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        self.embed_calls.append(list(texts))
        if self.embed_error is not None or self.fail_embed_on_call == len(self.embed_calls):
            raise self.embed_error or RuntimeError("embedding provider down")
        return [[0.1] * EMBEDDING_DIMENSIONS for _ in texts]


class FakeJobQueue:
    """Records enqueued jobs instead of talking to Redis."""

    def __init__(self):
        self.jobs: list[dict] = []
        self.fail = False
        self.closed = False

    async def enqueue(self, name, data: dict, attempts: int = 3, backoff: float = 1) -> str:
        if self.fail:
            raise ConnectionError("queue unavailable")
        job = {
            "name": JobName(name).value,
            "data": data,
            "attempts": attempts,
            "backoff": backoff,
        }
        self.jobs.append(job)
        return f"job-{len(self.jobs)}"

    def names(self) -> list[str]:
        return [job["name"] for job in self.jobs]

    def close(self) -> None:
        self.closed = True


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL_OVERRIDE=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        DEFAULT_USER_ID=DEFAULT_USER_ID,
        OPENAI_API_KEY="",
        EVENT_POLL_SECONDS=0.01,
        SSE_KEEPALIVE_SECONDS=0.05,
    )


@pytest_asyncio.fixture
async def engine(settings: Settings):
    engine = create_async_engine(settings.DATABASE_URL)

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return create_session_maker(engine)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def fake_queue() -> FakeJobQueue:
    return FakeJobQueue()


@pytest.fixture
def http_routes() -> dict[str, Callable[[httpx.Request], httpx.Response]]:
    """``url -> handler`` map served by the context's HTTP client."""
    return {}


@pytest_asyncio.fixture
async def context(settings, engine, session_maker, fake_redis, fake_llm, fake_queue, http_routes):
    def handler(request: httpx.Request) -> httpx.Response:
        route = http_routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, text="not found")
        return route(request)

    context = AppContext(
        settings=settings,
        engine=engine,
        session_maker=session_maker,
        redis=fake_redis,
        bus=EventBus(fake_redis, poll_interval=settings.EVENT_POLL_SECONDS),
        llm=fake_llm,
        queue=fake_queue,
        http=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    yield context
    await context.bus.close()
    await context.http.aclose()


@pytest_asyncio.fixture
async def client(context: AppContext) -> AsyncGenerator[AsyncClient, None]:
    """API client bound to the test context (the lifespan is not run)."""
    app = create_app(context.settings)
    app.state.context = context
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


