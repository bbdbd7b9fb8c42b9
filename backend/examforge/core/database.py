"""
ExamForge - Database Configuration
Async SQLAlchemy engine and session management
"""
from datetime import datetime, timezone

from sqlalchemy import JSON, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from examforge.core.config import Settings

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine; statement timeouts apply to every query."""
    url = settings.DATABASE_URL
    if url.startswith("postgresql"):
        return create_async_engine(
            url,
            echo=settings.DEBUG,
            pool_pre_ping=True,
            pool_size=10,
            max_overflow=20,
            connect_args={"command_timeout": settings.DB_COMMAND_TIMEOUT_SECONDS},
        )
    return create_async_engine(url, echo=settings.DEBUG)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Initialize database tables (and the pgvector extension on PostgreSQL)."""
    async with engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)


def upsert(session: AsyncSession, model):
    """
    Dialect-specific ``INSERT`` construct supporting ``on_conflict_do_update``.

    Usage:
        stmt = upsert(session, Grade).values(...)
        stmt = stmt.on_conflict_do_update(index_elements=[...], set_={...})
    """
    if session.get_bind().dialect.name == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)
