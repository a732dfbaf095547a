"""Database connection and session management."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, TypeDecorator
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings


# SQLAlchemy 2.0 declarative base
class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamp, also on backends that drop the offset."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def build_engine(url: str) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases."""
    options: dict[str, Any] = {
        "echo": settings.LOG_LEVEL == "DEBUG",
        "future": True,
    }
    if not url.startswith("sqlite"):
        options.update(pool_pre_ping=True, pool_size=10, max_overflow=20)
    return create_async_engine(url, **options)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


# Create async engine
engine = build_engine(settings.DATABASE_URL)

# Create async session factory
async_session_factory = build_session_factory(engine)


async def init_db(bind: AsyncEngine = engine) -> None:
    """Initialize database (create all tables)."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db(bind: AsyncEngine = engine) -> None:
    """Drop all tables. Used for testing."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
