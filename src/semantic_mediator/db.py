"""Database connection and session management."""

import json
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from semantic_mediator.config import settings
from semantic_mediator.models import Base


def json_serializer(value: Any) -> str:
    """Serialize JSON columns, stringifying values JSON has no encoding for."""
    return json.dumps(value, default=str)


engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    json_serializer=json_serializer,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with async_session_factory() as session:
        yield session


async def init_db() -> None:
    """Initialize database tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of pooled connections on shutdown."""
    await engine.dispose()
