"""
Database session management with SQLAlchemy async
"""

from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from core.config import settings
import logging

logger = logging.getLogger(__name__)


def build_engine(database_url: Optional[str] = None) -> AsyncEngine:
    url = database_url or settings.DATABASE_URL
    return create_async_engine(
        url,
        echo=False,
        poolclass=NullPool,  # Short-lived pipeline runs; no pooled connections
        future=True
    )


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


engine = build_engine()
async_session_maker = build_session_maker(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session"""
    async with async_session_maker() as session:
        yield session
