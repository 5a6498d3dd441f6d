"""
Database Configuration
SQLAlchemy async setup (PostgreSQL via asyncpg)
"""

import os
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from typing import AsyncGenerator

from portfolio_engine.config import settings


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def normalize_async_url(url: str) -> str:
    """Convert postgres:// and postgresql:// to postgresql+asyncpg://"""
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


DATABASE_URL = normalize_async_url(settings.DATABASE_URL)

# Avoid creating the async engine during Alembic runs
ALEMBIC_MODE = os.getenv("ALEMBIC_MODE") == "1" or os.getenv("ALEMBIC_CONTEXT") == "1"

if not ALEMBIC_MODE:
    if DATABASE_URL.startswith("sqlite"):
        engine = create_async_engine(DATABASE_URL, echo=settings.DEBUG)
    else:
        engine = create_async_engine(
            DATABASE_URL,
            echo=settings.DEBUG,
            pool_size=10,
            max_overflow=20,
            pool_timeout=30,
            pool_recycle=3600
        )

    async_session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )
else:
    engine = None
    async_session_factory = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting database session
    Use in FastAPI routes as:
    async def my_route(db: AsyncSession = Depends(get_db))
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """Create tables when AUTO_CREATE_TABLES is set (Alembic owns the schema otherwise)"""
    if not settings.AUTO_CREATE_TABLES:
        return
    async with engine.begin() as conn:
        # Import all models here to ensure they're registered
        from portfolio_engine.infrastructure.db import models  # noqa: F401

        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Close database connections"""
    await engine.dispose()
