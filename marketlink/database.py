# marketlink/database.py

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import declarative_base

from marketlink.core.config import Settings

Base = declarative_base()


def normalize_database_url(database_url: str) -> str:
    """Convert postgresql:// to postgresql+asyncpg:// for async support"""
    if database_url.startswith('postgres://'):
        database_url = database_url.replace('postgres://', 'postgresql://', 1)
    if database_url.startswith('postgresql://'):
        database_url = database_url.replace('postgresql://', 'postgresql+asyncpg://', 1)
    return database_url


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    if not settings.DATABASE_URL:
        raise ValueError("DATABASE_URL is not set in environment variables")

    database_url = normalize_database_url(settings.DATABASE_URL)

    if database_url.startswith('sqlite'):
        return create_async_engine(database_url, echo=False, future=True)

    return create_async_engine(
        database_url,
        echo=False,
        future=True,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


async def create_tables(engine: AsyncEngine, base: Optional[object] = None) -> None:
    """Create all tables for the registered models (development and tests)."""
    from marketlink import models  # noqa: F401 - registers the models on Base

    metadata = (base or Base).metadata
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
