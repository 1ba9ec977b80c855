"""Async SQLAlchemy setup for local device storage."""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from socialsync.config import settings


class Base(DeclarativeBase):
    """Declarative base for local storage tables."""


engine = create_async_engine(
    settings.storage_database_url,
    echo=False,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def create_tables():
    """Create all local storage tables."""
    # Import models so they register on Base.metadata
    from socialsync.models import StorageEntry  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

