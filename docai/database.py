"""
Async database engine and session factory.
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from docai.config import settings
from docai.models.base import Base

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def create_all_tables(bind=engine):
    """Create all tables registered on Base."""
    # Import models so they register with Base.metadata
    from docai.models import job, quota  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_all_tables(bind=engine):
    """Drop all tables (for testing)."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
