"""
Service wiring for FastAPI routes.

Long-lived collaborators (storage, rate limiter, dispatcher, worker) are
built once from settings on first use. Tests replace them through
app.dependency_overrides.
"""
from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docai.config import settings
from docai.database import AsyncSessionLocal
from docai.services.analysis import build_orchestrator
from docai.services.dispatcher import Dispatcher, build_dispatcher
from docai.services.providers import build_providers
from docai.services.rate_limiter import RateLimiter, build_rate_limiter
from docai.services.storage import ObjectStorage, build_storage
from docai.worker import JobWorker

_storage: ObjectStorage | None = None
_rate_limiter: RateLimiter | None = None
_worker: JobWorker | None = None
_dispatcher: Dispatcher | None = None


def get_session_factory() -> async_sessionmaker:
    return AsyncSessionLocal


async def get_db(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session.

    Usage:
        @router.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with session_factory() as session:
        yield session


def get_storage() -> ObjectStorage:
    global _storage
    if _storage is None:
        _storage = build_storage(settings)
    return _storage


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = build_rate_limiter(settings)
    return _rate_limiter


def get_worker(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    storage: ObjectStorage = Depends(get_storage),
) -> JobWorker:
    global _worker
    if _worker is None:
        orchestrator = build_orchestrator(settings, build_providers(settings))
        _worker = JobWorker(
            session_factory,
            storage,
            orchestrator,
            preview_chars=settings.RESULT_TEXT_PREVIEW_CHARS,
        )
    return _worker


def get_dispatcher(worker: JobWorker = Depends(get_worker)) -> Dispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = build_dispatcher(settings, worker)
    return _dispatcher


async def close_services() -> None:
    """Release clients held by the singletons. Called on shutdown."""
    global _dispatcher
    if _dispatcher is not None:
        await _dispatcher.aclose()
        _dispatcher = None
