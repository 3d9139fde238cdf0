"""
Shared fixtures.

Every test gets its own on-disk SQLite database and storage directory.
The API client runs the real FastAPI app with its collaborators replaced
through dependency overrides.
"""
import os

# Must be set before docai.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DISPATCH_SECRET", "test-dispatch-secret")
os.environ.setdefault("SENTRY_DSN", "")

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine, AsyncSession

from docai import tasks
from docai.database import create_all_tables
from docai.dependencies.services import (
    get_dispatcher,
    get_rate_limiter,
    get_session_factory,
    get_storage,
    get_worker,
)
from docai.errors import ProviderError
from docai.main import app
from docai.services.analysis import AnalysisOrchestrator
from docai.services.dispatcher import Dispatcher
from docai.services.jwt_service import JWTService
from docai.services.providers import Provider
from docai.services.rate_limiter import MemoryRateStore, RateLimiter, RatePolicy
from docai.services.storage import LocalObjectStorage
from docai.worker import JobWorker


GOOD_ANALYSIS = (
    '{"summary": "A short report about quarterly sales.", '
    '"keyPoints": ["Sales grew", "Costs fell"], '
    '"keywords": ["sales", "report"], '
    '"category": "Business", "sentiment": "Positive", "wordCount": 7}'
)


class FakeProvider(Provider):
    """Replays scripted answers; an Exception entry is raised instead of returned."""

    def __init__(self, name: str, answers: list):
        self.name = name
        self.answers = list(answers)
        self.calls = 0

    async def complete(self, prompt: str, timeout: float) -> str:
        self.calls += 1
        answer = self.answers.pop(0) if self.answers else ProviderError("no more answers", retryable=True)
        if isinstance(answer, Exception):
            raise answer
        return answer


class RecordingDispatcher(Dispatcher):
    """Remembers dispatched job ids without starting any work."""

    def __init__(self):
        self.dispatched: list[str] = []

    async def dispatch(self, job_id: str) -> bool:
        self.dispatched.append(job_id)
        return True


async def no_sleep(seconds):
    return None


def make_orchestrator(*providers: Provider) -> AnalysisOrchestrator:
    return AnalysisOrchestrator(list(providers), max_attempts=3, backoff_seconds=1.0, sleep=no_sleep)


def auth_headers(owner_id: str) -> dict:
    return {"Authorization": f"Bearer {JWTService().create_token(owner_id)}"}


def make_rate_limiter(upload: int = 100, process: int = 100, read: int = 1000) -> RateLimiter:
    return RateLimiter(
        MemoryRateStore(),
        {
            "upload": RatePolicy(upload, 60_000),
            "process": RatePolicy(process, 60_000),
            "read": RatePolicy(read, 60_000),
        },
    )


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'docai.db'}",
        connect_args={"timeout": 30},
    )
    await create_all_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage(tmp_path):
    return LocalObjectStorage(str(tmp_path / "storage"), bucket="documents", timeout=5.0)


@pytest.fixture
def provider():
    return FakeProvider("gemini", [GOOD_ANALYSIS] * 10)


@pytest.fixture
def worker(session_factory, storage, provider):
    return JobWorker(session_factory, storage, make_orchestrator(provider), preview_chars=50)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
async def client(session_factory, storage, worker, dispatcher):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_worker] = lambda: worker
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    limiter = make_rate_limiter()
    app.dependency_overrides[get_rate_limiter] = lambda: limiter

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    await tasks.drain(timeout=10)
    app.dependency_overrides.clear()
