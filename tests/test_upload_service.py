"""
Upload handler tests.

Credit accounting under concurrent uploads and on a failed job insert.
"""
import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from conftest import RecordingDispatcher
from docai import tasks
from docai.errors import InternalError, QuotaExceeded
from docai.models.quota import Plan, QuotaRecord
from docai.services.job_service import JobService
from docai.services.quota_service import QuotaService
from docai.services.upload_service import UploadedFile, UploadService


def document(name="notes.txt"):
    return UploadedFile(file_name=name, media_type="text/plain", data=b"Quarterly numbers look fine.")


async def seed_usage(session_factory, owner_id, used):
    async with session_factory() as db:
        db.add(QuotaRecord(owner_id=owner_id, free_jobs_used=used, plan=Plan.FREE))
        await db.commit()


async def test_concurrent_uploads_cannot_overspend_credits(session_factory, storage):
    await seed_usage(session_factory, "alice", 4)
    dispatcher = RecordingDispatcher()

    async def upload_once(n):
        async with session_factory() as db:
            service = UploadService(db, storage, dispatcher, free_limit=5)
            try:
                await service.upload("alice", document(f"doc{n}.txt"))
            except QuotaExceeded:
                return "rejected"
            return "ok"

    outcomes = await asyncio.gather(*(upload_once(n) for n in range(5)))
    await tasks.drain(timeout=5)

    assert outcomes.count("ok") == 1
    assert outcomes.count("rejected") == 4
    async with session_factory() as db:
        assert len(await JobService(db).get_jobs_for_owner("alice")) == 1
        assert (await QuotaService(db).get_record("alice")).free_jobs_used == 5
    assert len(list(storage._root.rglob("*.txt"))) == 1
    assert len(dispatcher.dispatched) == 1


async def test_failed_job_insert_returns_the_credit(session_factory, storage, monkeypatch):
    async def broken_create_job(self, **kwargs):
        raise OperationalError("INSERT INTO jobs", {}, Exception("disk I/O error"))

    monkeypatch.setattr(JobService, "create_job", broken_create_job)

    async with session_factory() as db:
        service = UploadService(db, storage, RecordingDispatcher(), free_limit=5)
        with pytest.raises(InternalError):
            await service.upload("alice", document())

    async with session_factory() as db:
        assert (await QuotaService(db).get_record("alice")).free_jobs_used == 0
    assert list(storage._root.rglob("*.txt")) == []
