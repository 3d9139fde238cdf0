"""
Job store tests.

Verifies creation, conditional transitions, owner scoping and deletion.
"""
import asyncio
import json

from docai.errors import StorageError
from docai.models.job import JobStatus
from docai.services.job_service import JobService


async def make_job(db, owner_id="alice", blob="alice/1_report.txt"):
    return await JobService(db).create_job(
        owner_id=owner_id,
        blob_location=blob,
        file_name="report.txt",
        file_size=12,
        media_type="text/plain",
    )


async def test_job_lifecycle(db):
    """queued -> processing -> completed, with timestamps and result."""
    service = JobService(db)
    job = await make_job(db)
    assert job.status == JobStatus.QUEUED
    assert job.created_at is not None

    assert await service.claim_job(job.id)
    claimed = await service.get_job_by_id(job.id)
    assert claimed.status == JobStatus.PROCESSING
    assert claimed.attempt_count == 1
    assert claimed.started_at is not None

    assert await service.complete_job(job.id, {"summary": "ok"})
    done = await service.get_job_by_id(job.id)
    assert done.status == JobStatus.COMPLETED
    assert json.loads(done.result) == {"summary": "ok"}
    assert done.error is None
    assert done.processed_at is not None


async def test_transition_does_not_apply_from_wrong_status(db):
    service = JobService(db)
    job = await make_job(db)

    assert not await service.complete_job(job.id, {"summary": "too early"})
    assert await service.claim_job(job.id)
    assert not await service.claim_job(job.id)

    assert (await service.get_job_by_id(job.id)).status == JobStatus.PROCESSING


async def test_concurrent_claims_only_one_wins(session_factory):
    async with session_factory() as db:
        job = await make_job(db)

    async def claim():
        async with session_factory() as session:
            return await JobService(session).claim_job(job.id)

    results = await asyncio.gather(claim(), claim())

    assert sorted(results) == [False, True]


async def test_failed_job_has_error_and_no_result(db):
    service = JobService(db)
    job = await make_job(db)
    await service.claim_job(job.id)

    assert await service.fail_job(job.id, "Could not extract text from file")

    failed = await service.get_job_by_id(job.id)
    assert failed.status == JobStatus.FAILED
    assert failed.error == "Could not extract text from file"
    assert failed.result is None


async def test_reset_for_retry_clears_outcome(db):
    service = JobService(db)
    job = await make_job(db)
    await service.fail_job(job.id, "dispatch lost")

    assert not await service.reset_for_retry(job.id, "mallory")
    assert await service.reset_for_retry(job.id, "alice")

    retried = await service.get_job_by_id(job.id)
    assert retried.status == JobStatus.QUEUED
    assert retried.error is None
    assert retried.result is None
    assert retried.processed_at is None
    assert retried.retry_count == 1


async def test_reads_are_scoped_to_owner(db):
    service = JobService(db)
    job = await make_job(db, owner_id="alice")
    await make_job(db, owner_id="bob", blob="bob/1_report.txt")

    assert await service.get_job_for_owner(job.id, "bob") is None
    assert (await service.get_job_for_owner(job.id, "alice")).id == job.id
    assert [j.id for j in await service.get_jobs_for_owner("alice")] == [job.id]


class UndeletableStorage:
    def __init__(self):
        self.attempted = []

    async def delete(self, location):
        self.attempted.append(location)
        raise StorageError("bucket unavailable")


async def test_delete_survives_blob_failure(db):
    service = JobService(db)
    job = await make_job(db)
    storage = UndeletableStorage()

    assert not await service.delete_job(job.id, "bob", storage)
    assert await service.delete_job(job.id, "alice", storage)

    assert storage.attempted == ["alice/1_report.txt"]
    assert await service.get_job_by_id(job.id) is None
