"""
Worker tests.

Drives jobs through download -> extract -> analyze -> persist and checks
that every claimed job ends COMPLETED or FAILED.
"""
import asyncio
import json

from conftest import GOOD_ANALYSIS, FakeProvider, make_orchestrator
from docai.errors import ProviderError, StorageError
from docai.models.job import JobStatus
from docai.services.job_service import JobService
from docai.services.storage import LocalObjectStorage
from docai.worker import DOWNLOAD_FAILED, EXTRACTION_FAILED, EXTRACTION_REASONS, UNEXPECTED_FAILURE, JobWorker

TEXT = "The contract renews every year unless either party cancels in writing."


async def queue_document(session_factory, storage, data: bytes, media_type="text/plain", file_name="doc.txt"):
    location = f"alice/1_{file_name}"
    await storage.upload(location, data, media_type)
    async with session_factory() as db:
        job = await JobService(db).create_job("alice", location, file_name, len(data), media_type)
    return job.id


async def load(session_factory, job_id):
    async with session_factory() as db:
        return await JobService(db).get_job_by_id(job_id)


async def test_text_document_completes(session_factory, storage, worker):
    job_id = await queue_document(session_factory, storage, TEXT.encode())

    assert await worker.process(job_id) == JobStatus.COMPLETED

    job = await load(session_factory, job_id)
    result = json.loads(job.result)
    assert job.status == JobStatus.COMPLETED
    assert job.error is None
    assert job.processed_at is not None
    assert job.attempt_count == 1
    assert result["summary"] == "A short report about quarterly sales."
    assert result["provider"] == "gemini"
    assert result["fallback"] is False
    assert result["extractedText"] == TEXT[:50]


async def test_duplicate_trigger_is_dropped(session_factory, storage, worker, provider):
    job_id = await queue_document(session_factory, storage, TEXT.encode())

    outcomes = await asyncio.gather(worker.process(job_id), worker.process(job_id))

    assert outcomes.count(JobStatus.COMPLETED) == 1
    assert outcomes.count(None) == 1
    assert provider.calls == 1
    assert (await load(session_factory, job_id)).status == JobStatus.COMPLETED


async def test_finished_job_is_not_reprocessed(session_factory, storage, worker, provider):
    job_id = await queue_document(session_factory, storage, TEXT.encode())
    await worker.process(job_id)

    assert await worker.process(job_id) is None
    assert provider.calls == 1


async def test_missing_job_is_ignored(worker):
    assert await worker.process("does-not-exist") is None


async def test_extraction_failure_marks_job_failed(session_factory, storage, worker, provider):
    job_id = await queue_document(session_factory, storage, b"   \n  ")

    assert await worker.process(job_id) == JobStatus.FAILED

    job = await load(session_factory, job_id)
    assert job.status == JobStatus.FAILED
    assert job.result is None
    assert job.error == EXTRACTION_REASONS["EMPTY_EXTRACTION"]
    assert provider.calls == 0


async def test_parser_detail_is_not_exposed_in_job_error(session_factory, storage, worker):
    docx = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    job_id = await queue_document(session_factory, storage, b"not a zip container at all", docx, "broken.docx")

    assert await worker.process(job_id) == JobStatus.FAILED

    job = await load(session_factory, job_id)
    assert job.error == EXTRACTION_FAILED


async def test_missing_blob_marks_job_failed(session_factory, storage, worker):
    async with session_factory() as db:
        job = await JobService(db).create_job("alice", "alice/gone.txt", "gone.txt", 10, "text/plain")

    assert await worker.process(job.id) == JobStatus.FAILED

    assert (await load(session_factory, job.id)).error == DOWNLOAD_FAILED


async def test_provider_outage_still_completes_with_fallback(session_factory, storage):
    outage = [ProviderError("overloaded", retryable=True)] * 3
    gemini = FakeProvider("gemini", outage)
    openai = FakeProvider("openai", outage)
    worker = JobWorker(session_factory, storage, make_orchestrator(gemini, openai))
    job_id = await queue_document(session_factory, storage, TEXT.encode())

    assert await worker.process(job_id) == JobStatus.COMPLETED

    result = json.loads((await load(session_factory, job_id)).result)
    assert result["fallback"] is True
    assert result["provider"] is None
    assert result["wordCount"] == len(TEXT.split())
    assert result["charCount"] == len(TEXT)


async def test_images_skip_the_providers(session_factory, storage, worker, provider):
    job_id = await queue_document(session_factory, storage, b"\x89PNG\r\n", "image/png", "photo.png")

    assert await worker.process(job_id) == JobStatus.COMPLETED

    result = json.loads((await load(session_factory, job_id)).result)
    assert "requires specialized processing" in result["summary"]
    assert result["fallback"] is False
    assert provider.calls == 0


class ExplodingExtractor:
    def extract(self, data, media_type, file_name):
        raise RuntimeError("parser segfaulted")


async def test_unexpected_crash_never_leaves_job_processing(session_factory, storage, provider):
    worker = JobWorker(session_factory, storage, make_orchestrator(provider), extractor=ExplodingExtractor())
    job_id = await queue_document(session_factory, storage, TEXT.encode())

    assert await worker.process(job_id) == JobStatus.FAILED

    job = await load(session_factory, job_id)
    assert job.status == JobStatus.FAILED
    assert job.error == UNEXPECTED_FAILURE
    assert "segfaulted" not in job.error


class FlakyStorage(LocalObjectStorage):
    """Fails the first `failures` downloads."""

    def __init__(self, *args, failures=1, **kwargs):
        super().__init__(*args, **kwargs)
        self.failures = failures

    async def download(self, location):
        if self.failures:
            self.failures -= 1
            raise StorageError("bucket timeout")
        return await super().download(location)


async def test_retry_after_failure_completes(session_factory, tmp_path, provider):
    storage = FlakyStorage(str(tmp_path / "flaky"), failures=1)
    worker = JobWorker(session_factory, storage, make_orchestrator(provider))
    job_id = await queue_document(session_factory, storage, TEXT.encode())

    assert await worker.process(job_id) == JobStatus.FAILED

    async with session_factory() as db:
        assert await JobService(db).reset_for_retry(job_id, "alice")
    assert await worker.process(job_id) == JobStatus.COMPLETED

    job = await load(session_factory, job_id)
    assert job.error is None
    assert json.loads(job.result)["summary"]
    assert job.attempt_count == 2
    assert job.retry_count == 1


class SdkAuthError(Exception):
    pass


async def test_unexpected_provider_error_falls_through_to_next_provider(session_factory, storage):
    gemini = FakeProvider("gemini", [SdkAuthError("credentials rejected")])
    openai = FakeProvider("openai", [GOOD_ANALYSIS])
    worker = JobWorker(session_factory, storage, make_orchestrator(gemini, openai))
    job_id = await queue_document(session_factory, storage, TEXT.encode())

    assert await worker.process(job_id) == JobStatus.COMPLETED

    result = json.loads((await load(session_factory, job_id)).result)
    assert result["provider"] == "openai"
    assert result["fallback"] is False
    assert openai.calls == 1
