"""
Job worker for DocAI.

Drives one job through download -> extract -> analyze -> persist. Runs in
the API process, started either by the internal dispatch endpoint or by
the local dispatcher.

The QUEUED -> PROCESSING claim is conditional, so a duplicate trigger for
the same job is dropped. Once a job is claimed, every exit path leaves it
COMPLETED or FAILED; nothing may leave it stuck in PROCESSING.
"""
import asyncio

from sqlalchemy.ext.asyncio import async_sessionmaker

from docai.errors import ExtractionError, StorageError
from docai.logging_config import get_logger
from docai.models.job import JobStatus
from docai.routes.metrics import track_job_completed, track_job_failed, track_fallback_result
from docai.sentry_config import capture_exception
from docai.services.analysis import AnalysisOrchestrator, placeholder_analysis
from docai.services.job_service import JobService
from docai.services.storage import ObjectStorage
from docai.services.text_extractor import TextExtractor

log = get_logger(component="worker")

DOWNLOAD_FAILED = "Could not download file from storage"
EXTRACTION_FAILED = "Could not extract text from file"
UNEXPECTED_FAILURE = "Processing failed due to an internal error. Please retry."

# Client-visible reasons by extraction error code; parser detail stays in the logs
EXTRACTION_REASONS = {
    "EMPTY_EXTRACTION": "No readable text found in file",
    "UNSUPPORTED_FORMAT": "Legacy .doc format is not supported. Please convert to .docx first.",
}


class JobWorker:
    """State-machine driver for a single job."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        storage: ObjectStorage,
        orchestrator: AnalysisOrchestrator,
        extractor: TextExtractor | None = None,
        preview_chars: int = 10_000,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.orchestrator = orchestrator
        self.extractor = extractor or TextExtractor()
        self.preview_chars = preview_chars

    async def process(self, job_id: str) -> JobStatus | None:
        """
        Process one job.

        Returns:
            The terminal status this run wrote, or None if the job was
            missing or already claimed by another run
        """
        jlog = log.bind(job_id=job_id)

        async with self.session_factory() as db:
            jobs = JobService(db)

            job = await jobs.get_job_by_id(job_id)
            if job is None:
                jlog.warning("job_not_found")
                return None

            if not await jobs.claim_job(job_id):
                jlog.info("job_already_claimed", status=job.status.value)
                return None
            jlog.info("job_claimed", file_name=job.file_name, media_type=job.media_type)

            try:
                return await self._run(jobs, job_id, job.blob_location, job.media_type, job.file_name, jlog)
            except Exception as exc:
                await db.rollback()
                jlog.exception("job_processing_crashed", error=str(exc))
                capture_exception(exc)
                await self._fail_best_effort(jobs, job_id, UNEXPECTED_FAILURE, "internal", jlog)
                return JobStatus.FAILED

    async def _run(self, jobs: JobService, job_id: str, blob_location: str, media_type: str, file_name: str, jlog) -> JobStatus | None:
        try:
            data = await self.storage.download(blob_location)
        except StorageError as exc:
            jlog.error("job_download_failed", error=exc.message)
            await self._fail(jobs, job_id, DOWNLOAD_FAILED, "download")
            return JobStatus.FAILED

        try:
            extraction = await asyncio.to_thread(self.extractor.extract, data, media_type, file_name)
        except ExtractionError as exc:
            jlog.error("job_extraction_failed", code=exc.code, error=exc.message)
            await self._fail(jobs, job_id, EXTRACTION_REASONS.get(exc.code, EXTRACTION_FAILED), "extraction")
            return JobStatus.FAILED

        text = extraction.text
        if extraction.analyzable:
            analysis, provider = await self.orchestrator.analyze(text)
            fallback = provider is None
        else:
            analysis, provider = placeholder_analysis(text, media_type), None
            fallback = False

        result = {
            **analysis,
            "extractedText": text[:self.preview_chars],
            "provider": provider,
            "fallback": fallback,
            "extractionMethod": extraction.method,
        }

        if not await jobs.complete_job(job_id, result):
            # Someone else moved the job out of PROCESSING; their write stands
            jlog.warning("job_completion_not_applied")
            return None

        if fallback:
            track_fallback_result()
        track_job_completed(provider)
        jlog.info("job_completed", provider=provider, fallback=fallback, word_count=analysis["wordCount"])
        return JobStatus.COMPLETED

    async def _fail(self, jobs: JobService, job_id: str, message: str, stage: str) -> None:
        await jobs.fail_job(job_id, message, from_expected=(JobStatus.PROCESSING,))
        track_job_failed(stage)

    async def _fail_best_effort(self, jobs: JobService, job_id: str, message: str, stage: str, jlog) -> None:
        try:
            await self._fail(jobs, job_id, message, stage)
        except Exception as exc:
            jlog.error("job_fail_cleanup_failed", error=str(exc))
            capture_exception(exc)
