"""
Job API routes.

Upload a document, read its status, retry a failed job, download the
stored file, export the analysis report and delete the job.
Every lookup is scoped to the caller: a job owned by someone else answers
404 exactly like a missing one.
"""
import json
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Response, UploadFile
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from docai.config import settings
from docai.dependencies.auth import TokenPayload
from docai.dependencies.rate_limit import rate_limit
from docai.dependencies.services import get_db, get_dispatcher, get_storage
from docai.errors import ConflictError, NotFoundError, RetryLimitReached
from docai.logging_config import get_logger
from docai.models.base import utcnow
from docai.models.job import Job, JobStatus
from docai.routes.metrics import track_job_queued
from docai.services.dispatcher import Dispatcher
from docai.services.job_service import JobService
from docai.services.storage import ObjectStorage
from docai.services.upload_service import UploadedFile, UploadService
from docai.tasks import spawn

log = get_logger(component="jobs_api")

router = APIRouter(prefix="/jobs", tags=["jobs"])


class JobAccepted(BaseModel):
    """Response model for upload and retry."""
    jobId: str
    status: str


class JobResponse(BaseModel):
    """Response model for a job."""
    id: str
    status: str
    fileName: str
    fileSize: int
    mediaType: str
    createdAt: str | None = None
    processedAt: str | None = None
    result: dict | None = None
    error: str | None = None


class DownloadLink(BaseModel):
    """Response model for a signed download URL."""
    url: str
    fileName: str
    expiresIn: int


class ExportReport(BaseModel):
    """Analysis report for a completed job."""
    jobId: str
    fileName: str
    mediaType: str
    fileSize: int
    processedAt: str | None = None
    summary: str = ""
    keyPoints: list[str] = []
    keywords: list[str] = []
    category: str = "N/A"
    sentiment: str = "N/A"
    wordCount: int = 0
    charCount: int = 0
    extractedText: str = ""
    provider: str | None = None
    fallback: bool = False
    generatedAt: str


def job_to_response(job: Job) -> JobResponse:
    """Convert Job model to JobResponse."""
    return JobResponse(
        id=job.id,
        status=job.status.value if isinstance(job.status, JobStatus) else job.status,
        fileName=job.file_name,
        fileSize=job.file_size,
        mediaType=job.media_type,
        createdAt=job.created_at.isoformat() if job.created_at else None,
        processedAt=job.processed_at.isoformat() if job.processed_at else None,
        result=json.loads(job.result) if job.result else None,
        error=job.error,
    )


@router.post("", response_model=JobAccepted)
async def upload_document(
    file: UploadFile = File(...),
    owner: TokenPayload = Depends(rate_limit("upload")),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """
    Upload a document for analysis.

    Returns immediately with the job id. Processing happens in the
    background; poll GET /jobs/{id} for the outcome.
    """
    # One byte past the limit is enough to know the file is too large
    data = await file.read(settings.MAX_UPLOAD_BYTES + 1)

    service = UploadService(
        db,
        storage,
        dispatcher,
        free_limit=settings.FREE_CREDIT_LIMIT,
        max_upload_bytes=settings.MAX_UPLOAD_BYTES,
    )
    job = await service.upload(
        owner.sub,
        UploadedFile(file_name=file.filename or "", media_type=file.content_type or "", data=data),
    )
    return JobAccepted(jobId=job.id, status=JobStatus.QUEUED.value)


@router.get("", response_model=list[JobResponse])
async def list_jobs(
    owner: TokenPayload = Depends(rate_limit("read")),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's jobs, newest first."""
    jobs = await JobService(db).get_jobs_for_owner(owner.sub)
    return [job_to_response(job) for job in jobs]


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    owner: TokenPayload = Depends(rate_limit("read")),
    db: AsyncSession = Depends(get_db),
):
    """
    Get job status and result.

    Clients poll this until status is completed or failed.
    """
    job = await JobService(db).get_job_for_owner(job_id, owner.sub)
    if job is None:
        raise NotFoundError()
    return job_to_response(job)


@router.get("/{job_id}/download", response_model=None)
async def download_document(
    job_id: str,
    owner: TokenPayload = Depends(rate_limit("read")),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    """
    Download the stored file.

    Backends that can sign URLs answer with a time-limited link; otherwise
    the file itself is returned as an attachment.
    """
    job = await JobService(db).get_job_for_owner(job_id, owner.sub)
    if job is None:
        raise NotFoundError()

    url = await storage.signed_url(job.blob_location, settings.DOWNLOAD_URL_TTL_SECONDS)
    if url is not None:
        return DownloadLink(url=url, fileName=job.file_name, expiresIn=settings.DOWNLOAD_URL_TTL_SECONDS)

    data = await storage.download(job.blob_location)
    return Response(
        content=data,
        media_type=job.media_type,
        headers={"Content-Disposition": f'attachment; filename="{quote(job.file_name)}"'},
    )


@router.get("/{job_id}/export", response_model=ExportReport)
async def export_report(
    job_id: str,
    owner: TokenPayload = Depends(rate_limit("read")),
    db: AsyncSession = Depends(get_db),
):
    """Analysis report of a completed job, ready to save or share."""
    job = await JobService(db).get_job_for_owner(job_id, owner.sub)
    if job is None:
        raise NotFoundError()
    if job.status != JobStatus.COMPLETED or not job.result:
        raise ConflictError(f"Only completed jobs can be exported (status: {job.status.value})")

    result = json.loads(job.result)
    return ExportReport(
        jobId=job.id,
        fileName=job.file_name,
        mediaType=job.media_type,
        fileSize=job.file_size,
        processedAt=job.processed_at.isoformat() if job.processed_at else None,
        summary=result.get("summary", ""),
        keyPoints=result.get("keyPoints", []),
        keywords=result.get("keywords", []),
        category=result.get("category", "N/A"),
        sentiment=result.get("sentiment", "N/A"),
        wordCount=result.get("wordCount", 0),
        charCount=result.get("charCount", 0),
        extractedText=result.get("extractedText", ""),
        provider=result.get("provider"),
        fallback=result.get("fallback", False),
        generatedAt=utcnow().isoformat(),
    )


@router.post("/{job_id}/retry", response_model=JobAccepted)
async def retry_job(
    job_id: str,
    owner: TokenPayload = Depends(rate_limit("process")),
    db: AsyncSession = Depends(get_db),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """
    Re-queue a failed job and dispatch it again.

    Only failed jobs can be retried, at most MAX_MANUAL_RETRIES times.
    """
    service = JobService(db)
    job = await service.get_job_for_owner(job_id, owner.sub)
    if job is None:
        raise NotFoundError()

    if job.status != JobStatus.FAILED:
        raise ConflictError(f"Only failed jobs can be retried (status: {job.status.value})")

    if job.retry_count >= settings.MAX_MANUAL_RETRIES:
        raise RetryLimitReached(
            f"Maximum retry limit ({settings.MAX_MANUAL_RETRIES}) reached",
            retryCount=job.retry_count,
        )

    if not await service.reset_for_retry(job_id, owner.sub):
        # A concurrent retry got there first
        raise ConflictError("Job is already being retried")

    track_job_queued("retry")
    log.info("job_requeued", job_id=job_id, owner_id=owner.sub, retry_count=job.retry_count + 1)
    spawn(dispatcher.dispatch(job_id), name=f"dispatch:{job_id}")
    return JobAccepted(jobId=job_id, status=JobStatus.QUEUED.value)


@router.delete("/{job_id}")
async def delete_job(
    job_id: str,
    owner: TokenPayload = Depends(rate_limit("process")),
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    """Delete a job and, best-effort, its stored file."""
    deleted = await JobService(db).delete_job(job_id, owner.sub, storage)
    if not deleted:
        raise NotFoundError()
    return {"success": True, "jobId": job_id}
