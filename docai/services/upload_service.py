"""
Upload handler: admits a new document and queues it.

Order matters. Input validation and an early quota check run before
anything is written, so most rejected uploads leave no blob and no job
behind. The credit itself is taken by a conditional increment committed
together with the job row; an upload that loses that race has its blob
removed. Rate limiting happens earlier still, in the route dependency.
"""
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docai.errors import InternalError, QuotaExceeded, QuotaStoreError, StorageError, ValidationError
from docai.logging_config import get_logger
from docai.models.job import Job
from docai.routes.metrics import track_job_queued, track_quota_rejection
from docai.services.dispatcher import Dispatcher
from docai.services.job_service import JobService
from docai.services.quota_service import QuotaService
from docai.services.storage import ObjectStorage, build_blob_location
from docai.services.text_extractor import resolve_media_type
from docai.tasks import spawn

log = get_logger(component="upload")

ALLOWED_MEDIA_TYPES = frozenset({
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "text/csv",
    "application/rtf",
    "text/rtf",
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
})


@dataclass
class UploadedFile:
    file_name: str
    media_type: str
    data: bytes


class UploadService:
    """Composes validation, quota, storage and the job store for one upload."""

    def __init__(
        self,
        db: AsyncSession,
        storage: ObjectStorage,
        dispatcher: Dispatcher,
        free_limit: int = 5,
        max_upload_bytes: int = 10 * 1024 * 1024,
    ):
        self.db = db
        self.storage = storage
        self.dispatcher = dispatcher
        self.max_upload_bytes = max_upload_bytes
        self.jobs = JobService(db)
        self.quota = QuotaService(db, free_limit=free_limit)

    def validate(self, upload: UploadedFile) -> str:
        """
        Check size and type.

        Returns:
            The resolved media type

        Raises:
            ValidationError: empty, oversized or disallowed file
        """
        if not upload.file_name:
            raise ValidationError("No file provided")
        if len(upload.data) == 0:
            raise ValidationError("File is empty")
        if len(upload.data) > self.max_upload_bytes:
            limit_mb = self.max_upload_bytes // (1024 * 1024)
            raise ValidationError(f"File size exceeds {limit_mb}MB limit", maxBytes=self.max_upload_bytes)

        media_type = resolve_media_type(upload.media_type, upload.file_name)
        if media_type not in ALLOWED_MEDIA_TYPES:
            raise ValidationError(f"File type {media_type} is not allowed")
        return media_type

    async def admit(self, owner_id: str) -> None:
        """
        Early quota check, before anything is written. A ledger outage
        admits the upload rather than blocking it.

        Raises:
            QuotaExceeded: free credits exhausted and no paid plan
        """
        try:
            decision = await self.quota.check_admission(owner_id)
        except QuotaStoreError as exc:
            log.warning("quota_check_degraded", owner_id=owner_id, error=exc.message)
            return

        if not decision.allowed:
            track_quota_rejection()
            raise QuotaExceeded(self.quota.free_limit)

    async def consume(self, owner_id: str, location: str) -> None:
        """
        Take the owner's credit for this upload. Concurrent uploads that
        all passed `admit` are decided here; the losers get QuotaExceeded
        and their blob is removed.
        """
        try:
            granted = await self.quota.consume_credit(owner_id)
        except QuotaStoreError as exc:
            log.warning("quota_consume_degraded", owner_id=owner_id, error=exc.message)
            return

        if not granted:
            track_quota_rejection()
            await self._discard_blob(location)
            raise QuotaExceeded(self.quota.free_limit)

    async def upload(self, owner_id: str, upload: UploadedFile) -> Job:
        """
        Admit, store and queue one document.

        The credit and the job row are committed in one transaction: a
        failed insert gives the credit back.

        Returns:
            The new job in QUEUED status; dispatch has been scheduled but
            not awaited
        """
        media_type = self.validate(upload)
        await self.admit(owner_id)

        location = build_blob_location(owner_id, upload.file_name)
        await self.storage.upload(location, upload.data, media_type)

        await self.consume(owner_id, location)
        try:
            job = await self.jobs.create_job(
                owner_id=owner_id,
                blob_location=location,
                file_name=upload.file_name,
                file_size=len(upload.data),
                media_type=media_type,
            )
        except SQLAlchemyError as exc:
            await self.db.rollback()
            log.error("job_create_failed", owner_id=owner_id, error=str(exc))
            await self._discard_blob(location)
            raise InternalError("Failed to create job") from exc

        track_job_queued("upload")
        log.info("job_queued", job_id=job.id, owner_id=owner_id, file_size=job.file_size, media_type=media_type)
        spawn(self.dispatcher.dispatch(job.id), name=f"dispatch:{job.id}")
        return job

    async def _discard_blob(self, location: str) -> None:
        try:
            await self.storage.delete(location)
        except StorageError as exc:
            log.warning("orphan_blob_delete_failed", location=location, error=str(exc))
