"""
Job store: the durable job record and its state machine.

SECURITY: Every read or mutation made on behalf of an end user MUST
include the owner_id filter. Only the worker addresses jobs by id alone.

Every status change is a single conditional UPDATE
("... WHERE status IN expected") that reports whether it applied. A
transition that does not apply means someone else already moved the job,
and the caller must back off without side effects.
"""
import json
from typing import Iterable

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from docai.errors import StorageError
from docai.logging_config import get_logger
from docai.models.base import utcnow
from docai.models.job import Job, JobStatus
from docai.services.storage import ObjectStorage

log = get_logger(component="job_store")


class JobService:
    """Service for creating, reading and transitioning jobs."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_job(
        self,
        owner_id: str,
        blob_location: str,
        file_name: str,
        file_size: int,
        media_type: str,
    ) -> Job:
        """
        Create a new job in QUEUED status.

        Args:
            owner_id: Identity of the requesting principal
            blob_location: Object storage key of the uploaded file
            file_name: Original file name
            file_size: Size in bytes
            media_type: Declared media type

        Returns:
            Newly created Job
        """
        job = Job(
            owner_id=owner_id,
            blob_location=blob_location,
            file_name=file_name,
            file_size=file_size,
            media_type=media_type,
            status=JobStatus.QUEUED,
        )
        self.db.add(job)
        await self.db.commit()
        await self.db.refresh(job)
        return job

    async def transition(
        self,
        job_id: str,
        from_expected: JobStatus | Iterable[JobStatus],
        to: JobStatus,
        owner_id: str | None = None,
        **patch,
    ) -> bool:
        """
        Move a job to `to` only if its stored status is one of `from_expected`.

        Args:
            job_id: Job UUID
            from_expected: Status (or statuses) the job must currently have
            to: Target status
            owner_id: Restrict the update to this owner (end-user actions)
            **patch: Additional column values written in the same statement

        Returns:
            True if exactly one row changed, False if the guard did not match
        """
        if isinstance(from_expected, JobStatus):
            expected = [from_expected]
        else:
            expected = list(from_expected)

        stmt = update(Job).where(Job.id == job_id, Job.status.in_(expected))
        if owner_id is not None:
            stmt = stmt.where(Job.owner_id == owner_id)
        stmt = stmt.values(status=to, **patch).execution_options(synchronize_session=False)

        result = await self.db.execute(stmt)
        await self.db.commit()

        applied = result.rowcount == 1
        log.info(
            "job_transition",
            job_id=job_id,
            from_expected=[s.value for s in expected],
            to=to.value,
            applied=applied,
        )
        return applied

    async def claim_job(self, job_id: str) -> bool:
        """QUEUED -> PROCESSING. False if the job was already claimed or finished."""
        return await self.transition(
            job_id,
            JobStatus.QUEUED,
            JobStatus.PROCESSING,
            started_at=utcnow(),
            attempt_count=Job.attempt_count + 1,
        )

    async def complete_job(self, job_id: str, result: dict) -> bool:
        """PROCESSING -> COMPLETED with the result payload."""
        return await self.transition(
            job_id,
            JobStatus.PROCESSING,
            JobStatus.COMPLETED,
            result=json.dumps(result),
            error=None,
            processed_at=utcnow(),
        )

    async def fail_job(
        self,
        job_id: str,
        error_message: str,
        from_expected: Iterable[JobStatus] = (JobStatus.QUEUED, JobStatus.PROCESSING),
    ) -> bool:
        """QUEUED or PROCESSING -> FAILED with a client-safe reason."""
        return await self.transition(
            job_id,
            from_expected,
            JobStatus.FAILED,
            result=None,
            error=error_message,
            processed_at=utcnow(),
        )

    async def reset_for_retry(self, job_id: str, owner_id: str) -> bool:
        """FAILED -> QUEUED for the owning principal, clearing result and error."""
        return await self.transition(
            job_id,
            JobStatus.FAILED,
            JobStatus.QUEUED,
            owner_id=owner_id,
            result=None,
            error=None,
            started_at=None,
            processed_at=None,
            retry_count=Job.retry_count + 1,
        )

    async def get_job_by_id(self, job_id: str) -> Job | None:
        """Get job by ID. Worker use only: no owner filter."""
        stmt = select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_job_for_owner(self, job_id: str, owner_id: str) -> Job | None:
        """Get job by ID for its owner. Other owners see nothing."""
        stmt = (
            select(Job)
            .where(Job.id == job_id, Job.owner_id == owner_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_jobs_for_owner(self, owner_id: str, limit: int = 100) -> list[Job]:
        """Get the owner's jobs, most recent first."""
        stmt = (
            select(Job)
            .where(Job.owner_id == owner_id)
            .order_by(Job.created_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def delete_job(self, job_id: str, owner_id: str, storage: ObjectStorage) -> bool:
        """
        Delete the owner's job row, then remove its blob on a best-effort basis.

        Returns:
            True if a row was deleted, False if no such job exists for the owner
        """
        job = await self.get_job_for_owner(job_id, owner_id)
        if job is None:
            return False

        blob_location = job.blob_location
        await self.db.execute(
            delete(Job)
            .where(Job.id == job_id, Job.owner_id == owner_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        try:
            await storage.delete(blob_location)
        except StorageError as exc:
            log.warning("blob_delete_failed", job_id=job_id, error=str(exc))

        return True
