"""
Internal dispatch trigger.

Server-to-server only, authenticated with the shared dispatch secret. The
trigger is acknowledged as soon as the worker task is scheduled; the
outcome is reported through the job record, never through this response.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from docai.dependencies.auth import verify_dispatch_secret
from docai.dependencies.services import get_db, get_worker
from docai.errors import NotFoundError
from docai.logging_config import get_logger
from docai.models.job import JobStatus
from docai.services.job_service import JobService
from docai.tasks import spawn
from docai.worker import JobWorker

log = get_logger(component="internal_dispatch")

router = APIRouter(prefix="/internal", tags=["internal"], dependencies=[Depends(verify_dispatch_secret)])


class DispatchRequest(BaseModel):
    jobId: str


@router.post("/jobs/dispatch")
async def dispatch_job(
    request: DispatchRequest,
    db: AsyncSession = Depends(get_db),
    worker: JobWorker = Depends(get_worker),
):
    """
    Accept a processing trigger.

    A job that is no longer queued is acknowledged without work so that a
    duplicate trigger is not retried by the dispatcher.
    """
    job = await JobService(db).get_job_by_id(request.jobId)
    if job is None:
        raise NotFoundError()

    if job.status != JobStatus.QUEUED:
        log.info("dispatch_ignored", job_id=job.id, status=job.status.value)
        return {"accepted": False, "jobId": job.id, "status": job.status.value}

    spawn(worker.process(job.id), name=f"process:{job.id}")
    log.info("dispatch_accepted", job_id=job.id)
    return JSONResponse(status_code=202, content={"accepted": True, "jobId": job.id})
