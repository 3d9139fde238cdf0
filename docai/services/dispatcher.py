"""
Dispatcher: asks the worker to start on a queued job.

Dispatch is fire-and-forget. The caller schedules it as a background task
and never waits on it; the dispatcher itself only waits for the trigger to
be acknowledged, never for the job to finish.

Delivery failures are retried with exponential backoff. If every attempt
fails the job stays QUEUED: only the worker decides that a job failed,
and a queued job remains eligible for a manual retry.
"""
import asyncio
from abc import ABC, abstractmethod

import httpx

from docai.logging_config import get_logger
from docai.routes.metrics import track_dispatch_failure
from docai.tasks import spawn

log = get_logger(component="dispatcher")

DISPATCH_SECRET_HEADER = "X-Dispatch-Secret"


class Dispatcher(ABC):
    """Trigger for worker processing."""

    @abstractmethod
    async def dispatch(self, job_id: str) -> bool:
        """
        Deliver a processing trigger for `job_id`.

        Returns:
            True if the worker acknowledged the trigger
        """
        ...

    async def aclose(self) -> None:
        pass


class HttpDispatcher(Dispatcher):
    """POSTs {jobId} to the internal dispatch endpoint of a worker instance."""

    def __init__(
        self,
        url: str,
        secret: str,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        connect_timeout: float = 2.0,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep=asyncio.sleep,
    ):
        self.url = url
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            headers={DISPATCH_SECRET_HEADER: secret},
            transport=transport,
        )

    async def dispatch(self, job_id: str) -> bool:
        dlog = log.bind(job_id=job_id)
        attempts = self.max_retries + 1

        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.post(self.url, json={"jobId": job_id})
            except httpx.TransportError as exc:
                dlog.warning("dispatch_attempt_failed", attempt=attempt, error=str(exc))
            else:
                if response.is_success:
                    dlog.info("dispatch_delivered", attempt=attempt, status_code=response.status_code)
                    return True
                if response.status_code < 500:
                    # Rejected by the worker: retrying would get the same answer
                    dlog.error("dispatch_rejected", attempt=attempt, status_code=response.status_code)
                    track_dispatch_failure("rejected")
                    return False
                dlog.warning("dispatch_attempt_failed", attempt=attempt, status_code=response.status_code)

            if attempt < attempts:
                await self._sleep(self.backoff_seconds * 2 ** (attempt - 1))

        dlog.error("dispatch_failed", attempts=attempts)
        track_dispatch_failure("undelivered")
        return False

    async def aclose(self) -> None:
        await self._client.aclose()


class LocalDispatcher(Dispatcher):
    """Runs the worker as a task on this process's event loop."""

    def __init__(self, worker):
        self.worker = worker

    async def dispatch(self, job_id: str) -> bool:
        spawn(self.worker.process(job_id), name=f"process:{job_id}")
        log.info("dispatch_delivered", job_id=job_id, mode="local")
        return True


def build_dispatcher(settings, worker=None) -> Dispatcher:
    """Create the dispatcher selected by DISPATCH_MODE."""
    if settings.DISPATCH_MODE == "local":
        if worker is None:
            raise RuntimeError("DISPATCH_MODE=local requires a worker")
        return LocalDispatcher(worker)
    return HttpDispatcher(
        settings.DISPATCH_URL,
        settings.DISPATCH_SECRET,
        max_retries=settings.DISPATCH_MAX_RETRIES,
        backoff_seconds=settings.DISPATCH_BACKOFF_SECONDS,
        connect_timeout=settings.DISPATCH_CONNECT_TIMEOUT_SECONDS,
        timeout=settings.DISPATCH_TIMEOUT_SECONDS,
    )
