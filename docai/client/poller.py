"""
Status poller for DocAI clients.

Polls GET /jobs/{id} on a fixed interval until the job is terminal, with a
hard cap on attempts. There is no push channel: this loop is the supported
way to learn a job's outcome.
"""
import asyncio

import httpx

from docai.logging_config import get_logger

log = get_logger(component="poller")

TERMINAL_STATUSES = frozenset({"completed", "failed"})


class PollError(Exception):
    """Base class for polling failures."""


class PollTimeout(PollError):
    """The job did not reach a terminal state within the attempt budget."""

    def __init__(self, job_id: str, attempts: int):
        super().__init__(f"Job {job_id} still not finished after {attempts} checks")
        self.job_id = job_id
        self.attempts = attempts


class JobNotFound(PollError):
    """The job does not exist or belongs to someone else."""


class JobPoller:
    """
    Client-side polling loop.

    Usage:
        async with httpx.AsyncClient(base_url=url, headers=auth) as client:
            job = await JobPoller(client).wait(job_id)
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        interval: float = 3.0,
        max_attempts: int = 60,
        sleep=asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        self.client = client
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def fetch(self, job_id: str) -> dict:
        response = await self.client.get(f"/jobs/{job_id}")
        if response.status_code == 404:
            raise JobNotFound(f"Job {job_id} not found")
        response.raise_for_status()
        return response.json()

    async def wait(self, job_id: str, on_update=None) -> dict:
        """
        Poll until the job is completed or failed.

        Transport errors and 5xx answers count as spent attempts; a 404
        ends polling immediately.

        Args:
            job_id: Job to watch
            on_update: Optional callable receiving each status payload

        Returns:
            The final job payload

        Raises:
            JobNotFound: the job is missing or not owned by the caller
            PollTimeout: the attempt budget ran out
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                job = await self.fetch(job_id)
            except (httpx.TransportError, httpx.HTTPStatusError) as exc:
                if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code < 500:
                    raise
                log.warning("poll_attempt_failed", job_id=job_id, attempt=attempt, error=str(exc))
            else:
                if on_update is not None:
                    on_update(job)
                if job.get("status") in TERMINAL_STATUSES:
                    log.info("poll_finished", job_id=job_id, attempt=attempt, status=job["status"])
                    return job

            if attempt < self.max_attempts:
                await self._sleep(self.interval)

        raise PollTimeout(job_id, self.max_attempts)
