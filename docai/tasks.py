"""
Fire-and-forget background tasks.

The event loop only keeps weak references to tasks, so scheduled work is
held here until it finishes. Failures are logged and reported to Sentry
instead of vanishing with the task.
"""
import asyncio

from docai.logging_config import get_logger
from docai.sentry_config import capture_exception

log = get_logger(component="tasks")

_background_tasks: set[asyncio.Task] = set()


def spawn(coro, name: str | None = None) -> asyncio.Task:
    """Schedule `coro` on the running loop without awaiting it."""
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_on_done)
    return task


def _on_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log.error("background_task_failed", task=task.get_name(), error=str(exc), exc_info=exc)
        capture_exception(exc)


def pending() -> int:
    """Number of scheduled tasks that have not finished yet."""
    return len(_background_tasks)


async def drain(timeout: float | None = None) -> None:
    """
    Wait for scheduled tasks, including any they schedule in turn.

    Tasks still running after `timeout` are cancelled.
    """
    loop = asyncio.get_running_loop()
    deadline = None if timeout is None else loop.time() + timeout

    while _background_tasks:
        remaining = None if deadline is None else max(0.0, deadline - loop.time())
        done, still_pending = await asyncio.wait(set(_background_tasks), timeout=remaining)
        if still_pending and deadline is not None and loop.time() >= deadline:
            for task in still_pending:
                task.cancel()
            await asyncio.gather(*still_pending, return_exceptions=True)
            log.warning("background_tasks_cancelled", count=len(still_pending))
            return
