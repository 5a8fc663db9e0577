"""Fire-and-forget job scheduling.

Intake calls JobDispatcher.submit() and returns immediately; the job runs
as its own asyncio task in this process. Jobs are not persisted for retry:
a process that dies takes its in-flight jobs with it.
"""

from __future__ import annotations

import asyncio
import logging

from smelt_processor.models import Job
from smelt_processor.pipeline import JobOrchestrator

logger = logging.getLogger(__name__)


class JobDispatcher:
    """Schedules orchestrator runs and keeps them alive until done."""

    def __init__(self, orchestrator: JobOrchestrator) -> None:
        self.orchestrator = orchestrator
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def active_jobs(self) -> list[str]:
        return list(self._tasks)

    def submit(self, job: Job) -> asyncio.Task[None]:
        """Start processing a job in the background.

        Must be called from a running event loop. Submitting a job that is
        already running returns the existing task.
        """
        existing = self._tasks.get(job.id)
        if existing is not None:
            logger.warning("Job already running", extra={"job_id": job.id})
            return existing

        task = asyncio.create_task(self.orchestrator.run(job), name=f"job:{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda t: self._on_done(job.id, t))
        logger.info("Submitted job", extra={"job_id": job.id})
        return task

    def _on_done(self, job_id: str, task: asyncio.Task[None]) -> None:
        self._tasks.pop(job_id, None)
        if task.cancelled():
            logger.warning("Job task cancelled", extra={"job_id": job_id})
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Job task crashed: %s",
                exc,
                exc_info=exc,
                extra={"job_id": job_id, "error": str(exc)},
            )

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for every running job to finish.

        Args:
            timeout: Seconds to wait before cancelling what is still running.
        """
        tasks = list(self._tasks.values())
        if not tasks:
            return
        logger.info("Draining %d running jobs", len(tasks))
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("Cancelled %d jobs still running at shutdown", len(pending))
