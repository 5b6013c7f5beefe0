"""Async worker pool for background test runs.

In-process asyncio tasks bounded by a semaphore. Each job drives one
pending run through ``run_complete_test``; the persisted run record stays
the source of truth, the pool only tracks task state for the process.
"""

from __future__ import annotations

import asyncio
from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum

import structlog

from ragqa.api.metrics import (
    record_run_finished,
    record_run_results,
    set_active_workers,
    set_queue_depth,
)
from ragqa.persistence.repository import get_test_questions
from ragqa.pipeline.context import PipelineContext
from ragqa.pipeline.orchestrator import run_complete_test

logger = structlog.get_logger(__name__)


class JobStatus(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class JobInfo:
    """Tracked state of one background run."""

    run_id: str
    tenant_id: str
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    overall_score: float | None = None
    error: str | None = None


class WorkerPool:
    """Async worker pool with bounded concurrency.

    Args:
        ctx: Pipeline context shared by every job.
        max_workers: Maximum runs executing at once.
        keep_finished: Finished jobs remembered for get_job/list_jobs; older
            ones are dropped. The run record in the database stays.
    """

    def __init__(
        self,
        ctx: PipelineContext,
        max_workers: int = 4,
        keep_finished: int = 100,
    ) -> None:
        self._ctx = ctx
        self._semaphore = asyncio.Semaphore(max_workers)
        self._max_workers = max_workers
        self._tasks: dict[str, asyncio.Task] = {}
        self._jobs: dict[str, JobInfo] = {}
        self._keep_finished = keep_finished

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def submit(self, run_id: str, tenant_id: str) -> JobInfo:
        """Schedule a pending run. Returns immediately.

        Raises ValueError if the run is already scheduled in this pool.
        """
        existing = self._tasks.get(run_id)
        if existing is not None and not existing.done():
            raise ValueError(f"Run {run_id} is already scheduled")

        job = JobInfo(run_id=run_id, tenant_id=tenant_id)
        self._jobs[run_id] = job
        task = asyncio.create_task(self._execute(job), name=f"ragqa-run-{run_id}")
        self._tasks[run_id] = task
        task.add_done_callback(lambda t: self._on_task_done(run_id, t))

        logger.info("job_submitted", run_id=run_id, tenant_id=tenant_id)
        self._update_gauges()
        return job

    async def _execute(self, job: JobInfo) -> None:
        try:
            async with self._semaphore:
                job.status = JobStatus.RUNNING
                self._update_gauges()
                run = await run_complete_test(job.run_id, self._ctx)
        except asyncio.CancelledError:
            job.status = JobStatus.CANCELLED
            job.finished_at = datetime.now(timezone.utc)
            record_run_finished(JobStatus.CANCELLED)
            logger.info("job_cancelled", run_id=job.run_id)
            raise
        except Exception as exc:
            job.status = JobStatus.FAILED
            job.error = str(exc)
            job.finished_at = datetime.now(timezone.utc)
            record_run_finished(JobStatus.FAILED)
            logger.error("job_failed", run_id=job.run_id, error=str(exc), exc_info=True)
            return

        job.status = JobStatus.DONE
        job.overall_score = run.overall_score
        job.finished_at = datetime.now(timezone.utc)
        record_run_finished(run.status)
        with closing(self._ctx.connect()) as conn:
            record_run_results(run, get_test_questions(conn, run.id))
        logger.info("job_completed", run_id=job.run_id, overall_score=run.overall_score)

    def _on_task_done(self, run_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(run_id) is task:
            del self._tasks[run_id]
        job = self._jobs.get(run_id)
        if task.cancelled():
            if job is not None and job.status is JobStatus.QUEUED:
                # Cancelled before the task body ever ran
                job.status = JobStatus.CANCELLED
                job.finished_at = datetime.now(timezone.utc)
                record_run_finished(JobStatus.CANCELLED)
        elif task.exception() is not None:
            # Raised outside the guarded block, e.g. while recording metrics
            logger.error(
                "job_crashed",
                run_id=run_id,
                error=str(task.exception()),
            )
            if job is not None and job.status is not JobStatus.FAILED:
                job.status = JobStatus.FAILED
                job.error = str(task.exception())
        self._prune_finished()
        self._update_gauges()

    def _prune_finished(self) -> None:
        finished = [
            j for j in self._jobs.values()
            if j.status not in (JobStatus.QUEUED, JobStatus.RUNNING)
            and j.run_id not in self._tasks
        ]
        excess = len(finished) - self._keep_finished
        if excess <= 0:
            return
        finished.sort(key=lambda j: j.finished_at or j.created_at)
        for job in finished[:excess]:
            del self._jobs[job.run_id]

    def _update_gauges(self) -> None:
        set_queue_depth(self.pending_count)
        set_active_workers(self.active_count)

    def get_job(self, run_id: str) -> JobInfo | None:
        return self._jobs.get(run_id)

    def list_jobs(self, tenant_id: str | None = None) -> list[JobInfo]:
        """Jobs of this process, newest first."""
        jobs = [j for j in self._jobs.values() if tenant_id is None or j.tenant_id == tenant_id]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    async def wait(self, run_id: str) -> JobInfo | None:
        """Wait until a job finishes. Returns its final state."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self._jobs.get(run_id)

    async def cancel(self, run_id: str) -> bool:
        """Cancel a queued or running job. Returns True if cancelled."""
        task = self._tasks.get(run_id)
        if task and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            return True
        return False

    async def shutdown(self) -> None:
        for run_id in list(self._tasks):
            await self.cancel(run_id)

    @property
    def pending_count(self) -> int:
        """Jobs waiting for a worker slot."""
        return sum(1 for j in self._jobs.values() if j.status is JobStatus.QUEUED)

    @property
    def active_count(self) -> int:
        """Jobs currently holding a worker slot."""
        return sum(1 for j in self._jobs.values() if j.status is JobStatus.RUNNING)
