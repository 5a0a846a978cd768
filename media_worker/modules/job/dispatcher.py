"""Job intake and dispatch.

The dispatcher owns the job table and both FIFO queues. It is driven only
from the event loop thread: intake, completion and purge callbacks are
plain sequential method calls, so no lock is needed around the table.

Extraction jobs are always dispatched before transcode jobs so listeners
get audio as early as possible. One running-count is shared by both kinds.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from media_worker.core.logging import (
    clear_correlation_id,
    log_error,
    log_info,
    set_correlation_id,
)
from media_worker.core.metrics import (
    JOB_DURATION_SECONDS,
    JOBS_FINISHED_TOTAL,
    JOBS_QUEUED,
    JOBS_RUNNING,
)
from media_worker.core.tracing import create_span, record_exception
from media_worker.modules.job.models import Job, JobKind, JobPhase, JobState, job_key

logger = logging.getLogger(__name__)

Pipeline = Callable[[Job], Awaitable[None]]
FailureHandler = Callable[[Job, str], Awaitable[None]]


@dataclass
class EnqueueResult:
    """Outcome of an intake call."""
    accepted: bool
    job: Job
    # False when an active job with the same key was returned instead
    created: bool


class JobDispatcher:
    """Runs jobs from two priority-ordered queues under a global bound."""

    def __init__(
        self,
        pipelines: dict[JobKind, Pipeline],
        max_concurrent: int = 2,
        retention_seconds: float = 300.0,
        on_failure: Optional[FailureHandler] = None,
    ):
        """Initialize dispatcher.

        Args:
            pipelines: Coroutine function run for each job kind
            max_concurrent: Maximum running jobs across both kinds
            retention_seconds: How long terminal jobs stay queryable
            on_failure: Called when a pipeline lets an exception escape
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.pipelines = pipelines
        self.max_concurrent = max_concurrent
        self.retention_seconds = retention_seconds
        self.on_failure = on_failure

        self._jobs: dict[str, Job] = {}
        self._queues: dict[JobKind, deque[Job]] = {
            JobKind.EXTRACT: deque(),
            JobKind.TRANSCODE: deque(),
        }
        self._tasks: set[asyncio.Task] = set()
        self._purge_handles: dict[str, asyncio.TimerHandle] = {}
        self._running = 0
        self._closed = False

    @property
    def running(self) -> int:
        return self._running

    def queued(self, kind: Optional[JobKind] = None) -> int:
        if kind is not None:
            return len(self._queues[kind])
        return sum(len(q) for q in self._queues.values())

    def enqueue(self, kind: JobKind, media_id: str, payload: Optional[dict] = None) -> EnqueueResult:
        """Accept a job unless one with the same key is still tracked.

        A finished job stays tracked until its grace window ends; enqueueing
        during that window returns the finished job and starts no new run.

        Args:
            kind: Job kind
            media_id: Media ID
            payload: Pipeline input (video path, qualities)

        Returns:
            EnqueueResult with the new or already-tracked job
        """
        key = job_key(kind, media_id)
        existing = self._jobs.get(key)
        if existing is not None:
            log_info(logger, "Job already tracked", key=key, status=existing.status)
            return EnqueueResult(accepted=True, job=existing, created=False)

        job = Job(kind=kind, media_id=media_id, payload=dict(payload or {}))
        self._jobs[key] = job
        self._queues[kind].append(job)
        self._update_queue_gauges()

        log_info(logger, "Job queued", key=key, run_id=job.run_id)
        self._pump()
        return EnqueueResult(accepted=True, job=job, created=True)

    def get_status(self, key: str) -> Optional[Job]:
        """Return the job for a dedup key, or None once purged/unknown."""
        return self._jobs.get(key)

    def get_job(self, kind: JobKind, media_id: str) -> Optional[Job]:
        return self.get_status(job_key(kind, media_id))

    def _pump(self) -> None:
        """Start queued jobs while capacity remains, extraction first."""
        if self._closed:
            return
        while self._running < self.max_concurrent:
            job = self._next_job()
            if job is None:
                break
            self._running += 1
            JOBS_RUNNING.set(self._running)
            task = asyncio.get_running_loop().create_task(self._run(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        self._update_queue_gauges()

    def _next_job(self) -> Optional[Job]:
        for kind in (JobKind.EXTRACT, JobKind.TRANSCODE):
            queue = self._queues[kind]
            if queue:
                return queue.popleft()
        return None

    async def _run(self, job: Job) -> None:
        set_correlation_id(job.correlation_id)
        job.started_at = time.time()
        try:
            with create_span(
                f"job.{job.kind.value}",
                attributes={"media.id": job.media_id, "job.run_id": job.run_id},
            ):
                try:
                    await self.pipelines[job.kind](job)
                except Exception as e:
                    record_exception(e)
                    log_error(
                        logger,
                        "Unhandled error in job pipeline",
                        exception=e,
                        media_id=job.media_id,
                        kind=job.kind.value,
                    )
                    await self._fail(job, str(e) or type(e).__name__)
                else:
                    if not job.is_terminal:
                        await self._fail(job, "Job ended without a result")
        finally:
            self._finish(job)
            clear_correlation_id()

    async def _fail(self, job: Job, message: str) -> None:
        if job.is_terminal:
            return
        if self.on_failure is not None:
            try:
                await self.on_failure(job, message)
            except Exception as e:
                log_error(logger, "Failure handler raised", exception=e, media_id=job.media_id)
        if not job.is_terminal:
            # Last resort so the job never stays non-terminal
            job.error = message
            job.state = JobState.error()

    def _finish(self, job: Job) -> None:
        self._running -= 1
        JOBS_RUNNING.set(self._running)

        outcome = "ready" if job.state.phase == JobPhase.READY else "error"
        JOBS_FINISHED_TOTAL.labels(kind=job.kind.value, outcome=outcome).inc()
        if job.started_at is not None:
            JOB_DURATION_SECONDS.labels(kind=job.kind.value).observe(time.time() - job.started_at)
        log_info(
            logger,
            "Job finished",
            media_id=job.media_id,
            kind=job.kind.value,
            outcome=outcome,
            skipped=len(job.skipped),
        )

        if not self._closed:
            self._schedule_purge(job)
        self._pump()

    def _schedule_purge(self, job: Job) -> None:
        key = job.key
        loop = asyncio.get_running_loop()
        self._purge_handles[key] = loop.call_later(
            self.retention_seconds, self._purge, key, job.run_id
        )

    def _purge(self, key: str, run_id: str) -> None:
        self._purge_handles.pop(key, None)
        job = self._jobs.get(key)
        # Only drop the run that scheduled this purge
        if job is not None and job.run_id == run_id and job.is_terminal:
            del self._jobs[key]

    def _update_queue_gauges(self) -> None:
        for kind, queue in self._queues.items():
            JOBS_QUEUED.labels(kind=kind.value).set(len(queue))

    async def wait_idle(self) -> None:
        """Wait until no job is queued or running."""
        while self._tasks or (self.queued() and not self._closed):
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(0)

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop dispatching and give running jobs ``timeout`` seconds to finish.

        Jobs still running after the timeout are cancelled; queued jobs are
        dropped.
        """
        self._closed = True
        for handle in self._purge_handles.values():
            handle.cancel()
        self._purge_handles.clear()
        for queue in self._queues.values():
            queue.clear()
        self._update_queue_gauges()

        tasks = list(self._tasks)
        if not tasks:
            return
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
