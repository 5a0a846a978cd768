"""Status publishing and temporary file cleanup.

Every state transition lands in two places: the in-memory job (rich, read
by live status polls) and the durable media record (authoritative, read by
the web application). Durable progress writes are telemetry: a failed write
is logged and the job carries on.
"""

import logging
import os
import time
from pathlib import Path
from typing import Optional

from media_worker.core.logging import log_error, log_info, log_warning
from media_worker.core.metrics import ARTIFACTS_TOTAL
from media_worker.modules.job.models import Job, JobKind, JobState
from media_worker.modules.media.repository import MediaRecordRepository

logger = logging.getLogger(__name__)


class StatusPublisher:
    """Applies job transitions and mirrors them to the media record."""

    def __init__(self, repository: MediaRecordRepository):
        self.repository = repository

    async def start(self, job: Job) -> None:
        """Flag the record as processing when an extraction begins.

        Transcodes leave the record status alone: the media stays playable
        while variants are produced.
        """
        if job.kind != JobKind.EXTRACT:
            return
        try:
            await self.repository.mark_processing(job.media_id)
        except Exception as e:
            log_warning(logger, "Failed to mark media processing", media_id=job.media_id, error=str(e))

    async def transition(
        self,
        job: Job,
        state: JobState,
        progress: Optional[float] = None,
        current_item: Optional[str] = None,
    ) -> None:
        """Move a job to a new state and persist the stage.

        Args:
            job: The running job
            state: New state
            progress: New progress percentage (never lowers progress)
            current_item: Label of the artifact being worked on
        """
        job.transition(state)
        if progress is not None:
            job.advance_progress(progress)
        job.current_item = current_item

        log_info(
            logger,
            "Job state changed",
            media_id=job.media_id,
            kind=job.kind.value,
            status=job.status,
            progress=job.progress,
        )
        await self._write_progress(job)

    def report_progress(self, job: Job, percent: float) -> None:
        """Live encoder progress; in-memory only."""
        job.advance_progress(percent)

    def record_skip(
        self,
        job: Job,
        artifact: str,
        item: str,
        reason: str,
        detail: Optional[str] = None,
    ) -> None:
        """Note an artifact the job dropped without failing."""
        job.skipped.append({"item": item, "reason": reason, "detail": detail})
        ARTIFACTS_TOTAL.labels(artifact=artifact, outcome="skipped").inc()
        log_warning(
            logger,
            "Artifact skipped",
            media_id=job.media_id,
            artifact=artifact,
            item=item,
            reason=reason,
            detail=detail,
        )

    async def succeed(self, job: Job) -> None:
        job.finished_at = time.time()
        await self.transition(job, JobState.ready(), progress=100)

    async def fail(self, job: Job, message: str) -> None:
        """Move a job to ``error`` and record the message.

        Extraction failures also flip the record's status; a failed
        transcode only records the message, since playback may still work
        from the source video.
        """
        if job.is_terminal:
            return
        job.error = message
        job.finished_at = time.time()
        job.transition(JobState.error())
        job.current_item = None

        log_error(
            logger,
            "Job failed",
            media_id=job.media_id,
            kind=job.kind.value,
            error=message,
        )

        try:
            await self.repository.mark_error(
                job.media_id,
                message,
                set_status=job.kind == JobKind.EXTRACT,
            )
        except Exception as e:
            log_error(
                logger,
                "Failed to record job error",
                media_id=job.media_id,
                error=str(e),
            )
        await self._write_progress(job)

    async def _write_progress(self, job: Job) -> None:
        try:
            await self.repository.set_progress(job.media_id, job.status, job.progress)
        except Exception as e:
            log_warning(
                logger,
                "Progress write failed",
                media_id=job.media_id,
                status=job.status,
                error=str(e),
            )


class TempFileGuard:
    """Owns the local scratch files of one job run.

    Every path handed out is deleted when the guard's scope exits, whether
    the job succeeded or raised.
    """

    def __init__(self, directory: str, prefix: str):
        self.directory = Path(directory)
        self.prefix = prefix
        self.paths: list[Path] = []

    def path(self, name: str) -> str:
        """Reserve a scratch path and register it for deletion."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / f"{self.prefix}_{name}"
        self.paths.append(path)
        return str(path)

    def track(self, path: str) -> str:
        """Register an externally created file for deletion."""
        self.paths.append(Path(path))
        return path

    def release(self, path: str) -> None:
        """Delete one file early, e.g. right after it was uploaded."""
        target = Path(path)
        self._remove(target)
        self.paths = [p for p in self.paths if p != target]

    def cleanup(self) -> int:
        """Delete every registered file that still exists.

        Returns:
            Number of files removed
        """
        removed = 0
        for path in self.paths:
            if self._remove(path):
                removed += 1
        self.paths = []
        return removed

    def _remove(self, path: Path) -> bool:
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            log_warning(logger, "Failed to delete temp file", path=str(path), error=str(e))
            return False

    def __enter__(self) -> "TempFileGuard":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    async def __aenter__(self) -> "TempFileGuard":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.cleanup()
