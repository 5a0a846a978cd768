"""Wiring of the worker's long-lived components and their FastAPI dependency."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from media_worker.core.config import settings
from media_worker.core.storage import StorageService, storage_service
from media_worker.modules.extraction.audio import AudioExtractor
from media_worker.modules.extraction.service import ExtractionPipeline
from media_worker.modules.extraction.subtitles import SubtitleExtractor
from media_worker.modules.ffmpeg.runner import FFmpegRunner
from media_worker.modules.job.dispatcher import JobDispatcher
from media_worker.modules.job.models import JobKind
from media_worker.modules.job.publisher import StatusPublisher
from media_worker.modules.media.repository import MediaRecordRepository
from media_worker.modules.transcoding.service import TranscodePipeline


@dataclass
class Worker:
    """Everything a request handler needs."""
    dispatcher: JobDispatcher
    repository: MediaRecordRepository
    storage: StorageService
    subtitles: SubtitleExtractor


def build_worker(
    runner: Optional[FFmpegRunner] = None,
    storage: Optional[StorageService] = None,
    repository: Optional[MediaRecordRepository] = None,
    max_concurrent: Optional[int] = None,
    retention_seconds: Optional[float] = None,
    tmp_dir: Optional[str] = None,
) -> Worker:
    """Assemble pipelines and the dispatcher.

    Unspecified collaborators and limits come from settings.
    """
    runner = runner or FFmpegRunner(settings.FFMPEG_PATH, settings.FFPROBE_PATH)
    storage = storage or storage_service
    repository = repository or MediaRecordRepository()
    tmp_dir = tmp_dir or settings.TMP_DIR

    publisher = StatusPublisher(repository)
    audio = AudioExtractor(runner, storage, publisher, min_output_bytes=settings.MIN_AUDIO_BYTES)
    subtitles = SubtitleExtractor(
        runner,
        storage,
        publisher,
        repository,
        tmp_dir=tmp_dir,
        signed_url_expires=settings.SIGNED_URL_EXPIRES_SECONDS,
    )

    extraction = ExtractionPipeline(
        runner, storage, repository, publisher, audio, subtitles, tmp_dir=tmp_dir
    )
    transcode = TranscodePipeline(runner, storage, repository, publisher, tmp_dir=tmp_dir)

    dispatcher = JobDispatcher(
        pipelines={JobKind.EXTRACT: extraction, JobKind.TRANSCODE: transcode},
        max_concurrent=max_concurrent or settings.MAX_CONCURRENT,
        retention_seconds=(
            retention_seconds if retention_seconds is not None else settings.JOB_RETENTION_SECONDS
        ),
        on_failure=publisher.fail,
    )

    return Worker(
        dispatcher=dispatcher,
        repository=repository,
        storage=storage,
        subtitles=subtitles,
    )


def get_worker(request: Request) -> Worker:
    """The worker built by the application lifespan."""
    return request.app.state.worker
