"""Extraction pipeline.

download -> probe -> audio tracks -> container captions -> publish. The
download, the probe and a result without any usable audio are fatal; any
single track failing is not.
"""

import logging

from media_worker.core.storage import StorageService
from media_worker.core.tracing import create_span
from media_worker.modules.extraction.audio import AudioExtractor
from media_worker.modules.extraction.subtitles import SubtitleExtractor
from media_worker.modules.ffmpeg.probe import ProbeError, probe_media
from media_worker.modules.ffmpeg.runner import FFmpegRunner
from media_worker.modules.job.models import Job, JobFailedError, JobState
from media_worker.modules.job.publisher import StatusPublisher, TempFileGuard
from media_worker.modules.media.repository import MediaRecordRepository
from media_worker.modules.media.source import download_source

logger = logging.getLogger(__name__)

NO_AUDIO_STREAMS = "Video file contains no audio streams"
NO_USABLE_AUDIO = "No usable audio track could be extracted"


class ExtractionPipeline:
    """Runs one extraction job end to end."""

    def __init__(
        self,
        runner: FFmpegRunner,
        storage: StorageService,
        repository: MediaRecordRepository,
        publisher: StatusPublisher,
        audio: AudioExtractor,
        subtitles: SubtitleExtractor,
        tmp_dir: str = "./tmp",
    ):
        self.runner = runner
        self.storage = storage
        self.repository = repository
        self.publisher = publisher
        self.audio = audio
        self.subtitles = subtitles
        self.tmp_dir = tmp_dir

    async def __call__(self, job: Job) -> None:
        """Process ``job``; every scratch file is gone when this returns."""
        async with TempFileGuard(self.tmp_dir, f"{job.media_id}_{job.run_id}") as temp:
            try:
                await self._process(job, temp)
            except (JobFailedError, ProbeError) as e:
                await self.publisher.fail(job, str(e))

    async def _process(self, job: Job, temp: TempFileGuard) -> None:
        await self.publisher.start(job)

        await self.publisher.transition(job, JobState.downloading(), progress=10)
        source_path = await download_source(self.storage, job.payload["videoPath"], temp)

        await self.publisher.transition(job, JobState.probing(), progress=20)
        with create_span("job.probe"):
            probe = await probe_media(self.runner, source_path)

        if not probe.audio_streams:
            raise JobFailedError(NO_AUDIO_STREAMS)

        audio_tracks = await self.audio.extract_all(job, source_path, probe, temp)
        if not audio_tracks:
            raise JobFailedError(NO_USABLE_AUDIO)

        subtitle_tracks = await self.subtitles.extract_container(job, source_path, probe, temp)

        with create_span("job.publish"):
            stored = await self.repository.complete_extraction(
                job.media_id,
                [t.to_record() for t in audio_tracks],
                [t.to_record() for t in subtitle_tracks],
            )
        if not stored:
            raise JobFailedError("Media record not found")

        logger.info(
            "Extraction complete",
            extra={
                "media_id": job.media_id,
                "audio_tracks": len(audio_tracks),
                "subtitle_tracks": len(subtitle_tracks),
                "skipped": len(job.skipped),
            },
        )
        await self.publisher.succeed(job)
