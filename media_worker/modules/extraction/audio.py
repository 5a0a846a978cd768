"""Audio extraction stage.

Every audio stream is demuxed by absolute index and re-encoded to stereo
44.1kHz 192k MP3, the format every listener device can play. Tracks are
independent: a track that fails to encode, comes out near-empty or fails to
upload is skipped and the remaining tracks carry on.
"""

import logging
import os
import time
from typing import Optional

from media_worker.core.metrics import ARTIFACTS_TOTAL, ENCODE_DURATION_SECONDS
from media_worker.core.storage import StorageService
from media_worker.core.tracing import create_span
from media_worker.modules.ffmpeg.commands import audio_extract_args
from media_worker.modules.ffmpeg.probe import (
    UNKNOWN_LANGUAGE,
    AudioStreamDescriptor,
    MediaProbeResult,
)
from media_worker.modules.ffmpeg.runner import FFmpegError, FFmpegRunner
from media_worker.modules.job.models import Job, JobState
from media_worker.modules.job.publisher import StatusPublisher, TempFileGuard
from media_worker.modules.media.paths import audio_track_path
from media_worker.modules.media.schemas import AudioTrackArtifact

logger = logging.getLogger(__name__)

AUDIO_CONTENT_TYPE = "audio/mpeg"

# Share of job progress covered by the audio stage
PROGRESS_START = 30.0
PROGRESS_SPAN = 50.0


def track_label(title: Optional[str], language: str, index: int) -> str:
    """Stream title, else upper-cased language, else ``Track N`` (1-based)."""
    if title:
        return title
    if language and language != UNKNOWN_LANGUAGE:
        return language.upper()
    return f"Track {index + 1}"


class AudioExtractor:
    """Produces and uploads one MP3 per audio stream."""

    def __init__(
        self,
        runner: FFmpegRunner,
        storage: StorageService,
        publisher: StatusPublisher,
        min_output_bytes: int = 1024,
    ):
        self.runner = runner
        self.storage = storage
        self.publisher = publisher
        self.min_output_bytes = min_output_bytes

    async def extract_all(
        self,
        job: Job,
        source_path: str,
        probe: MediaProbeResult,
        temp: TempFileGuard,
    ) -> list[AudioTrackArtifact]:
        """Extract and upload every audio stream, strictly one at a time.

        Args:
            job: Running extraction job
            source_path: Local source container
            probe: Probe result of the source
            temp: Guard owning the job's scratch files

        Returns:
            Artifacts for the tracks that were uploaded, in stream order
        """
        streams = probe.audio_streams
        total = len(streams)
        artifacts: list[AudioTrackArtifact] = []

        for stream in streams:
            artifact = await self._extract_one(job, source_path, probe.duration, stream, total, temp)
            if artifact is not None:
                artifacts.append(artifact)

        logger.info(
            "Audio stage finished",
            extra={"media_id": job.media_id, "uploaded": len(artifacts), "total": total},
        )
        return artifacts

    async def _extract_one(
        self,
        job: Job,
        source_path: str,
        duration: float,
        stream: AudioStreamDescriptor,
        total: int,
        temp: TempFileGuard,
    ) -> Optional[AudioTrackArtifact]:
        index = stream.relative_index
        label = track_label(stream.title, stream.language, index)
        item = f"audio track {index} ({label})"

        await self.publisher.transition(
            job,
            JobState.extracting_audio(index, total),
            progress=PROGRESS_START + index / total * PROGRESS_SPAN,
            current_item=label,
        )

        output_path = temp.path(f"audio_{index}.mp3")
        storage_path = audio_track_path(job.media_id, index, total)

        with create_span(
            "extract.audio_track",
            attributes={"track.index": index, "stream.index": stream.stream_index},
        ):
            started = time.perf_counter()
            try:
                args = audio_extract_args(source_path, output_path, stream.stream_index)
                async for percent in self.runner.run(args, duration):
                    self.publisher.report_progress(
                        job,
                        PROGRESS_START + (index + percent / 100) / total * PROGRESS_SPAN,
                    )
            except FFmpegError as e:
                self.publisher.record_skip(job, "audio", item, "encode_failed", str(e)[:200])
                return None
            finally:
                ENCODE_DURATION_SECONDS.labels(artifact="audio").observe(time.perf_counter() - started)

            size = os.path.getsize(output_path) if os.path.exists(output_path) else 0
            if size < self.min_output_bytes:
                self.publisher.record_skip(
                    job, "audio", item, "output_too_small", f"{size} bytes"
                )
                return None

            result = await self.storage.upload_file(output_path, storage_path, AUDIO_CONTENT_TYPE)
            temp.release(output_path)
            if not result.success:
                self.publisher.record_skip(job, "audio", item, "upload_failed", result.error_message)
                return None

        ARTIFACTS_TOTAL.labels(artifact="audio", outcome="uploaded").inc()
        return AudioTrackArtifact(
            index=index,
            storage_path=storage_path,
            label=label,
            language=stream.language,
        )
