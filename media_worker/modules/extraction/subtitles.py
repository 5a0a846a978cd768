"""Caption tracks from the container and from host uploads.

Both paths end in a normalized WebVTT file uploaded next to the media and an
entry in the record's ``subtitle_tracks``. Container-origin entries use the
``_track<N>`` key namespace and ``external=False``; uploads use ``_ext<N>``
and ``external=True``.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from media_worker.core.metrics import ARTIFACTS_TOTAL, ENCODE_DURATION_SECONDS
from media_worker.core.storage import StorageService
from media_worker.core.tracing import create_span
from media_worker.modules.extraction.audio import track_label
from media_worker.modules.extraction.captions import (
    CaptionFormatError,
    decode_caption_bytes,
    default_label,
    detect_format,
    is_effectively_empty,
    normalize_captions,
    resolve_language,
)
from media_worker.modules.ffmpeg.commands import caption_convert_args, subtitle_extract_args
from media_worker.modules.ffmpeg.probe import MediaProbeResult, SubtitleStreamDescriptor
from media_worker.modules.ffmpeg.runner import FFmpegError, FFmpegRunner
from media_worker.modules.job.models import Job, JobState
from media_worker.modules.job.publisher import StatusPublisher, TempFileGuard
from media_worker.modules.media.locks import KeyedLock
from media_worker.modules.media.paths import subtitle_track_path
from media_worker.modules.media.repository import MediaNotFoundError, MediaRecordRepository
from media_worker.modules.media.schemas import SubtitleTrackArtifact

logger = logging.getLogger(__name__)

CAPTION_CONTENT_TYPE = "text/vtt"

PROGRESS_START = 80.0
PROGRESS_SPAN = 15.0


class CaptionConversionError(CaptionFormatError):
    """The encoder could not convert a scripted caption file."""
    pass


class CaptionUploadError(Exception):
    """The normalized caption could not be stored."""
    pass


@dataclass
class ExternalCaptionResult:
    """Outcome of a host caption upload."""
    track: SubtitleTrackArtifact
    signed_url: str


def _read_text(path: str) -> str:
    with open(path, "rb") as f:
        return decode_caption_bytes(f.read())


def _write_text(path: str, text: str) -> None:
    with open(path, "w", encoding="utf-8", newline="\n") as f:
        f.write(text)


class SubtitleExtractor:
    """Produces caption tracks for the extraction pipeline and for uploads."""

    def __init__(
        self,
        runner: FFmpegRunner,
        storage: StorageService,
        publisher: StatusPublisher,
        repository: MediaRecordRepository,
        tmp_dir: str = "./tmp",
        signed_url_expires: int = 3600,
    ):
        self.runner = runner
        self.storage = storage
        self.publisher = publisher
        self.repository = repository
        self.tmp_dir = tmp_dir
        self.signed_url_expires = signed_url_expires
        # Serializes uploads per media so external indexes stay unique
        self._upload_locks = KeyedLock()

    async def extract_container(
        self,
        job: Job,
        source_path: str,
        probe: MediaProbeResult,
        temp: TempFileGuard,
    ) -> list[SubtitleTrackArtifact]:
        """Extract every text subtitle stream of the container.

        Image-based streams are left out. Tracks without any cue are
        dropped and reported as skipped.

        Returns:
            Artifacts for the uploaded tracks
        """
        image_based = [s for s in probe.subtitle_streams if s.is_image_based]
        for stream in image_based:
            self.publisher.record_skip(
                job,
                "subtitle",
                f"subtitle stream {stream.stream_index} ({stream.codec})",
                "image_based",
            )

        streams = probe.text_subtitle_streams
        total = len(streams)
        artifacts: list[SubtitleTrackArtifact] = []

        for index, stream in enumerate(streams):
            artifact = await self._extract_one(job, source_path, probe.duration, stream, index, total, temp)
            if artifact is not None:
                artifacts.append(artifact)

        return artifacts

    async def _extract_one(
        self,
        job: Job,
        source_path: str,
        duration: float,
        stream: SubtitleStreamDescriptor,
        index: int,
        total: int,
        temp: TempFileGuard,
    ) -> Optional[SubtitleTrackArtifact]:
        label = track_label(stream.title, stream.language, index)
        item = f"subtitle track {index} ({label})"

        await self.publisher.transition(
            job,
            JobState.extracting_subtitles(index, total),
            progress=PROGRESS_START + index / total * PROGRESS_SPAN,
            current_item=label,
        )

        output_path = temp.path(f"subtitle_{index}.vtt")
        storage_path = subtitle_track_path(job.media_id, index)

        with create_span("extract.subtitle_track", attributes={"stream.index": stream.stream_index}):
            started = time.perf_counter()
            try:
                args = subtitle_extract_args(source_path, output_path, stream.stream_index)
                async for percent in self.runner.run(args, duration):
                    self.publisher.report_progress(
                        job,
                        PROGRESS_START + (index + percent / 100) / total * PROGRESS_SPAN,
                    )
                text = _read_text(output_path)
            except (FFmpegError, OSError) as e:
                self.publisher.record_skip(job, "subtitle", item, "extract_failed", str(e)[:200])
                return None
            finally:
                ENCODE_DURATION_SECONDS.labels(artifact="subtitle").observe(time.perf_counter() - started)

            if is_effectively_empty(text):
                self.publisher.record_skip(job, "subtitle", item, "empty_track")
                return None

            _write_text(output_path, normalize_captions(text))
            result = await self.storage.upload_file(output_path, storage_path, CAPTION_CONTENT_TYPE)
            temp.release(output_path)
            if not result.success:
                self.publisher.record_skip(job, "subtitle", item, "upload_failed", result.error_message)
                return None

        ARTIFACTS_TOTAL.labels(artifact="subtitle", outcome="uploaded").inc()
        return SubtitleTrackArtifact(
            index=index,
            storage_path=storage_path,
            label=label,
            language=stream.language,
            external=False,
        )

    async def upload_external(
        self,
        media_id: str,
        filename: str,
        data: bytes,
        language: Optional[str] = None,
        label: Optional[str] = None,
    ) -> ExternalCaptionResult:
        """Normalize, store and record a caption file supplied by the host.

        Args:
            media_id: Media the captions belong to
            filename: Original file name (decides the format)
            data: File content
            language: Language code; guessed from the filename if omitted
            label: Display label; the filename stem if omitted

        Returns:
            ExternalCaptionResult with the recorded track and a signed URL

        Raises:
            CaptionFormatError: Unsupported extension, empty file or no cues
            CaptionConversionError: The encoder rejected an ASS/SSA file
            MediaNotFoundError: No record for ``media_id``
            CaptionUploadError: The object store rejected the upload
        """
        caption_format = detect_format(filename)
        if not data:
            raise CaptionFormatError("Caption file is empty")

        resolved_language = resolve_language(language, filename)
        resolved_label = (label or "").strip() or default_label(filename)

        async with self._upload_locks.hold(media_id):
            index = await self.repository.count_external_subtitles(media_id)
            storage_path = subtitle_track_path(media_id, index, external=True)

            prefix = f"{media_id}_upload_{uuid.uuid4().hex[:8]}"
            async with TempFileGuard(self.tmp_dir, prefix) as temp:
                output_path = temp.path("caption.vtt")

                if caption_format.needs_encoder:
                    source_path = temp.path(f"caption.{caption_format.value}")
                    Path(source_path).write_bytes(data)
                    try:
                        with create_span("caption.convert", attributes={"caption.format": caption_format.value}):
                            await self.runner.run_to_completion(caption_convert_args(source_path, output_path))
                        text = _read_text(output_path)
                    except (FFmpegError, OSError) as e:
                        raise CaptionConversionError(
                            f"Failed to convert {caption_format.value.upper()} captions: {str(e)[:200]}"
                        ) from e
                else:
                    text = decode_caption_bytes(data)

                if is_effectively_empty(text):
                    raise CaptionFormatError("Caption file contains no cues")

                _write_text(output_path, normalize_captions(text))
                result = await self.storage.upload_file(output_path, storage_path, CAPTION_CONTENT_TYPE)

            if not result.success:
                ARTIFACTS_TOTAL.labels(artifact="external_subtitle", outcome="upload_failed").inc()
                raise CaptionUploadError(f"Failed to upload captions: {result.error_message}")

            track = SubtitleTrackArtifact(
                index=index,
                storage_path=storage_path,
                label=resolved_label,
                language=resolved_language,
                external=True,
            )
            if not await self.repository.append_subtitle_track(media_id, track.to_record()):
                raise MediaNotFoundError(media_id)

        ARTIFACTS_TOTAL.labels(artifact="external_subtitle", outcome="uploaded").inc()
        signed_url = await self.storage.get_signed_url(storage_path, self.signed_url_expires)
        logger.info(
            "External captions stored",
            extra={"media_id": media_id, "storage_path": storage_path, "language": resolved_language},
        )
        return ExternalCaptionResult(track=track, signed_url=signed_url)
