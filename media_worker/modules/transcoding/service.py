"""Variant transcoding pipeline.

Requested qualities are encoded lowest resolution first so the cheapest
rendition is playable soonest. A quality taller than the source is never
encoded. Each variant uploads on its own; a failed variant is dropped and
the others are still published.
"""

import logging
import os
import time
from typing import Optional

from media_worker.core.metrics import ARTIFACTS_TOTAL, ENCODE_DURATION_SECONDS
from media_worker.core.storage import StorageService
from media_worker.core.tracing import create_span
from media_worker.modules.ffmpeg.commands import variant_transcode_args
from media_worker.modules.ffmpeg.probe import ProbeError, probe_media
from media_worker.modules.ffmpeg.runner import FFmpegError, FFmpegRunner
from media_worker.modules.job.models import Job, JobFailedError, JobState
from media_worker.modules.job.publisher import StatusPublisher, TempFileGuard
from media_worker.modules.media.paths import variant_path
from media_worker.modules.media.repository import MediaRecordRepository
from media_worker.modules.media.schemas import VariantArtifact
from media_worker.modules.media.source import download_source
from media_worker.modules.transcoding.models import QualityPreset, presets_ascending

logger = logging.getLogger(__name__)

VIDEO_CONTENT_TYPE = "video/mp4"

PROGRESS_START = 10.0
PROGRESS_SPAN = 80.0

ALL_VARIANTS_FAILED = "Every requested variant failed to transcode or upload"


def select_presets(qualities: list[str], source_height: int) -> tuple[list[QualityPreset], list[QualityPreset]]:
    """Split requested presets into those to encode and those that would upscale.

    Args:
        qualities: Requested quality labels
        source_height: Vertical resolution of the source

    Returns:
        (presets to encode ascending, presets skipped by the upscale guard)
    """
    wanted = presets_ascending(qualities)
    selected = [p for p in wanted if p.height <= source_height]
    skipped = [p for p in wanted if p.height > source_height]
    return selected, skipped


class TranscodePipeline:
    """Runs one transcode job end to end."""

    def __init__(
        self,
        runner: FFmpegRunner,
        storage: StorageService,
        repository: MediaRecordRepository,
        publisher: StatusPublisher,
        tmp_dir: str = "./tmp",
    ):
        self.runner = runner
        self.storage = storage
        self.repository = repository
        self.publisher = publisher
        self.tmp_dir = tmp_dir

    async def __call__(self, job: Job) -> None:
        """Process ``job``; every scratch file is gone when this returns."""
        async with TempFileGuard(self.tmp_dir, f"{job.media_id}_{job.run_id}_transcode") as temp:
            try:
                await self._process(job, temp)
            except (JobFailedError, ProbeError) as e:
                await self.publisher.fail(job, str(e))

    async def _process(self, job: Job, temp: TempFileGuard) -> None:
        await self.publisher.start(job)

        await self.publisher.transition(job, JobState.downloading(), progress=5)
        source_path = await download_source(self.storage, job.payload["videoPath"], temp)

        with create_span("job.probe"):
            probe = await probe_media(self.runner, source_path)
        source_height = probe.source_height

        presets, too_tall = select_presets(job.qualities, source_height)
        for preset in too_tall:
            self.publisher.record_skip(
                job,
                "variant",
                preset.quality.value,
                "would_upscale",
                f"source height {source_height}p < {preset.height}p",
            )

        total = len(presets)
        for position, preset in enumerate(presets):
            variant = await self._encode_one(job, source_path, probe.duration, preset, position, total, temp)
            if variant is not None:
                job.variants.append(variant.to_record())

        if total and not job.variants:
            raise JobFailedError(ALL_VARIANTS_FAILED)

        if job.variants:
            with create_span("job.publish"):
                stored = await self.repository.merge_variants(job.media_id, job.variants)
            if not stored:
                raise JobFailedError("Media record not found")

        logger.info(
            "Transcode complete",
            extra={
                "media_id": job.media_id,
                "source_height": source_height,
                "variants": [v["quality"] for v in job.variants],
                "skipped": len(job.skipped),
            },
        )
        await self.publisher.succeed(job)

    async def _encode_one(
        self,
        job: Job,
        source_path: str,
        duration: float,
        preset: QualityPreset,
        position: int,
        total: int,
        temp: TempFileGuard,
    ) -> Optional[VariantArtifact]:
        quality = preset.quality.value
        base = PROGRESS_START + position / total * PROGRESS_SPAN

        await self.publisher.transition(
            job,
            JobState.transcoding(quality, position, total),
            progress=base,
            current_item=preset.label,
        )

        output_path = temp.path(f"{quality}.mp4")
        storage_path = variant_path(job.media_id, quality)

        with create_span("transcode.variant", attributes={"variant.quality": quality}):
            started = time.perf_counter()
            try:
                args = variant_transcode_args(source_path, output_path, preset)
                async for percent in self.runner.run(args, duration):
                    self.publisher.report_progress(job, base + percent / 100 * PROGRESS_SPAN / total)
            except FFmpegError as e:
                self.publisher.record_skip(job, "variant", quality, "encode_failed", str(e)[:200])
                return None
            finally:
                ENCODE_DURATION_SECONDS.labels(artifact="variant").observe(time.perf_counter() - started)

            size = os.path.getsize(output_path) if os.path.exists(output_path) else 0
            if size == 0:
                self.publisher.record_skip(job, "variant", quality, "output_too_small", "0 bytes")
                return None

            result = await self.storage.upload_file(output_path, storage_path, VIDEO_CONTENT_TYPE)
            temp.release(output_path)
            if not result.success:
                self.publisher.record_skip(job, "variant", quality, "upload_failed", result.error_message)
                return None

        ARTIFACTS_TOTAL.labels(artifact="variant", outcome="uploaded").inc()
        return VariantArtifact(
            quality=quality,
            storage_path=storage_path,
            size_bytes=size,
            bitrate=preset.bitrate_kbps,
            resolution=preset.resolution,
        )
