"""Fetching a job's source video into local scratch space."""

import logging
from pathlib import PurePosixPath

from media_worker.core.storage import StorageService
from media_worker.core.tracing import create_span
from media_worker.modules.job.models import JobFailedError
from media_worker.modules.job.publisher import TempFileGuard

logger = logging.getLogger(__name__)


async def download_source(storage: StorageService, video_path: str, temp: TempFileGuard) -> str:
    """Download the source video to a guarded temp file.

    Args:
        storage: Object store
        video_path: Storage key of the uploaded video
        temp: Guard owning the job's scratch files

    Returns:
        Local path of the downloaded file

    Raises:
        JobFailedError: If the download fails
    """
    suffix = PurePosixPath(video_path).suffix or ".mp4"
    local_path = temp.path(f"source{suffix}")

    with create_span("job.download", attributes={"storage.key": video_path}):
        result = await storage.download_file(video_path, local_path)

    if not result.success:
        raise JobFailedError(f"Failed to download video: {result.error_message}")

    logger.info("Downloaded source", extra={"video_path": video_path, "file_size": result.file_size})
    return local_path
