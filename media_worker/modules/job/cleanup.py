"""Bulk deletion of archived media artifacts."""

import logging
from dataclasses import dataclass, field

from media_worker.core.logging import log_info, log_warning
from media_worker.core.storage import StorageService
from media_worker.core.tracing import create_span
from media_worker.modules.media.models import MediaStatus
from media_worker.modules.media.repository import MediaRecordRepository

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    """Outcome of a bulk cleanup."""
    deleted_count: int = 0
    errors: list[dict] = field(default_factory=list)
    # Media whose artifacts were all submitted for deletion
    cleaned_ids: list[str] = field(default_factory=list)

    def to_response(self) -> dict:
        return {"deletedCount": self.deleted_count, "errors": self.errors}


async def bulk_cleanup(
    media_ids: list[str],
    repository: MediaRecordRepository,
    storage: StorageService,
) -> CleanupResult:
    """Delete every stored artifact of the given archived media in one pass.

    Missing or non-archived ids are reported in ``errors`` and never abort
    the batch. Records themselves are kept.

    Args:
        media_ids: Media to clean up
        repository: Record store
        storage: Object store

    Returns:
        CleanupResult with the number of deleted objects
    """
    result = CleanupResult()
    unique_ids = list(dict.fromkeys(media_ids))

    records = {media.id: media for media in await repository.get_many(unique_ids)}

    paths: list[str] = []
    for media_id in unique_ids:
        media = records.get(media_id)
        if media is None:
            result.errors.append({"mediaId": media_id, "error": "Media not found"})
            continue
        if media.status != MediaStatus.ARCHIVED.value:
            result.errors.append(
                {"mediaId": media_id, "error": f"Media is not archived (status: {media.status})"}
            )
            continue
        paths.extend(media.artifact_paths())
        result.cleaned_ids.append(media_id)

    if paths:
        with create_span("cleanup.delete", attributes={"objects": len(paths)}):
            result.deleted_count = await storage.delete_files(paths)

    if result.deleted_count < len(paths):
        log_warning(
            logger,
            "Some artifacts were not deleted",
            requested=len(paths),
            deleted=result.deleted_count,
        )

    log_info(
        logger,
        "Bulk cleanup finished",
        media=len(result.cleaned_ids),
        deleted=result.deleted_count,
        errors=len(result.errors),
    )
    return result
