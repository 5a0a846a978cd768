"""Celery tasks for media retention.

Archived media keep their artifacts for a grace period so a host can
restore them; afterwards the artifacts and the record are purged.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from media_worker.core.celery_app import celery_app
from media_worker.core.config import settings
from media_worker.core.storage import StorageService, storage_service
from media_worker.modules.job.cleanup import bulk_cleanup
from media_worker.modules.media.repository import MediaRecordRepository

logger = logging.getLogger(__name__)


async def enforce_retention(
    repository: MediaRecordRepository,
    storage: StorageService,
    purge_after_days: int,
    now: Optional[datetime] = None,
) -> dict:
    """Purge archived media older than ``purge_after_days``.

    Args:
        repository: Record store
        storage: Object store
        purge_after_days: Days an archived item is kept
        now: Reference time (defaults to the current UTC time)

    Returns:
        dict: Purge summary
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=purge_after_days)

    expired = await repository.list_archived_before(cutoff)
    if not expired:
        return {"purged": 0, "deletedFiles": 0, "errors": []}

    result = await bulk_cleanup([m.id for m in expired], repository, storage)
    purged = await repository.delete_many(result.cleaned_ids)

    logger.info(
        "Retention enforced",
        extra={
            "cutoff": cutoff.isoformat(),
            "purged": purged,
            "deleted_files": result.deleted_count,
        },
    )
    return {
        "purged": purged,
        "deletedFiles": result.deleted_count,
        "errors": result.errors,
    }


@celery_app.task(
    name="media_worker.modules.job.tasks.enforce_retention_task",
    bind=True,
    max_retries=3,
    default_retry_delay=300,
)
def enforce_retention_task(self) -> dict:
    """Daily purge of expired archived media.

    Returns:
        dict: Purge summary
    """
    import asyncio
    from media_worker.core.database import engine

    async def _enforce():
        try:
            return await enforce_retention(
                MediaRecordRepository(),
                storage_service,
                settings.RETENTION_PURGE_AFTER_DAYS,
            )
        finally:
            # Pooled connections belong to this event loop
            await engine.dispose()

    try:
        return asyncio.run(_enforce())
    except Exception as exc:
        raise self.retry(exc=exc)
