"""Celery application configuration."""

from celery import Celery
from celery.schedules import crontab

from media_worker.core.config import settings

celery_app = Celery(
    "media_worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    beat_schedule={
        "enforce-retention-daily": {
            "task": "media_worker.modules.job.tasks.enforce_retention_task",
            "schedule": crontab(hour=3, minute=0),
        },
    },
)

celery_app.autodiscover_tasks(["media_worker.modules.job"])
