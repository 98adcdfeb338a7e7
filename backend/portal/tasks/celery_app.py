"""Celery application configuration and beat schedule."""

from celery import Celery
from celery.schedules import crontab

from portal.config import get_settings

settings = get_settings()

celery_app = Celery(
    "portal",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "portal.tasks.maintenance_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Asia/Bangkok",  # UTC+7, the reporting timezone
    task_track_started=True,
    task_time_limit=600,
    task_soft_time_limit=540,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.conf.beat_schedule = {
    "reconcile-monthly-stats": {
        "task": "portal.tasks.maintenance_tasks.reconcile_monthly_stats",
        "schedule": crontab(minute=15, hour="*/6"),
    },
    "archive-expired-listings": {
        "task": "portal.tasks.maintenance_tasks.archive_expired_listings",
        "schedule": crontab(minute=0, hour=1),
    },
}
