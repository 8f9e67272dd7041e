from celery import Celery
import structlog

from app.core.config import settings

logger = structlog.get_logger(__name__)

# Create Celery instance
celery_app = Celery(
    "salon_booking",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.workers.calendar_sync"],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    result_expires=3600,
    task_routes={
        "calendar_sync.*": {"queue": "calendar_sync"},
    },
    beat_schedule={
        "calendar-sync-drain": {
            "task": "calendar_sync.drain",
            "schedule": float(settings.CALENDAR_SYNC_POLL_SECONDS),
        },
    },
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    worker_max_tasks_per_child=1000,
)
