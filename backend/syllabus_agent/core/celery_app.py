from celery import Celery
from celery.schedules import crontab

from .config import get_settings
from .logging import configure_logging

settings = get_settings()
configure_logging()

celery_app = Celery(
    "syllabus_agent",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    imports=("syllabus_agent.services.retention",),
    beat_schedule={
        # Daily cleanup of old study plans based on HISTORY_RETENTION_DAYS
        "cleanup-expired-study-plans": {
            "task": "syllabus_agent.services.retention.cleanup_expired",
            "schedule": crontab(hour=3, minute=0),
        },
    },
)
