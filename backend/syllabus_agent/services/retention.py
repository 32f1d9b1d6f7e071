from __future__ import annotations

from datetime import datetime, timedelta
import logging

from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal
from ..models.study_plan import StudyPlan

logger = logging.getLogger(__name__)


def delete_expired_plans(db: Session, retention_days: int, now: datetime | None = None) -> int:
    cutoff = (now or datetime.utcnow()) - timedelta(days=retention_days)
    return (
        db.query(StudyPlan)
        .filter(StudyPlan.created_at < cutoff)
        .delete(synchronize_session=False)
    )


@celery_app.task(name="syllabus_agent.services.retention.cleanup_expired")
def cleanup_expired() -> int:
    """
    Periodic task to enforce the history retention policy.

    Deletes StudyPlan records older than HISTORY_RETENTION_DAYS. In-flight
    jobs are not touched; they live in process memory and expire on their own.
    """
    settings = get_settings()
    db: Session = SessionLocal()
    try:
        deleted = delete_expired_plans(db, settings.HISTORY_RETENTION_DAYS)
        db.commit()

        if not deleted:
            logger.info(
                "No expired study plans found for cleanup",
                extra={"step": "retention"},
            )
            return 0

        logger.info(
            "Deleted expired study plans",
            extra={"step": "retention", "deleted_plans": deleted},
        )
        return deleted
    except Exception:
        db.rollback()
        logger.exception(
            "Error during cleanup_expired",
            extra={"step": "retention"},
        )
        raise
    finally:
        db.close()
