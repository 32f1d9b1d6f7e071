from __future__ import annotations

from typing import Any
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.db import SessionLocal
from ..models.study_plan import StudyPlan

logger = logging.getLogger(__name__)


def enforce_history_cap(db: Session, owner_id: str, max_items: int | None = None) -> int:
    """
    Delete the owner's oldest plans so one more fits under the cap.

    Returns the number of deleted rows. Caller commits.
    """
    if max_items is None:
        max_items = get_settings().MAX_HISTORY_PER_USER

    count = db.query(StudyPlan).filter(StudyPlan.owner_id == owner_id).count()
    overflow = count - max_items + 1
    if overflow <= 0:
        return 0

    oldest_ids = [
        row.id
        for row in db.query(StudyPlan.id)
        .filter(StudyPlan.owner_id == owner_id)
        .order_by(StudyPlan.created_at.asc())
        .limit(overflow)
        .all()
    ]
    deleted = (
        db.query(StudyPlan)
        .filter(StudyPlan.id.in_(oldest_ids))
        .delete(synchronize_session=False)
    )
    logger.info(
        "Trimmed history to make room for a new plan",
        extra={"owner_id": owner_id, "step": "history_cap"},
    )
    return deleted


def create_study_plan(
    db: Session,
    *,
    owner_id: str,
    title: str,
    modules: list[dict[str, Any]],
    metadata: dict[str, Any] | None = None,
) -> StudyPlan:
    enforce_history_cap(db, owner_id)
    plan = StudyPlan(
        owner_id=owner_id,
        title=title,
        modules=modules,
        meta=metadata or {},
    )
    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan


def save_study_plan(
    owner_id: str,
    title: str,
    modules: list[dict[str, Any]],
    metadata: dict[str, Any] | None = None,
) -> str:
    """
    Persist a generated plan in its own session and return the record id.

    Blocking; the pipeline calls it through `asyncio.to_thread`. Failures are
    rolled back and re-raised so the Save step records them.
    """
    db = SessionLocal()
    try:
        plan = create_study_plan(
            db,
            owner_id=owner_id,
            title=title,
            modules=modules,
            metadata=metadata,
        )
        return str(plan.id)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def discard_study_plan(owner_id: str, plan_id: str) -> bool:
    """
    Delete a plan written by a run whose job was sealed before it could
    report success. Returns False when the row is already gone.
    """
    db = SessionLocal()
    try:
        deleted = (
            db.query(StudyPlan)
            .filter(StudyPlan.id == UUID(plan_id), StudyPlan.owner_id == owner_id)
            .delete(synchronize_session=False)
        )
        db.commit()
        return bool(deleted)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
