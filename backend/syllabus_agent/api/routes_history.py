from math import ceil
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..models.study_plan import StudyPlan
from ..schemas.history import Pagination, StudyPlanCreate, StudyPlanOut, StudyPlanPage
from ..services.history import create_study_plan
from .routes_jobs import get_owner_id

router = APIRouter(tags=["history"])


def _get_owned_plan(db: Session, plan_id: UUID, owner_id: str) -> StudyPlan:
    plan = (
        db.query(StudyPlan)
        .filter(StudyPlan.id == plan_id, StudyPlan.owner_id == owner_id)
        .first()
    )
    if not plan:
        raise HTTPException(status_code=404, detail="History session not found")
    return plan


@router.get("/history", response_model=StudyPlanPage)
def list_history(
    page: int = 1,
    limit: int = 10,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_owner_id),
):
    """
    The caller's saved study plans, newest first.

    Supports page/limit pagination; limit is capped to avoid unbounded scans.
    """
    page = max(1, page)
    safe_limit = max(1, min(limit, 100))

    query = db.query(StudyPlan).filter(StudyPlan.owner_id == owner_id)
    total = query.count()
    plans = (
        query.order_by(StudyPlan.created_at.desc())
        .offset((page - 1) * safe_limit)
        .limit(safe_limit)
        .all()
    )
    total_pages = ceil(total / safe_limit)

    return StudyPlanPage(
        history=[StudyPlanOut.model_validate(p) for p in plans],
        pagination=Pagination(
            current_page=page,
            total_pages=total_pages,
            total_items=total,
            has_next=page < total_pages,
            has_prev=page > 1,
        ),
    )


@router.post("/history", response_model=StudyPlanOut, status_code=201)
def save_history(
    payload: StudyPlanCreate,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_owner_id),
):
    plan = create_study_plan(
        db,
        owner_id=owner_id,
        title=payload.title,
        modules=[m.model_dump() for m in payload.modules],
    )
    return StudyPlanOut.model_validate(plan)


@router.get("/history/{plan_id}", response_model=StudyPlanOut)
def get_history_item(
    plan_id: UUID,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_owner_id),
):
    return StudyPlanOut.model_validate(_get_owned_plan(db, plan_id, owner_id))


@router.delete("/history/{plan_id}")
def delete_history_item(
    plan_id: UUID,
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_owner_id),
):
    plan = _get_owned_plan(db, plan_id, owner_id)
    db.delete(plan)
    db.commit()
    return {"deleted": 1}


@router.delete("/history")
def clear_history(
    db: Session = Depends(get_db),
    owner_id: str = Depends(get_owner_id),
):
    deleted = (
        db.query(StudyPlan)
        .filter(StudyPlan.owner_id == owner_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return {"deleted": deleted}
