"""
StudyPlan model: the persisted output of a syllabus job (the user's history).
"""
from datetime import datetime
import uuid

from sqlalchemy import Column, String, JSON, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID

from ..core.db import Base


class StudyPlan(Base):
    __tablename__ = "study_plans"
    __table_args__ = (
        Index("ix_study_plans_owner_created", "owner_id", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(String(128), index=True, nullable=False)
    title = Column(String(200), nullable=False)
    modules = Column(JSON, nullable=False, default=list)  # [{topic, tasks: [{description, resources}]}]
    # `metadata` is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def total_tasks(self) -> int:
        return sum(len(m.get("tasks") or []) for m in (self.modules or []))

    @property
    def topic_count(self) -> int:
        return len(self.modules or [])
