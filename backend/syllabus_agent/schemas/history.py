# backend/syllabus_agent/schemas/history.py
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

MAX_TITLE_LEN = 200


def _required_text(v: str, field: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError(f"{field} is required")
    return v


class ResourceIn(BaseModel):
    title: str
    url: str = "#"

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _required_text(v, "Resource title")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return v.strip() or "#"


class TaskIn(BaseModel):
    description: str
    resources: list[ResourceIn] = []

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str) -> str:
        return _required_text(v, "Task description")


class ModuleIn(BaseModel):
    topic: str
    tasks: list[TaskIn] = Field(min_length=1)

    @field_validator("topic")
    @classmethod
    def validate_topic(cls, v: str) -> str:
        return _required_text(v, "Module topic")


class StudyPlanCreate(BaseModel):
    title: str
    modules: list[ModuleIn] = Field(min_length=1)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        v = _required_text(v, "Title")
        if len(v) > MAX_TITLE_LEN:
            raise ValueError(f"Title must be less than {MAX_TITLE_LEN} characters")
        return v


class StudyPlanOut(BaseModel):
    id: UUID
    title: str
    modules: list[dict[str, Any]]
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("meta", "metadata"))
    total_tasks: int
    topic_count: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    has_next: bool
    has_prev: bool


class StudyPlanPage(BaseModel):
    history: list[StudyPlanOut]
    pagination: Pagination
