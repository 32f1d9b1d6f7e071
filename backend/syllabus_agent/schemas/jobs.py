from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from ..core.config import get_settings
from ..services.job_store import Status, StepName


class StartJobRequest(BaseModel):
    pdf_text: str

    @field_validator("pdf_text")
    @classmethod
    def validate_pdf_text(cls, v: str) -> str:
        minimum = get_settings().MIN_INPUT_CHARS
        if len(v.strip()) < minimum:
            raise ValueError(f"PDF text must be at least {minimum} characters")
        return v


class StartJobOut(BaseModel):
    job_id: str


class RetryJobOut(BaseModel):
    job_id: str
    accepted: bool = True


class StepOut(BaseModel):
    name: StepName
    status: Status
    detail: str | None = None

    model_config = ConfigDict(from_attributes=True)


class JobResultOut(BaseModel):
    history_id: str
    plan_data: dict[str, Any]


class JobOut(BaseModel):
    id: str
    status: Status
    steps: list[StepOut]
    result: JobResultOut | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
