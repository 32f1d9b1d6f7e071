from uuid import uuid4
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Security
from fastapi.security.api_key import APIKeyHeader

from ..core.config import get_settings
from ..schemas.jobs import JobOut, RetryJobOut, StartJobOut, StartJobRequest
from ..services.job_store import JobBusyError, JobForbiddenError, JobNotFoundError, JobStoreError
from ..services.orchestrator import JobOrchestrator, get_orchestrator

router = APIRouter(tags=["jobs"])

settings = get_settings()
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
logger = logging.getLogger(__name__)


def verify_api_key(api_key: str | None = Security(api_key_header)) -> None:
    """
    Simple header-based API key authentication.

    - In dev, if API_AUTH_KEY is not set, auth is skipped.
    - Otherwise, require X-API-Key == API_AUTH_KEY.
    """
    expected = settings.API_AUTH_KEY

    # In dev with no configured key, skip auth for convenience
    if settings.ENV == "dev" and not expected:
        return

    if not expected:
        # In non-dev environments, missing config is treated as misconfiguration
        raise HTTPException(status_code=401, detail="API key not configured")

    if api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_owner_id(
    x_user_id: str | None = Header(default=None),
    _: None = Depends(verify_api_key),
) -> str:
    """
    The authenticated principal, as forwarded by the gateway that issued the
    session. Every job and history lookup is scoped to this value.
    """
    owner_id = (x_user_id or "").strip()
    if not owner_id:
        raise HTTPException(status_code=401, detail="Access denied. No user identity provided.")
    return owner_id


def _raise_for_lookup(exc: JobStoreError) -> None:
    if isinstance(exc, JobNotFoundError):
        raise HTTPException(status_code=404, detail="Job not found")
    if isinstance(exc, JobForbiddenError):
        raise HTTPException(status_code=403, detail="Access denied")
    if isinstance(exc, JobBusyError):
        raise HTTPException(status_code=409, detail="Job is still running")
    raise exc


@router.post("/syllabus-plan/start", response_model=StartJobOut, status_code=202)
async def start_syllabus_job(
    payload: StartJobRequest,
    owner_id: str = Depends(get_owner_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    request_id = str(uuid4())
    job = orchestrator.start(owner_id, payload.pdf_text)

    logger.info(
        "Syllabus job accepted",
        extra={
            "job_id": job.id,
            "owner_id": owner_id,
            "request_id": request_id,
            "step": "start_syllabus_job",
        },
    )
    return StartJobOut(job_id=job.id)


@router.get("/jobs/{job_id}", response_model=JobOut)
async def get_job_status(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    try:
        job = orchestrator.store.get(job_id, owner_id)
    except JobStoreError as e:
        _raise_for_lookup(e)

    return JobOut.model_validate(job)


@router.post("/jobs/{job_id}/retry", response_model=RetryJobOut, status_code=202)
async def retry_job(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    try:
        job = orchestrator.retry(job_id, owner_id)
    except JobStoreError as e:
        _raise_for_lookup(e)

    return RetryJobOut(job_id=job.id)
