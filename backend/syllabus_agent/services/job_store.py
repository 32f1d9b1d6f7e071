"""
In-process job table for the syllabus pipeline.

Jobs live in memory only: a restart orphans in-flight jobs and pollers see them
disappear (404). Everything the orchestrator and the API need goes through the
`JobRepository` protocol so a durable store can replace `InMemoryJobStore`
without touching either of them.

Every job carries a `run_id` that is bumped on retry. Writes tagged with an
older run are dropped, and a job sealed by the watchdog rejects writes for the
rest of its run, so a late upstream reply can never overwrite a timeout.
"""
from __future__ import annotations

import enum
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol


class StepName(str, enum.Enum):
    EXTRACT = "Extract"
    STRUCTURE = "Structure"
    PLAN = "Plan"
    SAVE = "Save"


# Fixed identity and order of every job's steps
STEP_ORDER: tuple[StepName, ...] = (
    StepName.EXTRACT,
    StepName.STRUCTURE,
    StepName.PLAN,
    StepName.SAVE,
)


class Status(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({Status.SUCCESS, Status.ERROR})


class JobStoreError(Exception):
    """Base class for job lookup failures surfaced to API callers."""


class JobNotFoundError(JobStoreError):
    pass


class JobForbiddenError(JobStoreError):
    pass


class JobBusyError(JobStoreError):
    """Raised when a retry is requested while the job is still pending or running."""


class StepOrderError(ValueError):
    """A step was started before its predecessor succeeded."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Step:
    name: StepName
    status: Status = Status.PENDING
    detail: str | None = None


@dataclass
class Job:
    id: str
    owner_id: str
    original_input: str
    steps: list[Step] = field(default_factory=lambda: [Step(name=n) for n in STEP_ORDER])
    status: Status = Status.PENDING
    result: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    run_id: int = 0
    sealed: bool = False

    def step(self, name: StepName) -> Step:
        return self.steps[STEP_ORDER.index(StepName(name))]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def derive_status(steps: list[Step]) -> Status:
    """
    Job status from its steps: any error wins, then all-success, then
    pending while nothing has started, otherwise running.
    """
    statuses = [s.status for s in steps]
    if Status.ERROR in statuses:
        return Status.ERROR
    if all(s is Status.SUCCESS for s in statuses):
        return Status.SUCCESS
    if all(s is Status.PENDING for s in statuses):
        return Status.PENDING
    return Status.RUNNING


class JobRepository(Protocol):
    def create(self, owner_id: str, original_input: str) -> Job: ...

    def get(self, job_id: str, owner_id: str) -> Job: ...

    def update_step(
        self,
        job_id: str,
        step_name: StepName,
        status: Status,
        detail: str | None = None,
        *,
        run_id: int | None = None,
        result: dict[str, Any] | None = None,
    ) -> bool: ...

    def begin_retry(self, job_id: str, owner_id: str) -> Job: ...

    def expire(self, job_id: str, run_id: int, detail: str) -> bool: ...

    def evict(self, job_id: str) -> None: ...


class InMemoryJobStore:
    """
    Dict-backed `JobRepository`.

    All mutation happens on the event loop thread; each job only ever has one
    orchestrator run writing to it, so no locking is needed.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def __bool__(self) -> bool:
        # An empty store is still a store
        return True

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def active_count(self) -> int:
        return sum(1 for j in self._jobs.values() if not j.is_terminal)

    def create(self, owner_id: str, original_input: str) -> Job:
        # 128 bits of entropy; regenerate on the (theoretical) collision
        job_id = secrets.token_hex(16)
        while job_id in self._jobs:
            job_id = secrets.token_hex(16)

        job = Job(id=job_id, owner_id=owner_id, original_input=original_input)
        self._jobs[job_id] = job
        return job

    def get(self, job_id: str, owner_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.owner_id != owner_id:
            raise JobForbiddenError(job_id)
        return job

    def update_step(
        self,
        job_id: str,
        step_name: StepName,
        status: Status,
        detail: str | None = None,
        *,
        run_id: int | None = None,
        result: dict[str, Any] | None = None,
    ) -> bool:
        """
        Apply one step transition. Returns False when the write was dropped
        (job evicted, stale run, or sealed by the watchdog).
        """
        job = self._jobs.get(job_id)
        if job is None:
            return False
        if run_id is not None and run_id != job.run_id:
            return False
        if job.sealed:
            return False

        name = StepName(step_name)
        status = Status(status)
        index = STEP_ORDER.index(name)
        if status is Status.RUNNING and index > 0:
            previous = job.steps[index - 1]
            if previous.status is not Status.SUCCESS:
                raise StepOrderError(
                    f"{name.value} cannot start while {previous.name.value} is {previous.status.value}"
                )

        step = job.steps[index]
        step.status = status
        step.detail = detail

        if name is StepName.SAVE:
            job.result = result if status is Status.SUCCESS else None

        job.status = derive_status(job.steps)
        job.updated_at = _now()
        return True

    def begin_retry(self, job_id: str, owner_id: str) -> Job:
        """
        Reset failed steps to pending and open a new run.

        Succeeded steps keep their status until the new run overwrites them.
        """
        job = self.get(job_id, owner_id)
        if not job.is_terminal:
            raise JobBusyError(job_id)

        for step in job.steps:
            if step.status is Status.ERROR:
                step.status = Status.PENDING
                step.detail = None

        job.status = Status.PENDING
        job.run_id += 1
        job.sealed = False
        job.updated_at = _now()
        return job

    def expire(self, job_id: str, run_id: int, detail: str) -> bool:
        """
        Force a non-terminal job into error and seal the current run.

        The step that was in flight (or the first one not yet done) carries
        the timeout detail so the derived status stays consistent.
        """
        job = self._jobs.get(job_id)
        if job is None or job.run_id != run_id or job.is_terminal:
            return False

        target = next(
            (s for s in job.steps if s.status is Status.RUNNING),
            None,
        ) or next(
            (s for s in job.steps if s.status is not Status.SUCCESS),
            job.steps[0],
        )
        target.status = Status.ERROR
        target.detail = detail

        if target.name is StepName.SAVE:
            job.result = None

        job.status = derive_status(job.steps)
        job.sealed = True
        job.updated_at = _now()
        return True

    def evict(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)
