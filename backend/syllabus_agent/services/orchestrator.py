"""
Syllabus job pipeline: Extract -> Structure -> Plan -> Save.

Each job runs as one asyncio task inside the API process. Progress is written
to the job store after every stage so pollers can follow along; failures are
recorded on the failing step and never escape the task.

Two timers accompany every run:
- the watchdog forces a still-running job into `error` after JOB_TIMEOUT_SECONDS
  and seals the run so late upstream replies are ignored;
- the eviction timer removes the job JOB_RETENTION_SECONDS after it turned
  terminal (finished, failed or timed out).

Retry re-runs all four stages against the stored input. Stage outputs are not
reused between runs.
"""
from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Any, Callable, Protocol

from ..core.config import get_settings
from .completion import CompletionClient, CompletionError
from .history import discard_study_plan, save_study_plan
from .job_store import (
    InMemoryJobStore,
    Job,
    JobRepository,
    JobStoreError,
    Status,
    StepName,
)
from .plan_sanitizer import plan_title, sanitize_plan
from .prompts import (
    PLAN_SYSTEM_PROMPT,
    STRUCTURE_SYSTEM_PROMPT,
    build_plan_prompt,
    build_structure_prompt,
)
from .text_normalizer import normalize_text

logger = logging.getLogger(__name__)

PLAN_SOURCE = "syllabus-agent"

FAILURE_PREFIX = {
    StepName.EXTRACT: "Failed to normalize syllabus text",
    StepName.STRUCTURE: "Failed to structure syllabus content",
    StepName.PLAN: "Failed to generate study tasks",
    StepName.SAVE: "Failed to save study plan",
}

SavePlanFn = Callable[[str, str, list, dict], str]
DiscardPlanFn = Callable[[str, str], bool]


class Completer(Protocol):
    async def complete(self, prompt: str, *, system_prompt: str | None = None) -> Any: ...


class _RunAbandoned(Exception):
    """The job was evicted, sealed by the watchdog, or superseded by a retry."""


class JobOrchestrator:
    def __init__(
        self,
        store: JobRepository,
        completion: Completer,
        save_plan: SavePlanFn = save_study_plan,
        *,
        discard_plan: DiscardPlanFn = discard_study_plan,
        job_timeout: float | None = None,
        retention: float | None = None,
        max_input_chars: int | None = None,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.completion = completion
        self.save_plan = save_plan
        self.discard_plan = discard_plan
        self.job_timeout = job_timeout if job_timeout is not None else settings.JOB_TIMEOUT_SECONDS
        self.retention = retention if retention is not None else settings.JOB_RETENTION_SECONDS
        self.max_input_chars = max_input_chars or settings.MAX_INPUT_CHARS

        self._tasks: set[asyncio.Task] = set()
        self._watchdogs: dict[str, asyncio.TimerHandle] = {}
        self._evictions: dict[str, asyncio.TimerHandle] = {}
        self._closed = False

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    def start(self, owner_id: str, text: str) -> Job:
        """Create a job and schedule its pipeline. Must be called on the running loop."""
        job = self.store.create(owner_id, text)
        logger.info(
            "Syllabus job created",
            extra={"job_id": job.id, "owner_id": owner_id, "step": "start"},
        )
        self._schedule(job)
        return job

    def retry(self, job_id: str, owner_id: str) -> Job:
        """
        Reset failed steps and re-run the whole pipeline from the stored input.

        Raises JobNotFoundError / JobForbiddenError / JobBusyError.
        """
        job = self.store.begin_retry(job_id, owner_id)
        logger.info(
            "Syllabus job retry scheduled",
            extra={"job_id": job.id, "owner_id": owner_id, "step": "retry"},
        )
        self._schedule(job)
        return job

    async def aclose(self) -> None:
        """Cancel timers and in-flight runs (application shutdown)."""
        self._closed = True
        for handles in (self._watchdogs, self._evictions):
            for handle in handles.values():
                handle.cancel()
            handles.clear()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def run(self, job_id: str, text: str, owner_id: str, *, run_id: int = 0) -> None:
        current = StepName.EXTRACT
        log_extra = {"job_id": job_id, "owner_id": owner_id}

        def advance(step: StepName, status: Status, detail: str, result: dict | None = None) -> None:
            written = self.store.update_step(
                job_id, step, status, detail, run_id=run_id, result=result
            )
            if not written:
                raise _RunAbandoned(step)

        try:
            advance(current, Status.RUNNING, "Normalizing syllabus text...")
            normalized = normalize_text(text, self.max_input_chars)
            advance(current, Status.SUCCESS, f"Text normalized ({len(normalized)} characters)")

            current = StepName.STRUCTURE
            advance(current, Status.RUNNING, "Analyzing syllabus structure...")
            outline = await self.completion.complete(
                build_structure_prompt(normalized),
                system_prompt=STRUCTURE_SYSTEM_PROMPT,
            )
            advance(current, Status.SUCCESS, "Structure extracted successfully")
            logger.info("Syllabus structured", extra={**log_extra, "step": current.value})

            current = StepName.PLAN
            advance(current, Status.RUNNING, "Generating study plan...")
            raw_plan = await self.completion.complete(
                build_plan_prompt(outline),
                system_prompt=PLAN_SYSTEM_PROMPT,
            )
            advance(current, Status.SUCCESS, "Study plan generated")
            logger.info("Study plan generated", extra={**log_extra, "step": current.value})

            current = StepName.SAVE
            advance(current, Status.RUNNING, "Saving to history...")
            plan = sanitize_plan(raw_plan)
            history_id = await asyncio.to_thread(
                self.save_plan,
                owner_id,
                plan_title(plan),
                plan["modules"],
                {"job_id": job_id, "structured_data": outline, "source": PLAN_SOURCE},
            )
            try:
                advance(
                    current,
                    Status.SUCCESS,
                    "Saved to history",
                    result={"history_id": history_id, "plan_data": plan},
                )
            except _RunAbandoned:
                # The job already reports error; the row must not outlive it
                await asyncio.to_thread(self.discard_plan, owner_id, history_id)
                logger.info(
                    "Discarded plan saved after the job was sealed",
                    extra={**log_extra, "step": current.value},
                )
                raise
            logger.info("Syllabus job completed", extra={**log_extra, "step": "completed"})

        except _RunAbandoned:
            logger.info(
                "Syllabus job run abandoned; record was sealed, evicted or superseded",
                extra={**log_extra, "step": current.value},
            )
        except CompletionError as e:
            logger.warning(
                "Syllabus job step failed: %s",
                e,
                extra={**log_extra, "step": current.value, "error_kind": e.kind},
            )
            self._fail(job_id, run_id, current, f"{FAILURE_PREFIX[current]}: {e}")
        except Exception as e:
            logger.exception(
                "Syllabus job step failed unexpectedly",
                extra={**log_extra, "step": current.value, "error_kind": type(e).__name__},
            )
            self._fail(job_id, run_id, current, FAILURE_PREFIX[current])
        finally:
            self._on_run_finished(job_id, owner_id, run_id)

    def _fail(self, job_id: str, run_id: int, step: StepName, detail: str) -> None:
        self.store.update_step(job_id, step, Status.ERROR, detail, run_id=run_id)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _schedule(self, job: Job) -> None:
        loop = asyncio.get_running_loop()
        self._cancel(self._evictions, job.id)
        self._cancel(self._watchdogs, job.id)
        self._watchdogs[job.id] = loop.call_later(
            self.job_timeout, self._on_deadline, job.id, job.run_id
        )

        task = loop.create_task(
            self.run(job.id, job.original_input, job.owner_id, run_id=job.run_id),
            name=f"syllabus-job-{job.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_deadline(self, job_id: str, run_id: int) -> None:
        self._watchdogs.pop(job_id, None)
        detail = f"Job timed out after {self.job_timeout:g} seconds"
        if self.store.expire(job_id, run_id, detail):
            logger.warning(detail, extra={"job_id": job_id, "step": "timeout"})
        self._schedule_eviction(job_id)

    def _on_run_finished(self, job_id: str, owner_id: str, run_id: int) -> None:
        if self._closed:
            return
        try:
            job = self.store.get(job_id, owner_id)
        except JobStoreError:
            return
        # A newer run owns the timers now
        if job.run_id != run_id or not job.is_terminal:
            return
        self._cancel(self._watchdogs, job_id)
        # A timed-out run already has its eviction scheduled by the watchdog
        if job_id not in self._evictions:
            self._schedule_eviction(job_id)

    def _schedule_eviction(self, job_id: str) -> None:
        if self._closed:
            return
        self._cancel(self._evictions, job_id)
        loop = asyncio.get_running_loop()
        self._evictions[job_id] = loop.call_later(self.retention, self._evict, job_id)

    def _evict(self, job_id: str) -> None:
        self._evictions.pop(job_id, None)
        self.store.evict(job_id)
        logger.info("Syllabus job evicted", extra={"job_id": job_id, "step": "evict"})

    @staticmethod
    def _cancel(handles: dict[str, asyncio.TimerHandle], job_id: str) -> None:
        handle = handles.pop(job_id, None)
        if handle is not None:
            handle.cancel()


@lru_cache(maxsize=1)
def get_job_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@lru_cache(maxsize=1)
def get_orchestrator() -> JobOrchestrator:
    """Process-wide orchestrator; FastAPI routes depend on this."""
    return JobOrchestrator(get_job_store(), CompletionClient())
