"""
Async client for the job control API, including the polling loop a UI or
script uses to wait for a study plan.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)

TERMINAL = ("success", "error")


class JobClientError(Exception):
    pass


class JobVanishedError(JobClientError):
    """The job is unknown to the server: never existed, evicted, or lost on restart."""


class JobAccessDeniedError(JobClientError):
    pass


class JobWaitTimeout(JobClientError):
    pass


class StudyPlanClient:
    def __init__(
        self,
        base_url: str,
        *,
        user_id: str,
        api_key: str | None = None,
        api_prefix: str = "/api",
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        headers = {"X-User-Id": user_id}
        if api_key:
            headers["X-API-Key"] = api_key
        self._prefix = api_prefix.rstrip("/")
        # Never trust environment proxy variables for API calls
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            transport=transport,
            timeout=timeout,
            trust_env=False,
        )

    async def __aenter__(self) -> "StudyPlanClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._http.request(method, f"{self._prefix}{path}", **kwargs)
        if response.status_code == 404:
            raise JobVanishedError(path)
        if response.status_code == 403:
            raise JobAccessDeniedError(path)
        response.raise_for_status()
        return response.json()

    async def start(self, text: str) -> str:
        body = await self._request("POST", "/syllabus-plan/start", json={"pdf_text": text})
        return body["job_id"]

    async def get_status(self, job_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/jobs/{job_id}")

    async def retry(self, job_id: str) -> None:
        await self._request("POST", f"/jobs/{job_id}/retry")

    async def wait_for_completion(
        self,
        job_id: str,
        *,
        interval: float = 1.0,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Poll every `interval` seconds until the job is `success` or `error`
        and return the final projection. A job that disappears mid-poll raises
        JobVanishedError, same as an unknown id.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            job = await self.get_status(job_id)
            if job["status"] in TERMINAL:
                return job

            if deadline is not None and time.monotonic() >= deadline:
                raise JobWaitTimeout(job_id)

            logger.debug(
                "Job still %s", job["status"], extra={"job_id": job_id, "step": "poll"}
            )
            await asyncio.sleep(interval)
