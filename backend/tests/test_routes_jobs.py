"""
Tests for the job control endpoints: start, poll and retry.

The app runs in-process on the test's event loop via ASGITransport, so the
background pipeline progresses whenever the test awaits.
"""
import asyncio

import pytest
from httpx import ASGITransport, AsyncClient

from syllabus_agent.main import app
from syllabus_agent.services.completion import UpstreamRateLimitError
from syllabus_agent.services.job_store import InMemoryJobStore
from syllabus_agent.services.orchestrator import JobOrchestrator, get_orchestrator

from tests.fixtures.syllabus_fixtures import (
    OUTLINE_REPLY,
    PLAN_REPLY,
    RecordingSaver,
    ScriptedCompletion,
    blocked,
)

VALID_TEXT = (
    "Biology 110 syllabus. Week 1 covers cells and membranes. Week 2 covers genetics. "
    "The midterm is on October 12 and the final exam is on December 15."
)
ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


@pytest.fixture
async def api():
    """Yields (client, completion, orchestrator) with the orchestrator dependency overridden."""
    completion = ScriptedCompletion()
    orchestrator = JobOrchestrator(
        InMemoryJobStore(),
        completion,
        RecordingSaver(),
        job_timeout=5.0,
        retention=60.0,
    )
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client, completion, orchestrator
    app.dependency_overrides.clear()
    await orchestrator.aclose()


async def poll_until_terminal(client, job_id, headers=ALICE, attempts=200):
    for _ in range(attempts):
        response = await client.get(f"/api/jobs/{job_id}", headers=headers)
        assert response.status_code == 200
        body = response.json()
        if body["status"] in ("success", "error"):
            return body
        await asyncio.sleep(0.01)
    raise AssertionError("job never reached a terminal status")


class TestStart:
    @pytest.mark.anyio
    async def test_start_returns_job_id_immediately(self, api):
        client, completion, _ = api
        completion.add(OUTLINE_REPLY, PLAN_REPLY)

        response = await client.post(
            "/api/syllabus-plan/start", json={"pdf_text": VALID_TEXT}, headers=ALICE
        )

        assert response.status_code == 202
        job_id = response.json()["job_id"]
        assert len(job_id) == 32

    @pytest.mark.anyio
    async def test_text_shorter_than_minimum_is_rejected(self, api):
        client, completion, orchestrator = api

        response = await client.post(
            "/api/syllabus-plan/start", json={"pdf_text": "  too short  " + " " * 200}, headers=ALICE
        )

        assert response.status_code == 422
        assert orchestrator.in_flight == 0
        assert completion.prompts == []

    @pytest.mark.anyio
    async def test_missing_user_is_unauthorized(self, api):
        client, _, _ = api

        response = await client.post("/api/syllabus-plan/start", json={"pdf_text": VALID_TEXT})

        assert response.status_code == 401


class TestPoll:
    @pytest.mark.anyio
    async def test_end_to_end_success(self, api):
        client, completion, _ = api
        release = asyncio.Event()
        completion.add(blocked(release, OUTLINE_REPLY), PLAN_REPLY)

        job_id = (
            await client.post("/api/syllabus-plan/start", json={"pdf_text": VALID_TEXT}, headers=ALICE)
        ).json()["job_id"]

        await asyncio.sleep(0.02)
        body = (await client.get(f"/api/jobs/{job_id}", headers=ALICE)).json()
        assert body["status"] in ("pending", "running")
        assert body["steps"][0]["name"] == "Extract"
        assert body["steps"][0]["status"] == "success"
        assert body["steps"][1]["status"] == "running"
        assert body["result"] is None

        release.set()
        body = await poll_until_terminal(client, job_id)

        assert body["id"] == job_id
        assert body["status"] == "success"
        assert [s["name"] for s in body["steps"]] == ["Extract", "Structure", "Plan", "Save"]
        assert all(s["status"] == "success" for s in body["steps"])
        assert body["result"]["history_id"] == "plan-1"
        assert body["result"]["plan_data"]["modules"]
        assert body["created_at"] and body["updated_at"]

    @pytest.mark.anyio
    async def test_rate_limited_structure_call(self, api):
        client, completion, _ = api
        completion.add(UpstreamRateLimitError())

        job_id = (
            await client.post("/api/syllabus-plan/start", json={"pdf_text": VALID_TEXT}, headers=ALICE)
        ).json()["job_id"]
        body = await poll_until_terminal(client, job_id)

        assert body["status"] == "error"
        assert [s["status"] for s in body["steps"]] == ["success", "error", "pending", "pending"]
        assert "rate limit" in body["steps"][1]["detail"]
        assert body["result"] is None

    @pytest.mark.anyio
    async def test_other_owner_is_forbidden(self, api):
        client, completion, _ = api
        completion.add(OUTLINE_REPLY, PLAN_REPLY)
        job_id = (
            await client.post("/api/syllabus-plan/start", json={"pdf_text": VALID_TEXT}, headers=ALICE)
        ).json()["job_id"]

        response = await client.get(f"/api/jobs/{job_id}", headers=BOB)

        assert response.status_code == 403
        assert "steps" not in response.json()

    @pytest.mark.anyio
    async def test_unknown_job_is_not_found(self, api):
        client, _, _ = api

        response = await client.get("/api/jobs/does-not-exist", headers=ALICE)

        assert response.status_code == 404

    @pytest.mark.anyio
    async def test_evicted_job_is_not_found(self, api):
        client, completion, orchestrator = api
        orchestrator.retention = 0.05
        completion.add(OUTLINE_REPLY, PLAN_REPLY)

        job_id = (
            await client.post("/api/syllabus-plan/start", json={"pdf_text": VALID_TEXT}, headers=ALICE)
        ).json()["job_id"]
        await poll_until_terminal(client, job_id)
        await asyncio.sleep(0.15)

        response = await client.get(f"/api/jobs/{job_id}", headers=ALICE)
        assert response.status_code == 404


class TestRetry:
    @pytest.mark.anyio
    async def test_retry_recovers_failed_job(self, api):
        client, completion, _ = api
        completion.add(UpstreamRateLimitError())
        job_id = (
            await client.post("/api/syllabus-plan/start", json={"pdf_text": VALID_TEXT}, headers=ALICE)
        ).json()["job_id"]
        await poll_until_terminal(client, job_id)

        completion.add(OUTLINE_REPLY, PLAN_REPLY)
        response = await client.post(f"/api/jobs/{job_id}/retry", headers=ALICE)

        assert response.status_code == 202
        assert response.json() == {"job_id": job_id, "accepted": True}
        body = await poll_until_terminal(client, job_id)
        assert body["status"] == "success"

    @pytest.mark.anyio
    async def test_retry_while_running_conflicts(self, api):
        client, completion, _ = api
        release = asyncio.Event()
        completion.add(blocked(release, OUTLINE_REPLY), PLAN_REPLY)
        job_id = (
            await client.post("/api/syllabus-plan/start", json={"pdf_text": VALID_TEXT}, headers=ALICE)
        ).json()["job_id"]

        response = await client.post(f"/api/jobs/{job_id}/retry", headers=ALICE)

        assert response.status_code == 409
        release.set()
        await poll_until_terminal(client, job_id)

    @pytest.mark.anyio
    async def test_retry_by_other_owner_is_forbidden(self, api):
        client, completion, _ = api
        completion.add(UpstreamRateLimitError())
        job_id = (
            await client.post("/api/syllabus-plan/start", json={"pdf_text": VALID_TEXT}, headers=ALICE)
        ).json()["job_id"]
        await poll_until_terminal(client, job_id)

        response = await client.post(f"/api/jobs/{job_id}/retry", headers=BOB)

        assert response.status_code == 403
        body = (await client.get(f"/api/jobs/{job_id}", headers=ALICE)).json()
        assert body["steps"][1]["status"] == "error"

    @pytest.mark.anyio
    async def test_retry_unknown_job_is_not_found(self, api):
        client, _, _ = api

        response = await client.post("/api/jobs/nope/retry", headers=ALICE)

        assert response.status_code == 404


@pytest.mark.anyio
async def test_health_reports_in_flight_jobs(api):
    client, _, _ = api

    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
