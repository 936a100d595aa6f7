import uuid

from httpx import AsyncClient


async def run_pass(dispatcher):
    await dispatcher.run_once()
    await dispatcher.wait_idle()


async def enqueue(client: AsyncClient, **body):
    payload = {"type": "test:echo", "payload": {"n": 1}}
    payload.update(body)
    return await client.post("/v1/jobs", json=payload)


class TestHealth:
    async def test_healthz_reports_database_and_dispatcher(self, async_client):
        response = await async_client.get("/v1/healthz")

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        data = body["data"]
        assert data["ok"] is True
        assert data["database"]["connected"] is True
        assert data["dispatcher"]["backend"] == "database"
        assert data["dispatcher"]["queue_depth"] == 0
        assert "X-Request-ID" in response.headers

    async def test_queue_depth_counts_pending_jobs(self, async_client):
        await enqueue(async_client)
        await enqueue(async_client)

        response = await async_client.get("/v1/healthz")

        assert response.json()["data"]["dispatcher"]["queue_depth"] == 2


class TestJobsApi:
    async def test_enqueue_returns_created_job(self, async_client):
        response = await enqueue(async_client, priority="high", delay_s=10)

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["type"] == "test:echo"
        assert data["status"] == "pending"
        assert data["priority"] == "high"
        assert data["payload"] == {"n": 1}
        assert data["retry_count"] == 0

    async def test_enqueue_unknown_type_is_rejected(self, async_client):
        response = await enqueue(async_client, type="test:missing")

        assert response.status_code == 400
        body = response.json()
        assert body["ok"] is False
        assert body["error"]["details"] == {"job_type": "test:missing"}

    async def test_enqueue_validates_body(self, async_client):
        response = await enqueue(async_client, priority="whenever")
        assert response.status_code == 422

        response = await enqueue(async_client, delay_s=-5)
        assert response.status_code == 422

    async def test_status_and_details_after_run(self, async_client, dispatcher):
        job_id = (await enqueue(async_client)).json()["data"]["id"]
        await run_pass(dispatcher)

        status_response = await async_client.get(f"/v1/jobs/{job_id}/status")
        assert status_response.status_code == 200
        status = status_response.json()["data"]
        assert status["status"] == "completed"
        assert status["progress"] == 100
        assert status["result"] == {"echo": {"n": 1}}

        details = (await async_client.get(f"/v1/jobs/{job_id}")).json()["data"]
        assert details["id"] == job_id
        assert [h["status"] for h in details["history"]] == ["completed"]

    async def test_failed_attempt_visible_in_history(self, async_client, dispatcher):
        job_id = (
            await enqueue(async_client, type="test:fail", max_retries=0)
        ).json()["data"]["id"]
        await run_pass(dispatcher)

        details = (await async_client.get(f"/v1/jobs/{job_id}")).json()["data"]

        assert details["status"] == "failed"
        assert details["last_error"] == "boom"
        assert details["history"][0]["error"]["type"] == "RuntimeError"

    async def test_unknown_job_is_404(self, async_client):
        response = await async_client.get(f"/v1/jobs/{uuid.uuid4()}")

        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Job not found"

    async def test_cancel_pending_then_conflict(self, async_client):
        job_id = (await enqueue(async_client)).json()["data"]["id"]

        response = await async_client.post(f"/v1/jobs/{job_id}/cancel")
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "cancelled"

        response = await async_client.post(f"/v1/jobs/{job_id}/cancel")
        assert response.status_code == 409
        assert response.json()["error"]["details"]["status"] == "cancelled"

    async def test_list_filters_by_status(self, async_client, dispatcher):
        await enqueue(async_client)
        await run_pass(dispatcher)
        await enqueue(async_client)

        response = await async_client.get("/v1/jobs", params={"status": "pending"})

        data = response.json()["data"]
        assert data["total"] == 1
        assert data["jobs"][0]["status"] == "pending"

    async def test_stats(self, async_client, dispatcher):
        await enqueue(async_client)
        await enqueue(async_client, type="test:fail", max_retries=0)
        await run_pass(dispatcher)

        response = await async_client.get("/v1/jobs/stats", params={"time_range": "1h"})

        assert response.status_code == 200
        stats = response.json()["data"]
        assert stats["time_range"] == "1h"
        assert stats["total"] == 2
        assert stats["completed"] == 1
        assert stats["failed"] == 1
        assert stats["success_rate"] == 50.0
        assert stats["by_type"] == {"test:echo": 1, "test:fail": 1}

    async def test_stats_rejects_unknown_range(self, async_client):
        response = await async_client.get("/v1/jobs/stats", params={"time_range": "1y"})

        assert response.status_code == 422


class TestCronApi:
    schedule = {
        "name": "ping",
        "cron_expression": "*/5 * * * *",
        "job_type": "echo",
        "configuration": {"target": "x"},
    }

    async def create(self, client: AsyncClient, **overrides):
        return await client.post("/v1/cron-jobs", json={**self.schedule, **overrides})

    async def test_types_lists_strategies(self, async_client):
        response = await async_client.get("/v1/cron-jobs/types")

        types = response.json()["data"]
        for name in ("webhook", "api_call", "email", "database_query", "cleanup"):
            assert name in types

    async def test_create_and_get(self, async_client):
        response = await self.create(async_client, metadata={"team": "ops"})

        assert response.status_code == 201
        created = response.json()["data"]
        assert created["next_run_at"].startswith("2024-01-01T00:05:00")
        assert created["metadata"] == {"team": "ops"}
        assert created["success_rate"] == 0.0

        fetched = await async_client.get(f"/v1/cron-jobs/{created['id']}")
        assert fetched.json()["data"]["name"] == "ping"

    async def test_create_rejects_bad_expression(self, async_client):
        response = await self.create(async_client, cron_expression="* * *")

        assert response.status_code == 422
        assert response.json()["error"]["details"] == {"cron_expression": "* * *"}

    async def test_create_rejects_unknown_strategy(self, async_client):
        response = await self.create(async_client, job_type="fax")

        assert response.status_code == 422

    async def test_pause_resume_conflicts(self, async_client):
        cron_id = (await self.create(async_client)).json()["data"]["id"]

        paused = await async_client.post(f"/v1/cron-jobs/{cron_id}/pause")
        assert paused.json()["data"]["is_paused"] is True
        again = await async_client.post(f"/v1/cron-jobs/{cron_id}/pause")
        assert again.status_code == 409

        resumed = await async_client.post(f"/v1/cron-jobs/{cron_id}/resume")
        assert resumed.json()["data"]["is_paused"] is False

    async def test_update_and_delete(self, async_client):
        cron_id = (await self.create(async_client)).json()["data"]["id"]

        updated = await async_client.put(
            f"/v1/cron-jobs/{cron_id}", json={"cron_expression": "0 * * * *"}
        )
        assert updated.status_code == 200
        assert updated.json()["data"]["cron_expression"] == "0 * * * *"

        deleted = await async_client.delete(f"/v1/cron-jobs/{cron_id}")
        assert deleted.status_code == 200
        missing = await async_client.get(f"/v1/cron-jobs/{cron_id}")
        assert missing.status_code == 404

    async def test_execute_runs_and_records_execution(self, async_client, dispatcher):
        cron_id = (await self.create(async_client)).json()["data"]["id"]

        triggered = await async_client.post(f"/v1/cron-jobs/{cron_id}/execute")
        assert triggered.status_code == 200
        job_id = triggered.json()["data"]["job_id"]
        await run_pass(dispatcher)

        job = (await async_client.get(f"/v1/jobs/{job_id}/status")).json()["data"]
        assert job["status"] == "completed"

        executions = (
            await async_client.get(f"/v1/cron-jobs/{cron_id}/executions")
        ).json()["data"]
        assert executions["total"] == 1
        assert executions["executions"][0]["status"] == "success"
        assert executions["executions"][0]["triggered_by"] == "manual"

        stats = (await async_client.get("/v1/cron-jobs/stats")).json()["data"]
        assert stats["total_runs"] == 1

    async def test_execute_paused_schedule_conflicts(self, async_client):
        cron_id = (await self.create(async_client)).json()["data"]["id"]
        await async_client.post(f"/v1/cron-jobs/{cron_id}/pause")

        response = await async_client.post(f"/v1/cron-jobs/{cron_id}/execute")

        assert response.status_code == 409

    async def test_list_with_filters(self, async_client):
        await self.create(async_client, name="alpha")
        await self.create(async_client, name="beta", is_active=False)

        response = await async_client.get(
            "/v1/cron-jobs", params={"is_active": "true"}
        )

        data = response.json()["data"]
        assert data["total"] == 1
        assert data["cron_jobs"][0]["name"] == "alpha"

    async def test_sync_and_remove_by_source(self, async_client):
        source_id = str(uuid.uuid4())
        body = {
            **self.schedule,
            "source_type": "plugin",
            "source_id": source_id,
            "source_name": "reviews",
        }

        first = await async_client.put("/v1/cron-jobs/sources", json=body)
        second = await async_client.put(
            "/v1/cron-jobs/sources", json={**body, "cron_expression": "0 * * * *"}
        )
        assert first.status_code == 200
        assert second.json()["data"]["id"] == first.json()["data"]["id"]
        assert second.json()["data"]["cron_expression"] == "0 * * * *"

        listed = await async_client.get(
            "/v1/cron-jobs", params={"source_type": "plugin"}
        )
        assert listed.json()["data"]["total"] == 1

        removed = await async_client.delete(
            f"/v1/cron-jobs/sources/plugin/{source_id}"
        )
        assert removed.json()["data"] == {"removed": 1}
