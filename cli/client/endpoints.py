"""API Endpoint Wrappers"""

import os
from typing import Any

from .base import APIClient, JobEngineError

DEFAULT_API_URL = "http://localhost:8000"

__all__ = ["JobEngineClient", "JobEngineError", "api_url"]


def api_url() -> str:
    return os.environ.get("JOBENGINE_API_URL", DEFAULT_API_URL)


class JobEngineClient:
    """High-level client with one method per endpoint"""

    def __init__(self, base_url: str | None = None, **kwargs: Any):
        self.api = APIClient(base_url=base_url or api_url(), **kwargs)

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        return self.api.get("/healthz")

    # Jobs
    def enqueue_job(
        self,
        job_type: str,
        payload: dict[str, Any] | None = None,
        priority: str = "normal",
        delay_s: float = 0,
        max_retries: int | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "type": job_type,
            "payload": payload or {},
            "priority": priority,
            "delay_s": delay_s,
        }
        if max_retries is not None:
            body["max_retries"] = max_retries
        return self.api.post("/jobs", json=body)

    def list_jobs(
        self,
        status: str | None = None,
        type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        if type:
            params["type"] = type
        return self.api.get("/jobs", params=params)

    def get_job(self, job_id: str) -> dict[str, Any]:
        return self.api.get(f"/jobs/{job_id}")

    def get_job_status(self, job_id: str) -> dict[str, Any]:
        return self.api.get(f"/jobs/{job_id}/status")

    def cancel_job(self, job_id: str) -> dict[str, Any]:
        return self.api.post(f"/jobs/{job_id}/cancel")

    def job_stats(self, time_range: str = "24h") -> dict[str, Any]:
        return self.api.get("/jobs/stats", params={"time_range": time_range})

    # Cron jobs
    def list_cron_jobs(self, limit: int = 50, offset: int = 0) -> dict[str, Any]:
        return self.api.get("/cron-jobs", params={"limit": limit, "offset": offset})

    def trigger_cron_job(self, cron_job_id: str) -> dict[str, Any]:
        return self.api.post(f"/cron-jobs/{cron_job_id}/execute")

    def pause_cron_job(self, cron_job_id: str) -> dict[str, Any]:
        return self.api.post(f"/cron-jobs/{cron_job_id}/pause")

    def resume_cron_job(self, cron_job_id: str) -> dict[str, Any]:
        return self.api.post(f"/cron-jobs/{cron_job_id}/resume")

    def cron_executions(self, cron_job_id: str, limit: int = 20) -> dict[str, Any]:
        return self.api.get(
            f"/cron-jobs/{cron_job_id}/executions", params={"limit": limit}
        )
