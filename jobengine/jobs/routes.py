"""
Job administration API endpoints.

Enqueue, inspect, cancel and report on background jobs.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query

from jobengine.api.deps import EngineDep
from jobengine.config.logging import get_logger
from jobengine.core.exceptions import create_success_response
from jobengine.engine import JobEngine
from jobengine.jobs.models import JobStatus
from jobengine.jobs.schemas import JobEnqueueRequest, JobListFilters, StatsRange

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=dict, status_code=201)
async def enqueue_job(
    job_request: JobEnqueueRequest, engine: JobEngine = EngineDep
) -> dict[str, Any]:
    """Schedule a new background job."""

    job = await engine.jobs.enqueue(job_request)
    logger.info("Job enqueued via API", job_id=str(job.id), job_type=job.type)

    return create_success_response(data=job.model_dump())


@router.get("", response_model=dict)
async def list_jobs(
    status: list[JobStatus] | None = Query(
        default=None, description="Filter by status"
    ),
    type: str | None = Query(default=None, description="Filter by job type"),
    store_id: UUID | None = Query(default=None, description="Filter by store"),
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    engine: JobEngine = EngineDep,
) -> dict[str, Any]:
    """List jobs with filtering and pagination, newest first."""

    filters = JobListFilters(
        status=status, type=type, store_id=store_id, limit=limit, offset=offset
    )
    jobs = await engine.jobs.list_jobs(filters)

    return create_success_response(data=jobs.model_dump())


@router.get("/stats", response_model=dict)
async def get_job_stats(
    time_range: StatsRange = Query(default="24h", description="Window: 1h|24h|7d|30d"),
    engine: JobEngine = EngineDep,
) -> dict[str, Any]:
    """Job statistics over a time window."""

    stats = await engine.jobs.statistics(time_range)

    return create_success_response(data=stats.model_dump())


@router.get("/{job_id}", response_model=dict)
async def get_job(job_id: UUID, engine: JobEngine = EngineDep) -> dict[str, Any]:
    """Get a job with its execution history."""

    details = await engine.jobs.get_details(job_id)

    return create_success_response(data=details.model_dump())


@router.get("/{job_id}/status", response_model=dict)
async def get_job_status(
    job_id: UUID, engine: JobEngine = EngineDep
) -> dict[str, Any]:
    """Lightweight status for polling clients."""

    job_status = await engine.jobs.get_status(job_id)

    return create_success_response(data=job_status.model_dump())


@router.post("/{job_id}/cancel", response_model=dict)
async def cancel_job(job_id: UUID, engine: JobEngine = EngineDep) -> dict[str, Any]:
    """Cancel a pending job. Running and finished jobs are rejected with 409."""

    job = await engine.jobs.cancel(job_id)
    logger.info("Job cancelled via API", job_id=str(job_id))

    return create_success_response(data=job.model_dump(), message="Job cancelled")
