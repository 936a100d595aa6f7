"""
Cron schedule API endpoints.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query

from jobengine.api.deps import EngineDep
from jobengine.config.logging import get_logger
from jobengine.core.exceptions import create_success_response
from jobengine.cron.models import SourceType
from jobengine.cron.schemas import (
    CronJobCreate,
    CronJobExecutionListResponse,
    CronJobExecutionResponse,
    CronJobListFilters,
    CronJobListResponse,
    CronJobResponse,
    CronJobSourceSync,
    CronJobUpdate,
    CronTriggerResponse,
)
from jobengine.engine import JobEngine

logger = get_logger(__name__)
router = APIRouter(prefix="/cron-jobs", tags=["cron"])


def _dump(cron_job) -> dict[str, Any]:
    return CronJobResponse.model_validate(cron_job).model_dump()


@router.get("/types", response_model=dict)
async def list_cron_job_types(engine: JobEngine = EngineDep) -> dict[str, Any]:
    """Strategies a schedule can run."""

    return create_success_response(data=engine.strategies.list())


@router.get("/stats", response_model=dict)
async def get_cron_stats(engine: JobEngine = EngineDep) -> dict[str, Any]:
    stats = await engine.cron_service.stats()

    return create_success_response(data=stats.model_dump())


@router.get("", response_model=dict)
async def list_cron_jobs(
    is_active: bool | None = Query(default=None),
    is_paused: bool | None = Query(default=None),
    job_type: str | None = Query(default=None, description="Filter by strategy"),
    source_type: SourceType | None = Query(default=None),
    source_name: str | None = Query(default=None),
    store_id: UUID | None = Query(default=None),
    search: str | None = Query(default=None, description="Match on name"),
    limit: int = Query(default=50, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    engine: JobEngine = EngineDep,
) -> dict[str, Any]:
    """List schedules with filtering and pagination."""

    filters = CronJobListFilters(
        is_active=is_active,
        is_paused=is_paused,
        job_type=job_type,
        source_type=source_type,
        source_name=source_name,
        store_id=store_id,
        search=search,
        limit=limit,
        offset=offset,
    )
    cron_jobs, total = await engine.cron_service.list_cron_jobs(filters)
    response = CronJobListResponse(
        cron_jobs=[CronJobResponse.model_validate(c) for c in cron_jobs],
        total=total,
        limit=limit,
        offset=offset,
    )

    return create_success_response(data=response.model_dump())


@router.post("", response_model=dict, status_code=201)
async def create_cron_job(
    data: CronJobCreate, engine: JobEngine = EngineDep
) -> dict[str, Any]:
    cron_job = await engine.cron_service.create(data)

    return create_success_response(data=_dump(cron_job), message="Cron job created")


@router.put("/sources", response_model=dict)
async def sync_cron_job_from_source(
    data: CronJobSourceSync, engine: JobEngine = EngineDep
) -> dict[str, Any]:
    """Create or update the schedule a plugin or integration owns."""

    cron_job = await engine.cron_service.sync_from_source(data)

    return create_success_response(data=_dump(cron_job), message="Cron job synced")


@router.delete("/sources/{source_type}/{source_id}", response_model=dict)
async def remove_cron_jobs_for_source(
    source_type: SourceType, source_id: UUID, engine: JobEngine = EngineDep
) -> dict[str, Any]:
    removed = await engine.cron_service.remove_by_source(source_type, source_id)

    return create_success_response(
        data={"removed": removed}, message="Cron jobs removed"
    )


@router.get("/{cron_job_id}", response_model=dict)
async def get_cron_job(
    cron_job_id: UUID, engine: JobEngine = EngineDep
) -> dict[str, Any]:
    cron_job = await engine.cron_service.get(cron_job_id)

    return create_success_response(data=_dump(cron_job))


@router.put("/{cron_job_id}", response_model=dict)
async def update_cron_job(
    cron_job_id: UUID, data: CronJobUpdate, engine: JobEngine = EngineDep
) -> dict[str, Any]:
    cron_job = await engine.cron_service.update(cron_job_id, data)

    return create_success_response(data=_dump(cron_job), message="Cron job updated")


@router.delete("/{cron_job_id}", response_model=dict)
async def delete_cron_job(
    cron_job_id: UUID, engine: JobEngine = EngineDep
) -> dict[str, Any]:
    await engine.cron_service.delete(cron_job_id)

    return create_success_response(
        data={"id": str(cron_job_id)}, message="Cron job deleted"
    )


@router.post("/{cron_job_id}/pause", response_model=dict)
async def pause_cron_job(
    cron_job_id: UUID, engine: JobEngine = EngineDep
) -> dict[str, Any]:
    cron_job = await engine.cron_service.pause(cron_job_id)

    return create_success_response(data=_dump(cron_job), message="Cron job paused")


@router.post("/{cron_job_id}/resume", response_model=dict)
async def resume_cron_job(
    cron_job_id: UUID, engine: JobEngine = EngineDep
) -> dict[str, Any]:
    """Resume a paused schedule and clear its failure streak."""

    cron_job = await engine.cron_service.resume(cron_job_id)

    return create_success_response(data=_dump(cron_job), message="Cron job resumed")


@router.post("/{cron_job_id}/reset", response_model=dict)
async def reset_cron_job(
    cron_job_id: UUID, engine: JobEngine = EngineDep
) -> dict[str, Any]:
    cron_job = await engine.cron_service.reset(cron_job_id)

    return create_success_response(data=_dump(cron_job), message="Cron job reset")


@router.post("/{cron_job_id}/execute", response_model=dict)
async def execute_cron_job(
    cron_job_id: UUID, engine: JobEngine = EngineDep
) -> dict[str, Any]:
    """Schedule an immediate manual run."""

    job = await engine.cron_monitor.trigger(cron_job_id)
    logger.info(
        "Cron job triggered via API", cron_job_id=str(cron_job_id), job_id=str(job.id)
    )
    response = CronTriggerResponse(
        job_id=job.id, cron_job_id=cron_job_id, scheduled_at=job.scheduled_at
    )

    return create_success_response(
        data=response.model_dump(), message="Cron job scheduled for manual execution"
    )


@router.get("/{cron_job_id}/executions", response_model=dict)
async def list_cron_job_executions(
    cron_job_id: UUID,
    limit: int = Query(default=20, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    engine: JobEngine = EngineDep,
) -> dict[str, Any]:
    """Execution history, newest first."""

    executions, total = await engine.cron_service.executions(
        cron_job_id, limit=limit, offset=offset
    )
    response = CronJobExecutionListResponse(
        executions=[CronJobExecutionResponse.model_validate(e) for e in executions],
        total=total,
        limit=limit,
        offset=offset,
    )

    return create_success_response(data=response.model_dump())
