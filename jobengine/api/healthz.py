from datetime import UTC, datetime, timedelta

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import func, select, text

from jobengine.api.deps import EngineDep
from jobengine.core.exceptions import create_success_response
from jobengine.engine import JobEngine
from jobengine.jobs.models import Job, JobStatus

router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class DispatcherHealth(BaseModel):
    """Dispatcher health status."""

    running: bool
    backend: str
    processing: int
    concurrency: int
    queue_depth: int = 0
    stuck_jobs_count: int = 0


@router.get("/healthz", response_model=dict)
async def health_check(engine: JobEngine = EngineDep):
    """Health check with database and dispatcher status."""

    timestamp = datetime.now(UTC).isoformat()

    db_health = await _check_database_health(engine)
    dispatcher_health = None
    if db_health.connected:
        dispatcher_health = await _check_dispatcher_health(engine)

    health_data = {
        "ok": db_health.connected,
        "version": engine.settings.version,
        "environment": engine.settings.environment,
        "timestamp": timestamp,
        "database": db_health.model_dump(),
        "dispatcher": dispatcher_health.model_dump() if dispatcher_health else None,
    }

    return create_success_response(data=health_data)


async def _check_database_health(engine: JobEngine) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        async with engine.database.SessionLocal() as session:
            await session.execute(text("SELECT 1"))

        response_time_ms = (datetime.now(UTC) - start_time).total_seconds() * 1000
        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))


async def _check_dispatcher_health(engine: JobEngine) -> DispatcherHealth:
    """Queue depth plus, when the lease is enabled, running jobs past it."""
    dispatcher = engine.dispatcher
    settings = engine.settings

    async with engine.database.SessionLocal() as session:
        queue_depth_result = await session.execute(
            select(func.count(Job.id)).where(Job.status == JobStatus.PENDING.value)
        )
        queue_depth = queue_depth_result.scalar() or 0

        stuck_jobs_count = 0
        if settings.job_visibility_timeout_s:
            stuck_cutoff = engine.clock.now() - timedelta(
                seconds=settings.job_visibility_timeout_s
            )
            stuck_result = await session.execute(
                select(func.count(Job.id)).where(
                    Job.status == JobStatus.RUNNING.value,
                    Job.heartbeat_at < stuck_cutoff,
                )
            )
            stuck_jobs_count = stuck_result.scalar() or 0

    return DispatcherHealth(
        running=dispatcher.running,
        backend=dispatcher.backend.name if dispatcher.backend else "database",
        processing=len(dispatcher.processing),
        concurrency=settings.job_concurrency,
        queue_depth=queue_depth,
        stuck_jobs_count=stuck_jobs_count,
    )
