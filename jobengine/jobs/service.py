"""
Job service for enqueueing and inspecting background jobs.
"""

from datetime import timedelta
from uuid import UUID

from jobengine.config.logging import get_logger
from jobengine.core.clock import Clock
from jobengine.jobs.dispatcher import Dispatcher
from jobengine.jobs.models import JobPriority
from jobengine.jobs.schemas import (
    JobDetailsResponse,
    JobEnqueueRequest,
    JobHistoryResponse,
    JobListFilters,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
    JobStatusResponse,
    StatsRange,
)
from jobengine.jobs.store import JobStore

logger = get_logger(__name__)

STATS_RANGES: dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


class JobService:
    """Administrative operations over the job queue."""

    def __init__(self, dispatcher: Dispatcher, store: JobStore, clock: Clock):
        self.dispatcher = dispatcher
        self.store = store
        self.clock = clock

    async def enqueue(
        self, request: JobEnqueueRequest, user_id: UUID | None = None
    ) -> JobResponse:
        job = await self.dispatcher.schedule_job(
            request.type,
            request.payload,
            priority=JobPriority.parse(request.priority),
            delay_s=request.delay_s,
            max_retries=request.max_retries,
            store_id=request.store_id,
            user_id=user_id,
            metadata=request.metadata,
        )
        return JobResponse.model_validate(job)

    async def get_job(self, job_id: UUID) -> JobResponse:
        job = await self.store.get_or_raise(job_id)
        return JobResponse.model_validate(job)

    async def get_status(self, job_id: UUID) -> JobStatusResponse:
        """Lightweight status projection for polling."""
        job = await self.store.get_or_raise(job_id)
        return JobStatusResponse.model_validate(job.to_status_dict())

    async def get_details(self, job_id: UUID) -> JobDetailsResponse:
        """Job with its full execution history, newest attempt first."""
        job = await self.store.get_or_raise(job_id)
        history = await self.store.history(job_id)
        return JobDetailsResponse(
            **JobResponse.model_validate(job).model_dump(),
            history=[JobHistoryResponse.model_validate(h) for h in history],
        )

    async def list_jobs(self, filters: JobListFilters) -> JobListResponse:
        jobs, total = await self.store.list_jobs(filters)
        return JobListResponse(
            jobs=[JobResponse.model_validate(job) for job in jobs],
            total=total,
            limit=filters.limit,
            offset=filters.offset,
        )

    async def cancel(self, job_id: UUID) -> JobResponse:
        job = await self.dispatcher.cancel_job(job_id)
        return JobResponse.model_validate(job)

    async def statistics(self, time_range: StatsRange = "24h") -> JobStatsResponse:
        """Counts and success rate over one of the supported windows."""
        if time_range not in STATS_RANGES:
            raise ValueError(f"Unsupported time range: {time_range}")
        since = self.clock.now() - STATS_RANGES[time_range]
        stats = await self.store.statistics(since)
        return JobStatsResponse(
            time_range=time_range,
            currently_processing=len(self.dispatcher.processing),
            **stats,
        )
