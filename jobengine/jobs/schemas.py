"""
Pydantic schemas for jobs.
"""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from jobengine.jobs.models import JobStatus

PriorityLabel = Literal["low", "normal", "high", "urgent"]
StatsRange = Literal["1h", "24h", "7d", "30d"]


class JobEnqueueRequest(BaseModel):
    """Schema for enqueueing jobs via API."""

    type: str = Field(..., description="Job type")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job payload")
    priority: PriorityLabel = Field(default="normal", description="Job priority")
    delay_s: float = Field(default=0, ge=0, description="Delay before first run")
    max_retries: int | None = Field(default=None, ge=0, le=100)
    store_id: UUID | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    type: str
    status: str
    priority: str = Field(validation_alias="priority_label")
    payload: dict[str, Any]
    result: dict[str, Any] | None = None
    scheduled_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None
    max_retries: int
    retry_count: int
    last_error: str | None = None
    progress: int
    progress_message: str | None = None
    store_id: UUID | None = None
    user_id: UUID | None = None
    metadata: dict[str, Any] = Field(validation_alias="metadata_")
    created_at: datetime
    updated_at: datetime


class JobHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_id: UUID
    status: str
    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None
    executed_at: datetime


class JobDetailsResponse(JobResponse):
    history: list[JobHistoryResponse] = Field(default_factory=list)


class JobStatusResponse(BaseModel):
    """Lightweight projection for polling clients."""

    id: UUID
    type: str
    status: str
    progress: int
    progress_message: str | None = None
    result: dict[str, Any] | None = None
    last_error: str | None = None


class JobListFilters(BaseModel):
    """Schema for job listing filters."""

    status: list[JobStatus] | None = Field(
        default=None, description="Filter by job status"
    )
    type: str | None = Field(default=None, description="Filter by job type")
    store_id: UUID | None = Field(default=None, description="Filter by store")
    user_id: UUID | None = Field(default=None, description="Filter by user")
    limit: int = Field(
        default=50, ge=1, le=1000, description="Maximum results to return"
    )
    offset: int = Field(default=0, ge=0, description="Results offset for pagination")


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int


class JobStatsResponse(BaseModel):
    """Aggregate statistics over a time window."""

    time_range: StatsRange
    total: int
    completed: int
    failed: int
    cancelled: int
    pending: int
    running: int
    success_rate: float
    by_type: dict[str, int]
    currently_processing: int = 0
