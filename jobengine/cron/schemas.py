"""
Pydantic schemas for cron schedules.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from jobengine.cron.models import SourceType


class CronJobCreate(BaseModel):
    """Schema for creating a cron schedule."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    cron_expression: str = Field(..., description="Standard 5-field cron expression")
    timezone: str = Field(default="UTC", description="IANA timezone name")
    job_type: str = Field(..., description="Strategy to run when the schedule fires")
    configuration: dict[str, Any] = Field(default_factory=dict)
    source_type: SourceType = SourceType.USER
    source_id: UUID | None = None
    source_name: str | None = Field(default=None, max_length=100)
    store_id: UUID | None = None
    is_active: bool = True
    max_runs: int | None = Field(default=None, ge=1)
    max_failures: int = Field(default=5, ge=1)
    timeout_seconds: int = Field(default=300, ge=1, le=86400)
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class CronJobSourceSync(CronJobCreate):
    """
    A schedule owned by a plugin or integration.

    Upserted by ``(source_type, source_id)`` so the owner can resend its full
    definition whenever its settings change.
    """

    source_type: SourceType = SourceType.INTEGRATION
    source_id: UUID
    source_name: str = Field(..., min_length=1, max_length=100)


class CronJobUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    cron_expression: str | None = None
    timezone: str | None = None
    job_type: str | None = None
    configuration: dict[str, Any] | None = None
    is_active: bool | None = None
    max_runs: int | None = Field(default=None, ge=1)
    max_failures: int | None = Field(default=None, ge=1)
    timeout_seconds: int | None = Field(default=None, ge=1, le=86400)
    tags: list[str] | None = None
    metadata: dict[str, Any] | None = None


class CronJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    name: str
    description: str | None = None
    cron_expression: str
    timezone: str
    job_type: str
    configuration: dict[str, Any]
    source_type: str
    source_id: UUID | None = None
    source_name: str | None = None
    store_id: UUID | None = None
    user_id: UUID | None = None
    is_active: bool
    is_paused: bool
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    last_status: str | None = None
    last_error: str | None = None
    last_result: dict[str, Any] | None = None
    run_count: int
    success_count: int
    failure_count: int
    consecutive_failures: int
    max_runs: int | None = None
    max_failures: int
    timeout_seconds: int
    success_rate: float
    tags: list[str]
    metadata: dict[str, Any] = Field(validation_alias="metadata_")
    created_at: datetime
    updated_at: datetime


class CronJobListFilters(BaseModel):
    is_active: bool | None = None
    is_paused: bool | None = None
    job_type: str | None = None
    source_type: SourceType | None = None
    source_name: str | None = None
    store_id: UUID | None = None
    search: str | None = Field(default=None, description="Substring match on name")
    limit: int = Field(default=50, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


class CronJobListResponse(BaseModel):
    cron_jobs: list[CronJobResponse]
    total: int
    limit: int
    offset: int


class CronJobExecutionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    cron_job_id: UUID
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    status: str
    result: dict[str, Any] | None = None
    error_message: str | None = None
    triggered_by: str


class CronJobExecutionListResponse(BaseModel):
    executions: list[CronJobExecutionResponse]
    total: int
    limit: int
    offset: int


class CronTriggerResponse(BaseModel):
    job_id: UUID
    cron_job_id: UUID
    scheduled_at: datetime


class CronStatsResponse(BaseModel):
    """Aggregate view over all schedules."""

    total: int
    active: int
    paused: int
    inactive: int
    total_runs: int
    total_successes: int
    total_failures: int
    success_rate: float
    executions_last_24h: int
