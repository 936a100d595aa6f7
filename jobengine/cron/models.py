"""
Cron schedule and execution models.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from jobengine.cron.expression import next_run_at
from jobengine.infra.database import Base, UTCDateTime


class ExecutionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class TriggeredBy(str, Enum):
    SCHEDULE = "schedule"
    MANUAL = "manual"


class SourceType(str, Enum):
    """Who owns a schedule."""

    USER = "user"
    PLUGIN = "plugin"
    INTEGRATION = "integration"
    SYSTEM = "system"


class CronJob(Base):
    """
    A persistent recurring schedule.

    When due, the monitor enqueues a ``system:dynamic_cron`` job that runs the
    strategy named by ``job_type`` with ``configuration``. The schedule pauses
    itself after ``max_failures`` consecutive failures.
    """

    __tablename__ = "cron_jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    cron_expression: Mapped[str] = mapped_column(Text, nullable=False)
    timezone: Mapped[str] = mapped_column(Text, nullable=False, default="UTC")
    job_type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Strategy name"
    )
    configuration: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict
    )

    # Ownership: plugins and integrations sync their schedules by source
    source_type: Mapped[str] = mapped_column(
        Text, nullable=False, default=SourceType.USER.value
    )
    source_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    source_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    store_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    user_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    last_run_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_status: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Counters
    run_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    consecutive_failures: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    # Limits
    max_runs: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    timeout_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=300)

    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("ix_cron_jobs_due", "is_active", "is_paused", "next_run_at"),
        Index("ix_cron_jobs_store_id", "store_id"),
        Index("ix_cron_jobs_source", "source_type", "source_id"),
        Index("ix_cron_jobs_source_name", "source_name"),
    )

    def can_run(self) -> bool:
        if not self.is_active or self.is_paused:
            return False
        if self.max_runs is not None and self.run_count >= self.max_runs:
            return False
        return self.consecutive_failures < self.max_failures

    def refresh_next_run(self, now: datetime) -> datetime | None:
        """Recompute next_run_at; null whenever the schedule cannot fire."""
        if self.can_run():
            self.next_run_at = next_run_at(self.cron_expression, self.timezone, now)
        else:
            self.next_run_at = None
        return self.next_run_at

    @property
    def success_rate(self) -> float:
        if not self.run_count:
            return 0.0
        return round(self.success_count / self.run_count * 100, 2)


class CronJobExecution(Base):
    """One immutable row per schedule run."""

    __tablename__ = "cron_job_executions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    cron_job_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("cron_jobs.id", ondelete="CASCADE"), nullable=False
    )
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    triggered_by: Mapped[str] = mapped_column(
        Text, nullable=False, default=TriggeredBy.SCHEDULE.value
    )

    __table_args__ = (
        Index("ix_cron_job_executions_cron_job", "cron_job_id", "started_at"),
    )
