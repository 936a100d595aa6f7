"""
Job and job history models.
"""

from datetime import UTC, datetime
from enum import Enum, IntEnum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from jobengine.infra.database import Base, UTCDateTime


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED.value, JobStatus.FAILED.value, JobStatus.CANCELLED.value}
)


class JobPriority(IntEnum):
    """Job priority; stored as its rank so higher values are claimed first."""

    LOW = 1
    NORMAL = 2
    HIGH = 3
    URGENT = 4

    @classmethod
    def parse(cls, value: "str | int | JobPriority") -> "JobPriority":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                raise ValueError(f"Unknown priority: {value}") from None
        return cls(value)

    @property
    def label(self) -> str:
        return self.name.lower()


class Job(Base):
    """
    A single unit of background work.

    Status moves pending -> running -> completed | failed, or back to
    pending when a failed attempt is retried. Only pending jobs can be
    cancelled. Completed, failed and cancelled are terminal.
    """

    __tablename__ = "jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job type identifier"
    )
    priority: Mapped[int] = mapped_column(
        SmallInteger,
        nullable=False,
        default=JobPriority.NORMAL.value,
        comment="Priority rank 1-4, higher runs first",
    )
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="pending|running|completed|failed|cancelled",
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Job-specific parameters"
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Job result data"
    )

    # Scheduling
    scheduled_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, comment="Earliest time to run job"
    )
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    heartbeat_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Last heartbeat while running"
    )

    # Retries
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )

    # Progress
    progress: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    progress_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Ownership
    store_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    user_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
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
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'cancelled')",
            name="jobs_status_check",
        ),
        CheckConstraint("priority BETWEEN 1 AND 4", name="jobs_priority_check"),
        CheckConstraint("progress BETWEEN 0 AND 100", name="jobs_progress_check"),
        Index("ix_jobs_claim_order", "status", "scheduled_at", "priority"),
        Index("ix_jobs_type_status", "type", "status"),
        Index("ix_jobs_created_at", "created_at"),
    )

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def priority_label(self) -> str:
        return JobPriority(self.priority).label

    def to_status_dict(self) -> dict[str, Any]:
        """Lightweight projection used for polling."""
        return {
            "id": str(self.id),
            "type": self.type,
            "status": self.status,
            "progress": self.progress,
            "progress_message": self.progress_message,
            "result": self.result,
            "last_error": self.last_error,
        }


class JobHistory(Base):
    """One immutable row per execution attempt."""

    __tablename__ = "job_history"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    job_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(Text, nullable=False)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    executed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
