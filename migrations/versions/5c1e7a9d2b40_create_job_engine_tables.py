"""create job engine tables

Revision ID: 5c1e7a9d2b40
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5c1e7a9d2b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("type", sa.Text, nullable=False, comment="Job type identifier"),
        sa.Column(
            "priority",
            sa.SmallInteger,
            nullable=False,
            server_default="2",
            comment="Priority rank 1-4, higher runs first",
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="pending",
            comment="pending|running|completed|failed|cancelled",
        ),
        sa.Column(
            "payload",
            sa.JSON,
            nullable=False,
            comment="Job-specific parameters",
        ),
        sa.Column("result", sa.JSON, nullable=True, comment="Job result data"),
        # Scheduling
        sa.Column(
            "scheduled_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            comment="Earliest time to run job",
        ),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("failed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "heartbeat_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Last heartbeat while running",
        ),
        # Retries
        sa.Column("max_retries", sa.Integer, nullable=False, server_default="3"),
        sa.Column("retry_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text, nullable=True, comment="Last error message"),
        # Progress
        sa.Column("progress", sa.SmallInteger, nullable=False, server_default="0"),
        sa.Column("progress_message", sa.Text, nullable=True),
        # Ownership
        sa.Column("store_id", sa.Uuid(), nullable=True),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("metadata", sa.JSON, nullable=False),
        # Timestamps
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'cancelled')",
            name="jobs_status_check",
        ),
        sa.CheckConstraint("priority BETWEEN 1 AND 4", name="jobs_priority_check"),
        sa.CheckConstraint("progress BETWEEN 0 AND 100", name="jobs_progress_check"),
    )

    # Claim order: pending jobs due now, best priority first
    op.create_index(
        "ix_jobs_claim_order", "jobs", ["status", "scheduled_at", "priority"]
    )
    op.create_index("ix_jobs_type_status", "jobs", ["type", "status"])
    op.create_index("ix_jobs_created_at", "jobs", ["created_at"])

    op.create_table(
        "job_history",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "job_id",
            sa.Uuid(),
            sa.ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("result", sa.JSON, nullable=True),
        sa.Column("error", sa.JSON, nullable=True),
        sa.Column("executed_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_job_history_job_id", "job_history", ["job_id"])

    op.create_table(
        "cron_jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("cron_expression", sa.Text, nullable=False),
        sa.Column("timezone", sa.Text, nullable=False, server_default="UTC"),
        sa.Column("job_type", sa.Text, nullable=False, comment="Strategy name"),
        sa.Column("configuration", sa.JSON, nullable=False),
        sa.Column("store_id", sa.Uuid(), nullable=True),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_paused", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("last_run_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("next_run_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_status", sa.Text, nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("last_result", sa.JSON, nullable=True),
        # Counters
        sa.Column("run_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("success_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failure_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "consecutive_failures", sa.Integer, nullable=False, server_default="0"
        ),
        # Limits
        sa.Column("max_runs", sa.Integer, nullable=True),
        sa.Column("max_failures", sa.Integer, nullable=False, server_default="5"),
        sa.Column("timeout_seconds", sa.Integer, nullable=False, server_default="300"),
        sa.Column("tags", sa.JSON, nullable=False),
        sa.Column("metadata", sa.JSON, nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_cron_jobs_due", "cron_jobs", ["is_active", "is_paused", "next_run_at"]
    )
    op.create_index("ix_cron_jobs_store_id", "cron_jobs", ["store_id"])

    op.create_table(
        "cron_job_executions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "cron_job_id",
            sa.Uuid(),
            sa.ForeignKey("cron_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer, nullable=True),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("result", sa.JSON, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column(
            "triggered_by", sa.Text, nullable=False, server_default="schedule"
        ),
    )
    op.create_index(
        "ix_cron_job_executions_cron_job",
        "cron_job_executions",
        ["cron_job_id", "started_at"],
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_cron_job_executions_cron_job", table_name="cron_job_executions")
    op.drop_table("cron_job_executions")
    op.drop_index("ix_cron_jobs_store_id", table_name="cron_jobs")
    op.drop_index("ix_cron_jobs_due", table_name="cron_jobs")
    op.drop_table("cron_jobs")
    op.drop_index("ix_job_history_job_id", table_name="job_history")
    op.drop_table("job_history")
    op.drop_index("ix_jobs_created_at", table_name="jobs")
    op.drop_index("ix_jobs_type_status", table_name="jobs")
    op.drop_index("ix_jobs_claim_order", table_name="jobs")
    op.drop_table("jobs")
