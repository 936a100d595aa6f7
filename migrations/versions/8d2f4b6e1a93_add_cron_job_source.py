"""add cron job source

Revision ID: 8d2f4b6e1a93
Revises: 5c1e7a9d2b40
Create Date: 2026-10-19 15:30:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "8d2f4b6e1a93"
down_revision: Union[str, Sequence[str], None] = "5c1e7a9d2b40"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.add_column(
        "cron_jobs",
        sa.Column("source_type", sa.Text, nullable=False, server_default="user"),
    )
    op.add_column("cron_jobs", sa.Column("source_id", sa.Uuid(), nullable=True))
    op.add_column(
        "cron_jobs", sa.Column("source_name", sa.String(100), nullable=True)
    )
    op.create_index("ix_cron_jobs_source", "cron_jobs", ["source_type", "source_id"])
    op.create_index("ix_cron_jobs_source_name", "cron_jobs", ["source_name"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_cron_jobs_source_name", table_name="cron_jobs")
    op.drop_index("ix_cron_jobs_source", table_name="cron_jobs")
    op.drop_column("cron_jobs", "source_name")
    op.drop_column("cron_jobs", "source_id")
    op.drop_column("cron_jobs", "source_type")
