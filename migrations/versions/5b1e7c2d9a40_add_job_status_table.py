"""add job_status table for per-tenant batch jobs

Revision ID: 5b1e7c2d9a40
Revises:
Create Date: 2026-10-19 09:12:31.418207

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5b1e7c2d9a40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "job_status",
        sa.Column("tenant_id", sa.Text, nullable=False, comment="Tenant (shop) ID"),
        sa.Column("job_type", sa.Text, nullable=False, comment="Job type identifier"),
        sa.Column("job_id", sa.Text, nullable=True, comment="Latest job of this type"),
        sa.Column("in_progress", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="idle",
            comment="Job status: idle|queued|processing|completed|failed",
        ),
        sa.Column("phase", sa.Text, nullable=True),
        sa.Column("message", sa.Text, nullable=True, comment="Human-readable status"),
        sa.Column(
            "cancelled",
            sa.Boolean,
            nullable=False,
            server_default=sa.false(),
            comment="Cooperative cancel flag",
        ),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        # Lifecycle timestamps
        sa.Column("queued_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("failed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True, comment="Last error message"),
        # Counters and reasons
        sa.Column("total_items", sa.Integer, nullable=False, server_default="0"),
        sa.Column("processed_items", sa.Integer, nullable=False, server_default="0"),
        sa.Column("successful_items", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failed_items", sa.Integer, nullable=False, server_default="0"),
        sa.Column("skipped_items", sa.Integer, nullable=False, server_default="0"),
        sa.Column("skip_reasons", sa.JSON, nullable=False, server_default="[]"),
        sa.Column("fail_reasons", sa.JSON, nullable=False, server_default="[]"),
        sa.Column(
            "progress",
            sa.JSON,
            nullable=True,
            comment="{current, total, percent, elapsed_seconds, ...}",
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("tenant_id", "job_type", name="job_status_pkey"),
        sa.CheckConstraint(
            "status IN ('idle', 'queued', 'processing', 'completed', 'failed')",
            name="job_status_status_check",
        ),
    )

    # Queue dashboards list active jobs across tenants
    op.create_index("ix_job_status_in_progress", "job_status", ["in_progress"])
    op.create_index("ix_job_status_updated_at", "job_status", ["updated_at"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_job_status_updated_at", table_name="job_status")
    op.drop_index("ix_job_status_in_progress", table_name="job_status")
    op.drop_table("job_status")
