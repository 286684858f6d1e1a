"""
Job status models for the batch engine.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, TIMESTAMP, Boolean, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from tenantq.infra.database import Base


class JobStatus(str, Enum):
    """Job status enumeration."""

    IDLE = "idle"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobStatusRecord(Base):
    """
    Durable snapshot of one tenant's job of one type.

    Keyed by (tenant_id, job_type) and overwritten on every status write, so
    the row always reflects the latest (or last terminal) job of that type.
    """

    __tablename__ = "job_status"

    tenant_id: Mapped[str] = mapped_column(Text, primary_key=True)
    job_type: Mapped[str] = mapped_column(Text, primary_key=True)

    job_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    in_progress: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.IDLE.value,
        comment="Job status: idle|queued|processing|completed|failed",
    )
    phase: Mapped[str | None] = mapped_column(Text, nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, comment="Cooperative cancel flag"
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    queued_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skip_reasons: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    fail_reasons: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    progress: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="{current, total, percent, elapsed_seconds, ...}"
    )

    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            column.name: getattr(self, column.name)
            for column in self.__table__.columns
            if column.name not in ("tenant_id", "job_type")
        }
