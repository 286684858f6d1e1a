"""
Pydantic schemas for batch jobs and their status snapshots.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from tenantq.v1.infra.jobs.models import JobStatus


class JobProgress(BaseModel):
    """Progress block written after every batch; replaced as a unit."""

    current: int = Field(..., ge=0, description="Items processed so far")
    total: int = Field(..., ge=0, description="Items in the job")
    percent: int = Field(..., ge=0, le=100)
    elapsed_seconds: int = Field(..., ge=0)
    remaining_seconds: int = Field(..., ge=0, description="Extrapolated time left")
    started_at: datetime


class JobStatusSnapshot(BaseModel):
    """Durable projection of a job, keyed by (tenant_id, job_type).

    The defaults are the idle zero value returned for never-submitted types.
    """

    in_progress: bool = False
    status: JobStatus = JobStatus.IDLE
    phase: str | None = None
    message: str | None = None
    cancelled: bool = False
    job_id: str | None = None
    attempts: int = 0

    queued_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    last_error: str | None = None

    total_items: int = 0
    processed_items: int = 0
    successful_items: int = 0
    failed_items: int = 0
    skipped_items: int = 0
    skip_reasons: list[str] = Field(default_factory=list)
    fail_reasons: list[str] = Field(default_factory=list)
    progress: JobProgress | None = None

    updated_at: datetime | None = None


SNAPSHOT_FIELDS = frozenset(JobStatusSnapshot.model_fields)


class JobStatusResponse(JobStatusSnapshot):
    """Status polling answer; position is 0 while processing, 1+ while queued."""

    position: int | None = None


class SubmitResult(BaseModel):
    """Outcome of ``JobQueue.submit``."""

    accepted: bool
    job_id: str
    queue_position: int = Field(..., ge=0, description="0 = processing now")
    total_items: int
    message: str


class QueuedJobInfo(BaseModel):
    tenant_id: str
    job_type: str
    job_id: str
    queued_at: datetime
    attempts: int
    total_items: int


class CurrentJobInfo(QueuedJobInfo):
    status: JobStatus
    started_at: datetime | None = None
    processed_items: int


class QueueStats(BaseModel):
    """Schema for queue statistics."""

    running: bool
    processing: bool
    queue_length: int
    current_job: CurrentJobInfo | None = None
    queued_jobs: list[QueuedJobInfo] = Field(default_factory=list)


class TenantRecord(BaseModel):
    """What the notifier knows about a tenant."""

    tenant_id: str
    email: str | None = None
    name: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class JobSummary(BaseModel):
    """Completion summary handed to the notifier."""

    job_id: str
    job_type: str
    display_name: str
    item_noun: str
    successful: int
    failed: int
    skipped: int
    duration_seconds: float
    fail_reasons: list[str] = Field(default_factory=list)
    skip_reasons: list[str] = Field(default_factory=list)
