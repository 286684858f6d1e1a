"""
Batch job API endpoints.

Status polling, cancellation and queue statistics for the current tenant.
Jobs themselves are submitted in-process by the features that own them.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request

from tenantq.v1.core.exceptions import (
    NotFoundError,
    QueueNotRunningError,
    create_success_response,
)
from tenantq.v1.core.registries import job_type_registry
from tenantq.v1.core.security import TenantContext, TenantDep
from tenantq.v1.infra.jobs.queue import JobQueue

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_job_queue(request: Request) -> JobQueue:
    """The queue built by the application lifespan."""
    queue = getattr(request.app.state, "job_queue", None)
    if queue is None:
        raise QueueNotRunningError("Job queue is not available")
    return queue


JobQueueDep = Depends(get_job_queue)


def _require_job_type(job_type: str) -> None:
    if job_type not in job_type_registry:
        raise NotFoundError(
            f"Unknown job type: {job_type}",
            details={"job_type": job_type, "known_types": job_type_registry.list()},
        )


@router.get("/stats", response_model=dict)
async def get_queue_stats(queue: JobQueue = JobQueueDep) -> dict[str, Any]:
    """Queue length, current job and queued jobs across all tenants."""

    stats = queue.get_stats()
    return create_success_response(data=stats.model_dump(mode="json"))


@router.get("/{job_type}/status", response_model=dict)
async def get_job_status(
    job_type: str,
    tenant: TenantContext = TenantDep,
    queue: JobQueue = JobQueueDep,
) -> dict[str, Any]:
    """Current status of the tenant's job of this type."""

    _require_job_type(job_type)
    status = await queue.get_status(tenant.tenant_id, job_type)
    return create_success_response(data=status.model_dump(mode="json"))


@router.post("/{job_type}/cancel", response_model=dict)
async def cancel_job(
    job_type: str,
    tenant: TenantContext = TenantDep,
    queue: JobQueue = JobQueueDep,
) -> dict[str, Any]:
    """Request cancellation; a processing job stops at its next batch."""

    _require_job_type(job_type)
    recorded = await queue.set_cancelled(tenant.tenant_id, job_type)

    logger.info(
        "Job cancellation requested via API",
        extra={
            "tenant_id": tenant.tenant_id,
            "job_type": job_type,
            "recorded": recorded,
        },
    )

    status = await queue.get_status(tenant.tenant_id, job_type)
    return create_success_response(
        data={
            "job_type": job_type,
            "cancel_requested": recorded,
            "status": status.model_dump(mode="json"),
        },
        message="Cancellation requested" if recorded else "Cancellation could not be recorded",
    )
