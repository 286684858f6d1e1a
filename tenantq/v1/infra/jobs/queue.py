"""
Single-worker, per-tenant batch engine.

Jobs from every tenant drain through one in-memory FIFO. The worker runs
one job at a time, splitting its items into small batches that run in
parallel, and persists a status snapshot after every batch so request
handlers can poll progress without touching the worker.
"""

import asyncio
import logging
import math
import time
import uuid
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from tenantq.config.logging import bind_job_context, clear_job_context
from tenantq.config.settings import Settings
from tenantq.v1.core.exceptions import (
    ItemError,
    JobCancelledError,
    JobError,
    QueueNotRunningError,
    RestrictionError,
    ValidationError,
)
from tenantq.v1.core.registries import JobTypeConfig, JobTypeRegistry, job_type_registry
from tenantq.v1.infra.jobs.models import JobStatus
from tenantq.v1.infra.jobs.notifier import CompletionNotifier
from tenantq.v1.infra.jobs.processors import (
    ItemOutcome,
    ItemProcessor,
    ItemResult,
    as_processor,
    describe_item,
)
from tenantq.v1.infra.jobs.schemas import (
    CurrentJobInfo,
    JobProgress,
    JobStatusResponse,
    JobSummary,
    QueuedJobInfo,
    QueueStats,
    SubmitResult,
    TenantRecord,
)
from tenantq.v1.infra.jobs.store import JobStatusStore

logger = logging.getLogger(__name__)

TenantLookup = Callable[[str], Awaitable[TenantRecord | None]]

PHASE_PROCESSING = "processing"
NOTIFY_REASON_LIMIT = 5


@dataclass(eq=False)
class Job:
    """A tenant's batch of items; only the worker mutates it once queued."""

    tenant_id: str
    job_type: str
    items: tuple[Any, ...]
    processor: ItemProcessor
    config: JobTypeConfig
    reason_limit: int = 10
    id: str = ""
    status: JobStatus = JobStatus.QUEUED
    phase: str | None = None
    queued_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    last_error: str | None = None
    attempts: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    remaining: list[Any] = field(init=False)
    skip_reasons: deque[str] = field(init=False)
    fail_reasons: deque[str] = field(init=False)
    started_monotonic: float | None = field(default=None, repr=False)
    admitted: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def __post_init__(self) -> None:
        if not self.id:
            self.id = f"{self.tenant_id}-{self.job_type}-{uuid.uuid4().hex[:12]}"
        self.remaining = list(self.items)
        self.skip_reasons = deque(maxlen=self.reason_limit)
        self.fail_reasons = deque(maxlen=self.reason_limit)

    @property
    def key(self) -> tuple[str, str]:
        return self.tenant_id, self.job_type

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def can_retry(self) -> bool:
        return self.attempts < self.config.max_attempts

    def record(self, item: Any, outcome: ItemOutcome) -> None:
        """Tally one settled item."""
        label = describe_item(item)
        if outcome.result is ItemResult.SUCCESS:
            self.successful += 1
        elif outcome.result is ItemResult.SKIPPED:
            self.skipped += 1
            if outcome.reason:
                self.skip_reasons.append(f"{label}: {outcome.reason}")
        else:
            self.failed += 1
            self.fail_reasons.append(f"{label}: {outcome.reason or 'unknown error'}")
        self.processed += 1

    def counter_fields(self) -> dict[str, int]:
        return {
            "total_items": self.total,
            "processed_items": self.processed,
            "successful_items": self.successful,
            "failed_items": self.failed,
            "skipped_items": self.skipped,
        }


class JobQueue:
    """
    FIFO batch engine with one background worker.

    - At most one job per (tenant, job type) is queued or processing
    - Items run in fixed-size parallel batches, failures isolated per item
    - Cancellation is a durable flag polled before every batch
    - RestrictionError stops the whole job; JobError may requeue it
    - Progress is persisted per batch, never per item
    """

    def __init__(
        self,
        settings: Settings,
        store: JobStatusStore,
        notifier: CompletionNotifier | None = None,
        tenant_lookup: TenantLookup | None = None,
        job_types: JobTypeRegistry = job_type_registry,
    ):
        self.settings = settings
        self.store = store
        self.notifier = notifier
        self.tenant_lookup = tenant_lookup
        self.job_types = job_types
        self.running = False
        self._pending: deque[Job] = deque()
        self._current: Job | None = None
        self._worker: asyncio.Task | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    async def __aenter__(self) -> "JobQueue":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def start(self) -> None:
        """Accept submissions; the worker itself starts on demand."""
        if self.running:
            raise RuntimeError("Job queue is already running")

        self.running = True
        logger.info(
            "Starting job queue",
            extra={
                "batch_size": self.settings.queue_batch_size,
                "batch_delay_ms": self.settings.queue_batch_delay_ms,
                "job_types": self.job_types.list(),
            },
        )

    async def stop(self) -> None:
        """Stop gracefully: finish (or interrupt) the current job, fail the rest."""
        if not self.running:
            return

        logger.info(
            "Stopping job queue",
            extra={
                "queued_jobs": len(self._pending),
                "current_job": self._current.id if self._current else None,
            },
        )
        self.running = False

        worker = self._worker
        if worker is not None and not worker.done():
            try:
                await asyncio.wait_for(
                    asyncio.shield(worker),
                    timeout=self.settings.queue_shutdown_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Job still running at shutdown, interrupting",
                    extra={"job_id": self._current.id if self._current else None},
                )
                worker.cancel()
                await asyncio.gather(worker, return_exceptions=True)

        while self._pending:
            job = self._pending.popleft()
            await job.admitted.wait()
            await self._mark_failed(job, "Failed: queue stopped before the job started")

        self._idle.set()

    async def submit(
        self,
        tenant_id: str,
        items: Iterable[Any],
        job_type: str,
        processor: Any,
    ) -> SubmitResult:
        """
        Queue a job for a tenant.

        Args:
            tenant_id: Tenant (shop) the job belongs to
            items: Work items, processed in order
            job_type: Registered job type name
            processor: ItemProcessor, a single function, or a (generate, apply) pair

        Returns:
            SubmitResult; accepted=False with the existing position when the
            tenant already has this job type queued (1+) or processing (0)
        """
        if not self.running:
            raise QueueNotRunningError("Job queue is not running")
        if job_type not in self.job_types:
            raise ValidationError(
                f"Unknown job type: {job_type}",
                details={"job_type": job_type, "known_types": self.job_types.list()},
            )

        items = tuple(items)
        if not items:
            raise ValidationError(
                "Cannot queue a job without items",
                details={"tenant_id": tenant_id, "job_type": job_type},
            )
        strategy = as_processor(processor)

        existing = self._find_active(tenant_id, job_type)
        if existing is not None:
            job, position = existing
            message = "Job already processing" if position == 0 else "Job already in queue"
            logger.info(
                message,
                extra={
                    "tenant_id": tenant_id,
                    "job_type": job_type,
                    "job_id": job.id,
                    "position": position,
                },
            )
            return SubmitResult(
                accepted=False,
                job_id=job.id,
                queue_position=position,
                total_items=job.total,
                message=message,
            )

        config = self.job_types.get(job_type)
        job = Job(
            tenant_id=tenant_id,
            job_type=job_type,
            items=items,
            processor=strategy,
            config=config,
            reason_limit=self.settings.queue_reason_limit,
        )
        self._pending.append(job)
        self._idle.clear()
        position = len(self._pending)

        logger.info(
            "Job queued",
            extra={
                "tenant_id": tenant_id,
                "job_type": job_type,
                "job_id": job.id,
                "total_items": job.total,
                "position": position,
            },
        )

        self._ensure_worker()
        try:
            await self.store.upsert(
                tenant_id,
                job_type,
                {
                    "job_id": job.id,
                    "in_progress": True,
                    "status": JobStatus.QUEUED,
                    "phase": None,
                    "message": f"Queued ({job.total} {config.item_noun})",
                    "attempts": 0,
                    "queued_at": job.queued_at,
                    "started_at": None,
                    "completed_at": None,
                    "failed_at": None,
                    "last_error": None,
                    "skip_reasons": [],
                    "fail_reasons": [],
                    "progress": None,
                    **job.counter_fields(),
                },
            )
        finally:
            # The worker holds off its own writes until this one has landed
            job.admitted.set()

        return SubmitResult(
            accepted=True,
            job_id=job.id,
            queue_position=position,
            total_items=job.total,
            message="Job queued",
        )

    async def get_status(self, tenant_id: str, job_type: str) -> JobStatusResponse:
        """
        Status for a tenant's job type.

        Live counters when processing, queue position when queued, else the
        last persisted snapshot, else the idle default.
        """
        existing = self._find_active(tenant_id, job_type)
        if existing is not None:
            job, position = existing
            live = job.status is JobStatus.PROCESSING
            return JobStatusResponse(
                in_progress=True,
                status=job.status,
                phase=job.phase,
                message=(
                    self._progress_message(job)
                    if live
                    else f"Queued (position {position})"
                ),
                job_id=job.id,
                attempts=job.attempts,
                queued_at=job.queued_at,
                started_at=job.started_at,
                last_error=job.last_error,
                skip_reasons=list(job.skip_reasons),
                fail_reasons=list(job.fail_reasons),
                progress=self._progress(job) if job.started_at else None,
                position=position,
                **job.counter_fields(),
            )

        snapshot = await self.store.get(tenant_id, job_type)
        return JobStatusResponse(**snapshot.model_dump())

    async def set_cancelled(
        self, tenant_id: str, job_type: str, cancelled: bool = True
    ) -> bool:
        """
        Request (or withdraw) cancellation.

        A job still waiting in the queue is dropped right away. A processing
        job sees the durable flag before its next batch.
        """
        if cancelled:
            for job in list(self._pending):
                if job.key == (tenant_id, job_type):
                    self._pending.remove(job)
                    if not self._pending and self._current is None:
                        self._idle.set()
                    logger.info(
                        "Queued job cancelled",
                        extra={"tenant_id": tenant_id, "job_type": job_type, "job_id": job.id},
                    )
                    await job.admitted.wait()
                    await self._mark_failed(job, "Failed: cancelled", "cancelled")
                    return True

        return await self.store.set_cancelled(tenant_id, job_type, cancelled)

    def get_stats(self) -> QueueStats:
        """Snapshot of the in-memory queue."""
        current = self._current
        return QueueStats(
            running=self.running,
            processing=current is not None,
            queue_length=len(self._pending),
            current_job=(
                CurrentJobInfo(
                    tenant_id=current.tenant_id,
                    job_type=current.job_type,
                    job_id=current.id,
                    queued_at=current.queued_at,
                    attempts=current.attempts,
                    total_items=current.total,
                    status=current.status,
                    started_at=current.started_at,
                    processed_items=current.processed,
                )
                if current
                else None
            ),
            queued_jobs=[
                QueuedJobInfo(
                    tenant_id=job.tenant_id,
                    job_type=job.job_type,
                    job_id=job.id,
                    queued_at=job.queued_at,
                    attempts=job.attempts,
                    total_items=job.total,
                )
                for job in self._pending
            ],
        )

    async def wait_idle(self) -> None:
        """Resolve once nothing is queued or processing."""
        await self._idle.wait()

    def _find_active(self, tenant_id: str, job_type: str) -> tuple[Job, int] | None:
        key = (tenant_id, job_type)
        current = self._current
        # A settled job is read back from the store
        if current is not None and current.key == key and not current.status.is_terminal:
            return current, 0
        for position, job in enumerate(self._pending, start=1):
            if job.key == key:
                return job, position
        return None

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name="tenantq-job-worker")

    async def _drain(self) -> None:
        """Worker loop: pull jobs FIFO until the queue is empty or stopping."""
        logger.info("Starting queue processing")
        try:
            while self._pending and self.running:
                job = self._pending.popleft()
                self._current = job
                try:
                    await self._run_job(job)
                finally:
                    self._current = None
        finally:
            if not self._pending:
                self._idle.set()
        logger.info("Queue processing completed")

    async def _run_job(self, job: Job) -> None:
        try:
            await job.admitted.wait()
        except asyncio.CancelledError:
            # Stopped before the job's own "queued" write landed
            await job.admitted.wait()
            await self._mark_failed(job, "Failed: queue stopped before the job started")
            raise

        bind_job_context(job.id, job.tenant_id, job.job_type)
        try:
            await self._execute(job)
        finally:
            clear_job_context()

    async def _execute(self, job: Job) -> None:
        """Run one job to a terminal state (or back into the queue)."""
        job.status = JobStatus.PROCESSING
        job.phase = PHASE_PROCESSING
        job.attempts += 1
        if job.started_at is None:
            job.started_at = datetime.now(UTC)
            job.started_monotonic = time.monotonic()

        logger.info(
            "Processing job started",
            extra={
                "job_id": job.id,
                "tenant_id": job.tenant_id,
                "total_items": job.total,
                "remaining_items": len(job.remaining),
                "attempt": job.attempts,
                "max_attempts": job.config.max_attempts,
            },
        )

        try:
            try:
                await self.store.clear_cancelled(job.tenant_id, job.job_type)
                await self.store.upsert(
                    job.tenant_id,
                    job.job_type,
                    {
                        "in_progress": True,
                        "status": JobStatus.PROCESSING,
                        "phase": job.phase,
                        "message": self._progress_message(job),
                        "attempts": job.attempts,
                        "started_at": job.started_at,
                        "completed_at": None,
                        "failed_at": None,
                        "progress": self._progress(job),
                        **job.counter_fields(),
                    },
                )
                await self._process_batches(job)
                await self._complete(job)
            except JobError as e:
                await self._handle_job_error(job, e)
            except Exception as e:
                logger.exception(
                    "Job processing failed", extra={"job_id": job.id, "error": str(e)}
                )
                await self._handle_job_error(job, JobError(str(e) or e.__class__.__name__))
        except asyncio.CancelledError:
            # job.status turns terminal only once the terminal write has landed
            if not job.status.is_terminal:
                if job in self._pending:
                    self._pending.remove(job)
                await self._mark_failed(job, "Failed: worker stopped", "worker stopped")
            raise

    async def _process_batches(self, job: Job) -> None:
        batch_size = job.config.batch_size or self.settings.queue_batch_size
        delay_ms = (
            job.config.batch_delay_ms
            if job.config.batch_delay_ms is not None
            else self.settings.queue_batch_delay_ms
        )

        while job.remaining:
            if await self.store.is_cancelled(job.tenant_id, job.job_type):
                logger.info(
                    "Job cancelled",
                    extra={"job_id": job.id, "processed_items": job.processed},
                )
                raise JobCancelledError()

            batch = job.remaining[:batch_size]
            results = await asyncio.gather(
                *(self._run_item(job, item) for item in batch),
                return_exceptions=True,
            )

            # A restriction or cancellation outranks a retryable error
            halt: JobError | None = None
            for result in results:
                if isinstance(result, JobError) and (
                    halt is None or (halt.retryable and not result.retryable)
                ):
                    halt = result
            retry_later = halt is not None and halt.retryable and job.can_retry

            unsettled = []
            for item, result in zip(batch, results):
                if isinstance(result, JobError):
                    if retry_later:
                        # Runs again on the next attempt
                        unsettled.append(item)
                        continue
                    job.record(item, ItemOutcome.failed(result.message))
                elif isinstance(result, BaseException):
                    job.record(item, ItemOutcome.failed(str(result) or result.__class__.__name__))
                else:
                    job.record(item, result)
            job.remaining = unsettled + job.remaining[len(batch):]

            await self.store.upsert(
                job.tenant_id,
                job.job_type,
                {
                    "in_progress": True,
                    "status": JobStatus.PROCESSING,
                    "phase": job.phase,
                    "message": self._progress_message(job),
                    "progress": self._progress(job),
                    **job.counter_fields(),
                },
            )

            if halt is not None:
                raise halt

            if job.remaining and delay_ms:
                await asyncio.sleep(delay_ms / 1000)

    async def _run_item(self, job: Job, item: Any) -> ItemOutcome:
        """One item; everything except job-level errors becomes an outcome."""
        try:
            return await job.processor.process(item)
        except JobError:
            raise
        except ItemError as e:
            logger.warning(
                "Item rejected",
                extra={"job_id": job.id, "item": describe_item(item), "error": e.message},
            )
            return ItemOutcome.failed(e.message)
        except Exception as e:
            reason = str(e) or e.__class__.__name__
            logger.error(
                "Item failed",
                extra={"job_id": job.id, "item": describe_item(item), "error": reason},
            )
            return ItemOutcome.failed(reason)

    async def _handle_job_error(self, job: Job, error: JobError) -> None:
        if isinstance(error, RestrictionError):
            logger.warning(
                "Job stopped by restriction",
                extra={"job_id": job.id, "error": error.message},
            )
            await self._mark_failed(job, error.message, error.message)
            return

        if error.retryable and job.can_retry and self.running:
            job.status = JobStatus.QUEUED
            job.phase = None
            job.last_error = error.message
            self._pending.append(job)
            logger.warning(
                "Retrying job",
                extra={
                    "job_id": job.id,
                    "attempt": job.attempts + 1,
                    "max_attempts": job.config.max_attempts,
                    "error": error.message,
                },
            )
            await self.store.upsert(
                job.tenant_id,
                job.job_type,
                {
                    "in_progress": True,
                    "status": JobStatus.QUEUED,
                    "phase": None,
                    "message": f"Retrying (attempt {job.attempts + 1}/{job.config.max_attempts})",
                    "last_error": error.message,
                    "completed_at": None,
                    "failed_at": None,
                    **job.counter_fields(),
                },
            )
            return

        await self._mark_failed(job, f"Failed: {error.message}", error.message)

    async def _mark_failed(self, job: Job, message: str, error: str | None = None) -> None:
        """Persist the terminal failed state."""
        job.phase = None
        job.failed_at = datetime.now(UTC)
        job.last_error = error or message

        logger.error(
            "Job failed",
            extra={
                "job_id": job.id,
                "tenant_id": job.tenant_id,
                "job_type": job.job_type,
                "error": job.last_error,
                "processed_items": job.processed,
                "total_items": job.total,
            },
        )

        await self.store.upsert(
            job.tenant_id,
            job.job_type,
            {
                "in_progress": False,
                "status": JobStatus.FAILED,
                "phase": None,
                "message": message,
                "last_error": job.last_error,
                "failed_at": job.failed_at,
                "completed_at": None,
                "skip_reasons": list(job.skip_reasons),
                "fail_reasons": list(job.fail_reasons),
                **job.counter_fields(),
            },
        )
        job.status = JobStatus.FAILED

    async def _complete(self, job: Job) -> None:
        """Persist the terminal completed state and notify on long jobs."""
        job.phase = None
        job.completed_at = datetime.now(UTC)
        duration = self._elapsed(job)

        logger.info(
            "Job completed",
            extra={
                "job_id": job.id,
                "tenant_id": job.tenant_id,
                "duration": round(duration, 2),
                "successful": job.successful,
                "failed": job.failed,
                "skipped": job.skipped,
                "avg_per_item": round(duration / job.total, 2),
            },
        )

        await self.store.upsert(
            job.tenant_id,
            job.job_type,
            {
                "in_progress": False,
                "status": JobStatus.COMPLETED,
                "phase": None,
                "message": self._summary_message(job, duration),
                "completed_at": job.completed_at,
                "failed_at": None,
                "last_error": None,
                "skip_reasons": list(job.skip_reasons),
                "fail_reasons": list(job.fail_reasons),
                "progress": self._progress(job),
                **job.counter_fields(),
            },
        )
        job.status = JobStatus.COMPLETED

        if duration > self.settings.queue_notify_threshold_seconds:
            await self._notify(job, duration)

    async def _notify(self, job: Job, duration: float) -> None:
        """Best-effort completion notice; never fails the job."""
        if self.notifier is None:
            return

        try:
            tenant = None
            if self.tenant_lookup is not None:
                tenant = await self.tenant_lookup(job.tenant_id)
            tenant = tenant or TenantRecord(tenant_id=job.tenant_id)

            await self.notifier.notify(
                tenant,
                JobSummary(
                    job_id=job.id,
                    job_type=job.job_type,
                    display_name=job.config.display_name,
                    item_noun=job.config.item_noun,
                    successful=job.successful,
                    failed=job.failed,
                    skipped=job.skipped,
                    duration_seconds=round(duration, 1),
                    fail_reasons=list(job.fail_reasons)[-NOTIFY_REASON_LIMIT:],
                    skip_reasons=list(job.skip_reasons)[-NOTIFY_REASON_LIMIT:],
                ),
            )
        except Exception as e:
            logger.error(
                "Failed to send completion notification",
                extra={"job_id": job.id, "tenant_id": job.tenant_id, "error": str(e)},
            )

    def _elapsed(self, job: Job) -> float:
        if job.started_monotonic is None:
            return 0.0
        return time.monotonic() - job.started_monotonic

    def _progress(self, job: Job) -> JobProgress:
        """Extrapolate remaining time from the average so far."""
        elapsed = self._elapsed(job)
        if job.processed:
            per_item = elapsed / job.processed
        else:
            per_item = job.config.seconds_per_item or self.settings.queue_default_seconds_per_item
        return JobProgress(
            current=job.processed,
            total=job.total,
            percent=round(job.processed / job.total * 100) if job.total else 100,
            elapsed_seconds=int(elapsed),
            remaining_seconds=math.ceil((job.total - job.processed) * per_item),
            started_at=job.started_at or job.queued_at,
        )

    @staticmethod
    def _progress_message(job: Job) -> str:
        return (
            f"{job.config.progress_verb} {job.processed}/{job.total} "
            f"{job.config.item_noun}"
        )

    @staticmethod
    def _summary_message(job: Job, duration: float) -> str:
        message = f"Completed: {job.successful} {job.config.success_verb}"
        if job.skipped:
            message += f", {job.skipped} skipped"
        if job.failed:
            message += f", {job.failed} failed"
        return f"{message} in {duration:.1f}s"
