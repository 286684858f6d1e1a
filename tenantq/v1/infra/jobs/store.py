"""
Job status persistence.

``JobStatusStore`` is what the queue and the HTTP layer talk to. It sits on
top of a narrow ``StatusBackend`` (``upsert(key, fields)`` / ``get(key)``)
and never lets a backend failure escape: writes are logged and dropped,
reads fall back to the idle snapshot. Status is eventually consistent and
must never block job progress.
"""

import logging
from datetime import UTC, datetime
from typing import Any, Protocol

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantq.v1.core.exceptions import PersistenceError
from tenantq.v1.infra.jobs.models import JobStatusRecord
from tenantq.v1.infra.jobs.schemas import (
    SNAPSHOT_FIELDS,
    JobProgress,
    JobStatusSnapshot,
)

logger = logging.getLogger(__name__)

StatusKey = tuple[str, str]


class StatusBackend(Protocol):
    """Durable key-value contract the store depends on."""

    async def upsert(self, key: StatusKey, fields: dict[str, Any]) -> None:
        """Merge fields into the record for key, creating it if missing."""
        ...

    async def get(self, key: StatusKey) -> dict[str, Any] | None:
        """Return the stored fields for key, or None."""
        ...


class InMemoryStatusBackend:
    """Process-local backend; the default for development and tests."""

    def __init__(self) -> None:
        self._records: dict[StatusKey, dict[str, Any]] = {}

    async def upsert(self, key: StatusKey, fields: dict[str, Any]) -> None:
        record = self._records.setdefault(key, {})
        record.update(fields)

    async def get(self, key: StatusKey) -> dict[str, Any] | None:
        record = self._records.get(key)
        return dict(record) if record is not None else None


class SqlStatusBackend:
    """SQLAlchemy backend writing to the ``job_status`` table.

    Upserts are an UPDATE of just the given columns followed, when no row
    matched, by an INSERT. No prior read is needed since only the worker
    ever advances a given job.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def upsert(self, key: StatusKey, fields: dict[str, Any]) -> None:
        tenant_id, job_type = key
        try:
            async with self.session_factory() as session:
                if await self._update(session, tenant_id, job_type, fields):
                    return
                session.add(
                    JobStatusRecord(tenant_id=tenant_id, job_type=job_type, **fields)
                )
                try:
                    await session.commit()
                except IntegrityError:
                    # Another writer inserted the row first
                    await session.rollback()
                    await self._update(session, tenant_id, job_type, fields)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to write job status: {e}",
                details={"tenant_id": tenant_id, "job_type": job_type},
            ) from e

    async def _update(
        self,
        session: AsyncSession,
        tenant_id: str,
        job_type: str,
        fields: dict[str, Any],
    ) -> bool:
        result = await session.execute(
            update(JobStatusRecord)
            .where(
                JobStatusRecord.tenant_id == tenant_id,
                JobStatusRecord.job_type == job_type,
            )
            .values(**fields)
        )
        await session.commit()
        return result.rowcount > 0

    async def get(self, key: StatusKey) -> dict[str, Any] | None:
        tenant_id, job_type = key
        try:
            async with self.session_factory() as session:
                record = await session.get(JobStatusRecord, (tenant_id, job_type))
                return record.to_dict() if record is not None else None
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to read job status: {e}",
                details={"tenant_id": tenant_id, "job_type": job_type},
            ) from e


class JobStatusStore:
    """Per-tenant job status snapshots with swallow-and-log error handling."""

    def __init__(self, backend: StatusBackend):
        self.backend = backend

    async def upsert(self, tenant_id: str, job_type: str, fields: dict[str, Any]) -> bool:
        """
        Merge fields into the (tenant_id, job_type) snapshot.

        Returns False when the write was lost; callers carry on regardless.
        """
        normalized = self._normalize(fields)
        normalized["updated_at"] = datetime.now(UTC)

        try:
            await self.backend.upsert((tenant_id, job_type), normalized)
            return True
        except Exception as e:
            logger.error(
                "Failed to persist job status",
                extra={
                    "tenant_id": tenant_id,
                    "job_type": job_type,
                    "fields": sorted(normalized),
                    "error": str(e),
                },
            )
            return False

    async def get(self, tenant_id: str, job_type: str) -> JobStatusSnapshot:
        """Latest snapshot, or the idle zero value."""
        try:
            data = await self.backend.get((tenant_id, job_type))
        except Exception as e:
            logger.error(
                "Failed to read job status",
                extra={"tenant_id": tenant_id, "job_type": job_type, "error": str(e)},
            )
            return JobStatusSnapshot()

        if not data:
            return JobStatusSnapshot()
        return JobStatusSnapshot.model_validate(
            {k: v for k, v in data.items() if k in SNAPSHOT_FIELDS and v is not None}
        )

    async def is_cancelled(self, tenant_id: str, job_type: str) -> bool:
        snapshot = await self.get(tenant_id, job_type)
        return snapshot.cancelled

    async def set_cancelled(
        self, tenant_id: str, job_type: str, cancelled: bool = True
    ) -> bool:
        return await self.upsert(tenant_id, job_type, {"cancelled": cancelled})

    async def clear_cancelled(self, tenant_id: str, job_type: str) -> bool:
        """Reset a stale flag left over from an earlier job."""
        return await self.set_cancelled(tenant_id, job_type, False)

    @staticmethod
    def _normalize(fields: dict[str, Any]) -> dict[str, Any]:
        unknown = set(fields) - SNAPSHOT_FIELDS
        if unknown:
            raise ValueError(f"Unknown job status fields: {sorted(unknown)}")

        normalized = dict(fields)
        if normalized.get("status") is not None:
            normalized["status"] = getattr(normalized["status"], "value", normalized["status"])
        if normalized.get("progress") is not None:
            normalized["progress"] = JobProgress.model_validate(
                normalized["progress"]
            ).model_dump(mode="json")
        for reasons in ("skip_reasons", "fail_reasons"):
            if reasons in normalized:
                normalized[reasons] = list(normalized[reasons] or [])
        return normalized
