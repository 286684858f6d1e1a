from datetime import UTC, datetime

from fastapi import APIRouter, Request
from pydantic import BaseModel

from tenantq.config.settings import Settings, SettingsDep, StatusBackendType
from tenantq.infra.database import Database
from tenantq.v1.core.exceptions import create_success_response

router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    enabled: bool
    connected: bool | None = None
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Job queue health status."""

    running: bool
    processing: bool = False
    queue_length: int = 0


class DispatcherHealth(BaseModel):
    """Dispatcher health status."""

    running: bool
    queued: int = 0
    in_flight: int = 0


@router.get("/healthz", response_model=dict)
async def health_check(request: Request, settings: Settings = SettingsDep):
    """Health check with database, queue and dispatcher status."""

    timestamp = datetime.now(UTC).isoformat()
    overall_ok = True

    # Only the database backend needs a round-trip
    db_health = DatabaseHealth(enabled=False)
    if settings.status_backend == StatusBackendType.DATABASE:
        db_health = await _check_database_health(
            getattr(request.app.state, "database", None)
        )
        if not db_health.connected:
            overall_ok = False

    queue_health = _check_queue_health(request)
    dispatcher_health = _check_dispatcher_health(request)
    if not queue_health.running or not dispatcher_health.running:
        overall_ok = False

    health_data = {
        "ok": overall_ok,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": timestamp,
        "status_backend": settings.status_backend.value,
        "database": db_health.model_dump(),
        "queue": queue_health.model_dump(),
        "dispatcher": dispatcher_health.model_dump(),
    }

    return create_success_response(data=health_data)


async def _check_database_health(database: Database | None) -> DatabaseHealth:
    """Check database connectivity and response time."""
    if database is None:
        return DatabaseHealth(enabled=True, connected=False, error="Database not initialized")

    start_time = datetime.now(UTC)
    try:
        await database.ping()

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            enabled=True, connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        return DatabaseHealth(enabled=True, connected=False, error=str(e))


def _check_queue_health(request: Request) -> QueueHealth:
    queue = getattr(request.app.state, "job_queue", None)
    if queue is None:
        return QueueHealth(running=False)

    stats = queue.get_stats()
    return QueueHealth(
        running=stats.running,
        processing=stats.processing,
        queue_length=stats.queue_length,
    )


def _check_dispatcher_health(request: Request) -> DispatcherHealth:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        return DispatcherHealth(running=False)

    stats = dispatcher.get_stats()
    return DispatcherHealth(
        running=stats.running,
        queued=sum(lane.queued for lane in stats.lanes.values()),
        in_flight=sum(lane.in_flight for lane in stats.lanes.values()),
    )
