from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from tenantq.config.logging import get_logger, setup_logging
from tenantq.config.settings import Settings, StatusBackendType, get_settings, settings
from tenantq.infra.database import Database
from tenantq.v1.core.exceptions import (
    RequestContextMiddleware,
    TenantQException,
    general_exception_handler,
    http_exception_handler,
    tenantq_exception_handler,
)
from tenantq.v1.core.registries import job_type_registry
from tenantq.v1.healthz import router as health_router
from tenantq.v1.infra.dispatch.dispatcher import RateLimitedDispatcher
from tenantq.v1.infra.dispatch.routes import router as dispatcher_router
from tenantq.v1.infra.jobs import registry_init  # noqa: F401  registers job types
from tenantq.v1.infra.jobs.notifier import build_notifier
from tenantq.v1.infra.jobs.queue import JobQueue
from tenantq.v1.infra.jobs.routes import router as jobs_router
from tenantq.v1.infra.jobs.store import (
    InMemoryStatusBackend,
    JobStatusStore,
    SqlStatusBackend,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the status store, dispatcher and job queue for the app's lifetime."""
    app_settings: Settings = app.state.settings

    database = None
    if app_settings.status_backend == StatusBackendType.DATABASE:
        database = Database(app_settings)
        backend = SqlStatusBackend(database.SessionLocal)
    else:
        backend = InMemoryStatusBackend()

    store = JobStatusStore(backend)
    dispatcher = RateLimitedDispatcher.from_settings(app_settings)
    job_queue = JobQueue(app_settings, store, notifier=build_notifier(app_settings))

    app.state.database = database
    app.state.status_store = store
    app.state.dispatcher = dispatcher
    app.state.job_queue = job_queue

    await dispatcher.start()
    await job_queue.start()
    logger.info(
        "Application started",
        status_backend=app_settings.status_backend.value,
        job_types=job_type_registry.list(),
    )

    try:
        yield
    finally:
        # Jobs call through the dispatcher, so the queue goes first
        await job_queue.stop()
        await dispatcher.stop()
        if database is not None:
            await database.close()
        logger.info("Application stopped")


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app_settings = app_settings or settings

    # Initialize structured logging
    setup_logging()

    # Create FastAPI app with API versioning from day 1
    app = FastAPI(
        title=app_settings.app_name,
        description="Per-tenant batch job engine with a rate-limited dispatcher",
        version=app_settings.version,
        debug=app_settings.debug,
        lifespan=lifespan,
        # All endpoints will be under /v1/ prefix
        openapi_url="/v1/openapi.json" if app_settings.debug else None,
        docs_url="/v1/docs" if app_settings.debug else None,
        redoc_url="/v1/redoc" if app_settings.debug else None,
    )
    app.state.settings = app_settings
    app.dependency_overrides[get_settings] = lambda: app_settings

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if app_settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(TenantQException, tenantq_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")
    app.include_router(dispatcher_router, prefix="/v1")

    # Freeze registries in non-development environments to prevent runtime modifications
    if app_settings.environment != "development":
        job_type_registry.freeze()

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tenantq.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
