import asyncio
from collections.abc import AsyncGenerator, Generator

import pytest
from fastapi.testclient import TestClient

from tenantq.config.settings import Settings, StatusBackendType
from tenantq.main import create_app
from tenantq.v1.core.registries import JobTypeConfig, JobTypeRegistry
from tenantq.v1.infra.dispatch.dispatcher import RateLimitedDispatcher
from tenantq.v1.infra.jobs import registry_init
from tenantq.v1.infra.jobs.queue import JobQueue
from tenantq.v1.infra.jobs.schemas import JobSummary, TenantRecord
from tenantq.v1.infra.jobs.store import InMemoryStatusBackend, JobStatusStore


def make_settings(**overrides) -> Settings:
    """Settings isolated from any local .env file."""
    values = {
        "status_backend": StatusBackendType.MEMORY,
        "queue_batch_delay_ms": 0,
        "queue_shutdown_timeout_seconds": 1.0,
        "dispatch_shutdown_timeout_seconds": 1.0,
        "notifier_webhook_url": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class RecordingNotifier:
    """Notifier double that remembers what it was told."""

    def __init__(self, error: Exception | None = None):
        self.calls: list[tuple[TenantRecord, JobSummary]] = []
        self.error = error

    async def notify(self, tenant: TenantRecord, summary: JobSummary) -> None:
        self.calls.append((tenant, summary))
        if self.error is not None:
            raise self.error


async def wait_for_status(queue: JobQueue, tenant_id: str, job_type: str, status: str):
    """Poll until the job reaches a status (the worker runs concurrently)."""
    for _ in range(200):
        current = await queue.get_status(tenant_id, job_type)
        if current.status == status:
            return current
        await asyncio.sleep(0.01)
    raise AssertionError(f"{tenant_id}/{job_type} never reached {status}")


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture
def job_types() -> JobTypeRegistry:
    """Built-in job types plus test-only ones."""
    registry = JobTypeRegistry()
    for config in registry_init.BUILTIN_JOB_TYPES:
        registry.add(config)
    registry.add(
        JobTypeConfig(
            name="flaky",
            display_name="Flaky Upstream",
            batch_size=1,
            max_attempts=2,
        )
    )
    registry.add(
        JobTypeConfig(
            name="pairedRetry",
            display_name="Paired Retry",
            batch_size=2,
            max_attempts=2,
        )
    )
    return registry


@pytest.fixture
def backend() -> InMemoryStatusBackend:
    return InMemoryStatusBackend()


@pytest.fixture
def store(backend) -> JobStatusStore:
    return JobStatusStore(backend)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
async def queue(test_settings, store, job_types) -> AsyncGenerator[JobQueue, None]:
    """A started queue, stopped after the test."""
    job_queue = JobQueue(test_settings, store, job_types=job_types)
    await job_queue.start()
    yield job_queue
    await job_queue.stop()


@pytest.fixture
async def dispatcher() -> AsyncGenerator[RateLimitedDispatcher, None]:
    """A started dispatcher with default lanes."""
    instance = RateLimitedDispatcher(shutdown_timeout=1.0)
    await instance.start()
    yield instance
    await instance.stop()


@pytest.fixture
def app(test_settings):
    """Create a test FastAPI application with the in-memory status backend."""
    return create_app(test_settings)


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Create a test client; entering it runs the lifespan."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def tenant_headers() -> dict[str, str]:
    return {"X-Tenant-ID": "acme.myshopify.com"}
