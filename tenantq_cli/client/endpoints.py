"""API Endpoint Wrappers - Typed API calls"""

from typing import Any

import httpx

from .base import (
    APIClient,
    APIConnectionError,
    ServiceNotRunningError,
    TenantQError,
    TenantRequiredError,
    UnknownJobTypeError,
)
from ..utils.config_manager import config

__all__ = [
    "APIConnectionError",
    "ServiceNotRunningError",
    "TenantQClient",
    "TenantQError",
    "TenantRequiredError",
    "UnknownJobTypeError",
]


class TenantQClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        tenant_id: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        headers: dict[str, str] = {}
        tenant = tenant_id or api_config.get("tenant_id")
        if tenant:
            headers["X-Tenant-ID"] = tenant

        self.api = APIClient(
            base_url=base_url or api_config.get("base_url", "http://localhost:8000"),
            timeout=api_config.get("timeout", 30),
            headers=headers,
            transport=transport,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/healthz")

    # Jobs Endpoints
    def get_job_status(self, job_type: str) -> dict[str, Any]:
        """Status of the tenant's job of this type"""
        return self.api.get(f"/jobs/{job_type}/status")

    def cancel_job(self, job_type: str) -> dict[str, Any]:
        """Request cancellation of the tenant's job of this type"""
        return self.api.post(f"/jobs/{job_type}/cancel")

    def get_queue_stats(self) -> dict[str, Any]:
        """Queue length, current job and queued jobs"""
        return self.api.get("/jobs/stats")

    # Dispatcher Endpoints
    def get_dispatcher_stats(self) -> dict[str, Any]:
        """Dispatcher counters and lane state"""
        return self.api.get("/dispatcher/stats")
