"""Base HTTP Client for the TenantQ API"""

from typing import Any

import httpx


class TenantQError(Exception):
    """Base exception for TenantQ API errors"""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class APIConnectionError(TenantQError):
    """The API could not be reached at all"""


class UnknownJobTypeError(TenantQError):
    """404 for a job type the server has not registered"""

    @property
    def known_types(self) -> list[str]:
        return list(self.details.get("known_types") or [])


class ServiceNotRunningError(TenantQError):
    """503 while the job queue or dispatcher is not running"""


class TenantRequiredError(TenantQError):
    """400 when the server is in dev auth mode and no tenant was sent"""


ERRORS_BY_STATUS: dict[int, type[TenantQError]] = {
    400: TenantRequiredError,
    404: UnknownJobTypeError,
    503: ServiceNotRunningError,
}


class APIClient:
    """HTTP client for the TenantQ API; unwraps the ``{ok, data, error}`` envelope"""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: int = 30,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(
            base_url=f"{self.base_url}/v1",
            timeout=timeout,
            headers=headers or {},
            transport=transport,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.client.close()

    def request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Send a request and return the envelope's ``data``"""
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            raise APIConnectionError(f"Connection failed: {e}") from None
        return self._unwrap(response)

    def get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.request("POST", path, json=json)

    @staticmethod
    def _unwrap(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            raise TenantQError(
                f"Invalid JSON response: {response.status_code}",
                status_code=response.status_code,
            ) from None

        if response.status_code >= 400 or body.get("ok") is False:
            error = body.get("error") or {}
            error_type = ERRORS_BY_STATUS.get(response.status_code, TenantQError)
            raise error_type(
                error.get("message", "Unknown error"),
                status_code=response.status_code,
                details=error.get("details"),
            )

        return body.get("data", {})
