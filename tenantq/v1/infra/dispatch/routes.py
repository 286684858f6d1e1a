"""
Dispatcher statistics endpoint.
"""

from typing import Any

from fastapi import APIRouter, Depends, Request

from tenantq.v1.core.exceptions import QueueNotRunningError, create_success_response
from tenantq.v1.infra.dispatch.dispatcher import RateLimitedDispatcher

router = APIRouter(prefix="/dispatcher", tags=["dispatcher"])


def get_dispatcher(request: Request) -> RateLimitedDispatcher:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise QueueNotRunningError("Dispatcher is not available")
    return dispatcher


DispatcherDep = Depends(get_dispatcher)


@router.get("/stats", response_model=dict)
async def get_dispatcher_stats(
    dispatcher: RateLimitedDispatcher = DispatcherDep,
) -> dict[str, Any]:
    """Call counters, consumed units and per-lane queue depth."""

    return create_success_response(data=dispatcher.get_stats().model_dump())
