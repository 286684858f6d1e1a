"""
Pydantic schemas for dispatcher statistics.
"""

from pydantic import BaseModel, Field


class LaneStats(BaseModel):
    """Live view of one lane."""

    lane: str
    concurrency: int
    rate: int
    interval_seconds: float
    timeout_seconds: float
    queued: int = Field(..., ge=0, description="Tasks waiting for a slot")
    in_flight: int = Field(..., ge=0, description="Tasks currently running")


class DispatcherStats(BaseModel):
    """Aggregate counters across all lanes."""

    running: bool
    total: int = Field(..., description="Tasks that started running")
    successful: int
    failed: int
    timed_out: int
    discarded: int
    total_units: int = Field(..., description="Sum of usage.total_tokens from results")
    success_rate: float | None = Field(
        default=None, description="Percent of started tasks that succeeded"
    )
    avg_units_per_call: float | None = None
    uptime_seconds: float
    lanes: dict[str, LaneStats]
