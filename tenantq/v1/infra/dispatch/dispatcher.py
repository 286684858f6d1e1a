"""
Multi-lane, rate-limited dispatcher for calls to the generation service.

Each lane bounds how many tasks run at once, how many may start per rate
window (a pyrate-limiter sliding window) and how long a task may run.
Waiters are served strictly FIFO within a lane; lanes never share slots,
so a flood of bulk work cannot starve interactive calls.
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from pyrate_limiter import Duration, Limiter, Rate

from tenantq.config.settings import Settings
from tenantq.v1.core.exceptions import (
    DispatchTimeoutError,
    QueueNotRunningError,
    TaskDiscardedError,
    ValidationError,
)
from tenantq.v1.infra.dispatch.schemas import DispatcherStats, LaneStats

logger = logging.getLogger(__name__)

T = TypeVar("T")

# How soon a lane refused by its rate window looks again
RATE_RETRY_SECONDS = 0.05


class Lane(str, Enum):
    INTERACTIVE = "interactive"
    NORMAL = "normal"
    BULK = "bulk"


@dataclass(frozen=True)
class LaneConfig:
    concurrency: int
    rate: int
    interval_seconds: float = 1.0
    timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got: {self.concurrency}")
        if self.rate < 1:
            raise ValueError(f"rate must be >= 1, got: {self.rate}")
        if self.interval_seconds <= 0 or self.timeout_seconds <= 0:
            raise ValueError("interval_seconds and timeout_seconds must be positive")


DEFAULT_LANES = {
    Lane.INTERACTIVE: LaneConfig(concurrency=3, rate=10, timeout_seconds=30.0),
    Lane.NORMAL: LaneConfig(concurrency=2, rate=8, timeout_seconds=30.0),
    Lane.BULK: LaneConfig(concurrency=1, rate=5, timeout_seconds=60.0),
}


def lane_configs_from_settings(settings: Settings) -> dict[Lane, LaneConfig]:
    """Build lane parameters from DISPATCH_* settings."""
    return {
        lane: LaneConfig(
            concurrency=getattr(settings, f"dispatch_{lane.value}_concurrency"),
            rate=getattr(settings, f"dispatch_{lane.value}_rate"),
            interval_seconds=settings.dispatch_interval_seconds,
            timeout_seconds=getattr(settings, f"dispatch_{lane.value}_timeout_seconds"),
        )
        for lane in Lane
    }


def extract_units(result: Any) -> int:
    """Units consumed by a call: ``usage.total_tokens`` as attribute or key."""
    if isinstance(result, Mapping):
        usage = result.get("usage")
    else:
        usage = getattr(result, "usage", None)
    if usage is None:
        return 0

    if isinstance(usage, Mapping):
        tokens = usage.get("total_tokens")
    else:
        tokens = getattr(usage, "total_tokens", None)
    return tokens if isinstance(tokens, int) else 0


class DispatchLane:
    """FIFO waiters gated by a concurrency count and a rate window."""

    def __init__(self, lane: Lane, config: LaneConfig):
        self.lane = lane
        self.config = config
        self.limiter = Limiter(
            [Rate(config.rate, int(config.interval_seconds * int(Duration.SECOND)))],
            raise_when_fail=False,
        )
        self.waiters: deque[asyncio.Future] = deque()
        self.active = 0
        self._retry_handle: asyncio.TimerHandle | None = None

    @property
    def queued(self) -> int:
        return sum(1 for waiter in self.waiters if not waiter.done())

    async def acquire(self) -> None:
        """Wait for this caller's turn: a free slot and a rate token."""
        future = asyncio.get_running_loop().create_future()
        self.waiters.append(future)
        self.wake()
        try:
            await future
        except asyncio.CancelledError:
            if future.done() and not future.cancelled() and future.exception() is None:
                # Granted a slot but never got to use it
                self.release()
            raise

    def release(self) -> None:
        self.active -= 1
        self.wake()

    def wake(self) -> None:
        """Hand out slots to waiters at the head of the line."""
        while self.waiters and self.active < self.config.concurrency:
            future = self.waiters[0]
            if future.done():
                self.waiters.popleft()
                continue
            if not self.limiter.try_acquire(self.lane.value):
                self._schedule_retry()
                return
            self.waiters.popleft()
            self.active += 1
            future.set_result(None)

    def discard(self) -> int:
        """Fail every waiter that has not started; returns how many."""
        discarded = 0
        while self.waiters:
            future = self.waiters.popleft()
            if not future.done():
                future.set_exception(
                    TaskDiscardedError(
                        "Task discarded before it started", {"lane": self.lane.value}
                    )
                )
                discarded += 1
        return discarded

    def stats(self) -> LaneStats:
        return LaneStats(
            lane=self.lane.value,
            concurrency=self.config.concurrency,
            rate=self.config.rate,
            interval_seconds=self.config.interval_seconds,
            timeout_seconds=self.config.timeout_seconds,
            queued=self.queued,
            in_flight=self.active,
        )

    def _schedule_retry(self) -> None:
        if self._retry_handle is None:
            loop = asyncio.get_running_loop()
            self._retry_handle = loop.call_later(RATE_RETRY_SECONDS, self._retry)

    def _retry(self) -> None:
        self._retry_handle = None
        self.wake()

    def close(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None


class RateLimitedDispatcher:
    """
    Gatekeeper for outbound calls.

    - ``submit(task, lane)`` runs ``task()`` once a lane slot and a rate
      token are free, under the lane timeout; never retries
    - ``drain()`` waits for every lane to empty
    - ``clear()`` discards tasks that have not started yet
    """

    def __init__(
        self,
        lanes: dict[Lane, LaneConfig] | None = None,
        shutdown_timeout: float = 30.0,
    ):
        configs = {**DEFAULT_LANES, **(lanes or {})}
        self.lanes = {lane: DispatchLane(lane, config) for lane, config in configs.items()}
        self.shutdown_timeout = shutdown_timeout
        self.running = False
        self._started_at: float | None = None
        self._pending = 0
        self._idle = asyncio.Event()
        self._idle.set()

        self._total = 0
        self._successful = 0
        self._failed = 0
        self._timed_out = 0
        self._discarded = 0
        self._units = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimitedDispatcher":
        return cls(
            lanes=lane_configs_from_settings(settings),
            shutdown_timeout=settings.dispatch_shutdown_timeout_seconds,
        )

    async def __aenter__(self) -> "RateLimitedDispatcher":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def start(self) -> None:
        if self.running:
            raise RuntimeError("Dispatcher is already running")

        self.running = True
        self._started_at = time.monotonic()
        logger.info(
            "Starting dispatcher",
            extra={
                "lanes": {
                    lane.value: {
                        "concurrency": dl.config.concurrency,
                        "rate": dl.config.rate,
                        "timeout_seconds": dl.config.timeout_seconds,
                    }
                    for lane, dl in self.lanes.items()
                }
            },
        )

    async def stop(self) -> None:
        """Stop accepting work, drain within the shutdown timeout, then clear."""
        if not self.running:
            return

        self.running = False
        logger.info("Stopping dispatcher", extra={"pending": self._pending})
        try:
            await asyncio.wait_for(self.drain(), timeout=self.shutdown_timeout)
        except asyncio.TimeoutError:
            discarded = self.clear()
            logger.warning(
                "Dispatcher drain timed out", extra={"discarded": discarded}
            )

        for dispatch_lane in self.lanes.values():
            dispatch_lane.close()

    async def submit(
        self,
        task: Callable[[], Awaitable[T]],
        lane: Lane | str = Lane.NORMAL,
    ) -> T:
        """
        Run a task through a lane.

        Args:
            task: Zero-argument callable returning an awaitable
            lane: Lane name or Lane

        Returns:
            Whatever the task returned

        Raises:
            DispatchTimeoutError: Task ran past the lane timeout
            TaskDiscardedError: clear() dropped the task before it started
        """
        if not self.running:
            raise QueueNotRunningError("Dispatcher is not running")
        if not callable(task):
            raise TypeError("Dispatcher tasks must be zero-argument callables")
        dispatch_lane = self._get_lane(lane)

        self._pending += 1
        self._idle.clear()
        try:
            await dispatch_lane.acquire()
            try:
                return await self._run(dispatch_lane, task)
            finally:
                dispatch_lane.release()
        finally:
            self._pending -= 1
            if self._pending == 0:
                self._idle.set()

    async def _run(self, dispatch_lane: DispatchLane, task: Callable[[], Awaitable[T]]) -> T:
        self._total += 1
        timeout = dispatch_lane.config.timeout_seconds
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(task(), timeout=timeout)
        except asyncio.TimeoutError:
            self._timed_out += 1
            logger.warning(
                "Dispatched task timed out",
                extra={"lane": dispatch_lane.lane.value, "timeout_seconds": timeout},
            )
            raise DispatchTimeoutError(
                f"Task timed out after {timeout}s",
                {"lane": dispatch_lane.lane.value, "timeout_seconds": timeout},
            ) from None
        except Exception as e:
            self._failed += 1
            logger.warning(
                "Dispatched task failed",
                extra={"lane": dispatch_lane.lane.value, "error": str(e)},
            )
            raise

        self._successful += 1
        units = extract_units(result)
        self._units += units
        logger.debug(
            "Dispatched task completed",
            extra={
                "lane": dispatch_lane.lane.value,
                "duration": round(time.monotonic() - started, 3),
                "units": units,
            },
        )
        return result

    async def drain(self) -> None:
        """Resolve once nothing is queued or running in any lane."""
        await self._idle.wait()

    def clear(self) -> int:
        """Discard queued tasks that have not started; returns the count."""
        discarded = sum(dl.discard() for dl in self.lanes.values())
        self._discarded += discarded
        if discarded:
            logger.info("Discarded queued dispatcher tasks", extra={"discarded": discarded})
        return discarded

    def get_stats(self) -> DispatcherStats:
        return DispatcherStats(
            running=self.running,
            total=self._total,
            successful=self._successful,
            failed=self._failed,
            timed_out=self._timed_out,
            discarded=self._discarded,
            total_units=self._units,
            success_rate=(
                round(self._successful / self._total * 100, 2) if self._total else None
            ),
            avg_units_per_call=(
                round(self._units / self._successful, 2) if self._successful else None
            ),
            uptime_seconds=(
                round(time.monotonic() - self._started_at, 3) if self._started_at else 0.0
            ),
            lanes={lane.value: dl.stats() for lane, dl in self.lanes.items()},
        )

    def _get_lane(self, lane: Lane | str) -> DispatchLane:
        try:
            return self.lanes[Lane(lane)]
        except ValueError:
            raise ValidationError(
                f"Unknown dispatch lane: {lane}",
                details={"known_lanes": [known.value for known in self.lanes]},
            ) from None
