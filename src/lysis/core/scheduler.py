"""
Task Scheduler for upstream API calls.

Serializes every upstream-bound operation through one single-consumer
priority queue so the shared, quota-limited API sees at most one request
in flight system-wide.

Features:
- Priority queue (higher first, ties keep arrival order)
- Minimum delay between task starts
- Fixed spacing after each task settles to avoid bursts
- Task failures never stop the queue
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from lysis.core.types import Priority
from lysis.utils.errors import SchedulerClosedError
from lysis.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Floor applied by set_min_delay()
MIN_DELAY_FLOOR = 0.1


@dataclass
class ScheduledTask:
    """
    Queued upstream operation.

    Owned by the scheduler while queued; once started its future is
    settled exactly once.

    Attributes:
        priority: Higher runs first
        sequence: Arrival order, used as tie-break
        operation: Zero-argument coroutine factory
        future: Resolved with the operation's result or exception
        id: Short task identifier for logs
    """

    priority: int
    sequence: int
    operation: Callable[[], Awaitable[Any]]
    future: asyncio.Future[Any]
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:7])

    def __lt__(self, other: ScheduledTask) -> bool:
        """Enable heap ordering (higher priority first, then FIFO)."""
        return (-self.priority, self.sequence) < (-other.priority, other.sequence)


class Scheduler:
    """
    Single-consumer priority scheduler.

    ``enqueue`` queues the operation immediately and returns a future; the
    consumer coroutine is started on demand and picks the highest-priority
    pending task each time it is free.

    Note:
        A scheduled operation must never enqueue into the same scheduler and
        await the result: with a single consumer that would deadlock.

    Usage:
        scheduler = Scheduler(min_delay=0.8)
        reply = await scheduler.enqueue(lambda: call_model(...), Priority.CHAT)
    """

    def __init__(
        self,
        min_delay: float = 0.8,
        spacing: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            min_delay: Minimum seconds between two task starts
            spacing: Seconds to wait after a task settles (defaults to min_delay)
            clock: Monotonic clock, injectable for tests
        """
        if min_delay < 0:
            raise ValueError("min_delay must be >= 0")
        self._min_delay = min_delay
        self._spacing = spacing
        self._clock = clock

        self._queue: list[ScheduledTask] = []
        self._sequence = itertools.count()
        self._consumer: asyncio.Task[None] | None = None
        self._last_start: float | None = None
        self._running: ScheduledTask | None = None
        self._closed = False

        self._tasks_completed = 0
        self._tasks_failed = 0

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def min_delay(self) -> float:
        return self._min_delay

    @property
    def spacing(self) -> float:
        return self._min_delay if self._spacing is None else self._spacing

    @property
    def queue_length(self) -> int:
        """Number of tasks waiting to start."""
        return len(self._queue)

    @property
    def is_busy(self) -> bool:
        return self._running is not None

    def set_min_delay(self, seconds: float) -> None:
        """Set minimum delay between task starts (clamped to 100ms)."""
        self._min_delay = max(MIN_DELAY_FLOOR, seconds)
        logger.info("Request throttling updated", min_delay=self._min_delay)

    # =========================================================================
    # Public API
    # =========================================================================

    def enqueue(
        self,
        operation: Callable[[], Awaitable[T]],
        priority: int = Priority.WORKER,
    ) -> asyncio.Future[T]:
        """
        Queue an operation.

        Args:
            operation: Zero-argument callable returning an awaitable
            priority: Higher values run first

        Returns:
            Future settled with the operation's result or exception
        """
        if self._closed:
            raise SchedulerClosedError()

        loop = asyncio.get_running_loop()
        task = ScheduledTask(
            priority=int(priority),
            sequence=next(self._sequence),
            operation=operation,
            future=loop.create_future(),
        )
        heapq.heappush(self._queue, task)
        logger.debug(
            "Task queued",
            task_id=task.id,
            priority=task.priority,
            queue_length=len(self._queue),
        )

        if self._consumer is None or self._consumer.done():
            self._consumer = loop.create_task(self._consume())
        return task.future

    async def close(self) -> None:
        """Stop the consumer and fail every task that has not started."""
        self._closed = True
        pending, self._queue = self._queue, []
        for task in pending:
            if not task.future.done():
                task.future.set_exception(SchedulerClosedError(task.id))
        if self._consumer is not None and not self._consumer.done():
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
        self._consumer = None

    def get_stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        return {
            "queue_length": len(self._queue),
            "busy": self.is_busy,
            "tasks_completed": self._tasks_completed,
            "tasks_failed": self._tasks_failed,
            "min_delay": self._min_delay,
            "spacing": self.spacing,
        }

    # =========================================================================
    # Consumer
    # =========================================================================

    async def _consume(self) -> None:
        while self._queue:
            await self._throttle()
            # Pick after throttling so later high-priority arrivals win
            task = heapq.heappop(self._queue)
            self._last_start = self._clock()
            self._running = task
            try:
                await self._run(task)
            finally:
                self._running = None
            await asyncio.sleep(self.spacing)

    async def _throttle(self) -> None:
        if self._last_start is None:
            return
        elapsed = self._clock() - self._last_start
        if elapsed < self._min_delay:
            wait_time = self._min_delay - elapsed
            logger.debug("Throttling request", wait_time=round(wait_time, 3))
            await asyncio.sleep(wait_time)

    async def _run(self, task: ScheduledTask) -> None:
        try:
            result = await task.operation()
        except asyncio.CancelledError:
            if not task.future.done():
                task.future.cancel()
            raise
        except Exception as e:
            self._tasks_failed += 1
            logger.error(
                "Final task failure",
                task_id=task.id,
                priority=task.priority,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            if not task.future.done():
                task.future.set_exception(e)
        else:
            self._tasks_completed += 1
            if not task.future.done():
                task.future.set_result(result)

    def __repr__(self) -> str:
        return (
            f"Scheduler(min_delay={self._min_delay!r}, "
            f"queue_length={len(self._queue)}, busy={self.is_busy})"
        )
