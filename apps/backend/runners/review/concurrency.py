"""
Bounded Concurrency Helpers
===========================

Worker-pool primitives used by batch validation and the issue collector.

run_with_concurrency() runs a pre-built list of task thunks with at most K
active at once. BoundedTaskQueue applies the same policy to work that
arrives one item at a time.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

TaskThunk = Callable[[], Awaitable[T]]


@dataclass
class TaskOutcome(Generic[T]):
    """Result of one task: either a value or the exception it raised."""

    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_with_concurrency(
    tasks: Sequence[TaskThunk[T]],
    limit: int,
) -> list[TaskOutcome[T]]:
    """
    Run task thunks with at most `limit` active at a time.

    min(limit, len(tasks)) workers each pull the next unstarted task as soon
    as their current one finishes, so a slow task never holds back the
    rest of the queue. Outcomes are returned in submission order.

    A task that raises records the exception in its own TaskOutcome; the
    other tasks keep running.

    Args:
        tasks: Zero-argument callables returning awaitables
        limit: Maximum number of concurrently active tasks

    Returns:
        One TaskOutcome per task, in submission order
    """
    if limit < 1:
        raise ValueError(f"Concurrency limit must be >= 1, got {limit}")
    if not tasks:
        return []

    results: list[TaskOutcome[T] | None] = [None] * len(tasks)
    next_index = 0

    async def worker() -> None:
        nonlocal next_index
        while next_index < len(tasks):
            index = next_index
            next_index += 1
            try:
                value = await tasks[index]()
                results[index] = TaskOutcome(value=value)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug(f"[TaskPool] Task {index} failed: {e}")
                results[index] = TaskOutcome(error=e)

    worker_count = min(limit, len(tasks))
    await asyncio.gather(*(worker() for _ in range(worker_count)))

    return [r if r is not None else TaskOutcome() for r in results]


class BoundedTaskQueue:
    """
    FIFO task queue with a cap on simultaneously running tasks.

    Tasks submitted while fewer than `limit` are running start at once;
    the rest wait in arrival order and start as running tasks finish,
    whether they succeeded or failed.

    Usage:
        queue = BoundedTaskQueue(limit=3)
        future = queue.submit(lambda: validate(issue))
        result = await future
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError(f"Concurrency limit must be >= 1, got {limit}")
        self.limit = limit
        self._active = 0
        self._peak_active = 0
        self._generation = 0
        self._pending: deque[tuple[TaskThunk[Any], asyncio.Future[Any]]] = deque()
        self._running: dict[asyncio.Task[None], asyncio.Future[Any]] = {}

    @property
    def active(self) -> int:
        return self._active

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def peak_active(self) -> int:
        """Highest number of tasks that were ever running together."""
        return self._peak_active

    def submit(self, thunk: TaskThunk[T]) -> asyncio.Future[T]:
        """Queue a task and return a future for its result. Must be called inside a running loop."""
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._pending.append((thunk, future))
        self._process_next()
        return future

    def _process_next(self) -> None:
        while self._active < self.limit and self._pending:
            thunk, future = self._pending.popleft()
            self._active += 1
            self._peak_active = max(self._peak_active, self._active)
            task = asyncio.create_task(self._run(thunk, future, self._generation))
            self._running[task] = future
            task.add_done_callback(self._forget)

    def _forget(self, task: asyncio.Task[None]) -> None:
        self._running.pop(task, None)

    async def _run(
        self,
        thunk: TaskThunk[Any],
        future: asyncio.Future[Any],
        generation: int,
    ) -> None:
        try:
            value = await thunk()
            if not future.done():
                future.set_result(value)
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        finally:
            # Tasks cancelled by clear() no longer hold a slot
            if generation == self._generation:
                self._active -= 1
                self._process_next()

    def clear(self) -> None:
        """Cancel queued and running tasks and reset counters."""
        while self._pending:
            _, future = self._pending.popleft()
            if not future.done():
                future.cancel()
        # A task cancelled before its first step never reaches _run's handlers
        for task, future in list(self._running.items()):
            task.cancel()
            if not future.done():
                future.cancel()
        self._running.clear()
        self._generation += 1
        self._active = 0
        self._peak_active = 0
