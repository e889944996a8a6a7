"""Bounded worker pool for CPU-bound scan tasks.

Tasks go through a typed queue and are executed by a fixed number of
workers, each running its task in a thread so the event loop stays free for
bus I/O. Failures come back on an explicit error channel (``TaskOutcome.error``)
instead of disappearing inside a background callback.
"""

import asyncio
from dataclasses import dataclass
from typing import Callable, Generic, Sequence, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Task(Generic[T]):
    """A unit of work: an id for reporting and a zero-argument callable."""
    task_id: str
    fn: Callable[[], T]


@dataclass(frozen=True)
class TaskOutcome(Generic[T]):
    """Result of one task; exactly one of ``value`` / ``error`` is meaningful."""
    task_id: str
    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class WorkerPool(Generic[T]):
    """Run tasks with at most ``size`` in flight.

    Usage:
        pool = WorkerPool(size=4)
        outcomes = await pool.run([Task("a.py", lambda: engine.scan_file(change))])
        failed = [o for o in outcomes if not o.ok]
    """

    def __init__(self, size: int = 4, name: str = "scan"):
        if size < 1:
            raise ValueError("Worker pool size must be at least 1")
        self.size = size
        self.name = name

    async def run(self, tasks: Sequence[Task[T]]) -> list[TaskOutcome[T]]:
        """Execute ``tasks`` and return their outcomes in submission order."""
        if not tasks:
            return []

        queue: asyncio.Queue[tuple[int, Task[T]]] = asyncio.Queue()
        for index, task in enumerate(tasks):
            queue.put_nowait((index, task))

        outcomes: list[TaskOutcome[T] | None] = [None] * len(tasks)

        async def worker() -> None:
            while True:
                try:
                    index, task = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    value = await asyncio.to_thread(task.fn)
                    outcomes[index] = TaskOutcome(task_id=task.task_id, value=value)
                except Exception as e:
                    logger.warning("Pool task failed", pool=self.name, task_id=task.task_id, error=str(e))
                    outcomes[index] = TaskOutcome(task_id=task.task_id, error=e)
                finally:
                    queue.task_done()

        workers = min(self.size, len(tasks))
        await asyncio.gather(*(worker() for _ in range(workers)))
        return [outcome for outcome in outcomes if outcome is not None]
