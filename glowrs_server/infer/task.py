"""Task model and the per-task result handle returned to adapters."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import time
from typing import TYPE_CHECKING

from glowrs_server.infer.errors import TaskCancelled, TaskTimeout

if TYPE_CHECKING:
    from glowrs_server.infer.queue import Queue


Vectors = list[list[float]]


@dataclass(slots=True, eq=False)
class Task:
    """One caller-submitted unit of work awaiting embedding vectors."""

    id: int
    inputs: list[str]
    future: asyncio.Future[Vectors]
    submitted_at: float = field(default_factory=time.monotonic)

    @property
    def input_count(self) -> int:
        return len(self.inputs)

    def age(self, now: float | None = None) -> float:
        """Seconds since submission."""
        current = time.monotonic() if now is None else now
        return max(0.0, current - self.submitted_at)

    def resolve(self, vectors: Vectors) -> bool:
        """Deliver vectors unless the sink was already resolved or discarded."""
        if self.future.done():
            return False
        self.future.set_result(vectors)
        return True

    def fail(self, error: BaseException) -> bool:
        """Deliver an error unless the sink was already resolved or discarded."""
        if self.future.done():
            return False
        self.future.set_exception(error)
        return True


class TaskHandle:
    """Awaitable handle for a submitted task.

    The handle is the only reader of the task's result sink. Giving up on a
    task (timeout, cancel, or the awaiting coroutine being cancelled) removes
    it from the backlog when it has not been dispatched yet; otherwise the
    sink is marked discarded and the dispatcher drops the result.
    """

    __slots__ = ("_queue", "_task")

    def __init__(self, queue: Queue, task: Task) -> None:
        self._queue = queue
        self._task = task

    @property
    def id(self) -> int:
        return self._task.id

    @property
    def input_count(self) -> int:
        return self._task.input_count

    def done(self) -> bool:
        return self._task.future.done()

    def cancel(self) -> bool:
        """Withdraw the task. Returns False when it had already resolved."""
        return self._queue.discard(self._task)

    async def result(self, timeout: float | None = None) -> Vectors:
        """Wait for this task's vectors, in input order."""
        future = self._task.future
        try:
            if timeout is None:
                return await asyncio.shield(future)
            return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        except TimeoutError:
            self._queue.discard(self._task)
            raise TaskTimeout(
                f"Task {self._task.id} did not complete within {timeout:.3f}s."
            ) from None
        except asyncio.CancelledError:
            current = asyncio.current_task()
            own_cancel = current is not None and current.cancelling() > 0
            if future.cancelled() and not own_cancel:
                raise TaskCancelled(f"Task {self._task.id} was cancelled.") from None
            self._queue.discard(self._task)
            raise
