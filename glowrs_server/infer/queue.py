"""Bounded FIFO task queue feeding the dispatchers."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Sequence
import itertools
import logging
import time

from glowrs_server.infer.batch import Batch, BatchPolicy
from glowrs_server.infer.errors import QueueFull, ShuttingDown
from glowrs_server.infer.task import Task, TaskHandle

logger = logging.getLogger(__name__)


class Queue:
    """Admission and buffering for embedding tasks.

    All backlog mutation happens in synchronous sections on the event loop,
    so concurrent submitters and drainers never observe a partial update.
    Drainers sleep on a single event and re-check the backlog after every
    wakeup.
    """

    def __init__(self, *, policy: BatchPolicy, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.policy = policy
        self.capacity = capacity
        self._backlog: deque[Task] = deque()
        self._pending_inputs = 0
        self._ids = itertools.count(1)
        self._wakeup = asyncio.Event()
        self._closing = False

    @property
    def pending_tasks(self) -> int:
        return len(self._backlog)

    @property
    def pending_inputs(self) -> int:
        return self._pending_inputs

    @property
    def closing(self) -> bool:
        return self._closing

    def submit(self, inputs: Sequence[str]) -> TaskHandle:
        """Admit a task and return a handle to await its vectors."""
        items = list(inputs)
        if not items:
            raise ValueError("A task needs at least one input.")
        if self._closing:
            raise ShuttingDown("Queue is shutting down; no new tasks are admitted.")
        if self._pending_inputs + len(items) > self.capacity:
            raise QueueFull(
                f"Queue backlog of {self._pending_inputs} inputs cannot admit "
                f"{len(items)} more (capacity {self.capacity})."
            )

        task = Task(
            id=next(self._ids),
            inputs=items,
            future=asyncio.get_running_loop().create_future(),
        )
        self._backlog.append(task)
        self._pending_inputs += task.input_count
        self._wakeup.set()
        logger.debug("Admitted task %d with %d inputs", task.id, task.input_count)
        return TaskHandle(self, task)

    async def drain_batch(self) -> Batch | None:
        """Wait for the next batch.

        Returns as soon as enough inputs are pending, the oldest task has
        waited ``max_batch_wait``, or shutdown begins with a non-empty
        backlog. Returns None once shut down with nothing left to flush.
        """
        while True:
            if not self._backlog:
                if self._closing:
                    return None
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            now = time.monotonic()
            oldest_age = self._backlog[0].age(now)
            if self._closing or self.policy.is_ready(self._pending_inputs, oldest_age):
                batch = self._take_batch()
                if batch is not None:
                    return batch
                continue

            self._wakeup.clear()
            try:
                await asyncio.wait_for(
                    self._wakeup.wait(),
                    timeout=self.policy.max_batch_wait - oldest_age,
                )
            except TimeoutError:
                pass

    def _take_batch(self) -> Batch | None:
        tasks = self.policy.take(self._backlog)
        self._pending_inputs = sum(task.input_count for task in self._backlog)
        if self._backlog:
            # Leftovers may already satisfy the policy for another drainer.
            self._wakeup.set()
        if not tasks:
            return None
        return Batch.from_tasks(tasks)

    def discard(self, task: Task) -> bool:
        """Drop a task the caller no longer wants.

        A task still in the backlog is removed; a dispatched one keeps
        running but its result is thrown away. Returns False when the task
        had already resolved.
        """
        if task.future.done():
            return False
        try:
            self._backlog.remove(task)
        except ValueError:
            logger.debug("Discarding dispatched task %d; result will be dropped", task.id)
        else:
            self._pending_inputs -= task.input_count
            logger.debug("Removed task %d from backlog", task.id)
        task.future.cancel()
        return True

    def close(self) -> None:
        """Stop admitting tasks and let drainers flush the backlog."""
        if not self._closing:
            logger.info(
                "Closing queue with %d pending tasks (%d inputs)",
                len(self._backlog),
                self._pending_inputs,
            )
        self._closing = True
        self._wakeup.set()

    def fail_pending(self, message: str) -> int:
        """Resolve every task still in the backlog with ``ShuttingDown``."""
        failed = 0
        while self._backlog:
            task = self._backlog.popleft()
            if task.fail(ShuttingDown(message)):
                failed += 1
        self._pending_inputs = 0
        self._wakeup.set()
        return failed
