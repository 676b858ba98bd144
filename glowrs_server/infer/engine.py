"""Process-wide inference engine: one queue plus its dispatchers."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
import logging

from glowrs_server.backends.base import EmbeddingBackend
from glowrs_server.infer.batch import BatchPolicy
from glowrs_server.infer.dispatcher import Dispatcher
from glowrs_server.infer.errors import ShuttingDown
from glowrs_server.infer.queue import Queue
from glowrs_server.infer.task import TaskHandle
from glowrs_server.telemetry import BatchMetrics

logger = logging.getLogger(__name__)


class InferEngine:
    """Owns the task queue and runs one dispatcher per backend slot."""

    def __init__(
        self,
        backend: EmbeddingBackend,
        *,
        max_batch_size: int,
        max_batch_wait: float,
        capacity: int,
        metrics: BatchMetrics | None = None,
    ) -> None:
        self.backend = backend
        self.queue = Queue(
            policy=BatchPolicy(max_batch_size=max_batch_size, max_batch_wait=max_batch_wait),
            capacity=capacity,
        )
        concurrency = max(1, int(getattr(backend, "concurrency", 1)))
        self.dispatchers = [
            Dispatcher(self.queue, backend, name=f"dispatcher-{idx}", metrics=metrics)
            for idx in range(concurrency)
        ]
        self._runners: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not runner.done() for runner in self._runners)

    def start(self) -> None:
        if self._runners:
            raise RuntimeError("Engine already started.")
        self._runners = [
            asyncio.create_task(dispatcher.run(), name=dispatcher.name)
            for dispatcher in self.dispatchers
        ]
        logger.info(
            "Engine started: backend=%s dispatchers=%d max_batch_size=%d "
            "max_batch_wait=%.3fs capacity=%d",
            self.backend.name,
            len(self.dispatchers),
            self.queue.policy.max_batch_size,
            self.queue.policy.max_batch_wait,
            self.queue.capacity,
        )

    def submit(self, inputs: Sequence[str]) -> TaskHandle:
        if self._runners and not self.running:
            raise ShuttingDown("No dispatcher is running; the engine cannot accept tasks.")
        return self.queue.submit(inputs)

    async def shutdown(self, grace_seconds: float = 10.0) -> None:
        """Stop admission, flush the backlog, and fail whatever is left."""
        self.queue.close()
        if self._runners:
            done, pending = await asyncio.wait(self._runners, timeout=grace_seconds)
            for runner in done:
                if not runner.cancelled() and runner.exception() is not None:
                    logger.error(
                        "Dispatcher %s exited with an error",
                        runner.get_name(),
                        exc_info=runner.exception(),
                    )
            if pending:
                logger.warning(
                    "Backlog flush exceeded %.1fs; cancelling %d dispatchers",
                    grace_seconds,
                    len(pending),
                )
                for runner in pending:
                    runner.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        failed = self.queue.fail_pending("Server shut down before the task was dispatched.")
        if failed:
            logger.warning("Failed %d pending tasks at shutdown", failed)

    def stats(self) -> dict[str, object]:
        return {
            "pending_tasks": self.queue.pending_tasks,
            "pending_inputs": self.queue.pending_inputs,
            "capacity": self.queue.capacity,
            "dispatchers": [dispatcher.state.value for dispatcher in self.dispatchers],
        }
