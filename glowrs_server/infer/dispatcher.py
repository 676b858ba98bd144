"""Dispatcher loop: exclusive owner of one backend execution slot."""

from __future__ import annotations

import asyncio
from enum import Enum
import logging
import time

from glowrs_server.backends.base import EmbeddingBackend
from glowrs_server.infer.batch import Batch
from glowrs_server.infer.errors import BackendError, ShuttingDown
from glowrs_server.infer.queue import Queue
from glowrs_server.telemetry import BatchMetrics, NoopBatchMetrics

logger = logging.getLogger(__name__)


class DispatcherState(str, Enum):
    IDLE = "idle"
    DRAINING = "draining"
    EXECUTING = "executing"
    RESOLVING = "resolving"
    STOPPED = "stopped"


class Dispatcher:
    """Pulls batches from the queue and runs them against the backend.

    Only the dispatcher calls ``backend.infer``; with one dispatcher per
    declared backend concurrency slot, at most that many batches are in
    flight. A failing batch fails all of its tasks and the loop carries on.
    """

    def __init__(
        self,
        queue: Queue,
        backend: EmbeddingBackend,
        *,
        name: str = "dispatcher-0",
        metrics: BatchMetrics | None = None,
    ) -> None:
        self.name = name
        self.state = DispatcherState.IDLE
        self.batches_processed = 0
        self._queue = queue
        self._backend = backend
        self._metrics = metrics or NoopBatchMetrics()

    async def run(self) -> None:
        logger.info("Dispatcher %s started for backend %s", self.name, self._backend.name)
        try:
            while True:
                self.state = DispatcherState.DRAINING
                batch = await self._queue.drain_batch()
                if batch is None:
                    break
                await self.execute(batch)
                self.state = DispatcherState.IDLE
        finally:
            self.state = DispatcherState.STOPPED
            logger.info(
                "Dispatcher %s stopped after %d batches", self.name, self.batches_processed
            )

    async def execute(self, batch: Batch) -> None:
        """Run one batch and deliver every member's result or error."""
        self.state = DispatcherState.EXECUTING
        started = time.monotonic()
        queue_wait_ms = (started - batch.oldest_submitted_at) * 1000.0
        logger.debug(
            "%s executing batch of %d tasks (%d inputs), oldest queued %.1fms",
            self.name,
            len(batch.tasks),
            len(batch),
            queue_wait_ms,
        )

        try:
            vectors = await self._backend.infer(batch.inputs)
            if len(vectors) != len(batch):
                raise BackendError(
                    f"Backend returned {len(vectors)} vectors for {len(batch)} inputs."
                )
        except asyncio.CancelledError as exc:
            current = asyncio.current_task()
            if current is not None and current.cancelling() > 0:
                self._fail_batch(batch, ShuttingDown, "Dispatcher stopped during execution.")
                raise
            # Cancellation raised by the backend itself, not aimed at this dispatcher.
            logger.error("Backend cancelled its own call on batch of %d inputs", len(batch))
            self.state = DispatcherState.RESOLVING
            self._fail_batch(batch, BackendError, str(exc) or "Backend call was cancelled.")
            self._record(batch, "backend_error", queue_wait_ms, started)
            return
        except Exception as exc:
            logger.exception("Backend failed on batch of %d inputs", len(batch))
            message = str(exc) or exc.__class__.__name__
            self.state = DispatcherState.RESOLVING
            self._fail_batch(batch, BackendError, message)
            self._record(batch, "backend_error", queue_wait_ms, started)
            return

        self.state = DispatcherState.RESOLVING
        delivered = 0
        for task, task_vectors in batch.split(vectors):
            if task.resolve(task_vectors):
                delivered += 1
            else:
                logger.debug("Dropping result for discarded task %d", task.id)
        self._record(batch, "ok", queue_wait_ms, started)
        logger.debug("%s delivered %d/%d results", self.name, delivered, len(batch.tasks))

    def _fail_batch(self, batch: Batch, error_type: type[Exception], message: str) -> None:
        for task in batch.tasks:
            task.fail(error_type(message))

    def _record(self, batch: Batch, status: str, queue_wait_ms: float, started: float) -> None:
        self.batches_processed += 1
        self._metrics.record(
            backend=self._backend.name,
            status=status,
            batch_size=len(batch),
            task_count=len(batch.tasks),
            queue_wait_ms=queue_wait_ms,
            duration_ms=(time.monotonic() - started) * 1000.0,
        )
