"""Error kinds raised by the task queue and dispatcher."""

from __future__ import annotations


class InferError(Exception):
    """Base class for queue and execution failures."""

    code = "internal"


class QueueFull(InferError):
    """Admission rejected because the backlog is at capacity."""

    code = "queue_full"


class ShuttingDown(InferError):
    """Admission rejected, or task dropped, because the engine is stopping."""

    code = "shutting_down"


class BackendError(InferError):
    """The inference backend failed while executing a batch."""

    code = "backend_error"


class TaskTimeout(InferError):
    """A task result did not arrive within the caller's bound."""

    code = "timeout"


class TaskCancelled(InferError):
    """The caller withdrew interest before the task resolved."""

    code = "cancelled"
