"""Batch assembly: grouping pending tasks into backend-sized batches."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

from glowrs_server.infer.task import Task, Vectors


@dataclass(slots=True)
class Batch:
    """Tasks dispatched together in one backend invocation.

    ``spans[i]`` is the ``(start, end)`` range of ``inputs`` contributed by
    ``tasks[i]``; spans are contiguous and cover ``inputs`` exactly.
    """

    tasks: list[Task]
    inputs: list[str] = field(default_factory=list)
    spans: list[tuple[int, int]] = field(default_factory=list)

    @classmethod
    def from_tasks(cls, tasks: Sequence[Task]) -> Batch:
        inputs: list[str] = []
        spans: list[tuple[int, int]] = []
        for task in tasks:
            start = len(inputs)
            inputs.extend(task.inputs)
            spans.append((start, len(inputs)))
        return cls(tasks=list(tasks), inputs=inputs, spans=spans)

    def __len__(self) -> int:
        return len(self.inputs)

    @property
    def oldest_submitted_at(self) -> float:
        return min(task.submitted_at for task in self.tasks)

    def split(self, vectors: Vectors) -> Iterator[tuple[Task, Vectors]]:
        """Slice backend output back to the task that contributed each input."""
        if len(vectors) != len(self.inputs):
            raise ValueError(
                f"Expected {len(self.inputs)} vectors for batch, got {len(vectors)}."
            )
        for task, (start, end) in zip(self.tasks, self.spans):
            yield task, vectors[start:end]


@dataclass(frozen=True, slots=True)
class BatchPolicy:
    """Size/latency policy deciding when and how pending tasks are grouped."""

    max_batch_size: int
    max_batch_wait: float

    def __post_init__(self) -> None:
        if self.max_batch_size < 1:
            raise ValueError("max_batch_size must be >= 1")
        if self.max_batch_wait < 0:
            raise ValueError("max_batch_wait must be >= 0")

    def is_ready(self, pending_inputs: int, oldest_age: float) -> bool:
        return pending_inputs >= self.max_batch_size or oldest_age >= self.max_batch_wait

    def take(self, backlog: deque[Task]) -> list[Task]:
        """Pop tasks from the head of the backlog in FIFO order.

        Tasks are added while the running total is below ``max_batch_size``,
        so the task that crosses the threshold is still included. A task
        larger than ``max_batch_size`` on its own is returned alone.
        Discarded tasks are dropped without counting.
        """
        taken: list[Task] = []
        total = 0
        while backlog and total < self.max_batch_size:
            task = backlog[0]
            if task.future.done():
                backlog.popleft()
                continue
            if taken and task.input_count > self.max_batch_size:
                break
            backlog.popleft()
            taken.append(task)
            total += task.input_count
        return taken
