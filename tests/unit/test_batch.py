from __future__ import annotations

import asyncio
from collections import deque

import pytest

from glowrs_server.infer.batch import Batch, BatchPolicy
from glowrs_server.infer.task import Task


def make_task(task_id: int, count: int) -> Task:
    inputs = [f"t{task_id}-{idx}" for idx in range(count)]
    return Task(id=task_id, inputs=inputs, future=asyncio.get_running_loop().create_future())


@pytest.mark.asyncio
async def test_spans_cover_inputs_without_gaps():
    batch = Batch.from_tasks([make_task(1, 2), make_task(2, 3), make_task(3, 4)])

    assert len(batch) == 9
    assert batch.spans == [(0, 2), (2, 5), (5, 9)]
    assert batch.inputs[:2] == ["t1-0", "t1-1"]
    assert batch.inputs[5:] == ["t3-0", "t3-1", "t3-2", "t3-3"]


@pytest.mark.asyncio
async def test_split_slices_vectors_back_per_task():
    tasks = [make_task(1, 2), make_task(2, 3), make_task(3, 4)]
    batch = Batch.from_tasks(tasks)
    vectors = [[float(idx)] for idx in range(9)]

    pieces = list(batch.split(vectors))

    assert [task for task, _ in pieces] == tasks
    assert pieces[0][1] == [[0.0], [1.0]]
    assert pieces[1][1] == [[2.0], [3.0], [4.0]]
    assert pieces[2][1] == [[5.0], [6.0], [7.0], [8.0]]


@pytest.mark.asyncio
async def test_split_rejects_mismatched_vector_count():
    batch = Batch.from_tasks([make_task(1, 2)])
    with pytest.raises(ValueError):
        list(batch.split([[0.0]]))


@pytest.mark.asyncio
async def test_take_includes_task_crossing_threshold():
    policy = BatchPolicy(max_batch_size=8, max_batch_wait=0.02)
    backlog = deque([make_task(1, 2), make_task(2, 3), make_task(3, 4), make_task(4, 5)])

    taken = policy.take(backlog)

    assert [task.id for task in taken] == [1, 2, 3]
    assert [task.id for task in backlog] == [4]


@pytest.mark.asyncio
async def test_take_dispatches_oversized_task_alone():
    policy = BatchPolicy(max_batch_size=4, max_batch_wait=0.02)
    backlog = deque([make_task(1, 1), make_task(2, 10), make_task(3, 1)])

    assert [task.id for task in policy.take(backlog)] == [1]
    assert [task.id for task in policy.take(backlog)] == [2]
    assert [task.id for task in policy.take(backlog)] == [3]
    assert not backlog


@pytest.mark.asyncio
async def test_take_skips_discarded_tasks():
    policy = BatchPolicy(max_batch_size=8, max_batch_wait=0.02)
    gone = make_task(1, 3)
    gone.future.cancel()
    backlog = deque([gone, make_task(2, 1)])

    assert [task.id for task in policy.take(backlog)] == [2]


def test_policy_readiness():
    policy = BatchPolicy(max_batch_size=8, max_batch_wait=0.02)

    assert not policy.is_ready(pending_inputs=3, oldest_age=0.001)
    assert policy.is_ready(pending_inputs=8, oldest_age=0.0)
    assert policy.is_ready(pending_inputs=1, oldest_age=0.02)


def test_policy_validates_limits():
    with pytest.raises(ValueError):
        BatchPolicy(max_batch_size=0, max_batch_wait=0.01)
    with pytest.raises(ValueError):
        BatchPolicy(max_batch_size=1, max_batch_wait=-1.0)
