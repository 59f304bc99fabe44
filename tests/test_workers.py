"""Worker pool concurrency and shutdown."""

import threading

import pytest

from mongoperf.config import OperationDefinition
from mongoperf.dispatcher import ClosableQueue, OperationQueue
from mongoperf.operations import build_operation
from mongoperf.workers import WorkerPool


class BarrierStore:
    """Blocks every insert until ``parties`` inserts are in flight together."""

    def __init__(self, parties, timeout=5.0):
        self.barrier = threading.Barrier(parties, timeout=timeout)

    def insert_one(self, token, document, options):
        self.barrier.wait()
        return 1


def _insert(repeat=1):
    return build_operation(
        OperationDefinition(name="seed", action="InsertOne", repeat=repeat, meta={"Data": {"a": 1}})
    )


def _run_pool(size, store, operations, token):
    operation_queue = OperationQueue(len(operations))
    results = ClosableQueue()
    for operation in operations:
        operation_queue.put(operation)
    operation_queue.close()
    pool = WorkerPool(size, store, operation_queue, results, token)
    pool.start()
    pool.join(timeout=10)
    return list(results)


class TestWorkerPool:

    @pytest.mark.parametrize("size", [1, 3, 6])
    def test_runs_exactly_size_workers_at_once(self, size, token):
        store = BarrierStore(size)
        operation = _insert()

        outcomes = _run_pool(size, store, [operation] * size, token)

        assert len(outcomes) == size
        assert [outcome.error for outcome in outcomes] == [None] * size

    def test_fewer_workers_than_barrier_parties_fail(self, token):
        store = BarrierStore(3, timeout=0.2)

        outcomes = _run_pool(2, store, [_insert()] * 2, token)

        assert all(outcome.failed for outcome in outcomes)

    def test_worker_threads_named(self, store, token):
        operation_queue = OperationQueue(1)
        results = ClosableQueue()
        pool = WorkerPool(4, store, operation_queue, results, token)

        pool.start()
        names = sorted(t.name for t in threading.enumerate() if t.name.startswith("mongoperf-worker-"))
        operation_queue.close()
        pool.join(timeout=5)

        assert pool.size == 4
        assert names == [f"mongoperf-worker-{i}" for i in range(4)]
        assert results.closed

    def test_one_outcome_per_operation(self, store, token):
        outcomes = _run_pool(2, store, [_insert()] * 25, token)

        assert len(outcomes) == 25
        assert store.calls["insert_one"] == 25

    def test_rejects_empty_pool(self, store, token):
        with pytest.raises(ValueError):
            WorkerPool(0, store, OperationQueue(1), ClosableQueue(), token)
