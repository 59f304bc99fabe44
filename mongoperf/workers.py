from __future__ import annotations

import logging
import threading

from .cancellation import CancellationToken
from .dispatcher import ClosableQueue, OperationQueue
from .operations import OperationOutcome
from .store import Store

LOGGER = logging.getLogger("mongoperf.workers")


class WorkerPool:
    """Exactly ``size`` threads executing queued operations against ``store``.

    Every dequeued operation yields one outcome on ``results``. Workers exit
    once the operation queue is closed and drained; the result queue is
    closed after the last worker has exited.
    """

    def __init__(
        self,
        size: int,
        store: Store,
        operation_queue: OperationQueue,
        results: ClosableQueue[OperationOutcome],
        token: CancellationToken,
    ) -> None:
        if size < 1:
            raise ValueError("size must be >= 1")
        self._size = size
        self._store = store
        self._queue = operation_queue
        self._results = results
        self._token = token
        self._threads: list[threading.Thread] = []
        self._supervisor: threading.Thread | None = None

    @property
    def size(self) -> int:
        return self._size

    def start(self) -> None:
        if self._supervisor is not None:
            raise RuntimeError("worker pool already started")
        for index in range(self._size):
            thread = threading.Thread(
                target=self._work, name=f"mongoperf-worker-{index}", daemon=True
            )
            self._threads.append(thread)
            thread.start()
        self._supervisor = threading.Thread(
            target=self._close_results_when_done, name="mongoperf-result-closer", daemon=True
        )
        self._supervisor.start()

    def join(self, timeout: float | None = None) -> None:
        if self._supervisor is not None:
            self._supervisor.join(timeout)

    def _work(self) -> None:
        executed = 0
        for operation in self._queue:
            outcome = operation.execute(self._store, self._token)
            if outcome.error is not None:
                LOGGER.debug("%s failed: %s", outcome.name, outcome.error)
            self._results.put(outcome)
            executed += 1
        LOGGER.debug("%s exiting after %d operations", threading.current_thread().name, executed)

    def _close_results_when_done(self) -> None:
        for thread in self._threads:
            thread.join()
        self._results.close()


__all__ = ["WorkerPool"]
