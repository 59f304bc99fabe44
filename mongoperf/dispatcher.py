from __future__ import annotations

import collections
import itertools
import logging
import threading
from typing import Generic, Iterable, Iterator, Sequence, TypeVar

from .cancellation import CancellationToken
from .operations import Operation

LOGGER = logging.getLogger("mongoperf.dispatcher")

T = TypeVar("T")


class ClosableQueue(Generic[T]):
    """FIFO queue with a definitive end-of-stream state.

    After ``close`` no new items are accepted, but consumers still drain
    everything already buffered before ``get`` starts returning None.
    ``offer`` blocks on a full queue until space frees up or the token is
    cancelled; ``wake`` is what the token calls to interrupt that wait.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._maxsize = maxsize
        self._items: collections.deque[T] = collections.deque()
        self._closed = False
        self._mutex = threading.Lock()
        self._not_empty = threading.Condition(self._mutex)
        self._not_full = threading.Condition(self._mutex)

    @property
    def maxsize(self) -> int:
        return self._maxsize

    @property
    def closed(self) -> bool:
        with self._mutex:
            return self._closed

    def qsize(self) -> int:
        with self._mutex:
            return len(self._items)

    def _full(self) -> bool:
        return 0 < self._maxsize <= len(self._items)

    def _append(self, item: T) -> None:
        if self._closed:
            raise RuntimeError("put on closed queue")
        self._items.append(item)
        self._not_empty.notify()

    def put(self, item: T) -> None:
        with self._not_full:
            while self._full() and not self._closed:
                self._not_full.wait()
            self._append(item)

    def offer(self, item: T, token: CancellationToken) -> bool:
        """Block until ``item`` is enqueued or ``token`` fires; False when cancelled."""
        with self._not_full:
            while self._full() and not self._closed and not token.cancelled:
                self._not_full.wait()
            if token.cancelled:
                return False
            self._append(item)
            return True

    def get(self) -> T | None:
        """Next item, or None once the queue is closed and drained."""
        with self._not_empty:
            while not self._items and not self._closed:
                self._not_empty.wait()
            if not self._items:
                return None
            item = self._items.popleft()
            self._not_full.notify()
            return item

    def wake(self) -> None:
        with self._mutex:
            self._not_full.notify_all()

    def close(self) -> None:
        with self._mutex:
            self._closed = True
            self._not_empty.notify_all()
            self._not_full.notify_all()

    def __iter__(self) -> Iterator[T]:
        while True:
            item = self.get()
            if item is None:
                return
            yield item


class OperationQueue(ClosableQueue[Operation]):
    """Bounded queue carrying operations from the feeders to the workers."""

    def __init__(self, buffer_size: int) -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")
        super().__init__(maxsize=buffer_size)


def repeat_plan(repeat: int) -> Iterable[int]:
    """Emission indices for one operation: exactly ``repeat`` or unbounded when 0."""
    if repeat == 0:
        return itertools.count()
    return range(repeat)


class Dispatcher:
    """Run one feeder thread per operation onto a shared ``OperationQueue``.

    When every feeder has returned, a closer thread closes the queue so
    the workers stop after draining what is left.
    """

    def __init__(
        self,
        operations: Sequence[Operation],
        operation_queue: OperationQueue,
        token: CancellationToken,
    ) -> None:
        self._operations = list(operations)
        self._queue = operation_queue
        self._token = token
        self._lock = threading.Lock()
        self._feeders: list[threading.Thread] = []
        self._closer: threading.Thread | None = None
        self.emitted: collections.Counter[str] = collections.Counter()
        self.interrupted: set[str] = set()

    def start(self) -> None:
        if self._closer is not None:
            raise RuntimeError("dispatcher already started")
        self._token.add_callback(self._queue.wake)
        for operation in self._operations:
            feeder = threading.Thread(
                target=self._feed,
                args=(operation,),
                name=f"mongoperf-feeder-{operation.name}",
                daemon=True,
            )
            self._feeders.append(feeder)
            feeder.start()
        self._closer = threading.Thread(
            target=self._close_when_done, name="mongoperf-queue-closer", daemon=True
        )
        self._closer.start()

    def join(self, timeout: float | None = None) -> None:
        if self._closer is not None:
            self._closer.join(timeout)

    def snapshot_emitted(self) -> dict[str, int]:
        with self._lock:
            return dict(self.emitted)

    def _feed(self, operation: Operation) -> None:
        repeat = operation.definition.repeat
        LOGGER.debug(
            "feeder %s started (repeat=%s)", operation.name, "forever" if repeat == 0 else repeat
        )
        emitted = 0
        for _ in repeat_plan(repeat):
            if not self._queue.offer(operation, self._token):
                with self._lock:
                    self.interrupted.add(operation.name)
                LOGGER.debug("feeder %s stopped by cancellation after %d", operation.name, emitted)
                return
            emitted += 1
            with self._lock:
                self.emitted[operation.name] += 1
        LOGGER.debug("feeder %s finished after %d", operation.name, emitted)

    def _close_when_done(self) -> None:
        for feeder in self._feeders:
            feeder.join()
        LOGGER.debug("all feeders finished; closing operation queue")
        self._queue.close()


__all__ = ["ClosableQueue", "Dispatcher", "OperationQueue", "repeat_plan"]
