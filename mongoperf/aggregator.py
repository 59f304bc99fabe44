from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from .config import ActionKind
from .dispatcher import ClosableQueue
from .operations import OperationOutcome
from .report import QueryStats

LOGGER = logging.getLogger("mongoperf.aggregator")


@dataclass
class AggregatedStat:
    """Running statistics for one operation name."""

    name: str
    action: ActionKind
    query_count: int = 0
    duration_total_s: float = 0.0
    change_count: int = 0
    error_count: int = 0
    last_error: BaseException | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, outcome: OperationOutcome) -> None:
        # The four counters move together.
        with self._lock:
            self.query_count += 1
            self.duration_total_s += outcome.duration_s
            self.change_count += outcome.change_count
            if outcome.error is not None:
                self.error_count += 1
                self.last_error = outcome.error

    def snapshot(self) -> QueryStats:
        with self._lock:
            return QueryStats(
                name=self.name,
                action=self.action,
                query_count=self.query_count,
                duration_total_s=self.duration_total_s,
                change_count=self.change_count,
                error_count=self.error_count,
                last_error=self.last_error,
            )


class ResultAggregator:
    """Single consumer folding outcomes into per-name ``AggregatedStat`` entries.

    The stats map belongs to the aggregator thread; other threads only see
    the frozen copy returned by ``snapshot`` after ``done`` is set.
    """

    def __init__(self, results: ClosableQueue[OperationOutcome]) -> None:
        self._results = results
        self._stats: dict[str, AggregatedStat] = {}
        self._done = threading.Event()
        self._thread: threading.Thread | None = None
        self.outcomes = 0

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("aggregator already started")
        self._thread = threading.Thread(target=self.run, name="mongoperf-aggregator", daemon=True)
        self._thread.start()

    def run(self) -> None:
        try:
            for outcome in self._results:
                self.update(outcome)
        finally:
            self._done.set()
        LOGGER.debug("aggregated %d outcomes across %d operations", self.outcomes, len(self._stats))

    def update(self, outcome: OperationOutcome) -> AggregatedStat:
        stat = self._stats.get(outcome.name)
        if stat is None:
            stat = AggregatedStat(name=outcome.name, action=outcome.action)
            self._stats[outcome.name] = stat
        stat.record(outcome)
        self.outcomes += 1
        return stat

    def wait(self, timeout: float | None = None) -> bool:
        return self._done.wait(timeout)

    def snapshot(self) -> dict[str, QueryStats]:
        if not self._done.is_set():
            raise RuntimeError("aggregator has not finished draining results")
        return {name: stat.snapshot() for name, stat in sorted(self._stats.items())}


__all__ = ["AggregatedStat", "ResultAggregator"]
