from __future__ import annotations

import logging
import time
from typing import Sequence

from . import __version__
from .aggregator import ResultAggregator
from .cancellation import CancellationToken
from .config import OperationDefinition, ScenarioDefinition
from .dispatcher import ClosableQueue, Dispatcher, OperationQueue
from .errors import ConfigError
from .operations import Operation, OperationOutcome, build_operation
from .report import Report
from .store import Store
from .workers import WorkerPool

LOGGER = logging.getLogger("mongoperf.runner")


def build_operations(
    definitions: Sequence[OperationDefinition], strict: bool = False
) -> tuple[list[Operation], dict[str, str]]:
    """Build every definition; failures are returned by name unless ``strict``."""
    operations: list[Operation] = []
    rejected: dict[str, str] = {}
    for definition in definitions:
        try:
            operation = build_operation(definition)
        except ConfigError as exc:
            if strict:
                raise
            LOGGER.error("skipping query %s: %s", definition.name, exc)
            rejected[definition.name] = str(exc)
            continue
        LOGGER.debug("registered query %s with action %s", definition.name, operation.action.value)
        operations.append(operation)
    return operations, rejected


def run_scenario(
    token: CancellationToken,
    scenario: ScenarioDefinition,
    store: Store,
    uri: str = "",
    strict: bool = False,
) -> Report:
    """Drive ``scenario`` against ``store`` and block until the pipeline drains.

    Cancelling ``token`` stops the feeders; operations already queued are
    still executed and counted, and the partial report is returned.
    Raises ``ConfigError`` before anything runs when no operation can be
    built, or on the first invalid operation when ``strict`` is set.
    """
    operations, rejected = build_operations(scenario.operations, strict=strict)
    if not operations:
        raise ConfigError("scenario has no runnable queries")

    LOGGER.info(
        "running %d queries against %s.%s (parallel=%d, buffer=%d)",
        len(operations),
        scenario.database,
        scenario.collection,
        scenario.parallel,
        scenario.buffer_size,
    )

    operation_queue = OperationQueue(scenario.buffer_size)
    results: ClosableQueue[OperationOutcome] = ClosableQueue()
    aggregator = ResultAggregator(results)
    pool = WorkerPool(scenario.parallel, store, operation_queue, results, token)
    dispatcher = Dispatcher(operations, operation_queue, token)

    started = time.perf_counter()
    aggregator.start()
    pool.start()
    dispatcher.start()

    try:
        aggregator.wait()
    except KeyboardInterrupt:
        token.cancel("interrupted")
        aggregator.wait()
    elapsed = time.perf_counter() - started

    cancelled = bool(dispatcher.interrupted)
    report = Report(
        uri=uri,
        database=scenario.database,
        collection=scenario.collection,
        parallel=scenario.parallel,
        buffer_size=scenario.buffer_size,
        queries=aggregator.snapshot(),
        rejected=rejected,
        cancelled=cancelled,
        cancel_reason=token.reason if cancelled else None,
        elapsed_s=elapsed,
        version=__version__,
    )
    LOGGER.info(
        "scenario %s after %.3fs: %d queries, %d errors",
        "cancelled" if cancelled else "completed",
        elapsed,
        report.total_queries,
        report.total_errors,
    )
    return report


__all__ = ["build_operations", "run_scenario"]
