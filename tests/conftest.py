"""Shared pytest fixtures for mongoperf tests."""

import collections
import threading
import time
from typing import Any, Dict, List, Mapping

import matplotlib

matplotlib.use("Agg")

import pytest

from mongoperf.cancellation import CancellationToken
from mongoperf.config import OperationDefinition, ScenarioDefinition
from mongoperf.errors import OperationExecutionError


class FakeStore:
    """Thread-safe in-memory stand-in for ``MongoStore``.

    Filters match on field equality; updates support ``$set`` and ``$inc``.
    """

    def __init__(self, latency_s: float = 0.0, fail_actions=()):
        self.documents: List[Dict[str, Any]] = []
        self.latency_s = latency_s
        self.fail_actions = set(fail_actions)
        self.calls: collections.Counter = collections.Counter()
        self.max_active = 0
        self.closed = False
        self.dropped = False
        self._active = 0
        self._lock = threading.Lock()

    def _enter(self, action: str) -> None:
        with self._lock:
            self.calls[action] += 1
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            if self.latency_s:
                time.sleep(self.latency_s)
            if action in self.fail_actions:
                raise OperationExecutionError(f"{action} rejected")
        finally:
            with self._lock:
                self._active -= 1

    def _matching(self, filter: Mapping[str, Any]) -> List[Dict[str, Any]]:
        return [
            doc for doc in self.documents if all(doc.get(key) == value for key, value in filter.items())
        ]

    def insert_one(self, token, document, options):
        self._enter("insert_one")
        with self._lock:
            self.documents.append(dict(document))
        return 1

    def insert_many(self, token, documents, options):
        self._enter("insert_many")
        with self._lock:
            self.documents.extend(dict(doc) for doc in documents)
        return len(documents)

    def update_one(self, token, filter, update, options):
        self._enter("update_one")
        with self._lock:
            matches = self._matching(filter)
            if not matches:
                return 0
            doc = matches[0]
            before = dict(doc)
            doc.update(update.get("$set", {}))
            for key, amount in update.get("$inc", {}).items():
                doc[key] = doc.get(key, 0) + amount
            return int(doc != before)

    def find_one(self, token, filter, options):
        self._enter("find_one")
        with self._lock:
            if not self._matching(filter):
                raise OperationExecutionError("no document matched filter")
        return 1

    def find(self, token, filter, options):
        self._enter("find")
        with self._lock:
            matches = self._matching(filter)
        limit = options.get("limit") or len(matches)
        return len(matches[:limit])

    def close(self):
        self.closed = True

    def drop(self):
        self.dropped = True
        with self._lock:
            self.documents.clear()


def make_scenario(*operations, parallel=2, buffer_size=10) -> ScenarioDefinition:
    return ScenarioDefinition(
        database="testdb",
        collection="testcol",
        operations=list(operations),
        parallel=parallel,
        buffer_size=buffer_size,
    )


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def token():
    return CancellationToken()


@pytest.fixture
def insert_definition():
    return OperationDefinition(
        name="insert-seed",
        action="InsertOne",
        repeat=3,
        meta={"Data": {"name": "Ash", "age": 10}},
    )


@pytest.fixture
def find_definition():
    return OperationDefinition(
        name="read-back",
        action="Find",
        repeat=1,
        meta={"Filter": {"name": "Ash"}, "Options": {"Limit": 10}},
    )


@pytest.fixture
def scenario_yaml():
    return """
Scenario:
  Database: testdb
  Collection: trainers
  Parallel: 2
  BufferSize: 10
  Queries:
    - Name: insert-seed
      Action: InsertOne
      Repeat: 3
      Meta:
        Data:
          name: Ash
          age: 10
    - Name: read-back
      Action: Find
      Meta:
        Filter:
          name: Ash
        Options:
          Limit: 5
"""


@pytest.fixture
def build_scenario():
    return make_scenario


@pytest.fixture
def store_factory():
    return FakeStore
