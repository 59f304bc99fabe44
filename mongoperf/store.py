from __future__ import annotations

import logging
import time
from typing import Any, Mapping, Protocol, Sequence

from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from .cancellation import CancellationToken
from .errors import OperationExecutionError, StoreConnectionError

LOGGER = logging.getLogger("mongoperf.store")

DEFAULT_URI = "mongodb://localhost:27017"
CONNECT_TIMEOUT_S_DEFAULT = 60.0
# Longest a single ping may wait for server selection.
PING_TIMEOUT_S = 5.0
PING_TIMEOUT_S_MIN = 0.1


class Store(Protocol):
    """Blocking per-action calls returning the change count of the call."""

    def insert_one(
        self, token: CancellationToken, document: Mapping[str, Any], options: Mapping[str, Any]
    ) -> int: ...

    def insert_many(
        self,
        token: CancellationToken,
        documents: Sequence[Mapping[str, Any]],
        options: Mapping[str, Any],
    ) -> int: ...

    def update_one(
        self,
        token: CancellationToken,
        filter: Mapping[str, Any],
        update: Mapping[str, Any],
        options: Mapping[str, Any],
    ) -> int: ...

    def find_one(
        self, token: CancellationToken, filter: Mapping[str, Any], options: Mapping[str, Any]
    ) -> int: ...

    def find(
        self, token: CancellationToken, filter: Mapping[str, Any], options: Mapping[str, Any]
    ) -> int: ...


class MongoStore:
    """``Store`` backed by one pymongo collection.

    The token is accepted for interface symmetry; pymongo calls cannot be
    interrupted, so in-flight calls always run to completion.
    """

    def __init__(self, collection: Collection, client: MongoClient | None = None) -> None:
        self._collection = collection
        self._client = client

    @classmethod
    def connect(
        cls,
        uri: str,
        database: str,
        collection: str,
        connect_timeout_s: float = CONNECT_TIMEOUT_S_DEFAULT,
    ) -> "MongoStore":
        backoff = 1.0
        max_backoff = 10.0
        deadline = time.time() + connect_timeout_s

        ping_timeout_s = max(min(PING_TIMEOUT_S, connect_timeout_s), PING_TIMEOUT_S_MIN)

        try:
            client: MongoClient = MongoClient(
                uri, serverSelectionTimeoutMS=int(ping_timeout_s * 1000)
            )
        except PyMongoError as exc:
            raise StoreConnectionError(f"invalid store URI {uri!r}: {exc}") from exc

        while True:
            try:
                client.admin.command("ping")
            except PyMongoError as exc:
                if time.time() >= deadline:
                    client.close()
                    raise StoreConnectionError(
                        f"failed to connect to {uri} within {connect_timeout_s:g} seconds"
                    ) from exc
                LOGGER.warning("store not reachable yet (%s); retrying in %.1fs", exc, backoff)
                time.sleep(min(backoff, max(deadline - time.time(), 0.0)))
                backoff = min(backoff * 1.5, max_backoff)
                continue
            LOGGER.info("connected to %s (database=%s, collection=%s)", uri, database, collection)
            return cls(client[database][collection], client=client)

    @property
    def collection(self) -> Collection:
        return self._collection

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    def drop(self) -> None:
        LOGGER.info("dropping collection %s", self._collection.full_name)
        self._collection.drop()

    def insert_one(self, token, document, options) -> int:
        self._collection.insert_one(dict(document), **options)
        return 1

    def insert_many(self, token, documents, options) -> int:
        result = self._collection.insert_many([dict(document) for document in documents], **options)
        return len(result.inserted_ids)

    def update_one(self, token, filter, update, options) -> int:
        result = self._collection.update_one(dict(filter), dict(update), **options)
        return result.modified_count

    def find_one(self, token, filter, options) -> int:
        document = self._collection.find_one(dict(filter), **options)
        if document is None:
            raise OperationExecutionError("no document matched filter")
        return 1

    def find(self, token, filter, options) -> int:
        returned = 0
        with self._collection.find(dict(filter), **options) as cursor:
            for _ in cursor:
                returned += 1
        return returned


__all__ = ["DEFAULT_URI", "MongoStore", "Store"]
