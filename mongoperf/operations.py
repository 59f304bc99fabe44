from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Mapping, Sequence

from .cancellation import CancellationToken
from .config import ActionKind, OperationDefinition
from .errors import ConfigError
from .store import Store


@dataclass(frozen=True)
class OperationOutcome:
    """Timed result of one operation invocation; ``error`` is set on failure."""

    name: str
    action: ActionKind
    started_at: float
    finished_at: float
    change_count: int = 0
    error: BaseException | None = None

    @property
    def duration_s(self) -> float:
        return max(self.finished_at - self.started_at, 0.0)

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class Operation:
    """Executable form of an ``OperationDefinition``.

    Instances hold only validated, read-only parameters, so one instance
    is shared by every repeat of its definition across all workers.
    """

    action: ClassVar[ActionKind]

    definition: OperationDefinition
    options: Mapping[str, Any]

    @property
    def name(self) -> str:
        return self.definition.name

    def execute(self, store: Store, token: CancellationToken) -> OperationOutcome:
        started_at = time.perf_counter()
        try:
            changes = self._call(store, token)
        except Exception as exc:  # noqa: BLE001
            return OperationOutcome(
                name=self.name,
                action=self.action,
                started_at=started_at,
                finished_at=time.perf_counter(),
                error=exc,
            )
        return OperationOutcome(
            name=self.name,
            action=self.action,
            started_at=started_at,
            finished_at=time.perf_counter(),
            change_count=changes,
        )

    def _call(self, store: Store, token: CancellationToken) -> int:
        raise NotImplementedError


@dataclass(frozen=True)
class InsertOneOperation(Operation):
    action: ClassVar[ActionKind] = ActionKind.INSERT_ONE

    document: Mapping[str, Any]

    def _call(self, store: Store, token: CancellationToken) -> int:
        return store.insert_one(token, self.document, self.options)


@dataclass(frozen=True)
class InsertManyOperation(Operation):
    action: ClassVar[ActionKind] = ActionKind.INSERT_MANY

    documents: Sequence[Mapping[str, Any]]

    def _call(self, store: Store, token: CancellationToken) -> int:
        return store.insert_many(token, self.documents, self.options)


@dataclass(frozen=True)
class UpdateOneOperation(Operation):
    action: ClassVar[ActionKind] = ActionKind.UPDATE_ONE

    filter: Mapping[str, Any]
    update: Mapping[str, Any]

    def _call(self, store: Store, token: CancellationToken) -> int:
        return store.update_one(token, self.filter, self.update, self.options)


@dataclass(frozen=True)
class FindOneOperation(Operation):
    action: ClassVar[ActionKind] = ActionKind.FIND_ONE

    filter: Mapping[str, Any]

    def _call(self, store: Store, token: CancellationToken) -> int:
        return store.find_one(token, self.filter, self.options)


@dataclass(frozen=True)
class FindOperation(Operation):
    action: ClassVar[ActionKind] = ActionKind.FIND

    filter: Mapping[str, Any]

    def _call(self, store: Store, token: CancellationToken) -> int:
        return store.find(token, self.filter, self.options)


# Driver keyword arguments accepted under Meta.Options, per action.
ALLOWED_OPTIONS: dict[ActionKind, tuple[str, ...]] = {
    ActionKind.INSERT_ONE: ("bypass_document_validation",),
    ActionKind.INSERT_MANY: ("ordered", "bypass_document_validation"),
    ActionKind.UPDATE_ONE: ("upsert", "bypass_document_validation"),
    ActionKind.FIND_ONE: ("skip", "sort", "projection"),
    ActionKind.FIND: ("limit", "skip", "sort", "projection", "batch_size"),
}

META_KEYS: dict[ActionKind, tuple[str, ...]] = {
    ActionKind.INSERT_ONE: ("Data", "Options"),
    ActionKind.INSERT_MANY: ("Data", "Options"),
    ActionKind.UPDATE_ONE: ("Data", "Filter", "Options"),
    ActionKind.FIND_ONE: ("Filter", "Options"),
    ActionKind.FIND: ("Filter", "Options"),
}


def build_operation(definition: OperationDefinition) -> Operation:
    """Validate ``definition`` and return the operation variant for its action.

    Raises ``ConfigError`` naming the operation and the offending field.
    Performs no I/O.
    """
    kind = ActionKind.parse(definition.action)
    meta = definition.meta
    unknown = sorted(str(key) for key in meta if key not in META_KEYS[kind])
    if unknown:
        raise ConfigError(f"{definition.name}: unknown Meta keys for {kind.value}: {', '.join(unknown)}")
    options = _normalise_options(definition.name, kind, meta.get("Options"))
    return _BUILDERS[kind](definition, meta, options)


def _build_insert_one(definition, meta, options) -> Operation:
    document = meta.get("Data")
    if not document:
        raise ConfigError(f"{definition.name}: payload empty")
    if not isinstance(document, Mapping):
        raise ConfigError(f"{definition.name}: Data must be a document")
    return InsertOneOperation(definition=definition, options=options, document=dict(document))


def _build_insert_many(definition, meta, options) -> Operation:
    documents = meta.get("Data")
    if not documents:
        raise ConfigError(f"{definition.name}: payload empty")
    if not isinstance(documents, list) or not all(isinstance(doc, Mapping) for doc in documents):
        raise ConfigError(f"{definition.name}: Data must be a list of documents")
    return InsertManyOperation(
        definition=definition,
        options=options,
        documents=tuple(dict(doc) for doc in documents),
    )


def _build_update_one(definition, meta, options) -> Operation:
    filter_ = _filter(definition, meta, required=True)
    update = meta.get("Data")
    if not update:
        raise ConfigError(f"{definition.name}: update payload empty")
    if not isinstance(update, Mapping):
        raise ConfigError(f"{definition.name}: Data must be a document")
    return UpdateOneOperation(definition=definition, options=options, filter=filter_, update=dict(update))


def _build_find_one(definition, meta, options) -> Operation:
    return FindOneOperation(definition=definition, options=options, filter=_filter(definition, meta))


def _build_find(definition, meta, options) -> Operation:
    return FindOperation(definition=definition, options=options, filter=_filter(definition, meta))


_BUILDERS: dict[ActionKind, Callable[..., Operation]] = {
    ActionKind.INSERT_ONE: _build_insert_one,
    ActionKind.INSERT_MANY: _build_insert_many,
    ActionKind.UPDATE_ONE: _build_update_one,
    ActionKind.FIND_ONE: _build_find_one,
    ActionKind.FIND: _build_find,
}


def _filter(definition: OperationDefinition, meta: Mapping[str, Any], required: bool = False) -> dict:
    if "Filter" not in meta or meta["Filter"] is None:
        if required:
            raise ConfigError(f"{definition.name}: Filter is required")
        return {}
    filter_ = meta["Filter"]
    if not isinstance(filter_, Mapping):
        raise ConfigError(f"{definition.name}: Filter must be a document")
    return dict(filter_)


def _normalise_options(name: str, kind: ActionKind, raw: Any) -> dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{name}: Options must be a mapping")
    allowed = ALLOWED_OPTIONS[kind]
    options: dict[str, Any] = {}
    for key, value in raw.items():
        option = _snake_case(str(key))
        if option not in allowed:
            raise ConfigError(f"{name}: option {key!r} not supported for {kind.value}")
        if option == "sort":
            value = _sort_spec(name, value)
        elif option in ("limit", "skip", "batch_size"):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigError(f"{name}: option {key!r} must be a non-negative integer")
        options[option] = value
    return options


def _snake_case(key: str) -> str:
    """``BatchSize`` and ``batchSize`` both become ``batch_size``."""
    out: list[str] = []
    for index, char in enumerate(key):
        if char.isupper() and index > 0 and key[index - 1] != "_":
            out.append("_")
        out.append(char.lower())
    return "".join(out)


def _sort_spec(name: str, value: Any) -> list[tuple[str, int]]:
    # {"field": -1} as written in YAML; pymongo wants [("field", -1)]
    if isinstance(value, Mapping):
        items = list(value.items())
    elif isinstance(value, list):
        items = [tuple(item) if isinstance(item, (list, tuple)) else (item,) for item in value]
    else:
        raise ConfigError(f"{name}: sort must be a mapping of field to direction")
    spec: list[tuple[str, int]] = []
    for item in items:
        if len(item) != 2 or item[1] not in (1, -1):
            raise ConfigError(f"{name}: sort directions must be 1 or -1")
        spec.append((str(item[0]), int(item[1])))
    return spec


__all__ = [
    "FindOneOperation",
    "FindOperation",
    "InsertManyOperation",
    "InsertOneOperation",
    "Operation",
    "OperationOutcome",
    "UpdateOneOperation",
    "build_operation",
]
