from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Sequence

import yaml

from .errors import ConfigError

DEFAULT_PARALLEL = 1
DEFAULT_BUFFER_SIZE = 1000
DEFAULT_REPEAT = 1

SCENARIO_KEYS = ("Database", "Collection", "Parallel", "BufferSize", "Queries")
QUERY_KEYS = ("Name", "Action", "Repeat", "Meta")


class ActionKind(str, Enum):
    INSERT_ONE = "InsertOne"
    INSERT_MANY = "InsertMany"
    UPDATE_ONE = "UpdateOne"
    FIND_ONE = "FindOne"
    FIND = "Find"

    @classmethod
    def parse(cls, value: str) -> "ActionKind":
        value = ACTION_ALIASES.get(value, value)
        try:
            return cls(value)
        except ValueError:
            raise ConfigError(f"action not supported: {value!r}") from None


# Spellings used by older scenario files.
ACTION_ALIASES: dict[str, str] = {
    "UpdateOneAction": ActionKind.UPDATE_ONE.value,
    "FindOneAction": ActionKind.FIND_ONE.value,
}


@dataclass(frozen=True)
class OperationDefinition:
    """One named operation of a scenario and how often to emit it.

    ``repeat == 0`` means the operation is emitted until the run is
    cancelled; a positive value is an exact count.
    """

    name: str
    action: str
    repeat: int = DEFAULT_REPEAT
    meta: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigError("Name must not be empty")
        if not self.action:
            raise ConfigError(f"{self.name}: Action must not be empty")
        if isinstance(self.repeat, bool) or not isinstance(self.repeat, int):
            raise ConfigError(f"{self.name}: Repeat must be an integer")
        if self.repeat < 0:
            raise ConfigError(f"{self.name}: Repeat must be greater than or equal to 0")

    @property
    def infinite(self) -> bool:
        return self.repeat == 0


@dataclass(frozen=True)
class ScenarioDefinition:
    """Target collection, pipeline sizing and the operations to drive."""

    database: str
    collection: str
    operations: Sequence[OperationDefinition]
    parallel: int = DEFAULT_PARALLEL
    buffer_size: int = DEFAULT_BUFFER_SIZE

    def __post_init__(self) -> None:
        if not self.database:
            raise ConfigError("Database must not be empty")
        if not self.collection:
            raise ConfigError("Collection must not be empty")
        _check_positive("Parallel", self.parallel)
        _check_positive("BufferSize", self.buffer_size)
        if not self.operations:
            raise ConfigError("Queries must not be empty")
        seen: set[str] = set()
        for definition in self.operations:
            if definition.name in seen:
                raise ConfigError(f"duplicate query name: {definition.name!r}")
            seen.add(definition.name)
        object.__setattr__(self, "operations", tuple(self.operations))

    @property
    def finite(self) -> bool:
        return all(not definition.infinite for definition in self.operations)

    def expected_counts(self) -> dict[str, int]:
        """Invocations per operation name for a run that is never cancelled."""
        return {
            definition.name: definition.repeat
            for definition in self.operations
            if not definition.infinite
        }


def load_scenario(path: str | Path) -> ScenarioDefinition:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read scenario file {path}: {exc}") from exc
    return parse_scenario_text(text)


def parse_scenario_text(text: str) -> ScenarioDefinition:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid scenario YAML: {exc}") from exc
    return parse_scenario(data)


def parse_scenario(data: Any) -> ScenarioDefinition:
    if not isinstance(data, Mapping):
        raise ConfigError("scenario must be a mapping")
    if set(data) == {"Scenario"}:
        data = data["Scenario"]
        if not isinstance(data, Mapping):
            raise ConfigError("Scenario must be a mapping")
    _reject_unknown_keys("Scenario", data, SCENARIO_KEYS)

    queries = data.get("Queries")
    if queries is None:
        queries = []
    if not isinstance(queries, list):
        raise ConfigError("Queries must be a list")

    return ScenarioDefinition(
        database=_optional_str(data, "Database"),
        collection=_optional_str(data, "Collection"),
        parallel=_optional_int(data, "Parallel", DEFAULT_PARALLEL),
        buffer_size=_optional_int(data, "BufferSize", DEFAULT_BUFFER_SIZE),
        operations=[_parse_query(index, query) for index, query in enumerate(queries)],
    )


def _parse_query(index: int, data: Any) -> OperationDefinition:
    if not isinstance(data, Mapping):
        raise ConfigError(f"Queries[{index}] must be a mapping")
    _reject_unknown_keys(f"Queries[{index}]", data, QUERY_KEYS)
    meta = data.get("Meta")
    if meta is None:
        meta = {}
    if not isinstance(meta, Mapping):
        raise ConfigError(f"Queries[{index}].Meta must be a mapping")
    return OperationDefinition(
        name=_optional_str(data, "Name"),
        action=_optional_str(data, "Action"),
        repeat=_optional_int(data, "Repeat", DEFAULT_REPEAT),
        meta=dict(meta),
    )


def _reject_unknown_keys(where: str, data: Mapping[str, Any], allowed: Sequence[str]) -> None:
    unknown = sorted(str(key) for key in data if key not in allowed)
    if unknown:
        raise ConfigError(f"{where}: unknown keys {', '.join(unknown)}")


def _optional_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    return value


def _optional_int(data: Mapping[str, Any], key: str, default: int) -> int:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _check_positive(key: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    if value < 1:
        raise ConfigError(f"{key} must be greater than or equal to 1")
