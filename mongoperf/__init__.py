"""
Scenario-driven load generator for MongoDB.

A scenario declares operations, how often each repeats and how many
workers run them; ``run_scenario`` drives it against a store and
returns the aggregated per-operation statistics.
"""

__version__ = "0.2.0"

from .cancellation import CancellationSupervisor, CancellationToken
from .config import ActionKind, OperationDefinition, ScenarioDefinition, load_scenario
from .errors import ConfigError, MongoperfError, OperationExecutionError, StoreConnectionError
from .report import QueryStats, Report, render_text
from .runner import run_scenario

__all__ = [
    "ActionKind",
    "CancellationSupervisor",
    "CancellationToken",
    "ConfigError",
    "MongoperfError",
    "OperationDefinition",
    "OperationExecutionError",
    "QueryStats",
    "Report",
    "ScenarioDefinition",
    "StoreConnectionError",
    "__version__",
    "load_scenario",
    "render_text",
    "run_scenario",
]
