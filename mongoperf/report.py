from __future__ import annotations

import types
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

import pandas as pd

from .config import ActionKind

REPORT_COLUMNS = [
    "name",
    "action",
    "query_count",
    "change_count",
    "error_count",
    "duration_total_s",
    "mean_duration_ms",
    "successful",
    "last_error",
]


@dataclass(frozen=True)
class QueryStats:
    """Frozen statistics of one operation at the end of a run."""

    name: str
    action: ActionKind
    query_count: int
    duration_total_s: float
    change_count: int
    error_count: int
    last_error: BaseException | None = None

    @property
    def successful(self) -> bool:
        return self.last_error is None

    @property
    def mean_duration_s(self) -> float:
        if self.query_count == 0:
            return 0.0
        return self.duration_total_s / self.query_count


@dataclass(frozen=True)
class Report:
    """Immutable outcome of a scenario run."""

    uri: str
    database: str
    collection: str
    parallel: int
    buffer_size: int
    queries: Mapping[str, QueryStats]
    rejected: Mapping[str, str] = field(default_factory=dict)
    cancelled: bool = False
    cancel_reason: str | None = None
    elapsed_s: float = 0.0
    version: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "queries", types.MappingProxyType(dict(self.queries)))
        object.__setattr__(self, "rejected", types.MappingProxyType(dict(self.rejected)))

    @property
    def total_queries(self) -> int:
        return sum(stats.query_count for stats in self.queries.values())

    @property
    def total_errors(self) -> int:
        return sum(stats.error_count for stats in self.queries.values())

    def to_dataframe(self) -> pd.DataFrame:
        rows = [
            {
                "name": stats.name,
                "action": stats.action.value,
                "query_count": stats.query_count,
                "change_count": stats.change_count,
                "error_count": stats.error_count,
                "duration_total_s": stats.duration_total_s,
                "mean_duration_ms": stats.mean_duration_s * 1000.0,
                "successful": stats.successful,
                "last_error": None if stats.last_error is None else str(stats.last_error),
            }
            for stats in self.queries.values()
        ]
        if not rows:
            return pd.DataFrame(columns=REPORT_COLUMNS)
        return pd.DataFrame(rows, columns=REPORT_COLUMNS)


def write_csv(report: Report, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    report.to_dataframe().to_csv(path, index=False)
    return path


def format_duration(seconds: float) -> str:
    if seconds < 1e-3:
        return f"{seconds * 1e6:.0f}µs"
    if seconds < 1.0:
        return f"{seconds * 1e3:.3f}ms"
    return f"{seconds:.3f}s"


def render_text(report: Report) -> str:
    rule = "=" * 39
    thin = "-" * 39
    lines = [
        rule,
        "  Scenario Report",
        rule,
        "",
        f"  Generated by mongoperf {report.version}".rstrip(),
        "",
        thin,
        "  Config",
        thin,
        f"    URI:        {report.uri}",
        f"    Database:   {report.database}",
        f"    Collection: {report.collection}",
        f"    Parallel:   {report.parallel}",
        f"    BufferSize: {report.buffer_size}",
        f"    Elapsed:    {format_duration(report.elapsed_s)}",
    ]
    if report.cancelled:
        lines.append(f"    Cancelled:  {report.cancel_reason or 'yes'}")
    lines.extend([thin, "  Queries", thin])

    for stats in report.queries.values():
        last_error = "nil" if stats.last_error is None else str(stats.last_error)
        lines.extend(
            [
                f"  > Name:              {stats.name}",
                f"    Action:            {stats.action.value}",
                f"    QueryCount:        {stats.query_count}",
                f"    ChangeCount:       {stats.change_count}",
                f"    DurationTotal:     {format_duration(stats.duration_total_s)}",
                f"    Successful:        {'true' if stats.successful else 'false'}",
                f"    ErrorCount:        {stats.error_count}",
                f"    LastError:         {last_error}",
                "",
            ]
        )

    if report.rejected:
        lines.extend([thin, "  Rejected", thin])
        for name, reason in sorted(report.rejected.items()):
            lines.append(f"  > {name}: {reason}")

    lines.append(rule)
    return "\n".join(lines)


__all__ = ["QueryStats", "Report", "format_duration", "render_text", "write_csv"]
