from __future__ import annotations

import logging
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .report import Report

LOGGER = logging.getLogger("mongoperf.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 150
plt.rcParams["font.size"] = 10
plt.rcParams["axes.labelsize"] = 11
plt.rcParams["axes.titlesize"] = 13
plt.rcParams["legend.fontsize"] = 9

SUCCESS_COLOR = "#2E86AB"
ERROR_COLOR = "#C73E1D"
LATENCY_COLOR = "#F18F01"


def render_report_chart(report: Report, chart_path: str | Path, title: str | None = None) -> Path:
    """Render invocation counts and mean latency per operation as one PNG."""
    chart_path = Path(chart_path)
    chart_path.parent.mkdir(parents=True, exist_ok=True)

    df = report.to_dataframe()
    fig, (count_ax, latency_ax) = plt.subplots(1, 2, figsize=(14, 6))
    if df.empty:
        LOGGER.warning("No query statistics available for chart")
        count_ax.text(0.5, 0.5, "no data", ha="center", va="center")
        latency_ax.text(0.5, 0.5, "no data", ha="center", va="center")
    else:
        positions = np.arange(len(df))
        _render_count_panel(count_ax, positions, df)
        _render_latency_panel(latency_ax, positions, df)

    fig.suptitle(
        title or f"{report.database}.{report.collection} (parallel={report.parallel})",
        fontweight="bold",
    )
    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    LOGGER.info("Rendering chart %s", chart_path)
    return chart_path


def _render_count_panel(ax: plt.Axes, positions: np.ndarray, df: pd.DataFrame) -> None:
    errors = df["error_count"].to_numpy()
    successes = df["query_count"].to_numpy() - errors
    ax.bar(positions, successes, color=SUCCESS_COLOR, alpha=0.8, edgecolor="white", label="ok")
    ax.bar(
        positions,
        errors,
        bottom=successes,
        color=ERROR_COLOR,
        alpha=0.8,
        edgecolor="white",
        label="error",
    )
    ax.set_xticks(positions)
    ax.set_xticklabels(df["name"], rotation=30, ha="right")
    ax.set_ylabel("Invocations", fontweight="semibold")
    ax.set_title("Invocations per Query", fontweight="bold", pad=15)
    ax.legend(loc="upper right", frameon=True)
    ax.grid(True, alpha=0.3, axis="y", linestyle="--")


def _render_latency_panel(ax: plt.Axes, positions: np.ndarray, df: pd.DataFrame) -> None:
    bars = ax.bar(
        positions,
        df["mean_duration_ms"].to_numpy(),
        color=LATENCY_COLOR,
        alpha=0.8,
        edgecolor="white",
        linewidth=2,
    )
    ax.set_xticks(positions)
    ax.set_xticklabels(df["name"], rotation=30, ha="right")
    ax.set_ylabel("Mean latency (ms)", fontweight="semibold")
    ax.set_title("Mean Latency per Query", fontweight="bold", pad=15)
    ax.grid(True, alpha=0.3, axis="y", linestyle="--")

    for bar in bars:
        height = bar.get_height()
        ax.text(
            bar.get_x() + bar.get_width() / 2.0,
            height,
            f"{height:.2f}",
            ha="center",
            va="bottom",
            fontweight="semibold",
        )


__all__ = ["render_report_chart"]
