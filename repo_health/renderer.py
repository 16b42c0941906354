"""Plotly rendering of a comparison state."""

from __future__ import annotations

import logging

import pandas as pd
import plotly.graph_objects as go

from repo_health.comparison import ComparisonState
from repo_health.config import REPO_A_COLOR, REPO_B_COLOR

logger = logging.getLogger(__name__)


def _column_names(state: ComparisonState) -> tuple[str, str]:
    name_a = state.repo_a.full_name
    name_b = state.repo_b.full_name
    if name_a == name_b:
        return f"{name_a} (A)", f"{name_b} (B)"
    return name_a, name_b


def comparison_frame(state: ComparisonState) -> pd.DataFrame | None:
    """Align the selected metric of both snapshots into one DataFrame.

    Weekly series are indexed by 1-based week number; a shorter series is
    padded with NaN. Scalars produce a single row labelled with the metric.
    """
    values = state.values()
    if values is None:
        return None
    value_a, value_b = values
    col_a, col_b = _column_names(state)
    key = state.comparison_key

    if key.is_series:
        frame = pd.DataFrame({
            col_a: pd.Series(value_a, index=range(1, len(value_a) + 1), dtype="float64"),
            col_b: pd.Series(value_b, index=range(1, len(value_b) + 1), dtype="float64"),
        })
        frame.index.name = "week"
        return frame

    frame = pd.DataFrame({col_a: [value_a], col_b: [value_b]}, index=[key.label])
    frame.index.name = "metric"
    return frame


def render_comparison_chart(state: ComparisonState) -> go.Figure | None:
    """Build the comparison figure; returns None when a snapshot is missing."""
    frame = comparison_frame(state)
    if frame is None:
        logger.debug("Comparison skipped: both repositories must be selected")
        return None

    key = state.comparison_key
    logger.info("Rendering comparison chart for metric: %s", key.value)
    fig = go.Figure()
    for column, color in zip(frame.columns, (REPO_A_COLOR, REPO_B_COLOR)):
        if key.is_series:
            fig.add_trace(go.Scatter(
                x=frame.index,
                y=frame[column],
                mode="lines+markers",
                name=column,
                line=dict(color=color),
            ))
        else:
            fig.add_trace(go.Bar(
                x=[column],
                y=frame[column],
                name=column,
                marker_color=color,
                text=frame[column],
                textposition="auto",
            ))

    fig.update_layout(
        xaxis_title="Week" if key.is_series else "Repository",
        yaxis_title=key.label,
        legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1),
        margin=dict(t=10, b=40, l=50, r=10),
        height=320,
    )
    return fig
