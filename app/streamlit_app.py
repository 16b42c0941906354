"""Streamlit dashboard comparing the health of two GitHub repositories."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

import pandas as pd
import plotly.graph_objects as go
import streamlit as st

from repo_health.comparison import ComparisonKey, ComparisonState
from repo_health.config import (
    DATA_SOURCE,
    DATA_SOURCES,
    DEFAULT_WEEKS,
    LOG_FORMAT,
    LOG_LEVEL,
    WEEK_RANGE_CHOICES,
)
from repo_health.errors import InvalidArgument
from repo_health.models import ProjectData
from repo_health.provider import FetchResult, fetch_result, get_provider
from repo_health.renderer import comparison_frame, render_comparison_chart

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
logger = logging.getLogger(__name__)


# ── Session state ───────────────────────────────────────────────────────────

def _comparison_state() -> ComparisonState:
    """The comparison state owned by this browser session."""
    if "comparison" not in st.session_state:
        st.session_state["comparison"] = ComparisonState()
    return st.session_state["comparison"]


def _split_path(path: str) -> tuple[str, str]:
    owner, _, repo = path.strip().partition("/")
    if not owner or not repo:
        raise InvalidArgument(f"Expected 'owner/repo', got {path!r}")
    return owner, repo


def _fetch(path: str, weeks: int, source: str) -> FetchResult:
    try:
        owner, repo = _split_path(path)
    except InvalidArgument as exc:
        return FetchResult(error=exc)
    return asyncio.run(fetch_result(owner, repo, weeks, provider=get_provider(source)))


# ── Panels ──────────────────────────────────────────────────────────────────

def _render_snapshot(data: ProjectData) -> None:
    """Details for one repository snapshot."""
    st.markdown(f"### {data.full_name}")
    if data.description:
        st.caption(data.description)

    c1, c2, c3 = st.columns(3)
    c1.metric("Stars", f"{data.stars:,}")
    c2.metric("Avg PR merge", f"{data.avg_pr_merge_time_days:.1f} d")
    c3.metric("Triage score", f"{data.triage_score:g}")

    dora = data.dora_metrics
    st.markdown("**DORA metrics**")
    d1, d2 = st.columns(2)
    d1.metric("Deployment frequency", dora.deployment_frequency)
    d2.metric("Change failure rate", dora.change_failure_rate)
    d1.metric("Lead time", f"{dora.lead_time_for_changes_hours:.1f} h")
    d2.metric("Time to restore", f"{dora.time_to_restore_service_hours:.1f} h")

    velocity = data.team_velocity
    st.markdown(f"**Sprint:** {velocity.current_sprint_name}")
    st.progress(
        velocity.sprint_completion_percentage / 100,
        text=f"{velocity.completed_story_points} / {velocity.total_story_points} story points",
    )

    prediction = data.issue_prediction_model
    st.caption(
        f"Issue triage: {prediction.avg_time_to_first_label_hours:.1f} h to first label · "
        f"severity {prediction.severity.value} · "
        f"{prediction.next_week_predicted_issues} issues predicted next week"
    )

    if data.language_breakdown:
        fig = go.Figure(go.Pie(
            labels=[lang.name for lang in data.language_breakdown],
            values=[lang.percentage for lang in data.language_breakdown],
            marker=dict(colors=[lang.color for lang in data.language_breakdown]),
            hole=0.5,
        ))
        fig.update_layout(margin=dict(t=10, b=10, l=10, r=10), height=220, showlegend=True)
        st.plotly_chart(fig, use_container_width=True)

    if data.contributors:
        df = pd.DataFrame(
            [(c.user, c.commits, c.loc_changed) for c in data.contributors],
            columns=["Contributor", "Commits", "Lines changed"],
        )
        df.index = df.index + 1
        st.dataframe(df, use_container_width=True)

    api = data.api_status
    reset = datetime.fromtimestamp(api.reset_time, tz=timezone.utc).strftime("%H:%M UTC")
    if api.is_rate_limited:
        st.warning(f"API rate limit exhausted; resets at {reset}.")
    else:
        st.caption(
            f"API: {api.calls_made} calls · {api.rate_limit_remaining:,}/"
            f"{api.rate_limit_total:,} remaining · resets {reset}"
        )

    with st.expander("Raw snapshot"):
        st.json(data.to_dict())


# ── Dashboard ───────────────────────────────────────────────────────────────

def main() -> None:
    """Render the Streamlit dashboard."""
    st.set_page_config(page_title="Repository Health", layout="wide")
    state = _comparison_state()

    st.markdown("## Repository Health Dashboard")
    st.caption("Commit activity · PR velocity · DORA metrics · contributors")

    # ── Sidebar: repository selection ────────────────────────────────────
    with st.sidebar:
        st.header("Repositories")
        source = st.selectbox(
            "Data source",
            DATA_SOURCES,
            index=DATA_SOURCES.index(DATA_SOURCE) if DATA_SOURCE in DATA_SOURCES else 0,
        )
        weeks = st.select_slider("Weeks of history", options=WEEK_RANGE_CHOICES, value=DEFAULT_WEEKS)
        path_a = st.text_input("Repository A", value="octocat/hello-world")
        path_b = st.text_input("Repository B", value="")
        if st.button("Fetch", type="primary"):
            for slot, path in (("a", path_a), ("b", path_b)):
                if not path.strip():
                    state.set_snapshot(slot, None)
                    continue
                with st.spinner(f"Fetching {path}..."):
                    result = _fetch(path, weeks, source)
                # A failed fetch clears the slot rather than leaving a stale snapshot.
                state.set_snapshot(slot, result.value)
                if not result.ok:
                    st.error(f"{path}: {result.error.kind.value}: {result.error}")

    # ── Comparison ───────────────────────────────────────────────────────
    keys = list(ComparisonKey)
    selected = st.selectbox(
        "Compare",
        keys,
        index=keys.index(state.comparison_key),
        format_func=lambda k: k.label,
    )
    state.set_comparison_key(selected)

    fig = render_comparison_chart(state)
    if fig is not None:
        st.plotly_chart(fig, use_container_width=True)
        with st.expander("Comparison data"):
            st.dataframe(comparison_frame(state), use_container_width=True)
    else:
        st.info("Fetch two repositories to compare them side by side.")

    # ── Snapshots ────────────────────────────────────────────────────────
    col_a, col_b = st.columns(2)
    for col, data in ((col_a, state.repo_a), (col_b, state.repo_b)):
        with col:
            if data is not None:
                _render_snapshot(data)


if __name__ == "__main__":
    main()
