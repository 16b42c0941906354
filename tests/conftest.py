"""Shared fixtures."""

from __future__ import annotations

import time
from typing import Callable

import pytest

from repo_health.models import (
    ApiStatus,
    Contributor,
    DoraMetrics,
    IssuePrediction,
    LanguageMetric,
    ProjectData,
    Severity,
    TeamVelocity,
)


def _make_project(weeks: int = 4, **overrides) -> ProjectData:
    """Build a ProjectData for tests."""
    defaults = dict(
        owner="octocat",
        repo="hello-world",
        description="test repo",
        stars=10,
        primary_language="Python",
        avg_pr_merge_time_days=1.5,
        weekly_commits=tuple(range(weeks)),
        weekly_pr_opened=(1,) * weeks,
        weekly_pr_merged=(1,) * weeks,
        weekly_additions=(100,) * weeks,
        weekly_deletions=(50,) * weeks,
        language_breakdown=(LanguageMetric("Python", 100, "#3572A5"),),
        triage_score=80,
        issue_prediction_model=IssuePrediction(2.0, Severity.MEDIUM, 3),
        dora_metrics=DoraMetrics("daily", 1.0, 0.5, "10%"),
        team_velocity=TeamVelocity.from_points("Sprint 1", total=20, completed=5),
        api_status=ApiStatus.from_counts(1, 4999, 5000, time.time()),
        contributors=(Contributor("alice", "https://example.com/a.png", 3, 120),),
    )
    defaults.update(overrides)
    return ProjectData(**defaults)


@pytest.fixture
def make_project() -> Callable[..., ProjectData]:
    return _make_project
