"""Domain models for the repository health dashboard."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from repo_health.errors import InvalidArgument


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise InvalidArgument(message)


class Severity(str, Enum):
    """Coarse classification of the predicted issue load."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


@dataclass(frozen=True)
class Contributor:
    """One person's cumulative activity within a snapshot."""

    user: str
    avatar_url: str
    commits: int
    loc_changed: int

    def __post_init__(self) -> None:
        _require(self.commits >= 0, f"commits must be >= 0, got {self.commits}")
        _require(self.loc_changed >= 0, f"loc_changed must be >= 0, got {self.loc_changed}")


@dataclass(frozen=True)
class LanguageMetric:
    """Share of the codebase written in one language."""

    name: str
    percentage: float
    color: str

    def __post_init__(self) -> None:
        _require(
            0 <= self.percentage <= 100,
            f"percentage for {self.name} must be within [0, 100], got {self.percentage}",
        )


@dataclass(frozen=True)
class IssuePrediction:
    avg_time_to_first_label_hours: float
    severity: Severity
    next_week_predicted_issues: int

    def __post_init__(self) -> None:
        _require(self.avg_time_to_first_label_hours >= 0, "avg_time_to_first_label_hours must be >= 0")
        _require(isinstance(self.severity, Severity), f"unknown severity {self.severity!r}")
        _require(self.next_week_predicted_issues >= 0, "next_week_predicted_issues must be >= 0")


@dataclass(frozen=True)
class DoraMetrics:
    """The four DevOps Research and Assessment indicators."""

    deployment_frequency: str  # e.g. "3 times per day"
    lead_time_for_changes_hours: float
    time_to_restore_service_hours: float
    change_failure_rate: str  # e.g. "5%"

    def __post_init__(self) -> None:
        _require(self.lead_time_for_changes_hours >= 0, "lead_time_for_changes_hours must be >= 0")
        _require(self.time_to_restore_service_hours >= 0, "time_to_restore_service_hours must be >= 0")


@dataclass(frozen=True)
class TeamVelocity:
    """Story-point progress for the current sprint."""

    current_sprint_name: str
    total_story_points: int
    completed_story_points: int
    sprint_completion_percentage: float

    def __post_init__(self) -> None:
        _require(self.total_story_points >= 0, "total_story_points must be >= 0")
        _require(
            0 <= self.completed_story_points <= self.total_story_points,
            f"completed_story_points ({self.completed_story_points}) must be within "
            f"[0, {self.total_story_points}]",
        )
        _require(
            0 <= self.sprint_completion_percentage <= 100,
            "sprint_completion_percentage must be within [0, 100]",
        )

    @classmethod
    def from_points(cls, sprint_name: str, total: int, completed: int) -> TeamVelocity:
        """Build a velocity record, deriving the completion percentage."""
        percentage = completed / total * 100 if total else 0.0
        return cls(sprint_name, total, completed, round(percentage, 1))


@dataclass(frozen=True)
class ApiStatus:
    """Upstream API quota as seen after the last request."""

    calls_made: int
    rate_limit_remaining: int
    rate_limit_total: int
    reset_time: float  # unix epoch seconds
    is_rate_limited: bool

    def __post_init__(self) -> None:
        _require(self.calls_made >= 0, "calls_made must be >= 0")
        _require(self.rate_limit_total > 0, "rate_limit_total must be > 0")
        _require(
            0 <= self.rate_limit_remaining <= self.rate_limit_total,
            f"rate_limit_remaining ({self.rate_limit_remaining}) must be within "
            f"[0, {self.rate_limit_total}]",
        )
        _require(
            self.is_rate_limited == (self.rate_limit_remaining == 0),
            "is_rate_limited must be true exactly when no calls remain",
        )

    @classmethod
    def from_counts(
        cls,
        calls_made: int,
        remaining: int,
        total: int,
        reset_time: float,
    ) -> ApiStatus:
        return cls(calls_made, remaining, total, reset_time, remaining == 0)


@dataclass(frozen=True)
class ProjectData:
    """Snapshot of one repository over the requested week range."""

    owner: str
    repo: str
    description: str
    stars: int
    primary_language: str
    avg_pr_merge_time_days: float
    weekly_commits: tuple[int, ...]
    weekly_pr_opened: tuple[int, ...]
    weekly_pr_merged: tuple[int, ...]
    weekly_additions: tuple[int, ...]
    weekly_deletions: tuple[int, ...]
    language_breakdown: tuple[LanguageMetric, ...]
    triage_score: float
    issue_prediction_model: IssuePrediction
    dora_metrics: DoraMetrics
    team_velocity: TeamVelocity
    api_status: ApiStatus
    contributors: tuple[Contributor, ...] = field(default_factory=tuple)

    WEEKLY_FIELDS = (
        "weekly_commits",
        "weekly_pr_opened",
        "weekly_pr_merged",
        "weekly_additions",
        "weekly_deletions",
    )

    def __post_init__(self) -> None:
        _require(bool(self.owner) and bool(self.repo), "owner and repo must be non-empty")
        _require(self.stars >= 0, "stars must be >= 0")
        _require(self.avg_pr_merge_time_days >= 0, "avg_pr_merge_time_days must be >= 0")
        lengths = {name: len(getattr(self, name)) for name in self.WEEKLY_FIELDS}
        _require(
            len(set(lengths.values())) == 1,
            f"weekly series must have equal length, got {lengths}",
        )

    @property
    def full_name(self) -> str:
        """``owner/repo`` path of the repository."""
        return f"{self.owner}/{self.repo}"

    @property
    def weeks(self) -> int:
        """Number of weeks covered by every weekly series."""
        return len(self.weekly_commits)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation (enums as values, tuples as lists)."""
        data = asdict(self)
        data["full_name"] = self.full_name
        data["issue_prediction_model"]["severity"] = self.issue_prediction_model.severity.value
        return _listify(data)


def _listify(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _listify(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_listify(v) for v in value]
    return value
