"""Side-by-side comparison state for two repository snapshots."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from enum import Enum

from repo_health.errors import InvalidArgument
from repo_health.models import ProjectData

logger = logging.getLogger(__name__)


class ComparisonKey(str, Enum):
    """Fields of ``ProjectData`` that can be charted."""

    WEEKLY_COMMITS = "weekly_commits"
    WEEKLY_PR_OPENED = "weekly_pr_opened"
    WEEKLY_PR_MERGED = "weekly_pr_merged"
    WEEKLY_ADDITIONS = "weekly_additions"
    WEEKLY_DELETIONS = "weekly_deletions"
    STARS = "stars"
    AVG_PR_MERGE_TIME_DAYS = "avg_pr_merge_time_days"
    TRIAGE_SCORE = "triage_score"

    @property
    def is_series(self) -> bool:
        return self.value in ProjectData.WEEKLY_FIELDS

    @property
    def label(self) -> str:
        words = ["PR" if word == "pr" else word for word in self.value.split("_")]
        words[0] = words[0].capitalize()
        return " ".join(words)


_PROJECT_FIELDS = frozenset(f.name for f in fields(ProjectData)) | {"full_name", "weeks"}


def parse_comparison_key(key: ComparisonKey | str) -> ComparisonKey:
    """Resolve ``key`` to a ComparisonKey or raise ``InvalidArgument``."""
    if isinstance(key, ComparisonKey):
        return key
    try:
        return ComparisonKey(key)
    except ValueError:
        pass
    if key in _PROJECT_FIELDS:
        raise InvalidArgument(f"{key!r} is not a chart-renderable field of ProjectData")
    raise InvalidArgument(f"{key!r} is not a field of ProjectData")


@dataclass
class ComparisonState:
    """Two snapshots and the metric selected for comparing them.

    Owned by the UI session; never persisted.
    """

    repo_a: ProjectData | None = None
    repo_b: ProjectData | None = None
    comparison_key: ComparisonKey = ComparisonKey.WEEKLY_COMMITS

    def __setattr__(self, name: str, value: object) -> None:
        # Covers the generated __init__ as well as plain assignment.
        if name == "comparison_key":
            value = parse_comparison_key(value)
        super().__setattr__(name, value)

    @property
    def ready(self) -> bool:
        """True when both snapshots are present."""
        return self.repo_a is not None and self.repo_b is not None

    def set_comparison_key(self, key: ComparisonKey | str) -> ComparisonKey:
        self.comparison_key = key
        logger.debug("Comparison key set to %s", self.comparison_key.value)
        return self.comparison_key

    def set_snapshot(self, slot: str, data: ProjectData | None) -> None:
        """Place ``data`` in slot ``"a"`` or ``"b"``, replacing what was there."""
        if slot.lower() == "a":
            self.repo_a = data
        elif slot.lower() == "b":
            self.repo_b = data
        else:
            raise InvalidArgument(f"slot must be 'a' or 'b', got {slot!r}")

    def clear(self) -> None:
        self.repo_a = None
        self.repo_b = None

    def values(self) -> tuple[object, object] | None:
        """Selected field from each snapshot, or None when not ready."""
        if not self.ready:
            return None
        attr = self.comparison_key.value
        return getattr(self.repo_a, attr), getattr(self.repo_b, attr)
