"""Centralised configuration and constants."""

from __future__ import annotations

import os
from pathlib import Path

# ── Paths ───────────────────────────────────────────────────────────────────
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent

# ── Logging ─────────────────────────────────────────────────────────────────
LOG_LEVEL: str = os.getenv("REPO_HEALTH_LOG_LEVEL", "INFO").upper()
LOG_FORMAT: str = "%(asctime)s %(levelname)s %(message)s"

# ── GitHub API ──────────────────────────────────────────────────────────────
GITHUB_TOKEN: str | None = os.getenv("GITHUB_TOKEN")
GRAPHQL_URL: str = "https://api.github.com/graphql"
REQUEST_TIMEOUT: int = 30  # seconds
DEFAULT_RATE_LIMIT_TOTAL: int = 5000

# ── Data source ─────────────────────────────────────────────────────────────
DATA_SOURCE: str = os.getenv("REPO_HEALTH_DATA_SOURCE", "mock").lower()
DATA_SOURCES: tuple[str, ...] = ("mock", "graphql")

# ── Fetch settings ──────────────────────────────────────────────────────────
DEFAULT_WEEKS: int = 12
WEEK_RANGE_CHOICES: tuple[int, ...] = (12, 26, 52)
MAX_WEEKS: int = 52
FETCH_TIMEOUT_SECONDS: float = 120.0
COMMIT_PAGE_SIZE: int = 100
PR_PAGE_SIZE: int = 100
LANGUAGE_LIMIT: int = 10
MAX_PAGES: int = 50
TOP_CONTRIBUTORS: int = 10
RATE_LIMIT_BUFFER: int = 5
MAX_RATE_LIMIT_WAIT: float = 60.0  # seconds; longer waits are reported as errors
RETRY_MAX: int = 3
RETRY_BACKOFF: float = 2.0  # seconds, exponential base

# ── Mock data bounds (exclusive upper bound per weekly series) ─────────────
MOCK_MAX_COMMITS: int = 500
MOCK_MAX_PR_OPENED: int = 80
MOCK_MAX_PR_MERGED: int = 60
MOCK_MAX_ADDITIONS: int = 5000
MOCK_MAX_DELETIONS: int = 2000
MOCK_RESET_SECONDS: int = 3600

# ── Dashboard colours ──────────────────────────────────────────────────────
REPO_A_COLOR: str = "#FF6B6B"
REPO_B_COLOR: str = "#4ECDC4"
