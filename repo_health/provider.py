"""Data providers producing ``ProjectData`` snapshots, plus the fetch entry point."""

from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any

from repo_health.config import (
    COMMIT_PAGE_SIZE,
    DATA_SOURCE,
    DATA_SOURCES,
    DEFAULT_RATE_LIMIT_TOTAL,
    FETCH_TIMEOUT_SECONDS,
    LANGUAGE_LIMIT,
    MAX_PAGES,
    MAX_WEEKS,
    MOCK_MAX_ADDITIONS,
    MOCK_MAX_COMMITS,
    MOCK_MAX_DELETIONS,
    MOCK_MAX_PR_MERGED,
    MOCK_MAX_PR_OPENED,
    MOCK_RESET_SECONDS,
    PR_PAGE_SIZE,
    TOP_CONTRIBUTORS,
)
from repo_health.errors import (
    InvalidArgument,
    MalformedResponse,
    NotFound,
    RepoHealthError,
    UpstreamUnavailable,
)
from repo_health.github_client import GitHubClient
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

logger = logging.getLogger(__name__)

_PATH_SEGMENT = re.compile(r"^[A-Za-z0-9_.-]+$")
_SECONDS_PER_WEEK = 7 * 24 * 3600


def validate_request(owner: str, repo: str, weeks: int) -> None:
    """Reject malformed repository paths and week ranges."""
    for label, value in (("owner", owner), ("repo", repo)):
        if not isinstance(value, str) or not _PATH_SEGMENT.match(value):
            raise InvalidArgument(f"{label} must be a non-empty repository path segment, got {value!r}")
    if isinstance(weeks, bool) or not isinstance(weeks, int):
        raise InvalidArgument(f"weeks must be an integer, got {weeks!r}")
    if not 1 <= weeks <= MAX_WEEKS:
        raise InvalidArgument(f"weeks must be within [1, {MAX_WEEKS}], got {weeks}")


# ── Illustrative values for metrics GitHub cannot supply ───────────────────

DEFAULT_TRIAGE_SCORE: float = 85

DEFAULT_ISSUE_PREDICTION = IssuePrediction(
    avg_time_to_first_label_hours=4.2,
    severity=Severity.LOW,
    next_week_predicted_issues=35,
)

DEFAULT_DORA_METRICS = DoraMetrics(
    deployment_frequency="3 times per day",
    lead_time_for_changes_hours=4.8,
    time_to_restore_service_hours=0.5,
    change_failure_rate="5%",
)

DEFAULT_TEAM_VELOCITY = TeamVelocity.from_points("Q3 Feature Sprint 2", total=50, completed=35)


# ── Mock provider ───────────────────────────────────────────────────────────

class MockDataProvider:
    """Fabricates a plausible snapshot without touching the network."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def _series(self, weeks: int, upper: int) -> tuple[int, ...]:
        return tuple(self._rng.randrange(upper) for _ in range(weeks))

    async def fetch(self, owner: str, repo: str, weeks: int) -> ProjectData:
        logger.info("Executing GraphQL query for %s/%s over %d weeks.", owner, repo, weeks)
        return ProjectData(
            owner=owner,
            repo=repo,
            description=(
                "Real-time analysis via GitHub GraphQL. "
                "Now includes DORA and Team Velocity metrics."
            ),
            stars=125345,
            primary_language="TypeScript",
            avg_pr_merge_time_days=3.5,
            weekly_commits=self._series(weeks, MOCK_MAX_COMMITS),
            weekly_pr_opened=self._series(weeks, MOCK_MAX_PR_OPENED),
            weekly_pr_merged=self._series(weeks, MOCK_MAX_PR_MERGED),
            weekly_additions=self._series(weeks, MOCK_MAX_ADDITIONS),
            weekly_deletions=self._series(weeks, MOCK_MAX_DELETIONS),
            language_breakdown=(
                LanguageMetric("TypeScript", 70, "#3178C6"),
                LanguageMetric("JavaScript", 20, "#F7DF1E"),
                LanguageMetric("CSS", 10, "#563D7C"),
            ),
            triage_score=DEFAULT_TRIAGE_SCORE,
            issue_prediction_model=DEFAULT_ISSUE_PREDICTION,
            dora_metrics=DEFAULT_DORA_METRICS,
            team_velocity=DEFAULT_TEAM_VELOCITY,
            api_status=ApiStatus.from_counts(
                calls_made=15,
                remaining=4985,
                total=DEFAULT_RATE_LIMIT_TOTAL,
                reset_time=time.time() + MOCK_RESET_SECONDS,
            ),
            contributors=(
                Contributor("gql-master", "https://github.com/gql-master.png", 950, 75000),
                Contributor("api-architect", "https://github.com/api-architect.png", 520, 45000),
            ),
        )


# ── GraphQL provider ────────────────────────────────────────────────────────

QUERY_REPOSITORY = """
query($owner: String!, $name: String!) {
  repository(owner: $owner, name: $name) {
    description
    stargazerCount
    primaryLanguage { name }
    languages(first: %d, orderBy: {field: SIZE, direction: DESC}) {
      totalSize
      edges { size node { name color } }
    }
  }
  rateLimit { cost limit remaining resetAt }
}
""" % LANGUAGE_LIMIT

QUERY_COMMITS = """
query($owner: String!, $name: String!, $since: GitTimestamp!, $cursor: String) {
  repository(owner: $owner, name: $name) {
    defaultBranchRef {
      target {
        ... on Commit {
          history(first: %d, since: $since, after: $cursor) {
            pageInfo { hasNextPage endCursor }
            nodes {
              committedDate
              additions
              deletions
              author { name avatarUrl user { login avatarUrl } }
            }
          }
        }
      }
    }
  }
  rateLimit { cost limit remaining resetAt }
}
""" % COMMIT_PAGE_SIZE

QUERY_PULL_REQUESTS = """
query($owner: String!, $name: String!, $cursor: String) {
  repository(owner: $owner, name: $name) {
    pullRequests(first: %d, after: $cursor, orderBy: {field: CREATED_AT, direction: DESC}) {
      pageInfo { hasNextPage endCursor }
      nodes { createdAt mergedAt }
    }
  }
  rateLimit { cost limit remaining resetAt }
}
""" % PR_PAGE_SIZE


def _parse_timestamp(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError) as exc:
        raise MalformedResponse(f"Invalid timestamp {value!r}") from exc


def week_index(moment: datetime, since: datetime, weeks: int) -> int | None:
    """Bucket ``moment`` into ``[0, weeks)`` counted from ``since``; None if outside."""
    offset = (moment - since).total_seconds()
    if offset < 0:
        return None
    return min(int(offset // _SECONDS_PER_WEEK), weeks - 1)


def _repository(data: dict[str, Any], owner: str, name: str) -> dict[str, Any]:
    repository = data.get("repository")
    if repository is None:
        raise NotFound(f"Repository {owner}/{name} not found or inaccessible")
    return repository


def parse_languages(repository: dict[str, Any]) -> tuple[LanguageMetric, ...]:
    """Convert GraphQL language sizes into percentages of the total size."""
    languages = repository.get("languages") or {}
    total = languages.get("totalSize") or 0
    if not total:
        return ()
    metrics = []
    for edge in languages.get("edges", []):
        node = edge["node"]
        percentage = round(edge["size"] / total * 100, 1)
        metrics.append(LanguageMetric(node["name"], min(percentage, 100.0), node.get("color") or "#CCCCCC"))
    return tuple(metrics)


class GraphQLDataProvider:
    """Fills the GitHub-derivable parts of a snapshot from the GraphQL API."""

    def __init__(
        self,
        token: str | None = None,
        client: GitHubClient | None = None,
    ) -> None:
        self._token = token
        self._client = client

    async def fetch(self, owner: str, repo: str, weeks: int) -> ProjectData:
        if self._client is not None:
            return await self._fetch(self._client, owner, repo, weeks)
        async with GitHubClient(self._token) as client:
            return await self._fetch(client, owner, repo, weeks)

    async def _fetch(
        self,
        client: GitHubClient,
        owner: str,
        repo: str,
        weeks: int,
    ) -> ProjectData:
        since = datetime.now(timezone.utc) - timedelta(weeks=weeks)
        logger.info(
            "Executing GraphQL query for %s/%s over %d weeks (since %s).",
            owner,
            repo,
            weeks,
            since.strftime("%Y-%m-%d"),
        )

        data = await client.graphql(QUERY_REPOSITORY, {"owner": owner, "name": repo})
        repository = _repository(data, owner, repo)
        commits = await self.fetch_commits(client, owner, repo, since)
        pull_requests = await self.fetch_pull_requests(client, owner, repo, since)
        logger.info(
            "Fetched %d commits and %d pull requests for %s/%s",
            len(commits),
            len(pull_requests),
            owner,
            repo,
        )

        try:
            weekly_commits, weekly_additions, weekly_deletions = bucket_commits(commits, since, weeks)
            weekly_opened, weekly_merged, avg_merge_days = bucket_pull_requests(pull_requests, since, weeks)
            return ProjectData(
                owner=owner,
                repo=repo,
                description=repository.get("description") or "",
                stars=repository["stargazerCount"],
                primary_language=(repository.get("primaryLanguage") or {}).get("name", ""),
                avg_pr_merge_time_days=avg_merge_days,
                weekly_commits=weekly_commits,
                weekly_pr_opened=weekly_opened,
                weekly_pr_merged=weekly_merged,
                weekly_additions=weekly_additions,
                weekly_deletions=weekly_deletions,
                language_breakdown=parse_languages(repository),
                triage_score=DEFAULT_TRIAGE_SCORE,
                issue_prediction_model=DEFAULT_ISSUE_PREDICTION,
                dora_metrics=DEFAULT_DORA_METRICS,
                team_velocity=DEFAULT_TEAM_VELOCITY,
                api_status=client.api_status(),
                contributors=aggregate_contributors(commits),
            )
        except (KeyError, TypeError) as exc:
            raise MalformedResponse(f"Unexpected response shape for {owner}/{repo}: {exc!r}") from exc

    async def fetch_commits(
        self,
        client: GitHubClient,
        owner: str,
        repo: str,
        since: datetime,
    ) -> list[dict[str, Any]]:
        """Page through default-branch history since ``since``."""
        nodes: list[dict[str, Any]] = []
        cursor: str | None = None
        for _ in range(MAX_PAGES):
            data = await client.graphql(
                QUERY_COMMITS,
                {"owner": owner, "name": repo, "since": since.isoformat(), "cursor": cursor},
            )
            branch = _repository(data, owner, repo).get("defaultBranchRef")
            if branch is None:
                # Empty repository: no default branch yet.
                return nodes
            try:
                history = branch["target"]["history"]
                nodes.extend(history["nodes"])
                page_info = history["pageInfo"]
            except (KeyError, TypeError) as exc:
                raise MalformedResponse(f"Unexpected commit history shape: {exc!r}") from exc
            if not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")
        else:
            logger.warning("Commit history for %s/%s truncated at %d pages", owner, repo, MAX_PAGES)
        return nodes

    async def fetch_pull_requests(
        self,
        client: GitHubClient,
        owner: str,
        repo: str,
        since: datetime,
    ) -> list[dict[str, Any]]:
        """Page through pull requests newest first until they predate ``since``."""
        nodes: list[dict[str, Any]] = []
        cursor: str | None = None
        for _ in range(MAX_PAGES):
            data = await client.graphql(
                QUERY_PULL_REQUESTS,
                {"owner": owner, "name": repo, "cursor": cursor},
            )
            try:
                connection = _repository(data, owner, repo)["pullRequests"]
                page = connection["nodes"]
                page_info = connection["pageInfo"]
                in_window = [pr for pr in page if _parse_timestamp(pr["createdAt"]) >= since]
            except (KeyError, TypeError) as exc:
                raise MalformedResponse(f"Unexpected pull request shape: {exc!r}") from exc

            nodes.extend(in_window)
            if len(in_window) < len(page) or not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")
        else:
            logger.warning("Pull requests for %s/%s truncated at %d pages", owner, repo, MAX_PAGES)
        return nodes


def bucket_commits(
    commits: list[dict[str, Any]],
    since: datetime,
    weeks: int,
) -> tuple[tuple[int, ...], tuple[int, ...], tuple[int, ...]]:
    """Weekly commit counts, additions and deletions, oldest week first."""
    counts = [0] * weeks
    additions = [0] * weeks
    deletions = [0] * weeks
    for commit in commits:
        idx = week_index(_parse_timestamp(commit["committedDate"]), since, weeks)
        if idx is None:
            continue
        counts[idx] += 1
        additions[idx] += commit.get("additions") or 0
        deletions[idx] += commit.get("deletions") or 0
    return tuple(counts), tuple(additions), tuple(deletions)


def bucket_pull_requests(
    pull_requests: list[dict[str, Any]],
    since: datetime,
    weeks: int,
) -> tuple[tuple[int, ...], tuple[int, ...], float]:
    """Weekly opened/merged counts and the mean merge time in days."""
    opened = [0] * weeks
    merged = [0] * weeks
    merge_days: list[float] = []
    for pr in pull_requests:
        created = _parse_timestamp(pr["createdAt"])
        idx = week_index(created, since, weeks)
        if idx is not None:
            opened[idx] += 1
        if pr.get("mergedAt"):
            merged_at = _parse_timestamp(pr["mergedAt"])
            merged_idx = week_index(merged_at, since, weeks)
            if merged_idx is not None:
                merged[merged_idx] += 1
            merge_days.append((merged_at - created).total_seconds() / 86400)
    avg = round(sum(merge_days) / len(merge_days), 2) if merge_days else 0.0
    return tuple(opened), tuple(merged), max(avg, 0.0)


def aggregate_contributors(commits: list[dict[str, Any]]) -> tuple[Contributor, ...]:
    """Group commits by author login (or name), ordered by commit count."""
    totals: dict[str, list[int]] = defaultdict(lambda: [0, 0])
    avatars: dict[str, str] = {}
    for commit in commits:
        author = commit.get("author") or {}
        user = author.get("user") or {}
        login = user.get("login") or author.get("name")
        if not login:
            continue
        avatars.setdefault(login, user.get("avatarUrl") or author.get("avatarUrl") or "")
        totals[login][0] += 1
        totals[login][1] += (commit.get("additions") or 0) + (commit.get("deletions") or 0)

    ranked = sorted(totals.items(), key=lambda item: (-item[1][0], item[0]))
    return tuple(
        Contributor(login, avatars[login], commit_count, loc)
        for login, (commit_count, loc) in ranked[:TOP_CONTRIBUTORS]
    )


# ── Entry point ─────────────────────────────────────────────────────────────

def get_provider(source: str = DATA_SOURCE) -> MockDataProvider | GraphQLDataProvider:
    """Return the provider configured for ``source`` (``mock`` or ``graphql``)."""
    if source == "mock":
        return MockDataProvider()
    if source == "graphql":
        return GraphQLDataProvider()
    raise InvalidArgument(f"Unknown data source {source!r}; expected one of {DATA_SOURCES}")


async def fetch_all_data(
    owner: str,
    repo: str,
    weeks: int,
    *,
    provider: MockDataProvider | GraphQLDataProvider | None = None,
    timeout: float | None = FETCH_TIMEOUT_SECONDS,
) -> ProjectData:
    """Fetch one snapshot of ``owner/repo`` covering the last ``weeks`` weeks.

    Raises a ``RepoHealthError`` subclass on failure. A timeout surfaces as
    ``UpstreamUnavailable``; cancellation propagates unchanged.
    """
    validate_request(owner, repo, weeks)
    provider = provider or get_provider()
    try:
        data = await asyncio.wait_for(provider.fetch(owner, repo, weeks), timeout)
    except asyncio.TimeoutError as exc:
        raise UpstreamUnavailable(
            f"Fetching {owner}/{repo} timed out after {timeout}s"
        ) from exc
    if data.weeks != weeks:
        raise MalformedResponse(
            f"Provider returned {data.weeks} weeks of data, expected {weeks}"
        )
    return data


@dataclass(frozen=True)
class FetchResult:
    """Either a snapshot or the error that prevented it."""

    value: ProjectData | None = None
    error: RepoHealthError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def fetch_result(
    owner: str,
    repo: str,
    weeks: int,
    **kwargs: Any,
) -> FetchResult:
    """Like :func:`fetch_all_data` but returns failures as values."""
    try:
        return FetchResult(value=await fetch_all_data(owner, repo, weeks, **kwargs))
    except RepoHealthError as exc:
        logger.warning("Fetch of %s/%s failed (%s): %s", owner, repo, exc.kind.value, exc)
        return FetchResult(error=exc)


class FetchCoordinator:
    """Shares one in-flight fetch per repository and week range."""

    def __init__(
        self,
        provider: MockDataProvider | GraphQLDataProvider | None = None,
        timeout: float | None = FETCH_TIMEOUT_SECONDS,
    ) -> None:
        self._provider = provider
        self._timeout = timeout
        self._inflight: dict[tuple[str, str, int], asyncio.Task[ProjectData]] = {}

    @staticmethod
    def _key(owner: str, repo: str, weeks: int) -> tuple[str, str, int]:
        return owner.lower(), repo.lower(), weeks

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    async def fetch(self, owner: str, repo: str, weeks: int) -> ProjectData:
        validate_request(owner, repo, weeks)
        key = self._key(owner, repo, weeks)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(
                fetch_all_data(owner, repo, weeks, provider=self._provider, timeout=self._timeout)
            )
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug("Joining in-flight fetch for %s/%s (%d weeks)", owner, repo, weeks)
        # Shielded so one waiter's cancellation does not abort the shared fetch.
        data = await asyncio.shield(task)
        if (data.owner, data.repo) != (owner, repo):
            data = replace(data, owner=owner, repo=repo)
        return data

    def cancel(self, owner: str, repo: str, weeks: int) -> bool:
        """Cancel the in-flight fetch for this key. Returns False if none."""
        task = self._inflight.get(self._key(owner, repo, weeks))
        if task is None:
            return False
        return task.cancel()

    def _forget(self, key: tuple[str, str, int], task: asyncio.Task[ProjectData]) -> None:
        if not task.cancelled():
            # Mark the outcome retrieved even if every waiter went away.
            task.exception()
        if self._inflight.get(key) is task:
            del self._inflight[key]
