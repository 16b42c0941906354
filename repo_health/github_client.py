"""Async GitHub GraphQL client with retries and rate-limit tracking."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from repo_health.config import (
    DEFAULT_RATE_LIMIT_TOTAL,
    GITHUB_TOKEN,
    GRAPHQL_URL,
    MAX_RATE_LIMIT_WAIT,
    RATE_LIMIT_BUFFER,
    REQUEST_TIMEOUT,
    RETRY_BACKOFF,
    RETRY_MAX,
)
from repo_health.errors import (
    MalformedResponse,
    NotFound,
    RateLimited,
    Unauthorized,
    UpstreamUnavailable,
)
from repo_health.models import ApiStatus

logger = logging.getLogger(__name__)

_GRAPHQL_ERROR_TYPES = {
    "NOT_FOUND": NotFound,
    "RATE_LIMITED": RateLimited,
    "FORBIDDEN": Unauthorized,
}


class GitHubClient:
    """GraphQL client mapping upstream failures onto the error taxonomy."""

    def __init__(
        self,
        token: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_max: int = RETRY_MAX,
        retry_backoff: float = RETRY_BACKOFF,
    ) -> None:
        self._token = token or GITHUB_TOKEN
        if not self._token:
            raise Unauthorized(
                "GITHUB_TOKEN is required. Set it as an environment variable."
            )
        self._client = httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {self._token}",
                "Accept": "application/vnd.github+json",
            },
            timeout=REQUEST_TIMEOUT,
            transport=transport,
        )
        self._retry_max = retry_max
        self._retry_backoff = retry_backoff
        self._calls_made: int = 0
        self._remaining: int = DEFAULT_RATE_LIMIT_TOTAL
        self._limit: int = DEFAULT_RATE_LIMIT_TOTAL
        self._reset_at: float = 0.0

    # ── GraphQL ─────────────────────────────────────────────────────────

    async def graphql(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute a GraphQL query. Should include a ``rateLimit`` selection.

        Returns the ``data`` dict from the response.
        """
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        for attempt in range(1, self._retry_max + 1):
            await self._wait_if_rate_limited()

            try:
                resp = await self._client.post(GRAPHQL_URL, json=payload)
            except httpx.TransportError as exc:
                logger.warning(
                    "Transport error (attempt %d/%d): %s", attempt, self._retry_max, exc
                )
                if attempt == self._retry_max:
                    raise UpstreamUnavailable(
                        f"GitHub unreachable after {self._retry_max} attempts: {exc}"
                    ) from exc
                await self._backoff(attempt)
                continue

            self._calls_made += 1
            self._update_from_headers(resp)

            if resp.status_code == 401:
                raise Unauthorized("GitHub rejected the token (HTTP 401)")
            if resp.status_code in (403, 429):
                if not self._is_rate_limit_response(resp):
                    raise Unauthorized(f"Access denied (HTTP {resp.status_code})")
                await self._handle_rate_limit_response(resp, attempt)
                continue
            if resp.status_code == 404:
                raise NotFound("GraphQL endpoint returned HTTP 404")
            if resp.status_code >= 500:
                logger.warning(
                    "Upstream error HTTP %d (attempt %d/%d)",
                    resp.status_code,
                    attempt,
                    self._retry_max,
                )
                if attempt == self._retry_max:
                    raise UpstreamUnavailable(
                        f"GitHub returned HTTP {resp.status_code} after "
                        f"{self._retry_max} attempts"
                    )
                await self._backoff(attempt)
                continue
            if resp.status_code >= 400:
                raise MalformedResponse(f"Unexpected HTTP {resp.status_code} from GitHub")

            return self._parse_body(resp)

        raise RateLimited(
            f"Rate limit still exceeded after {self._retry_max} attempts",
            reset_at=self._reset_at or None,
        )

    def _parse_body(self, resp: httpx.Response) -> dict[str, Any]:
        try:
            body = resp.json()
        except ValueError as exc:
            raise MalformedResponse(f"Invalid JSON response: {exc}") from exc
        if not isinstance(body, dict):
            raise MalformedResponse("Response body is not a JSON object")

        data = body.get("data")
        rate_info = data.get("rateLimit") if isinstance(data, dict) else None
        if rate_info:
            self._update_rate_limit(rate_info)

        if body.get("errors"):
            raise self._error_from_graphql(body["errors"])
        if not isinstance(data, dict):
            raise MalformedResponse("Response has no 'data' object")
        return data

    def _error_from_graphql(self, errors: list[dict[str, Any]]) -> Exception:
        message = "; ".join(e.get("message", str(e)) for e in errors)
        for error in errors:
            error_cls = _GRAPHQL_ERROR_TYPES.get(error.get("type", ""))
            if error_cls is RateLimited:
                return RateLimited(f"GraphQL errors: {message}", reset_at=self._reset_at or None)
            if error_cls is not None:
                return error_cls(f"GraphQL errors: {message}")
        return UpstreamUnavailable(f"GraphQL errors: {message}")

    # ── Rate-limit helpers ──────────────────────────────────────────────

    def api_status(self) -> ApiStatus:
        """Snapshot of the quota tracked so far."""
        remaining = max(0, min(self._remaining, self._limit))
        return ApiStatus.from_counts(
            calls_made=self._calls_made,
            remaining=remaining,
            total=self._limit,
            reset_time=self._reset_at,
        )

    async def _backoff(self, attempt: int) -> None:
        await asyncio.sleep(self._retry_backoff ** attempt)

    async def _wait_if_rate_limited(self) -> None:
        """Sleep if remaining points are below the buffer and reset is near."""
        if self._remaining >= RATE_LIMIT_BUFFER:
            return
        wait = max(0.0, self._reset_at - time.time())
        if wait > MAX_RATE_LIMIT_WAIT:
            raise RateLimited(
                f"Rate limit low ({self._remaining} remaining), resets in {wait:.0f}s",
                reset_at=self._reset_at,
            )
        if wait > 0:
            logger.info(
                "Rate limit low (%d remaining). Sleeping %.0fs.",
                self._remaining,
                wait,
            )
            await asyncio.sleep(wait)

    @staticmethod
    def _is_rate_limit_response(resp: httpx.Response) -> bool:
        return (
            resp.status_code == 429
            or "Retry-After" in resp.headers
            or resp.headers.get("X-RateLimit-Remaining") == "0"
        )

    def _retry_after_seconds(self, resp: httpx.Response) -> float:
        """Seconds to wait from ``Retry-After`` (delta or HTTP-date).

        Falls back to ``X-RateLimit-Reset``, then to 60 seconds.
        """
        value = resp.headers.get("Retry-After")
        if value is not None:
            try:
                return max(0.0, float(int(value)))
            except ValueError:
                pass
            try:
                retry_at = parsedate_to_datetime(value)
            except (TypeError, ValueError):
                retry_at = None
            if retry_at is not None:
                if retry_at.tzinfo is None:
                    retry_at = retry_at.replace(tzinfo=timezone.utc)
                return max(0.0, retry_at.timestamp() - time.time())
            logger.warning("Unparseable Retry-After header %r", value)
        if self._reset_at:
            return max(0.0, self._reset_at - time.time())
        return 60.0

    async def _handle_rate_limit_response(self, resp: httpx.Response, attempt: int) -> None:
        """Handle an HTTP 403/429 rate-limit response."""
        retry_after = self._retry_after_seconds(resp)
        if attempt == self._retry_max or retry_after > MAX_RATE_LIMIT_WAIT:
            raise RateLimited(
                f"Rate limited (HTTP {resp.status_code}), retry after {retry_after:.0f}s",
                reset_at=time.time() + retry_after,
            )
        logger.warning(
            "Rate limited (HTTP %d). Sleeping %.0fs (attempt %d/%d).",
            resp.status_code,
            retry_after,
            attempt,
            self._retry_max,
        )
        await asyncio.sleep(retry_after)

    def _update_from_headers(self, resp: httpx.Response) -> None:
        remaining = resp.headers.get("X-RateLimit-Remaining")
        limit = resp.headers.get("X-RateLimit-Limit")
        reset_ts = resp.headers.get("X-RateLimit-Reset")
        try:
            if remaining is not None:
                self._remaining = int(remaining)
            if limit is not None and int(limit) > 0:
                self._limit = int(limit)
            if reset_ts is not None:
                self._reset_at = float(reset_ts)
        except ValueError as exc:
            raise MalformedResponse(f"Invalid rate-limit header: {exc}") from exc

    def _update_rate_limit(self, rate_info: dict[str, Any]) -> None:
        """Update internal rate-limit state from a GraphQL rateLimit field."""
        remaining = rate_info.get("remaining")
        limit = rate_info.get("limit")
        if isinstance(remaining, int):
            self._remaining = remaining
        if isinstance(limit, int) and limit > 0:
            self._limit = limit
        reset_at_str = rate_info.get("resetAt")
        if isinstance(reset_at_str, str):
            try:
                reset_dt = datetime.fromisoformat(reset_at_str.replace("Z", "+00:00"))
            except ValueError as exc:
                raise MalformedResponse(f"Invalid rateLimit.resetAt {reset_at_str!r}") from exc
            self._reset_at = reset_dt.timestamp()
        logger.debug(
            "Rate limit: cost=%s remaining=%s",
            rate_info.get("cost"),
            self._remaining,
        )

    # ── Context manager ─────────────────────────────────────────────────

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
