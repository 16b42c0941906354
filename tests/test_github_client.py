"""Tests for the GraphQL client's error mapping and rate-limit tracking."""

from __future__ import annotations

import time
from typing import Callable

import httpx
import pytest

from repo_health.errors import (
    MalformedResponse,
    NotFound,
    RateLimited,
    Unauthorized,
    UpstreamUnavailable,
)
from repo_health.github_client import GitHubClient

RATE_LIMIT = {"cost": 1, "limit": 5000, "remaining": 4990, "resetAt": "2099-01-01T00:00:00Z"}


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> GitHubClient:
    return GitHubClient(
        token="test-token",
        transport=httpx.MockTransport(handler),
        retry_backoff=0.0,
    )


def _sequence(*responses: httpx.Response) -> tuple[Callable[[httpx.Request], httpx.Response], list]:
    """Handler returning ``responses`` in order; records requests."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        template = responses[min(len(seen), len(responses)) - 1]
        return httpx.Response(template.status_code, headers=template.headers, content=template.content)

    return handler, seen


def _ok(data: dict | None = None) -> httpx.Response:
    return httpx.Response(200, json={"data": {**(data or {}), "rateLimit": RATE_LIMIT}})


# ── Success path ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_graphql_returns_data_and_tracks_rate_limit() -> None:
    handler, seen = _sequence(_ok({"viewer": {"login": "octocat"}}))
    async with _client(handler) as client:
        data = await client.graphql("query { viewer { login } }", {"x": 1})
        status = client.api_status()

    assert data["viewer"]["login"] == "octocat"
    assert seen[0].headers["Authorization"] == "Bearer test-token"
    assert status.calls_made == 1
    assert status.rate_limit_remaining == 4990
    assert status.rate_limit_total == 5000
    assert status.is_rate_limited is False
    assert status.reset_time > time.time()


def test_missing_token_is_unauthorized(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("repo_health.github_client.GITHUB_TOKEN", None)
    with pytest.raises(Unauthorized):
        GitHubClient()


# ── HTTP status mapping ─────────────────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("response", "error"),
    [
        (httpx.Response(401), Unauthorized),
        (httpx.Response(403), Unauthorized),
        (httpx.Response(404), NotFound),
        (httpx.Response(422), MalformedResponse),
        (httpx.Response(200, content=b"<html>not json</html>"), MalformedResponse),
        (httpx.Response(200, json={"rateLimit": RATE_LIMIT}), MalformedResponse),
    ],
)
async def test_status_maps_to_error_kind(response: httpx.Response, error: type) -> None:
    handler, seen = _sequence(response)
    async with _client(handler) as client:
        with pytest.raises(error):
            await client.graphql("query { viewer { login } }")
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_server_errors_retried_then_unavailable() -> None:
    handler, seen = _sequence(httpx.Response(502))
    async with _client(handler) as client:
        with pytest.raises(UpstreamUnavailable):
            await client.graphql("query { viewer { login } }")
    assert len(seen) == 3


@pytest.mark.asyncio
async def test_server_error_then_success() -> None:
    handler, seen = _sequence(httpx.Response(503), _ok({"ok": True}))
    async with _client(handler) as client:
        data = await client.graphql("query { ok }")
    assert data["ok"] is True
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_transport_errors_become_unavailable() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(UpstreamUnavailable):
            await client.graphql("query { ok }")
    assert len(calls) == 3


# ── Rate limiting ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_rate_limit_response_retried() -> None:
    handler, seen = _sequence(
        httpx.Response(429, headers={"Retry-After": "0"}),
        _ok({"ok": True}),
    )
    async with _client(handler) as client:
        data = await client.graphql("query { ok }")
    assert data["ok"] is True
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_persistent_rate_limit_raises() -> None:
    handler, seen = _sequence(httpx.Response(429, headers={"Retry-After": "0"}))
    async with _client(handler) as client:
        with pytest.raises(RateLimited) as excinfo:
            await client.graphql("query { ok }")
    assert len(seen) == 3
    assert excinfo.value.reset_at is not None


@pytest.mark.asyncio
async def test_long_retry_after_raises_immediately() -> None:
    handler, seen = _sequence(httpx.Response(403, headers={"Retry-After": "3600"}))
    async with _client(handler) as client:
        with pytest.raises(RateLimited):
            await client.graphql("query { ok }")
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_exhausted_quota_with_distant_reset_raises_before_request() -> None:
    exhausted = {"cost": 1, "limit": 5000, "remaining": 0, "resetAt": "2099-01-01T00:00:00Z"}
    handler, seen = _sequence(httpx.Response(200, json={"data": {"ok": True, "rateLimit": exhausted}}))
    async with _client(handler) as client:
        await client.graphql("query { ok }")
        assert client.api_status().is_rate_limited is True
        with pytest.raises(RateLimited):
            await client.graphql("query { ok }")
    assert len(seen) == 1


# ── GraphQL errors ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error_type", "error"),
    [
        ("NOT_FOUND", NotFound),
        ("RATE_LIMITED", RateLimited),
        ("FORBIDDEN", Unauthorized),
        ("SOMETHING_ELSE", UpstreamUnavailable),
    ],
)
async def test_graphql_error_types(error_type: str, error: type) -> None:
    body = {
        "data": {"repository": None},
        "errors": [{"type": error_type, "message": "nope"}],
    }
    handler, _ = _sequence(httpx.Response(200, json=body))
    async with _client(handler) as client:
        with pytest.raises(error, match="nope"):
            await client.graphql("query { repository { id } }")


@pytest.mark.asyncio
async def test_retry_after_http_date_in_future_raises() -> None:
    handler, seen = _sequence(
        httpx.Response(429, headers={"Retry-After": "Wed, 21 Oct 2099 07:28:00 GMT"}),
    )
    async with _client(handler) as client:
        with pytest.raises(RateLimited) as excinfo:
            await client.graphql("query { ok }")
    assert len(seen) == 1
    assert excinfo.value.reset_at > time.time() + 3600


@pytest.mark.asyncio
async def test_retry_after_http_date_in_past_is_retried() -> None:
    handler, seen = _sequence(
        httpx.Response(429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}),
        _ok({"ok": True}),
    )
    async with _client(handler) as client:
        data = await client.graphql("query { ok }")
    assert data["ok"] is True
    assert len(seen) == 2


@pytest.mark.asyncio
async def test_unparseable_retry_after_uses_fallback() -> None:
    reset = str(int(time.time()) + 3600)
    handler, seen = _sequence(
        httpx.Response(429, headers={"Retry-After": "soon", "X-RateLimit-Reset": reset}),
    )
    async with _client(handler) as client:
        with pytest.raises(RateLimited):
            await client.graphql("query { ok }")
    # Falls back to X-RateLimit-Reset, an hour away.
    assert len(seen) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "headers",
    [
        {"X-RateLimit-Remaining": "lots"},
        {"X-RateLimit-Limit": "5k"},
        {"X-RateLimit-Reset": "tomorrow"},
    ],
)
async def test_bad_rate_limit_headers_are_malformed(headers: dict) -> None:
    body = {"data": {"ok": True, "rateLimit": RATE_LIMIT}}
    handler, _ = _sequence(httpx.Response(200, headers=headers, json=body))
    async with _client(handler) as client:
        with pytest.raises(MalformedResponse):
            await client.graphql("query { ok }")


@pytest.mark.asyncio
async def test_null_remaining_keeps_previous_value() -> None:
    partial = {"cost": 1, "limit": 5000, "remaining": None, "resetAt": None}
    handler, seen = _sequence(httpx.Response(200, json={"data": {"ok": True, "rateLimit": partial}}))
    async with _client(handler) as client:
        await client.graphql("query { ok }")
        await client.graphql("query { ok }")
        status = client.api_status()
    assert len(seen) == 2
    assert status.rate_limit_remaining == 5000
