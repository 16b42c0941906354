"""Error taxonomy shared by the client, providers and comparison state."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    RATE_LIMITED = "RateLimited"
    UNAUTHORIZED = "Unauthorized"
    UPSTREAM_UNAVAILABLE = "UpstreamUnavailable"
    MALFORMED_RESPONSE = "MalformedResponse"
    INVALID_ARGUMENT = "InvalidArgument"


class RepoHealthError(Exception):
    """Base class for every reported failure. ``kind`` tags the variant."""

    kind: ErrorKind


class NotFound(RepoHealthError):
    kind = ErrorKind.NOT_FOUND


class RateLimited(RepoHealthError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, reset_at: float | None = None) -> None:
        super().__init__(message)
        self.reset_at = reset_at


class Unauthorized(RepoHealthError):
    kind = ErrorKind.UNAUTHORIZED


class UpstreamUnavailable(RepoHealthError):
    kind = ErrorKind.UPSTREAM_UNAVAILABLE


class MalformedResponse(RepoHealthError):
    kind = ErrorKind.MALFORMED_RESPONSE


class InvalidArgument(RepoHealthError, ValueError):
    kind = ErrorKind.INVALID_ARGUMENT
