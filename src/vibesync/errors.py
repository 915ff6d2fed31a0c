"""Error taxonomy for vibesync.

Every error raised across a component boundary is a ``VibesyncError`` carrying
a stable ``code`` that the CLI turns into a hint. Parse errors never leave the
readers and lock contention is reported as a boolean, so neither has a class
here.
"""

from __future__ import annotations

import httpx


class VibesyncError(Exception):
    """Base error with a machine-readable code."""

    code = "UNKNOWN"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return self.message


class SourceNotFoundError(VibesyncError):
    """A source root directory or database file is missing."""

    code = "SOURCE_NOT_FOUND"


class SessionValidationError(VibesyncError):
    """Candidate sessions were rejected (e.g. all shorter than the minimum)."""

    code = "VALIDATION_ERROR"


class AuthError(VibesyncError):
    """Missing, invalid or expired credentials."""

    code = "AUTH_REQUIRED"


class NetworkError(VibesyncError):
    """Connection refused, timeout or other transport-level failure."""

    code = "NETWORK_ERROR"


class ServerError(NetworkError):
    """The service answered with a 5xx status."""

    code = "SERVER_ERROR"

    def __init__(self, message: str, status_code: int = 500, code: str | None = None) -> None:
        super().__init__(message, code)
        self.status_code = status_code


class ClientError(VibesyncError):
    """The service rejected the request with a 4xx status other than 401."""

    code = "CLIENT_ERROR"

    def __init__(self, message: str, status_code: int = 400, code: str | None = None) -> None:
        super().__init__(message, code)
        self.status_code = status_code


class RateLimitedError(ClientError):
    """The service answered 429."""

    code = "RATE_LIMITED"

    def __init__(self, message: str, retry_after: int | None = None) -> None:
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


def is_retryable(error: BaseException) -> bool:
    """Check whether an upload failure is network-class or 5xx.

    Args:
        error: The exception raised by the transport.

    Returns:
        True if the batch may be retried once.
    """
    if isinstance(error, NetworkError):
        return True
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True
    return False
