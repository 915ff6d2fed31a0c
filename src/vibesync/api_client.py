"""HTTP transport for uploading session batches."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

import httpx

from vibesync import __version__
from vibesync.errors import (
    AuthError,
    ClientError,
    NetworkError,
    RateLimitedError,
    ServerError,
    SessionValidationError,
)
from vibesync.models import UploadBatch

logger = logging.getLogger(__name__)

SESSIONS_ENDPOINT = "/cli/sessions"
DEFAULT_TIMEOUT = 30.0


class UploadTransport(Protocol):
    """Anything that can deliver one batch and return the server's reply."""

    def upload_batch(self, batch: UploadBatch) -> dict[str, Any]: ...


def _response_message(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict):
        message = data.get("message") or data.get("error")
        return str(message) if message else None
    return None


def _parse_retry_after(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def raise_for_status(response: httpx.Response) -> None:
    """Translate an error response into a ``VibesyncError``.

    Raises:
        SessionValidationError: 400 with a validation message.
        AuthError: 401, the token expired or was revoked.
        RateLimitedError: 429.
        ClientError: 403, 404 and any other 4xx.
        ServerError: Any 5xx.
    """
    status = response.status_code
    if status < 400:
        return

    if status == 400:
        message = _response_message(response)
        if message:
            if "duration" in message and ("240" in message or "Too small" in message):
                raise SessionValidationError(
                    "Sessions must be at least 4 minutes long. Short sessions were rejected by the server."
                )
            raise SessionValidationError(f"Validation error: {message}")
    if status == 401:
        raise AuthError("Your session has expired. Please authenticate again", code="AUTH_EXPIRED")
    if status == 403:
        raise ClientError("Access denied. Please check your permissions", 403, code="ACCESS_DENIED")
    if status == 404:
        raise ClientError(
            "API endpoint not found. You might need to update your CLI", 404, code="ENDPOINT_NOT_FOUND"
        )
    if status == 429:
        retry_after = _parse_retry_after(response.headers.get("retry-after"))
        raise RateLimitedError(
            f"Too many requests. Please wait {retry_after or 60} seconds before trying again",
            retry_after=retry_after,
        )
    if status in (502, 503):
        raise ServerError(
            "Service temporarily unavailable. Please try again in a few moments",
            status,
            code="SERVICE_UNAVAILABLE",
        )
    if status >= 500:
        raise ServerError("Server error. The service is having issues. Please try again later", status)
    raise ClientError(f"Request failed with status {status}", status)


class ApiClient:
    """Uploads batches to the analytics service over ``httpx``."""

    def __init__(
        self,
        base_url: str,
        token_provider: Callable[[], str | None],
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Service root, e.g. https://app.vibe-log.dev
            token_provider: Returns the bearer token at request time.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, used by tests.
        """
        self._token_provider = token_provider
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            follow_redirects=False,
            headers={
                "Content-Type": "application/json",
                "User-Agent": f"vibesync/{__version__}",
            },
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ApiClient:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    def _headers(self) -> dict[str, str]:
        headers = {
            "X-Request-ID": uuid.uuid4().hex,
            "X-Timestamp": datetime.now(timezone.utc).isoformat(),
        }
        token = self._token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def upload_batch(self, batch: UploadBatch) -> dict[str, Any]:
        """POST one batch to /cli/sessions.

        Returns:
            The decoded JSON reply (``created``, ``duplicates``, ...).

        Raises:
            NetworkError: Connection failure or timeout.
            VibesyncError: Any error status, see ``raise_for_status``.
        """
        logger.debug(
            "POST %s batch %d/%d (%d sessions)",
            SESSIONS_ENDPOINT,
            batch.batch_number,
            batch.total_batches,
            len(batch.sessions),
        )
        try:
            response = self._client.post(SESSIONS_ENDPOINT, json=batch.to_wire(), headers=self._headers())
        except httpx.TimeoutException as e:
            raise NetworkError(
                "Request timed out. Your connection might be slow or the server is not responding",
                code="TIMEOUT",
            ) from e
        except httpx.ConnectError as e:
            raise NetworkError(
                "Cannot reach the sync server. Please check your internet connection"
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Network error: {e}") from e

        raise_for_status(response)

        try:
            data = response.json()
        except ValueError:
            logger.debug("Upload reply was not JSON")
            return {}
        return data if isinstance(data, dict) else {}
