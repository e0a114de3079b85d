"""Shared error definitions for the gateway.

Typed errors raised by the upstream client, plus the mapping from
upstream HTTP status to Anthropic/OpenAI error type. The front door
switches on ``ProxyError.kind``; it never inspects message text.
"""

from __future__ import annotations

import asyncio
from enum import Enum, auto

import aiohttp

# Error type mapping from upstream status to Anthropic error type
ERROR_TYPE_MAP = {
    400: "invalid_request_error",
    401: "authentication_error",
    403: "permission_error",
    404: "not_found_error",
    413: "request_too_large",
    429: "rate_limit_error",
    500: "api_error",
    502: "api_error",
    503: "api_error",
    504: "api_error",
    529: "overloaded_error",
}


class ErrorKind(Enum):
    """Discriminator for ProxyError subclasses."""

    AUTHENTICATION = auto()
    RATE_LIMIT = auto()
    TRANSIENT_NETWORK = auto()
    UPSTREAM_PROTOCOL = auto()
    CONFIGURATION = auto()


class ProxyError(Exception):
    """Base class for errors surfaced by the upstream client.

    Attributes:
        kind: Which failure this is.
        status_code: HTTP status the front door should answer with.
        error_type: Error ``type`` string for the response body.
    """

    kind: ErrorKind
    status_code: int = 500
    error_type: str = "api_error"


class AuthenticationError(ProxyError):
    """Every configured key was rejected with 401."""

    kind = ErrorKind.AUTHENTICATION
    status_code = 401
    error_type = "authentication_error"


class RateLimitError(ProxyError):
    """Upstream kept answering 429 after all retries."""

    kind = ErrorKind.RATE_LIMIT
    status_code = 429
    error_type = "rate_limit_error"

    def __init__(self, message: str = "Rate limit exceeded", retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class TransientNetworkError(ProxyError):
    """Retryable network failure (refused, DNS, timeout, reset)."""

    kind = ErrorKind.TRANSIENT_NETWORK
    status_code = 502
    error_type = "api_error"


class ConfigurationError(ProxyError):
    """No API key is configured."""

    kind = ErrorKind.CONFIGURATION
    status_code = 401
    error_type = "authentication_error"


class UpstreamProtocolError(ProxyError):
    """Upstream returned a non-2xx status that is not retried."""

    kind = ErrorKind.UPSTREAM_PROTOCOL

    def __init__(self, status_code: int, response_body: str = ""):
        super().__init__(f"API error {status_code}: {response_body}")
        self.status_code = status_code
        self.response_body = response_body
        self.error_type = ERROR_TYPE_MAP.get(status_code, "api_error")


def is_transient_error(error: BaseException) -> bool:
    """Check if an exception is a network failure that is safe to retry.

    Covers connection refused, name resolution failures, server
    disconnects and socket resets (all ``ClientConnectionError``),
    truncated bodies (``ClientPayloadError``) and timeouts.
    """
    return isinstance(
        error,
        (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, asyncio.TimeoutError),
    )
