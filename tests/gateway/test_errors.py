"""Tests for the gateway error taxonomy."""

import asyncio

import aiohttp
import pytest

from ollama_proxy.gateway.errors import (
    AuthenticationError,
    ConfigurationError,
    ErrorKind,
    ProxyError,
    RateLimitError,
    TransientNetworkError,
    UpstreamProtocolError,
    is_transient_error,
)


class TestProxyErrors:
    """Each error carries the status and type the front door answers with."""

    @pytest.mark.parametrize(
        "error,kind,status,error_type",
        [
            (AuthenticationError("x"), ErrorKind.AUTHENTICATION, 401, "authentication_error"),
            (RateLimitError(), ErrorKind.RATE_LIMIT, 429, "rate_limit_error"),
            (TransientNetworkError("x"), ErrorKind.TRANSIENT_NETWORK, 502, "api_error"),
            (ConfigurationError("x"), ErrorKind.CONFIGURATION, 401, "authentication_error"),
        ],
    )
    def test_fixed_error_mapping(self, error, kind, status, error_type):
        """Fixed-status errors expose kind, status code and error type."""
        assert isinstance(error, ProxyError)
        assert error.kind == kind
        assert error.status_code == status
        assert error.error_type == error_type

    def test_rate_limit_keeps_retry_after(self):
        """RateLimitError remembers the upstream Retry-After."""
        error = RateLimitError("slow down", retry_after=2.5)

        assert error.retry_after == 2.5
        assert str(error) == "slow down"

    @pytest.mark.parametrize(
        "status,error_type",
        [
            (400, "invalid_request_error"),
            (403, "permission_error"),
            (404, "not_found_error"),
            (500, "api_error"),
            (529, "overloaded_error"),
            (418, "api_error"),
        ],
    )
    def test_upstream_protocol_error_mapping(self, status, error_type):
        """Upstream statuses map to Anthropic error types, defaulting to api_error."""
        error = UpstreamProtocolError(status, "boom")

        assert error.kind == ErrorKind.UPSTREAM_PROTOCOL
        assert error.status_code == status
        assert error.error_type == error_type
        assert error.response_body == "boom"
        assert str(error) == f"API error {status}: boom"


class TestIsTransientError:
    """Tests for the retryable-network-failure check."""

    @pytest.mark.parametrize(
        "error",
        [
            aiohttp.ClientConnectionError("refused"),
            aiohttp.ServerDisconnectedError(),
            aiohttp.ClientPayloadError("truncated"),
            asyncio.TimeoutError(),
        ],
    )
    def test_transient(self, error):
        """Connection failures, truncated bodies and timeouts are transient."""
        assert is_transient_error(error) is True

    @pytest.mark.parametrize(
        "error",
        [ValueError("bad"), aiohttp.InvalidURL("nope"), UpstreamProtocolError(500)],
    )
    def test_not_transient(self, error):
        """Programming errors and protocol errors are not retried."""
        assert is_transient_error(error) is False
