"""Ollama Cloud client for upstream API calls.

Uses aiohttp.ClientSession, like the proxy server it sits behind.

Features:
- API key rotation on 401 / 429 / network failures
- Retry with backoff for non-streaming requests
- Streaming over newline-delimited JSON
- Model listing
"""

import asyncio
import codecs
import json
import logging
import math
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import aiohttp

from ollama_proxy.gateway.errors import (
    AuthenticationError,
    ProxyError,
    RateLimitError,
    TransientNetworkError,
    UpstreamProtocolError,
    is_transient_error,
)
from ollama_proxy.gateway.key_pool import KeyPool
from ollama_proxy.gateway.transforms import get_transformer
from ollama_proxy.gateway.transforms.openai import OpenAITransformer
from ollama_proxy.gateway.transforms.types import Schema, StreamEvent

logger = logging.getLogger(__name__)

OLLAMA_CLOUD_BASE_URL = "https://ollama.com/api"

# Upper bound on a Retry-After wait (seconds)
MAX_RETRY_AFTER = 60.0


@dataclass
class OllamaClientConfig:
    """Configuration for the Ollama client."""

    base_url: str = OLLAMA_CLOUD_BASE_URL

    # Timeouts (seconds). request_timeout bounds the gap between reads,
    # so long streams are not cut off.
    connect_timeout: float = 10.0
    request_timeout: float = 120.0

    # Retry configuration
    max_retries: int = 3
    retry_delay: float = 1.0  # after a network failure
    retry_base_delay: float = 1.0  # 429 without Retry-After waits base * (attempt + 1)
    rate_limit_rotation_delay: float = 1.0  # before retrying a 429 on the next key

    # Longest stream line accepted before the stream is abandoned
    max_line_length: int = 8 * 1024 * 1024


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    if not math.isfinite(seconds):
        return None
    return min(max(seconds, 0.0), MAX_RETRY_AFTER)


@dataclass
class OllamaClient:
    """HTTP client for the Ollama Cloud chat API.

    Translates caller requests (Anthropic or OpenAI shape) to Ollama,
    dispatches them with key rotation and retries, and translates the
    result back.

    Example:
        >>> client = OllamaClient(OllamaClientConfig(), KeyPool(["key-1", "key-2"]))
        >>> await client.connect()
        >>> response = await client.send(body, "anthropic")
        >>> async for event in client.stream(body, "openai"):
        ...     print(event.text)
        >>> await client.close()
    """

    config: OllamaClientConfig
    key_pool: KeyPool
    _session: aiohttp.ClientSession | None = None

    async def connect(self) -> None:
        """Initialize the HTTP session."""
        timeout = aiohttp.ClientTimeout(
            connect=self.config.connect_timeout,
            sock_read=self.config.request_timeout,
        )
        self._session = aiohttp.ClientSession(
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def send(
        self,
        body: dict[str, Any],
        schema: Schema = "anthropic",
        model: str | None = None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        """Non-streaming request.

        Args:
            body: Request body in the source schema
            schema: Source schema of ``body`` and of the returned response
            model: Model to request (defaults to body["model"])
            trace_id: Optional trace ID for correlation

        Returns:
            Response in the source schema

        Raises:
            ProxyError: Typed failure once retries are exhausted
        """
        trace_id = trace_id or f"req_{int(time.time() * 1000)}"
        transformer = get_transformer(schema)
        request_model = model or body.get("model") or ""

        upstream_request = transformer.to_upstream(body, request_model, stream=False)
        logger.debug(
            "[%s] Sending request: model=%s, keys=%d",
            trace_id,
            request_model,
            len(self.key_pool),
        )

        start_time = time.time()
        data = await self._execute_with_retry(upstream_request, trace_id)
        logger.debug("[%s] Upstream answered in %.2fs", trace_id, time.time() - start_time)

        return transformer.from_upstream(data, request_model)

    async def stream(
        self,
        body: dict[str, Any],
        schema: Schema = "anthropic",
        model: str | None = None,
        trace_id: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Streaming request.

        Note: Key rotation only happens while opening the stream. Once
        events start flowing, a failure ends the stream with an error.

        Yields:
            StreamEvent for each visible fragment, then a terminal event
            when upstream sends one

        Raises:
            ProxyError: If the stream cannot be opened or breaks mid-way
        """
        trace_id = trace_id or f"req_{int(time.time() * 1000)}"
        transformer = get_transformer(schema)
        request_model = model or body.get("model") or ""

        upstream_request = transformer.to_upstream(body, request_model, stream=True)
        url = f"{self.config.base_url}/chat"
        logger.debug(
            "[%s] Starting streaming request to %s (model=%s)", trace_id, url, request_model
        )

        response = await self._fetch_with_key_rotation("POST", url, upstream_request, trace_id)

        async with response:
            if response.status >= 300:
                error_body = await self._read_body(response)
                logger.error(
                    "[%s] Upstream error %d: %s", trace_id, response.status, error_body[:500]
                )
                raise self._status_error(response.status, error_body)

            accumulated = ""
            line_count = 0
            async for line in self._iter_lines(response):
                line_count += 1
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("[%s] Failed to parse stream line: %s", trace_id, line[:200])
                    continue
                if not isinstance(data, dict):
                    continue

                event = transformer.stream_event(data, request_model, accumulated)
                if event is None:
                    continue
                accumulated += event.text
                yield event

            logger.debug("[%s] Stream complete, received %d lines", trace_id, line_count)

    async def list_models(self, trace_id: str | None = None) -> dict[str, Any]:
        """List available models in OpenAI ``/v1/models`` format.

        Raises:
            UpstreamProtocolError: If upstream answers with an error status
        """
        url = f"{self.config.base_url}/tags"
        logger.debug("Fetching models from %s", url)

        response = await self._fetch_with_key_rotation("GET", url, None, trace_id or "models")
        async with response:
            text = await self._read_body(response)
            if response.status >= 300:
                raise UpstreamProtocolError(response.status, text)

        return OpenAITransformer().models_from_upstream(self._decode_json(text))

    async def is_valid_model(self, model_id: str) -> bool:
        """Check whether upstream lists a model. Errors count as "no"."""
        try:
            models = await self.list_models()
        except ProxyError as e:
            logger.warning("Failed to validate model %s: %s", model_id, e)
            return False
        return any(m["id"] == model_id for m in models["data"])

    async def _execute_with_retry(
        self,
        request_body: dict[str, Any],
        trace_id: str,
    ) -> dict[str, Any]:
        """Execute a non-streaming request with retry logic.

        Wraps the key rotation loop. 429s (as responses, or raised once
        every key was rate limited) wait Retry-After or a growing delay;
        network failures wait ``retry_delay``. Anything else is final.
        """
        url = f"{self.config.base_url}/chat"
        max_attempts = max(self.config.max_retries, 1)
        last_error: ProxyError | None = None

        for attempt in range(max_attempts):
            is_last = attempt == max_attempts - 1
            try:
                return await self._send_once(url, request_body, trace_id)

            except RateLimitError as e:
                last_error = e
                if is_last:
                    break
                delay = e.retry_after
                if delay is None:
                    delay = self.config.retry_base_delay * (attempt + 1)
                logger.warning(
                    "[%s] Rate limited, retrying in %.1fs (attempt %d/%d)",
                    trace_id,
                    delay,
                    attempt + 1,
                    max_attempts,
                )
                await asyncio.sleep(delay)

            except TransientNetworkError as e:
                last_error = e
                if is_last:
                    break
                logger.warning(
                    "[%s] %s, retrying in %.1fs (attempt %d/%d)",
                    trace_id,
                    e,
                    self.config.retry_delay,
                    attempt + 1,
                    max_attempts,
                )
                await asyncio.sleep(self.config.retry_delay)

        if last_error:
            raise last_error
        raise RateLimitError("Max retries exceeded")

    async def _send_once(
        self,
        url: str,
        request_body: dict[str, Any],
        trace_id: str,
    ) -> dict[str, Any]:
        """One pass through key rotation; returns the decoded 2xx body."""
        response = await self._fetch_with_key_rotation("POST", url, request_body, trace_id)

        async with response:
            text = await self._read_body(response)
            if response.status < 300:
                return self._decode_json(text)

            logger.warning("[%s] Upstream error %d: %s", trace_id, response.status, text[:500])
            if response.status == 429:
                raise RateLimitError(
                    f"Rate limit exceeded: {text}",
                    retry_after=_parse_retry_after(response.headers.get("Retry-After")),
                )
            raise self._status_error(response.status, text)

    async def _fetch_with_key_rotation(
        self,
        method: str,
        url: str,
        body: dict[str, Any] | None,
        trace_id: str,
    ) -> aiohttp.ClientResponse:
        """Issue a request, rotating keys on rejection or network failure.

        Tries at most one request per key. The returned response is still
        open; the caller must release it (``async with response``).

        Raises:
            ConfigurationError: If no key is configured
            AuthenticationError: If every key was rejected
            RateLimitError: If every key was rate limited
            TransientNetworkError: If the network failure can't be retried
        """
        if self._session is None:
            raise RuntimeError("Client not connected. Call connect() first.")

        key_count = len(self.key_pool)
        last_error: ProxyError | None = None

        for _ in range(max(key_count, 1)):
            api_key = self.key_pool.current()
            logger.debug("[%s] Using API key %s", trace_id, self.key_pool.describe())

            try:
                response = await self._session.request(
                    method,
                    url,
                    json=body,
                    headers={"Authorization": f"Bearer {api_key}"},
                )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if not is_transient_error(e):
                    raise
                last_error = TransientNetworkError(f"Network error: {type(e).__name__}: {e}")
                if key_count > 1:
                    logger.warning(
                        "[%s] Network error with key %s, rotating...",
                        trace_id,
                        self.key_pool.describe(),
                    )
                    self.key_pool.rotate()
                    await asyncio.sleep(self.config.retry_delay)
                    continue
                raise last_error from e

            if response.status == 401:
                response.release()
                logger.warning(
                    "[%s] API key %s invalid, rotating...", trace_id, self.key_pool.describe()
                )
                last_error = AuthenticationError("All API keys invalid")
                self.key_pool.rotate()
                continue

            if response.status == 429 and key_count > 1:
                retry_after = _parse_retry_after(response.headers.get("Retry-After"))
                response.release()
                logger.warning(
                    "[%s] Rate limited on key %s, rotating...",
                    trace_id,
                    self.key_pool.describe(),
                )
                last_error = RateLimitError("All API keys rate limited", retry_after=retry_after)
                self.key_pool.rotate()
                await asyncio.sleep(self.config.rate_limit_rotation_delay)
                continue

            return response

        raise last_error or AuthenticationError("All API keys exhausted")

    async def _iter_lines(self, response: aiohttp.ClientResponse) -> AsyncIterator[str]:
        """Yield complete, non-empty, non-comment lines from the body.

        A trailing fragment with no newline is never parsed.

        Raises:
            UpstreamProtocolError: If a line grows past ``max_line_length``
            TransientNetworkError: If the connection drops mid-stream
        """
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""
        try:
            async for raw in response.content.iter_any():
                buffer += decoder.decode(raw)
                *lines, buffer = buffer.split("\n")
                for line in lines:
                    if not line.strip() or line.startswith(":"):
                        continue
                    yield line
                if len(buffer) > self.config.max_line_length:
                    raise UpstreamProtocolError(
                        502,
                        f"Stream line exceeds {self.config.max_line_length} characters",
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            if is_transient_error(e):
                raise TransientNetworkError(f"Stream interrupted: {type(e).__name__}: {e}") from e
            raise

    async def _read_body(self, response: aiohttp.ClientResponse) -> str:
        try:
            return await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            if is_transient_error(e):
                raise TransientNetworkError(f"Network error: {type(e).__name__}: {e}") from e
            raise

    def _decode_json(self, text: str) -> dict[str, Any]:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise UpstreamProtocolError(502, f"Invalid JSON from upstream: {text[:200]}") from e
        if not isinstance(data, dict):
            raise UpstreamProtocolError(502, f"Unexpected response from upstream: {text[:200]}")
        return data

    def _status_error(self, status: int, body: str) -> ProxyError:
        """Typed error for an upstream error status."""
        if status == 401:
            return AuthenticationError("All API keys invalid")
        if status == 429:
            return RateLimitError(f"Rate limit exceeded: {body}")
        return UpstreamProtocolError(status, body)
