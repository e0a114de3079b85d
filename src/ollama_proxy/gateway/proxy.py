"""Ollama Cloud proxy server.

Exposes Anthropic-compatible (/v1/messages) and OpenAI-compatible
(/v1/chat/completions, /v1/models) endpoints and proxies them to the
Ollama Cloud chat API:
1. Accepts Anthropic or OpenAI format requests (Claude Code, OpenCode, ...)
2. Resolves the model name through the configured mapping
3. Forwards to Ollama Cloud through the key-rotating client
4. Transforms responses (and streams) back to the caller's format
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from aiohttp import web

from ollama_proxy.gateway.clients.ollama_client import (
    OLLAMA_CLOUD_BASE_URL,
    OllamaClient,
    OllamaClientConfig,
)
from ollama_proxy.gateway.errors import ProxyError
from ollama_proxy.gateway.key_pool import KeyPool
from ollama_proxy.gateway.tracing import RequestTracer
from ollama_proxy.gateway.transforms.anthropic import AnthropicTransformer
from ollama_proxy.gateway.transforms.openai import OpenAITransformer
from ollama_proxy.gateway.transforms.types import Schema, StreamEvent, TokenUsage
from ollama_proxy.gateway.transforms.validation import validate_request

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "qwen3-coder-next"
DEFAULT_MAX_TOKENS = 4096


@dataclass
class ProxyConfig:
    """Configuration for the Ollama Cloud proxy server."""

    host: str = "0.0.0.0"
    port: int = 8080

    # Upstream configuration
    ollama_base_url: str = OLLAMA_CLOUD_BASE_URL
    api_keys: list[str] = field(default_factory=list)
    default_model: str = DEFAULT_MODEL
    # requested model -> upstream model (str, or {"mapping": str})
    model_mapping: dict[str, Any] = field(default_factory=dict)

    # Client configuration
    connect_timeout: float = 10.0
    request_timeout: float = 120.0
    max_retries: int = 3
    retry_delay: float = 1.0

    # Request limits
    max_body_size: int = 10 * 1024 * 1024  # 10MB

    # Debug: save raw requests/responses to files
    debug: bool = False
    debug_dir: str | None = None

    def resolve_model(self, requested: str | None) -> str:
        """Apply the default model and the model mapping."""
        model = requested or self.default_model or DEFAULT_MODEL
        target = self.model_mapping.get(model)
        if target:
            mapped = target if isinstance(target, str) else target.get("mapping")
            if mapped:
                logger.info("Mapping model %s -> %s", model, mapped)
                return mapped
        return model


class _AnthropicStreamFramer:
    """Writes StreamEvents as an Anthropic SSE event sequence."""

    def __init__(self, model: str):
        self._transformer = AnthropicTransformer()
        self._model = model
        self._block_open = False
        self.finished = False

    def start(self) -> bytes:
        return self._transformer.message_start_sse(self._model)

    def event(self, event: StreamEvent) -> bytes:
        out = b""
        if event.text:
            if not self._block_open:
                out += self._transformer.content_block_start_sse()
                self._block_open = True
            out += self._transformer.content_block_delta_sse(event.text)
        if event.is_terminal:
            out += self.finish(event.usage)
        return out

    def finish(self, usage: TokenUsage | None = None) -> bytes:
        """Close any open block and end the message (once)."""
        if self.finished:
            return b""
        self.finished = True
        out = b""
        if self._block_open:
            out += self._transformer.content_block_stop_sse()
            self._block_open = False
        return out + self._transformer.message_end_sse(usage)

    def error(self, error_type: str, message: str) -> bytes:
        return self._transformer.error_sse(error_type, message)


class _OpenAIStreamFramer:
    """Writes StreamEvents as OpenAI ``data:`` chunks ending in [DONE]."""

    def __init__(self, model: str):
        self._transformer = OpenAITransformer()
        self._model = model
        self.finished = False

    def start(self) -> bytes:
        return b""

    def event(self, event: StreamEvent) -> bytes:
        if not event.is_terminal:
            return self._transformer.format_sse(event.payload)

        out = b""
        if event.text:
            chunk = self._transformer.chunk(
                self._model, {"role": "assistant", "content": event.text}, None
            )
            out += self._transformer.format_sse(chunk)
        return out + self._transformer.format_sse(event.payload) + self.finish()

    def finish(self, usage: TokenUsage | None = None) -> bytes:
        if self.finished:
            return b""
        self.finished = True
        return self._transformer.done_sse()

    def error(self, error_type: str, message: str) -> bytes:
        return self._transformer.error_sse(error_type, message)


def _error_body(schema: Schema, error_type: str, message: str) -> dict[str, Any]:
    if schema == "openai":
        return {"error": {"type": error_type, "message": message}}
    return {"type": "error", "error": {"type": error_type, "message": message}}


@web.middleware
async def request_logging_middleware(
    request: web.Request,
    handler: Any,
) -> web.StreamResponse:
    """Log every request and answer unmatched routes with a JSON 404.

    A known path with the wrong method is unmatched too.
    """
    start = time.time()
    try:
        response = await handler(request)
    except (web.HTTPNotFound, web.HTTPMethodNotAllowed):
        response = web.json_response(
            _error_body(
                "anthropic",
                "not_found_error",
                f"Endpoint {request.method} {request.path} not found",
            ),
            status=404,
        )
    except web.HTTPException as e:
        logger.warning("[%s] %s %d", request.method, request.path_qs, e.status)
        raise

    duration_ms = (time.time() - start) * 1000
    status = response.status
    if status >= 500:
        log = logger.error
    elif status >= 400:
        log = logger.warning
    else:
        log = logger.debug
    log("[%s] %s %d (%.0fms)", request.method, request.path_qs, status, duration_ms)
    return response


@dataclass
class OllamaProxyServer:
    """HTTP server that accepts Anthropic and OpenAI chat requests
    and proxies them to Ollama Cloud.

    Example:
        >>> config = ProxyConfig(api_keys=["key-1", "key-2"])
        >>> server = OllamaProxyServer(config=config)
        >>> await server.serve()
    """

    config: ProxyConfig
    _app: web.Application | None = None
    _runner: web.AppRunner | None = None
    _client: OllamaClient | None = None
    _key_pool: KeyPool = field(init=False)
    _shutdown_event: asyncio.Event = field(default_factory=asyncio.Event)
    _tracer: RequestTracer = field(init=False)

    def __post_init__(self) -> None:
        """Build the key pool and tracer from config."""
        self._key_pool = KeyPool(self.config.api_keys)
        self._tracer = RequestTracer(debug_dir=self.config.debug_dir)
        if self.config.debug:
            logging.getLogger("ollama_proxy").setLevel(logging.DEBUG)

    @property
    def key_pool(self) -> KeyPool:
        return self._key_pool

    async def connect(self) -> None:
        """Create and connect the upstream client."""
        self._client = OllamaClient(
            config=OllamaClientConfig(
                base_url=self.config.ollama_base_url,
                connect_timeout=self.config.connect_timeout,
                request_timeout=self.config.request_timeout,
                max_retries=self.config.max_retries,
                retry_delay=self.config.retry_delay,
                retry_base_delay=self.config.retry_delay,
            ),
            key_pool=self._key_pool,
        )
        await self._client.connect()

    def build_app(self) -> web.Application:
        """Create the aiohttp application with all routes registered."""
        app = web.Application(
            client_max_size=self.config.max_body_size,
            middlewares=[request_logging_middleware],
        )
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/v1/models", self._handle_models)
        app.router.add_post("/v1/messages/count_tokens", self._handle_count_tokens)
        app.router.add_post("/v1/messages", self._handle_messages)
        app.router.add_post("/v1/chat/completions", self._handle_chat_completions)
        app.router.add_post("/api/shutdown", self._handle_shutdown)
        self._app = app
        return app

    async def serve(self) -> None:
        """Start the proxy server and block until shutdown is requested."""
        await self.connect()

        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()
        logger.info(
            "Ollama proxy listening on %s:%s -> %s (%d API key(s))",
            self.config.host,
            self.config.port,
            self.config.ollama_base_url,
            len(self._key_pool),
        )

        await self._shutdown_event.wait()
        logger.info("Ollama proxy shutdown requested")
        await self.stop()

    async def stop(self) -> None:
        """Stop the proxy server."""
        if self._client:
            await self._client.close()
            self._client = None
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def _handle_messages(self, request: web.Request) -> web.StreamResponse:
        """Handle POST /v1/messages - Anthropic Messages API endpoint."""
        return await self._handle_chat(request, "anthropic")

    async def _handle_chat_completions(self, request: web.Request) -> web.StreamResponse:
        """Handle POST /v1/chat/completions - OpenAI chat completions endpoint."""
        return await self._handle_chat(request, "openai")

    async def _handle_chat(self, request: web.Request, schema: Schema) -> web.StreamResponse:
        """Validate, resolve the model, and dispatch streaming or not."""
        content_type = request.headers.get("Content-Type", "")
        if "application/json" not in content_type:
            return self._error_response(
                schema,
                "invalid_request_error",
                f"Content-Type must be application/json, got: {content_type}",
                400,
            )

        try:
            body = await request.json()
        except ValueError as e:
            # JSONDecodeError, or UnicodeDecodeError for a non UTF-8 body
            return self._error_response(schema, "invalid_request_error", f"Invalid JSON: {e}", 400)

        validation_errors = validate_request(body, schema)
        if validation_errors:
            return self._error_response(
                schema, "invalid_request_error", "; ".join(validation_errors), 400
            )

        if not len(self._key_pool):
            return self._error_response(
                schema,
                "authentication_error",
                "API key required. Set OLLAMA_API_KEY environment variable or api_keys in config.",
                401,
            )

        trace_id = self._tracer.generate_trace_id(body)
        model = self.config.resolve_model(body.get("model"))

        if schema == "anthropic" and not body.get("max_tokens"):
            body = {**body, "max_tokens": DEFAULT_MAX_TOKENS}

        is_streaming = bool(body.get("stream"))
        logger.info(
            "[%s] %s request: model=%s, messages=%d, stream=%s",
            trace_id,
            schema,
            model,
            len(body.get("messages", [])),
            is_streaming,
        )
        self._tracer.save_debug(trace_id, "1_request.json", body)

        if is_streaming:
            return await self._handle_streaming(request, body, schema, model, trace_id)
        return await self._handle_non_streaming(body, schema, model, trace_id)

    async def _handle_non_streaming(
        self,
        body: dict[str, Any],
        schema: Schema,
        model: str,
        trace_id: str,
    ) -> web.Response:
        """Handle non-streaming response."""
        if not self._client:
            return self._error_response(schema, "api_error", "Upstream client not initialized", 503)

        try:
            result = await self._client.send(body, schema, model, trace_id)
        except ProxyError as e:
            logger.error("[%s] Upstream error (%s): %s", trace_id, e.kind.name, e)
            return self._error_response(schema, e.error_type, str(e), e.status_code)
        except Exception as e:
            logger.exception("[%s] Unexpected error", trace_id)
            return self._error_response(schema, "api_error", f"Internal error: {e}", 500)

        self._tracer.save_debug(trace_id, "2_response.json", result)

        usage = result.get("usage", {})
        logger.info(
            "[%s] Response complete: input_tokens=%s, output_tokens=%s",
            trace_id,
            usage.get("input_tokens", usage.get("prompt_tokens", "?")),
            usage.get("output_tokens", usage.get("completion_tokens", "?")),
        )
        return web.json_response(result, headers={"X-Trace-Id": trace_id})

    async def _handle_streaming(
        self,
        request: web.Request,
        body: dict[str, Any],
        schema: Schema,
        model: str,
        trace_id: str,
    ) -> web.StreamResponse:
        """Handle streaming response.

        The SSE response is only started once the first event arrives, so
        failures to open the upstream stream get a real HTTP status.
        """
        if not self._client:
            return self._error_response(schema, "api_error", "Upstream client not initialized", 503)

        framer: _AnthropicStreamFramer | _OpenAIStreamFramer
        if schema == "openai":
            framer = _OpenAIStreamFramer(model)
        else:
            framer = _AnthropicStreamFramer(model)

        response: web.StreamResponse | None = None
        debug_events: list[dict[str, Any]] = []

        try:
            # aclosing releases the upstream response on every exit path
            async with contextlib.aclosing(
                self._client.stream(body, schema, model, trace_id)
            ) as events:
                async for event in events:
                    debug_events.append({"type": event.type, "text": event.text})
                    if response is None:
                        response = await self._start_sse(request, trace_id)
                        await response.write(framer.start())
                    await response.write(framer.event(event))

                    if event.is_terminal:
                        if event.usage:
                            logger.info(
                                "[%s] Response complete: input_tokens=%s, output_tokens=%s",
                                trace_id,
                                event.usage.input_tokens,
                                event.usage.output_tokens,
                            )
                        else:
                            logger.info("[%s] Response complete (no usage info)", trace_id)

            if response is None:
                response = await self._start_sse(request, trace_id)
                await response.write(framer.start())
            if not framer.finished:
                # Upstream closed without a terminal line
                logger.debug("[%s] Stream ended without done line", trace_id)
                await response.write(framer.finish())

        except ProxyError as e:
            logger.error("[%s] Upstream error (%s): %s", trace_id, e.kind.name, e)
            if response is None:
                return self._error_response(schema, e.error_type, str(e), e.status_code)
            await self._write_quietly(response, framer.error(e.error_type, str(e)), trace_id)
        except ConnectionResetError:
            logger.debug("[%s] Client disconnected during streaming", trace_id)
            if response is None:
                raise
        except Exception as e:
            logger.exception("[%s] Unexpected error during streaming", trace_id)
            message = f"Internal error: {e}"
            if response is None:
                return self._error_response(schema, "api_error", message, 500)
            await self._write_quietly(response, framer.error("api_error", message), trace_id)

        self._tracer.save_debug(trace_id, "2_stream_events.json", debug_events)

        try:
            await response.write_eof()
        except ConnectionResetError:
            logger.debug("[%s] Client already disconnected", trace_id)

        return response

    async def _start_sse(self, request: web.Request, trace_id: str) -> web.StreamResponse:
        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
                "X-Trace-Id": trace_id,
            },
        )
        await response.prepare(request)
        return response

    async def _write_quietly(
        self, response: web.StreamResponse, data: bytes, trace_id: str
    ) -> None:
        try:
            await response.write(data)
        except ConnectionResetError:
            logger.debug("[%s] Client disconnected before error could be sent", trace_id)

    def _error_response(
        self,
        schema: Schema,
        error_type: str,
        message: str,
        status: int,
    ) -> web.Response:
        """Return an error response in the caller's format."""
        return web.json_response(_error_body(schema, error_type, message), status=status)

    async def _handle_models(self, request: web.Request) -> web.Response:
        """Handle GET /v1/models (OpenAI-compatible model list)."""
        if not len(self._key_pool):
            return web.json_response(
                {
                    "error": {
                        "message": "API key required. Set OLLAMA_API_KEY environment variable.",
                        "type": "authentication_error",
                        "code": "missing_api_key",
                    }
                },
                status=401,
            )
        if not self._client:
            return self._error_response(
                "openai", "api_error", "Upstream client not initialized", 503
            )

        try:
            models = await self._client.list_models()
        except ProxyError as e:
            logger.error("Error listing models: %s", e)
            return self._error_response("openai", e.error_type, str(e), e.status_code)
        return web.json_response(models)

    async def _handle_count_tokens(self, request: web.Request) -> web.Response:
        """Handle POST /v1/messages/count_tokens - not implemented."""
        return self._error_response(
            "anthropic", "not_implemented", "Token counting is not implemented.", 501
        )

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Handle GET /health."""
        return web.json_response(
            {
                "status": "ok",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "ollama_cloud": {
                    "configured": bool(len(self._key_pool)),
                    "base_url": self.config.ollama_base_url,
                    "keys": len(self._key_pool),
                },
            }
        )

    async def _handle_shutdown(self, request: web.Request) -> web.Response:
        """Handle POST /api/shutdown."""
        self._shutdown_event.set()
        return web.json_response({"success": True, "message": "Shutdown initiated"})
