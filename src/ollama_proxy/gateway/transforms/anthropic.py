"""Anthropic Messages API transformer.

Converts between the Anthropic Messages API format and Ollama's chat
format. Handles request flattening, response translation and stream line
translation, plus the SSE framing the front door writes back to clients.

Anthropic API Reference:
- Request: POST /v1/messages with {messages, max_tokens, model, stream, tools, system}
- Response: {id, type, role, content, model, stop_reason, usage}
- Streaming: SSE events (message_start, content_block_start/delta/stop, message_delta, message_stop)
"""

import json
import time
import uuid
from dataclasses import dataclass
from typing import Any

from .ollama import (
    build_options,
    image_marker,
    normalize_role,
    render_text,
    tool_call_marker,
    tool_result_marker,
    usage_from,
)
from .types import StreamEvent, TokenUsage

ROLES = frozenset({"user", "assistant"})


def _generate_message_id() -> str:
    """Generate a unique message ID in Anthropic format."""
    return f"msg_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class AnthropicTransformer:
    """Transforms Anthropic API format to/from Ollama format."""

    def to_upstream(
        self,
        body: dict[str, Any],
        model: str | None = None,
        stream: bool = False,
    ) -> dict[str, Any]:
        """Convert an Anthropic Messages API request to an Ollama chat request.

        Args:
            body: Anthropic request body
            model: Model name to use (overrides body["model"])
            stream: Whether the upstream call streams

        Returns:
            Ollama-format request dict ready for /chat
        """
        messages: list[dict[str, str]] = []

        system = self._system_text(body.get("system"))
        if system:
            messages.append({"role": "system", "content": system})

        for msg in body.get("messages", []):
            role = normalize_role(msg.get("role"), ROLES)
            content = msg.get("content")

            if isinstance(content, str):
                messages.append({"role": role, "content": content})
            elif isinstance(content, list):
                text = self._flatten_blocks(content)
                # Messages that flatten to nothing are dropped
                if text:
                    messages.append({"role": role, "content": text})

        return {
            "model": model or body.get("model"),
            "messages": messages,
            "stream": stream,
            "options": build_options(body),
        }

    def _system_text(self, system: Any) -> str:
        """System prompt as a string; list form uses the first block."""
        if isinstance(system, str):
            return system
        if isinstance(system, list) and system:
            first = system[0]
            if isinstance(first, dict):
                return first.get("text") or ""
        return ""

    def _flatten_blocks(self, blocks: list[Any]) -> str:
        """Concatenate content blocks in order, with no separator.

        Unknown block types contribute nothing.
        """
        parts: list[str] = []
        for block in blocks:
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")

            if block_type == "text":
                parts.append(block.get("text") or "")
            elif block_type == "tool_use":
                parts.append(tool_call_marker(block.get("name", ""), block.get("input")))
            elif block_type == "tool_result":
                parts.append(tool_result_marker(block.get("content")))
            elif block_type == "image":
                source = block.get("source") or {}
                # Only URL sources are references; inline base64 data is dropped
                if source.get("type") == "url":
                    parts.append(image_marker(source.get("url")))
        return "".join(parts)

    def from_upstream(self, response: dict[str, Any], model: str) -> dict[str, Any]:
        """Convert an Ollama chat response to Anthropic Messages API format.

        Args:
            response: Ollama response dict
            model: Model name to include in response

        Returns:
            Anthropic-format response dict
        """
        text = render_text(response.get("message"))
        usage = usage_from(response)

        return {
            "id": _generate_message_id(),
            "type": "message",
            "role": "assistant",
            # Claude Code expects content as an array of text blocks
            "content": [{"type": "text", "text": text}],
            "model": model,
            "stop_reason": "end_turn" if response.get("done") else None,
            "stop_sequence": None,
            "usage": {
                "input_tokens": usage.input_tokens,
                # Character count is the only estimate left when eval_count is missing
                "output_tokens": usage.output_tokens or len(text),
            },
        }

    def stream_event(
        self,
        line: dict[str, Any],
        model: str,
        accumulated: str = "",
    ) -> StreamEvent | None:
        """Convert one parsed Ollama stream line to a StreamEvent.

        Args:
            line: JSON object decoded from a single stream line
            model: Model name to include in the final envelope
            accumulated: Text streamed so far, used for the final envelope

        Returns:
            A content delta, a terminal event, or None when the line has
            nothing visible and is not the last one
        """
        text = render_text(line.get("message"))

        if line.get("done"):
            usage = usage_from(line)
            return StreamEvent(
                type="stream_terminal",
                text=text,
                usage=usage,
                payload={
                    "id": _generate_message_id(),
                    "type": "message",
                    "role": "assistant",
                    "content": [{"type": "text", "text": accumulated + text}],
                    "model": model,
                    "stop_reason": "end_turn",
                    "stop_sequence": None,
                    "usage": {
                        "input_tokens": usage.input_tokens,
                        "output_tokens": usage.output_tokens,
                    },
                },
            )

        if not text:
            return None

        return StreamEvent(
            type="content_delta",
            text=text,
            payload={
                "type": "content_block_delta",
                "index": 0,
                "delta": {"type": "text_delta", "text": text},
            },
        )

    # SSE framing

    def message_start_sse(self, model: str) -> bytes:
        """First event of a streaming response."""
        data = {
            "type": "message_start",
            "message": {
                "id": _generate_message_id(),
                "type": "message",
                "role": "assistant",
                "content": [],
                "model": model,
                "stop_reason": None,
                "stop_sequence": None,
                "usage": {"input_tokens": 0, "output_tokens": 0},
            },
        }
        return self._format_sse_event("message_start", data)

    def content_block_start_sse(self, index: int = 0) -> bytes:
        data = {
            "type": "content_block_start",
            "index": index,
            "content_block": {"type": "text", "text": ""},
        }
        return self._format_sse_event("content_block_start", data)

    def content_block_delta_sse(self, text: str, index: int = 0) -> bytes:
        data = {
            "type": "content_block_delta",
            "index": index,
            "delta": {"type": "text_delta", "text": text},
        }
        return self._format_sse_event("content_block_delta", data)

    def content_block_stop_sse(self, index: int = 0) -> bytes:
        return self._format_sse_event(
            "content_block_stop", {"type": "content_block_stop", "index": index}
        )

    def message_end_sse(self, usage: TokenUsage | None) -> bytes:
        """Closing ``message_delta`` and ``message_stop`` events."""
        delta_data: dict[str, Any] = {
            "type": "message_delta",
            "delta": {"stop_reason": "end_turn", "stop_sequence": None},
        }
        if usage:
            delta_data["usage"] = {"output_tokens": usage.output_tokens}
        return self._format_sse_event("message_delta", delta_data) + self._format_sse_event(
            "message_stop", {"type": "message_stop"}
        )

    def error_sse(self, error_type: str, message: str) -> bytes:
        data = {"type": "error", "error": {"type": error_type, "message": message}}
        return self._format_sse_event("error", data)

    def _format_sse_event(self, event_type: str, data: dict[str, Any]) -> bytes:
        """Format data as an SSE event with event and data lines."""
        json_data = json.dumps(data, separators=(",", ":"))
        return f"event: {event_type}\ndata: {json_data}\n\n".encode()
