"""OpenAI Chat Completions API transformer.

Converts OpenAI chat-completions requests to Ollama's chat format and
Ollama responses, stream lines and model listings back to OpenAI shapes.

OpenAI API Reference:
- Request: POST /v1/chat/completions with {model, messages, stream, max_tokens, temperature}
- Messages: [{role, content}] where content is a string or [{type: text|image_url, ...}]
- Streaming: SSE with data: {"choices": [{"delta": {...}}]} terminated by data: [DONE]
"""

import json
import logging
import re
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .ollama import build_options, image_marker, normalize_role, render_text, usage_from
from .types import StreamEvent

logger = logging.getLogger(__name__)

ROLES = frozenset({"system", "user", "assistant"})

# Ollama reports nanosecond timestamps; datetime only keeps microseconds
_FRACTION = re.compile(r"(\.\d{6})\d+")


def _generate_completion_id() -> str:
    return f"chatcmpl-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def _parse_timestamp(value: Any) -> int:
    """Epoch seconds for an ISO 8601 timestamp, or now if it can't be read."""
    if isinstance(value, str) and value:
        try:
            normalized = _FRACTION.sub(r"\1", value.replace("Z", "+00:00"))
            return int(datetime.fromisoformat(normalized).timestamp())
        except ValueError:
            logger.debug("Unparsable modified_at timestamp: %s", value)
    return int(time.time())


@dataclass
class OpenAITransformer:
    """Transforms OpenAI API format to/from Ollama format."""

    def to_upstream(
        self,
        body: dict[str, Any],
        model: str | None = None,
        stream: bool = False,
    ) -> dict[str, Any]:
        """Convert an OpenAI chat-completions request to an Ollama chat request.

        Array content is flattened to a single string; every message is
        kept, even when it flattens to nothing.
        """
        messages = [
            {
                "role": normalize_role(msg.get("role"), ROLES),
                "content": self._flatten_content(msg.get("content")),
            }
            for msg in body.get("messages") or []
        ]

        return {
            "model": model or body.get("model"),
            "messages": messages,
            "stream": stream,
            "options": build_options(body),
        }

    def _flatten_content(self, content: Any) -> str:
        if isinstance(content, str):
            return content
        if not isinstance(content, list):
            return ""

        parts: list[str] = []
        for part in content:
            if not isinstance(part, dict):
                continue
            if part.get("type") == "text":
                parts.append(part.get("text") or "")
            elif part.get("type") == "image_url":
                image_url = part.get("image_url") or {}
                parts.append(image_marker(image_url.get("url")))
        return "".join(parts)

    def from_upstream(self, response: dict[str, Any], model: str) -> dict[str, Any]:
        """Convert an Ollama chat response to an OpenAI chat completion."""
        text = render_text(response.get("message"))
        usage = usage_from(response)

        return {
            "id": _generate_completion_id(),
            "object": "chat.completion",
            "created": int(time.time()),
            "model": model,
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": text},
                    "finish_reason": "stop" if response.get("done") else None,
                }
            ],
            "usage": {
                "prompt_tokens": usage.input_tokens,
                "completion_tokens": usage.output_tokens,
                "total_tokens": usage.input_tokens + usage.output_tokens,
            },
        }

    def stream_event(
        self,
        line: dict[str, Any],
        model: str,
        accumulated: str = "",
    ) -> StreamEvent | None:
        """Convert one parsed Ollama stream line to a StreamEvent.

        ``accumulated`` is accepted for parity with the Anthropic
        transformer; OpenAI chunks never repeat earlier text.
        """
        text = render_text(line.get("message"))

        if line.get("done"):
            return StreamEvent(
                type="stream_terminal",
                text=text,
                usage=usage_from(line),
                payload=self.chunk(model, {}, "stop"),
            )

        if not text:
            return None

        return StreamEvent(
            type="content_delta",
            text=text,
            payload=self.chunk(model, {"role": "assistant", "content": text}, None),
        )

    def chunk(
        self, model: str, delta: dict[str, Any], finish_reason: str | None
    ) -> dict[str, Any]:
        """Build a chat.completion.chunk carrying one delta."""
        return {
            "id": _generate_completion_id(),
            "object": "chat.completion.chunk",
            "created": int(time.time()),
            "model": model,
            "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
        }

    def models_from_upstream(self, tags: dict[str, Any]) -> dict[str, Any]:
        """Convert an Ollama /tags listing to an OpenAI /v1/models listing.

        Entries without a ``name`` are skipped.
        """
        models = tags.get("models")
        if not isinstance(models, list):
            models = []
        return {
            "object": "list",
            "data": [
                {
                    "id": model["name"],
                    "object": "model",
                    "created": _parse_timestamp(model.get("modified_at")),
                    "owned_by": "ollama",
                    "permission": [],
                    "root": model["name"],
                    "parent_model": None,
                    "freeze": False,
                    "digest": model.get("digest") or None,
                    "size": model.get("size") or None,
                }
                for model in models
                if isinstance(model, dict) and model.get("name")
            ],
        }

    def format_sse(self, payload: dict[str, Any]) -> bytes:
        """Format a chunk as an SSE data line."""
        return f"data: {json.dumps(payload, separators=(',', ':'))}\n\n".encode()

    def done_sse(self) -> bytes:
        return b"data: [DONE]\n\n"

    def error_sse(self, error_type: str, message: str) -> bytes:
        return self.format_sse({"error": {"type": error_type, "message": message}})
