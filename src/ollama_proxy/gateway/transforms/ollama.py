"""Ollama chat API helpers shared by both source-schema transformers.

Ollama Chat API Reference:
- Request: POST /api/chat with {model, messages, stream, options}
- Messages: [{role, content}] where content is a plain string
- Options: {temperature, top_p, top_k, num_predict}
- Response: {message: {role, content, thinking?}, done, prompt_eval_count, eval_count}
- Streaming: newline-delimited JSON, one response object per line,
  the last one with done=true and the usage counters
"""

import json
from typing import Any

from .types import TokenUsage

# Source parameter name -> Ollama option name
OPTION_NAMES = {
    "temperature": "temperature",
    "top_p": "top_p",
    "top_k": "top_k",
    "max_tokens": "num_predict",
}


def build_options(body: dict[str, Any]) -> dict[str, Any]:
    """Copy sampling parameters the caller supplied into Ollama options.

    Absent (or null) parameters are left out, never defaulted.
    """
    return {
        target: body[source]
        for source, target in OPTION_NAMES.items()
        if body.get(source) is not None
    }


def normalize_role(role: Any, allowed: frozenset[str]) -> str:
    """Collapse roles Ollama should not see to ``user``."""
    return role if role in allowed else "user"


def tool_call_marker(name: str, arguments: Any) -> str:
    """Render a tool invocation as text for models without tool support."""
    args = json.dumps(arguments if arguments is not None else {}, separators=(",", ":"))
    return f"[tool_call: {name}({args})]"


def tool_result_marker(content: Any) -> str:
    """Render a tool result as text. List content is joined from its text parts."""
    if isinstance(content, list):
        content = "".join(
            part.get("text", "")
            for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        )
    elif content is None:
        content = ""
    return f"[tool_result: {content}]"


def image_marker(url: str | None) -> str:
    return f"[image: {url or ''}]"


def render_text(message: Any) -> str:
    """Extract visible text from an Ollama response message.

    Content is either a string or, for some reasoning models, an object
    with ``content``/``text`` fields. A separate ``thinking`` field is
    placed in front of the answer, separated by a blank line.
    """
    if not isinstance(message, dict):
        return ""

    raw = message.get("content")
    if isinstance(raw, str):
        content = raw
    elif isinstance(raw, dict):
        content = raw.get("content") or raw.get("text") or ""
        if not isinstance(content, str):
            content = ""
    else:
        content = ""

    thinking = message.get("thinking")
    if thinking:
        return f"{thinking}\n\n{content}" if content else thinking
    return content


def usage_from(response: dict[str, Any]) -> TokenUsage:
    """Read prompt/eval counters, defaulting missing ones to 0."""
    return TokenUsage(
        input_tokens=response.get("prompt_eval_count") or 0,
        output_tokens=response.get("eval_count") or 0,
    )
