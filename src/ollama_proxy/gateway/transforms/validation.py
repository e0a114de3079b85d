"""Pydantic models for incoming request validation.

These models check the shape of requests hitting the proxy before they are
translated. They are deliberately lenient: unknown fields pass through,
roles are free-form strings (the transformers collapse unknown roles to
``user``) and empty message lists are accepted.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .types import Schema


class ContentBlock(BaseModel):
    """Anthropic content block (text, tool_use, tool_result, image, ...)."""

    model_config = ConfigDict(extra="allow")

    type: Literal["text", "tool_use", "tool_result", "image", "thinking"] | str

    text: str | None = None
    name: str | None = None
    input: dict[str, Any] | None = None
    tool_use_id: str | None = None
    content: str | list[dict[str, Any]] | None = None
    source: dict[str, Any] | None = None


class Message(BaseModel):
    """A message in an Anthropic conversation."""

    model_config = ConfigDict(extra="allow")

    role: Literal["user", "assistant"] | str
    content: str | list[ContentBlock] | None = None


class SystemContentBlock(BaseModel):
    """Content block for the system prompt (text with optional cache control)."""

    model_config = ConfigDict(extra="allow")

    type: Literal["text"] = "text"
    text: str
    cache_control: dict[str, str] | None = None


class MessagesRequest(BaseModel):
    """Anthropic Messages API request body."""

    model_config = ConfigDict(extra="allow")

    messages: list[Message]
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    stream: bool | None = None
    system: str | list[SystemContentBlock] | None = None
    tools: list[dict[str, Any]] | None = None

    @field_validator("max_tokens")
    @classmethod
    def validate_max_tokens(cls, v: int | None) -> int | None:
        """Validate max_tokens is positive."""
        if v is not None and v <= 0:
            raise ValueError("max_tokens must be positive")
        return v

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float | None) -> float | None:
        """Validate temperature is in valid range."""
        if v is not None and (v < 0 or v > 2):
            raise ValueError("temperature must be between 0 and 2")
        return v


class ChatMessage(BaseModel):
    """A message in an OpenAI conversation."""

    model_config = ConfigDict(extra="allow")

    role: Literal["system", "user", "assistant"] | str
    content: str | list[dict[str, Any]] | None = None


class ChatCompletionsRequest(BaseModel):
    """OpenAI chat-completions request body."""

    model_config = ConfigDict(extra="allow")

    messages: list[ChatMessage]
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    stream: bool | None = None


REQUEST_MODELS: dict[str, type[BaseModel]] = {
    "anthropic": MessagesRequest,
    "openai": ChatCompletionsRequest,
}


def validate_request(body: Any, schema: Schema = "anthropic") -> list[str]:
    """Validate a request body against the source schema.

    Args:
        body: The decoded request body
        schema: Which source API the body claims to follow

    Returns:
        List of validation error messages (empty if valid)
    """
    try:
        REQUEST_MODELS[schema].model_validate(body)
    except ValidationError as e:
        return [
            f"{'.'.join(str(loc) for loc in err['loc']) or 'body'}: {err['msg']}"
            for err in e.errors()
        ]
    return []
