"""Format transformers between the client-facing APIs and Ollama.

Each transformer maps one source schema (Anthropic Messages, OpenAI chat
completions) to Ollama's chat format and back. They are pure: no network
or file I/O happens here.
"""

from .anthropic import AnthropicTransformer
from .openai import OpenAITransformer
from .types import Schema, StreamEvent, TokenUsage
from .validation import ChatCompletionsRequest, MessagesRequest, validate_request

TRANSFORMERS: dict[str, type[AnthropicTransformer] | type[OpenAITransformer]] = {
    "anthropic": AnthropicTransformer,
    "openai": OpenAITransformer,
}


def get_transformer(schema: Schema) -> AnthropicTransformer | OpenAITransformer:
    """Return a transformer instance for the given source schema."""
    return TRANSFORMERS[schema]()


__all__ = [
    # Transformers
    "AnthropicTransformer",
    "OpenAITransformer",
    "get_transformer",
    # Types
    "Schema",
    "StreamEvent",
    "TokenUsage",
    # Validation
    "ChatCompletionsRequest",
    "MessagesRequest",
    "validate_request",
]
