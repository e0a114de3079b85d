"""Types shared by the format transformers and the upstream client."""

from dataclasses import dataclass, field
from typing import Any, Literal

Schema = Literal["anthropic", "openai"]


@dataclass(frozen=True)
class TokenUsage:
    """Token usage statistics."""

    input_tokens: int
    output_tokens: int


@dataclass(frozen=True)
class StreamEvent:
    """Single event decoded from one upstream stream line.

    ``payload`` is the source-schema wire object for this event: an
    Anthropic ``content_block_delta`` event or final message envelope,
    or an OpenAI ``chat.completion.chunk``.
    """

    type: Literal["content_delta", "stream_terminal"]
    text: str = ""
    usage: TokenUsage | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type == "stream_terminal"
