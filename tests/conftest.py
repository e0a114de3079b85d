"""Pytest configuration and fixtures."""

import logging

import pytest

from ollama_proxy.core import logging_config

# Environment variables the proxy reads; cleared so the host environment
# can't leak into tests.
PROXY_ENV_VARS = (
    "HOST",
    "PORT",
    "OLLAMA_BASE_URL",
    "OLLAMA_API_KEY",
    "ANTHROPIC_API_KEY",
    "DEFAULT_MODEL",
    "DEBUG",
    "OLLAMA_PROXY_CONFIG",
    "OLLAMA_PROXY_DEBUG_DIR",
    "OLLAMA_PROXY_LOG_LEVEL",
    "OLLAMA_PROXY_LOG_FORMAT",
    "OLLAMA_PROXY_LOG_FILE",
)

TEST_BASE_URL = "https://ollama.test/api"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate tests from proxy env vars and any ./config.json."""
    for name in PROXY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo configure_logging() so handlers don't outlive a test."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    proxy_level = logging.getLogger("ollama_proxy").level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("ollama_proxy").setLevel(proxy_level)
    logging_config._configured = False


@pytest.fixture
def ollama_chat_response():
    """Non-streaming Ollama /chat response."""
    return {
        "model": "qwen3-coder-next",
        "created_at": "2025-06-01T12:00:00.123456789Z",
        "message": {"role": "assistant", "content": "Hello there!"},
        "done": True,
        "done_reason": "stop",
        "prompt_eval_count": 12,
        "eval_count": 4,
    }


@pytest.fixture
def ollama_stream_body():
    """Newline-delimited Ollama stream: two deltas, then the done line."""
    return (
        '{"message":{"role":"assistant","content":"Hel"},"done":false}\n'
        '{"message":{"role":"assistant","content":"lo"},"done":false}\n'
        '{"message":{"role":"assistant","content":""},"done":true,'
        '"prompt_eval_count":7,"eval_count":2}\n'
    )


@pytest.fixture
def ollama_tags():
    """Ollama /tags listing."""
    return {
        "models": [
            {
                "name": "qwen3-coder-next",
                "modified_at": "2025-06-01T12:00:00.123456789Z",
                "size": 4_400_000_000,
                "digest": "sha256:abc123def456",
            },
            {
                "name": "gpt-oss:120b",
                "modified_at": "2025-05-20T08:30:00Z",
                "size": 65_000_000_000,
                "digest": "sha256:fff000",
            },
        ]
    }
