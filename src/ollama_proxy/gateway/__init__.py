"""Ollama proxy gateway - accepts LLM API requests and forwards them to Ollama Cloud.

Components:
- Proxy server: Anthropic and OpenAI compatible endpoints (proxy.py)
- Transforms: API format conversion utilities
- Clients: Key-rotating, retrying HTTP client for Ollama Cloud
- Key pool: Shared rotation cursor over the configured API keys

Usage (via compose.py convenience functions):
    from ollama_proxy.compose import create_ollama_proxy
    import asyncio

    asyncio.run(create_ollama_proxy(api_keys=["key-1", "key-2"]))

Usage (direct):
    from ollama_proxy.gateway.proxy import OllamaProxyServer, ProxyConfig
    import asyncio

    async def main():
        config = ProxyConfig(api_keys=["key-1", "key-2"], default_model="qwen3-coder-next")
        server = OllamaProxyServer(config=config)
        await server.serve()

    asyncio.run(main())
"""

from ollama_proxy.gateway.errors import (
    ERROR_TYPE_MAP,
    AuthenticationError,
    ConfigurationError,
    ErrorKind,
    ProxyError,
    RateLimitError,
    TransientNetworkError,
    UpstreamProtocolError,
)
from ollama_proxy.gateway.key_pool import KeyPool
from ollama_proxy.gateway.tracing import RequestTracer

__all__ = [
    "ERROR_TYPE_MAP",
    "AuthenticationError",
    "ConfigurationError",
    "ErrorKind",
    "KeyPool",
    "ProxyError",
    "RateLimitError",
    "RequestTracer",
    "TransientNetworkError",
    "UpstreamProtocolError",
]
