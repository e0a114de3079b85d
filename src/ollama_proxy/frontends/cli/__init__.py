"""CLI frontend for ollama-proxy.

Commands:
    ollama-proxy serve     Run the proxy server
    ollama-proxy models    List or check Ollama Cloud models

Example:
    $ export OLLAMA_API_KEY=key-1,key-2
    $ ollama-proxy serve --port 8080
    $ ollama-proxy models --check qwen3-coder-next
"""

from ollama_proxy.frontends.cli.main import main

__all__ = ["main"]
