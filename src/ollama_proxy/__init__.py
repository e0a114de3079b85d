"""Ollama Proxy - Anthropic and OpenAI compatible front end for Ollama Cloud.

Lets tools that speak the Anthropic Messages API (Claude Code) or the
OpenAI chat-completions API (OpenCode and friends) run against models
hosted on Ollama Cloud.

Layers:
    gateway/    Proxy server, format transforms, upstream client, key pool
    core/       Logging configuration
    frontends/  Command line interface
    compose.py  Configuration loading and server wiring

Quick Start:
    $ export OLLAMA_API_KEY="key-1,key-2"
    $ ollama-proxy serve --port 8080
    $ export ANTHROPIC_BASE_URL=http://127.0.0.1:8080
    $ claude
"""

__version__ = "0.1.0"
