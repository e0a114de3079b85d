"""Composition helpers for running the proxy.

Resolves configuration from function arguments, environment variables and
an optional config file, then wires up the proxy server.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

from ollama_proxy.gateway.clients.ollama_client import OLLAMA_CLOUD_BASE_URL
from ollama_proxy.gateway.proxy import DEFAULT_MODEL, OllamaProxyServer, ProxyConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "config.json"


def parse_api_keys(value: Any) -> list[str]:
    """Split a comma-separated key string (or a list) into trimmed, non-empty keys."""
    if isinstance(value, str):
        items: list[Any] = value.split(",")
    elif isinstance(value, list | tuple):
        items = list(value)
    else:
        return []
    return [str(k).strip() for k in items if str(k).strip()]


async def _load_proxy_config(
    config_file: str | None,
    env_config_key: str = "OLLAMA_PROXY_CONFIG",
) -> tuple[dict[str, Any], Callable[[Any, str, str, str], str]]:
    """Load the config file and return (file_config, get_value_fn).

    The file is read with ``yaml.safe_load``, which also accepts JSON. Its
    path comes from ``config_file``, then the env var, then
    ``./config.json`` when that exists.

    The get_value function resolves config values with priority:
    arg > env > file > default.
    """
    file_config: dict[str, Any] = {}
    config_path = config_file or os.environ.get(env_config_key)
    if not config_path and Path(DEFAULT_CONFIG_FILE).exists():
        config_path = DEFAULT_CONFIG_FILE

    if config_path:
        try:
            content = await asyncio.to_thread(Path(config_path).read_text)
            loaded = yaml.safe_load(content) or {}
        except FileNotFoundError:
            logger.warning("Config file not found: %s", config_path)
        except yaml.YAMLError as e:
            logger.error("Failed to load config file %s: %s", config_path, e)
        else:
            if isinstance(loaded, dict):
                file_config = loaded
            else:
                logger.error("Config file %s must contain a mapping", config_path)

    def get_value(arg: Any, env_key: str, file_key: str, default: str) -> str:
        if arg is not None:
            return str(arg)
        env_val = os.environ.get(env_key)
        if env_val:
            return env_val
        file_val = file_config.get(file_key)
        if file_val:
            return str(file_val)
        return default

    return file_config, get_value


def _resolve_api_keys(api_keys: list[str] | None, file_config: dict[str, Any]) -> list[str]:
    """Keys from args, then OLLAMA_API_KEY / ANTHROPIC_API_KEY, then the file.

    ANTHROPIC_API_KEY takes precedence over OLLAMA_API_KEY when both are set.
    """
    if api_keys is not None:
        return parse_api_keys(api_keys)

    for env_key in ("ANTHROPIC_API_KEY", "OLLAMA_API_KEY"):
        keys = parse_api_keys(os.environ.get(env_key, ""))
        if keys:
            return keys

    keys = parse_api_keys(file_config.get("api_keys"))
    if keys:
        return keys
    return parse_api_keys(file_config.get("api_key") or "")


async def load_proxy_config(
    host: str | None = None,
    port: int | None = None,
    ollama_base_url: str | None = None,
    api_keys: list[str] | None = None,
    default_model: str | None = None,
    debug: bool | None = None,
    config_file: str | None = None,
) -> ProxyConfig:
    """Build a ProxyConfig.

    Configuration priority:
    1. Function arguments (highest)
    2. Environment variables (HOST, PORT, OLLAMA_BASE_URL, OLLAMA_API_KEY,
       ANTHROPIC_API_KEY, DEFAULT_MODEL, DEBUG, OLLAMA_PROXY_DEBUG_DIR)
    3. Config file (OLLAMA_PROXY_CONFIG or ./config.json)
    4. Defaults
    """
    file_config, get_value = await _load_proxy_config(config_file)

    if debug is None:
        debug = os.environ.get("DEBUG") == "true" or bool(file_config.get("debug"))

    model_mapping = file_config.get("model_mapping") or {}
    if not isinstance(model_mapping, dict):
        logger.warning("Ignoring model_mapping: expected a mapping")
        model_mapping = {}

    return ProxyConfig(
        host=get_value(host, "HOST", "host", "0.0.0.0"),
        port=int(get_value(port, "PORT", "port", "8080")),
        ollama_base_url=get_value(
            ollama_base_url, "OLLAMA_BASE_URL", "ollama_base_url", OLLAMA_CLOUD_BASE_URL
        ).rstrip("/"),
        api_keys=_resolve_api_keys(api_keys, file_config),
        default_model=get_value(default_model, "DEFAULT_MODEL", "default_model", DEFAULT_MODEL),
        model_mapping=model_mapping,
        debug=debug,
        debug_dir=get_value(None, "OLLAMA_PROXY_DEBUG_DIR", "debug_dir", "") or None,
    )


async def create_ollama_proxy(
    host: str | None = None,
    port: int | None = None,
    ollama_base_url: str | None = None,
    api_keys: list[str] | None = None,
    default_model: str | None = None,
    debug: bool | None = None,
    config_file: str | None = None,
) -> None:
    """Create and run the Ollama Cloud proxy server.

    This is a convenience function that blocks until stopped.

    Example:
        >>> # Using environment variables
        >>> # export OLLAMA_API_KEY=key-1,key-2
        >>> await create_ollama_proxy()
        >>>
        >>> # Or with explicit arguments
        >>> await create_ollama_proxy(port=9000, api_keys=["key-1"])
    """
    config = await load_proxy_config(
        host=host,
        port=port,
        ollama_base_url=ollama_base_url,
        api_keys=api_keys,
        default_model=default_model,
        debug=debug,
        config_file=config_file,
    )

    if not config.api_keys:
        logger.warning(
            "No API key configured. Set OLLAMA_API_KEY or api_keys in the config file; "
            "chat requests will be rejected."
        )

    server = OllamaProxyServer(config=config)
    await server.serve()
