"""Tests for configuration loading in compose.py."""

import json

import pytest

from ollama_proxy.compose import load_proxy_config, parse_api_keys
from ollama_proxy.gateway.clients.ollama_client import OLLAMA_CLOUD_BASE_URL


class TestParseApiKeys:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("key-a", ["key-a"]),
            ("key-a, key-b ,,key-c", ["key-a", "key-b", "key-c"]),
            ("", []),
            (["key-a", " ", "key-b"], ["key-a", "key-b"]),
            (None, []),
        ],
    )
    def test_parse(self, value, expected):
        assert parse_api_keys(value) == expected


class TestLoadProxyConfig:
    async def test_defaults(self):
        config = await load_proxy_config()

        assert config.host == "0.0.0.0"
        assert config.port == 8080
        assert config.ollama_base_url == OLLAMA_CLOUD_BASE_URL
        assert config.api_keys == []
        assert config.default_model == "qwen3-coder-next"
        assert config.model_mapping == {}
        assert config.debug is False
        assert config.debug_dir is None

    async def test_env_vars(self, monkeypatch):
        monkeypatch.setenv("HOST", "127.0.0.1")
        monkeypatch.setenv("PORT", "9001")
        monkeypatch.setenv("OLLAMA_BASE_URL", "http://localhost:11434/api/")
        monkeypatch.setenv("OLLAMA_API_KEY", "key-a,key-b")
        monkeypatch.setenv("DEFAULT_MODEL", "gpt-oss:120b")
        monkeypatch.setenv("DEBUG", "true")
        monkeypatch.setenv("OLLAMA_PROXY_DEBUG_DIR", "/tmp/debug")

        config = await load_proxy_config()

        assert config.host == "127.0.0.1"
        assert config.port == 9001
        assert config.ollama_base_url == "http://localhost:11434/api"
        assert config.api_keys == ["key-a", "key-b"]
        assert config.default_model == "gpt-oss:120b"
        assert config.debug is True
        assert config.debug_dir == "/tmp/debug"

    async def test_debug_requires_literal_true(self, monkeypatch):
        monkeypatch.setenv("DEBUG", "1")

        config = await load_proxy_config()

        assert config.debug is False

    async def test_anthropic_key_env_wins(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_API_KEY", "ollama-key")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "anthropic-key")

        config = await load_proxy_config()

        assert config.api_keys == ["anthropic-key"]

    async def test_default_config_file(self, tmp_path):
        """./config.json is picked up when present."""
        (tmp_path / "config.json").write_text(
            json.dumps(
                {
                    "api_keys": ["file-a", "file-b"],
                    "port": 7000,
                    "model_mapping": {"claude-sonnet-4": {"mapping": "qwen3-coder-next"}},
                }
            )
        )

        config = await load_proxy_config()

        assert config.api_keys == ["file-a", "file-b"]
        assert config.port == 7000
        assert config.model_mapping == {"claude-sonnet-4": {"mapping": "qwen3-coder-next"}}

    async def test_single_api_key_in_file(self, tmp_path):
        path = tmp_path / "proxy.yaml"
        path.write_text("api_key: file-key\ndefault_model: gpt-oss:20b\ndebug: true\n")

        config = await load_proxy_config(config_file=str(path))

        assert config.api_keys == ["file-key"]
        assert config.default_model == "gpt-oss:20b"
        assert config.debug is True

    async def test_config_path_from_env(self, tmp_path, monkeypatch):
        path = tmp_path / "elsewhere.json"
        path.write_text(json.dumps({"host": "10.0.0.1"}))
        monkeypatch.setenv("OLLAMA_PROXY_CONFIG", str(path))

        config = await load_proxy_config()

        assert config.host == "10.0.0.1"

    async def test_priority_arg_over_env_over_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"port": 7000, "host": "file-host", "api_keys": ["file"]}))
        monkeypatch.setenv("PORT", "7001")
        monkeypatch.setenv("OLLAMA_API_KEY", "env-key")

        config = await load_proxy_config(port=7002, config_file=str(path))

        assert config.port == 7002
        assert config.host == "file-host"
        assert config.api_keys == ["env-key"]

    async def test_explicit_api_keys(self, monkeypatch):
        monkeypatch.setenv("OLLAMA_API_KEY", "env-key")

        config = await load_proxy_config(api_keys=["arg-key"])

        assert config.api_keys == ["arg-key"]

    async def test_missing_config_file(self, caplog):
        """A missing file is logged and defaults are used."""
        config = await load_proxy_config(config_file="does-not-exist.json")

        assert config.port == 8080
        assert "Config file not found" in caplog.text

    async def test_malformed_config_file(self, tmp_path, caplog):
        path = tmp_path / "config.json"
        path.write_text("{broken: [")

        config = await load_proxy_config(config_file=str(path))

        assert config.api_keys == []
        assert "Failed to load config file" in caplog.text

    async def test_non_mapping_config_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2, 3]")

        config = await load_proxy_config(config_file=str(path))

        assert config.port == 8080
