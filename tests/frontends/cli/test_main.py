"""Tests for the ollama-proxy CLI."""

from __future__ import annotations

import json
import sys

import pytest
from aioresponses import aioresponses

from ollama_proxy.frontends.cli.main import main
from ollama_proxy.frontends.cli.output import format_size, print_table

BASE_URL = "https://ollama.test/api"
TAGS_URL = f"{BASE_URL}/tags"


def _run(monkeypatch, *args: str) -> int:
    """Invoke the CLI with argv and return its exit code."""
    monkeypatch.setattr(sys, "argv", ["ollama-proxy", *args])
    with pytest.raises(SystemExit) as exc_info:
        main()
    return exc_info.value.code or 0


@pytest.fixture
def upstream_env(monkeypatch):
    monkeypatch.setenv("OLLAMA_BASE_URL", BASE_URL)
    monkeypatch.setenv("OLLAMA_API_KEY", "key-a")


class TestModelsCommand:
    def test_list_as_json(self, monkeypatch, capsys, upstream_env, ollama_tags):
        with aioresponses() as m:
            m.get(TAGS_URL, payload=ollama_tags)

            code = _run(monkeypatch, "models", "--json")

        assert code == 0
        data = json.loads(capsys.readouterr().out)
        assert [model["id"] for model in data["data"]] == ["qwen3-coder-next", "gpt-oss:120b"]

    def test_list_as_table(self, monkeypatch, capsys, upstream_env, ollama_tags):
        with aioresponses() as m:
            m.get(TAGS_URL, payload=ollama_tags)

            code = _run(monkeypatch, "models")

        out = capsys.readouterr().out
        assert code == 0
        assert out.splitlines()[0].split() == ["MODEL", "SIZE", "DIGEST"]
        assert "gpt-oss:120b" in out
        assert "4.1 GB" in out

    def test_check_known_model(self, monkeypatch, capsys, upstream_env, ollama_tags):
        with aioresponses() as m:
            m.get(TAGS_URL, payload=ollama_tags)

            code = _run(monkeypatch, "models", "--check", "qwen3-coder-next")

        assert code == 0
        assert "qwen3-coder-next: available" in capsys.readouterr().out

    def test_check_unknown_model_exits_nonzero(
        self, monkeypatch, capsys, upstream_env, ollama_tags
    ):
        with aioresponses() as m:
            m.get(TAGS_URL, payload=ollama_tags)

            code = _run(monkeypatch, "models", "--check", "nope")

        assert code == 1
        assert "nope: not found" in capsys.readouterr().out

    def test_upstream_error(self, monkeypatch, capsys, upstream_env):
        with aioresponses() as m:
            m.get(TAGS_URL, status=500, body="down")

            code = _run(monkeypatch, "models")

        assert code == 1
        assert "Error: API error 500" in capsys.readouterr().err

    def test_missing_api_key(self, monkeypatch, capsys):
        code = _run(monkeypatch, "models")

        assert code == 1
        assert "API key required" in capsys.readouterr().err


class TestCommands:
    def test_help_lists_commands(self, monkeypatch, capsys):
        code = _run(monkeypatch, "--help")

        out = capsys.readouterr().out
        assert code == 0
        assert "serve" in out
        assert "models" in out


class TestOutput:
    def test_print_table(self, capsys):
        print_table(["A", "B"], [["x", "1"], ["longer", "2"]])

        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "A      B"
        assert lines[2] == "x      1"
        assert lines[3] == "longer 2"

    @pytest.mark.parametrize(
        "size,expected",
        [(None, "-"), (0, "-"), (512, "512 B"), (2048, "2.0 KB"), (4_400_000_000, "4.1 GB")],
    )
    def test_format_size(self, size, expected):
        assert format_size(size) == expected
