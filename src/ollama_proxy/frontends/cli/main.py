"""CLI entry point."""

from __future__ import annotations

import asyncio
from typing import Any


def main() -> None:
    """Main entry point for the CLI."""
    _run_cli()


async def _fetch_models(config_file: str | None, check: str | None) -> Any:
    """List upstream models, or check a single model id when ``check`` is set."""
    from ollama_proxy.compose import load_proxy_config
    from ollama_proxy.gateway.clients.ollama_client import OllamaClient, OllamaClientConfig
    from ollama_proxy.gateway.errors import ConfigurationError
    from ollama_proxy.gateway.key_pool import KeyPool

    config = await load_proxy_config(config_file=config_file)
    if not config.api_keys:
        raise ConfigurationError("API key required. Set OLLAMA_API_KEY environment variable.")

    client = OllamaClient(
        config=OllamaClientConfig(
            base_url=config.ollama_base_url,
            connect_timeout=config.connect_timeout,
            request_timeout=config.request_timeout,
        ),
        key_pool=KeyPool(config.api_keys),
    )
    await client.connect()
    try:
        if check:
            return await client.is_valid_model(check)
        return await client.list_models()
    finally:
        await client.close()


def _run_cli() -> None:
    """CLI definition and runner."""
    import rich_click as click

    # Configure rich-click styling
    click.rich_click.USE_RICH_MARKUP = True
    click.rich_click.USE_MARKDOWN = True
    click.rich_click.SHOW_ARGUMENTS = True
    click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
    click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
    click.rich_click.ERRORS_SUGGESTION = "Try running '--help' for more information."
    click.rich_click.ERRORS_EPILOGUE = ""
    click.rich_click.MAX_WIDTH = 100

    # =========================================================================
    # Root CLI
    # =========================================================================
    @click.group()
    @click.version_option(package_name="ollama-proxy")
    def cli():
        """Ollama Proxy - Anthropic and OpenAI endpoints for Ollama Cloud.

        Lets Anthropic-speaking clients (Claude Code) and OpenAI-speaking
        clients talk to Ollama Cloud models, rotating across API keys.

            ollama-proxy serve     Run the proxy server

            ollama-proxy models    List or check upstream models
        """
        pass

    @cli.command()
    @click.option("--host", default=None, help="Bind address (default: 0.0.0.0)")
    @click.option("--port", "-p", type=int, default=None, help="Port (default: 8080)")
    @click.option("--base-url", default=None, help="Ollama API base URL")
    @click.option("--config", "-c", "config_file", default=None, help="Config file path")
    @click.option("--debug", is_flag=True, help="Enable debug logging")
    @click.option(
        "--log-format",
        type=click.Choice(["text", "json"]),
        default=None,
        help="Log output format",
    )
    def serve(
        host: str | None,
        port: int | None,
        base_url: str | None,
        config_file: str | None,
        debug: bool,
        log_format: str | None,
    ):
        """Run the proxy server.

        Listens for Anthropic (/v1/messages) and OpenAI (/v1/chat/completions)
        requests and forwards them to Ollama Cloud.

        **Examples:**

            OLLAMA_API_KEY=key-1,key-2 ollama-proxy serve

            ollama-proxy serve --port 9000 --config config.json

            ollama-proxy serve --debug --log-format json
        """
        from ollama_proxy.compose import create_ollama_proxy
        from ollama_proxy.core.logging_config import configure_logging

        configure_logging(
            level="DEBUG" if debug else None,
            format=log_format,  # type: ignore[arg-type]
        )

        try:
            asyncio.run(
                create_ollama_proxy(
                    host=host,
                    port=port,
                    ollama_base_url=base_url,
                    debug=debug or None,
                    config_file=config_file,
                )
            )
        except KeyboardInterrupt:
            click.echo("Stopped")

    @cli.command()
    @click.option("--config", "-c", "config_file", default=None, help="Config file path")
    @click.option("--check", default=None, help="Check whether a model id exists")
    @click.option("--json", "-j", "json_output", is_flag=True, help="Output as JSON")
    def models(config_file: str | None, check: str | None, json_output: bool):
        """List the models available on Ollama Cloud.

        **Examples:**

            ollama-proxy models

            ollama-proxy models --json

            ollama-proxy models --check qwen3-coder-next
        """
        from ollama_proxy.core.logging_config import configure_logging
        from ollama_proxy.frontends.cli.output import (
            error_exit,
            format_size,
            output_json,
            print_table,
        )
        from ollama_proxy.gateway.errors import ProxyError

        configure_logging(level="WARNING")

        try:
            result = asyncio.run(_fetch_models(config_file, check))
        except ProxyError as e:
            error_exit(str(e))

        if check:
            if json_output:
                output_json({"model": check, "available": result})
            else:
                click.echo(f"{check}: {'available' if result else 'not found'}")
            if not result:
                raise SystemExit(1)
            return

        if json_output:
            output_json(result)
            return

        print_table(
            ["MODEL", "SIZE", "DIGEST"],
            [
                [m["id"], format_size(m.get("size")), (m.get("digest") or "-")[:12]]
                for m in result.get("data", [])
            ],
        )

    cli()


if __name__ == "__main__":
    main()
