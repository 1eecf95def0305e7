"""Click CLI for the agent bridge."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import click
import uvicorn
from rich.logging import RichHandler

from agent_bridge.config import BridgeConfig


def _configure_logging(config: BridgeConfig) -> None:
    level = logging.WARNING
    if config.verbose:
        level = logging.INFO
    elif config.quiet:
        level = logging.ERROR
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _build_config(**options: Any) -> BridgeConfig:
    # Env vars are handled by pydantic-settings; only explicit CLI values override
    overrides = {k: v for k, v in options.items() if v is not None and v is not False}
    return BridgeConfig(**overrides)


@click.group()
@click.version_option(version="0.1.0")
def cli() -> None:
    """Agent Bridge - relays Copilot agent calls to a LangGraph agent server."""


@cli.command()
@click.option("--host", default=None, help="Host to bind to (default: 127.0.0.1)")
@click.option("--port", default=None, type=int, help="Port to bind to (default: 3000)")
@click.option("--upstream-url", default=None, help="Agent server base URL")
@click.option("--assistant-id", default=None, help="Assistant to run upstream")
@click.option("--run-timeout", default=None, type=float, help="Run open timeout in seconds")
@click.option("--no-greeting", is_flag=True, default=False, help="Don't greet the caller")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Verbose output")
@click.option("--quiet", "-q", is_flag=True, default=False, help="Suppress terminal output")
def start(
    host: str | None,
    port: int | None,
    upstream_url: str | None,
    assistant_id: str | None,
    run_timeout: float | None,
    no_greeting: bool,
    verbose: bool,
    quiet: bool,
) -> None:
    """Start the bridge server."""
    config = _build_config(
        host=host,
        port=port,
        upstream_base_url=upstream_url,
        assistant_id=assistant_id,
        run_timeout=run_timeout,
        greeting_template="" if no_greeting else None,
        verbose=verbose,
        quiet=quiet,
    )
    _configure_logging(config)

    from agent_bridge.display.terminal import TerminalDisplay
    from agent_bridge.proxy.server import create_app

    display = TerminalDisplay(config)

    if not quiet:
        display.console.print(
            f"[bold]Agent Bridge[/bold] starting on "
            f"[green]http://{config.host}:{config.port}[/green]"
        )
        display.console.print(f"  Agent server: {config.upstream_base_url}")
        display.console.print(f"  Assistant: {config.assistant_id}")
        display.console.print()

    app = create_app(config, on_outcome=display.on_outcome)

    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level="warning" if not verbose else "info",
    )


@cli.command()
@click.argument("prompt")
@click.option("--user", "login", default="local", show_default=True, help="Caller identity")
@click.option("--upstream-url", default=None, help="Agent server base URL")
@click.option("--assistant-id", default=None, help="Assistant to run upstream")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Show stream statistics")
def ask(
    prompt: str,
    login: str,
    upstream_url: str | None,
    assistant_id: str | None,
    verbose: bool,
) -> None:
    """Send one prompt through the bridge and print the streamed reply."""
    asyncio.run(_ask(prompt, login, upstream_url, assistant_id, verbose))


async def _ask(
    prompt: str,
    login: str,
    upstream_url: str | None,
    assistant_id: str | None,
    verbose: bool,
) -> None:
    config = _build_config(
        upstream_base_url=upstream_url,
        assistant_id=assistant_id,
        greeting_template="",
        verbose=verbose,
    )
    _configure_logging(config)

    import httpx

    from agent_bridge.display.terminal import TerminalDisplay
    from agent_bridge.proxy.bridge import EventBridge
    from agent_bridge.proxy.events import CallbackSink
    from agent_bridge.sessions import SessionDirectory
    from agent_bridge.upstream.client import UpstreamClient

    display = TerminalDisplay(config)
    async with httpx.AsyncClient(
        timeout=httpx.Timeout(config.run_timeout, connect=config.connect_timeout)
    ) as client:
        upstream = UpstreamClient(config, client)
        bridge = EventBridge(
            config,
            SessionDirectory(upstream),
            upstream,
            on_outcome=display.on_outcome if verbose else None,
        )
        outcome = await bridge.handle(login, prompt, CallbackSink(display.render_event))

    if not outcome.succeeded:
        raise SystemExit(1)
