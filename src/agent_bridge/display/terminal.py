"""Rich terminal display for bridged requests."""

from __future__ import annotations

import contextlib

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from agent_bridge.config import BridgeConfig
from agent_bridge.models import (
    AckEvent,
    BridgeOutcome,
    DoneEvent,
    DownstreamEvent,
    ErrorsEvent,
    TextEvent,
)


class TerminalDisplay:
    """Rich terminal display for live events and per-request outcomes."""

    def __init__(self, config: BridgeConfig, console: Console | None = None) -> None:
        self._config = config
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Access the underlying Rich console."""
        return self._console

    async def render_event(self, event: DownstreamEvent) -> None:
        """Print one downstream event as it arrives."""
        if isinstance(event, TextEvent):
            self._console.print(event.text, end="", markup=False, highlight=False)
        elif isinstance(event, ErrorsEvent):
            for entry in event.errors:
                self._console.print(
                    f"\n[red]Error[/red] {escape(f'[{entry.code}] {entry.message}')}"
                )
        elif isinstance(event, DoneEvent):
            self._console.print()
        elif isinstance(event, AckEvent) and self._config.verbose:
            self._console.print("[dim]ack[/dim]")

    async def on_outcome(self, outcome: BridgeOutcome) -> None:
        """Display a finished request in the terminal."""
        if self._config.quiet:
            return
        try:
            self._display_outcome(outcome)
        except (UnicodeEncodeError, OSError):
            # Fallback for terminals that can't render certain characters (e.g. Windows cp1252)
            with contextlib.suppress(Exception):
                self._console.print(
                    f"{outcome.identity or '-'} terminal={outcome.terminal} "
                    f"fragments={outcome.fragments}"
                )

    def _display_outcome(self, outcome: BridgeOutcome) -> None:
        color = "green" if outcome.succeeded else "red"

        header = Text()
        header.append("+ " if outcome.succeeded else "! ", style="bold")
        header.append(outcome.identity or "<unknown caller>", style=f"bold {color}")
        if outcome.handle:
            header.append(f"  thread={outcome.handle[:8]}", style="dim")

        metrics = Text()
        if outcome.terminal:
            metrics.append(f"terminal={outcome.terminal.value}  ")
        metrics.append(f"fragments={outcome.fragments}  ")
        if outcome.keepalives:
            metrics.append(f"keepalives={outcome.keepalives}  ")
        if outcome.elapsed_ms is not None:
            metrics.append(f"latency={outcome.elapsed_ms:.0f}ms  ")

        content_parts: list[str] = []
        if self._config.verbose and outcome.stream_stats:
            s = outcome.stream_stats
            content_parts.append(
                f"[dim]Stream:[/dim] [dim]{s.lines_seen} lines / {s.records_decoded} records"
                f" / {s.decode_failures} undecodable[/dim]"
            )
        if outcome.used_fallback:
            content_parts.append("[yellow]No usable content, fallback sent[/yellow]")
        if outcome.stalled:
            content_parts.append("[yellow]Upstream stalled[/yellow]")
        if outcome.sink_failed:
            content_parts.append("[yellow]Caller disconnected[/yellow]")
        if outcome.error_code:
            content_parts.append(
                f"[red]Error:[/red] {escape(f'[{outcome.error_code}] {outcome.error_message}')}"
            )

        content = "\n".join(content_parts) if content_parts else "[dim]OK[/dim]"

        panel = Panel(
            f"{header}\n{metrics}\n{content}",
            border_style=color,
            padding=(0, 1),
        )
        self._console.print(panel)
