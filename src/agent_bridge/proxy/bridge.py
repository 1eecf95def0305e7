"""Event bridge: resolve session -> open run -> reassemble -> emit downstream."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from agent_bridge.config import BridgeConfig
from agent_bridge.errors import BridgeError, IdentityResolutionError, error_entry_for
from agent_bridge.models import (
    AckEvent,
    BridgeOutcome,
    DoneEvent,
    DownstreamEvent,
    ErrorsEvent,
    TextEvent,
)
from agent_bridge.proxy.events import EventSink
from agent_bridge.proxy.reassembler import LivenessMonitor, StreamReassembler
from agent_bridge.sessions import SessionDirectory
from agent_bridge.upstream.client import UpstreamClient, UpstreamRun

logger = logging.getLogger(__name__)

IdentitySource = str | Callable[[], Awaitable[str]]


async def _read_next(chunks: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await anext(chunks)
    except StopAsyncIteration:
        return None


class _GuardedWriter:
    """Writes to a sink at most until the terminal event, never raising.

    A failed write (caller gone) is logged and disables further writes.
    """

    def __init__(self, sink: EventSink, outcome: BridgeOutcome) -> None:
        self._sink = sink
        self._outcome = outcome
        self.closed = False
        self.failed = False

    async def write(self, event: DownstreamEvent, *, final: bool = False) -> bool:
        if self.closed or self.failed:
            return False
        try:
            await self._sink.send(event)
        except Exception as e:
            self.failed = True
            self._outcome.sink_failed = True
            logger.warning("Failed to write %s event downstream: %s", event.kind, e)
            return False
        if event.is_terminal:
            self._outcome.terminal = event.kind
        if final:
            self.closed = True
        return True


class EventBridge:
    """Bridges one caller request onto an upstream agent run.

    Every request gets an ack first and exactly one terminal event last:
    done on success, errors on failure.
    """

    def __init__(
        self,
        config: BridgeConfig,
        sessions: SessionDirectory,
        upstream: UpstreamClient,
        on_outcome: Callable[[BridgeOutcome], Awaitable[Any]] | None = None,
    ) -> None:
        self._config = config
        self._sessions = sessions
        self._upstream = upstream
        self._on_outcome = on_outcome

    @property
    def sessions(self) -> SessionDirectory:
        return self._sessions

    async def handle(self, identity: IdentitySource, prompt: str, sink: EventSink) -> BridgeOutcome:
        """Handle one request, writing all events to ``sink``."""
        start_time = time.monotonic()
        outcome = BridgeOutcome()
        writer = _GuardedWriter(sink, outcome)
        run: UpstreamRun | None = None

        try:
            if not await writer.write(AckEvent()):
                return outcome

            try:
                login = await self._resolve_identity(identity)
                outcome.identity = login
                handle = await self._sessions.resolve(login)
                outcome.handle = handle
                run = await self._upstream.open_run(handle, prompt)
            except Exception as e:
                await self._fail(writer, outcome, e)
                return outcome

            greeting = self._config.greeting_template
            if greeting:
                await writer.write(TextEvent(text=greeting.replace("{login}", login)))

            reassembler = StreamReassembler()
            try:
                await self._stream(run, reassembler, writer, outcome)
                outcome.stream_stats = reassembler.stats()

                if outcome.fragments == 0 and not writer.failed:
                    logger.warning(
                        "No usable content was streamed for %s, sending fallback", login
                    )
                    outcome.used_fallback = True
                    await writer.write(TextEvent(text=self._config.fallback_text))
                await writer.write(DoneEvent(), final=True)
            except Exception as e:
                outcome.stream_stats = reassembler.stats()
                if not writer.closed:
                    await self._fail(writer, outcome, e)
            return outcome
        finally:
            if run is not None:
                try:
                    await run.aclose()
                except Exception as e:
                    logger.warning("Error releasing upstream stream: %s", e)
            outcome.elapsed_ms = (time.monotonic() - start_time) * 1000
            await self._notify(outcome)

    async def _resolve_identity(self, identity: IdentitySource) -> str:
        if isinstance(identity, str):
            return identity
        try:
            return await identity()
        except BridgeError:
            raise
        except Exception as e:
            raise IdentityResolutionError(f"Could not resolve caller identity: {e}") from e

    async def _stream(
        self,
        run: UpstreamRun,
        reassembler: StreamReassembler,
        writer: _GuardedWriter,
        outcome: BridgeOutcome,
    ) -> None:
        """Pump the upstream stream until EOF, stall, read error, or caller loss."""
        liveness = LivenessMonitor(self._config.max_empty_reads, self._config.inactivity_window)
        chunks = aiter(run.chunks())
        pending: asyncio.Task[bytes | None] | None = None
        finished = False

        try:
            while not writer.failed:
                if pending is None:
                    pending = asyncio.ensure_future(_read_next(chunks))
                done, _ = await asyncio.wait({pending}, timeout=self._config.read_poll_interval)
                if not done:
                    if liveness.keepalive_due():
                        if await writer.write(TextEvent(text=self._config.keepalive_text)):
                            outcome.keepalives += 1
                        liveness.acknowledge_keepalive()
                    continue

                task, pending = pending, None
                try:
                    chunk = task.result()
                except Exception as e:
                    logger.warning("Error reading from upstream stream: %s", e)
                    break

                if chunk is None:
                    logger.info("Upstream stream completed normally")
                    finished = True
                    break

                liveness.record_read(len(chunk))
                if not chunk:
                    if liveness.stalled:
                        logger.warning("Too many consecutive empty reads, ending stream")
                        outcome.stalled = True
                        break
                    continue

                await self._emit_fragments(reassembler.feed(chunk), writer, outcome)
        finally:
            if pending is not None and not pending.done():
                pending.cancel()

        if finished:
            await self._emit_fragments(reassembler.flush(), writer, outcome)

    async def _emit_fragments(
        self, fragments: list[str], writer: _GuardedWriter, outcome: BridgeOutcome
    ) -> None:
        for fragment in fragments:
            if not await writer.write(TextEvent(text=fragment)):
                return
            outcome.fragments += 1

    async def _fail(self, writer: _GuardedWriter, outcome: BridgeOutcome, exc: Exception) -> None:
        entry = error_entry_for(exc)
        outcome.error_code = entry.code
        outcome.error_message = entry.message
        if isinstance(exc, BridgeError):
            logger.error("Bridge request failed [%s]: %s", entry.code, entry.message)
        else:
            logger.exception("Error processing agent request")

        if self._config.done_after_errors:
            await writer.write(ErrorsEvent(errors=[entry]))
            await writer.write(DoneEvent(), final=True)
        else:
            await writer.write(ErrorsEvent(errors=[entry]), final=True)

    async def _notify(self, outcome: BridgeOutcome) -> None:
        if self._on_outcome:
            with contextlib.suppress(Exception):
                await self._on_outcome(outcome)
