"""Downstream event encoding and sinks."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Protocol

from agent_bridge.models import (
    AckEvent,
    DoneEvent,
    DownstreamEvent,
    ErrorEntry,
    ErrorsEvent,
    EventKind,
    TextEvent,
)


def _data_line(payload: Any) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _delta(content: str | None, **extra: Any) -> dict[str, Any]:
    delta: dict[str, Any] = {"content": content}
    if content is not None:
        delta["role"] = "assistant"
    return {"choices": [{"index": 0, **extra, "delta": delta}]}


def encode_event(event: DownstreamEvent) -> str:
    """Encode an event in the Copilot agent SSE dialect."""
    if isinstance(event, AckEvent):
        return _data_line(_delta(""))
    if isinstance(event, TextEvent):
        return _data_line(_delta(event.text))
    if isinstance(event, ErrorsEvent):
        errors = [e.model_dump() for e in event.errors]
        return f"event: copilot_errors\n{_data_line(errors)}"
    if isinstance(event, DoneEvent):
        return _data_line(_delta(None, finish_reason="stop")) + "data: [DONE]\n\n"
    raise TypeError(f"Unsupported event: {event!r}")


def errors_event(*entries: ErrorEntry) -> ErrorsEvent:
    return ErrorsEvent(errors=list(entries))


class EventSink(Protocol):
    """Destination for downstream events, written by a single task."""

    async def send(self, event: DownstreamEvent) -> None: ...


class ListSink:
    """Collects events in memory."""

    def __init__(self) -> None:
        self.events: list[DownstreamEvent] = []

    async def send(self, event: DownstreamEvent) -> None:
        self.events.append(event)

    @property
    def kinds(self) -> list[EventKind]:
        return [e.kind for e in self.events]

    @property
    def texts(self) -> list[str]:
        return [e.text for e in self.events if isinstance(e, TextEvent)]


class CallbackSink:
    """Forwards each event to an async callable."""

    def __init__(self, callback: Callable[[DownstreamEvent], Awaitable[None]]) -> None:
        self._callback = callback

    async def send(self, event: DownstreamEvent) -> None:
        await self._callback(event)


class QueueSink:
    """Feeds encoded events to a streaming HTTP response.

    ``close`` marks the end; ``iter_encoded`` drains until then.
    """

    _END = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    async def send(self, event: DownstreamEvent) -> None:
        if self._closed:
            raise RuntimeError("Sink is closed")
        await self._queue.put(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._END)

    async def iter_encoded(self) -> AsyncIterator[bytes]:
        while True:
            item = await self._queue.get()
            if item is self._END:
                return
            yield encode_event(item).encode("utf-8")
