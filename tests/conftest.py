"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
import pytest

from agent_bridge.config import BridgeConfig
from agent_bridge.proxy.bridge import EventBridge
from agent_bridge.sessions import SessionDirectory
from agent_bridge.upstream.client import UpstreamClient

UPSTREAM = "http://agent.test"


def sse_line(payload: Any) -> bytes:
    """Encode one upstream ``data:`` line."""
    data = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
    return f"data: {data}\n".encode()


def ai_record(content: str, tool_calls: list[Any] | None = None) -> dict[str, Any]:
    return {"messages": [{"type": "ai", "content": content, "tool_calls": tool_calls or []}]}


class ChunkStream(httpx.AsyncByteStream):
    """Response body yielding fixed chunks, optionally failing or pausing."""

    def __init__(
        self,
        chunks: list[bytes],
        *,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self._chunks = chunks
        self._delay = delay
        self._error = error
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            if self._delay:
                await asyncio.sleep(self._delay)
            yield chunk
        if self._error is not None:
            raise self._error

    async def aclose(self) -> None:
        self.closed = True


class MockAgentServer:
    """Callable ``httpx.MockTransport`` handler imitating the agent server and GitHub."""

    def __init__(
        self,
        chunks: list[bytes] | None = None,
        *,
        thread_status: int = 200,
        thread_body: Any = None,
        run_status: int = 200,
        run_body: str = "",
        stream_factory: Callable[[], httpx.AsyncByteStream] | None = None,
        login: str = "octocat",
    ) -> None:
        self.chunks = chunks or []
        self.thread_status = thread_status
        self.thread_body = thread_body
        self.run_status = run_status
        self.run_body = run_body
        self.stream_factory = stream_factory
        self.login = login
        self.thread_calls = 0
        self.run_calls: list[tuple[str, dict[str, Any], httpx.Headers]] = []
        self.streams: list[httpx.AsyncByteStream] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "GET" and path == "/user":
            return httpx.Response(200, json={"login": self.login})

        if request.method == "POST" and path == "/threads":
            self.thread_calls += 1
            if self.thread_status >= 400:
                return httpx.Response(self.thread_status, text="thread store unavailable")
            body = self.thread_body
            if body is None:
                body = {"thread_id": f"thread-{self.thread_calls}"}
            return httpx.Response(self.thread_status, json=body)

        if request.method == "POST" and path.endswith("/runs/stream"):
            handle = path.split("/")[2]
            self.run_calls.append((handle, json.loads(request.content), request.headers))
            if self.run_status >= 400:
                return httpx.Response(self.run_status, text=self.run_body)
            stream = self.stream_factory() if self.stream_factory else ChunkStream(self.chunks)
            self.streams.append(stream)
            return httpx.Response(
                200,
                stream=stream,
                headers={"content-type": "text/event-stream"},
            )

        return httpx.Response(404)


@pytest.fixture
def config() -> BridgeConfig:
    """A config with fast liveness settings and no greeting."""
    return BridgeConfig(
        upstream_base_url=UPSTREAM,
        github_api_url=UPSTREAM,
        greeting_template="",
        read_poll_interval=0.05,
        inactivity_window=60.0,
        max_empty_reads=5,
        run_timeout=5.0,
    )


@pytest.fixture
def agent_server() -> MockAgentServer:
    return MockAgentServer(
        [
            sse_line(ai_record("Hello")),
            sse_line(ai_record(", world")),
        ]
    )


def make_bridge(
    config: BridgeConfig, server: MockAgentServer, **kwargs: Any
) -> tuple[EventBridge, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(server))
    upstream = UpstreamClient(config, client)
    bridge = EventBridge(config, SessionDirectory(upstream), upstream, **kwargs)
    return bridge, client
