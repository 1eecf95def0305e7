"""Starlette application assembly and lifecycle."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from starlette.routing import Route

from agent_bridge.config import BridgeConfig
from agent_bridge.errors import BridgeError, MissingTokenError
from agent_bridge.identity import (
    TOKEN_HEADER,
    GitHubIdentityResolver,
    get_user_message,
    parse_payload,
    redact_headers,
)
from agent_bridge.proxy.bridge import EventBridge
from agent_bridge.proxy.events import QueueSink, encode_event, errors_event
from agent_bridge.sessions import SessionDirectory
from agent_bridge.upstream.client import UpstreamClient

logger = logging.getLogger(__name__)

WELCOME_TEXT = "Welcome to the agent bridge! 👋"

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Content-Type-Options": "nosniff",
}


def _error_response(error: BridgeError) -> Response:
    """An immediate errors event, sent before any streaming starts."""
    return Response(
        content=encode_event(errors_event(error.to_entry())),
        media_type="text/event-stream",
    )


def create_app(
    config: BridgeConfig,
    on_outcome: Any | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Starlette:
    """Create and configure the Starlette bridge application.

    ``http_client`` is used for both upstream and GitHub calls when given;
    otherwise one is created for the app's lifetime.
    """

    bridge: EventBridge | None = None
    client: httpx.AsyncClient | None = None

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncGenerator[None, None]:
        nonlocal bridge, client
        owns_client = http_client is None
        client = http_client if http_client is not None else httpx.AsyncClient(
            timeout=httpx.Timeout(config.run_timeout, connect=config.connect_timeout)
        )
        upstream = UpstreamClient(config, client)
        sessions = SessionDirectory(upstream, max_entries=config.max_sessions)
        bridge = EventBridge(config, sessions, upstream, on_outcome=on_outcome)
        yield
        if owns_client:
            await client.aclose()

    async def welcome(request: Request) -> PlainTextResponse:
        return PlainTextResponse(WELCOME_TEXT)

    async def health(request: Request) -> JSONResponse:
        """Health check endpoint."""
        return JSONResponse({"status": "ok", "version": "0.1.0"})

    async def sessions(request: Request) -> JSONResponse:
        """Number of callers with a known upstream thread."""
        assert bridge is not None, "App not initialized"
        return JSONResponse({"sessions": len(bridge.sessions)})

    async def agent(request: Request) -> Response:
        """Bridge one agent call onto the upstream run stream."""
        assert bridge is not None and client is not None, "App not initialized"
        headers = dict(request.headers)
        logger.debug(
            "Agent request headers: %s",
            redact_headers(headers, redact=config.redact_tokens),
        )

        token = headers.get(TOKEN_HEADER, "")
        if not token:
            return _error_response(
                MissingTokenError("No GitHub token provided in the request headers.")
            )

        try:
            prompt = get_user_message(parse_payload(await request.body()))
        except BridgeError as e:
            logger.warning("Rejected agent request: %s", e.message)
            return _error_response(e)

        identity = GitHubIdentityResolver(client, token, config.github_api_url)
        sink = QueueSink()

        async def run_bridge() -> None:
            try:
                await bridge.handle(identity, prompt, sink)
            except Exception:
                logger.exception("Bridge task failed")
            finally:
                sink.close()

        async def stream_body() -> AsyncIterator[bytes]:
            task = asyncio.create_task(run_bridge())
            try:
                async for chunk in sink.iter_encoded():
                    yield chunk
            finally:
                # Caller went away mid-stream
                if not task.done():
                    task.cancel()

        return StreamingResponse(
            content=stream_body(),
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
        )

    routes = [
        Route("/", welcome, methods=["GET"]),
        Route("/callback", welcome, methods=["GET"]),
        Route("/_bridge/health", health, methods=["GET"]),
        Route("/_bridge/sessions", sessions, methods=["GET"]),
        Route("/", agent, methods=["POST"]),
    ]

    app = Starlette(
        routes=routes,
        lifespan=lifespan,
    )

    return app
