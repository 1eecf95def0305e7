"""Client for the upstream LangGraph-style agent server."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from agent_bridge.config import BridgeConfig
from agent_bridge.errors import RunOpenError, RunTimeoutError, SessionCreationError

logger = logging.getLogger(__name__)

# Accepted handle fields in a thread creation response, first match wins
HANDLE_FIELDS: tuple[str, ...] = ("thread_id", "id", "uuid")


def extract_handle(body: Any) -> str | None:
    """Return the conversation handle from a creation response body."""
    if not isinstance(body, dict):
        return None
    for field in HANDLE_FIELDS:
        value = body.get(field)
        if value:
            return str(value)
    return None


class UpstreamRun:
    """A streaming run opened against an upstream thread.

    Owns the streamed response; ``aclose`` releases the connection and is
    safe to call more than once.
    """

    def __init__(self, handle: str, response: httpx.Response) -> None:
        self.handle = handle
        self._response = response
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def chunks(self) -> AsyncIterator[bytes]:
        """Decoded body chunks in arrival order."""
        return self._response.aiter_bytes()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()


class UpstreamClient:
    """Creates threads and opens streaming runs on the agent server."""

    def __init__(self, config: BridgeConfig, http_client: httpx.AsyncClient) -> None:
        self._config = config
        self._client = http_client
        self._base_url = config.upstream_base_url.rstrip("/")

    async def create_conversation(self) -> str:
        """Create a new upstream thread and return its handle."""
        url = f"{self._base_url}/threads"
        try:
            response = await self._client.post(url, json={})
        except httpx.HTTPError as e:
            raise SessionCreationError(f"Failed to create thread: {e}") from e

        if not response.is_success:
            logger.error("Thread creation failed (%s): %s", response.status_code, response.text)
            raise SessionCreationError(
                f"Failed to create thread: {response.status_code} {response.text}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise SessionCreationError(
                f"Thread creation response is not JSON: {response.text[:200]}",
                status_code=response.status_code,
            ) from e

        handle = extract_handle(body)
        if handle is None:
            raise SessionCreationError(
                "Thread creation response missing thread_id",
                status_code=response.status_code,
            )
        return handle

    def build_run_body(self, prompt: str) -> dict[str, Any]:
        """Build the run request body carrying the prompt as one user message."""
        return {
            "assistant_id": self._config.assistant_id,
            "input": {"messages": [{"role": "user", "content": prompt}]},
        }

    async def open_run(self, handle: str, prompt: str) -> UpstreamRun:
        """Open a streaming run on ``handle``; the caller must close it."""
        url = f"{self._base_url}/threads/{handle}/runs/stream"
        request = self._client.build_request(
            "POST",
            url,
            headers={"Accept": "text/event-stream", "Content-Type": "application/json"},
            json=self.build_run_body(prompt),
            timeout=httpx.Timeout(self._config.run_timeout, connect=self._config.connect_timeout),
        )
        try:
            # Bounds everything up to the response headers; reads are policed by the bridge
            async with asyncio.timeout(self._config.run_timeout):
                response = await self._client.send(request, stream=True)
        except (TimeoutError, httpx.TimeoutException) as e:
            raise RunTimeoutError(
                f"Agent run timed out after {self._config.run_timeout:.0f}s"
            ) from e
        except httpx.HTTPError as e:
            raise RunOpenError(f"Agent run could not be opened: {e}") from e

        if not response.is_success:
            try:
                await response.aread()
                err_text = response.text or response.reason_phrase
            except httpx.HTTPError:
                err_text = response.reason_phrase
            finally:
                await response.aclose()
            logger.error("Agent run error (%s): %s", response.status_code, err_text)
            raise RunOpenError(
                f"Agent error: {response.status_code} {err_text}",
                status_code=response.status_code,
            )

        return UpstreamRun(handle, response)
