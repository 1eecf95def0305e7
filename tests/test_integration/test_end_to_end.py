"""End-to-end tests using the Starlette app with a mock agent server."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest
from conftest import MockAgentServer, ai_record, sse_line
from starlette.applications import Starlette
from starlette.testclient import TestClient

from agent_bridge.config import BridgeConfig
from agent_bridge.models import BridgeOutcome
from agent_bridge.proxy.server import WELCOME_TEXT, create_app

AGENT_PAYLOAD = {
    "messages": [
        {"role": "user", "content": "Hello agent"},
        {"role": "assistant", "content": "Hi!"},
        {"role": "user", "content": "Summarize the repo"},
    ]
}
HEADERS = {"X-GitHub-Token": "ghu_test_token_123456"}


def parse_sse(body: str) -> list[tuple[str | None, str]]:
    """Split an SSE body into (event name, data) pairs."""
    events: list[tuple[str | None, str]] = []
    for block in body.split("\n\n"):
        if not block.strip():
            continue
        name: str | None = None
        data = ""
        for line in block.split("\n"):
            if line.startswith("event: "):
                name = line[len("event: ") :]
            elif line.startswith("data: "):
                data = line[len("data: ") :]
        events.append((name, data))
    return events


def text_contents(events: list[tuple[str | None, str]]) -> list[str]:
    contents = []
    for name, data in events:
        if name is None and data.startswith("{"):
            delta = json.loads(data)["choices"][0]["delta"]
            if delta.get("content"):
                contents.append(delta["content"])
    return contents


@pytest.fixture
def agent_server() -> MockAgentServer:
    return MockAgentServer(
        [
            b"event: metadata\n",
            sse_line({"run_id": "run-1"}),
            b"\n",
            sse_line(ai_record("Thinking", tool_calls=[{"name": "read_file"}])),
            sse_line(ai_record("The repo ")),
            sse_line(ai_record("is a bridge.")),
        ]
    )


@pytest.fixture
def captured_outcomes() -> list[BridgeOutcome]:
    return []


@pytest.fixture
def bridge_app(
    config: BridgeConfig,
    agent_server: MockAgentServer,
    captured_outcomes: list[BridgeOutcome],
) -> Starlette:
    async def capture(outcome: Any) -> None:
        captured_outcomes.append(outcome)

    client = httpx.AsyncClient(transport=httpx.MockTransport(agent_server))
    return create_app(config, on_outcome=capture, http_client=client)


class TestASGIApp:
    def test_welcome(self, bridge_app: Starlette) -> None:
        with TestClient(bridge_app) as client:
            assert client.get("/").text == WELCOME_TEXT
            assert client.get("/callback").status_code == 200

    def test_health_endpoint(self, bridge_app: Starlette) -> None:
        with TestClient(bridge_app) as client:
            response = client.get("/_bridge/health")
            assert response.status_code == 200
            assert response.json()["status"] == "ok"

    def test_sessions_endpoint_starts_empty(self, bridge_app: Starlette) -> None:
        with TestClient(bridge_app) as client:
            assert client.get("/_bridge/sessions").json() == {"sessions": 0}


class TestAgentEndpoint:
    def test_missing_token(self, bridge_app: Starlette, agent_server: MockAgentServer) -> None:
        with TestClient(bridge_app) as client:
            response = client.post("/", json=AGENT_PAYLOAD)

        assert response.status_code == 200
        events = parse_sse(response.text)
        assert len(events) == 1
        name, data = events[0]
        assert name == "copilot_errors"
        assert json.loads(data)[0]["code"] == "MISSING_GITHUB_TOKEN"
        assert agent_server.thread_calls == 0

    def test_invalid_payload(self, bridge_app: Starlette) -> None:
        with TestClient(bridge_app) as client:
            response = client.post("/", content=b"not json", headers=HEADERS)

        events = parse_sse(response.text)
        assert events[0][0] == "copilot_errors"
        assert json.loads(events[0][1])[0]["code"] == "INVALID_PAYLOAD"

    def test_streams_agent_reply(
        self,
        bridge_app: Starlette,
        agent_server: MockAgentServer,
        captured_outcomes: list[BridgeOutcome],
    ) -> None:
        with TestClient(bridge_app) as client:
            response = client.post("/", json=AGENT_PAYLOAD, headers=HEADERS)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"

        events = parse_sse(response.text)
        ack = json.loads(events[0][1])
        assert ack["choices"][0]["delta"]["content"] == ""
        assert text_contents(events) == ["The repo ", "is a bridge."]
        assert events[-1] == (None, "[DONE]")
        finish = json.loads(events[-2][1])
        assert finish["choices"][0]["finish_reason"] == "stop"

        handle, body, _ = agent_server.run_calls[0]
        assert body["input"]["messages"] == [{"role": "user", "content": "Summarize the repo"}]
        assert handle == "thread-1"

        assert len(captured_outcomes) == 1
        assert captured_outcomes[0].identity == "octocat"
        assert captured_outcomes[0].succeeded

    def test_thread_reused_across_requests(
        self, bridge_app: Starlette, agent_server: MockAgentServer
    ) -> None:
        with TestClient(bridge_app) as client:
            client.post("/", json=AGENT_PAYLOAD, headers=HEADERS)
            client.post("/", json=AGENT_PAYLOAD, headers=HEADERS)
            assert client.get("/_bridge/sessions").json() == {"sessions": 1}

        assert agent_server.thread_calls == 1
        assert [call[0] for call in agent_server.run_calls] == ["thread-1", "thread-1"]

    def test_upstream_failure_is_single_errors_event(self, config: BridgeConfig) -> None:
        server = MockAgentServer(thread_status=500)
        app = create_app(
            config,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(server)),
        )
        with TestClient(app) as client:
            response = client.post("/", json=AGENT_PAYLOAD, headers=HEADERS)

        events = parse_sse(response.text)
        assert len(events) == 2
        assert events[1][0] == "copilot_errors"
        errors = json.loads(events[1][1])
        assert len(errors) == 1
        assert errors[0]["code"] == "SESSION_CREATION_FAILED"
        assert "[DONE]" not in response.text

    def test_empty_upstream_gets_fallback(self, config: BridgeConfig) -> None:
        server = MockAgentServer([sse_line("ping")])
        app = create_app(
            config,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(server)),
        )
        with TestClient(app) as client:
            response = client.post("/", json=AGENT_PAYLOAD, headers=HEADERS)

        events = parse_sse(response.text)
        assert text_contents(events) == [config.fallback_text]
        assert events[-1] == (None, "[DONE]")
