"""Caller identity and inbound payload helpers."""

from __future__ import annotations

import json
from typing import Any

import httpx

from agent_bridge.errors import IdentityResolutionError, InvalidPayloadError

TOKEN_HEADER = "x-github-token"
SENSITIVE_HEADERS = frozenset({"x-github-token", "authorization"})


def redact_headers(headers: dict[str, str], *, redact: bool = True) -> dict[str, str]:
    """Redact caller tokens from headers before they are logged."""
    if not redact:
        return headers
    result = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            # Keep a short prefix so tokens stay distinguishable
            if len(value) > 12:
                result[key] = value[:8] + "***"
            else:
                result[key] = "***"
        else:
            result[key] = value
    return result


def parse_payload(raw_body: bytes) -> dict[str, Any]:
    """Decode an inbound agent request body."""
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidPayloadError(f"Request body is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise InvalidPayloadError("Request body must be a JSON object")
    return payload


def get_user_message(payload: dict[str, Any]) -> str:
    """Return the content of the latest message in an agent request payload."""
    messages = payload.get("messages")
    if not isinstance(messages, list) or not messages:
        raise InvalidPayloadError("Request payload contains no messages")
    last = messages[-1]
    content = last.get("content") if isinstance(last, dict) else None
    if not isinstance(content, str):
        raise InvalidPayloadError("Latest message has no text content")
    return content


class GitHubIdentityResolver:
    """Resolves the caller's GitHub login from their token.

    Instances are awaited lazily by the bridge, after the ack is sent.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        token: str,
        api_url: str = "https://api.github.com",
    ) -> None:
        self._client = client
        self._token = token
        self._api_url = api_url.rstrip("/")

    async def __call__(self) -> str:
        try:
            response = await self._client.get(
                f"{self._api_url}/user",
                headers={
                    "Authorization": f"Bearer {self._token}",
                    "Accept": "application/vnd.github+json",
                },
            )
        except httpx.HTTPError as e:
            raise IdentityResolutionError(f"GitHub user lookup failed: {e}") from e

        if not response.is_success:
            raise IdentityResolutionError(
                f"GitHub user lookup failed: {response.status_code}",
                status_code=response.status_code,
            )
        try:
            login = response.json().get("login")
        except (json.JSONDecodeError, AttributeError) as e:
            raise IdentityResolutionError("GitHub user lookup returned an invalid body") from e
        if not login:
            raise IdentityResolutionError("GitHub user lookup returned no login")
        return str(login)
