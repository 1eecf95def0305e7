"""Configuration for the agent bridge."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class BridgeConfig(BaseSettings):
    """Bridge configuration, loaded from env vars or CLI args."""

    model_config = {"env_prefix": "BRIDGE_"}

    host: str = Field(default="127.0.0.1", description="Host to bind the bridge to")
    port: int = Field(default=3000, description="Port to bind the bridge to")

    # Upstream agent server
    upstream_base_url: str = Field(
        default="http://localhost:2024",
        description="Base URL of the LangGraph-style agent server",
    )
    assistant_id: str = Field(default="agent", description="Assistant to run upstream")
    run_timeout: float = Field(
        default=300.0,
        description="Overall timeout in seconds for opening an upstream run",
    )
    connect_timeout: float = Field(default=10.0, description="Upstream connect timeout")

    # Identity
    github_api_url: str = Field(
        default="https://api.github.com",
        description="GitHub API used to resolve the caller's login",
    )

    # Liveness
    max_empty_reads: int = Field(
        default=50,
        description="Consecutive empty reads after which the stream is considered stalled",
    )
    inactivity_window: float = Field(
        default=60.0,
        description="Seconds without data before a keep-alive notice is sent downstream",
    )
    read_poll_interval: float = Field(
        default=1.0,
        description="Seconds to wait for a single upstream read before counting it as empty",
    )

    # Downstream text
    keepalive_text: str = Field(
        default="⏳ Processing your request...\n",
        description="Text sent downstream while the upstream is silent",
    )
    fallback_text: str = Field(
        default=(
            "I received your request but couldn't generate a proper response. "
            "Please try again."
        ),
        description="Text sent when the upstream produced no usable content",
    )
    greeting_template: str = Field(
        default=(
            "Hi {login}! 🤖\n\nStarting your request... This may take up to 3 minutes "
            "depending on the model complexity.\n\n"
        ),
        description="Greeting sent once the upstream run is open (empty to disable)",
    )
    done_after_errors: bool = Field(
        default=False,
        description="Also send a done event after an errors event",
    )

    # Sessions
    max_sessions: int | None = Field(
        default=None,
        description="Cap on remembered user threads (least recently used evicted)",
    )

    # Display
    verbose: bool = Field(default=False, description="Verbose terminal output")
    quiet: bool = Field(default=False, description="Suppress terminal output")

    # Redaction
    redact_tokens: bool = Field(
        default=True,
        description="Redact GitHub tokens from logged headers",
    )
