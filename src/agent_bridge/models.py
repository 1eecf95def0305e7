"""Data models for bridged agent requests."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class EventKind(StrEnum):
    """Downstream event vocabulary."""

    ACK = "ack"
    TEXT = "text"
    ERRORS = "errors"
    DONE = "done"


class ErrorEntry(BaseModel):
    """A single error reported to the downstream caller."""

    type: str = Field(default="agent", description="Error category")
    message: str = Field(description="Human-readable error message")
    code: str = Field(description="Machine-readable error code")
    identifier: str = Field(description="Stable error identifier")


class AckEvent(BaseModel):
    """Acknowledges the request before any upstream work begins."""

    kind: Literal[EventKind.ACK] = EventKind.ACK

    @property
    def is_terminal(self) -> bool:
        return False


class TextEvent(BaseModel):
    """A chunk of text forwarded to the caller."""

    kind: Literal[EventKind.TEXT] = EventKind.TEXT
    text: str = Field(description="Text content")

    @property
    def is_terminal(self) -> bool:
        return False


class ErrorsEvent(BaseModel):
    """Terminal event on the failure path."""

    kind: Literal[EventKind.ERRORS] = EventKind.ERRORS
    errors: list[ErrorEntry] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return True


class DoneEvent(BaseModel):
    """Terminal event on the success path."""

    kind: Literal[EventKind.DONE] = EventKind.DONE

    @property
    def is_terminal(self) -> bool:
        return True


DownstreamEvent = Annotated[
    AckEvent | TextEvent | ErrorsEvent | DoneEvent,
    Field(discriminator="kind"),
]


class UpstreamMessage(BaseModel):
    """A role-tagged message entry inside an upstream record."""

    model_config = ConfigDict(extra="ignore")

    type: str | None = None
    content: Any = None
    tool_calls: list[Any] | None = None

    @property
    def is_tool_call(self) -> bool:
        return bool(self.tool_calls)


class ReassemblerStats(BaseModel):
    """Counters collected while reassembling an upstream stream."""

    lines_seen: int = 0
    records_decoded: int = 0
    decode_failures: int = 0
    fragments_emitted: int = 0


class BridgeOutcome(BaseModel):
    """Summary of one bridged request, reported after the terminal event."""

    identity: str | None = Field(default=None, description="Resolved caller identity")
    handle: str | None = Field(default=None, description="Upstream conversation handle")
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the request was received",
    )
    fragments: int = Field(default=0, description="Content fragments forwarded")
    used_fallback: bool = Field(default=False, description="Whether fallback text was sent")
    keepalives: int = Field(default=0, description="Synthetic keep-alive notices sent")
    stalled: bool = Field(default=False, description="Whether the stream was judged stalled")
    terminal: EventKind | None = Field(default=None, description="Terminal event written")
    error_code: str | None = Field(default=None, description="Error code on the failure path")
    error_message: str | None = Field(default=None, description="Error message on failure")
    sink_failed: bool = Field(default=False, description="Whether writing downstream failed")
    elapsed_ms: float | None = Field(default=None, description="Total handling time")
    stream_stats: ReassemblerStats | None = Field(
        default=None, description="Reassembler counters for the run"
    )

    @property
    def succeeded(self) -> bool:
        return self.terminal == EventKind.DONE and self.error_code is None
