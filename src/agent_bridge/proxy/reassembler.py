"""Incremental reassembly of the upstream SSE stream into content fragments."""

from __future__ import annotations

import codecs
import json
import logging
import time
from typing import Any

from pydantic import ValidationError

from agent_bridge.models import ReassemblerStats, UpstreamMessage

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
KEEPALIVE_TOKENS = frozenset({"", "ping"})
ASSISTANT_TYPE = "ai"


def extract_fragments(record: Any) -> list[str]:
    """Extract forwardable assistant text from one decoded upstream record.

    Only ``ai`` messages with non-blank string content and no tool calls
    count; a top-level string ``content`` is accepted for flat records.
    """
    if not isinstance(record, dict):
        return []

    fragments: list[str] = []
    messages = record.get("messages")
    if isinstance(messages, list):
        for entry in messages:
            if not isinstance(entry, dict):
                continue
            try:
                msg = UpstreamMessage.model_validate(entry)
            except ValidationError:
                continue
            if msg.type != ASSISTANT_TYPE or msg.is_tool_call:
                continue
            if isinstance(msg.content, str) and msg.content.strip():
                fragments.append(msg.content)

    content = record.get("content")
    if isinstance(content, str) and content:
        fragments.append(content)

    return fragments


class StreamReassembler:
    """Turns arbitrarily split byte chunks into an ordered fragment sequence.

    Feeding a stream in any number of chunks yields the same fragments as
    feeding it whole: bytes are decoded incrementally and an unterminated
    line stays pending until its newline arrives.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self._stats = ReassemblerStats()

    @property
    def pending(self) -> str:
        return self._pending

    def stats(self) -> ReassemblerStats:
        return self._stats.model_copy()

    def feed(self, raw_chunk: bytes) -> list[str]:
        """Consume one chunk and return the fragments it completes."""
        self._pending += self._decoder.decode(raw_chunk)
        if "\n" not in self._pending:
            return []

        *lines, self._pending = self._pending.split("\n")
        fragments: list[str] = []
        for line in lines:
            fragments.extend(self._process_line(line))
        return fragments

    def flush(self) -> list[str]:
        """Process whatever is left at a clean end of stream.

        The end of the stream terminates the last line.
        """
        self._pending += self._decoder.decode(b"", final=True)
        tail, self._pending = self._pending, ""
        return self._process_line(tail)

    def _process_line(self, line: str) -> list[str]:
        line = line.strip()
        if not line:
            return []
        self._stats.lines_seen += 1

        # Ignore event:, id:, retry: and anything else
        if not line.startswith(DATA_PREFIX):
            return []

        data = line[len(DATA_PREFIX) :].strip()
        if data in KEEPALIVE_TOKENS or not data.startswith("{"):
            return []

        try:
            record = json.loads(data)
        except (ValueError, RecursionError) as e:
            # JSONDecodeError, oversized integers, pathological nesting
            self._stats.decode_failures += 1
            logger.debug("Ignoring undecodable data line (%s): %.200s", e, data)
            return []

        self._stats.records_decoded += 1
        fragments = extract_fragments(record)
        self._stats.fragments_emitted += len(fragments)
        return fragments


class LivenessMonitor:
    """Tracks read activity to detect stalled or merely slow streams."""

    def __init__(self, max_empty_reads: int, inactivity_window: float) -> None:
        self.max_empty_reads = max_empty_reads
        self.inactivity_window = inactivity_window
        self.consecutive_empty_reads = 0
        self.last_activity = time.monotonic()

    def record_read(self, nbytes: int, now: float | None = None) -> None:
        if nbytes:
            self.consecutive_empty_reads = 0
            self.last_activity = time.monotonic() if now is None else now
        else:
            self.consecutive_empty_reads += 1

    @property
    def stalled(self) -> bool:
        return self.consecutive_empty_reads >= self.max_empty_reads

    def keepalive_due(self, now: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        return now - self.last_activity > self.inactivity_window

    def acknowledge_keepalive(self, now: float | None = None) -> None:
        """Restart the inactivity window after a keep-alive was sent."""
        self.last_activity = time.monotonic() if now is None else now
        self.consecutive_empty_reads = 0
