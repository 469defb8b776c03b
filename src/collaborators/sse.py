"""
Server-sent event decoding.

Collaborator endpoints answer with `text/event-stream` bodies:

    : keepalive
    event: message
    data: {"type": "progress", "percent": 30, "message": "Preparing timeline..."}

Events are separated by a blank line; multiple `data:` lines are joined
with newlines; lines starting with `:` are comments.
"""

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator, Optional


@dataclass
class SseEvent:
    """One dispatched server-sent event."""

    event: str
    data: str


@dataclass
class SseDecoder:
    """Incremental line-based SSE decoder."""

    _event_name: str = "message"
    _data_lines: list[str] = field(default_factory=list)

    def feed_line(self, line: str) -> Optional[SseEvent]:
        """Consume one line (without its newline). Returns an event on dispatch."""
        if line.endswith("\r"):
            line = line[:-1]

        if line == "":
            return self.flush()
        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event_name = value.strip() or "message"
        elif name == "data":
            self._data_lines.append(value)
        # id/retry carry nothing the pipeline uses
        return None

    def flush(self) -> Optional[SseEvent]:
        """Dispatch whatever has been buffered."""
        if not self._data_lines and self._event_name == "message":
            return None
        event = SseEvent(event=self._event_name, data="\n".join(self._data_lines))
        self._event_name = "message"
        self._data_lines = []
        return event


async def iter_sse(lines: AsyncIterable[str]) -> AsyncIterator[SseEvent]:
    """Decode an async stream of lines into SSE events."""
    decoder = SseDecoder()
    async for raw in lines:
        # aiter_lines may hand over chunks containing several lines
        for line in raw.split("\n") if "\n" in raw else [raw]:
            event = decoder.feed_line(line)
            if event is not None:
                yield event
    tail = decoder.flush()
    if tail is not None:
        yield tail


def decode_payload(data: str) -> Optional[dict[str, Any]]:
    """Parse an event's JSON data. Invalid or non-object payloads are skipped."""
    if not data.strip():
        return None
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None
