"""Server-sent events framing.

Encoding is used by the broadcast hub; the incremental parser is used by the
relay adapter to read an upstream event stream that arrives in arbitrary
network chunks.
"""

from __future__ import annotations

import codecs
import json
from dataclasses import dataclass
from typing import Any

KEEPALIVE_FRAME = ": keepalive\n\n"


def format_event(event: str, payload: Any) -> str:
    """Serialize *payload* as one named SSE event."""
    data = json.dumps(payload, separators=(",", ":"))
    return f"event: {event}\ndata: {data}\n\n"


@dataclass(frozen=True)
class SseEvent:
    event: str
    data: str

    def json(self) -> Any:
        return json.loads(self.data)


class SseParser:
    """Incremental SSE parser with a reassembly buffer.

    Feed it raw bytes as they arrive; complete events (terminated by a blank
    line) are returned, the incomplete tail stays buffered.  Multi-byte UTF-8
    sequences split across chunks are handled by an incremental decoder.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def reset(self) -> None:
        self._decoder.reset()
        self._buffer = ""

    def feed(self, chunk: bytes | str) -> list[SseEvent]:
        text = chunk if isinstance(chunk, str) else self._decoder.decode(chunk)
        self._buffer = (self._buffer + text).replace("\r\n", "\n")

        *blocks, self._buffer = self._buffer.split("\n\n")
        events: list[SseEvent] = []
        for block in blocks:
            event = self._parse_block(block)
            if event is not None:
                events.append(event)
        return events

    @staticmethod
    def _parse_block(block: str) -> SseEvent | None:
        if not block.strip():
            return None
        event_type = "message"
        data_lines: list[str] = []
        for line in block.split("\n"):
            if not line or line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if name == "event":
                event_type = value.strip() or "message"
            elif name == "data":
                data_lines.append(value)
        if not data_lines:
            return None
        return SseEvent(event=event_type, data="\n".join(data_lines))
