"""Server-sent event framing for the citation stream.

Each event is one ``data: <payload>`` line followed by a blank line.  The
payload is JSON except for the terminal sentinel ``[DONE]``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

DATA_PREFIX = "data: "
DONE = "[DONE]"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_event(payload: dict[str, Any]) -> str:
    return f"{DATA_PREFIX}{json.dumps(payload)}\n\n"


def encode_done() -> str:
    return f"{DATA_PREFIX}{DONE}\n\n"


@dataclass
class StreamEvent:
    """One decoded event.  ``kind`` is sources / content / error / done."""

    kind: str
    data: Any = None


def classify(payload: dict[str, Any]) -> StreamEvent | None:
    """Map a JSON payload to an event, first recognised key wins."""
    if "sources" in payload:
        return StreamEvent("sources", payload["sources"])
    if "content" in payload:
        return StreamEvent("content", payload["content"])
    if "error" in payload:
        return StreamEvent("error", payload["error"])
    return None


class SSEDecoder:
    """Incremental decoder — feed raw text chunks, get complete events back.

    A trailing partial line is kept until the next chunk completes it.
    Lines that are not ``data:`` lines or that fail to parse are skipped.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: str) -> list[StreamEvent]:
        self._buffer += chunk
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        events: list[StreamEvent] = []
        for line in lines:
            event = self._decode_line(line.rstrip("\r"))
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> list[StreamEvent]:
        """Decode whatever is left once the byte stream has ended."""
        rest, self._buffer = self._buffer, ""
        event = self._decode_line(rest.rstrip("\r"))
        return [event] if event is not None else []

    @staticmethod
    def _decode_line(line: str) -> StreamEvent | None:
        if not line.startswith(DATA_PREFIX):
            return None
        data = line[len(DATA_PREFIX):].strip()
        if data == DONE:
            return StreamEvent("done")
        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            return None
        if not isinstance(payload, dict):
            return None
        return classify(payload)
