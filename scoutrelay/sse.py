"""
Server-Sent Events framing, both directions.

Upstream (provider -> relay): UpstreamReframer turns an arbitrarily
chunked byte stream into parsed `data:` payloads. Partial lines are held
back until the next chunk, and multi-byte characters split across chunks
are decoded incrementally, so chunk boundaries never change the output.

Downstream (relay -> client): StreamEvent is the application envelope
(meta | text | done | error), rendered as `data: <json>\\n\\n`.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
STREAM_TERMINATOR = "[DONE]"

META = "meta"
TEXT = "text"
DONE = "done"
ERROR = "error"


# ---------------------------------------------------------------------------
# Downstream envelope
# ---------------------------------------------------------------------------

@dataclass
class StreamEvent:
    """One envelope of the relay's outbound stream."""
    type: str
    payload: dict = field(default_factory=dict)

    @property
    def terminal(self) -> bool:
        return self.type in (DONE, ERROR)

    def to_dict(self) -> dict:
        return {"type": self.type, **self.payload}

    def encode(self) -> str:
        return f"{DATA_PREFIX}{json.dumps(self.to_dict(), ensure_ascii=False)}\n\n"

    @classmethod
    def meta(cls, conversation_id: str) -> "StreamEvent":
        return cls(META, {"conversationId": conversation_id})

    @classmethod
    def text(cls, content: str) -> "StreamEvent":
        return cls(TEXT, {"content": content})

    @classmethod
    def done(cls) -> "StreamEvent":
        return cls(DONE)

    @classmethod
    def error(cls, message: str = "An error occurred") -> "StreamEvent":
        return cls(ERROR, {"message": message})

    @classmethod
    def from_dict(cls, data: dict) -> "StreamEvent":
        data = dict(data)
        return cls(str(data.pop("type", "")), data)


# ---------------------------------------------------------------------------
# Line buffering
# ---------------------------------------------------------------------------

class LineBuffer:
    """
    Rolling buffer that yields complete lines and holds back the last
    (possibly incomplete) fragment until more data arrives.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes | str) -> list[str]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._pending += chunk
        lines = self._pending.split("\n")
        self._pending = lines.pop()
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> list[str]:
        """Return whatever is left once the stream has ended."""
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        tail = tail.rstrip("\r")
        return [tail] if tail else []


def parse_data_line(line: str) -> dict | None:
    """
    Parse one SSE line. Returns the JSON payload for `data: {...}` lines,
    None for anything else (comments, blank lines, the terminator token,
    malformed JSON).
    """
    if not line.startswith(DATA_PREFIX):
        return None
    data_str = line[len(DATA_PREFIX):].strip()
    if not data_str or data_str == STREAM_TERMINATOR:
        return None
    try:
        payload = json.loads(data_str)
    except json.JSONDecodeError:
        logger.debug("Skipping malformed SSE frame: %.80s", data_str)
        return None
    return payload if isinstance(payload, dict) else None


# ---------------------------------------------------------------------------
# Upstream (generate-content) payloads
# ---------------------------------------------------------------------------

@dataclass
class UpstreamDelta:
    """What one upstream frame contributed: a text fragment and/or usage."""
    text: str = ""
    total_tokens: int | None = None


def candidate_text(payload: dict) -> str:
    """candidates[0].content.parts[0].text, or '' if any level is missing."""
    try:
        text = payload["candidates"][0]["content"]["parts"][0].get("text", "")
    except (KeyError, IndexError, TypeError, AttributeError):
        return ""
    return text if isinstance(text, str) else ""


def usage_tokens(payload: dict) -> int | None:
    usage = payload.get("usageMetadata")
    if not isinstance(usage, dict):
        return None
    total = usage.get("totalTokenCount")
    return total if isinstance(total, int) and total > 0 else None


class UpstreamReframer:
    """
    Incremental parser for the provider's event stream.

    feed() accepts raw chunks and returns the deltas found in every
    completed line; close() drains the final unterminated line.
    """

    def __init__(self):
        self._lines = LineBuffer()

    def _parse(self, lines: list[str]) -> list[UpstreamDelta]:
        deltas = []
        for line in lines:
            payload = parse_data_line(line)
            if payload is None:
                continue
            delta = UpstreamDelta(text=candidate_text(payload), total_tokens=usage_tokens(payload))
            if delta.text or delta.total_tokens is not None:
                deltas.append(delta)
        return deltas

    def feed(self, chunk: bytes | str) -> list[UpstreamDelta]:
        return self._parse(self._lines.feed(chunk))

    def close(self) -> list[UpstreamDelta]:
        return self._parse(self._lines.flush())
