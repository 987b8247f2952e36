"""Claude stream-json codec.

Inbound: raw stdout chunks are buffered into lines and each line is
decoded into a ``ParsedEvent``. Outbound: prompts are encoded as one
``user`` message per line for ``--input-format stream-json``.
"""

from __future__ import annotations

import json
import logging

from xangi.runners.errors import ParseError
from xangi.runners.events import Init, ParsedEvent, Result, TextDelta, Unrecognized

log = logging.getLogger("xangi.stream")


def encode_request(prompt: str, session_id: str | None = None) -> bytes:
    """Encode a prompt as a single stream-json input line."""
    message: dict[str, object] = {
        "type": "user",
        "message": {
            "role": "user",
            "content": [{"type": "text", "text": prompt}],
        },
    }
    if session_id:
        message["session_id"] = session_id
    return (json.dumps(message, ensure_ascii=False) + "\n").encode()


def _load_object(line: str) -> dict:
    try:
        event = json.loads(line)
    except json.JSONDecodeError as e:
        raise ParseError(f"invalid JSON: {e.msg}") from e
    if not isinstance(event, dict):
        raise ParseError(f"expected object, got {type(event).__name__}")
    return event


def _handle_system(event: dict) -> list[ParsedEvent]:
    if event.get("subtype") != "init":
        raise ParseError(f"system subtype {event.get('subtype')!r}")
    session_id = event.get("session_id")
    if not isinstance(session_id, str) or not session_id:
        raise ParseError("init without session_id")
    return [Init(session_id)]


def _handle_assistant(event: dict) -> list[ParsedEvent]:
    message = event.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, list):
        raise ParseError("assistant message without content list")

    deltas: list[ParsedEvent] = []
    for block in content:
        if not isinstance(block, dict):
            continue
        if block.get("type") == "text" and isinstance(block.get("text"), str):
            deltas.append(TextDelta(block["text"]))
        else:
            log.debug(f"Skipping assistant block: {block.get('type')!r}")
    return deltas


def _handle_result(event: dict) -> list[ParsedEvent]:
    result = event.get("result", "")
    session_id = event.get("session_id")
    is_error = event.get("is_error", False)
    if not isinstance(result, str):
        raise ParseError("result is not a string")
    if session_id is not None and not isinstance(session_id, str):
        raise ParseError("session_id is not a string")
    if not isinstance(is_error, bool):
        raise ParseError("is_error is not a boolean")
    return [Result(result, session_id or None, is_error)]


_HANDLERS = {
    "system": _handle_system,
    "assistant": _handle_assistant,
    "result": _handle_result,
}


def decode_line(line: str) -> list[ParsedEvent]:
    """Decode one stdout line. Never raises; bad input is ``Unrecognized``."""
    try:
        event = _load_object(line)
        handler = _HANDLERS.get(event.get("type"))
        if handler is None:
            raise ParseError(f"unknown type {event.get('type')!r}")
        return handler(event)
    except ParseError as e:
        return [Unrecognized(line, str(e))]


class StreamParser:
    """Incremental line splitter for one process instance's stdout."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending(self) -> bytes:
        """Bytes of an unterminated trailing line."""
        return bytes(self._buffer)

    def feed(self, chunk: bytes) -> list[ParsedEvent]:
        self._buffer.extend(chunk)
        events: list[ParsedEvent] = []
        while True:
            end = self._buffer.find(b"\n")
            if end < 0:
                break
            raw = bytes(self._buffer[:end])
            del self._buffer[: end + 1]
            events.extend(self._decode(raw))
        return events

    def flush(self) -> list[ParsedEvent]:
        """Decode whatever is left once the stream has ended."""
        raw = bytes(self._buffer)
        self._buffer.clear()
        return self._decode(raw)

    def _decode(self, raw: bytes) -> list[ParsedEvent]:
        try:
            line = raw.decode().strip()
        except UnicodeDecodeError:
            return [Unrecognized(raw.decode(errors="replace"), "invalid UTF-8")]
        if not line:
            return []
        return decode_line(line)
