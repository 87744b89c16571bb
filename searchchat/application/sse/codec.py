"""Text framing for stream events.

Each event travels as one ``data: <json>`` line followed by a blank line.
JSON string escaping keeps quotes, backslashes and line breaks inside the
payload, so an event can never split a frame. Lines are broken only on
``\\n``, ``\\r\\n`` or ``\\r``; U+2028, U+2029 and U+0085 are escaped as
well because generic line splitters treat them as line ends.
"""

import json
import re
from typing import AsyncIterator, Optional

from pydantic import TypeAdapter, ValidationError

from searchchat.domain.streaming.events import BaseEvent, EventType, StreamEvent
from searchchat.domain.errors import MalformedEventError

DATA_PREFIX = "data:"

KNOWN_EVENT_TYPES = frozenset(event_type.value for event_type in EventType)

_event_adapter = TypeAdapter(StreamEvent)

_UNICODE_LINE_BREAKS = str.maketrans({
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
    "\x85": "\\u0085",
})

_SSE_LINE_BREAK = re.compile(r"\r\n|\r|\n")


def encode_event(event: BaseEvent) -> str:
    """Serialize an event into a single SSE frame"""
    payload = event.model_dump_json(by_alias=True).translate(_UNICODE_LINE_BREAKS)
    return f"{DATA_PREFIX} {payload}\n\n"


async def aiter_sse_lines(chunks: AsyncIterator[str]) -> AsyncIterator[str]:
    """Split decoded stream text into lines on SSE line breaks only"""
    buffer = ""
    async for chunk in chunks:
        buffer += chunk
        # A trailing \r may be the first half of \r\n
        carry = ""
        if buffer.endswith("\r"):
            buffer, carry = buffer[:-1], "\r"
        *lines, rest = _SSE_LINE_BREAK.split(buffer)
        buffer = rest + carry
        for line in lines:
            yield line

    *lines, rest = _SSE_LINE_BREAK.split(buffer)
    for line in lines:
        yield line
    if rest:
        yield rest


def parse_sse_line(line: str) -> Optional[str]:
    """Return the payload of a ``data:`` line, or None for any other line"""
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):]
    if payload.startswith(" "):
        payload = payload[1:]
    return payload


def decode_event(payload: str) -> Optional[StreamEvent]:
    """Parse one event payload.

    Returns None for events of an unknown type, which consumers must ignore.

    Raises:
        MalformedEventError: If the payload is not a valid event.
    """
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise MalformedEventError(f"invalid JSON: {e.msg}", payload) from e

    if not isinstance(data, dict):
        raise MalformedEventError("event payload is not an object", payload)

    event_type = data.get("type")
    if not isinstance(event_type, str):
        raise MalformedEventError("event payload has no type", payload)
    if event_type not in KNOWN_EVENT_TYPES:
        return None

    try:
        return _event_adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedEventError(f"invalid {event_type} event: {e.error_count()} error(s)", payload) from e
