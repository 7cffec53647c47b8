"""Decoding of OpenAI-style server-sent event streams.

Each frame is a line that is blank, a ``:`` comment, or ``data: <json>``.
The literal ``data: [DONE]`` ends the stream.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from companion.errors import MalformedFrame

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


@dataclass
class StreamChunk:
    """One decoded frame of a streaming completion."""

    content: str = ""
    finish_reason: str | None = None
    usage: dict[str, Any] | None = None


def _malformed(reason: str, data: str) -> MalformedFrame:
    return MalformedFrame(f"{reason} in stream frame: {data[:80]!r}")


def parse_frame(line: str) -> StreamChunk | None:
    """Decode one line.

    Returns None for lines that carry no frame (blank, comments, non-data
    fields). Raises ``MalformedFrame`` when the payload is not valid JSON or
    does not have the ``{choices: [{delta: {...}}], usage?: {...}}`` shape.
    """
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return None

    data = line[len(DATA_PREFIX):]
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        raise _malformed("Invalid JSON", data) from e
    if not isinstance(payload, dict):
        raise _malformed("Unexpected payload", data)

    usage = payload.get("usage")
    if usage is not None and not isinstance(usage, dict):
        raise _malformed("Unexpected usage", data)
    chunk = StreamChunk(usage=usage or None)

    choices = payload.get("choices")
    if choices is None:
        return chunk
    if not isinstance(choices, list):
        raise _malformed("Unexpected choices", data)
    if not choices:
        return chunk

    choice = choices[0]
    if not isinstance(choice, dict):
        raise _malformed("Unexpected choice", data)
    delta = choice.get("delta")
    if delta is None:
        delta = {}
    if not isinstance(delta, dict):
        raise _malformed("Unexpected delta", data)
    content = delta.get("content")
    if content is not None and not isinstance(content, str):
        raise _malformed("Unexpected content", data)

    chunk.content = content or ""
    chunk.finish_reason = choice.get("finish_reason")
    return chunk


def is_done(line: str) -> bool:
    return line.strip() == DATA_PREFIX + DONE_SENTINEL


async def iter_chunks(lines: AsyncIterator[str]) -> AsyncIterator[StreamChunk]:
    """Turn a stream of text lines into decoded chunks.

    Stops at ``[DONE]`` or when *lines* is exhausted. A malformed frame is
    logged and skipped.
    """
    async for line in lines:
        if is_done(line):
            return
        try:
            chunk = parse_frame(line)
        except MalformedFrame as e:
            logger.warning("Skipping stream frame: %s", e)
            continue
        if chunk is not None:
            yield chunk
