from __future__ import annotations

import codecs
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator

logger = logging.getLogger(__name__)

_DROPPED = object()


class NDJSONDecoder:
    """Incrementally decode newline-delimited JSON from raw byte chunks.

    The trailing partial line of each chunk is carried over until the next
    chunk completes it. Blank and undecodable lines are dropped.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[Any]:
        self._buffer += self._decoder.decode(chunk)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return [record for record in map(_decode_line, lines) if record is not _DROPPED]

    def finish(self) -> list[Any]:
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        record = _decode_line(tail)
        return [] if record is _DROPPED else [record]


def _decode_line(line: str) -> Any:
    text = line.strip()
    if not text:
        return _DROPPED
    try:
        return json.loads(text)
    except ValueError:
        logger.debug("Dropping malformed upstream line: %s", text[:200])
        return _DROPPED


async def iter_records(chunks: AsyncIterable[bytes]) -> AsyncIterator[Any]:
    """Yield decoded records from an upstream NDJSON body as it arrives."""

    decoder = NDJSONDecoder()
    async for chunk in chunks:
        for record in decoder.feed(chunk):
            yield record
    for record in decoder.finish():
        yield record


def extract_fragment(record: Any) -> str:
    """Return ``record["message"]["content"]`` or an empty fragment."""

    if not isinstance(record, dict):
        return ""
    message = record.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    return content if isinstance(content, str) else ""
