"""Incremental reader for ``text/event-stream`` response bodies."""

from __future__ import annotations

import codecs
import logging
from typing import Iterable, Iterator

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


def iter_sse_payloads(chunks: Iterable[bytes], *, encoding: str = "utf-8") -> Iterator[str]:
    """Yield the payload of every ``data:`` line found in ``chunks``.

    ``chunks`` are raw reads from the response body and may end anywhere,
    including inside a line or inside a multi-byte character. Incomplete
    lines stay buffered until their newline arrives; a final unterminated
    line is flushed once the body ends. Errors raised while reading
    propagate unchanged.
    """

    decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
    buffer = ""
    for chunk in chunks:
        if not chunk:
            continue
        buffer += decoder.decode(chunk)
        lines = buffer.split("\n")
        buffer = lines.pop()
        for line in lines:
            payload = _extract_payload(line)
            if payload:
                yield payload
    buffer += decoder.decode(b"", final=True)
    if buffer:
        payload = _extract_payload(buffer)
        if payload:
            yield payload


def _extract_payload(line: str) -> str | None:
    line = line.rstrip("\r")
    if not line.startswith(DATA_PREFIX):
        if line and not line.startswith(":"):
            logger.debug("sse.line.ignored line=%s", line[:80])
        return None
    return line[len(DATA_PREFIX):].strip() or None


__all__ = ["DATA_PREFIX", "DONE_SENTINEL", "iter_sse_payloads"]
