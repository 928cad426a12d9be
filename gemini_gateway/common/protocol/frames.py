"""
Gemini SSE Frame Reassembly

Gemini streams (``alt=sse``) carry one JSON document per record::

    record     := "data: " payload terminator
    payload    := any characters except "\\r" and "\\n"
    terminator := "\\n\\n" | "\\r\\r" | "\\r\\n\\r\\n"

The network may split a record anywhere, including inside the payload, so
text is accumulated in a buffer and complete records are taken off its head.
"""

from __future__ import annotations

import codecs
import logging
from contextlib import aclosing
from typing import AsyncGenerator, AsyncIterator, List, Optional

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
# Longest first so "\r\n\r\n" is not mistaken for a shorter terminator
TERMINATORS = ("\r\n\r\n", "\n\n", "\r\r")


class FrameReassembler:
    """
    Incremental decoder turning text chunks into frame payloads.

    One instance serves exactly one upstream stream.
    """

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Text received but not yet emitted as a payload"""
        return self._buffer

    def feed(self, chunk: str) -> List[str]:
        """
        Append a chunk and return every payload completed by it, in order.
        """
        if chunk:
            self._buffer += chunk

        payloads: List[str] = []
        while True:
            payload = self._take_record()
            if payload is None:
                break
            payloads.append(payload)
        return payloads

    def flush(self) -> List[str]:
        """
        End of stream: hand over any unterminated remainder unchanged.

        The remainder is not a valid record; it is passed downstream so the
        translator can classify it.
        """
        if not self._buffer:
            return []
        remainder = self._buffer
        self._buffer = ""
        logger.error("Invalid data at end of upstream stream: %r", remainder[:1000])
        return [remainder]

    def _take_record(self) -> Optional[str]:
        buffer = self._buffer
        if not buffer.startswith(DATA_PREFIX):
            return None

        end = _find_line_break(buffer, len(DATA_PREFIX))
        if end < 0:
            return None

        for terminator in TERMINATORS:
            if buffer.startswith(terminator, end):
                self._buffer = buffer[end + len(terminator):]
                return buffer[len(DATA_PREFIX):end]
        return None


def _find_line_break(text: str, start: int) -> int:
    lf = text.find("\n", start)
    cr = text.find("\r", start)
    if lf < 0:
        return cr
    if cr < 0:
        return lf
    return min(lf, cr)


async def iter_frames(chunks: AsyncGenerator[bytes, None]) -> AsyncIterator[str]:
    """
    Decode an upstream byte stream into frame payloads.

    UTF-8 sequences split across chunks are decoded once complete. The source
    generator is closed when iteration stops, early or not.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    reassembler = FrameReassembler()

    async with aclosing(chunks) as source:
        async for chunk in source:
            if not chunk:
                continue
            for payload in reassembler.feed(decoder.decode(chunk)):
                yield payload

    for payload in reassembler.feed(decoder.decode(b"", final=True)):
        yield payload
    for payload in reassembler.flush():
        yield payload
