"""
Gemini SSE Stream -> OpenAI Chat Completion Chunk Stream

Per candidate index the client sees exactly:

1. one header chunk (``delta = {"role": "assistant", "content": ""}``),
2. zero or more content chunks (``delta = {"content": ...}``),
3. one terminal chunk (``delta = {}`` with a finish_reason), emitted at the
   end of the stream because Gemini does not reliably mark a candidate as
   complete mid-stream.

followed by a single ``data: [DONE]`` record.
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, AsyncIterator, Dict, List, Optional

from gemini_gateway.common.errors import UpstreamTransportError
from gemini_gateway.common.sse import DONE_MESSAGE, DONE_SENTINEL, encode_sse_json

from .base import (
    ERROR_FINISH_REASON,
    candidate_finish_reason,
    candidate_index,
    candidate_texts,
    generate_completion_id,
    get_candidates,
    map_finish_reason,
    prompt_block_reason,
    usage_to_openai,
)
from .frames import iter_frames

logger = logging.getLogger(__name__)

DEFAULT_STREAM_FINISH_REASON = "stop"


@dataclass
class StreamState:
    """State of one streaming response, owned by a single StreamTranslator."""

    completion_id: str
    model: str
    include_usage: bool = False
    default_finish_reason: str = DEFAULT_STREAM_FINISH_REASON
    # Most recent frame per candidate index; drives the terminal chunks
    last_frames: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    # Latest usageMetadata seen on any frame
    usage_metadata: Optional[Dict[str, Any]] = None
    content_emitted: bool = False
    last_frame_without_candidates: Optional[Dict[str, Any]] = None
    finished: bool = False


def _error_frame() -> Dict[str, Any]:
    return {
        "candidates": [
            {"index": 0, "finishReason": ERROR_FINISH_REASON, "content": {"parts": []}}
        ]
    }


class StreamTranslator:
    """
    Translates Gemini frame payloads into OpenAI SSE chunk records.

    ``process_frame`` and ``finish`` return the SSE records to send, in order.
    """

    def __init__(
        self,
        model: str,
        include_usage: bool = False,
        completion_id: Optional[str] = None,
        default_finish_reason: str = DEFAULT_STREAM_FINISH_REASON,
    ) -> None:
        self.state = StreamState(
            completion_id=completion_id or generate_completion_id(),
            model=model,
            include_usage=include_usage,
            default_finish_reason=default_finish_reason,
        )

    def process_frame(self, payload: str) -> List[str]:
        """Handle one frame payload from the reassembler."""
        state = self.state
        if state.finished:
            return []

        stripped = payload.strip() if payload else ""
        if not stripped or stripped == DONE_SENTINEL:
            return []

        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.error("Error parsing SSE frame: %s: %r", e, payload[:1000])
            return self._handle_malformed_frame()
        if not isinstance(data, dict):
            logger.error("SSE frame is not a JSON object: %r", payload[:1000])
            return self._handle_malformed_frame()

        usage = data.get("usageMetadata")
        if isinstance(usage, dict):
            state.usage_metadata = usage

        if data.get("promptFeedback"):
            logger.warning("Received promptFeedback: %s", json.dumps(data["promptFeedback"]))

        candidates = get_candidates(data)
        if candidates is None:
            logger.debug("SSE frame without candidates: %r", payload[:1000])
            state.last_frame_without_candidates = data
            return []

        candidate = candidates[0]
        if not isinstance(candidate, dict):
            logger.error("SSE frame has an invalid candidate: %r", payload[:1000])
            return self._handle_malformed_frame()

        return self._process_candidate(data, candidate)

    def finish(self, default_finish_reason: Optional[str] = None) -> List[str]:
        """
        Close every candidate and terminate the stream.

        Args:
            default_finish_reason: Overrides the configured reason for
                candidates whose last frame carried none
        """
        state = self.state
        if state.finished:
            return []
        state.finished = True

        default = default_finish_reason or state.default_finish_reason
        usage = usage_to_openai(state.usage_metadata) if state.include_usage else None
        records: List[str] = []

        if not state.last_frames:
            # Nothing usable arrived; still give the client a complete message
            if prompt_block_reason(state.last_frame_without_candidates):
                reason = "content_filter"
            else:
                logger.warning("Stream ended without any candidate data")
                reason = ERROR_FINISH_REASON
            records.append(self._header_chunk(0))
            records.append(self._chunk(0, {}, reason, usage))
        else:
            indices = sorted(state.last_frames)
            for position, index in enumerate(indices):
                candidate = get_candidates(state.last_frames[index])[0]
                reason = map_finish_reason(candidate_finish_reason(candidate), default)
                is_last = position == len(indices) - 1
                records.append(self._chunk(index, {}, reason, usage if is_last else None))

        records.append(DONE_MESSAGE)
        return records

    def fail(self) -> List[str]:
        """Terminate the stream after the upstream connection failed."""
        return self.finish(default_finish_reason=ERROR_FINISH_REASON)

    def _process_candidate(self, data: Dict[str, Any], candidate: Dict[str, Any]) -> List[str]:
        state = self.state
        index = candidate_index(candidate)
        records: List[str] = []

        if index not in state.last_frames:
            records.append(self._header_chunk(index))
        state.last_frames[index] = data

        text = "".join(candidate_texts(candidate) or [])
        if text:
            records.append(self._chunk(index, {"content": text}, None))
            state.content_emitted = True
        return records

    def _handle_malformed_frame(self) -> List[str]:
        if self.state.content_emitted:
            logger.warning("Dropping malformed frame after content was streamed")
            return []
        frame = _error_frame()
        return self._process_candidate(frame, frame["candidates"][0])

    def _header_chunk(self, index: int) -> str:
        return self._chunk(index, {"role": "assistant", "content": ""}, None)

    def _chunk(
        self,
        index: int,
        delta: Dict[str, Any],
        finish_reason: Optional[str],
        usage: Optional[Dict[str, Any]] = None,
    ) -> str:
        chunk: Dict[str, Any] = {
            "id": self.state.completion_id,
            "object": "chat.completion.chunk",
            "created": int(time.time()),
            "model": self.state.model,
            "choices": [
                {
                    "index": index,
                    "delta": delta,
                    "logprobs": None,
                    "finish_reason": finish_reason,
                }
            ],
        }
        if usage is not None:
            chunk["usage"] = usage
        return encode_sse_json(chunk)


async def translate_stream(
    upstream: AsyncGenerator[bytes, None],
    translator: StreamTranslator,
) -> AsyncIterator[bytes]:
    """
    Run an upstream Gemini byte stream through reassembly and translation.

    The upstream generator is closed when this generator finishes or is
    closed. An UpstreamTransportError raised by the upstream ends the stream
    with "error" terminal chunks instead of propagating.
    """
    try:
        async with aclosing(iter_frames(upstream)) as frames:
            async for payload in frames:
                for record in translator.process_frame(payload):
                    yield record.encode("utf-8")
    except UpstreamTransportError as e:
        logger.error("Upstream stream interrupted: %s", e.message)
        closing = translator.fail()
    else:
        closing = translator.finish()

    for record in closing:
        yield record.encode("utf-8")


async def error_stream(translator: StreamTranslator) -> AsyncIterator[bytes]:
    """A complete stream for a request that failed before any upstream data."""
    for record in translator.fail():
        yield record.encode("utf-8")
