"""
OpenAI <-> Gemini Protocol Translation
"""

from gemini_gateway.common.protocol.base import (
    FINISH_REASONS,
    RESPONSE_PART_SEPARATOR,
    generate_completion_id,
    map_finish_reason,
    usage_to_openai,
)
from gemini_gateway.common.protocol.frames import FrameReassembler, iter_frames
from gemini_gateway.common.protocol.request import (
    build_generation_config,
    resolve_model,
    transform_messages,
    transform_request,
)
from gemini_gateway.common.protocol.response import transform_response
from gemini_gateway.common.protocol.stream import (
    StreamState,
    StreamTranslator,
    error_stream,
    translate_stream,
)

__all__ = [
    "FINISH_REASONS",
    "RESPONSE_PART_SEPARATOR",
    "FrameReassembler",
    "StreamState",
    "StreamTranslator",
    "build_generation_config",
    "error_stream",
    "generate_completion_id",
    "iter_frames",
    "map_finish_reason",
    "resolve_model",
    "transform_messages",
    "transform_request",
    "transform_response",
    "translate_stream",
    "usage_to_openai",
]
