"""
Gemini generateContent Response -> OpenAI Chat Completion

The transformation never raises: any shape the Gemini API may return (no
candidates, candidates without parts, missing usage) still yields a
structurally valid ``chat.completion`` object.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from .base import (
    ERROR_FINISH_REASON,
    RESPONSE_PART_SEPARATOR,
    candidate_finish_reason,
    candidate_index,
    candidate_texts,
    generate_completion_id,
    get_candidates,
    map_finish_reason,
    prompt_block_reason,
    usage_to_openai,
    zero_usage,
)

logger = logging.getLogger(__name__)

NO_CANDIDATES_MESSAGE = "[No response candidates returned by the upstream API]"
NO_CONTENT_MESSAGE = "[No content returned by the upstream API]"
PROMPT_BLOCKED_MESSAGE = "[Prompt blocked by the upstream API: {reason}]"


def _choice(index: int, content: str, finish_reason: str) -> Dict[str, Any]:
    return {
        "index": index,
        "message": {"role": "assistant", "content": content},
        "logprobs": None,
        "finish_reason": finish_reason,
    }


def transform_candidate(candidate: Any) -> Dict[str, Any]:
    """Convert one Gemini candidate into an OpenAI choice."""
    index = candidate_index(candidate)
    reason = candidate_finish_reason(candidate)
    texts = candidate_texts(candidate)

    if texts:
        return _choice(
            index,
            RESPONSE_PART_SEPARATOR.join(texts),
            map_finish_reason(reason),
        )

    logger.warning(
        "Candidate %d has no text content (finishReason=%s)", index, reason
    )
    return _choice(index, NO_CONTENT_MESSAGE, map_finish_reason(reason))


def _placeholder_choices(data: Any) -> List[Dict[str, Any]]:
    block_reason = prompt_block_reason(data)
    if block_reason:
        logger.warning("Prompt blocked by upstream: blockReason=%s", block_reason)
        return [
            _choice(
                0,
                PROMPT_BLOCKED_MESSAGE.format(reason=block_reason),
                "content_filter",
            )
        ]
    logger.warning(
        "Non-streaming response without a valid 'candidates' array: %r",
        data if not isinstance(data, (dict, list)) else str(data)[:1000],
    )
    return [_choice(0, NO_CANDIDATES_MESSAGE, ERROR_FINISH_REASON)]


def transform_response(
    data: Any,
    model: str,
    completion_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build an OpenAI ``chat.completion`` from a Gemini response body.

    Args:
        data: Parsed Gemini response (any JSON value)
        model: Model name reported to the client
        completion_id: Response id, generated when omitted

    Returns:
        dict: OpenAI chat completion
    """
    candidates = get_candidates(data)
    if candidates is None:
        choices = _placeholder_choices(data)
    else:
        choices = [transform_candidate(candidate) for candidate in candidates]

    usage = usage_to_openai(data.get("usageMetadata") if isinstance(data, dict) else None)
    if usage is None:
        logger.warning("Non-streaming response without 'usageMetadata'")
        usage = zero_usage()

    return {
        "id": completion_id or generate_completion_id(),
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": choices,
        "usage": usage,
    }
