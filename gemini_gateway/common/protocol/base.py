"""
Protocol Translation Primitives

Constants and helpers shared by the request, response and stream translators.
Gemini payloads are untrusted: every accessor here tolerates absent or
wrongly-typed fields.
"""

from __future__ import annotations

import secrets
import string
from typing import Any, Dict, List, Optional

# Joins the text parts of one candidate in non-streaming responses
RESPONSE_PART_SEPARATOR = "\n\n|>"

COMPLETION_ID_PREFIX = "chatcmpl-"
COMPLETION_ID_LENGTH = 29
_COMPLETION_ID_ALPHABET = string.ascii_letters + string.digits

# https://ai.google.dev/api/generate-content#FinishReason
FINISH_REASONS: Dict[str, str] = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
}

ERROR_FINISH_REASON = "error"


def generate_completion_id() -> str:
    """Return a chat completion id: "chatcmpl-" plus 29 random alphanumerics."""
    suffix = "".join(
        secrets.choice(_COMPLETION_ID_ALPHABET) for _ in range(COMPLETION_ID_LENGTH)
    )
    return f"{COMPLETION_ID_PREFIX}{suffix}"


def map_finish_reason(reason: Any, default: str = ERROR_FINISH_REASON) -> str:
    """
    Map a Gemini finishReason to an OpenAI finish_reason.

    Known values go through FINISH_REASONS, other strings pass through
    verbatim, and an absent or empty reason yields ``default``.
    """
    if isinstance(reason, str) and reason:
        return FINISH_REASONS.get(reason, reason)
    return default


def usage_to_openai(usage: Any) -> Optional[Dict[str, Any]]:
    """Convert Gemini usageMetadata, or return None when it is unusable."""
    if not isinstance(usage, dict):
        return None
    prompt = usage.get("promptTokenCount")
    completion = usage.get("candidatesTokenCount")
    prompt = prompt if isinstance(prompt, int) else 0
    completion = completion if isinstance(completion, int) else 0
    total = usage.get("totalTokenCount")
    if not isinstance(total, int):
        total = prompt + completion
    out: Dict[str, Any] = {
        "prompt_tokens": prompt,
        "completion_tokens": completion,
        "total_tokens": total,
    }
    cached = usage.get("cachedContentTokenCount")
    if isinstance(cached, int):
        out["prompt_tokens_details"] = {"cached_tokens": cached}
    return out


def zero_usage() -> Dict[str, int]:
    return {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}


def get_candidates(data: Any) -> Optional[List[Any]]:
    """Return the non-empty candidates list of a Gemini envelope, else None."""
    if not isinstance(data, dict):
        return None
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return None
    return candidates


def candidate_index(candidate: Any) -> int:
    # Newer models omit index 0
    if isinstance(candidate, dict):
        index = candidate.get("index")
        if isinstance(index, int) and not isinstance(index, bool) and index >= 0:
            return index
    return 0


def candidate_finish_reason(candidate: Any) -> Optional[str]:
    if isinstance(candidate, dict):
        reason = candidate.get("finishReason")
        if isinstance(reason, str) and reason:
            return reason
    return None


def candidate_texts(candidate: Any) -> Optional[List[str]]:
    """
    Return the text of every text-bearing part of a candidate.

    None means the candidate has no usable ``content.parts`` list; parts
    without a string ``text`` are skipped.
    """
    if not isinstance(candidate, dict):
        return None
    content = candidate.get("content")
    if not isinstance(content, dict):
        return None
    parts = content.get("parts")
    if not isinstance(parts, list):
        return None
    return [
        part["text"]
        for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str)
    ]


def prompt_block_reason(data: Any) -> Optional[str]:
    """Return promptFeedback.blockReason when the prompt itself was blocked."""
    if not isinstance(data, dict):
        return None
    feedback = data.get("promptFeedback")
    if isinstance(feedback, dict):
        reason = feedback.get("blockReason")
        if isinstance(reason, str) and reason:
            return reason
    return None
