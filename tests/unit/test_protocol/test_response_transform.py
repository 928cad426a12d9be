import pytest

from gemini_gateway.common.protocol.base import (
    COMPLETION_ID_LENGTH,
    COMPLETION_ID_PREFIX,
    generate_completion_id,
    map_finish_reason,
    usage_to_openai,
)
from gemini_gateway.common.protocol.response import (
    NO_CANDIDATES_MESSAGE,
    NO_CONTENT_MESSAGE,
    transform_response,
)


def _candidate(index, reason="STOP", parts=None):
    return {
        "index": index,
        "content": {"role": "model", "parts": parts or [{"text": "Hello, "}, {"text": "world!"}]},
        "finishReason": reason,
    }


def test_two_candidates_join_parts_with_separator():
    data = {
        "candidates": [_candidate(0), _candidate(1, "MAX_TOKENS")],
        "usageMetadata": {"promptTokenCount": 3, "candidatesTokenCount": 8, "totalTokenCount": 11},
    }
    result = transform_response(data, "gemini-2.0-flash")

    assert result["object"] == "chat.completion"
    assert result["model"] == "gemini-2.0-flash"
    assert [c["index"] for c in result["choices"]] == [0, 1]
    for choice in result["choices"]:
        assert choice["message"] == {"role": "assistant", "content": "Hello, \n\n|>world!"}
        assert choice["logprobs"] is None
    assert result["choices"][0]["finish_reason"] == "stop"
    assert result["choices"][1]["finish_reason"] == "length"
    assert result["usage"] == {"prompt_tokens": 3, "completion_tokens": 8, "total_tokens": 11}


@pytest.mark.parametrize(
    "reason, expected",
    [
        ("STOP", "stop"),
        ("MAX_TOKENS", "length"),
        ("SAFETY", "content_filter"),
        ("RECITATION", "content_filter"),
        ("WEIRD", "WEIRD"),
        (None, "error"),
        ("", "error"),
    ],
)
def test_map_finish_reason(reason, expected):
    assert map_finish_reason(reason) == expected


def test_finish_reason_passthrough_in_response():
    data = {"candidates": [_candidate(0, "SAFETY"), _candidate(1, "WEIRD")]}
    result = transform_response(data, "m")
    assert [c["finish_reason"] for c in result["choices"]] == ["content_filter", "WEIRD"]


def test_missing_index_defaults_to_zero():
    candidate = _candidate(0)
    del candidate["index"]
    result = transform_response({"candidates": [candidate]}, "m")
    assert result["choices"][0]["index"] == 0


@pytest.mark.parametrize("data", [{}, {"candidates": []}, {"candidates": "nope"}, None, [], "text"])
def test_no_candidates_yields_placeholder(data):
    result = transform_response(data, "m")
    assert len(result["choices"]) == 1
    choice = result["choices"][0]
    assert choice["message"]["content"] == NO_CANDIDATES_MESSAGE
    assert choice["finish_reason"] == "error"
    assert result["usage"] == {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}


def test_blocked_prompt_reports_content_filter():
    result = transform_response({"promptFeedback": {"blockReason": "SAFETY"}}, "m")
    choice = result["choices"][0]
    assert choice["finish_reason"] == "content_filter"
    assert "SAFETY" in choice["message"]["content"]


def test_candidate_without_parts_yields_placeholder():
    data = {"candidates": [{"index": 0, "finishReason": "SAFETY"}, "garbage"]}
    result = transform_response(data, "m")
    first, second = result["choices"]
    assert first["message"]["content"] == NO_CONTENT_MESSAGE
    assert first["finish_reason"] == "content_filter"
    assert second["message"]["content"] == NO_CONTENT_MESSAGE
    assert second["finish_reason"] == "error"


def test_usage_total_defaults_to_sum_and_cached_tokens():
    usage = usage_to_openai(
        {"promptTokenCount": 5, "candidatesTokenCount": 7, "cachedContentTokenCount": 2}
    )
    assert usage == {
        "prompt_tokens": 5,
        "completion_tokens": 7,
        "total_tokens": 12,
        "prompt_tokens_details": {"cached_tokens": 2},
    }


def test_completion_id_format():
    completion_id = generate_completion_id()
    suffix = completion_id[len(COMPLETION_ID_PREFIX):]
    assert completion_id.startswith(COMPLETION_ID_PREFIX)
    assert len(suffix) == COMPLETION_ID_LENGTH
    assert suffix.isalnum()
    assert transform_response({}, "m", completion_id="chatcmpl-fixed")["id"] == "chatcmpl-fixed"
