import json

import pytest

from gemini_gateway.common.errors import UpstreamTransportError
from gemini_gateway.common.protocol.stream import (
    StreamTranslator,
    error_stream,
    translate_stream,
)

DONE = "data: [DONE]\n\n"


def _frame(text=None, index=0, reason=None, usage=None):
    candidate = {"index": index, "content": {"role": "model", "parts": []}}
    if text is not None:
        candidate["content"]["parts"].append({"text": text})
    if reason:
        candidate["finishReason"] = reason
    frame = {"candidates": [candidate]}
    if usage:
        frame["usageMetadata"] = usage
    return json.dumps(frame)


def _parse(record):
    assert record.startswith("data: ") and record.endswith("\n\n")
    payload = record[len("data: "):-2]
    return payload if payload == "[DONE]" else json.loads(payload)


def _choices(records):
    return [_parse(r)["choices"][0] for r in records if r != DONE]


USAGE = {"promptTokenCount": 4, "candidatesTokenCount": 6, "totalTokenCount": 10}


def test_single_candidate_stream():
    translator = StreamTranslator(model="gemini-2.0-flash", include_usage=True)

    first = translator.process_frame(_frame("Hel"))
    second = translator.process_frame(_frame("lo", reason="STOP", usage=USAGE))
    closing = translator.finish()

    header, content = _choices(first)
    assert header["delta"] == {"role": "assistant", "content": ""}
    assert header["finish_reason"] is None
    assert content["delta"] == {"content": "Hel"}
    assert _choices(second)[0]["delta"] == {"content": "lo"}

    assert closing[-1] == DONE
    terminal = _parse(closing[0])
    assert terminal["choices"][0]["delta"] == {}
    assert terminal["choices"][0]["finish_reason"] == "stop"
    assert terminal["usage"] == {"prompt_tokens": 4, "completion_tokens": 6, "total_tokens": 10}


def test_chunk_envelope():
    translator = StreamTranslator(model="gemini-2.0-flash", completion_id="chatcmpl-abc")
    records = translator.process_frame(_frame("hi")) + translator.finish()
    for record in records[:-1]:
        chunk = _parse(record)
        assert chunk["id"] == "chatcmpl-abc"
        assert chunk["object"] == "chat.completion.chunk"
        assert chunk["model"] == "gemini-2.0-flash"
        assert isinstance(chunk["created"], int)
        assert chunk["choices"][0]["logprobs"] is None


def test_usage_omitted_unless_requested():
    translator = StreamTranslator(model="m")
    translator.process_frame(_frame("hi", reason="STOP", usage=USAGE))
    terminal = _parse(translator.finish()[0])
    assert "usage" not in terminal


def test_usage_omitted_when_never_observed():
    translator = StreamTranslator(model="m", include_usage=True)
    translator.process_frame(_frame("hi", reason="STOP"))
    terminal = _parse(translator.finish()[0])
    assert "usage" not in terminal


def test_parts_are_concatenated_without_separator():
    translator = StreamTranslator(model="m")
    frame = {"candidates": [{"content": {"parts": [{"text": "a"}, {"text": "b"}]}}]}
    records = translator.process_frame(json.dumps(frame))
    assert _choices(records)[1]["delta"] == {"content": "ab"}


def test_empty_text_emits_no_content_chunk():
    translator = StreamTranslator(model="m")
    assert len(translator.process_frame(_frame(""))) == 1
    assert translator.process_frame(_frame("")) == []


def test_multiple_candidates_close_in_ascending_order():
    translator = StreamTranslator(model="m", include_usage=True)
    records = []
    records += translator.process_frame(_frame("b", index=1))
    records += translator.process_frame(_frame("a", index=0))
    records += translator.process_frame(_frame("b2", index=1, reason="MAX_TOKENS", usage=USAGE))
    records += translator.process_frame(_frame("a2", index=0, reason="STOP"))
    closing = translator.finish()

    terminals = [_parse(r) for r in closing[:-1]]
    assert [t["choices"][0]["index"] for t in terminals] == [0, 1]
    assert [t["choices"][0]["finish_reason"] for t in terminals] == ["stop", "length"]
    assert "usage" not in terminals[0]
    assert "usage" in terminals[1]

    # One header per index, before that index's content
    choices = _choices(records)
    for index in (0, 1):
        own = [c for c in choices if c["index"] == index]
        assert own[0]["delta"] == {"role": "assistant", "content": ""}
        assert all("role" not in c["delta"] for c in own[1:])


def test_missing_finish_reason_uses_default():
    translator = StreamTranslator(model="m")
    translator.process_frame(_frame("hi"))
    assert _parse(translator.finish()[0])["choices"][0]["finish_reason"] == "stop"


def test_configured_default_finish_reason():
    translator = StreamTranslator(model="m", default_finish_reason="length")
    translator.process_frame(_frame("hi"))
    assert _parse(translator.finish()[0])["choices"][0]["finish_reason"] == "length"


def test_unknown_finish_reason_passes_through():
    translator = StreamTranslator(model="m")
    translator.process_frame(_frame("hi", reason="WEIRD"))
    assert _parse(translator.finish()[0])["choices"][0]["finish_reason"] == "WEIRD"


def test_malformed_first_frame_closes_with_error():
    translator = StreamTranslator(model="m")
    records = translator.process_frame("{not json")
    records += translator.finish()

    assert len(records) == 3
    header, terminal = _choices(records)
    assert header["delta"] == {"role": "assistant", "content": ""}
    assert terminal["delta"] == {}
    assert terminal["finish_reason"] == "error"
    assert records[-1] == DONE


@pytest.mark.parametrize("payload", ["[1, 2]", '"text"', '{"candidates": ["bad"]}'])
def test_non_object_first_frame_treated_as_malformed(payload):
    translator = StreamTranslator(model="m")
    records = translator.process_frame(payload) + translator.finish()
    assert _choices(records)[-1]["finish_reason"] == "error"


def test_malformed_frame_after_content_is_dropped():
    translator = StreamTranslator(model="m")
    translator.process_frame(_frame("hello", reason="STOP"))
    assert translator.process_frame("{broken") == []
    assert _parse(translator.finish()[0])["choices"][0]["finish_reason"] == "stop"


@pytest.mark.parametrize("payload", ["", "   ", "[DONE]"])
def test_blank_and_done_payloads_ignored(payload):
    translator = StreamTranslator(model="m")
    assert translator.process_frame(payload) == []
    assert translator.state.last_frames == {}


def test_empty_stream_still_completes():
    translator = StreamTranslator(model="m")
    records = translator.finish()
    header, terminal = _choices(records)
    assert header["index"] == 0
    assert header["delta"] == {"role": "assistant", "content": ""}
    assert terminal["finish_reason"] == "error"
    assert records[-1] == DONE


def test_blocked_prompt_stream_reports_content_filter():
    translator = StreamTranslator(model="m", include_usage=True)
    frame = {"promptFeedback": {"blockReason": "SAFETY"}, "usageMetadata": USAGE}
    assert translator.process_frame(json.dumps(frame)) == []

    records = translator.finish()
    terminal = _parse(records[1])
    assert terminal["choices"][0]["finish_reason"] == "content_filter"
    assert terminal["usage"]["total_tokens"] == 10


def test_fail_closes_open_candidates_with_error():
    translator = StreamTranslator(model="m")
    translator.process_frame(_frame("a", index=0, reason="STOP"))
    translator.process_frame(_frame("b", index=1))
    terminals = _choices(translator.fail())
    assert [t["finish_reason"] for t in terminals] == ["stop", "error"]


def test_finish_is_idempotent():
    translator = StreamTranslator(model="m")
    translator.process_frame(_frame("hi"))
    assert translator.finish()[-1] == DONE
    assert translator.finish() == []
    assert translator.fail() == []
    assert translator.process_frame(_frame("late")) == []


# ============ Pipeline ============


async def _byte_stream(chunks):
    for chunk in chunks:
        yield chunk


async def _collect(stream):
    return [chunk.decode("utf-8") async for chunk in stream]


def _sse(payload):
    return f"data: {payload}\r\n\r\n"


@pytest.mark.asyncio
async def test_translate_stream_end_to_end():
    raw = (
        _sse(_frame("Hello", index=0))
        + _sse(_frame("Hi", index=1))
        + _sse(_frame(", world", index=0, reason="STOP", usage=USAGE))
        + _sse(_frame("!", index=1, reason="STOP", usage=USAGE))
    ).encode("utf-8")
    # Deliberately awkward chunk boundaries
    chunks = [raw[i:i + 7] for i in range(0, len(raw), 7)]

    translator = StreamTranslator(model="m", include_usage=True)
    records = await _collect(translate_stream(_byte_stream(chunks), translator))

    assert records.count(DONE) == 1
    assert records[-1] == DONE

    choices = _choices(records)
    for index in (0, 1):
        own = [c for c in choices if c["index"] == index]
        assert own[0]["delta"] == {"role": "assistant", "content": ""}
        assert own[-1]["delta"] == {}
        assert own[-1]["finish_reason"] == "stop"
        assert sum(1 for c in own if c["finish_reason"] is not None) == 1

    text = "".join(c["delta"].get("content", "") for c in choices if c["index"] == 0)
    assert text == "Hello, world"


@pytest.mark.asyncio
async def test_translate_stream_trailing_garbage_after_content():
    raw = [_sse(_frame("ok", reason="STOP")).encode(), b"data: {partial"]
    translator = StreamTranslator(model="m")
    records = await _collect(translate_stream(_byte_stream(raw), translator))
    assert _choices(records)[-1]["finish_reason"] == "stop"
    assert records[-1] == DONE


@pytest.mark.asyncio
async def test_translate_stream_transport_error_mid_stream():
    async def broken():
        yield _sse(_frame("partial")).encode()
        raise UpstreamTransportError(message="Request error: connection reset")

    translator = StreamTranslator(model="m")
    records = await _collect(translate_stream(broken(), translator))

    choices = _choices(records)
    assert choices[1]["delta"] == {"content": "partial"}
    assert choices[-1]["finish_reason"] == "error"
    assert records[-1] == DONE


@pytest.mark.asyncio
async def test_error_stream():
    records = await _collect(error_stream(StreamTranslator(model="m")))
    header, terminal = _choices(records)
    assert header["delta"]["role"] == "assistant"
    assert terminal["finish_reason"] == "error"
    assert records == records[:2] + [DONE]
