"""Tests for wire-message parsing primitives."""

import pytest

from agent_stream.protocol.parsing import (
    MAX_NESTED_DEPTH,
    append_pretty_message_boundary,
    buffer_ndjson_chunk,
    claude_block_index,
    claude_completed_text,
    claude_delta_text,
    claude_session_id,
    codex_text_from_params,
    codex_text_from_raw_msg,
    is_claude_init_message,
    looks_like_claude_init_line,
    looks_opaque_token,
    parse_claude_session_id_from_raw_line,
    parse_codex_thread_id_from_raw_line,
    read_nested_codex_text,
    to_claude_stream_event,
    unwrap_claude_raw_message,
)


# ─── NDJSON framing ──────────────────────────────────────────────────────────


def test_ndjson_splits_complete_lines_and_carries_tail():
    lines, carry = buffer_ndjson_chunk('{"a":1}\n{"b":', "")
    assert lines == ['{"a":1}']
    assert carry == '{"b":'
    lines, carry = buffer_ndjson_chunk("2}\n", carry)
    assert lines == ['{"b":2}']
    assert carry == ""


def test_ndjson_emits_parseable_tail_without_newline():
    lines, carry = buffer_ndjson_chunk('{"a":1}', "")
    assert lines == ['{"a":1}']
    assert carry == ""


def test_ndjson_strips_carriage_returns():
    lines, _ = buffer_ndjson_chunk('{"a":1}\r\n', "")
    assert lines == ['{"a":1}']


# ─── Pretty boundaries ───────────────────────────────────────────────────────


@pytest.mark.parametrize("text", ["", "hi", "hi\n", "hi\n\n", "a\n\nb"])
def test_boundary_is_a_fixed_point(text):
    once = append_pretty_message_boundary(text)
    assert append_pretty_message_boundary(once) == once


def test_boundary_adds_one_blank_line():
    assert append_pretty_message_boundary("hi") == "hi\n\n"
    assert append_pretty_message_boundary("hi\n") == "hi\n\n"
    assert append_pretty_message_boundary("") == ""


# ─── Codex text ──────────────────────────────────────────────────────────────


def test_codex_text_prefers_delta():
    assert codex_text_from_params({"delta": "d", "text": "t"}) == "d"


def test_codex_text_reads_nested_values():
    assert codex_text_from_params({"item": {"content": [{"text": "deep"}]}}) == "deep"


def test_codex_text_absent_is_empty():
    assert codex_text_from_params(None) == ""
    assert codex_text_from_params({"other": 3}) == ""


def test_nested_text_is_depth_capped():
    value = "bottom"
    for _ in range(MAX_NESTED_DEPTH + 2):
        value = {"wrap": value}
    assert read_nested_codex_text(value) == ""


def test_nested_text_survives_cycles():
    cyclic = {}
    cyclic["self"] = cyclic
    assert read_nested_codex_text(cyclic) == ""


def test_raw_msg_filters_opaque_tokens():
    blob = "gAAAAA" + "x" * 120
    assert codex_text_from_raw_msg({"text": f"hello {blob} world"}) == "hello world"


def test_raw_msg_decodes_embedded_json():
    assert codex_text_from_raw_msg({"text": '{"content": [{"type": "output_text", "text": "inner"}]}'}) == "inner"


def test_opaque_token_heuristic():
    assert looks_opaque_token("A" * 80)
    assert not looks_opaque_token("A" * 79)
    assert not looks_opaque_token("has spaces " * 10)


# ─── Claude helpers ──────────────────────────────────────────────────────────


def test_unwrap_raw_envelopes():
    msg = {"type": "raw", "data": {"type": "raw", "data": {"type": "assistant"}}}
    assert unwrap_claude_raw_message(msg) == {"type": "assistant"}


def test_session_id_found_nested():
    assert claude_session_id({"type": "raw", "data": {"event": {"session_id": " s-1 "}}}) == "s-1"
    assert claude_session_id({"sessionId": "camel"}) == "camel"
    assert claude_session_id({"type": "assistant"}) is None


@pytest.mark.parametrize(
    "msg,expected",
    [
        ({"type": "system", "subtype": "init"}, True),
        ({"type": "system/init"}, True),
        ({"type": "raw", "data": {"type": "init"}}, True),
        ({"type": "system", "subtype": "status"}, False),
    ],
)
def test_init_detection(msg, expected):
    assert is_claude_init_message(msg) is expected


def test_stream_event_unwrapping():
    event = {"type": "message_start"}
    assert to_claude_stream_event({"type": "stream_event", "event": event}) == event
    assert to_claude_stream_event(event) == event
    assert to_claude_stream_event({"type": "assistant"}) is None


def test_block_index_ignores_bools():
    assert claude_block_index({"index": 2}) == 2
    assert claude_block_index({"index": True, "content_block_index": 1}) == 1
    assert claude_block_index({}) is None


def test_delta_text_skips_input_json():
    assert claude_delta_text({"type": "text_delta", "text": "x"}) == "x"
    assert claude_delta_text({"type": "thinking_delta", "thinking": "hm"}) == "hm"
    assert claude_delta_text({"type": "input_json_delta", "partial_json": "{"}) == ""


def test_completed_text_joins_text_blocks():
    blocks = [{"type": "text", "text": "a"}, {"type": "tool_use"}, {"type": "text", "text": "b"}]
    assert claude_completed_text(blocks) == "a\n\nb"


# ─── Raw-line fallbacks ──────────────────────────────────────────────────────


def test_raw_line_fallbacks():
    assert parse_claude_session_id_from_raw_line("session_id=abcd1234ef") == "abcd1234ef"
    assert parse_claude_session_id_from_raw_line("nothing here") is None
    assert looks_like_claude_init_line("[system/init] ready")
    assert not looks_like_claude_init_line("plain text")
    assert parse_codex_thread_id_from_raw_line("started [thread: 0123abcd-ef]") == "0123abcd-ef"
    assert parse_codex_thread_id_from_raw_line("no thread") is None
