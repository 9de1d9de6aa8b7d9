"""Tests for the claude relay stream adapter."""

from agent_stream.pipeline.claude_adapter import ClaudeAdapterState, adapt_claude_stream_message
from agent_stream.pipeline.stream_items import apply_stream_item_actions


def _feed(messages, state=None, agent_id="agent-1"):
    state = state or ClaudeAdapterState()
    items = []
    for n, msg in enumerate(messages):
        result = adapt_claude_stream_message(msg, state, agent_id=agent_id, now=1000 + n)
        items = apply_stream_item_actions(items, result.actions)
        state = result.state
    return items, state


def _stream(event):
    return {"type": "stream_event", "session_id": "sess-1", "event": event}


# ─── Turn reconciliation ─────────────────────────────────────────────────────


def test_assistant_echo_merges_into_streamed_block():
    items, _ = _feed(
        [
            _stream({"type": "message_start"}),
            _stream({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hello"}}),
            _stream({"type": "message_stop"}),
            {
                "type": "assistant",
                "session_id": "sess-1",
                "message": {"content": [{"type": "text", "text": "Hello"}]},
            },
            {"type": "result", "session_id": "sess-1", "result": "ok"},
        ]
    )
    assert [(i["type"], i["turnId"]) for i in items] == [
        ("message", "claude-turn-1"),
        ("turn_complete", "claude-turn-1"),
    ]
    assert items[0]["status"] == "complete"
    assert items[0]["data"]["text"] == "Hello"


def test_deltas_accumulate_text():
    items, _ = _feed(
        [
            _stream({"type": "message_start"}),
            _stream({"type": "content_block_start", "index": 0, "content_block": {"type": "text"}}),
            _stream({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hel"}}),
            _stream({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "lo"}}),
        ]
    )
    assert len(items) == 1
    assert items[0]["data"]["text"] == "Hello"
    assert items[0]["status"] == "streaming"
    assert items[0]["timestamp"] == 1001


def test_block_types_map_to_item_types():
    items, _ = _feed(
        [
            _stream({"type": "message_start"}),
            _stream({"type": "content_block_start", "index": 0, "content_block": {"type": "thinking"}}),
            _stream({"type": "content_block_start", "index": 1, "content_block": {"type": "tool_use", "name": "Bash"}}),
            _stream({"type": "content_block_start", "index": 2, "content_block": {"type": "mystery"}}),
        ]
    )
    assert [i["type"] for i in items] == ["thinking", "tool_call", "raw_item"]
    assert items[1]["data"]["name"] == "Bash"


def test_partial_json_buffers_separately():
    items, _ = _feed(
        [
            _stream({"type": "message_start"}),
            _stream({"type": "content_block_start", "index": 0, "content_block": {"type": "tool_use"}}),
            _stream({"type": "content_block_delta", "index": 0, "delta": {"type": "input_json_delta", "partial_json": '{"a":'}}),
            _stream({"type": "content_block_delta", "index": 0, "delta": {"type": "input_json_delta", "partial_json": "1}"}}),
            _stream({"type": "content_block_stop", "index": 0}),
        ]
    )
    assert items[0]["data"]["partialJson"] == '{"a":1}'
    assert items[0]["data"]["text"] == ""
    assert items[0]["status"] == "complete"


def test_second_turn_gets_new_ids():
    items, state = _feed(
        [
            _stream({"type": "message_start"}),
            _stream({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "one"}}),
            {"type": "result", "session_id": "sess-1"},
            _stream({"type": "message_start"}),
            _stream({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "two"}}),
        ]
    )
    messages = [i for i in items if i["type"] == "message"]
    assert [m["data"]["text"] for m in messages] == ["one", "two"]
    assert messages[0]["id"] != messages[1]["id"]
    assert state.turn_index == 2


def test_error_result_is_error_item():
    items, state = _feed([{"type": "result", "is_error": True, "result": "boom"}])
    assert items[0]["type"] == "turn_complete"
    assert items[0]["status"] == "error"
    assert state.turn_open is False


# ─── Control requests and misc ───────────────────────────────────────────────


def test_can_use_tool_creates_approval_request():
    items, _ = _feed(
        [
            {
                "type": "control_request",
                "request_id": "req-9",
                "request": {"subtype": "can_use_tool", "tool_name": "Write"},
            }
        ]
    )
    assert items[0]["type"] == "approval_request"
    assert items[0]["data"]["requestId"] == "req-9"
    assert items[0]["data"]["toolName"] == "Write"


def test_init_control_request_is_silent():
    items, _ = _feed([{"type": "control_request", "request": {"subtype": "initialize"}}])
    assert items == []


def test_init_message_is_silent():
    items, _ = _feed([{"type": "system", "subtype": "init", "session_id": "s"}])
    assert items == []


def test_unknown_message_becomes_raw_item():
    items, _ = _feed([{"type": "brand_new_thing", "x": 1}])
    assert items[0]["type"] == "raw_item"
    assert items[0]["data"]["raw"] == {"type": "brand_new_thing", "x": 1}


def test_state_is_not_mutated():
    state = ClaudeAdapterState()
    adapt_claude_stream_message(_stream({"type": "message_start"}), state, now=1)
    assert state.turn_index == 0
    assert state.turn_open is False


def test_items_carry_agent_and_session():
    items, _ = _feed([{"type": "status", "session_id": "sess-1", "content": "working"}])
    assert items[0]["agentId"] == "agent-1"
    assert items[0]["data"]["sessionId"] == "sess-1"
    assert items[0]["data"]["content"] == "working"
