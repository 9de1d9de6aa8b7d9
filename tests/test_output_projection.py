"""Tests for the plain-text output projection."""

from agent_stream.pipeline.codex_output_events import project_codex_output_from_notification
from agent_stream.pipeline.output_projection import (
    ClaudeOutputState,
    CodexOutputState,
    reduce_claude_output,
    reduce_codex_output,
)


def _claude(messages, pretty_mode=True):
    output, state = "", ClaudeOutputState()
    for msg in messages:
        result = reduce_claude_output(output, state, msg, pretty_mode)
        output, state = result.output, result.state
    return output, state


def _codex(events, pretty_mode=True):
    output, state = "", CodexOutputState()
    for event in events:
        result = reduce_codex_output(output, state, event, pretty_mode)
        output, state = result.output, result.state
    return output, state


def _delta(index, text):
    return {"type": "content_block_delta", "index": index, "delta": {"type": "text_delta", "text": text}}


def _cdelta(text, thread_id=None, source="item/agentMessage/delta"):
    event = {"method": "item/agentMessage/delta", "sourceMethod": source, "text": text}
    if thread_id:
        event["threadId"] = thread_id
    return event


COMPLETED = {"method": "item/completed"}


# ─── Claude ──────────────────────────────────────────────────────────────────


def test_claude_streamed_turn_with_echo_is_not_duplicated():
    output, _ = _claude(
        [
            {"type": "message_start"},
            _delta(0, "Hel"),
            _delta(0, "lo"),
            {"type": "message_stop"},
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "Hello"}]}},
            {"type": "result"},
        ]
    )
    assert output == "Hello\n\n"


def test_claude_echo_with_different_text_replaces_turn():
    output, _ = _claude(
        [
            {"type": "message_start"},
            _delta(0, "Helo"),
            {"type": "assistant", "message": {"content": [{"type": "text", "text": "Hello"}]}},
        ]
    )
    assert output == "Hello\n\n"


def test_claude_non_streamed_assistant():
    output, _ = _claude([{"type": "assistant", "message": {"content": [{"type": "text", "text": "Hi"}]}}])
    assert output == "Hi\n\n"


def test_claude_block_change_inserts_boundary():
    output, _ = _claude([_delta(0, "one"), _delta(1, "two")])
    assert output == "one\n\ntwo"


def test_claude_plain_mode_has_no_boundaries():
    output, _ = _claude([_delta(0, "one"), _delta(1, "two"), {"type": "result"}], pretty_mode=False)
    assert output == "onetwo"


def test_claude_result_resets_turn_state():
    _, state = _claude([_delta(0, "x"), {"type": "result"}])
    assert state.streamed_delta is False
    assert state.turn_start_index is None


def test_claude_carriage_returns_normalized():
    output, _ = _claude([_delta(0, "a\r\nb")])
    assert output == "a\nb"


# ─── Codex ───────────────────────────────────────────────────────────────────


def test_codex_duplicate_delta_applied_once():
    output, state = _codex([_cdelta("Hello"), _cdelta("Hello")])
    assert output == "Hello"
    assert state.open_assistant_message is True


def test_codex_completion_adds_boundary():
    output, state = _codex([_cdelta("Hello"), COMPLETED])
    assert output == "Hello\n\n"
    assert state.open_assistant_message is False
    assert state.last_completed_message_text == "Hello"


def test_codex_completed_message_replay_is_suppressed():
    output, state = _codex(
        [_cdelta("Hello"), COMPLETED, _cdelta("Hello\n", source="codex/event/agent_message")]
    )
    assert output == "Hello\n\n"
    assert state.last_completed_message_text is None


def test_codex_delta_after_completion_is_not_treated_as_replay():
    output, _ = _codex([_cdelta("Hello"), COMPLETED, _cdelta("Hello")])
    assert output == "Hello\n\nHello"


def test_codex_completed_without_open_message_is_noop():
    output, _ = _codex([COMPLETED])
    assert output == ""


def test_codex_subagent_and_return_markers():
    output, state = _codex(
        [
            _cdelta("main", "primary-thread"),
            COMPLETED,
            _cdelta("sub", "subagent-thread"),
            COMPLETED,
            _cdelta("back", "primary-thread"),
        ]
    )
    assert output == "main\n\n\n\n---\n**[subagent subagent]**\n\nsub\n\n\n\n---\n\nback"
    assert state.primary_thread_id == "primary-thread"


def test_codex_unknown_event_is_ignored():
    output, _ = _codex([{"method": "turn/started"}])
    assert output == ""


# ─── Notification projection ─────────────────────────────────────────────────


def test_projection_of_deltas():
    projection = project_codex_output_from_notification("item/agentMessage/delta", {"delta": "hi"}, "t1")
    assert projection.events == [
        {"method": "item/agentMessage/delta", "sourceMethod": "item/agentMessage/delta", "text": "hi", "threadId": "t1"}
    ]
    assert projection.missing_text is None


def test_projection_of_raw_message_without_text_reports_shape():
    projection = project_codex_output_from_notification(
        "codex/event/raw_response_item", {"msg": {"type": "reasoning", "encrypted": 1}}
    )
    assert projection.events[0]["text"] == ""
    info = projection.missing_text
    assert info.method == "codex/event/raw_response_item"
    assert info.keys == "msg"
    assert info.msg_type == "object"
    assert info.msg_keys == "type,encrypted"


def test_projection_of_command_lifecycle():
    begin = project_codex_output_from_notification("codex/event/exec_command_begin", {"command": ["git", "status"]})
    output = project_codex_output_from_notification("codex/event/exec_command_output_delta", {"delta": "clean"})
    end = project_codex_output_from_notification(
        "codex/event/exec_command_end", {"status": "completed", "exitCode": 0}
    )
    assert begin.events[0]["text"] == "\n[tool] `$ git status`\n"
    assert output.events[0]["text"] == "clean\n"
    assert end.events[0]["text"] == "[tool] done completed (exit 0)\n"


def test_projection_of_completion_and_unknown():
    assert project_codex_output_from_notification("rawResponseItem/completed", {}).events == [
        {"method": "item/completed"}
    ]
    assert project_codex_output_from_notification("turn/started", {}).events == []
    assert project_codex_output_from_notification(None, None).events == []
