"""Tests for claude relay connections and session rotation."""

import json

import pytest

from agent_stream.app.claude_runtime import ClaudeRuntime, build_control_response


URL = "ws://localhost:4000"


@pytest.fixture
def runtime(registry, sent):
    rt = ClaudeRuntime(registry, send=sent, pretty_mode=True)
    rt.connect(URL, connection_id="conn-1")
    rt.on_open("conn-1")
    return rt


def _frames(*messages):
    return "".join(json.dumps(m) + "\n" for m in messages)


def _turn(session_id, text):
    return _frames(
        {"type": "stream_event", "session_id": session_id, "event": {"type": "message_start"}},
        {
            "type": "stream_event",
            "session_id": session_id,
            "event": {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}},
        },
        {"type": "result", "session_id": session_id},
    )


def _texts(agent):
    return [i["data"].get("text") for i in agent.stream_items if i["type"] == "message"]


# ─── Connection lifecycle ────────────────────────────────────────────────────


def test_connect_creates_agent_with_connection_id(runtime, registry):
    agent = registry.get("conn-1")
    assert agent.status == "connected"
    assert agent.protocol == "claude"


def test_first_session_binds_to_connection_agent(runtime, registry):
    runtime.on_data("conn-1", _turn("sess-a", "hello"))
    agent = registry.get("conn-1")
    assert agent.session_id == "sess-a"
    assert _texts(agent) == ["hello"]
    assert agent.output.startswith("hello")


def test_chunked_frames_are_reassembled(runtime, registry):
    data = _turn("sess-a", "hello")
    runtime.on_data("conn-1", data[:17])
    runtime.on_data("conn-1", data[17:])
    assert _texts(registry.get("conn-1")) == ["hello"]


# ─── Session rotation ────────────────────────────────────────────────────────


def test_session_rotation_round_trip(runtime, registry):
    runtime.on_data("conn-1", _turn("sess-a", "from a"))
    runtime.on_data("conn-1", _turn("sess-b", "from b"))

    agent_a = registry.get("conn-1")
    agent_b = registry.get(runtime.session_agent_ids["sess-b"])
    assert agent_b.id != agent_a.id
    assert _texts(agent_a) == ["from a"]
    assert _texts(agent_b) == ["from b"]
    assert all(i["agentId"] == agent_a.id for i in agent_a.stream_items)
    assert all(i["agentId"] == agent_b.id for i in agent_b.stream_items)

    registry.set_status(agent_a.id, "disconnected")
    runtime.on_data("conn-1", _turn("sess-a", "a again"))

    reclaimed = registry.get(runtime.session_agent_ids["sess-a"])
    assert reclaimed.id not in (agent_a.id, agent_b.id)
    assert reclaimed.session_id == "sess-a"
    assert _texts(reclaimed) == ["a again"]
    assert _texts(agent_a) == ["from a"]
    assert agent_a.status == "disconnected"
    assert any("claude rotate session=sess-a" in e for e in registry.debug_events)


def test_known_live_session_routes_back_to_its_agent(runtime, registry):
    runtime.on_data("conn-1", _turn("sess-a", "one"))
    runtime.on_data("conn-1", _turn("sess-b", "two"))
    runtime.on_data("conn-1", _turn("sess-a", "three"))
    assert _texts(registry.get("conn-1")) == ["one", "three"]


def test_init_on_used_connection_rotates(runtime, registry):
    runtime.on_data("conn-1", _frames({"type": "assistant", "message": {"content": [{"type": "text", "text": "hi"}]}}))
    runtime.on_data("conn-1", _frames({"type": "system", "subtype": "init"}))
    assert registry.get("conn-1").status == "disconnected"
    current = runtime.connections["conn-1"].current_agent_id
    assert current != "conn-1"
    assert registry.get(current).status == "connected"


def test_init_on_fresh_connection_keeps_agent(runtime):
    runtime.on_data("conn-1", _frames({"type": "system", "subtype": "init"}))
    assert runtime.connections["conn-1"].current_agent_id == "conn-1"


def test_raw_session_line_rotates(runtime, registry):
    runtime.on_data("conn-1", _turn("sess-a", "one"))
    runtime.on_data("conn-1", "relay: session_id=sess-bbbbbbbb started\n")
    current = runtime.connections["conn-1"].current_agent_id
    assert current != "conn-1"
    assert registry.get(current).session_id == "sess-bbbbbbbb"


def test_status_disconnect_marks_owned_agents(runtime, registry):
    runtime.on_data("conn-1", _turn("sess-a", "one"))
    runtime.on_data("conn-1", _frames({"type": "status", "content": "relay disconnected"}))
    assert registry.get("conn-1").status == "disconnected"
    assert "sess-a" not in runtime.session_agent_ids


def test_frames_are_captured(registry):
    frames = []
    rt = ClaudeRuntime(registry, on_frame=frames.append, pretty_mode=True)
    rt.connect(URL, connection_id="conn-9")
    rt.on_data("conn-9", _frames({"type": "status", "content": "ok"}))
    assert len(frames) == 1
    assert frames[0]["direction"] == "in"
    assert frames[0]["connectionId"] == "conn-9"
    assert frames[0]["protocol"] == "claude"


# ─── Close and reconnect ─────────────────────────────────────────────────────


def test_close_then_reconnect(runtime, registry):
    runtime.on_data("conn-1", _turn("sess-a", "one"))
    runtime.on_close("conn-1")
    assert registry.get("conn-1").status == "reconnecting"
    assert runtime.schedule_reconnect("conn-1", 0) == 1000
    assert runtime.schedule_reconnect("conn-1", 3) == 8000

    agent_id = runtime.on_reconnected("conn-1")
    assert agent_id != "conn-1"
    assert registry.get("conn-1").status == "disconnected"
    assert registry.get(agent_id).status == "connected"


def test_reconnect_gives_up_after_max_attempts(runtime, registry):
    runtime.on_data("conn-1", _turn("sess-a", "one"))
    runtime.on_close("conn-1")
    assert runtime.schedule_reconnect("conn-1", 10) is None
    assert "conn-1" not in runtime.connections
    assert registry.get("conn-1").status == "disconnected"


def test_silent_close_disconnects_and_forgets(registry):
    rt = ClaudeRuntime(registry, pretty_mode=True)
    rt.connect(URL, silent=True, connection_id="quiet")
    rt.on_open("quiet")
    rt.on_close("quiet")
    assert "quiet" not in rt.connections
    assert registry.get("quiet").status == "disconnected"
    assert rt.schedule_reconnect("quiet", 0) is None


# ─── Outbound ────────────────────────────────────────────────────────────────


def test_control_response_payload():
    assert build_control_response("r1", True, updated_input={"a": 1}) == {
        "type": "control_response",
        "request_id": "r1",
        "permission": {"allow": True},
        "updated_input": {"a": 1},
    }


def test_send_control_response_for_rotated_agent(runtime, registry, sent):
    runtime.on_data("conn-1", _turn("sess-a", "one"))
    runtime.on_data("conn-1", _turn("sess-b", "two"))
    agent_b = runtime.session_agent_ids["sess-b"]
    assert runtime.send_control_response(agent_b, "req-1", allow=False)
    assert sent.frames == [("conn-1", build_control_response("req-1", False))]
    assert any("approval-send" in e and "allow=false" in e for e in registry.debug_events)


def test_send_control_response_drops_without_connection(runtime, registry, sent):
    assert not runtime.send_control_response("nobody", "req-1", allow=True)
    runtime.on_close("conn-1")
    assert not runtime.send_control_response("conn-1", "req-2", allow=True)
    assert sent.frames == []
    assert any("reason=no-connection" in e for e in registry.debug_events)
    assert any("reason=ws-not-open" in e for e in registry.debug_events)
