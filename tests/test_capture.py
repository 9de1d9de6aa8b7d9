"""Tests for capture snapshots: bounds, atomic save, validated load."""

import json

import pytest

from agent_stream.app.agents import Agent
from agent_stream.io.capture import (
    MAX_CAPTURE_EVENTS,
    MAX_CAPTURE_OUTPUT_CHARS,
    MAX_CAPTURE_PAYLOAD_CHARS,
    MAX_CAPTURE_STREAM_ITEMS,
    TRUNCATION_SUFFIX,
    build_capture_snapshot,
    captured_agents,
    load_capture,
    save_capture,
    truncate_text,
)


def _event(payload="{}", direction="in", protocol="codex"):
    return {
        "direction": direction,
        "payload": payload,
        "protocol": protocol,
        "timestamp": 1,
        "url": "ws://127.0.0.1:4500",
    }


def _item(n):
    return {"id": f"i{n}", "type": "message", "status": "complete", "timestamp": n, "data": {"text": str(n)}}


def test_truncate_text():
    assert truncate_text("abc", 3) == "abc"
    assert truncate_text("abcd", 3) == f"abc{TRUNCATION_SUFFIX}"


def test_empty_capture_is_none():
    empty = Agent(id="a", url="ws://x", protocol="claude")
    assert build_capture_snapshot([empty], []) is None


def test_snapshot_keeps_agents_with_content_only():
    busy = Agent(id="busy", url="ws://x", protocol="claude", output="hello", session_id="s1")
    idle = Agent(id="idle", url="ws://x", protocol="claude")
    snapshot = build_capture_snapshot([busy, idle], [_event()], now=42, capture_id="cap-1")
    assert snapshot["id"] == "cap-1"
    assert snapshot["createdAt"] == 42
    assert [a["id"] for a in snapshot["agents"]] == ["busy"]
    assert snapshot["agents"][0]["sessionId"] == "s1"


def test_snapshot_bounds():
    agent = Agent(
        id="big",
        url="ws://x",
        protocol="codex",
        output="x" * (MAX_CAPTURE_OUTPUT_CHARS + 10),
        stream_items=[_item(n) for n in range(MAX_CAPTURE_STREAM_ITEMS + 5)],
    )
    events = [_event(payload=str(n)) for n in range(MAX_CAPTURE_EVENTS + 7)]
    events.append(_event(payload="p" * (MAX_CAPTURE_PAYLOAD_CHARS + 1)))

    snapshot = build_capture_snapshot([agent], events, now=1)

    data = snapshot["agents"][0]
    assert data["output"].endswith(TRUNCATION_SUFFIX)
    assert len(data["streamItems"]) == MAX_CAPTURE_STREAM_ITEMS
    assert data["streamItems"][0]["id"] == "i5"
    assert len(snapshot["events"]) == MAX_CAPTURE_EVENTS
    assert snapshot["events"][-1]["payload"].endswith(TRUNCATION_SUFFIX)
    # oldest events are the ones dropped
    assert snapshot["events"][0]["payload"] == "8"


def test_snapshot_does_not_alias_item_data():
    agent = Agent(id="a", url="ws://x", protocol="claude", stream_items=[_item(1)])
    snapshot = build_capture_snapshot([agent], [], now=1)
    snapshot["agents"][0]["streamItems"][0]["data"]["text"] = "changed"
    assert agent.stream_items[0]["data"]["text"] == "1"


def test_save_and_load(tmp_path):
    agent = Agent(id="a", url="ws://x", protocol="codex", output="hi", thread_id="t1", thread_name="Work")
    snapshot = build_capture_snapshot([agent], [_event('{"method":"x"}')], now=5, capture_id="cap")
    path = save_capture(snapshot, tmp_path / "captures" / "cap.json")

    assert list(path.parent.iterdir()) == [path]
    loaded = load_capture(path)
    assert loaded == snapshot
    (restored,) = captured_agents(loaded)
    assert restored.thread_id == "t1"
    assert restored.thread_name == "Work"
    assert restored.output == "hi"


@pytest.mark.parametrize(
    "data, message",
    [
        ([], "capture must be a JSON object"),
        ({"id": 1, "createdAt": 1, "events": [], "agents": []}, "capture.id"),
        ({"id": "c", "createdAt": True, "events": [], "agents": []}, "capture.createdAt"),
        ({"id": "c", "createdAt": 1, "events": {}, "agents": []}, "capture.events"),
        ({"id": "c", "createdAt": 1, "events": [{"direction": "sideways"}], "agents": []}, "events[0].direction"),
        (
            {"id": "c", "createdAt": 1, "events": [{"direction": "in", "protocol": "codex", "payload": 3}], "agents": []},
            "events[0].payload",
        ),
        ({"id": "c", "createdAt": 1, "events": [], "agents": [{"url": "x"}]}, "agents[0]"),
    ],
)
def test_load_rejects_malformed_capture(tmp_path, data, message):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    with pytest.raises(ValueError, match=message.replace("[", r"\[").replace("]", r"\]")):
        load_capture(path)


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_capture(tmp_path / "nope.json")
