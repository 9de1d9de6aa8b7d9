"""Tests for Agent records and the registry."""

import logging

from agent_stream.app.agents import DEBUG_EVENT_LIMIT, PENDING_OUTPUT_EVENT_MAX, Agent, AgentRegistry
from agent_stream.pipeline.stream_items import create_action


def _item(n):
    return {"id": f"i{n}", "type": "message", "status": "complete", "timestamp": n, "data": {}}


def test_create_uses_id_factory(registry):
    first = registry.create("ws://x", "claude")
    second = registry.create("ws://x", "codex", id="custom", thread_id="t1")
    assert [a.id for a in registry] == ["agent-1", "custom"]
    assert first.status == "connecting"
    assert second.thread_id == "t1"
    assert "custom" in registry
    assert len(registry) == 2


def test_disconnected_placeholder_is_dropped(registry):
    agent = registry.create("ws://x", "codex")
    registry.set_status(agent.id, "disconnected")
    assert agent.id not in registry


def test_disconnected_agent_with_identity_is_kept(registry):
    agent = registry.create("ws://x", "claude", session_id="s1")
    registry.set_status(agent.id, "disconnected")
    assert registry.get(agent.id).status == "disconnected"


def test_stream_items_respect_limit(clock):
    registry = AgentRegistry(stream_item_limit=3, clock=clock)
    agent = registry.create("ws://x", "codex")
    registry.apply_stream_actions(agent.id, [create_action(_item(n)) for n in range(5)])
    assert [i["id"] for i in agent.stream_items] == ["i2", "i3", "i4"]


def test_dict_round_trip():
    agent = Agent(
        id="a",
        url="ws://x",
        protocol="codex",
        status="connected",
        output="out",
        stream_items=[_item(1)],
        thread_id="t",
        thread_status="idle",
    )
    data = agent.to_dict()
    assert "sessionId" not in data
    assert data["threadStatus"] == "idle"
    assert Agent.from_dict(data) == agent


def test_from_dict_defaults():
    agent = Agent.from_dict({"id": "x", "protocol": "other", "output": 5})
    assert agent.protocol == "claude"
    assert agent.status == "disconnected"
    assert agent.output == ""


def test_pending_output_events_are_capped(registry):
    for n in range(PENDING_OUTPUT_EVENT_MAX + 3):
        registry.queue_output_event("later", {"n": n})
    events = registry.take_output_events("later")
    assert len(events) == PENDING_OUTPUT_EVENT_MAX
    assert events[0] == {"n": 3}
    assert registry.take_output_events("later") == []


def test_debug_events(registry, caplog):
    with caplog.at_level(logging.DEBUG, logger="agent_stream.app.agents"):
        registry.push_debug_event("first")
        registry.push_debug_event("second")
    assert list(registry.debug_events) == ["22:13:20.000 second", "22:13:20.000 first"]
    assert "[route] first" in caplog.text

    for n in range(DEBUG_EVENT_LIMIT + 10):
        registry.push_debug_event(str(n))
    assert len(registry.debug_events) == DEBUG_EVENT_LIMIT
