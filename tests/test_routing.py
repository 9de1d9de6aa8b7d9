"""Tests for codex hub routing primitives."""

from agent_stream.app.agents import Agent
from agent_stream.app.routing import (
    CodexRoute,
    PendingContext,
    apply_codex_turn_routing,
    ensure_codex_thread_route,
    first_open_turn_agent,
    is_reusable_codex_placeholder,
    pending_thread_start_agent,
    resolve_codex_notification_agent,
)


# ─── ensure_codex_thread_route ───────────────────────────────────────────────


def test_ensure_route_creates_once():
    threads, agents = {}, set()
    ids = iter(["a1", "a2"])
    first = ensure_codex_thread_route(threads, agents, "t1", lambda: next(ids))
    second = ensure_codex_thread_route(threads, agents, "t1", lambda: next(ids))
    assert (first.agent_id, first.created) == ("a1", True)
    assert (second.agent_id, second.created) == ("a1", False)
    assert threads == {"t1": "a1"}
    assert agents == {"a1"}


# ─── resolve_codex_notification_agent ────────────────────────────────────────


def test_thread_id_wins_over_turn_id():
    route = resolve_codex_notification_agent(
        {"t1": "thread-agent"}, {"u1": "turn-agent"}, {"threadId": "t1", "turnId": "u1"}
    )
    assert route == CodexRoute(agent_id="thread-agent")


def test_turn_id_used_when_thread_unknown():
    route = resolve_codex_notification_agent({}, {"u1": "turn-agent"}, {"threadId": "t9", "turnId": "u1"})
    assert route.agent_id == "turn-agent"


def test_conversation_alias_resolves_thread():
    route = resolve_codex_notification_agent({"t1": "a"}, {}, {"conversation": {"id": "t1"}})
    assert route.agent_id == "a"


def test_unresolvable_route_is_empty():
    assert resolve_codex_notification_agent({}, {}, {"threadId": "t1"}) == CodexRoute()
    assert resolve_codex_notification_agent({"t1": "a"}, {}, None) == CodexRoute()


# ─── pending_thread_start_agent ──────────────────────────────────────────────


def test_latest_thread_start_preferred():
    pending = [
        PendingContext("thread_start", "old"),
        PendingContext("initialize", "init-agent"),
        PendingContext("thread_start", "new"),
    ]
    assert pending_thread_start_agent(pending) == "new"


def test_initialize_is_fallback():
    pending = [PendingContext("initialize", "init-agent"), PendingContext("loaded_list", "x")]
    assert pending_thread_start_agent(pending) == "init-agent"


def test_no_pending_owner():
    assert pending_thread_start_agent([PendingContext("thread_list")]) is None
    assert pending_thread_start_agent([]) is None


# ─── turn routing ────────────────────────────────────────────────────────────


def test_turn_started_and_completed():
    turns = {}
    apply_codex_turn_routing(turns, "turn/started", {"turnId": "u1"}, "a")
    assert turns == {"u1": "a"}
    apply_codex_turn_routing(turns, "turn/completed", {"turn": {"id": "u1"}, "status": "failed"}, "a")
    assert turns == {}


def test_turn_routing_ignores_other_methods_and_missing_ids():
    turns = {}
    apply_codex_turn_routing(turns, "item/started", {"turnId": "u1"}, "a")
    apply_codex_turn_routing(turns, "turn/started", {}, "a")
    assert turns == {}


def test_first_open_turn_agent_requires_exactly_one():
    assert first_open_turn_agent({"u1": "a"}) == "a"
    assert first_open_turn_agent({}) is None
    assert first_open_turn_agent({"u1": "a", "u2": "b"}) is None


def test_reusable_placeholder():
    assert is_reusable_codex_placeholder(Agent(id="a", url="ws://h", protocol="codex"))
    assert not is_reusable_codex_placeholder(Agent(id="a", url="ws://h", protocol="codex", thread_id="t"))
    assert not is_reusable_codex_placeholder(Agent(id="a", url="ws://h", protocol="codex", output="x"))
    assert not is_reusable_codex_placeholder(
        Agent(id="a", url="ws://h", protocol="codex", status="disconnected")
    )
    assert not is_reusable_codex_placeholder(None)
