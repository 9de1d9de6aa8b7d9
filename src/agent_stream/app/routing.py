"""Codex hub routing primitives.

Pure functions over the hub's plain maps (thread id -> agent id, turn id ->
agent id). The runtime layer composes these; nothing here holds state.

// [LAW:single-enforcer] Notification -> agent resolution order is defined here.
"""

from collections.abc import Callable, Iterable, Mapping, MutableMapping, MutableSet
from dataclasses import dataclass

from agent_stream.protocol.codex_rpc import (
    JsonDict,
    thread_id_from_params,
    turn_id_from_params,
)


@dataclass(frozen=True)
class CodexRoute:
    """Routing decision. An empty route means: buffer, do not guess."""

    agent_id: str | None = None
    mapped_thread_id: str | None = None


@dataclass(frozen=True)
class EnsureRouteResult:
    agent_id: str
    created: bool


@dataclass(frozen=True)
class PendingContext:
    """The part of a pending RPC request that routing cares about."""

    type: str
    agent_id: str | None = None


def ensure_codex_thread_route(
    threads: MutableMapping[str, str],
    agents: MutableSet[str],
    thread_id: str,
    create_agent_id: Callable[[], str],
) -> EnsureRouteResult:
    """Existing thread -> agent mapping, or a freshly allocated one."""
    existing = threads.get(thread_id)
    if existing:
        return EnsureRouteResult(existing, False)
    agent_id = create_agent_id()
    threads[thread_id] = agent_id
    agents.add(agent_id)
    return EnsureRouteResult(agent_id, True)


def resolve_codex_notification_agent(
    threads: Mapping[str, str],
    turns: Mapping[str, str],
    params: JsonDict | None,
) -> CodexRoute:
    """Thread id wins over turn id; neither resolving yields an empty route."""
    thread_id = thread_id_from_params(params)
    turn_id = turn_id_from_params(params)
    agent_id = threads.get(thread_id) if thread_id else None
    if not agent_id and turn_id:
        agent_id = turns.get(turn_id)
    return CodexRoute(agent_id=agent_id) if agent_id else CodexRoute()


def pending_thread_start_agent(pending: Iterable[PendingContext]) -> str | None:
    """Agent behind the most recent thread_start request, else the most recent initialize."""
    initialize_owner = None
    for context in reversed(list(pending)):
        if context.type == "thread_start" and context.agent_id:
            return context.agent_id
        if initialize_owner is None and context.type == "initialize" and context.agent_id:
            initialize_owner = context.agent_id
    return initialize_owner


def apply_codex_turn_routing(
    turns: MutableMapping[str, str],
    method: str | None,
    params: JsonDict | None,
    agent_id: str,
) -> None:
    """turn/started records turn -> agent; turn/completed drops it whatever the status."""
    turn_id = turn_id_from_params(params)
    if not turn_id:
        return
    if method == "turn/started":
        turns[turn_id] = agent_id
    elif method == "turn/completed":
        turns.pop(turn_id, None)


def first_open_turn_agent(turns: Mapping[str, str]) -> str | None:
    """The owner of the only open turn; ambiguous with zero or several."""
    if len(turns) != 1:
        return None
    return next(iter(turns.values()))


def is_reusable_codex_placeholder(agent) -> bool:
    """A live agent with no thread and no output can adopt a discovered thread."""
    if agent is None or agent.thread_id or agent.output:
        return False
    return agent.status in ("connecting", "connected")
