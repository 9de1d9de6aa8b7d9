"""Claude relay connections: framing, session rotation and per-agent reducers.

One websocket connection carries one claude process, but that process may
start several sessions over its lifetime. Each session gets its own Agent;
the connection keeps pointing at whichever agent currently owns its output.

// [LAW:one-source-of-truth] session_agent_ids is the only session -> agent map.
// [LAW:single-enforcer] Agent rotation happens in rotate_session_agent / rotate_connection_agent only.

Transport is injected: `send(connection_id, payload)` writes one JSON frame.
The runtime never opens sockets or runs timers; the caller reports socket
events via on_open / on_data / on_close and asks schedule_reconnect() for
the next delay.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from agent_stream.app.agents import AgentRegistry
from agent_stream.app.tabs import short_id
from agent_stream.pipeline.claude_adapter import ClaudeAdapterState, adapt_claude_stream_message
from agent_stream.pipeline.output_projection import ClaudeOutputState, reduce_claude_output
from agent_stream.protocol.codex_rpc import JsonDict
from agent_stream.protocol.parsing import (
    buffer_ndjson_chunk,
    claude_session_id,
    is_claude_init_message,
    looks_like_claude_init_line,
    parse_claude_session_id_from_raw_line,
    unwrap_claude_raw_message,
)
from agent_stream.protocol.reconnect import (
    MAX_RECONNECT_ATTEMPTS,
    MAX_RECONNECT_DELAY_MS,
    can_schedule_reconnect,
    reconnect_delay_ms,
)
import agent_stream.settings


logger = logging.getLogger(__name__)

SendFn = Callable[[str, JsonDict], None]
FrameFn = Callable[[dict], None]


@dataclass
class ClaudeConnection:
    id: str
    url: str
    silent: bool = False
    open: bool = False
    line_buffer: str = ""
    current_agent_id: str = ""
    owned_agents: set[str] = field(default_factory=set)


def build_control_response(
    request_id: str,
    allow: bool,
    input=None,
    updated_input=None,
) -> JsonDict:
    """Reply frame for a can_use_tool control_request."""
    payload: JsonDict = {
        "type": "control_response",
        "request_id": request_id,
        "permission": {"allow": allow},
    }
    if input is not None:
        payload["input"] = input
    if updated_input is not None:
        payload["updated_input"] = updated_input
    return payload


def _status_text(msg: JsonDict) -> str:
    for key in ("content", "text"):
        value = msg.get(key)
        if value is not None:
            return value if isinstance(value, str) else ""
    return ""


class ClaudeRuntime:
    def __init__(
        self,
        registry: AgentRegistry,
        send: SendFn | None = None,
        on_frame: FrameFn | None = None,
        pretty_mode: bool | None = None,
    ) -> None:
        self.registry = registry
        self._send = send
        self._on_frame = on_frame
        self.pretty_mode = (
            pretty_mode if pretty_mode is not None else agent_stream.settings.claude_pretty_mode()
        )
        self.connections: dict[str, ClaudeConnection] = {}
        # agent id -> session id it was created for or last bound to
        self.session_ids: dict[str, str] = {}
        # session id -> agent that currently owns it
        self.session_agent_ids: dict[str, str] = {}
        self.adapter_states: dict[str, ClaudeAdapterState] = {}
        self.output_states: dict[str, ClaudeOutputState] = {}

    # ─── Connection lifecycle ─────────────────────────────────────────

    def connect(self, url: str, silent: bool = False, connection_id: str | None = None) -> str:
        """Register a new connection; its first agent shares the connection id."""
        conn_id = connection_id or self.registry.new_id()
        self.registry.create(url, "claude", id=conn_id)
        self.connections[conn_id] = ClaudeConnection(
            id=conn_id,
            url=url,
            silent=silent,
            current_agent_id=conn_id,
            owned_agents={conn_id},
        )
        logger.debug("claude connect conn=%s url=%s silent=%s", short_id(conn_id), url, silent)
        return conn_id

    def on_open(self, conn_id: str) -> None:
        conn = self.connections.get(conn_id)
        if conn is None:
            return
        conn.open = True
        self.registry.set_status(conn.current_agent_id, "connected")

    def on_close(self, conn_id: str) -> None:
        """Socket closed: drop per-agent state, then disconnect or start reconnecting."""
        conn = self.connections.get(conn_id)
        if conn is None:
            return
        conn.open = False
        conn.line_buffer = ""
        owned = list(conn.owned_agents or {conn_id})
        for agent_id in owned:
            self._clear_agent_state(agent_id)
            session_id = self.session_ids.get(agent_id)
            if session_id and self.session_agent_ids.get(session_id) == agent_id:
                del self.session_agent_ids[session_id]

        if conn.silent:
            del self.connections[conn_id]
            for agent_id in owned:
                self._mark_disconnected(agent_id)
            return

        for agent_id in owned:
            self.registry.set_status(agent_id, "reconnecting")

    def schedule_reconnect(
        self,
        conn_id: str,
        attempt: int,
        max_attempts: int = MAX_RECONNECT_ATTEMPTS,
        max_delay_ms: int = MAX_RECONNECT_DELAY_MS,
    ) -> int | None:
        """Delay before the next attempt, or None after giving up."""
        if conn_id not in self.connections:
            return None
        if not can_schedule_reconnect(attempt, max_attempts):
            self.give_up(conn_id)
            return None
        return reconnect_delay_ms(attempt, max_delay_ms)

    def on_reconnected(self, conn_id: str) -> str | None:
        """A replacement socket opened; output resumes on a fresh agent if needed."""
        conn = self.connections.get(conn_id)
        if conn is None:
            return None
        conn.open = True
        agent_id = self.rotate_connection_agent(conn_id)
        self.registry.set_status(agent_id, "connected")
        return agent_id

    def give_up(self, conn_id: str) -> None:
        conn = self.connections.pop(conn_id, None)
        if conn is None:
            return
        logger.info("claude reconnect exhausted conn=%s", short_id(conn_id))
        for agent_id in conn.owned_agents:
            self.registry.set_status(agent_id, "disconnected")

    def _clear_agent_state(self, agent_id: str) -> None:
        self.adapter_states.pop(agent_id, None)
        self.output_states.pop(agent_id, None)

    def _mark_disconnected(self, agent_id: str) -> None:
        agent = self.registry.get(agent_id)
        if agent is not None:
            agent.status = "disconnected"

    # ─── Agent rotation ───────────────────────────────────────────────

    def _current_agent_id(self, conn_id: str) -> str:
        conn = self.connections.get(conn_id)
        return conn.current_agent_id if conn and conn.current_agent_id else conn_id

    def _own(self, conn_id: str, agent_id: str) -> None:
        conn = self.connections.get(conn_id)
        if conn is not None:
            conn.current_agent_id = agent_id
            conn.owned_agents.add(agent_id)

    def rotate_session_agent(self, conn_id: str, session_id: str) -> str:
        """Agent that should receive output for session_id on this connection."""
        current_id = self._current_agent_id(conn_id)
        canonical_id = self.session_agent_ids.get(session_id)
        if canonical_id:
            canonical = self.registry.get(canonical_id)
            if canonical is not None and canonical.status == "disconnected":
                del self.session_agent_ids[session_id]
            else:
                self._own(conn_id, canonical_id)
                return canonical_id

        current = self.registry.get(current_id)
        current_session = self.session_ids.get(current_id)
        live = current is None or current.status != "disconnected"
        if current_session == session_id and live:
            return current_id
        has_content = current is not None and current.has_content
        if not (current_session or has_content) and live:
            return current_id
        if current is None:
            return current_id

        agent = self.registry.create(current.url, "claude", status=current.status, session_id=session_id)
        self.session_ids[agent.id] = session_id
        self._own(conn_id, agent.id)
        return agent.id

    def rotate_connection_agent(self, conn_id: str) -> str:
        """After an init or reconnect, a used agent is frozen and a fresh one takes over."""
        current_id = self._current_agent_id(conn_id)
        current = self.registry.get(current_id)
        if current is None:
            return current_id
        if not (current.has_content or current.session_id):
            return current_id
        current.status = "disconnected"
        agent = self.registry.create(current.url, "claude", status="connected")
        self._own(conn_id, agent.id)
        return agent.id

    def set_agent_session(self, agent_id: str, session_id: str) -> None:
        agent = self.registry.get(agent_id)
        previous = agent.session_id if agent is not None else None
        if previous and previous != session_id and self.session_agent_ids.get(previous) == agent_id:
            del self.session_agent_ids[previous]
        self.session_agent_ids[session_id] = agent_id
        self.session_ids[agent_id] = session_id
        if agent is not None:
            agent.session_id = session_id

    def route_agent(self, conn_id: str, initial_agent_id: str, session_id: str | None, is_init: bool) -> str:
        if session_id:
            agent_id = self.rotate_session_agent(conn_id, session_id)
            self.set_agent_session(agent_id, session_id)
            self.registry.set_status(agent_id, "connected")
            if agent_id != initial_agent_id:
                self.registry.push_debug_event(
                    f"claude rotate session={short_id(session_id)} "
                    f"from={short_id(initial_agent_id)} to={short_id(agent_id)}"
                )
            return agent_id
        if is_init:
            agent_id = self.rotate_connection_agent(conn_id)
            self.registry.set_status(agent_id, "connected")
            if agent_id != initial_agent_id:
                self.registry.push_debug_event(
                    f"claude rotate init from={short_id(initial_agent_id)} to={short_id(agent_id)}"
                )
            return agent_id
        return initial_agent_id

    # ─── Inbound frames ───────────────────────────────────────────────

    def on_data(self, conn_id: str, raw: str) -> None:
        conn = self.connections.get(conn_id)
        if conn is None:
            logger.warning("claude data for unknown connection %s", conn_id)
            return
        lines, conn.line_buffer = buffer_ndjson_chunk(raw, conn.line_buffer)
        for line in lines:
            if not line.strip():
                continue
            if self._on_frame is not None:
                self._on_frame(
                    {
                        "agentId": conn.current_agent_id,
                        "connectionId": conn_id,
                        "direction": "in",
                        "payload": line,
                        "protocol": "claude",
                        "timestamp": self.registry.clock(),
                        "url": conn.url,
                    }
                )
            try:
                msg = json.loads(line)
            except json.JSONDecodeError:
                self.handle_fallback_line(conn_id, line)
                continue
            if isinstance(msg, dict):
                self.handle_message(conn_id, msg)
            else:
                self.handle_fallback_line(conn_id, line)

    def handle_message(self, conn_id: str, msg: JsonDict) -> str:
        """Route one decoded message; returns the agent it landed on."""
        msg = unwrap_claude_raw_message(msg)
        initial_agent_id = self._current_agent_id(conn_id)
        is_init = is_claude_init_message(msg)
        agent_id = self.route_agent(conn_id, initial_agent_id, claude_session_id(msg), is_init)
        self._apply_stream_message(agent_id, msg)

        if is_init:
            return agent_id
        if msg.get("type") == "status":
            if "disconnected" in _status_text(msg):
                self._handle_status_disconnect(conn_id, agent_id)
            return agent_id

        self._apply_output_message(agent_id, msg)
        return agent_id

    def handle_fallback_line(self, conn_id: str, line: str) -> None:
        """Non-JSON line: still honour session and init markers."""
        before = self._current_agent_id(conn_id)
        session_id = parse_claude_session_id_from_raw_line(line)
        if session_id:
            agent_id = self.rotate_session_agent(conn_id, session_id)
            self.set_agent_session(agent_id, session_id)
            self.registry.set_status(agent_id, "connected")
            if agent_id != before:
                self.registry.push_debug_event(
                    f"claude rotate raw-session={short_id(session_id)} "
                    f"from={short_id(before)} to={short_id(agent_id)}"
                )
            return
        if looks_like_claude_init_line(line):
            agent_id = self.rotate_connection_agent(conn_id)
            self.registry.set_status(agent_id, "connected")
            if agent_id != before:
                self.registry.push_debug_event(
                    f"claude rotate raw-init from={short_id(before)} to={short_id(agent_id)}"
                )
            return
        logger.debug("claude unparsed line conn=%s len=%d", short_id(conn_id), len(line))

    def _handle_status_disconnect(self, conn_id: str, agent_id: str) -> None:
        self.registry.push_debug_event(
            f"claude status-disconnect agent={short_id(agent_id)} conn={short_id(conn_id)}"
        )
        conn = self.connections.get(conn_id)
        owned = list(conn.owned_agents) if conn and conn.owned_agents else [agent_id]
        for owned_id in owned:
            session_id = self.session_ids.get(owned_id)
            if session_id and self.session_agent_ids.get(session_id) == owned_id:
                del self.session_agent_ids[session_id]
            self.registry.set_status(owned_id, "disconnected")

    def _apply_stream_message(self, agent_id: str, msg: JsonDict) -> None:
        state = self.adapter_states.get(agent_id) or ClaudeAdapterState()
        result = adapt_claude_stream_message(msg, state, agent_id=agent_id, now=self.registry.clock())
        self.adapter_states[agent_id] = result.state
        self.registry.apply_stream_actions(agent_id, result.actions)

    def _apply_output_message(self, agent_id: str, msg: JsonDict) -> None:
        agent = self.registry.get(agent_id)
        if agent is None:
            return
        state = self.output_states.get(agent_id) or ClaudeOutputState()
        result = reduce_claude_output(agent.output, state, msg, self.pretty_mode)
        self.output_states[agent_id] = result.state
        agent.output = result.output

    # ─── Outbound ─────────────────────────────────────────────────────

    def resolve_connection_id(self, agent_id: str) -> str | None:
        if agent_id in self.connections:
            return agent_id
        for conn_id, conn in self.connections.items():
            if agent_id in conn.owned_agents:
                return conn_id
        return None

    def send_control_response(
        self,
        agent_id: str,
        request_id: str,
        allow: bool,
        input=None,
        updated_input=None,
    ) -> bool:
        """Answer an approval request; False when there is no open connection."""
        conn_id = self.resolve_connection_id(agent_id)
        if conn_id is None:
            self.registry.push_debug_event(f"claude approval-drop agent={short_id(agent_id)} reason=no-connection")
            return False
        conn = self.connections[conn_id]
        if not conn.open or self._send is None:
            self.registry.push_debug_event(f"claude approval-drop agent={short_id(agent_id)} reason=ws-not-open")
            return False
        self._send(conn_id, build_control_response(request_id, allow, input, updated_input))
        self.registry.push_debug_event(
            f"claude approval-send agent={short_id(agent_id)} request={short_id(request_id)} "
            f"allow={'true' if allow else 'false'}"
        )
        return True
