"""Codex hub runtime: one JSON-RPC connection per server URL, many threads.

A hub multiplexes every thread the server has loaded. Notifications are
routed to agents by thread id, then turn id, then a chain of fallbacks for
servers that omit ids. Turn-scoped notifications that cannot be routed yet
are buffered per turn and replayed once the turn's owner is known.

// [LAW:one-source-of-truth] thread_agent_ids is the global thread -> agent map; hub.threads is per-connection.
// [LAW:single-enforcer] Every outbound frame goes through _send_payload.
// [LAW:dataflow-not-control-flow] Lifecycle handlers and response handlers are dispatch tables.

Transport and time are injected: `send(url, payload)` writes one frame and
the registry clock supplies timestamps, so buffering expiry is testable and
the runtime never runs timers.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from agent_stream.app.agents import AgentRegistry
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
from agent_stream.app.tabs import host_from_url, short_id
from agent_stream.pipeline.codex_adapter import CodexAdapterState, adapt_codex_message
from agent_stream.pipeline.codex_output_events import project_codex_output_from_notification
from agent_stream.pipeline.output_projection import (
    CodexOutputEvent,
    CodexOutputState,
    reduce_codex_output,
)
from agent_stream.protocol.codex_rpc import (
    KNOWN_SERVER_REQUEST_METHODS,
    NON_BUFFERED_TURN_METHODS,
    OUTPUT_NOTIFICATION_METHODS,
    STRUCTURED_NOTIFICATION_METHODS,
    TASK_DONE_METHODS,
    JsonDict,
    as_dict,
    is_codex_item_message,
    loaded_thread_ids_from_result,
    status_from_params,
    thread_id_from_params,
    thread_id_from_result,
    thread_name_from_params,
    thread_preview_from_result,
    turn_id_from_params,
    turn_id_from_result,
    unsubscribe_status_from_result,
)
from agent_stream.protocol.parsing import buffer_ndjson_chunk, parse_codex_thread_id_from_raw_line
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

SUBAGENT_HINT_LIMIT = 32
SUBAGENT_HINT_TTL_MS = 15_000
PENDING_TURN_EVENT_TTL_MS = 30_000
PENDING_TURN_EVENT_MAX_PER_TURN = 32
PENDING_TURN_EVENT_MAX_TOTAL = 256

CLIENT_INFO = {"name": "agent-stream", "version": "0.1.0", "title": "Agent Stream"}
DEFAULT_THREAD_START_PARAMS = {"approvalPolicy": "never", "sandbox": "danger-full-access"}
METHOD_NOT_FOUND = -32_601

VALID_THREAD_STATUSES = frozenset({"notLoaded", "idle", "active", "systemError"})

# High-volume methods whose routing decisions are not worth a debug line.
QUIET_ROUTE_METHODS = frozenset(
    {
        "item/agentMessage/delta",
        "codex/event/agent_message_delta",
        "codex/event/agent_message_content_delta",
        "codex/event/raw_response_item",
        "rawResponseItem/completed",
        "codex/event/agent_message",
        "codex/event/item_completed",
        "codex/event/token_count",
        "account/rateLimits/updated",
        "thread/tokenUsage/updated",
        "item/commandExecution/outputDelta",
        "codex/event/exec_command_output_delta",
        "codex/event/exec_command_begin",
        "codex/event/exec_command_end",
        "item/reasoning/summaryTextDelta",
        "item/reasoning/summaryPartAdded",
        "item/reasoning/textDelta",
        "codex/event/agent_reasoning",
        "codex/event/agent_reasoning_delta",
        "codex/event/reasoning_content_delta",
        "codex/event/agent_reasoning_section_break",
        "item/started",
        "codex/event/item_started",
        "codex/event/collab_waiting_begin",
    }
)


# ─── Hub state ───────────────────────────────────────────────────────────────


@dataclass
class PendingRequest:
    """Context for an outstanding RPC, keyed by request id on the hub."""

    type: str
    agent_id: str | None = None
    thread_id: str | None = None
    spawn_thread: bool = False


@dataclass(frozen=True)
class SubagentHint:
    agent_id: str
    expires_at: int


@dataclass(frozen=True)
class BufferedTurnEvent:
    expires_at: int
    msg: JsonDict


@dataclass
class CodexHub:
    url: str
    rpc_id: int = 0
    initialized: bool = False
    open: bool = False
    line_buffer: str = ""
    first_agent_id: str | None = None
    agents: set[str] = field(default_factory=set)
    threads: dict[str, str] = field(default_factory=dict)
    turns: dict[str, str] = field(default_factory=dict)
    turn_threads: dict[str, str] = field(default_factory=dict)
    # threads started explicitly (thread/start, resume, fork); others are subagents
    primary_threads: set[str] = field(default_factory=set)
    thread_meta_requested: set[str] = field(default_factory=set)
    pending: dict[int, PendingRequest] = field(default_factory=dict)
    # agent id -> first user message, sent once its thread exists
    pending_msgs: dict[str, str] = field(default_factory=dict)
    pending_subagent_parents: list[SubagentHint] = field(default_factory=list)
    pending_turn_events: dict[str, list[BufferedTurnEvent]] = field(default_factory=dict)
    # agents waiting for initialize before their thread/start goes out
    deferred_thread_starts: list[str] = field(default_factory=list)
    reconnect_enabled: bool = True

    def pending_contexts(self) -> list[PendingContext]:
        return [PendingContext(ctx.type, ctx.agent_id) for ctx in self.pending.values()]


@dataclass
class ThreadSummary:
    id: str
    preview: str = ""
    model_provider: str = ""
    created_at: int = 0
    updated_at: int = 0
    cwd: str = ""


@dataclass
class ThreadListResult:
    data: list[ThreadSummary] = field(default_factory=list)
    next_cursor: str | None = None


def _int_or_zero(value: object) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _thread_summary(raw: object) -> ThreadSummary:
    entry = as_dict(raw) or {}
    return ThreadSummary(
        id=str(entry.get("id") or ""),
        preview=str(entry.get("preview") or ""),
        model_provider=str(entry.get("modelProvider") or ""),
        created_at=_int_or_zero(entry.get("createdAt")),
        updated_at=_int_or_zero(entry.get("updatedAt")),
        cwd=str(entry.get("cwd") or ""),
    )


def _with_thread_id(params: JsonDict | None, thread_id: str | None) -> JsonDict | None:
    if not thread_id:
        return params
    return {**(params or {}), "threadId": thread_id}


# ─── Runtime ─────────────────────────────────────────────────────────────────


class CodexHubRuntime:
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
            pretty_mode if pretty_mode is not None else agent_stream.settings.codex_pretty_mode()
        )
        self.hubs: dict[str, CodexHub] = {}
        self.thread_agent_ids: dict[str, str] = {}
        self.adapter_states: dict[str, CodexAdapterState] = {}
        self.output_states: dict[str, CodexOutputState] = {}
        self.thread_list = ThreadListResult()
        # url -> agents of a closed hub awaiting reconnect
        self._reconnecting: dict[str, list[str]] = {}

        self._lifecycle_handlers = {
            "turn/started": self._on_turn_started,
            "turn/completed": self._on_turn_completed,
            "thread/name/updated": self._on_thread_name_updated,
            "thread/started": self._on_primary_thread_seen,
            "codex/event/collab_agent_spawn_begin": self._on_collab_spawn_begin,
            "codex/event/collab_agent_spawn_end": self._on_primary_thread_seen,
            "thread/status/changed": self._on_thread_status_changed,
            "thread/closed": self._on_thread_closed,
        }
        self._response_handlers = {
            "initialize": self._on_initialize_result,
            "thread_start": self._on_thread_start_result,
            "loaded_list": self._on_loaded_list_result,
            "thread_read": self._on_thread_read_result,
            "turn_start": self._on_turn_start_result,
            "thread_resume": self._on_thread_bound_result,
            "thread_fork": self._on_thread_bound_result,
            "thread_list": self._on_thread_list_result,
            "thread_unsubscribe": self._on_thread_unsubscribe_result,
        }

    # ─── Agent helpers ────────────────────────────────────────────────

    def _is_live(self, agent_id: str | None) -> bool:
        agent = self.registry.get(agent_id)
        return agent is not None and agent.status != "disconnected"

    def _clear_agent_runtime_state(self, agent_id: str) -> None:
        self.adapter_states.pop(agent_id, None)
        self.output_states.pop(agent_id, None)
        self.registry.take_output_events(agent_id)

    def _set_agent_thread(self, agent_id: str, thread_id: str) -> None:
        agent = self.registry.get(agent_id)
        previous = agent.thread_id if agent is not None else None
        if previous and previous != thread_id and self.thread_agent_ids.get(previous) == agent_id:
            del self.thread_agent_ids[previous]
        self.thread_agent_ids[thread_id] = agent_id
        if agent is not None:
            agent.thread_id = thread_id

    def _create_discovered_agent(self, hub: CodexHub, agent_id: str, thread_id: str) -> None:
        self.registry.create(hub.url, "codex", status="connected", id=agent_id, thread_id=thread_id)
        self._apply_output_events(agent_id, [])

    # ─── Outbound ─────────────────────────────────────────────────────

    def _send_payload(self, hub: CodexHub, payload: JsonDict, agent_id: str | None = None) -> None:
        if self._on_frame is not None:
            frame = {
                "connectionId": hub.url,
                "direction": "out",
                "payload": json.dumps(payload),
                "protocol": "codex",
                "timestamp": self.registry.clock(),
                "url": hub.url,
            }
            if agent_id:
                frame["agentId"] = agent_id
            self._on_frame(frame)
        if self._send is not None:
            self._send(hub.url, payload)

    def _request(
        self,
        hub: CodexHub,
        method: str,
        params: JsonDict,
        context: PendingRequest,
    ) -> int:
        hub.rpc_id += 1
        hub.pending[hub.rpc_id] = context
        self._send_payload(
            hub,
            {"jsonrpc": "2.0", "method": method, "id": hub.rpc_id, "params": params},
            context.agent_id,
        )
        return hub.rpc_id

    def _send_initialize(self, hub: CodexHub, agent_id: str | None, spawn_thread: bool) -> None:
        self._request(
            hub,
            "initialize",
            {"clientInfo": dict(CLIENT_INFO), "capabilities": {"experimentalApi": True}},
            PendingRequest("initialize", agent_id=agent_id, spawn_thread=spawn_thread),
        )

    def _send_thread_start(self, hub: CodexHub, agent_id: str) -> None:
        self._request(hub, "thread/start", dict(DEFAULT_THREAD_START_PARAMS), PendingRequest("thread_start", agent_id))

    def request_thread_meta(self, hub: CodexHub, agent_id: str, thread_id: str) -> None:
        if thread_id in hub.thread_meta_requested:
            return
        hub.thread_meta_requested.add(thread_id)
        self._request(
            hub,
            "thread/read",
            {"threadId": thread_id, "includeTurns": False},
            PendingRequest("thread_read", agent_id, thread_id),
        )

    def request_loaded_list(self, hub: CodexHub) -> None:
        if not (hub.initialized and hub.open):
            return
        requester = next(iter(hub.threads.values()), None) or next(iter(hub.agents), None)
        self._request(hub, "thread/loaded/list", {}, PendingRequest("loaded_list", requester))

    def find_hub_for_agent(self, agent_id: str) -> CodexHub | None:
        for hub in self.hubs.values():
            if agent_id in hub.agents:
                return hub
        return None

    def _open_hub_for_agent(self, agent_id: str) -> CodexHub | None:
        hub = self.find_hub_for_agent(agent_id)
        return hub if hub is not None and hub.open else None

    def _active_turn_for_agent(self, hub: CodexHub, agent_id: str) -> str | None:
        return next((turn_id for turn_id, owner in hub.turns.items() if owner == agent_id), None)

    def send_rpc_response(self, agent_id: str, request_id: int | str, result: JsonDict) -> bool:
        """Answer a server request (approvals, user input) on the agent's hub."""
        hub = self.find_hub_for_agent(agent_id)
        if hub is None:
            self.registry.push_debug_event(f"codex approval-drop agent={short_id(agent_id)} reason=no-hub")
            return False
        if not hub.open:
            self.registry.push_debug_event(f"codex approval-drop agent={short_id(agent_id)} reason=ws-not-open")
            return False
        self._send_payload(hub, {"jsonrpc": "2.0", "id": request_id, "result": result}, agent_id)
        self.registry.push_debug_event(f"codex approval-send agent={short_id(agent_id)} request={request_id}")
        return True

    def start_turn(self, agent_id: str, text: str) -> bool:
        """Send user input; queued until the agent's thread exists."""
        hub = self.find_hub_for_agent(agent_id)
        agent = self.registry.get(agent_id)
        if hub is None or agent is None:
            return False
        if not (hub.open and agent.thread_id):
            hub.pending_msgs[agent_id] = text
            return True
        self._request(
            hub,
            "turn/start",
            {"threadId": agent.thread_id, "input": [{"type": "text", "text": text}]},
            PendingRequest("turn_start", agent_id, agent.thread_id),
        )
        return True

    def interrupt_turn(self, agent_id: str) -> bool:
        hub = self._open_hub_for_agent(agent_id)
        agent = self.registry.get(agent_id)
        if hub is None or agent is None or not agent.thread_id:
            return False
        turn_id = self._active_turn_for_agent(hub, agent_id)
        if not turn_id:
            return False
        self._request(
            hub,
            "turn/interrupt",
            {"threadId": agent.thread_id, "turnId": turn_id},
            PendingRequest("turn_interrupt", agent_id),
        )
        return True

    def steer_turn(self, agent_id: str, text: str) -> bool:
        hub = self._open_hub_for_agent(agent_id)
        agent = self.registry.get(agent_id)
        if hub is None or agent is None or not agent.thread_id:
            return False
        turn_id = self._active_turn_for_agent(hub, agent_id)
        if not turn_id:
            return False
        self._request(
            hub,
            "turn/steer",
            {"threadId": agent.thread_id, "turnId": turn_id, "input": [{"type": "text", "text": text}]},
            PendingRequest("turn_steer", agent_id),
        )
        return True

    def resume_thread(self, url: str, thread_id: str) -> str | None:
        """Open an existing thread in a new agent; None when the hub is not ready."""
        hub = self.hubs.get(url)
        if hub is None or not (hub.initialized and hub.open):
            return None
        agent = self.registry.create(url, "codex")
        hub.agents.add(agent.id)
        self._request(
            hub,
            "thread/resume",
            {"threadId": thread_id, "persistExtendedHistory": True},
            PendingRequest("thread_resume", agent.id, thread_id),
        )
        return agent.id

    def _thread_request(self, agent_id: str, method: str, request_type: str, params: JsonDict) -> bool:
        hub = self._open_hub_for_agent(agent_id)
        if hub is None:
            return False
        self._request(hub, method, params, PendingRequest(request_type, agent_id))
        return True

    def fork_thread(self, agent_id: str, thread_id: str) -> bool:
        return self._thread_request(agent_id, "thread/fork", "thread_fork", {"threadId": thread_id})

    def archive_thread(self, agent_id: str, thread_id: str) -> bool:
        return self._thread_request(agent_id, "thread/archive", "thread_archive", {"threadId": thread_id})

    def unarchive_thread(self, agent_id: str, thread_id: str) -> bool:
        return self._thread_request(agent_id, "thread/unarchive", "thread_unarchive", {"threadId": thread_id})

    def set_thread_name(self, agent_id: str, thread_id: str, name: str) -> bool:
        return self._thread_request(
            agent_id, "thread/name/set", "thread_name_set", {"threadId": thread_id, "name": name}
        )

    def rollback_thread(self, agent_id: str, thread_id: str, num_turns: int) -> bool:
        return self._thread_request(
            agent_id, "thread/rollback", "thread_rollback", {"threadId": thread_id, "numTurns": num_turns}
        )

    def compact_thread(self, agent_id: str, thread_id: str) -> bool:
        return self._thread_request(agent_id, "thread/compact/start", "thread_compact", {"threadId": thread_id})

    def list_threads(self, url: str, cursor: str | None = None) -> bool:
        hub = self.hubs.get(url)
        if hub is None or not (hub.initialized and hub.open):
            reason = "no-hub" if hub is None else ("ws-not-open" if hub.initialized else "not-initialized")
            self.registry.push_debug_event(f"codex thread/list skip hub={host_from_url(url)} reason={reason}")
            return False
        params = {"cursor": cursor} if cursor else {}
        self._request(hub, "thread/list", params, PendingRequest("thread_list"))
        suffix = f" cursor={cursor}" if cursor else ""
        self.registry.push_debug_event(f"codex thread/list sent hub={host_from_url(url)}{suffix}")
        return True

    def disconnect_thread(self, agent_id: str, thread_id: str) -> bool:
        """Unsubscribe from a thread; cleaned up locally when the socket is already gone."""
        hub = self.find_hub_for_agent(agent_id)
        if hub is None:
            self.registry.push_debug_event(
                f"codex unsubscribe-drop agent={short_id(agent_id)} thread={short_id(thread_id)} reason=no-hub"
            )
            return False
        if not hub.open:
            self.registry.push_debug_event(
                f"codex unsubscribe-local agent={short_id(agent_id)} thread={short_id(thread_id)} reason=ws-not-open"
            )
            self._clean_up_unsubscribed_thread(hub, thread_id, agent_id)
            return True
        self._request(
            hub,
            "thread/unsubscribe",
            {"threadId": thread_id},
            PendingRequest("thread_unsubscribe", agent_id, thread_id),
        )
        self.registry.push_debug_event(
            f"codex unsubscribe-send agent={short_id(agent_id)} thread={short_id(thread_id)} "
            f"hub={host_from_url(hub.url)}"
        )
        return True

    def unsubscribe_all(self) -> None:
        """Best-effort unsubscribe of every bound thread, e.g. before shutdown."""
        for hub in self.hubs.values():
            if not hub.open:
                continue
            for thread_id, agent_id in list(hub.threads.items()):
                self._request(
                    hub,
                    "thread/unsubscribe",
                    {"threadId": thread_id},
                    PendingRequest("thread_unsubscribe", agent_id, thread_id),
                )

    # ─── Hub lifecycle ────────────────────────────────────────────────

    def connect(self, url: str, silent: bool = False) -> str | None:
        """Silent connects only watch the hub; others spawn a thread in a new agent."""
        if silent:
            self.get_or_create_hub(url, None, silent=True)
            return None
        return self.spawn_thread(url)

    def get_or_create_hub(self, url: str, first_agent_id: str | None = None, silent: bool = False) -> CodexHub:
        existing = self.hubs.get(url)
        if existing is not None:
            if first_agent_id:
                existing.agents.add(first_agent_id)
            if not silent:
                existing.reconnect_enabled = True
            if existing.initialized:
                self.request_loaded_list(existing)
            return existing

        self._reconnecting.pop(url, None)
        hub = CodexHub(
            url=url,
            first_agent_id=first_agent_id,
            agents={first_agent_id} if first_agent_id else set(),
            reconnect_enabled=not silent,
        )
        self.hubs[url] = hub
        self.registry.push_debug_event(
            f"codex hub-create hub={host_from_url(url)} silent={'true' if silent else 'false'} "
            f"agent={short_id(first_agent_id)}"
        )
        return hub

    def spawn_thread(self, url: str) -> str:
        agent = self.registry.create(url, "codex")
        hub = self.get_or_create_hub(url, agent.id)
        if hub.initialized:
            if hub.open:
                self._send_thread_start(hub, agent.id)
        elif hub.first_agent_id != agent.id:
            hub.deferred_thread_starts.append(agent.id)
        return agent.id

    def on_open(self, url: str) -> None:
        hub = self.hubs.get(url)
        if hub is None:
            return
        hub.open = True
        spawn = bool(hub.first_agent_id) and hub.reconnect_enabled
        self._send_initialize(hub, hub.first_agent_id, spawn)

    def on_close(self, url: str) -> bool:
        """Socket closed. Returns True when the caller should start reconnecting."""
        hub = self.hubs.pop(url, None)
        if hub is None:
            return False
        hub.open = False
        self.registry.push_debug_event(
            f"codex hub-close hub={host_from_url(url)} agents={len(hub.agents)} threads={len(hub.threads)} "
            f"reconnect={'true' if hub.reconnect_enabled else 'false'}"
        )
        for thread_id, agent_id in hub.threads.items():
            if self.thread_agent_ids.get(thread_id) == agent_id:
                del self.thread_agent_ids[thread_id]

        agent_ids = list(hub.agents)
        if not agent_ids:
            return False

        hub_agents = [a for a in self.registry if a.url == url and a.protocol == "codex"]
        if not hub.reconnect_enabled:
            for agent_id in agent_ids:
                self._clear_agent_runtime_state(agent_id)
            for agent in hub_agents:
                if agent.status == "connecting" and not agent.has_content:
                    self.registry.remove(agent.id)
                else:
                    agent.status = "disconnected"
                    agent.thread_id = None
            return False

        for agent_id in agent_ids:
            self.registry.set_status(agent_id, "disconnected")
            self._clear_agent_runtime_state(agent_id)
        for agent in hub_agents:
            if agent.id in self.registry:
                agent.thread_id = None
        self._reconnecting[url] = agent_ids
        return True

    def schedule_reconnect(
        self,
        url: str,
        attempt: int,
        max_attempts: int = MAX_RECONNECT_ATTEMPTS,
        max_delay_ms: int = MAX_RECONNECT_DELAY_MS,
    ) -> int | None:
        """Delay before the next attempt, or None after giving up."""
        if url not in self._reconnecting:
            return None
        if not can_schedule_reconnect(attempt, max_attempts):
            self.give_up(url)
            return None
        return reconnect_delay_ms(attempt, max_delay_ms)

    def on_reconnected(self, url: str, attempt: int = 0) -> CodexHub | None:
        """A replacement socket opened; None means another hub already owns the URL."""
        if url in self.hubs:
            self.registry.push_debug_event(
                f"codex reconnect-abort hub={host_from_url(url)} (discovery already connected)"
            )
            self._reconnecting.pop(url, None)
            return None
        self.registry.push_debug_event(f"codex reconnect-open hub={host_from_url(url)} attempt={attempt}")
        self._reconnecting.pop(url, None)
        hub = CodexHub(url=url, open=True, reconnect_enabled=True)
        self.hubs[url] = hub
        self._send_initialize(hub, None, False)
        return hub

    def give_up(self, url: str) -> None:
        for agent_id in self._reconnecting.pop(url, []):
            self.registry.set_status(agent_id, "disconnected")
            self._clear_agent_runtime_state(agent_id)
        logger.info("codex reconnect exhausted hub=%s", url)

    # ─── Inbound frames ───────────────────────────────────────────────

    def on_data(self, url: str, raw: str) -> None:
        hub = self.hubs.get(url)
        if hub is None:
            logger.warning("codex data for unknown hub %s", url)
            return
        lines, hub.line_buffer = buffer_ndjson_chunk(raw, hub.line_buffer)
        for line in lines:
            if not line.strip():
                continue
            if self._on_frame is not None:
                self._on_frame(
                    {
                        "connectionId": url,
                        "direction": "in",
                        "payload": line,
                        "protocol": "codex",
                        "timestamp": self.registry.clock(),
                        "url": url,
                    }
                )
            try:
                msg = json.loads(line)
            except json.JSONDecodeError:
                self._handle_fallback_line(hub, line)
                continue
            if isinstance(msg, dict):
                self.route_message(hub, msg)
            else:
                self._handle_fallback_line(hub, line)

    def _handle_fallback_line(self, hub: CodexHub, line: str) -> None:
        thread_id = parse_codex_thread_id_from_raw_line(line)
        if not thread_id:
            logger.debug("codex unparsed line hub=%s len=%d", hub.url, len(line))
            return
        self.registry.push_debug_event(
            f"codex route raw-thread={short_id(thread_id)} hub={host_from_url(hub.url)}"
        )
        self.attach_discovered_thread(hub, thread_id)

    def route_message(self, hub: CodexHub, msg: JsonDict) -> None:
        method = msg.get("method")
        if "id" in msg and ("result" in msg or "error" in msg):
            self.route_response(hub, msg)
            return
        if not isinstance(method, str) or not method:
            return
        self.route_notification(hub, msg)
        if "id" in msg and method not in KNOWN_SERVER_REQUEST_METHODS:
            self._send_payload(
                hub,
                {
                    "jsonrpc": "2.0",
                    "id": msg["id"],
                    "error": {"code": METHOD_NOT_FOUND, "message": f"Method not found: {method}"},
                },
            )

    # ─── Thread binding ───────────────────────────────────────────────

    def _drop_stale_global_mapping(self, thread_id: str) -> None:
        agent_id = self.thread_agent_ids.get(thread_id)
        if agent_id is None:
            return
        agent = self.registry.get(agent_id)
        if agent is not None and agent.status == "disconnected":
            del self.thread_agent_ids[thread_id]

    def bind_thread_to_agent(self, hub: CodexHub, requested_agent_id: str, thread_id: str) -> str:
        """Bind thread_id on this hub, preferring an existing live owner over the requester."""
        self._drop_stale_global_mapping(thread_id)
        canonical_id = self.thread_agent_ids.get(thread_id) or hub.threads.get(thread_id) or requested_agent_id
        if hub.threads.get(thread_id) == canonical_id:
            self._set_agent_thread(canonical_id, thread_id)
            self.registry.set_status(canonical_id, "connected")
            return canonical_id

        self.registry.push_debug_event(
            f"codex bind-new agent={short_id(canonical_id)} thread={short_id(thread_id)} "
            f"hub={host_from_url(hub.url)} requested={short_id(requested_agent_id)}"
        )
        self.thread_agent_ids[thread_id] = canonical_id
        hub.threads[thread_id] = canonical_id
        hub.agents.add(canonical_id)
        if canonical_id in self.registry:
            self._set_agent_thread(canonical_id, thread_id)
            self.registry.set_status(canonical_id, "connected")
        else:
            self._create_discovered_agent(hub, canonical_id, thread_id)

        if requested_agent_id != canonical_id:
            requested = self.registry.get(requested_agent_id)
            if is_reusable_codex_placeholder(requested):
                hub.agents.discard(requested_agent_id)
                self.registry.set_status(requested_agent_id, "disconnected")
                self._clear_agent_runtime_state(requested_agent_id)

        self.request_thread_meta(hub, canonical_id, thread_id)
        return canonical_id

    def attach_discovered_thread(self, hub: CodexHub, thread_id: str) -> str:
        """Route a newly seen thread to its known owner, or give it a fresh agent."""
        global_id = self.thread_agent_ids.get(thread_id)
        if global_id:
            if self._is_live(global_id) or global_id not in self.registry:
                return self.bind_thread_to_agent(hub, global_id, thread_id)
            del self.thread_agent_ids[thread_id]

        ensured = ensure_codex_thread_route(hub.threads, hub.agents, thread_id, self.registry.new_id)
        self.thread_agent_ids[thread_id] = ensured.agent_id
        if not ensured.created:
            return self.bind_thread_to_agent(hub, ensured.agent_id, thread_id)

        self.registry.push_debug_event(
            f"codex attach new-agent={short_id(ensured.agent_id)} thread={short_id(thread_id)} "
            f"hub={host_from_url(hub.url)}"
        )
        self._create_discovered_agent(hub, ensured.agent_id, thread_id)
        self.request_thread_meta(hub, ensured.agent_id, thread_id)
        return ensured.agent_id

    def _find_active_primary_agent(self, hub: CodexHub) -> str | None:
        for thread_id, agent_id in hub.threads.items():
            if thread_id in hub.primary_threads and self._is_live(agent_id):
                return agent_id
        return None

    def _find_unassigned_agent(self, hub: CodexHub) -> str | None:
        assigned = set(hub.threads.values())
        for agent in self.registry:
            if agent.id in hub.agents and agent.id not in assigned and is_reusable_codex_placeholder(agent):
                return agent.id
        return None

    # ─── Subagent hints ───────────────────────────────────────────────

    def _enqueue_subagent_parent(self, hub: CodexHub, agent_id: str) -> None:
        now = self.registry.clock()
        hints = [h for h in hub.pending_subagent_parents if h.expires_at > now and self._is_live(h.agent_id)]
        hints.append(SubagentHint(agent_id, now + SUBAGENT_HINT_TTL_MS))
        hub.pending_subagent_parents = hints[-SUBAGENT_HINT_LIMIT:]

    def _take_subagent_parent(self, hub: CodexHub) -> str | None:
        now = self.registry.clock()
        while hub.pending_subagent_parents:
            hint = hub.pending_subagent_parents.pop(0)
            if hint.expires_at > now and self._is_live(hint.agent_id):
                return hint.agent_id
        return None

    def _route_hinted_subagent_thread(self, hub: CodexHub, thread_id: str) -> bool:
        parent_id = self._take_subagent_parent(hub)
        if not parent_id:
            return False
        self.registry.push_debug_event(
            f"codex route-thread via=collab parent={short_id(parent_id)} thread={short_id(thread_id)}"
        )
        hub.threads[thread_id] = parent_id
        hub.agents.add(parent_id)
        return True

    def _route_subagent_from_primary(self, hub: CodexHub, thread_id: str) -> bool:
        if thread_id in hub.primary_threads or not hub.primary_threads:
            return False
        parent_id = self._find_active_primary_agent(hub)
        if not parent_id:
            return False
        self.registry.push_debug_event(
            f"codex route-thread via=subagent parent={short_id(parent_id)} thread={short_id(thread_id)}"
        )
        hub.threads[thread_id] = parent_id
        hub.agents.add(parent_id)
        return True

    def _ensure_notification_thread_route(self, hub: CodexHub, thread_id: str | None) -> None:
        """Make sure thread_id has an owner on this hub before routing its notification."""
        if not thread_id:
            return
        global_id = self.thread_agent_ids.get(thread_id)
        if global_id:
            if thread_id not in hub.threads:
                self.registry.push_debug_event(
                    f"codex route-thread via=global agent={short_id(global_id)} thread={short_id(thread_id)}"
                )
            self.bind_thread_to_agent(hub, global_id, thread_id)
            return
        if thread_id in hub.threads:
            return
        pending_owner = pending_thread_start_agent(hub.pending_contexts())
        if pending_owner:
            self.registry.push_debug_event(
                f"codex route-thread via=pending agent={short_id(pending_owner)} thread={short_id(thread_id)}"
            )
            self.bind_thread_to_agent(hub, pending_owner, thread_id)
            return
        if self._route_hinted_subagent_thread(hub, thread_id):
            return
        if self._route_subagent_from_primary(hub, thread_id):
            return
        unassigned = self._find_unassigned_agent(hub)
        if unassigned:
            self.registry.push_debug_event(
                f"codex route-thread via=unassigned agent={short_id(unassigned)} thread={short_id(thread_id)}"
            )
            self.bind_thread_to_agent(hub, unassigned, thread_id)
            return
        self.registry.push_debug_event(
            f"codex route-thread via=attach thread={short_id(thread_id)} hub={host_from_url(hub.url)}"
        )
        self.attach_discovered_thread(hub, thread_id)

    # ─── Notification routing ─────────────────────────────────────────

    def _turn_event_agent(self, hub: CodexHub, method: str, turn_id: str | None) -> str | None:
        if method == "turn/started":
            return hub.turns.get(turn_id) if turn_id else first_open_turn_agent(hub.turns)
        if method == "turn/completed":
            return (hub.turns.get(turn_id) if turn_id else None) or first_open_turn_agent(hub.turns)
        return None

    def _item_event_agent(self, hub: CodexHub, turn_id: str | None) -> str | None:
        return (hub.turns.get(turn_id) if turn_id else None) or first_open_turn_agent(hub.turns)

    def _single_live_hub_agent(self, hub: CodexHub) -> str | None:
        live = [agent_id for agent_id in hub.agents if self._is_live(agent_id)]
        return live[0] if len(live) == 1 else None

    def _event_fallback_agent(self, hub: CodexHub, method: str, turn_id: str | None) -> str | None:
        if not method.startswith("codex/event/"):
            return None
        by_turn = hub.turns.get(turn_id) if turn_id else None
        if by_turn:
            return by_turn
        open_turn = first_open_turn_agent(hub.turns)
        if open_turn:
            return open_turn
        if method in ("codex/event/user_message", "codex/event/agent_message"):
            return self._single_live_hub_agent(hub)
        return None

    def resolve_notification_route(self, hub: CodexHub, method: str, params: JsonDict | None) -> CodexRoute:
        route = resolve_codex_notification_agent(hub.threads, hub.turns, params)
        if route.agent_id:
            return route
        turn_id = turn_id_from_params(params)
        agent_id = self._turn_event_agent(hub, method, turn_id)
        if not agent_id and (
            method.startswith("item/")
            or is_codex_item_message(method)
            or method in STRUCTURED_NOTIFICATION_METHODS
        ):
            agent_id = self._item_event_agent(hub, turn_id)
        if not agent_id:
            agent_id = self._event_fallback_agent(hub, method, turn_id)
        return CodexRoute(agent_id=agent_id) if agent_id else route

    def _ensure_agent_thread_match(self, hub: CodexHub, agent_id: str, thread_id: str | None) -> str:
        """An agent already bound to another thread never absorbs a second one."""
        if not thread_id:
            return agent_id
        mapped = hub.threads.get(thread_id)
        if mapped:
            return mapped
        agent = self.registry.get(agent_id)
        if agent is None or not agent.thread_id or agent.thread_id == thread_id:
            return agent_id
        self.registry.push_debug_event(
            f"codex rotate thread-mismatch current={short_id(agent.thread_id)} "
            f"incoming={short_id(thread_id)} agent={short_id(agent_id)}"
        )
        return self.attach_discovered_thread(hub, thread_id)

    def _finalize_route(
        self,
        hub: CodexHub,
        method: str,
        params: JsonDict | None,
        thread_id: str | None,
        route: CodexRoute,
    ) -> str:
        agent_id = self._ensure_agent_thread_match(hub, route.agent_id, thread_id)
        turn_id = turn_id_from_params(params)
        route_thread_id = thread_id or route.mapped_thread_id
        if turn_id:
            hub.turns[turn_id] = agent_id
            if route_thread_id:
                hub.turn_threads[turn_id] = route_thread_id
        if route.mapped_thread_id:
            hub.threads[route.mapped_thread_id] = agent_id
        if method not in QUIET_ROUTE_METHODS:
            self.registry.push_debug_event(
                f"codex route method={method} thread={short_id(thread_id) or '-'} "
                f"turn={short_id(turn_id) or '-'} agent={short_id(agent_id)}"
            )
        return agent_id

    def _buffer_turn_event(self, hub: CodexHub, turn_id: str, msg: JsonDict) -> None:
        now = self.registry.clock()
        for queued_turn, queued in list(hub.pending_turn_events.items()):
            live = [event for event in queued if event.expires_at > now]
            if live:
                hub.pending_turn_events[queued_turn] = live
            else:
                del hub.pending_turn_events[queued_turn]

        queue = hub.pending_turn_events.setdefault(turn_id, [])
        queue.append(BufferedTurnEvent(now + PENDING_TURN_EVENT_TTL_MS, msg))
        if len(queue) > PENDING_TURN_EVENT_MAX_PER_TURN:
            del queue[: len(queue) - PENDING_TURN_EVENT_MAX_PER_TURN]
        pending_count = len(queue)

        # Total cap: drop oldest events from the oldest turns first.
        total = sum(len(events) for events in hub.pending_turn_events.values())
        while total > PENDING_TURN_EVENT_MAX_TOTAL and hub.pending_turn_events:
            oldest_turn = next(iter(hub.pending_turn_events))
            oldest = hub.pending_turn_events[oldest_turn]
            oldest.pop(0)
            total -= 1
            if not oldest:
                del hub.pending_turn_events[oldest_turn]

        self.registry.push_debug_event(
            f"codex buffer method={msg.get('method') or 'unknown'} turn={short_id(turn_id)} pending={pending_count}"
        )

    def _replay_turn_events(
        self,
        hub: CodexHub,
        turn_id: str,
        agent_id: str,
        fallback_thread_id: str | None,
    ) -> None:
        buffered = hub.pending_turn_events.pop(turn_id, None)
        if not buffered:
            return
        now = self.registry.clock()
        replayed = 0
        for event in buffered:
            if event.expires_at <= now:
                continue
            params = as_dict(event.msg.get("params"))
            thread_id = thread_id_from_params(params) or fallback_thread_id or hub.turn_threads.get(turn_id)
            self._apply_notification(hub, event.msg, _with_thread_id(params, thread_id), agent_id)
            replayed += 1
        if replayed:
            self.registry.push_debug_event(
                f"codex replay turn={short_id(turn_id)} count={replayed} agent={short_id(agent_id)}"
            )

    def route_notification(self, hub: CodexHub, msg: JsonDict) -> str | None:
        """Route one notification (or server request); returns the agent it reached."""
        method = msg["method"]
        params = as_dict(msg.get("params"))
        turn_id = turn_id_from_params(params)
        thread_id = thread_id_from_params(params) or (hub.turn_threads.get(turn_id) if turn_id else None)
        self._ensure_notification_thread_route(hub, thread_id)

        route_params = _with_thread_id(params, thread_id)
        route = self.resolve_notification_route(hub, method, route_params)
        if not route.agent_id:
            if turn_id and method not in NON_BUFFERED_TURN_METHODS:
                self._buffer_turn_event(hub, turn_id, msg)
                return None
            if method != "item/agentMessage/delta":
                self.registry.push_debug_event(
                    f"codex drop method={method} thread={short_id(thread_id) or '-'} turn={short_id(turn_id) or '-'}"
                )
            return None

        agent_id = self._finalize_route(hub, method, route_params, thread_id, route)
        if turn_id:
            self._replay_turn_events(hub, turn_id, agent_id, thread_id or route.mapped_thread_id)
        self._apply_notification(hub, msg, route_params, agent_id)
        return agent_id

    # ─── Per-agent effects ────────────────────────────────────────────

    def _apply_stream_message(self, agent_id: str, msg: JsonDict) -> None:
        state = self.adapter_states.get(agent_id) or CodexAdapterState()
        result = adapt_codex_message(msg, state, agent_id=agent_id, now=self.registry.clock())
        self.adapter_states[agent_id] = result.state
        self.registry.apply_stream_actions(agent_id, result.actions)

    def _apply_output_events(self, agent_id: str, events: list[CodexOutputEvent]) -> None:
        agent = self.registry.get(agent_id)
        if agent is None:
            for event in events:
                self.registry.queue_output_event(agent_id, event)
            return
        pending = self.registry.take_output_events(agent_id)
        state = self.output_states.get(agent_id) or CodexOutputState()
        output = agent.output
        for event in [*pending, *events]:
            result = reduce_codex_output(output, state, event, self.pretty_mode)
            output, state = result.output, result.state
        self.output_states[agent_id] = state
        agent.output = output

    def _apply_projected_output(self, msg: JsonDict, agent_id: str, thread_id: str | None) -> None:
        projection = project_codex_output_from_notification(
            msg.get("method"), as_dict(msg.get("params")), thread_id
        )
        missing = projection.missing_text
        if missing is not None:
            self.registry.push_debug_event(
                f"codex text-empty method={missing.method} keys={missing.keys} "
                f"msgType={missing.msg_type} msgKeys={missing.msg_keys}"
            )
        self._apply_output_events(agent_id, projection.events)

    def _apply_notification(self, hub: CodexHub, msg: JsonDict, params: JsonDict | None, agent_id: str) -> None:
        method = msg.get("method")
        if not isinstance(method, str) or not method:
            return
        routed = {**msg, "params": params} if params is not None else msg
        self._apply_stream_message(agent_id, routed)
        thread_id = thread_id_from_params(params)

        if method in OUTPUT_NOTIFICATION_METHODS:
            self._apply_projected_output(routed, agent_id, thread_id)
            return
        if method in TASK_DONE_METHODS:
            self._complete_task(hub, method, params, agent_id)
            return
        handler = self._lifecycle_handlers.get(method)
        if handler is not None:
            handler(hub, params, agent_id, thread_id)

    # ─── Lifecycle handlers ───────────────────────────────────────────

    def _on_turn_started(self, hub, params, agent_id, _thread_id):
        apply_codex_turn_routing(hub.turns, "turn/started", params, agent_id)

    def _on_turn_completed(self, hub, params, agent_id, _thread_id):
        apply_codex_turn_routing(hub.turns, "turn/completed", params, agent_id)
        turn_id = turn_id_from_params(params)
        if turn_id:
            hub.turn_threads.pop(turn_id, None)
            hub.pending_turn_events.pop(turn_id, None)
        self._disconnect_unscoped_agent_if_idle(hub, agent_id)

    def _on_thread_name_updated(self, _hub, params, agent_id, _thread_id):
        agent = self.registry.get(agent_id)
        if agent is not None:
            agent.thread_name = thread_name_from_params(params)

    def _on_primary_thread_seen(self, hub, _params, _agent_id, thread_id):
        if thread_id:
            hub.primary_threads.add(thread_id)

    def _on_collab_spawn_begin(self, hub, params, agent_id, thread_id):
        self._on_primary_thread_seen(hub, params, agent_id, thread_id)
        self._enqueue_subagent_parent(hub, agent_id)

    def _on_thread_status_changed(self, _hub, params, agent_id, _thread_id):
        status = status_from_params(params)
        agent = self.registry.get(agent_id)
        if status not in VALID_THREAD_STATUSES or agent is None:
            return
        agent.thread_status = status
        agent.status = "disconnected" if status == "notLoaded" else "connected"

    def _on_thread_closed(self, hub, _params, agent_id, thread_id):
        if thread_id:
            self._clean_up_unsubscribed_thread(hub, thread_id, agent_id)

    def _disconnect_unscoped_agent_if_idle(self, hub: CodexHub, agent_id: str) -> None:
        if agent_id in hub.threads.values() or agent_id in hub.turns.values():
            return
        hub.agents.discard(agent_id)
        self.registry.set_status(agent_id, "disconnected")
        self._clear_agent_runtime_state(agent_id)

    def _complete_task(self, hub: CodexHub, method: str, params: JsonDict | None, agent_id: str) -> None:
        thread_id = thread_id_from_params(params)
        turn_id = turn_id_from_params(params)
        if turn_id:
            hub.turns.pop(turn_id, None)
            hub.turn_threads.pop(turn_id, None)
            hub.pending_turn_events.pop(turn_id, None)
        if thread_id:
            for done_turn, done_thread in list(hub.turn_threads.items()):
                if done_thread == thread_id:
                    del hub.turn_threads[done_turn]
                    hub.turns.pop(done_turn, None)
        hub.pending_subagent_parents = [h for h in hub.pending_subagent_parents if h.agent_id != agent_id]
        if thread_id and self.thread_agent_ids.get(thread_id) == agent_id:
            del self.thread_agent_ids[thread_id]
        if thread_id and thread_id in hub.primary_threads:
            self.registry.set_status(agent_id, "disconnected")
            self._clear_agent_runtime_state(agent_id)
        self.registry.push_debug_event(
            f"codex task-done via={method} agent={short_id(agent_id)} thread={short_id(thread_id)} "
            f"hub={host_from_url(hub.url)}"
        )

    def _clean_up_unsubscribed_thread(self, hub: CodexHub, thread_id: str, agent_id: str) -> None:
        hub.threads.pop(thread_id, None)
        hub.thread_meta_requested.discard(thread_id)
        hub.primary_threads.discard(thread_id)
        if self.thread_agent_ids.get(thread_id) == agent_id:
            del self.thread_agent_ids[thread_id]
        for turn_id, turn_thread in list(hub.turn_threads.items()):
            if turn_thread == thread_id:
                del hub.turn_threads[turn_id]
                hub.turns.pop(turn_id, None)
                hub.pending_turn_events.pop(turn_id, None)

        self._clear_agent_runtime_state(agent_id)
        agent = self.registry.get(agent_id)
        if agent is not None:
            agent.thread_id = None
            agent.stream_items = []
            agent.status = "disconnected"
        if agent_id not in hub.threads.values():
            hub.agents.discard(agent_id)

    # ─── Responses ────────────────────────────────────────────────────

    def route_response(self, hub: CodexHub, msg: JsonDict) -> None:
        rpc_id = msg.get("id")
        if isinstance(rpc_id, bool) or not isinstance(rpc_id, int):
            return
        ctx = hub.pending.pop(rpc_id, None)
        if ctx is None:
            return
        if "error" in msg:
            self.registry.push_debug_event(
                f"codex rpc-error id={rpc_id} type={ctx.type} hub={host_from_url(hub.url)}"
            )
            return
        handler = self._response_handlers.get(ctx.type)
        if handler is not None:
            handler(hub, ctx, msg.get("result"))

    def _on_initialize_result(self, hub: CodexHub, ctx: PendingRequest, result: object) -> None:
        if not result:
            return
        hub.initialized = True
        self._send_payload(hub, {"jsonrpc": "2.0", "method": "initialized"}, ctx.agent_id)
        if ctx.spawn_thread and ctx.agent_id:
            self._send_thread_start(hub, ctx.agent_id)
        else:
            self.request_loaded_list(hub)
        deferred, hub.deferred_thread_starts = hub.deferred_thread_starts, []
        for agent_id in deferred:
            self._send_thread_start(hub, agent_id)

    def _on_thread_start_result(self, hub: CodexHub, ctx: PendingRequest, result: object) -> None:
        thread_id = thread_id_from_result(result)
        if not (ctx.agent_id and thread_id):
            return
        hub.primary_threads.add(thread_id)
        agent_id = self.bind_thread_to_agent(hub, ctx.agent_id, thread_id)
        pending_text = hub.pending_msgs.pop(ctx.agent_id, None)
        mapped_text = hub.pending_msgs.pop(agent_id, None)
        text = pending_text or mapped_text
        if text:
            self._request(
                hub,
                "turn/start",
                {"threadId": thread_id, "input": [{"type": "text", "text": text}]},
                PendingRequest("turn_start", agent_id, thread_id),
            )
        self.request_loaded_list(hub)

    def _on_loaded_list_result(self, hub: CodexHub, _ctx: PendingRequest, result: object) -> None:
        loaded = loaded_thread_ids_from_result(result)
        if not loaded:
            return
        loaded_set = set(loaded)
        for thread_id, agent_id in list(hub.threads.items()):
            if thread_id in loaded_set:
                continue
            del hub.threads[thread_id]
            hub.thread_meta_requested.discard(thread_id)
            hub.agents.discard(agent_id)
            self.registry.set_status(agent_id, "disconnected")
            self._clear_agent_runtime_state(agent_id)
            for turn_id, turn_agent in list(hub.turns.items()):
                if turn_agent == agent_id:
                    del hub.turns[turn_id]
            for turn_id, turn_thread in list(hub.turn_threads.items()):
                if turn_thread == thread_id:
                    del hub.turn_threads[turn_id]

        # Loaded threads outside the primary set are subagents of the active primary.
        for thread_id in loaded:
            if thread_id in hub.threads:
                continue
            if hub.primary_threads and thread_id not in hub.primary_threads:
                parent_id = self._find_active_primary_agent(hub)
                if parent_id:
                    hub.threads[thread_id] = parent_id
                    hub.agents.add(parent_id)
                    continue
            unassigned = self._find_unassigned_agent(hub)
            if unassigned:
                self.bind_thread_to_agent(hub, unassigned, thread_id)
            else:
                self.attach_discovered_thread(hub, thread_id)

    def _on_thread_read_result(self, _hub: CodexHub, ctx: PendingRequest, result: object) -> None:
        preview = thread_preview_from_result(result)
        agent = self.registry.get(ctx.agent_id)
        if preview and agent is not None and not agent.thread_name:
            agent.thread_name = preview

    def _on_turn_start_result(self, hub: CodexHub, ctx: PendingRequest, result: object) -> None:
        turn_id = turn_id_from_result(result)
        if not (ctx.agent_id and turn_id):
            return
        hub.turns[turn_id] = ctx.agent_id
        if ctx.thread_id:
            hub.turn_threads[turn_id] = ctx.thread_id

    def _on_thread_bound_result(self, hub: CodexHub, ctx: PendingRequest, result: object) -> None:
        thread_id = thread_id_from_result(result)
        if not (ctx.agent_id and thread_id):
            return
        hub.primary_threads.add(thread_id)
        self.bind_thread_to_agent(hub, ctx.agent_id, thread_id)
        self.request_loaded_list(hub)

    def _on_thread_list_result(self, _hub: CodexHub, _ctx: PendingRequest, result: object) -> None:
        body = as_dict(result)
        if body is not None:
            data = body.get("data")
            cursor = body.get("nextCursor")
            self.thread_list = ThreadListResult(
                data=[_thread_summary(entry) for entry in data] if isinstance(data, list) else [],
                next_cursor=cursor if isinstance(cursor, str) else None,
            )
        self.registry.push_debug_event(f"codex thread/list received count={len(self.thread_list.data)}")

    def _on_thread_unsubscribe_result(self, hub: CodexHub, ctx: PendingRequest, result: object) -> None:
        if not ctx.thread_id:
            return
        status = unsubscribe_status_from_result(result)
        target = ctx.agent_id or hub.threads.get(ctx.thread_id)
        if status == "notSubscribed":
            self.registry.push_debug_event(
                f"codex unsubscribe-warn status=notSubscribed thread={short_id(ctx.thread_id)} "
                f"hub={host_from_url(hub.url)}"
            )
        if target:
            self._clean_up_unsubscribed_thread(hub, ctx.thread_id, target)
        self.registry.push_debug_event(
            f"codex unsubscribe-done status={status or 'unknown'} thread={short_id(ctx.thread_id)} "
            f"agent={short_id(target)} hub={host_from_url(hub.url)}"
        )
