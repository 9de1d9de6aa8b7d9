"""Protocol-B (codex thread/item) stream adapter.

Maps JSON-RPC notifications from a codex app-server onto StreamItemActions.
The server emits both legacy `codex/event/*` mirrors and the newer
`item/*` / `turn/*` / `thread/*` surface for the same activity; only one of
each pair produces items, the mirror is silenced.

// [LAW:one-source-of-truth] Source item id -> stream item id lives in state.source_items.
// [LAW:dataflow-not-control-flow] Method dispatch goes through _METHOD_HANDLERS.

Like the claude adapter, state is cloned on entry and the clone returned.
Every internal map is bounded; the oldest keys are evicted first.
"""

import json
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from agent_stream.pipeline.stream_items import (
    StreamItem,
    StreamItemAction,
    StreamItemStatus,
    append_text_action,
    complete_action,
    create_action,
    update_action,
)
from agent_stream.protocol.codex_rpc import (
    JsonDict,
    as_dict,
    command_from_params,
    exit_code_from_params,
    read_trimmed_string,
    status_from_params,
    thread_id_from_params,
    turn_id_from_params,
)
from agent_stream.protocol.parsing import codex_text_from_params, codex_text_from_raw_params


DUPLICATE_COMPLETION_TEXT_WINDOW_MS = 2000
RECENT_COMPLETED_MESSAGE_TTL_MS = DUPLICATE_COMPLETION_TEXT_WINDOW_MS * 4

MAX_AGGREGATED_MESSAGE_TEXT_ENTRIES = 512
MAX_LATEST_COMMAND_STREAM_BY_TURN_ENTRIES = 256
MAX_MESSAGE_ROLE_BY_STREAM_ID_ENTRIES = 512
MAX_RECENT_COMPLETED_MESSAGE_ENTRIES = 512

# Legacy mirrors of notifications that the item/* surface already covers.
LEGACY_MIRROR_NOTIFICATION_METHODS = frozenset(
    {
        "codex/event/item_started",
        "codex/event/item_completed",
        "rawResponseItem/completed",
        "codex/event/agent_message_delta",
        "codex/event/agent_message_content_delta",
        "codex/event/agent_message",
        "codex/event/agent_reasoning",
        "codex/event/agent_reasoning_delta",
        "codex/event/reasoning_content_delta",
        "codex/event/agent_reasoning_section_break",
    }
)

# Bookkeeping notifications consumed by the routing layer, never rendered.
SILENT_NOTIFICATION_METHODS = frozenset(
    {
        "thread/name/updated",
        "thread/tokenUsage/updated",
        "account/rateLimits/updated",
        "codex/event/token_count",
        "turn/started",
        "thread/started",
        "codex/event/collab_agent_spawn_begin",
        "codex/event/collab_agent_spawn_end",
        "codex/event/mcp_startup_update",
        "codex/event/mcp_startup_complete",
        "codex/event/shutdown_complete",
    }
)

_THREAD_ITEM_TYPE_ALIASES = {
    "UserMessage": "userMessage",
    "AgentMessage": "agentMessage",
    "Plan": "plan",
    "Reasoning": "reasoning",
    "WebSearch": "webSearch",
    "ContextCompaction": "contextCompaction",
}

_THREAD_ITEM_STREAM_TYPES = {
    "userMessage": "message",
    "agentMessage": "message",
    "commandExecution": "command_execution",
    "collabAgentToolCall": "collab_agent",
    "contextCompaction": "status",
    "enteredReviewMode": "review_mode",
    "exitedReviewMode": "review_mode",
    "fileChange": "file_change",
    "imageView": "image",
    "mcpToolCall": "mcp_tool_call",
    "plan": "plan",
    "reasoning": "reasoning",
    "webSearch": "web_search",
}

_THREAD_ITEM_ROLES = {"userMessage": "user", "agentMessage": "assistant"}

_COMPLETE_STATUS_WORDS = frozenset(
    {"complete", "completed", "done", "finished", "success", "succeeded", "ok"}
)


# ─── State ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RecentMessage:
    """A just-completed message, kept briefly to drop echoes of it."""

    id: str
    role: str | None
    text: str
    timestamp: int


@dataclass
class CodexAdapterState:
    active_message_by_turn: dict[str, str] = field(default_factory=dict)
    active_message_by_thread: dict[str, str] = field(default_factory=dict)
    command_output: dict[str, str] = field(default_factory=dict)
    file_change_delta: dict[str, str] = field(default_factory=dict)
    mcp_progress: dict[str, str] = field(default_factory=dict)
    message_text: dict[str, str] = field(default_factory=dict)
    latest_command_by_turn: dict[str, str] = field(default_factory=dict)
    message_roles: dict[str, str] = field(default_factory=dict)
    recent_completed: dict[str, RecentMessage] = field(default_factory=dict)
    source_items: dict[str, str] = field(default_factory=dict)
    next_id: int = 0

    def clone(self) -> "CodexAdapterState":
        return CodexAdapterState(
            active_message_by_turn=dict(self.active_message_by_turn),
            active_message_by_thread=dict(self.active_message_by_thread),
            command_output=dict(self.command_output),
            file_change_delta=dict(self.file_change_delta),
            mcp_progress=dict(self.mcp_progress),
            message_text=dict(self.message_text),
            latest_command_by_turn=dict(self.latest_command_by_turn),
            message_roles=dict(self.message_roles),
            recent_completed=dict(self.recent_completed),
            source_items=dict(self.source_items),
            next_id=self.next_id,
        )


@dataclass(frozen=True)
class CodexAdapterResult:
    actions: list[StreamItemAction]
    state: CodexAdapterState


@dataclass(frozen=True)
class _Context:
    method: str
    params: JsonDict | None
    request_id: object
    agent_id: str | None
    thread_id: str | None
    turn_id: str | None
    now: int

    @property
    def turn_key(self) -> str:
        return _scoped_key("msg", self.thread_id, self.turn_id)

    @property
    def thread_key(self) -> str:
        return _scoped_key("msg", self.thread_id)


# ─── Small helpers ───────────────────────────────────────────────────────────


def _compact(data: JsonDict) -> JsonDict:
    return {key: value for key, value in data.items() if value is not None}


def _prune_to_limit(mapping: dict, limit: int) -> None:
    overflow = len(mapping) - limit
    if overflow <= 0:
        return
    for key in list(mapping)[:overflow]:
        del mapping[key]


def _param(ctx: _Context, key: str) -> object:
    return ctx.params.get(key) if ctx.params else None


def _param_str(ctx: _Context, key: str) -> str | None:
    return read_trimmed_string(_param(ctx, key))


def _as_list(value: object) -> list:
    return value if isinstance(value, list) else []


def _scoped_key(prefix: str, thread_id: str | None = None, turn_id: str | None = None) -> str:
    return f"{prefix}:{thread_id or '-'}:{turn_id or '-'}"


def _command_turn_key(ctx: _Context) -> str:
    return _scoped_key("command-turn", ctx.thread_id, ctx.turn_id)


_GLOBAL_MESSAGE_KEY = _scoped_key("msg", "*", "*")


def dedupe_text_key(text: str) -> str:
    """Whitespace-insensitive comparison key for message echoes."""
    return " ".join(text.split())


def _stringify(value: object) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return json.dumps(value, indent=2, default=str)


def _command_like(value: object) -> str | None:
    direct = read_trimmed_string(value)
    if direct:
        return direct
    if not isinstance(value, list):
        return None
    parts = [entry for entry in value if isinstance(entry, str)]
    return " ".join(parts).strip() or None


def _parse_json_object(value: object) -> JsonDict | None:
    direct = as_dict(value)
    if direct is not None:
        return direct
    text = read_trimmed_string(value)
    if text is None:
        return None
    try:
        return as_dict(json.loads(text))
    except json.JSONDecodeError:
        return None


@dataclass(frozen=True)
class _ExecCall:
    command: str
    call_id: str | None
    cwd: str | None


def _raw_exec_command_call(ctx: _Context) -> _ExecCall | None:
    """`exec_command` function_call carried inside a raw_response_item."""
    msg = as_dict(_param(ctx, "msg")) or {}
    item = as_dict(msg.get("item"))
    if item is None:
        return None
    if read_trimmed_string(item.get("type")) != "function_call":
        return None
    if read_trimmed_string(item.get("name")) != "exec_command":
        return None
    arguments = _parse_json_object(item.get("arguments")) or {}
    command = None
    for key in ("cmd", "command", "args", "argv"):
        command = _command_like(arguments.get(key))
        if command:
            break
    if not command:
        return None
    return _ExecCall(
        command=command,
        call_id=read_trimmed_string(item.get("call_id")) or read_trimmed_string(item.get("callId")),
        cwd=read_trimmed_string(arguments.get("workdir")) or read_trimmed_string(arguments.get("cwd")),
    )


def _command_source_id(ctx: _Context) -> str | None:
    for key in ("itemId", "id", "call_id", "callId", "process_id", "processId"):
        source_id = _param_str(ctx, key)
        if source_id:
            return source_id
    return None


def _command_source_key(ctx: _Context) -> str:
    return _command_source_id(ctx) or _scoped_key("command", ctx.thread_id, ctx.turn_id)


def _thread_item_id(ctx: _Context) -> str | None:
    item = as_dict(_param(ctx, "item")) or {}
    return (
        _param_str(ctx, "itemId")
        or read_trimmed_string(item.get("id"))
        or _param_str(ctx, "id")
    )


# ─── Thread item normalization ───────────────────────────────────────────────


def normalize_thread_item_type(item_type: str | None) -> str | None:
    normalized = read_trimmed_string(item_type)
    if normalized is None:
        return None
    return _THREAD_ITEM_TYPE_ALIASES.get(normalized, normalized)


def map_thread_item_type(item_type: str | None) -> str:
    return _THREAD_ITEM_STREAM_TYPES.get(normalize_thread_item_type(item_type) or "", "raw_item")


def _role_from_thread_item_type(item_type: str | None) -> str | None:
    return _THREAD_ITEM_ROLES.get(normalize_thread_item_type(item_type) or "")


def _content_text(content: object) -> str:
    parts = []
    for entry in _as_list(content):
        record = as_dict(entry)
        if record is None:
            continue
        for key in ("text", "name", "path", "image_url", "url"):
            text = read_trimmed_string(record.get(key))
            if text:
                parts.append(text)
                break
    return "\n".join(parts)


def _joined_strings(values: object) -> str:
    return "\n".join(text for text in (read_trimmed_string(v) for v in _as_list(values)) if text)


def _reasoning_text(item: JsonDict) -> str:
    summary = item.get("summary") if isinstance(item.get("summary"), list) else item.get("summary_text")
    text = _joined_strings(summary)
    if text:
        return text
    content = item.get("content") if isinstance(item.get("content"), list) else item.get("raw_content")
    return _joined_strings(content)


def _command_execution_text(item: JsonDict) -> str:
    command = read_trimmed_string(item.get("command"))
    output = read_trimmed_string(item.get("aggregatedOutput"))
    if command and output:
        return f"$ {command}\n{output}"
    if output:
        return output
    return f"$ {command}" if command else ""


def _agent_message_text(item: JsonDict) -> str:
    return read_trimmed_string(item.get("text")) or _content_text(item.get("content"))


def _user_message_text(item: JsonDict) -> str:
    return _content_text(item.get("content"))


def _field_text(key: str) -> Callable[[JsonDict], str]:
    return lambda item: read_trimmed_string(item.get(key)) or ""


_THREAD_ITEM_TEXT: dict[str, Callable[[JsonDict], str]] = {
    "agentMessage": _agent_message_text,
    "plan": _field_text("text"),
    "userMessage": _user_message_text,
    "reasoning": _reasoning_text,
    "commandExecution": _command_execution_text,
    "webSearch": _field_text("query"),
    "imageView": _field_text("path"),
    "enteredReviewMode": _field_text("review"),
    "exitedReviewMode": _field_text("review"),
}


def thread_item_text(item: JsonDict) -> str:
    extract = _THREAD_ITEM_TEXT.get(normalize_thread_item_type(item.get("type")) or "")
    return extract(item) if extract else ""


def _thread_item_data(item: JsonDict, item_type: str | None) -> JsonDict:
    base: JsonDict = {"item": item}
    if item_type == "commandExecution":
        return _compact(
            {
                **base,
                "command": read_trimmed_string(item.get("command")),
                "cwd": read_trimmed_string(item.get("cwd")),
                "durationMs": item.get("durationMs"),
                "exitCode": item.get("exitCode"),
                "output": read_trimmed_string(item.get("aggregatedOutput")),
                "processId": read_trimmed_string(item.get("processId")),
                "status": read_trimmed_string(item.get("status")),
            }
        )
    if item_type == "fileChange":
        return _compact(
            {
                **base,
                "changes": _as_list(item.get("changes")),
                "status": read_trimmed_string(item.get("status")),
            }
        )
    if item_type == "mcpToolCall":
        tool = read_trimmed_string(item.get("tool"))
        return _compact(
            {
                **base,
                "arguments": item.get("arguments"),
                "durationMs": item.get("durationMs"),
                "error": item.get("error"),
                "name": tool,
                "result": item.get("result"),
                "server": read_trimmed_string(item.get("server")),
                "status": read_trimmed_string(item.get("status")),
                "toolName": tool,
            }
        )
    role = _role_from_thread_item_type(item_type)
    if role:
        return {**base, "role": role}
    return base


def completion_status(status: str | None) -> StreamItemStatus | None:
    """Map a free-form codex status to a terminal item status, if recognizable."""
    normalized = (status or "").strip().lower()
    if not normalized:
        return None
    if "error" in normalized or "fail" in normalized or "denied" in normalized:
        return "error"
    if normalized in _COMPLETE_STATUS_WORDS:
        return "complete"
    return None


def _completion_data(item: JsonDict, item_type: str | None) -> JsonDict:
    data = _thread_item_data(item, item_type)
    text = thread_item_text(item)
    if text:
        data["text"] = text
    if item_type:
        data["title"] = item_type
    return data


# ─── State bookkeeping ───────────────────────────────────────────────────────


def _next_item_id(state: CodexAdapterState, prefix: str) -> str:
    state.next_id += 1
    return f"codex-{prefix}-{state.next_id}"


def _create_item(
    state: CodexAdapterState,
    ctx: _Context,
    item_type: str,
    *,
    status: StreamItemStatus = "streaming",
    text: str | None = None,
    title: str | None = None,
    data: JsonDict | None = None,
    source_item_id: str | None = None,
) -> tuple[StreamItemAction, str]:
    item_id = _next_item_id(state, item_type)
    item: StreamItem = {
        "id": item_id,
        "type": item_type,
        "status": status,
        "timestamp": ctx.now,
        "data": _compact({**(data or {}), "text": text, "title": title}),
    }
    if ctx.agent_id:
        item["agentId"] = ctx.agent_id
    if source_item_id:
        item["itemId"] = source_item_id
    if ctx.thread_id:
        item["threadId"] = ctx.thread_id
    if ctx.turn_id:
        item["turnId"] = ctx.turn_id
    return create_action(item), item_id


def _ensure_source_item(
    state: CodexAdapterState,
    ctx: _Context,
    actions: list[StreamItemAction],
    source_item_id: str,
    item_type: str,
    title: str,
    data: JsonDict | None = None,
) -> str:
    existing = state.source_items.get(source_item_id)
    if existing:
        return existing
    action, item_id = _create_item(
        state, ctx, item_type, title=title, data=data, source_item_id=source_item_id
    )
    actions.append(action)
    state.source_items[source_item_id] = item_id
    return item_id


def _append_source_text(mapping: dict[str, str], source_id: str, chunk: str, separator: str = "") -> str:
    existing = mapping.get(source_id)
    combined = f"{existing}{separator}{chunk}" if existing else chunk
    mapping[source_id] = combined
    return combined


def _set_latest_command(state: CodexAdapterState, ctx: _Context, stream_id: str) -> None:
    state.latest_command_by_turn[_command_turn_key(ctx)] = stream_id
    _prune_to_limit(state.latest_command_by_turn, MAX_LATEST_COMMAND_STREAM_BY_TURN_ENTRIES)


def _clear_latest_command_if(state: CodexAdapterState, ctx: _Context, stream_id: str) -> None:
    key = _command_turn_key(ctx)
    if state.latest_command_by_turn.get(key) == stream_id:
        del state.latest_command_by_turn[key]


def _set_message_role(state: CodexAdapterState, stream_id: str, role: str) -> None:
    state.message_roles[stream_id] = role
    _prune_to_limit(state.message_roles, MAX_MESSAGE_ROLE_BY_STREAM_ID_ENTRIES)


def _set_active_message(state: CodexAdapterState, ctx: _Context, stream_id: str, role: str | None) -> None:
    state.active_message_by_turn[ctx.turn_key] = stream_id
    state.active_message_by_thread[ctx.thread_key] = stream_id
    if role:
        _set_message_role(state, stream_id, role)


def _clear_active_message(state: CodexAdapterState, stream_id: str) -> None:
    for mapping in (state.active_message_by_turn, state.active_message_by_thread):
        for key in [key for key, value in mapping.items() if value == stream_id]:
            del mapping[key]
    state.message_roles.pop(stream_id, None)


def _message_keys_for_stream(state: CodexAdapterState, stream_id: str) -> list[str]:
    return [
        key
        for key in state.message_text
        if stream_id in (state.active_message_by_turn.get(key), state.active_message_by_thread.get(key))
    ]


def _message_text_for_stream(state: CodexAdapterState, stream_id: str) -> str | None:
    texts = [state.message_text[key] for key in _message_keys_for_stream(state, stream_id)]
    return max(texts, key=len) if texts else None


def _clear_message_text_for_stream(state: CodexAdapterState, stream_id: str) -> None:
    for key in _message_keys_for_stream(state, stream_id):
        del state.message_text[key]


def _message_text_for_keys(state: CodexAdapterState, ctx: _Context) -> str | None:
    return state.message_text.get(ctx.turn_key) or state.message_text.get(ctx.thread_key)


def _set_message_text(state: CodexAdapterState, ctx: _Context, text: str) -> None:
    state.message_text[ctx.turn_key] = text
    state.message_text[ctx.thread_key] = text
    _prune_to_limit(state.message_text, MAX_AGGREGATED_MESSAGE_TEXT_ENTRIES)


def _clear_message_text(state: CodexAdapterState, ctx: _Context) -> None:
    state.message_text.pop(ctx.turn_key, None)
    state.message_text.pop(ctx.thread_key, None)


def _find_active_message_by_text(state: CodexAdapterState, deduped: str) -> str | None:
    """The single active message whose aggregate matches; ambiguity resolves to None."""
    matched = set()
    for key, text in state.message_text.items():
        if dedupe_text_key(text) != deduped:
            continue
        for mapping in (state.active_message_by_turn, state.active_message_by_thread):
            if mapping.get(key):
                matched.add(mapping[key])
    return matched.pop() if len(matched) == 1 else None


def _recent_completed(state: CodexAdapterState, ctx: _Context) -> RecentMessage | None:
    expired = [
        key
        for key, recent in state.recent_completed.items()
        if ctx.now - recent.timestamp > RECENT_COMPLETED_MESSAGE_TTL_MS
    ]
    for key in expired:
        del state.recent_completed[key]
    _prune_to_limit(state.recent_completed, MAX_RECENT_COMPLETED_MESSAGE_ENTRIES)
    candidates = [
        recent
        for recent in (
            state.recent_completed.get(ctx.turn_key),
            state.recent_completed.get(ctx.thread_key),
            state.recent_completed.get(_GLOBAL_MESSAGE_KEY),
        )
        if recent is not None
    ]
    if not candidates:
        return None
    latest = candidates[0]
    for candidate in candidates[1:]:
        if candidate.timestamp > latest.timestamp:
            latest = candidate
    return latest


def _remember_completed(state: CodexAdapterState, ctx: _Context, recent: RecentMessage) -> None:
    for key in (ctx.turn_key, ctx.thread_key, _GLOBAL_MESSAGE_KEY):
        state.recent_completed[key] = recent
    _prune_to_limit(state.recent_completed, MAX_RECENT_COMPLETED_MESSAGE_ENTRIES)


def _is_recent_echo(state: CodexAdapterState, ctx: _Context, role: str | None, deduped: str) -> RecentMessage | None:
    recent = _recent_completed(state, ctx)
    if (
        recent is not None
        and recent.role == role
        and recent.text == deduped
        and ctx.now - recent.timestamp <= DUPLICATE_COMPLETION_TEXT_WINDOW_MS
    ):
        return recent
    return None


def _finish_active_message(state: CodexAdapterState, ctx: _Context, stream_id: str) -> None:
    """Record a completed message for echo suppression and drop its bookkeeping."""
    text = _message_text_for_stream(state, stream_id)
    role = state.message_roles.get(stream_id)
    if text and role:
        _remember_completed(state, ctx, RecentMessage(stream_id, role, dedupe_text_key(text), ctx.now))
    _clear_message_text_for_stream(state, stream_id)
    _clear_active_message(state, stream_id)
    _clear_message_text(state, ctx)


def reconcile_incoming_text(existing: str, incoming: str) -> tuple[str, str]:
    """Return (text_to_append, next_aggregate) for a possibly-cumulative chunk."""
    if not incoming:
        return "", existing
    if not existing:
        return incoming, incoming
    if incoming == existing or existing.endswith(incoming):
        return "", existing
    if incoming.startswith(existing):
        return incoming[len(existing) :], incoming
    return incoming, f"{existing}{incoming}"


# ─── Approvals ───────────────────────────────────────────────────────────────


def _normalize_question(raw: object) -> JsonDict | None:
    record = as_dict(raw)
    if record is None:
        return None
    return _compact(
        {
            "header": read_trimmed_string(record.get("header")),
            "id": read_trimmed_string(record.get("id")),
            "isOther": record.get("isOther") is True,
            "isSecret": record.get("isSecret") is True,
            "options": _as_list(record.get("options")),
            "question": read_trimmed_string(record.get("question")),
        }
    )


def _command_approval(ctx: _Context) -> tuple[str, str, JsonDict]:
    command = command_from_params(ctx.params)
    reason = _param_str(ctx, "reason")
    fields = {
        "approvalId": _param_str(ctx, "approvalId"),
        "command": command,
        "cwd": _param_str(ctx, "cwd"),
        "prompt": reason or command,
        "reason": reason,
        "requiresInput": False,
        "requestType": "command_approval",
    }
    return command or reason or "", "Command approval", fields


def _file_change_approval(ctx: _Context) -> tuple[str, str, JsonDict]:
    reason = _param_str(ctx, "reason")
    grant_root = _param_str(ctx, "grantRoot")
    fields = {
        "grantRoot": grant_root,
        "path": grant_root,
        "prompt": reason or grant_root,
        "reason": reason,
        "requiresInput": False,
        "requestType": "file_change_approval",
    }
    return reason or grant_root or "", "File change approval", fields


def _user_input_request(ctx: _Context) -> tuple[str, str, JsonDict]:
    questions = [q for q in map(_normalize_question, _as_list(_param(ctx, "questions"))) if q is not None]
    text = "\n".join(
        prompt for prompt in (q.get("question") or q.get("header") or "" for q in questions) if prompt
    )
    first = questions[0] if questions else {}
    fields = {
        "inputPlaceholder": first.get("question") or "Type a response",
        "prompt": text,
        "questions": questions,
        "requiresInput": True,
        "requestType": "tool_input_request",
    }
    return text, "User input request", fields


_APPROVAL_BUILDERS: dict[str, Callable[[_Context], tuple[str, str, JsonDict]]] = {
    "item/commandExecution/requestApproval": _command_approval,
    "item/fileChange/requestApproval": _file_change_approval,
    "item/tool/requestUserInput": _user_input_request,
}


def _on_approval_request(state, ctx):
    text, title, fields = _APPROVAL_BUILDERS[ctx.method](ctx)
    data = {
        "params": as_dict(ctx.params),
        "requestId": ctx.request_id,
        "requestMethod": ctx.method,
        "sourceItemId": _param_str(ctx, "itemId"),
        **fields,
    }
    action, _ = _create_item(
        state, ctx, "approval_request", status="complete", text=text or None, title=title, data=data
    )
    return [action]


# ─── Item lifecycle ──────────────────────────────────────────────────────────


def _on_item_started(state, ctx):
    item = as_dict(_param(ctx, "item"))
    if item is None:
        return []
    source_id = read_trimmed_string(item.get("id"))
    raw_type = read_trimmed_string(item.get("type"))
    normalized_type = normalize_thread_item_type(raw_type)
    item_type = map_thread_item_type(raw_type)
    text = thread_item_text(item)
    data = _thread_item_data(item, normalized_type)
    role = _role_from_thread_item_type(raw_type)

    if item_type == "message" and role == "user" and text:
        recent = _is_recent_echo(state, ctx, "user", dedupe_text_key(text))
        if recent is not None:
            if source_id:
                state.source_items[source_id] = recent.id
            return []

    if normalized_type == "commandExecution" and source_id:
        # A legacy exec_command_begin may already have opened this command.
        fallback = state.source_items.get(_scoped_key("command", ctx.thread_id, ctx.turn_id))
        merge_id = fallback or state.latest_command_by_turn.get(_command_turn_key(ctx))
        if merge_id:
            state.source_items[source_id] = merge_id
            _set_latest_command(state, ctx, merge_id)
            output = read_trimmed_string(item.get("aggregatedOutput"))
            if output:
                state.command_output[source_id] = output
            patch_data = _compact({**data, "text": text or None, "title": raw_type})
            return [update_action(merge_id, {"data": patch_data, "itemId": source_id})]

    action, stream_id = _create_item(
        state,
        ctx,
        item_type,
        status="complete" if item_type in ("status", "review_mode") else "streaming",
        text=text or None,
        title=raw_type,
        data=data,
        source_item_id=source_id,
    )

    if source_id:
        state.source_items[source_id] = stream_id
        if normalized_type == "commandExecution":
            _set_latest_command(state, ctx, stream_id)
            output = read_trimmed_string(item.get("aggregatedOutput"))
            if output:
                state.command_output[source_id] = output
        elif item_type == "message" and text:
            _set_message_text(state, ctx, text)
        elif normalized_type == "fileChange":
            delta = read_trimmed_string(item.get("delta")) or read_trimmed_string(item.get("patch"))
            if delta:
                state.file_change_delta[source_id] = delta
        elif normalized_type == "mcpToolCall":
            progress = read_trimmed_string(item.get("message"))
            if progress:
                state.mcp_progress[source_id] = progress
    if item_type == "message":
        _set_active_message(state, ctx, stream_id, role)
    return [action]


def _on_item_completed(state, ctx):
    actions = []
    source_id = _thread_item_id(ctx)
    item = as_dict(_param(ctx, "item"))
    raw_type = read_trimmed_string(item.get("type")) if item else None
    status = completion_status(
        (read_trimmed_string(item.get("status")) if item else None) or status_from_params(ctx.params)
    )
    data = _completion_data(item, raw_type) if item is not None else None
    active_message = state.active_message_by_turn.get(ctx.turn_key) or state.active_message_by_thread.get(
        ctx.thread_key
    )
    completed_target = False

    if source_id:
        mapped = state.source_items.get(source_id)
        if mapped:
            actions.append(complete_action(mapped, status, {"data": data} if data else None))
            completed_target = True
            if active_message == mapped:
                _finish_active_message(state, ctx, mapped)
            if raw_type == "commandExecution":
                _clear_latest_command_if(state, ctx, mapped)
        elif item is not None:
            action, stream_id = _create_item(
                state,
                ctx,
                map_thread_item_type(raw_type),
                status=status or "complete",
                text=thread_item_text(item) or None,
                title=raw_type,
                data=data,
                source_item_id=source_id,
            )
            actions.append(action)
            state.source_items[source_id] = stream_id
            completed_target = True
            if raw_type == "commandExecution":
                _clear_latest_command_if(state, ctx, stream_id)
        state.command_output.pop(source_id, None)
        state.file_change_delta.pop(source_id, None)
        state.mcp_progress.pop(source_id, None)

    if active_message and not completed_target:
        actions.append(complete_action(active_message))
        _finish_active_message(state, ctx, active_message)
    return actions


# ─── Plan / reasoning ────────────────────────────────────────────────────────


def _on_plan_delta(state, ctx):
    actions = []
    source_id = _param_str(ctx, "itemId") or _scoped_key("plan", ctx.thread_id, ctx.turn_id)
    stream_id = _ensure_source_item(state, ctx, actions, source_id, "plan", "Plan")
    delta = codex_text_from_params(ctx.params)
    if delta:
        actions.append(append_text_action(stream_id, delta))
    return actions


def _plan_step_line(step: object) -> str:
    record = as_dict(step) or {}
    return " ".join(
        part for part in (read_trimmed_string(record.get("status")), read_trimmed_string(record.get("step"))) if part
    )


def _on_plan_updated(state, ctx):
    plan = _as_list(_param(ctx, "plan"))
    plan_text = "\n".join(line for line in map(_plan_step_line, plan) if line)
    text = "\n".join(part for part in (_param_str(ctx, "explanation"), plan_text) if part)
    action, _ = _create_item(
        state, ctx, "plan", status="complete", text=text, title="Plan", data={"plan": plan}
    )
    return [action]


def _reasoning_stream_id(state, ctx, actions):
    source_id = _param_str(ctx, "itemId") or _scoped_key("reasoning", ctx.thread_id, ctx.turn_id)
    return _ensure_source_item(state, ctx, actions, source_id, "reasoning", "Reasoning")


def _on_reasoning_delta(state, ctx):
    delta = codex_text_from_params(ctx.params)
    if not delta:
        return []
    actions = []
    stream_id = _reasoning_stream_id(state, ctx, actions)
    actions.append(append_text_action(stream_id, delta))
    return actions


def _on_reasoning_part_added(state, ctx):
    actions = []
    stream_id = _reasoning_stream_id(state, ctx, actions)
    actions.append(append_text_action(stream_id, "\n\n"))
    return actions


# ─── Messages ────────────────────────────────────────────────────────────────


def _on_raw_response_item(state, ctx):
    call = _raw_exec_command_call(ctx)
    if call is None:
        return []
    source_id = call.call_id or _command_source_key(ctx)
    existing = state.source_items.get(source_id)
    if existing:
        _set_latest_command(state, ctx, existing)
        return [update_action(existing, {"data": _compact({"command": call.command, "cwd": call.cwd})})]
    action, stream_id = _create_item(
        state,
        ctx,
        "command_execution",
        text=f"$ {call.command}\n",
        title="Command",
        data={"callId": call.call_id, "command": call.command, "cwd": call.cwd},
        source_item_id=source_id,
    )
    state.source_items[source_id] = stream_id
    _set_latest_command(state, ctx, stream_id)
    return [action]


def _adapt_message_text(state, ctx, text, role, is_complete):
    """Shared path for streamed assistant deltas and complete user messages."""
    if not text:
        return []
    deduped = dedupe_text_key(text)
    if is_complete and _is_recent_echo(state, ctx, role, deduped) is not None:
        return []

    actions = []
    stream_id = state.active_message_by_turn.get(ctx.turn_key)
    if not stream_id and is_complete:
        stream_id = state.active_message_by_thread.get(ctx.thread_key)
    if not stream_id and is_complete and not ctx.thread_id and not ctx.turn_id and role == "user":
        stream_id = _find_active_message_by_text(state, deduped)
    if not stream_id:
        action, stream_id = _create_item(
            state, ctx, "message", data={"role": role} if role else None
        )
        _set_active_message(state, ctx, stream_id, role)
        actions.append(action)

    existing = _message_text_for_keys(state, ctx) or _message_text_for_stream(state, stream_id) or ""
    whitespace_echo = is_complete and bool(existing) and dedupe_text_key(existing) == deduped
    if not whitespace_echo:
        append_text, aggregate = reconcile_incoming_text(existing, text)
        _set_message_text(state, ctx, aggregate)
        if append_text:
            actions.append(append_text_action(stream_id, append_text))

    if is_complete:
        actions.append(complete_action(stream_id))
        _clear_message_text_for_stream(state, stream_id)
        _clear_active_message(state, stream_id)
        _remember_completed(state, ctx, RecentMessage(stream_id, role, deduped, ctx.now))
        _clear_message_text(state, ctx)
    return actions


def _on_agent_message_delta(state, ctx):
    return _adapt_message_text(state, ctx, codex_text_from_params(ctx.params), "assistant", False)


def _on_user_message(state, ctx):
    text = codex_text_from_raw_params(ctx.params) or codex_text_from_params(ctx.params)
    return _adapt_message_text(state, ctx, text, "user", True)


def _on_collab_waiting(state, ctx):
    action, _ = _create_item(state, ctx, "status", status="complete", text="Waiting for collaborator output")
    return [action]


# ─── Commands ────────────────────────────────────────────────────────────────


def _on_exec_command_begin(state, ctx):
    command = command_from_params(ctx.params)
    if not command:
        return []
    source_id = _command_source_key(ctx)
    existing = state.source_items.get(source_id)
    if not existing and not _command_source_id(ctx):
        existing = state.latest_command_by_turn.get(_command_turn_key(ctx))
        if existing:
            state.source_items[source_id] = existing
    if existing:
        _set_latest_command(state, ctx, existing)
        return [update_action(existing, {"data": {"command": command}})]
    action, stream_id = _create_item(
        state,
        ctx,
        "command_execution",
        text=f"$ {command}\n",
        title="Command",
        data={"command": command},
        source_item_id=source_id,
    )
    state.source_items[source_id] = stream_id
    _set_latest_command(state, ctx, stream_id)
    return [action]


def _command_stream_id(state, ctx, actions):
    source_id = _command_source_key(ctx)
    stream_id = _ensure_source_item(
        state,
        ctx,
        actions,
        source_id,
        "command_execution",
        "Command",
        {"command": command_from_params(ctx.params)},
    )
    _set_latest_command(state, ctx, stream_id)
    return source_id, stream_id


def _on_command_output_delta(state, ctx):
    actions = []
    source_id, stream_id = _command_stream_id(state, ctx, actions)
    delta = codex_text_from_params(ctx.params)
    if not delta:
        return actions
    output = _append_source_text(state.command_output, source_id, delta)
    actions.append(append_text_action(stream_id, delta))
    actions.append(update_action(stream_id, {"data": {"output": output, "stdout": output}}))
    return actions


def _on_terminal_interaction(state, ctx):
    actions = []
    source_id, stream_id = _command_stream_id(state, ctx, actions)
    stdin = _param_str(ctx, "stdin")
    interaction = _param_str(ctx, "text")
    process_id = _param_str(ctx, "processId") or _param_str(ctx, "process_id")
    if stdin or interaction:
        line = f"\n[stdin] {stdin}\n" if stdin else f"\n{interaction}\n"
        output = _append_source_text(state.command_output, source_id, line)
        actions.append(append_text_action(stream_id, line))
        patch = {
            "lastTerminalInput": stdin,
            "interaction": interaction,
            "output": output,
            "processId": process_id,
            "stdin": stdin,
            "stdout": output,
            "terminalInput": stdin,
        }
        actions.append(update_action(stream_id, {"data": _compact(patch)}))
    elif process_id:
        actions.append(update_action(stream_id, {"data": {"processId": process_id}}))
    return actions


def _on_exec_command_end(state, ctx):
    source_id = _command_source_key(ctx)
    stream_id = state.source_items.get(source_id)
    status = status_from_params(ctx.params)
    exit_code = exit_code_from_params(ctx.params)
    command = command_from_params(ctx.params)
    output = state.command_output.get(source_id)
    summary = " ".join(
        part
        for part in (
            f"status={status}" if status else None,
            f"exit={exit_code}" if exit_code is not None else None,
        )
        if part
    )
    actions = []
    if not stream_id:
        if not (command or output):
            return []
        action, stream_id = _create_item(
            state,
            ctx,
            "command_execution",
            text=f"$ {command}\n" if command else None,
            title="Command",
            data={"command": command},
            source_item_id=source_id,
        )
        state.source_items[source_id] = stream_id
        actions.append(action)
    _set_latest_command(state, ctx, stream_id)
    if summary:
        actions.append(append_text_action(stream_id, f"\n{summary}\n"))
    patch_data = _compact({"exitCode": exit_code, "output": output, "status": status})
    actions.append(complete_action(stream_id, patch={"data": patch_data} if patch_data else None))
    state.command_output.pop(source_id, None)
    _clear_latest_command_if(state, ctx, stream_id)
    return actions


# ─── File changes / MCP ──────────────────────────────────────────────────────


def _on_file_change_delta(state, ctx):
    actions = []
    source_id = _param_str(ctx, "itemId") or _scoped_key("file-change", ctx.thread_id, ctx.turn_id)
    stream_id = _ensure_source_item(state, ctx, actions, source_id, "file_change", "File change")
    delta = codex_text_from_params(ctx.params)
    if not delta:
        return actions
    combined = _append_source_text(state.file_change_delta, source_id, delta)
    actions.append(update_action(stream_id, {"data": {"delta": combined, "diff": combined, "patch": combined}}))
    return actions


def _on_mcp_progress(state, ctx):
    actions = []
    source_id = _param_str(ctx, "itemId") or _scoped_key("mcp-tool", ctx.thread_id, ctx.turn_id)
    tool = _param_str(ctx, "tool")
    stream_id = _ensure_source_item(
        state,
        ctx,
        actions,
        source_id,
        "mcp_tool_call",
        "MCP tool",
        {"name": tool, "server": _param_str(ctx, "server"), "toolName": tool},
    )
    progress = _param_str(ctx, "message") or codex_text_from_params(ctx.params)
    if not progress:
        return actions
    combined = _append_source_text(state.mcp_progress, source_id, progress, "\n")
    actions.append(update_action(stream_id, {"data": {"message": progress, "progress": combined}}))
    return actions


# ─── Turn / thread surface ───────────────────────────────────────────────────


def _on_error(state, ctx):
    text = codex_text_from_params(ctx.params) or _stringify(ctx.params)
    action, _ = _create_item(state, ctx, "error", status="error", text=text)
    return [action]


def _on_turn_completed(state, ctx):
    if status_from_params(ctx.params) != "failed":
        return []
    action, _ = _create_item(
        state, ctx, "error", status="error", text="Turn failed", data={"params": as_dict(ctx.params)}
    )
    return [action]


def _on_task_done(state, ctx):
    text = "Thread archived" if ctx.method == "thread/archived" else "Task complete"
    action, _ = _create_item(state, ctx, "turn_complete", status="complete", text=text)
    return [action]


def _on_turn_diff(state, ctx):
    diff = _param_str(ctx, "diff") or ""
    action, _ = _create_item(
        state, ctx, "turn_diff", status="complete", data={"diff": diff, "label": "Turn Diff"}
    )
    return [action]


def _on_model_rerouted(state, ctx):
    model = _param_str(ctx, "model") or "unknown"
    action, _ = _create_item(
        state, ctx, "status", status="complete", text=f"Model rerouted to: {model}", data={"model": model}
    )
    return [action]


def _warning(default_text: str):
    def handler(state, ctx):
        text = _param_str(ctx, "message") or default_text
        action, _ = _create_item(state, ctx, "status", status="complete", text=text, data={"level": "warning"})
        return [action]

    return handler


def _on_thread_unarchived(state, ctx):
    action, _ = _create_item(state, ctx, "status", status="complete", text="Thread unarchived")
    return [action]


def _silent(_state, _ctx):
    return []


def _raw_item(state, ctx):
    data = {"method": ctx.method, "params": ctx.params, "requestId": ctx.request_id}
    action, _ = _create_item(state, ctx, "raw_item", status="complete", title=ctx.method, data=data)
    return [action]


_Handler = Callable[[CodexAdapterState, _Context], list[StreamItemAction]]

# [LAW:dataflow-not-control-flow] Method dispatch table
_METHOD_HANDLERS: dict[str, _Handler] = {
    **{method: _on_approval_request for method in _APPROVAL_BUILDERS},
    **{method: _silent for method in LEGACY_MIRROR_NOTIFICATION_METHODS},
    **{method: _silent for method in SILENT_NOTIFICATION_METHODS},
    "item/started": _on_item_started,
    "item/completed": _on_item_completed,
    "item/plan/delta": _on_plan_delta,
    "turn/plan/updated": _on_plan_updated,
    "item/reasoning/summaryTextDelta": _on_reasoning_delta,
    "item/reasoning/textDelta": _on_reasoning_delta,
    "item/reasoning/summaryPartAdded": _on_reasoning_part_added,
    "codex/event/collab_waiting_begin": _on_collab_waiting,
    "item/agentMessage/delta": _on_agent_message_delta,
    "codex/event/user_message": _on_user_message,
    "codex/event/raw_response_item": _on_raw_response_item,
    "codex/event/exec_command_begin": _on_exec_command_begin,
    "item/commandExecution/outputDelta": _on_command_output_delta,
    "codex/event/exec_command_output_delta": _on_command_output_delta,
    "item/commandExecution/terminalInteraction": _on_terminal_interaction,
    "codex/event/terminal_interaction": _on_terminal_interaction,
    "codex/event/exec_command_terminal_interaction": _on_terminal_interaction,
    "codex/event/exec_command_end": _on_exec_command_end,
    "item/fileChange/outputDelta": _on_file_change_delta,
    "item/mcpToolCall/progress": _on_mcp_progress,
    "error": _on_error,
    "turn/completed": _on_turn_completed,
    "codex/event/task_complete": _on_task_done,
    "thread/archived": _on_task_done,
    "turn/diff/updated": _on_turn_diff,
    "model/rerouted": _on_model_rerouted,
    "deprecationNotice": _warning("Deprecation notice"),
    "configWarning": _warning("Configuration warning"),
    "thread/unarchived": _on_thread_unarchived,
}


def adapt_codex_message(
    message: JsonDict,
    state: CodexAdapterState,
    agent_id: str | None = None,
    now: int | None = None,
) -> CodexAdapterResult:
    """Reduce one JSON-RPC message (`{id?, method, params?}`) to actions plus the next state."""
    next_state = state.clone()
    method = message.get("method")
    if not isinstance(method, str) or not method:
        return CodexAdapterResult([], next_state)
    params = as_dict(message.get("params"))
    ctx = _Context(
        method=method,
        params=params,
        request_id=message.get("id"),
        agent_id=agent_id,
        thread_id=thread_id_from_params(params),
        turn_id=turn_id_from_params(params),
        now=now if now is not None else int(time.time() * 1000),
    )
    handler = _METHOD_HANDLERS.get(method, _raw_item)
    return CodexAdapterResult(handler(next_state, ctx), next_state)
