"""Protocol-A (claude relay) stream adapter.

Turns relay messages (stream_event, assistant/user, control_request, result,
status) into StreamItemActions. Streaming blocks are keyed by turn and block
index, so a non-streamed assistant echo that follows message_stop lands on
the same item id as the deltas that preceded it.

// [LAW:one-source-of-truth] Item ids are derived from (session, turn, block index).
// [LAW:dataflow-not-control-flow] Message and stream-event dispatch go through tables.

The reducer clones its state on entry and returns the clone; callers' state
objects are never mutated.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from agent_stream.pipeline.stream_items import (
    StreamItem,
    StreamItemAction,
    StreamItemStatus,
    complete_action,
    create_action,
    upsert_action,
)
from agent_stream.protocol.codex_rpc import JsonDict, as_dict, read_trimmed_string
from agent_stream.protocol.parsing import (
    claude_block_index,
    claude_delta_text,
    claude_session_id,
    is_claude_init_message,
    to_claude_stream_event,
    unwrap_claude_raw_message,
)


# ─── State ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class BlockBuffer:
    """Accumulated content for one streamed block."""

    partial_json: str = ""
    text: str = ""
    thinking: str = ""


@dataclass
class ClaudeAdapterState:
    active_block_ids: dict[int, str] = field(default_factory=dict)
    block_buffers: dict[str, BlockBuffer] = field(default_factory=dict)
    block_types: dict[str, str] = field(default_factory=dict)
    next_synthetic_id: int = 1
    turn_index: int = 0
    turn_open: bool = False

    def clone(self) -> "ClaudeAdapterState":
        return ClaudeAdapterState(
            active_block_ids=dict(self.active_block_ids),
            block_buffers=dict(self.block_buffers),
            block_types=dict(self.block_types),
            next_synthetic_id=self.next_synthetic_id,
            turn_index=self.turn_index,
            turn_open=self.turn_open,
        )


@dataclass(frozen=True)
class ClaudeAdapterResult:
    actions: list[StreamItemAction]
    state: ClaudeAdapterState


@dataclass(frozen=True)
class _Context:
    """Per-call values shared by every handler."""

    prefix: str
    timestamp: int
    agent_id: str | None
    session_id: str | None


_BLOCK_ITEM_TYPES = {
    "text": "message",
    "thinking": "thinking",
    "tool_use": "tool_call",
    "tool_result": "tool_result",
}

_DELTA_ITEM_TYPES = {
    "thinking_delta": "thinking",
    "input_json_delta": "tool_call",
}


# ─── Helpers ─────────────────────────────────────────────────────────────────


def _block_item_type(block_type: str | None) -> str:
    return _BLOCK_ITEM_TYPES.get(block_type or "", "raw_item")


def _delta_item_type(delta_type: str | None) -> str:
    return _DELTA_ITEM_TYPES.get(delta_type or "", "message")


def _turn_id(turn_index: int | None) -> str | None:
    return f"claude-turn-{turn_index}" if turn_index else None


def _block_id(ctx: _Context, turn_index: int, block_index: int) -> str:
    return f"{ctx.prefix}:turn:{turn_index}:block:{block_index}"


def _synthetic_id(state: ClaudeAdapterState, prefix: str) -> str:
    item_id = f"{prefix}:{state.next_synthetic_id}"
    state.next_synthetic_id += 1
    return item_id


def _make_item(
    ctx: _Context,
    item_id: str,
    item_type: str,
    status: StreamItemStatus,
    data: JsonDict,
    turn_index: int | None = None,
) -> StreamItem:
    item: StreamItem = {
        "id": item_id,
        "type": item_type,
        "status": status,
        "timestamp": ctx.timestamp,
        "itemId": item_id,
        "data": {
            key: value
            for key, value in {**data, "sessionId": ctx.session_id}.items()
            if value is not None
        },
    }
    if ctx.agent_id:
        item["agentId"] = ctx.agent_id
    turn_id = _turn_id(turn_index)
    if turn_id:
        item["turnId"] = turn_id
    return item


def _open_turn_index(state: ClaudeAdapterState) -> int | None:
    return state.turn_index if state.turn_open else None


def _start_turn(state: ClaudeAdapterState) -> None:
    state.turn_index += 1
    state.turn_open = True
    state.active_block_ids = {}


def _ensure_turn(state: ClaudeAdapterState) -> int:
    if not state.turn_open:
        _start_turn(state)
    return state.turn_index


def _complete_active_blocks(state: ClaudeAdapterState) -> list[StreamItemAction]:
    return [complete_action(item_id) for item_id in state.active_block_ids.values()]


def _raw_item(state: ClaudeAdapterState, ctx: _Context, payload: object) -> StreamItemAction:
    item_id = _synthetic_id(state, f"{ctx.prefix}:raw")
    return create_action(
        _make_item(ctx, item_id, "raw_item", "complete", {"raw": payload}, _open_turn_index(state))
    )


def _buffer_with_delta(current: BlockBuffer, delta: JsonDict) -> BlockBuffer:
    delta_type = read_trimmed_string(delta.get("type"))
    if delta_type == "input_json_delta":
        partial = delta.get("partial_json")
        return BlockBuffer(
            partial_json=current.partial_json + (partial if isinstance(partial, str) else ""),
            text=current.text,
            thinking=current.thinking,
        )
    text = current.text + claude_delta_text(delta)
    if delta_type == "thinking_delta":
        thinking = delta.get("thinking")
        return BlockBuffer(
            partial_json=current.partial_json,
            text=text,
            thinking=current.thinking + (thinking if isinstance(thinking, str) else ""),
        )
    return BlockBuffer(partial_json=current.partial_json, text=text, thinking=current.thinking)


# ─── Stream events ───────────────────────────────────────────────────────────


def _on_message_start(state, ctx, _event):
    actions = _complete_active_blocks(state)
    _start_turn(state)
    return actions


def _on_message_stop(state, ctx, _event):
    # The turn stays open so a trailing assistant echo or result reuses its index.
    actions = _complete_active_blocks(state)
    state.active_block_ids = {}
    return actions


def _on_block_start(state, ctx, event):
    turn_index = _ensure_turn(state)
    block_index = claude_block_index(event)
    if block_index is None:
        return [_raw_item(state, ctx, event)]

    block = as_dict(event.get("content_block")) or {}
    block_type = read_trimmed_string(block.get("type"))
    item_type = _block_item_type(block_type)
    item_id = _block_id(ctx, turn_index, block_index)
    state.active_block_ids[block_index] = item_id
    state.block_types[item_id] = item_type
    state.block_buffers[item_id] = BlockBuffer()

    data = {
        "blockIndex": block_index,
        "blockType": block_type,
        "name": read_trimmed_string(block.get("name")),
        "streamEventType": event.get("type"),
    }
    return [create_action(_make_item(ctx, item_id, item_type, "streaming", data, turn_index))]


def _on_block_delta(state, ctx, event):
    turn_index = _ensure_turn(state)
    block_index = claude_block_index(event)
    if block_index is None:
        return [_raw_item(state, ctx, event)]

    item_id = state.active_block_ids.get(block_index) or _block_id(ctx, turn_index, block_index)
    state.active_block_ids[block_index] = item_id

    delta = as_dict(event.get("delta")) or {}
    buffer = _buffer_with_delta(state.block_buffers.get(item_id, BlockBuffer()), delta)
    state.block_buffers[item_id] = buffer

    delta_type = read_trimmed_string(delta.get("type"))
    item_type = state.block_types.get(item_id) or _delta_item_type(delta_type)
    state.block_types[item_id] = item_type

    data = {
        "blockIndex": block_index,
        "deltaType": delta_type,
        "partialJson": buffer.partial_json,
        "text": buffer.text,
        "thinking": buffer.thinking,
        "streamEventType": event.get("type"),
    }
    return [upsert_action(_make_item(ctx, item_id, item_type, "streaming", data, turn_index))]


def _on_block_stop(state, ctx, event):
    _ensure_turn(state)
    block_index = claude_block_index(event)
    item_id = state.active_block_ids.pop(block_index, None) if block_index is not None else None
    if item_id is None:
        return [_raw_item(state, ctx, event)]
    return [complete_action(item_id)]


_StreamHandler = Callable[[ClaudeAdapterState, _Context, JsonDict], list[StreamItemAction]]

# [LAW:dataflow-not-control-flow] Stream event dispatch table
_STREAM_EVENT_HANDLERS: dict[str, _StreamHandler] = {
    "message_start": _on_message_start,
    "message_stop": _on_message_stop,
    "content_block_start": _on_block_start,
    "content_block_delta": _on_block_delta,
    "content_block_stop": _on_block_stop,
}


def _message_type(message: JsonDict) -> str:
    msg_type = message.get("type")
    return msg_type if isinstance(msg_type, str) else ""


def _adapt_stream_event(state, ctx, event):
    handler = _STREAM_EVENT_HANDLERS.get(_message_type(event))
    if handler is None:
        _ensure_turn(state)
        return [_raw_item(state, ctx, event)]
    return handler(state, ctx, event)


# ─── Top-level messages ──────────────────────────────────────────────────────


def _on_content_message(state, ctx, message):
    """Non-streamed assistant/user payload: one complete item per block."""
    envelope = as_dict(message.get("message")) or {}
    content = envelope.get("content")
    if not isinstance(content, list) or not content:
        return [_raw_item(state, ctx, message)]

    turn_index = _ensure_turn(state)
    actions = []
    for index, raw_block in enumerate(content):
        block = as_dict(raw_block) or {}
        block_type = read_trimmed_string(block.get("type"))
        item_type = _block_item_type(block_type)
        # Reuse the streamed id so the echo merges instead of duplicating.
        item_id = state.active_block_ids.pop(index, None) or _block_id(ctx, turn_index, index)
        text = block.get("text")
        block_input = block.get("input")
        state.block_types[item_id] = item_type
        state.block_buffers[item_id] = BlockBuffer(
            partial_json=block_input if isinstance(block_input, str) else "",
            text=text if isinstance(text, str) else "",
            thinking=text if block_type == "thinking" and isinstance(text, str) else "",
        )
        data = {
            "blockIndex": index,
            "blockType": block_type,
            "content": block.get("content"),
            "input": block_input,
            "name": block.get("name"),
            "text": text,
            "raw": raw_block,
        }
        actions.append(upsert_action(_make_item(ctx, item_id, item_type, "complete", data, turn_index)))
    return actions


def _on_control_request(state, ctx, message):
    request = as_dict(message.get("request")) or {}
    subtype = read_trimmed_string(request.get("subtype"))
    if subtype in ("init", "initialize"):
        return []
    if subtype != "can_use_tool":
        return [_raw_item(state, ctx, message)]

    request_id = read_trimmed_string(message.get("request_id"))
    synthetic = _synthetic_id(state, f"{ctx.prefix}:control")
    item_id = f"{ctx.prefix}:control:{request_id}" if request_id else synthetic
    data = {
        "request": message.get("request"),
        "requestId": request_id,
        "requestType": subtype,
        "requiresInput": False,
        "subtype": subtype,
        "toolName": read_trimmed_string(request.get("tool_name")),
    }
    return [
        create_action(
            _make_item(ctx, item_id, "approval_request", "streaming", data, _open_turn_index(state))
        )
    ]


def _on_result(state, ctx, message):
    actions = _complete_active_blocks(state)
    turn_index = _ensure_turn(state)
    is_error = message.get("is_error") is True
    state.turn_open = False
    state.active_block_ids = {}
    data = {
        "costUsd": message.get("cost_usd"),
        "durationMs": message.get("duration_ms"),
        "isError": is_error,
        "result": message.get("result"),
    }
    item = _make_item(
        ctx,
        f"{ctx.prefix}:turn:{turn_index}:result",
        "turn_complete",
        "error" if is_error else "complete",
        data,
        turn_index,
    )
    actions.append(create_action(item))
    return actions


def _on_status(state, ctx, message):
    item_id = _synthetic_id(state, f"{ctx.prefix}:status")
    data = {
        "content": read_trimmed_string(message.get("content")),
        "text": read_trimmed_string(message.get("text")),
    }
    return [create_action(_make_item(ctx, item_id, "status", "complete", data, _open_turn_index(state)))]


# [LAW:dataflow-not-control-flow] Message type dispatch table
_MESSAGE_HANDLERS: dict[str, _StreamHandler] = {
    "assistant": _on_content_message,
    "user": _on_content_message,
    "control_request": _on_control_request,
    "result": _on_result,
    "status": _on_status,
}


def adapt_claude_stream_message(
    raw_message: JsonDict,
    state: ClaudeAdapterState,
    agent_id: str | None = None,
    now: int | None = None,
) -> ClaudeAdapterResult:
    """Reduce one relay message to stream-item actions plus the next state."""
    next_state = state.clone()
    message = unwrap_claude_raw_message(raw_message)
    session_id = claude_session_id(message)
    ctx = _Context(
        prefix=f"claude:{session_id}" if session_id else "claude",
        timestamp=now if now is not None else int(time.time() * 1000),
        agent_id=agent_id,
        session_id=session_id,
    )

    stream_event = to_claude_stream_event(message)
    if stream_event is not None:
        return ClaudeAdapterResult(_adapt_stream_event(next_state, ctx, stream_event), next_state)

    if is_claude_init_message(message):
        return ClaudeAdapterResult([], next_state)

    handler = _MESSAGE_HANDLERS.get(_message_type(message))
    if handler is None:
        return ClaudeAdapterResult([_raw_item(next_state, ctx, message)], next_state)
    return ClaudeAdapterResult(handler(next_state, ctx, message), next_state)
