"""Plain-text scrollback projection for both protocols.

A simpler sibling of the stream-item adapters: it folds the same wire events
into one transcript string per agent. States are frozen values; each reducer
returns a new OutputResult.

// [LAW:single-enforcer] Message boundaries are inserted only via _mark_boundary / append_pretty_message_boundary.
"""

from dataclasses import dataclass, replace
from typing import TypedDict

from agent_stream.protocol.codex_rpc import JsonDict, as_dict
from agent_stream.protocol.parsing import (
    append_pretty_message_boundary,
    claude_block_index,
    claude_completed_text,
    claude_delta_text,
    normalize_stream_text,
    to_claude_stream_event,
)


# ─── Types ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ClaudeOutputState:
    active_block_index: int | None = None
    pending_break: bool = False
    streamed_delta: bool = False
    turn_start_index: int | None = None


@dataclass(frozen=True)
class CodexOutputState:
    active_thread_id: str | None = None
    last_assistant_delta_text: str | None = None
    last_completed_message_text: str | None = None
    open_assistant_message: bool = False
    primary_thread_id: str | None = None


class CodexOutputEvent(TypedDict, total=False):
    method: str
    sourceMethod: str
    text: str
    threadId: str


@dataclass(frozen=True)
class OutputResult:
    output: str
    state: ClaudeOutputState | CodexOutputState


# ─── Claude ──────────────────────────────────────────────────────────────────


def _append_claude_text(output, state, text):
    normalized = normalize_stream_text(text)
    if not normalized:
        return output, state
    turn_start = state.turn_start_index
    if state.pending_break or turn_start is None:
        turn_start = len(output)
    return f"{output}{normalized}", replace(state, pending_break=False, turn_start_index=turn_start)


def _mark_boundary(output, state, pretty_mode):
    if pretty_mode:
        output = append_pretty_message_boundary(output)
    return output, replace(state, pending_break=True)


def _boundary_on_block_change(output, state, next_index, pretty_mode):
    if next_index is None:
        return output, state
    if (
        state.active_block_index is not None
        and state.active_block_index != next_index
        and state.streamed_delta
    ):
        output, state = _mark_boundary(output, state, pretty_mode)
    return output, replace(state, active_block_index=next_index)


def _reconcile_claude_turn(output, state, text):
    """Replace the current turn's streamed text with the final text when they differ."""
    normalized = normalize_stream_text(text)
    if not normalized or state.turn_start_index is None:
        return output
    before = output[: state.turn_start_index]
    if output[state.turn_start_index :] == normalized:
        return output
    return f"{before}{normalized}"


def _reduce_claude_stream_event(output, state, event, pretty_mode):
    event_type = event.get("type")

    if event_type == "message_start" and state.streamed_delta:
        output, state = _mark_boundary(output, state, pretty_mode)

    if event_type in ("content_block_start", "content_block_delta"):
        next_index = claude_block_index(event)
        if event_type == "content_block_start" and next_index is None and state.streamed_delta:
            output, state = _mark_boundary(output, state, pretty_mode)
        output, state = _boundary_on_block_change(output, state, next_index, pretty_mode)

    if event_type == "content_block_delta":
        text = claude_delta_text(event.get("delta"))
        if text:
            output, state = _append_claude_text(output, state, text)
            state = replace(state, streamed_delta=True)

    if event_type == "content_block_stop":
        if state.streamed_delta:
            output, state = _mark_boundary(output, state, pretty_mode)
        state = replace(state, active_block_index=None)

    if event_type == "message_stop":
        output, state = _mark_boundary(output, state, pretty_mode)
        state = replace(state, active_block_index=None)

    return OutputResult(output, state)


def reduce_claude_output(
    output: str,
    state: ClaudeOutputState,
    msg: JsonDict,
    pretty_mode: bool = True,
) -> OutputResult:
    stream_event = to_claude_stream_event(msg)
    if stream_event is not None:
        return _reduce_claude_stream_event(output, state, stream_event, pretty_mode)

    msg_type = msg.get("type")
    if msg_type == "assistant":
        envelope = as_dict(msg.get("message")) or {}
        completed = claude_completed_text(envelope.get("content"))
        if state.streamed_delta:
            if completed:
                output = _reconcile_claude_turn(output, state, completed)
            return OutputResult(*_mark_boundary(output, state, pretty_mode))
        if completed:
            output, state = _append_claude_text(output, state, completed)
            return OutputResult(*_mark_boundary(output, state, pretty_mode))
        return OutputResult(output, state)

    if msg_type == "result":
        output, state = _mark_boundary(output, state, pretty_mode)
        state = replace(state, streamed_delta=False, active_block_index=None, turn_start_index=None)
        return OutputResult(output, state)

    return OutputResult(output, state)


# ─── Codex ───────────────────────────────────────────────────────────────────

# Sources that carry a whole message rather than a delta; a repeat of the
# last completed text from one of these is an echo.
COMPLETE_MESSAGE_SOURCE_METHODS = frozenset(
    {
        "codex/event/agent_message",
        "codex/event/raw_response_item",
        "codex/event/user_message",
    }
)


def _codex_thread_transition(output, state, thread_id):
    if not thread_id:
        return output, state
    previous = state.active_thread_id
    next_state = state
    if not next_state.primary_thread_id:
        next_state = replace(next_state, primary_thread_id=thread_id)
    if thread_id == previous:
        return output, next_state
    next_state = replace(next_state, active_thread_id=thread_id)
    is_subagent = thread_id != next_state.primary_thread_id
    is_return = not is_subagent and previous is not None
    if is_subagent:
        return f"{output}\n\n---\n**[subagent {thread_id[:8]}]**\n\n", next_state
    if is_return:
        return f"{output}\n\n---\n\n", next_state
    return output, next_state


def _reduce_codex_delta(output, state, event):
    normalized = normalize_stream_text(event.get("text") or "")
    if not normalized:
        return OutputResult(output, state)
    dedupe_text = normalized.rstrip()
    thread_id = event.get("threadId")
    is_replay = (
        not state.open_assistant_message
        and state.last_completed_message_text == dedupe_text
        and event.get("sourceMethod") in COMPLETE_MESSAGE_SOURCE_METHODS
        and (not thread_id or thread_id == state.active_thread_id)
    )
    if is_replay:
        return OutputResult(output, replace(state, last_completed_message_text=None))
    if (
        state.open_assistant_message
        and state.last_assistant_delta_text is not None
        and state.last_assistant_delta_text.rstrip() == dedupe_text
    ):
        return OutputResult(output, state)
    output, state = _codex_thread_transition(output, state, thread_id)
    return OutputResult(
        f"{output}{normalized}",
        replace(
            state,
            last_assistant_delta_text=normalized,
            last_completed_message_text=None,
            open_assistant_message=True,
        ),
    )


def _reduce_codex_completed(output, state, pretty_mode):
    if not state.open_assistant_message:
        return OutputResult(output, state)
    last = state.last_assistant_delta_text
    return OutputResult(
        append_pretty_message_boundary(output) if pretty_mode else output,
        replace(
            state,
            last_assistant_delta_text=None,
            last_completed_message_text=last.rstrip() if last is not None else None,
            open_assistant_message=False,
        ),
    )


def reduce_codex_output(
    output: str,
    state: CodexOutputState,
    event: CodexOutputEvent,
    pretty_mode: bool = True,
) -> OutputResult:
    method = event.get("method")
    if method == "item/agentMessage/delta":
        return _reduce_codex_delta(output, state, event)
    if method == "item/completed":
        return _reduce_codex_completed(output, state, pretty_mode)
    return OutputResult(output, state)
