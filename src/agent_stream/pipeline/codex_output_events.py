"""Projection of codex notifications onto plain-text output events.

Every text-bearing notification becomes an `item/agentMessage/delta` event
for reduce_codex_output; completions become `item/completed`. Command
activity is rendered inline as `[tool]` lines.
"""

from dataclasses import dataclass, field

from agent_stream.pipeline.output_projection import CodexOutputEvent
from agent_stream.protocol.codex_rpc import (
    JsonDict,
    command_from_params,
    exit_code_from_params,
    status_from_params,
)
from agent_stream.protocol.parsing import codex_text_from_params, codex_text_from_raw_params


DELTA_METHOD = "item/agentMessage/delta"
COMPLETED_METHOD = "item/completed"

_LEGACY_MESSAGE_METHODS = frozenset(
    {
        "codex/event/agent_message_delta",
        "codex/event/agent_message_content_delta",
        "codex/event/agent_message",
    }
)
_RAW_MESSAGE_METHODS = frozenset({"codex/event/raw_response_item", "codex/event/user_message"})
_COMPLETED_METHODS = frozenset({"item/completed", "codex/event/item_completed", "rawResponseItem/completed"})
_COMMAND_OUTPUT_METHODS = frozenset(
    {"item/commandExecution/outputDelta", "codex/event/exec_command_output_delta"}
)


@dataclass(frozen=True)
class MissingTextInfo:
    """Shape of a text-bearing notification whose text could not be found."""

    keys: str
    method: str
    msg_keys: str
    msg_type: str


@dataclass(frozen=True)
class CodexOutputProjection:
    events: list[CodexOutputEvent] = field(default_factory=list)
    missing_text: MissingTextInfo | None = None


def _json_type_name(value: object) -> str:
    if value is None:
        return "undefined"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    return "string" if isinstance(value, str) else type(value).__name__


def missing_text_info(method: str, params: JsonDict | None) -> MissingTextInfo:
    raw_msg = (params or {}).get("msg")
    msg_type = _json_type_name(raw_msg)
    msg_keys = ",".join(raw_msg) if isinstance(raw_msg, dict) and raw_msg else "-"
    return MissingTextInfo(
        keys=",".join(params or {}) or "-",
        method=method,
        msg_keys=msg_keys or "-",
        msg_type=msg_type,
    )


def _readable(text: str) -> str:
    if not text:
        return ""
    return text if text.endswith("\n") else f"{text}\n"


def _delta(text: str, method: str, thread_id: str | None) -> CodexOutputEvent:
    event: CodexOutputEvent = {"method": DELTA_METHOD, "sourceMethod": method, "text": text}
    if thread_id:
        event["threadId"] = thread_id
    return event


def _tool_begin(method, params, thread_id):
    command = command_from_params(params) or "(command unavailable)"
    return CodexOutputProjection([_delta(f"\n[tool] `$ {command}`\n", method, thread_id)])


def _tool_output(method, params, thread_id):
    text = codex_text_from_params(params)
    return CodexOutputProjection(
        [_delta(_readable(text), method, thread_id)],
        None if text else missing_text_info(method, params),
    )


def _tool_end(method, params, thread_id):
    status = status_from_params(params)
    exit_code = exit_code_from_params(params)
    status_text = f" {status}" if status else ""
    exit_text = f" (exit {exit_code})" if exit_code is not None else ""
    return CodexOutputProjection([_delta(f"[tool] done{status_text}{exit_text}\n", method, thread_id)])


def project_codex_output_from_notification(
    method: str | None,
    params: JsonDict | None,
    thread_id: str | None = None,
) -> CodexOutputProjection:
    if not method:
        return CodexOutputProjection()
    if method == DELTA_METHOD or method in _LEGACY_MESSAGE_METHODS:
        return CodexOutputProjection([_delta(codex_text_from_params(params), method, thread_id)])
    if method in _RAW_MESSAGE_METHODS:
        text = codex_text_from_raw_params(params) or codex_text_from_params(params)
        return CodexOutputProjection(
            [_delta(_readable(text), method, thread_id)],
            None if text else missing_text_info(method, params),
        )
    if method in _COMPLETED_METHODS:
        return CodexOutputProjection([{"method": COMPLETED_METHOD}])
    if method == "codex/event/exec_command_begin":
        return _tool_begin(method, params, thread_id)
    if method in _COMMAND_OUTPUT_METHODS:
        return _tool_output(method, params, thread_id)
    if method == "codex/event/exec_command_end":
        return _tool_end(method, params, thread_id)
    return CodexOutputProjection()
