"""JSON-RPC field helpers for the codex thread protocol.

Codex servers speak two dialects at once (legacy `codex/event/*` mirrors and
the newer `item/*`, `turn/*`, `thread/*` notifications) and spell the same
field several ways. Every accessor here resolves one field through a fixed
alias priority list and returns None when nothing usable is present.

// [LAW:single-enforcer] All alias resolution for codex params/results lives here.
// [LAW:one-source-of-truth] Method catalogues used by routing and projection.
"""

import math
import re


JsonDict = dict[str, object]

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


# ─── Method catalogues ────────────────────────────────────────────────────────

OUTPUT_NOTIFICATION_METHODS = frozenset(
    {
        "item/agentMessage/delta",
        "codex/event/agent_message_delta",
        "codex/event/agent_message_content_delta",
        "codex/event/agent_message",
        "codex/event/raw_response_item",
        "codex/event/user_message",
        "item/completed",
        "codex/event/item_completed",
        "rawResponseItem/completed",
        "item/commandExecution/outputDelta",
        "codex/event/exec_command_output_delta",
        "codex/event/exec_command_begin",
        "codex/event/exec_command_end",
    }
)

TASK_DONE_METHODS = frozenset({"codex/event/task_complete", "thread/archived"})

STRUCTURED_NOTIFICATION_METHODS = frozenset(
    {
        "item/reasoning/summaryTextDelta",
        "item/reasoning/summaryPartAdded",
        "item/reasoning/textDelta",
        "codex/event/agent_reasoning",
        "codex/event/agent_reasoning_delta",
        "codex/event/reasoning_content_delta",
        "codex/event/agent_reasoning_section_break",
        "item/started",
        "codex/event/item_started",
        "item/plan/delta",
        "turn/plan/updated",
        "codex/event/collab_waiting_begin",
        "item/commandExecution/requestApproval",
        "item/commandExecution/terminalInteraction",
        "codex/event/terminal_interaction",
        "item/fileChange/outputDelta",
        "item/fileChange/requestApproval",
        "item/mcpToolCall/progress",
        "item/tool/requestUserInput",
        "turn/diff/updated",
        "model/rerouted",
        "deprecationNotice",
        "configWarning",
        "thread/unarchived",
    }
)

# Turn-scoped events that are dropped rather than buffered when no agent owns
# the turn yet.
NON_BUFFERED_TURN_METHODS = frozenset(
    {
        "account/rateLimits/updated",
        "thread/tokenUsage/updated",
        "codex/event/token_count",
        "codex/event/mcp_startup_update",
        "codex/event/mcp_startup_complete",
        "codex/event/shutdown_complete",
        "thread/archived",
        "turn/completed",
        "codex/event/task_complete",
    }
)

KNOWN_SERVER_REQUEST_METHODS = frozenset(
    {
        "item/commandExecution/requestApproval",
        "item/fileChange/requestApproval",
        "item/tool/requestUserInput",
    }
)

_ITEM_MESSAGE_METHODS = frozenset(
    {
        "item/agentMessage/delta",
        "item/completed",
        "item/commandExecution/outputDelta",
        "item/reasoning/summaryTextDelta",
        "item/reasoning/textDelta",
        "item/reasoning/summaryPartAdded",
        "item/plan/delta",
        "item/commandExecution/terminalInteraction",
        "item/fileChange/outputDelta",
        "item/mcpToolCall/progress",
        "item/commandExecution/requestApproval",
        "item/fileChange/requestApproval",
        "item/tool/requestUserInput",
        "item/started",
    }
)


def is_codex_item_message(method: str | None) -> bool:
    """True for item-scoped notifications that may fall back to turn routing."""
    return bool(method) and method in _ITEM_MESSAGE_METHODS


# ─── Scalar narrowing ─────────────────────────────────────────────────────────


def as_dict(value: object) -> JsonDict | None:
    """Narrow to a JSON object, or None."""
    return value if isinstance(value, dict) else None


def read_trimmed_string(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def read_number(value: object) -> int | None:
    """Finite number, or the leading integer of a numeric string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        if match:
            return int(match.group(1))
    return None


def _normalize_command(value: object) -> str | None:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, list) and value and all(isinstance(v, str) for v in value):
        return " ".join(value).strip() or None
    return None


def _nested_id(params: JsonDict, key: str) -> str | None:
    nested = as_dict(params.get(key))
    return read_trimmed_string(nested.get("id")) if nested else None


# ─── Params accessors ─────────────────────────────────────────────────────────


def turn_id_from_params(params: JsonDict | None) -> str | None:
    if not params:
        return None
    return (
        read_trimmed_string(params.get("turnId"))
        or read_trimmed_string(params.get("turn_id"))
        or _nested_id(params, "turn")
    )


def thread_id_from_params(params: JsonDict | None) -> str | None:
    """Thread id, falling back to the legacy conversation aliases."""
    if not params:
        return None
    return (
        read_trimmed_string(params.get("threadId"))
        or read_trimmed_string(params.get("thread_id"))
        or _nested_id(params, "thread")
        or read_trimmed_string(params.get("conversationId"))
        or read_trimmed_string(params.get("conversation_id"))
        or _nested_id(params, "conversation")
    )


def thread_name_from_params(params: JsonDict | None) -> str | None:
    if not params:
        return None
    return read_trimmed_string(params.get("threadName")) or read_trimmed_string(
        params.get("thread_name")
    )


_COMMAND_KEYS = (
    "command",
    "cmd",
    "args",
    "argv",
    "commandLine",
    "command_line",
    "line",
    "input",
)


def command_from_params(params: JsonDict | None) -> str | None:
    if not params:
        return None
    for key in _COMMAND_KEYS:
        command = _normalize_command(params.get(key))
        if command:
            return command
    return None


def status_from_params(params: JsonDict | None) -> str | None:
    return read_trimmed_string(params.get("status")) if params else None


def exit_code_from_params(params: JsonDict | None) -> int | None:
    if not params:
        return None
    code = read_number(params.get("exitCode"))
    if code is None:
        code = read_number(params.get("exit_code"))
    return code


# ─── Result accessors ─────────────────────────────────────────────────────────


def thread_id_from_result(result: object) -> str | None:
    record = as_dict(result)
    if record is None:
        return None
    return _nested_id(record, "thread") or read_trimmed_string(record.get("id"))


def turn_id_from_result(result: object) -> str | None:
    record = as_dict(result)
    if record is None:
        return None
    return _nested_id(record, "turn") or read_trimmed_string(record.get("id"))


def loaded_thread_ids_from_result(result: object) -> list[str]:
    record = as_dict(result)
    data = record.get("data") if record else None
    if not isinstance(data, list):
        return []
    return [value for value in data if isinstance(value, str)]


def thread_preview_from_result(result: object) -> str | None:
    record = as_dict(result)
    thread = as_dict(record.get("thread")) if record else None
    return read_trimmed_string(thread.get("preview")) if thread else None


def unsubscribe_status_from_result(result: object) -> str | None:
    record = as_dict(result)
    return read_trimmed_string(record.get("status")) if record else None
