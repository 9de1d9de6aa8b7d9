"""Wire-message parsing primitives shared by both protocol adapters.

Payloads arrive as loosely-typed JSON. Everything here is total over
arbitrary input: absent or malformed fields produce "" or None, never an
exception. Recursive walkers are depth-capped so cyclic or huge payloads
cannot blow the stack.

// [LAW:single-enforcer] Text/session extraction from raw payloads happens here only.

This module is STABLE and has no agent_stream imports beyond protocol helpers.
"""

import json
import re

from agent_stream.protocol.codex_rpc import JsonDict, as_dict


MAX_NESTED_DEPTH = 8
_MAX_RAW_UNWRAP = 4

_STREAM_NEWLINE = re.compile(r"\r\n?")
_OPAQUE_TOKEN = re.compile(r"^[A-Za-z0-9+/_=-]+$")
_OPAQUE_TOKEN_MIN_LENGTH = 80
_OPAQUE_TOKEN_PREFIX = "gAAAAA"

_RAW_TEXT_PART_TYPES = frozenset({"output_text", "input_text", "text"})
_RAW_MSG_ORDERED_KEYS = (
    "msg",
    "delta",
    "text",
    "summaryText",
    "summary_text",
    "output_text",
    "input_text",
    "content",
    "message",
    "item",
    "event",
    "payload",
    "response",
    "data",
)
_NESTED_TEXT_KEYS = ("delta", "text", "content", "summaryText", "message")
_PARAM_TEXT_KEYS = (
    "delta",
    "text",
    "content",
    "summaryText",
    "input",
    "message",
    "response",
    "payload",
    "event",
    "item",
    "data",
)
_SESSION_CONTAINER_KEYS = ("data", "payload", "message", "event", "item", "result")

CLAUDE_STREAM_EVENT_TYPES = frozenset(
    {
        "message_start",
        "message_stop",
        "content_block_start",
        "content_block_delta",
        "content_block_stop",
    }
)

# Fallback patterns for lines that are not valid JSON.
CLAUDE_SESSION_LINE_REGEX = re.compile(
    r"session(?:_id|Id)?(?:[\"'=\s:]+)([a-z0-9._-]{8,})", re.IGNORECASE
)
CLAUDE_INIT_LINE_REGEX = re.compile(
    r"\[(?:init|system/init)\]|\bsubtype[\"'=\s:]+init\b", re.IGNORECASE
)
CODEX_THREAD_LINE_REGEX = re.compile(r"\[thread:\s*([a-z0-9-]{8,})\]", re.IGNORECASE)


# ─── Codex text extraction ───────────────────────────────────────────────────


def read_nested_codex_text(value: object, depth: int = 0) -> str:
    """First non-empty string found under the preferred text keys, then anywhere."""
    if isinstance(value, str):
        return value
    if depth >= MAX_NESTED_DEPTH:
        return ""
    if isinstance(value, list):
        for item in value:
            nested = read_nested_codex_text(item, depth + 1)
            if nested:
                return nested
        return ""
    record = as_dict(value)
    if record is None:
        return ""
    for key in _NESTED_TEXT_KEYS:
        nested = read_nested_codex_text(record.get(key), depth + 1)
        if nested:
            return nested
    for nested_value in record.values():
        nested = read_nested_codex_text(nested_value, depth + 1)
        if nested:
            return nested
    return ""


def codex_text_from_params(params: JsonDict | None) -> str:
    if not params:
        return ""
    for key in _PARAM_TEXT_KEYS:
        text = read_nested_codex_text(params.get(key))
        if text:
            return text
    return ""


def looks_opaque_token(token: str) -> bool:
    """Heuristic for encrypted/encoded blobs that must not render as prose.

    Not a decoder and not a security boundary: a long user-pasted base64
    string is indistinguishable from an opaque token and will be hidden.
    """
    if len(token) < _OPAQUE_TOKEN_MIN_LENGTH:
        return False
    if token.startswith(_OPAQUE_TOKEN_PREFIX):
        return True
    return bool(_OPAQUE_TOKEN.match(token))


def _sanitize_raw_text(text: str, depth: int) -> str:
    trimmed = text.strip()
    if not trimmed:
        return ""
    if trimmed[0] in "{[":
        try:
            decoded = json.loads(trimmed)
        except json.JSONDecodeError:
            pass
        else:
            return _codex_text_from_raw(decoded, depth + 1)
    kept = [token for token in trimmed.split() if not looks_opaque_token(token)]
    return " ".join(kept).strip()


def _codex_text_from_content_parts(content: object, depth: int) -> str:
    if not isinstance(content, list):
        return ""
    for part in content:
        record = as_dict(part)
        part_type = record.get("type") if record is not None else None
        if not isinstance(part_type, str) or part_type not in _RAW_TEXT_PART_TYPES:
            continue
        for key in ("text", "content", "value"):
            nested = _codex_text_from_raw(record.get(key), depth + 1)
            if nested:
                return nested
    return ""


def _codex_text_from_raw(value: object, depth: int = 0) -> str:
    if isinstance(value, str):
        return _sanitize_raw_text(value, depth)
    if depth >= MAX_NESTED_DEPTH:
        return ""
    if isinstance(value, list):
        for item in value:
            nested = _codex_text_from_raw(item, depth + 1)
            if nested:
                return nested
        return ""
    record = as_dict(value)
    if record is None:
        return ""
    for key in _RAW_MSG_ORDERED_KEYS:
        nested = _codex_text_from_raw(record.get(key), depth + 1)
        if nested:
            return nested
    return _codex_text_from_content_parts(record.get("content"), depth)


def codex_text_from_raw_msg(value: object) -> str:
    """Display text from a legacy raw payload, with opaque tokens filtered."""
    return _codex_text_from_raw(value)


def codex_text_from_raw_params(params: JsonDict | None) -> str:
    if not params:
        return ""
    return _codex_text_from_raw(params.get("msg"))


# ─── Claude session / message helpers ────────────────────────────────────────


def _read_session_field(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _read_deep_session_id(value: object, visited: set[int], depth: int = 0) -> str | None:
    if depth > MAX_NESTED_DEPTH:
        return None
    if isinstance(value, list):
        for item in value:
            nested = _read_deep_session_id(item, visited, depth + 1)
            if nested:
                return nested
        return None
    record = as_dict(value)
    if record is None:
        return None
    direct = _read_session_field(record.get("session_id")) or _read_session_field(
        record.get("sessionId")
    )
    if direct:
        return direct
    if id(record) in visited:
        return None
    visited.add(id(record))
    for key in _SESSION_CONTAINER_KEYS:
        nested = _read_deep_session_id(record.get(key), visited, depth + 1)
        if nested:
            return nested
    for nested_value in record.values():
        nested = _read_deep_session_id(nested_value, visited, depth + 1)
        if nested:
            return nested
    return None


def unwrap_claude_raw_message(message: JsonDict) -> JsonDict:
    """Peel `{"type": "raw", "data": {...}}` relay envelopes."""
    current = message
    for _ in range(_MAX_RAW_UNWRAP):
        if current.get("type") != "raw":
            break
        inner = as_dict(current.get("data"))
        if inner is None:
            break
        current = inner
    return current


def claude_session_id(message: JsonDict) -> str | None:
    normalized = unwrap_claude_raw_message(message)
    visited: set[int] = set()
    return _read_deep_session_id(normalized, visited) or _read_deep_session_id(
        message, visited
    )


def is_claude_init_message(message: JsonDict) -> bool:
    normalized = unwrap_claude_raw_message(message)
    msg_type = normalized.get("type")
    if msg_type in ("system/init", "init"):
        return True
    return msg_type == "system" and normalized.get("subtype") == "init"


def claude_delta_text(delta: object) -> str:
    record = as_dict(delta)
    if record is None or record.get("type") == "input_json_delta":
        return ""
    thinking = record.get("thinking")
    if isinstance(thinking, str):
        return thinking
    text = record.get("text")
    return text if isinstance(text, str) else ""


def to_claude_stream_event(msg: JsonDict) -> JsonDict | None:
    """The stream event carried by msg, or None when msg is not a stream event."""
    msg_type = msg.get("type")
    if msg_type == "stream_event":
        return as_dict(msg.get("event")) or msg
    if isinstance(msg_type, str) and msg_type in CLAUDE_STREAM_EVENT_TYPES:
        return msg
    return None


def _is_index(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def claude_block_index(event: JsonDict) -> int | None:
    index = event.get("index")
    if _is_index(index):
        return index
    fallback = event.get("content_block_index")
    if _is_index(fallback):
        return fallback
    return None


def claude_completed_text(blocks: object) -> str:
    if not isinstance(blocks, list):
        return ""
    chunks = []
    for block in blocks:
        record = as_dict(block)
        if record is None or record.get("type") not in ("text", "thinking"):
            continue
        text = record.get("text")
        if isinstance(text, str):
            chunks.append(text)
    return "\n\n".join(chunks)


# ─── Framing and text shaping ────────────────────────────────────────────────


def buffer_ndjson_chunk(raw: str, carry: str) -> tuple[list[str], str]:
    """Split a socket chunk into complete NDJSON lines plus the unfinished tail.

    A tail without a newline is emitted immediately when it already parses as
    JSON, so relays that omit the trailing newline are not delayed.
    """
    parts = f"{carry}{raw}".split("\n")
    tail = parts.pop().removesuffix("\r")
    lines = [line.removesuffix("\r") for line in parts]
    if not tail.strip():
        return lines, ""
    try:
        json.loads(tail)
    except json.JSONDecodeError:
        return lines, tail
    lines.append(tail)
    return lines, ""


def normalize_stream_text(text: str) -> str:
    return _STREAM_NEWLINE.sub("\n", text)


def append_pretty_message_boundary(output: str) -> str:
    """Terminate output with exactly one blank line. f(f(x)) == f(x)."""
    if not output or output.endswith("\n\n"):
        return output
    if output.endswith("\n"):
        return f"{output}\n"
    return f"{output}\n\n"


# ─── Raw-line fallbacks ──────────────────────────────────────────────────────


def parse_claude_session_id_from_raw_line(line: str) -> str | None:
    match = CLAUDE_SESSION_LINE_REGEX.search(line)
    if not match:
        return None
    return match.group(1).strip() or None


def looks_like_claude_init_line(line: str) -> bool:
    return bool(CLAUDE_INIT_LINE_REGEX.search(line))


def parse_codex_thread_id_from_raw_line(line: str) -> str | None:
    match = CODEX_THREAD_LINE_REGEX.search(line)
    if not match:
        return None
    return match.group(1).strip() or None
