"""Stream-item store: the canonical ordered list of normalized UI events.

Both protocol adapters emit StreamItemAction records; this module is the only
place those actions are applied. Items and actions are plain JSON dicts so an
agent's timeline can be serialized as-is.

// [LAW:one-source-of-truth] Item merge semantics are defined once, here.
// [LAW:single-enforcer] Retention (FIFO cap) is enforced only by this reducer.

Reducers never mutate their inputs; every call returns a new list.
"""

import math
from collections.abc import Callable, Iterable, Sequence
from typing import Literal, NotRequired, TypedDict


STREAM_ITEM_LIMIT = 1000

STREAM_ITEM_TYPES = (
    "message",
    "thinking",
    "tool_call",
    "tool_result",
    "command_execution",
    "file_change",
    "mcp_tool_call",
    "web_search",
    "collab_agent",
    "image",
    "plan",
    "reasoning",
    "approval_request",
    "review_mode",
    "turn_complete",
    "turn_diff",
    "error",
    "status",
    "raw_item",
)

STREAM_ITEM_STATUSES = ("streaming", "complete", "error")

StreamItemStatus = Literal["streaming", "complete", "error"]
StreamItemData = dict[str, object]


# ─── Types ───────────────────────────────────────────────────────────────────


class StreamItem(TypedDict):
    id: str
    type: str
    status: StreamItemStatus
    timestamp: int
    data: StreamItemData
    turnId: NotRequired[str]
    threadId: NotRequired[str]
    agentId: NotRequired[str]
    itemId: NotRequired[str]


class StreamItemPatch(TypedDict, total=False):
    type: str
    status: StreamItemStatus
    data: StreamItemData
    turnId: str
    threadId: str
    agentId: str
    itemId: str


class StreamItemAction(TypedDict, total=False):
    """Discriminated by `type`: create | upsert | update | append_text | complete."""

    type: Literal["create", "upsert", "update", "append_text", "complete"]
    item: StreamItem
    id: str
    patch: StreamItemPatch
    text: str
    status: StreamItemStatus


# ─── Action constructors ─────────────────────────────────────────────────────


def create_action(item: StreamItem) -> StreamItemAction:
    return {"type": "create", "item": item}


def upsert_action(item: StreamItem) -> StreamItemAction:
    return {"type": "upsert", "item": item}


def update_action(item_id: str, patch: StreamItemPatch) -> StreamItemAction:
    return {"type": "update", "id": item_id, "patch": patch}


def append_text_action(item_id: str, text: str) -> StreamItemAction:
    return {"type": "append_text", "id": item_id, "text": text}


def complete_action(
    item_id: str,
    status: StreamItemStatus | None = None,
    patch: StreamItemPatch | None = None,
) -> StreamItemAction:
    action: StreamItemAction = {"type": "complete", "id": item_id}
    if status is not None:
        action["status"] = status
    if patch:
        action["patch"] = patch
    return action


# ─── Reducer ─────────────────────────────────────────────────────────────────


def normalize_limit(limit: float | None) -> int:
    """Invalid limits (None, non-finite, < 1) fall back to STREAM_ITEM_LIMIT."""
    if limit is None or isinstance(limit, bool):
        return STREAM_ITEM_LIMIT
    if not isinstance(limit, (int, float)) or not math.isfinite(limit) or limit < 1:
        return STREAM_ITEM_LIMIT
    return math.floor(limit)


def _merge_item(current: StreamItem, patch: StreamItemPatch | StreamItem) -> StreamItem:
    # timestamp records creation and survives every merge
    merged = dict(current)
    for key, value in patch.items():
        if key in ("data", "timestamp", "id") or value is None:
            continue
        merged[key] = value
    patch_data = patch.get("data")
    if patch_data:
        merged["data"] = {**current["data"], **patch_data}
    return merged  # type: ignore[return-value]


def _cap(items: list[StreamItem], limit: int) -> list[StreamItem]:
    if len(items) <= limit:
        return items
    return items[len(items) - limit :]


def _index_of(items: Sequence[StreamItem], item_id: str) -> int:
    for index, item in enumerate(items):
        if item["id"] == item_id:
            return index
    return -1


def _apply_create(items, action, limit):
    item = action["item"]
    if _index_of(items, item["id"]) != -1:
        return list(items)
    return _cap([*items, item], limit)


def _apply_upsert(items, action, limit):
    item = action["item"]
    index = _index_of(items, item["id"])
    if index == -1:
        return _cap([*items, item], limit)
    nxt = list(items)
    nxt[index] = _merge_item(nxt[index], item)
    return nxt


def _apply_update(items, action, _limit):
    index = _index_of(items, action["id"])
    if index == -1:
        return list(items)
    nxt = list(items)
    nxt[index] = _merge_item(nxt[index], action.get("patch") or {})
    return nxt


def _apply_append_text(items, action, _limit):
    index = _index_of(items, action["id"])
    if index == -1:
        return list(items)
    current = items[index]
    text = current["data"].get("text")
    current_text = text if isinstance(text, str) else ""
    nxt = list(items)
    nxt[index] = {
        **current,
        "data": {**current["data"], "text": f"{current_text}{action.get('text', '')}"},
    }
    return nxt


def _apply_complete(items, action, _limit):
    index = _index_of(items, action["id"])
    if index == -1:
        return list(items)
    patch: StreamItemPatch = {
        **(action.get("patch") or {}),
        "status": action.get("status") or "complete",
    }
    nxt = list(items)
    nxt[index] = _merge_item(nxt[index], patch)
    return nxt


# [LAW:dataflow-not-control-flow] Action dispatch table
_ACTION_REDUCERS: dict[str, Callable[[Sequence[StreamItem], StreamItemAction, int], list[StreamItem]]] = {
    "create": _apply_create,
    "upsert": _apply_upsert,
    "update": _apply_update,
    "append_text": _apply_append_text,
    "complete": _apply_complete,
}


def apply_stream_item_action(
    items: Sequence[StreamItem],
    action: StreamItemAction,
    limit: float | None = STREAM_ITEM_LIMIT,
) -> list[StreamItem]:
    """Apply one action. Unknown action types leave the list unchanged."""
    reducer = _ACTION_REDUCERS.get(action.get("type", ""))
    if reducer is None:
        return list(items)
    return reducer(items, action, normalize_limit(limit))


def apply_stream_item_actions(
    items: Sequence[StreamItem],
    actions: Iterable[StreamItemAction],
    limit: float | None = STREAM_ITEM_LIMIT,
) -> list[StreamItem]:
    """Left fold of apply_stream_item_action."""
    result = list(items)
    for action in actions:
        result = apply_stream_item_action(result, action, limit)
    return result
