"""Tests for the stream-item store reducer."""

import pytest

from agent_stream.pipeline.stream_items import (
    STREAM_ITEM_LIMIT,
    append_text_action,
    apply_stream_item_action,
    apply_stream_item_actions,
    complete_action,
    create_action,
    normalize_limit,
    update_action,
    upsert_action,
)


def _item(item_id, text="", status="streaming", timestamp=1, **extra):
    return {
        "id": item_id,
        "type": "message",
        "status": status,
        "timestamp": timestamp,
        "data": {"role": "assistant", "text": text},
        **extra,
    }


# ─── create ──────────────────────────────────────────────────────────────────


def test_create_is_idempotent():
    once = apply_stream_item_action([], create_action(_item("a", "hi")))
    twice = apply_stream_item_action(once, create_action(_item("a", "changed")))
    assert twice == once
    assert twice[0]["data"]["text"] == "hi"


def test_create_returns_new_list():
    items = [_item("a")]
    result = apply_stream_item_action(items, create_action(_item("b")))
    assert result is not items
    assert [i["id"] for i in items] == ["a"]


def test_fifo_cap_keeps_last_items_in_order():
    actions = [create_action(_item(f"item-{n}")) for n in range(10)]
    result = apply_stream_item_actions([], actions, limit=4)
    assert [i["id"] for i in result] == ["item-6", "item-7", "item-8", "item-9"]


# ─── upsert / update ─────────────────────────────────────────────────────────


def test_upsert_appends_missing_item():
    result = apply_stream_item_action([], upsert_action(_item("a", "x")))
    assert [i["id"] for i in result] == ["a"]


def test_upsert_merges_data_shallowly_and_keeps_timestamp():
    items = [_item("a", "old", timestamp=5, turnId="t1")]
    patch = {"id": "a", "type": "message", "status": "complete", "timestamp": 99, "data": {"text": "new"}}
    result = apply_stream_item_action(items, upsert_action(patch))
    assert result[0]["data"] == {"role": "assistant", "text": "new"}
    assert result[0]["status"] == "complete"
    assert result[0]["timestamp"] == 5
    assert result[0]["turnId"] == "t1"


def test_update_missing_id_is_noop():
    items = [_item("a")]
    assert apply_stream_item_action(items, update_action("zzz", {"status": "error"})) == items


def test_update_patches_named_keys_only():
    items = [_item("a", "keep")]
    result = apply_stream_item_action(items, update_action("a", {"data": {"extra": 1}}))
    assert result[0]["data"] == {"role": "assistant", "text": "keep", "extra": 1}


# ─── append_text / complete ──────────────────────────────────────────────────


def test_append_text_concatenates():
    items = [_item("a", "Hel")]
    result = apply_stream_item_action(items, append_text_action("a", "lo"))
    assert result[0]["data"]["text"] == "Hello"


def test_append_text_treats_missing_text_as_empty():
    item = _item("a")
    item["data"] = {}
    result = apply_stream_item_action([item], append_text_action("a", "x"))
    assert result[0]["data"]["text"] == "x"


def test_append_text_missing_id_is_noop():
    assert apply_stream_item_action([], append_text_action("a", "x")) == []


def test_complete_defaults_to_complete():
    result = apply_stream_item_action([_item("a")], complete_action("a"))
    assert result[0]["status"] == "complete"


def test_complete_with_status_and_patch():
    result = apply_stream_item_action(
        [_item("a")], complete_action("a", "error", {"data": {"error": "boom"}})
    )
    assert result[0]["status"] == "error"
    assert result[0]["data"]["error"] == "boom"


def test_unknown_action_type_leaves_list_unchanged():
    items = [_item("a")]
    assert apply_stream_item_action(items, {"type": "explode", "id": "a"}) == items


# ─── limits ──────────────────────────────────────────────────────────────────


@pytest.mark.parametrize("limit", [None, 0, -5, float("nan"), float("inf"), True])
def test_invalid_limits_fall_back_to_default(limit):
    assert normalize_limit(limit) == STREAM_ITEM_LIMIT


def test_fractional_limit_is_floored():
    assert normalize_limit(3.9) == 3
