"""Capture snapshots: agents plus the websocket frames that produced them.

A snapshot is plain JSON so it can be written to disk, diffed, and replayed
through the runtimes by `agent-stream replay`.

// [LAW:single-enforcer] Size limits are applied only in build_capture_snapshot.
"""

import copy
import json
import logging
import os
import tempfile
import time
import uuid
from collections.abc import Iterable
from pathlib import Path
from typing import Literal, NotRequired, TypedDict

from agent_stream.app.agents import Agent


logger = logging.getLogger(__name__)

MAX_CAPTURE_EVENTS = 3000
MAX_CAPTURE_STREAM_ITEMS = 1200
MAX_CAPTURE_PAYLOAD_CHARS = 20_000
MAX_CAPTURE_OUTPUT_CHARS = 120_000
TRUNCATION_SUFFIX = "\n...[truncated]"


class WsCaptureEvent(TypedDict):
    direction: Literal["in", "out"]
    payload: str
    protocol: Literal["claude", "codex"]
    timestamp: int
    url: str
    agentId: NotRequired[str]
    connectionId: NotRequired[str]


class ChatCaptureSnapshot(TypedDict):
    id: str
    createdAt: int
    agents: list[dict]
    events: list[WsCaptureEvent]


def truncate_text(value: str, max_chars: int) -> str:
    if len(value) <= max_chars:
        return value
    return f"{value[:max_chars]}{TRUNCATION_SUFFIX}"


def _trim_from_front(items, limit: int) -> list:
    items = list(items)
    return items[-limit:] if len(items) > limit else items


def _sanitize_agent(agent: Agent) -> dict:
    data = agent.to_dict()
    data["output"] = truncate_text(agent.output, MAX_CAPTURE_OUTPUT_CHARS)
    data["streamItems"] = [
        {**item, "data": copy.deepcopy(item.get("data", {}))}
        for item in _trim_from_front(agent.stream_items, MAX_CAPTURE_STREAM_ITEMS)
    ]
    return data


def build_capture_snapshot(
    agents: Iterable[Agent],
    events: Iterable[WsCaptureEvent],
    now: int | None = None,
    capture_id: str | None = None,
) -> ChatCaptureSnapshot | None:
    """Bounded snapshot of agents with content plus recent frames.

    Returns None when there is nothing worth keeping.
    """
    kept_agents = [_sanitize_agent(agent) for agent in agents if agent.has_content]
    kept_events = [
        {**event, "payload": truncate_text(event["payload"], MAX_CAPTURE_PAYLOAD_CHARS)}
        for event in _trim_from_front(events, MAX_CAPTURE_EVENTS)
    ]
    if not kept_agents and not kept_events:
        return None
    return {
        "id": capture_id or str(uuid.uuid4()),
        "createdAt": now if now is not None else int(time.time() * 1000),
        "agents": kept_agents,
        "events": kept_events,
    }


def save_capture(snapshot: ChatCaptureSnapshot, path: str | Path) -> Path:
    """Atomic write: temp file in the target directory, then rename."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(snapshot, f, indent=2)
            f.write("\n")
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    logger.info("saved capture %s (%d events) to %s", snapshot["id"], len(snapshot["events"]), path)
    return path


def _validate_event(index: int, event: object) -> None:
    if not isinstance(event, dict):
        raise ValueError(f"events[{index}] is not an object")
    if event.get("direction") not in ("in", "out"):
        raise ValueError(f"events[{index}].direction must be 'in' or 'out'")
    if event.get("protocol") not in ("claude", "codex"):
        raise ValueError(f"events[{index}].protocol must be 'claude' or 'codex'")
    if not isinstance(event.get("payload"), str):
        raise ValueError(f"events[{index}].payload must be a string")
    if not isinstance(event.get("url"), str):
        raise ValueError(f"events[{index}].url must be a string")


def load_capture(path: str | Path) -> ChatCaptureSnapshot:
    """Load and validate a capture file.

    Raises ValueError for structural problems. FileNotFoundError and
    json.JSONDecodeError propagate unchanged.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError("capture must be a JSON object")
    if not isinstance(data.get("id"), str):
        raise ValueError("capture.id must be a string")
    created_at = data.get("createdAt")
    if isinstance(created_at, bool) or not isinstance(created_at, (int, float)):
        raise ValueError("capture.createdAt must be a number")
    if not isinstance(data.get("events"), list):
        raise ValueError("capture.events must be a list")
    if not isinstance(data.get("agents"), list):
        raise ValueError("capture.agents must be a list")

    for index, event in enumerate(data["events"]):
        _validate_event(index, event)
    for index, agent in enumerate(data["agents"]):
        if not isinstance(agent, dict) or not isinstance(agent.get("id"), str):
            raise ValueError(f"agents[{index}] must be an object with a string id")

    return data


def captured_agents(snapshot: ChatCaptureSnapshot) -> list[Agent]:
    return [Agent.from_dict(entry) for entry in snapshot["agents"]]
