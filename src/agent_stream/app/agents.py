"""Agent records and the registry that owns them.

An Agent is one logical conversation (a claude session or a codex thread)
as shown in one tab. Several agents may share one physical connection;
agents are never deleted once they carry content, only marked disconnected.

// [LAW:one-source-of-truth] AgentRegistry is the single owner of Agent records.
// [LAW:single-enforcer] Stream-item retention goes through apply_stream_actions only.
"""

import logging
import time
import uuid
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Literal

from agent_stream.pipeline.stream_items import (
    StreamItem,
    StreamItemAction,
    apply_stream_item_actions,
)
import agent_stream.settings


logger = logging.getLogger(__name__)

Protocol = Literal["claude", "codex"]
Status = Literal["connecting", "connected", "disconnected", "reconnecting"]

DEBUG_EVENT_LIMIT = 500
PENDING_OUTPUT_EVENT_MAX = 256


@dataclass
class Agent:
    id: str
    url: str
    protocol: Protocol
    status: Status = "connecting"
    output: str = ""
    stream_items: list[StreamItem] = field(default_factory=list)
    session_id: str | None = None
    thread_id: str | None = None
    thread_name: str | None = None
    thread_status: str | None = None

    @property
    def has_content(self) -> bool:
        return bool(self.output or self.stream_items)

    def to_dict(self) -> dict:
        """Plain-JSON form, keyed the way captures and the UI expect."""
        data = {
            "id": self.id,
            "url": self.url,
            "protocol": self.protocol,
            "status": self.status,
            "output": self.output,
            "streamItems": list(self.stream_items),
        }
        for key, value in (
            ("sessionId", self.session_id),
            ("threadId", self.thread_id),
            ("threadName", self.thread_name),
            ("threadStatus", self.thread_status),
        ):
            if value:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Agent":
        items = data.get("streamItems")
        return cls(
            id=str(data["id"]),
            url=str(data.get("url", "")),
            protocol="codex" if data.get("protocol") == "codex" else "claude",
            status=data.get("status", "disconnected"),
            output=data.get("output") if isinstance(data.get("output"), str) else "",
            stream_items=list(items) if isinstance(items, list) else [],
            session_id=data.get("sessionId") or None,
            thread_id=data.get("threadId") or None,
            thread_name=data.get("threadName") or None,
            thread_status=data.get("threadStatus") or None,
        )


def is_transient_placeholder_agent(agent: Agent) -> bool:
    """No content and no identity: safe to drop when it disconnects."""
    return not (agent.has_content or agent.thread_id or agent.session_id)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _new_agent_id() -> str:
    return str(uuid.uuid4())


class AgentRegistry:
    """Ordered Agent records plus the bookkeeping shared by both runtimes.

    Insertion order is tab order. The clock and id factory are injectable so
    replays and tests are deterministic.
    """

    def __init__(
        self,
        stream_item_limit: int | None = None,
        clock: Callable[[], int] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.stream_item_limit = (
            stream_item_limit if stream_item_limit is not None else agent_stream.settings.stream_item_limit()
        )
        self.clock = clock or _now_ms
        self.new_id = id_factory or _new_agent_id
        self._agents: dict[str, Agent] = {}
        # agent id -> queued plain-text events for agents not created yet
        self._pending_output: dict[str, list] = {}
        self.debug_events: deque[str] = deque(maxlen=DEBUG_EVENT_LIMIT)

    # ─── Records ──────────────────────────────────────────────────────

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def __iter__(self):
        return iter(list(self._agents.values()))

    def __len__(self) -> int:
        return len(self._agents)

    def get(self, agent_id: str | None) -> Agent | None:
        return self._agents.get(agent_id) if agent_id else None

    def add(self, agent: Agent) -> Agent:
        self._agents[agent.id] = agent
        return agent

    def create(self, url: str, protocol: Protocol, status: Status = "connecting", **fields) -> Agent:
        agent_id = fields.pop("id", None) or self.new_id()
        return self.add(Agent(id=agent_id, url=url, protocol=protocol, status=status, **fields))

    def remove(self, agent_id: str) -> None:
        self._agents.pop(agent_id, None)
        self._pending_output.pop(agent_id, None)

    def snapshot(self) -> list[dict]:
        return [agent.to_dict() for agent in self._agents.values()]

    # ─── Mutations ────────────────────────────────────────────────────

    def set_status(self, agent_id: str, status: Status) -> None:
        """Set status; a placeholder that disconnects is dropped entirely."""
        agent = self._agents.get(agent_id)
        if agent is None:
            return
        agent.status = status
        if status == "disconnected" and is_transient_placeholder_agent(agent):
            logger.debug("dropping placeholder agent %s", agent_id)
            self.remove(agent_id)

    def apply_stream_actions(self, agent_id: str, actions: Iterable[StreamItemAction]) -> None:
        agent = self._agents.get(agent_id)
        if agent is None:
            return
        actions = list(actions)
        if actions:
            agent.stream_items = apply_stream_item_actions(
                agent.stream_items, actions, self.stream_item_limit
            )

    # ─── Pending plain-text events ────────────────────────────────────

    def queue_output_event(self, agent_id: str, event) -> None:
        queue = self._pending_output.setdefault(agent_id, [])
        queue.append(event)
        if len(queue) > PENDING_OUTPUT_EVENT_MAX:
            del queue[: len(queue) - PENDING_OUTPUT_EVENT_MAX]

    def take_output_events(self, agent_id: str) -> list:
        return self._pending_output.pop(agent_id, [])

    # ─── Debug trail ──────────────────────────────────────────────────

    def push_debug_event(self, text: str) -> None:
        """Record a routing decision: DEBUG log plus the bounded in-memory trail."""
        now = self.clock()
        stamp = time.strftime("%H:%M:%S", time.gmtime(now / 1000))
        millis = now % 1000
        self.debug_events.appendleft(f"{stamp}.{millis:03d} {text}")
        logger.debug("[route] %s", text)
