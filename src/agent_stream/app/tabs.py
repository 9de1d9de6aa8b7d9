"""Tab grouping: agents that share a protocol, url and identity form one tab.

A tab's representative is the agent whose status and content the tab shows.

// [LAW:one-source-of-truth] Tab identity is tab_id_for_agent; nothing else derives tab ids.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from agent_stream.app.agents import Agent, is_transient_placeholder_agent
from agent_stream.pipeline.stream_items import StreamItem


@dataclass
class AgentTab:
    id: str
    representative: Agent
    agents: list[Agent] = field(default_factory=list)
    identity_id: str | None = None


@dataclass(frozen=True)
class ActiveView:
    """What the active tab shows."""

    tab: AgentTab | None
    agent: Agent | None
    host: str
    output: str
    stream_items: list[StreamItem]


def host_from_url(url: str) -> str:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return url
    return parts.netloc.rsplit("@", 1)[-1]


def short_id(value: str | None) -> str:
    if not value:
        return ""
    if len(value) <= 12:
        return value
    return f"{value[:8]}…{value[-4:]}"


def identity_id_for_agent(agent: Agent) -> str | None:
    return agent.session_id if agent.protocol == "claude" else agent.thread_id


def tab_id_for_agent(agent: Agent) -> str:
    identity = identity_id_for_agent(agent)
    if identity:
        return f"{agent.protocol}:{agent.url}:{identity}"
    return f"pending:{agent.id}"


# [LAW:dataflow-not-control-flow] Status ranking is data.
_STATUS_PRIORITY = {"connected": 4, "reconnecting": 3, "connecting": 2}


def _status_priority(status: str) -> int:
    return _STATUS_PRIORITY.get(status, 1)


def _prefer_representative(candidate: Agent, current: Agent) -> bool:
    """Status, then content, then identity; a full tie goes to the later agent."""
    candidate_rank = _status_priority(candidate.status)
    current_rank = _status_priority(current.status)
    if candidate_rank != current_rank:
        return candidate_rank > current_rank
    if candidate.has_content != current.has_content:
        return candidate.has_content
    candidate_identity = bool(identity_id_for_agent(candidate))
    if candidate_identity != bool(identity_id_for_agent(current)):
        return candidate_identity
    return True


def build_agent_tabs(agents: Sequence[Agent]) -> list[AgentTab]:
    """Group agents into tabs, in first-seen order."""
    tabs: dict[str, AgentTab] = {}
    for agent in agents:
        tab_id = tab_id_for_agent(agent)
        tab = tabs.get(tab_id)
        if tab is None:
            tabs[tab_id] = AgentTab(
                id=tab_id,
                representative=agent,
                agents=[agent],
                identity_id=identity_id_for_agent(agent),
            )
            continue
        tab.agents.append(agent)
        if not tab.identity_id:
            tab.identity_id = identity_id_for_agent(agent)
        if _prefer_representative(agent, tab.representative):
            tab.representative = agent
    return list(tabs.values())


def should_hide_placeholder_agent(agent: Agent, agents: Sequence[Agent]) -> bool:
    """A placeholder is hidden once disconnected or once a sibling has something to show."""
    if not is_transient_placeholder_agent(agent):
        return False
    if agent.status == "disconnected":
        return True
    return any(
        candidate.id != agent.id
        and candidate.protocol == agent.protocol
        and candidate.url == agent.url
        and not is_transient_placeholder_agent(candidate)
        for candidate in agents
    )


def visible_tabs(agents: Sequence[Agent]) -> list[AgentTab]:
    agents = list(agents)
    return build_agent_tabs([a for a in agents if not should_hide_placeholder_agent(a, agents)])


def fallback_tab(tabs: Sequence[AgentTab]) -> AgentTab | None:
    """The last live tab, else the last tab."""
    for tab in reversed(tabs):
        if tab.representative.status != "disconnected":
            return tab
    return tabs[-1] if tabs else None


def resolve_active_view(
    agents: Sequence[Agent],
    selected_tab_id: str | None = None,
    canonical_agent_ids: Mapping[str, str] | None = None,
) -> ActiveView:
    """Pick the active tab and the agent whose content it shows.

    canonical_agent_ids maps a session or thread id to the agent that
    currently owns it; that agent wins over the representative when it
    still belongs to the tab.
    """
    tabs = visible_tabs(agents)
    tab = next((t for t in tabs if t.id == selected_tab_id), None) or fallback_tab(tabs)
    if tab is None:
        return ActiveView(tab=None, agent=None, host="", output="", stream_items=[])

    active = tab.representative
    canonical_id = (canonical_agent_ids or {}).get(tab.identity_id) if tab.identity_id else None
    canonical = next((a for a in agents if a.id == canonical_id), None) if canonical_id else None
    if canonical is not None and tab_id_for_agent(canonical) == tab.id:
        active = canonical

    content_agent = next((a for a in reversed(tab.agents) if a.has_content), None)
    output = active.output or (content_agent.output if content_agent else "")
    if active.stream_items:
        items = active.stream_items
    elif not active.output and content_agent is not None:
        items = content_agent.stream_items
    else:
        items = []
    return ActiveView(
        tab=tab,
        agent=active,
        host=host_from_url(active.url),
        output=output,
        stream_items=list(items),
    )
