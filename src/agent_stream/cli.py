"""CLI entry point for agent-stream.

`agent-stream replay CAPTURE` feeds the inbound frames of a saved capture
through the runtimes and prints the tabs they rebuild. `agent-stream backoff`
prints the reconnect schedule.
"""

import argparse
import json
import logging
import sys

from rich.console import Console
from rich.table import Table
from rich.text import Text

from agent_stream.app.agents import AgentRegistry
from agent_stream.app.claude_runtime import ClaudeRuntime
from agent_stream.app.codex_hub import CodexHubRuntime
from agent_stream.app.tabs import AgentTab, host_from_url, short_id, visible_tabs
from agent_stream.io.capture import ChatCaptureSnapshot, WsCaptureEvent, load_capture
from agent_stream.pipeline.stream_items import StreamItem
from agent_stream.protocol.reconnect import (
    MAX_RECONNECT_ATTEMPTS,
    MAX_RECONNECT_DELAY_MS,
    reconnect_schedule,
)
import agent_stream.io.logging_setup


logger = logging.getLogger(__name__)

_SUMMARY_KEYS = ("text", "command", "message", "title", "diff", "toolName", "method")
_SUMMARY_WIDTH = 80


# ─── Replay ──────────────────────────────────────────────────────────────────


class _ReplayClock:
    """Clock pinned to the timestamp of the frame being replayed."""

    def __init__(self, start: int) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now


def replay_capture(snapshot: ChatCaptureSnapshot, stream_item_limit: int | None = None) -> AgentRegistry:
    """Rebuild agents by feeding every inbound frame through the runtimes."""
    clock = _ReplayClock(int(snapshot["createdAt"]))
    registry = AgentRegistry(stream_item_limit=stream_item_limit, clock=clock)
    claude = ClaudeRuntime(registry)
    codex = CodexHubRuntime(registry)

    replayed = 0
    for event in snapshot["events"]:
        if event["direction"] != "in":
            continue
        timestamp = event.get("timestamp")
        if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
            clock.now = int(timestamp)
        _feed_event(claude, codex, event)
        replayed += 1
    logger.info("replayed %d inbound frames from capture %s", replayed, snapshot["id"])
    return registry


def _feed_event(claude: ClaudeRuntime, codex: CodexHubRuntime, event: WsCaptureEvent) -> None:
    url = event["url"]
    payload = event["payload"] if event["payload"].endswith("\n") else f"{event['payload']}\n"
    if event["protocol"] == "claude":
        conn_id = event.get("connectionId") or event.get("agentId") or url
        if conn_id not in claude.connections:
            claude.connect(url, connection_id=conn_id)
            claude.on_open(conn_id)
        claude.on_data(conn_id, payload)
        return
    if url not in codex.hubs:
        codex.connect(url, silent=True)
        codex.on_open(url)
    codex.on_data(url, payload)


# ─── Rendering ───────────────────────────────────────────────────────────────


def _item_summary(item: StreamItem) -> str:
    data = item.get("data") or {}
    for key in _SUMMARY_KEYS:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            text = " ".join(value.split())
            return text if len(text) <= _SUMMARY_WIDTH else f"{text[: _SUMMARY_WIDTH - 1]}…"
    return ""


def _items_table(items: list[StreamItem]) -> Table:
    table = Table(show_header=True, header_style="bold", expand=False)
    table.add_column("#", justify="right")
    table.add_column("type")
    table.add_column("status")
    table.add_column("id")
    table.add_column("summary")
    for index, item in enumerate(items, start=1):
        status_style = {"error": "red", "streaming": "yellow"}.get(item.get("status"), "")
        table.add_row(
            str(index),
            item.get("type", ""),
            Text(str(item.get("status", "")), style=status_style),
            short_id(item.get("id")),
            _item_summary(item),
        )
    return table


def _print_tab(console: Console, tab: AgentTab, show_output: bool) -> None:
    agent = tab.representative
    header = Text()
    header.append(f"{agent.protocol} ", style="bold cyan")
    header.append(host_from_url(agent.url), style="bold")
    header.append(f"  {agent.status}")
    if tab.identity_id:
        header.append(f"  {tab.identity_id}", style="dim")
    if agent.thread_name:
        header.append(f"  {agent.thread_name}", style="italic")
    console.print(header, soft_wrap=True)

    items = [item for member in tab.agents for item in member.stream_items]
    if items:
        console.print(_items_table(items))
    else:
        console.print("  (no stream items)", style="dim")
    if show_output:
        for member in tab.agents:
            if member.output:
                console.print(member.output, markup=False, highlight=False, soft_wrap=True)


def _cmd_replay(args: argparse.Namespace, console: Console) -> int:
    snapshot = load_capture(args.capture)
    registry = replay_capture(snapshot, stream_item_limit=args.limit)
    if args.json:
        json.dump(registry.snapshot(), sys.stdout, indent=2, ensure_ascii=False)
        sys.stdout.write("\n")
        return 0
    tabs = visible_tabs(list(registry))
    if not tabs:
        console.print("no agents rebuilt from capture", style="yellow")
        return 0
    for tab in tabs:
        _print_tab(console, tab, args.output)
    return 0


def _cmd_backoff(args: argparse.Namespace, console: Console) -> int:
    table = Table(title="reconnect schedule", show_header=True, header_style="bold")
    table.add_column("attempt", justify="right")
    table.add_column("delay ms", justify="right")
    for attempt, delay in enumerate(reconnect_schedule(args.max_attempts, args.max_delay_ms)):
        table.add_row(str(attempt), str(delay))
    console.print(table)
    return 0


# ─── Entry point ─────────────────────────────────────────────────────────────


def _positive(raw: str) -> int:
    value = int(raw)
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1: {raw}")
    return value


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="agent-stream",
        description="Replay agent websocket captures into normalized stream items",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    replay = commands.add_parser("replay", help="Rebuild tabs from a capture file")
    replay.add_argument("capture", help="Path to a capture JSON file")
    replay.add_argument("--limit", type=_positive, default=None, help="Stream item limit per agent")
    replay.add_argument("--json", action="store_true", help="Print agent snapshots as JSON")
    replay.add_argument("--output", action="store_true", help="Also print the plain-text transcript")

    backoff = commands.add_parser("backoff", help="Print the reconnect schedule")
    backoff.add_argument("--max-attempts", type=int, default=MAX_RECONNECT_ATTEMPTS)
    backoff.add_argument("--max-delay-ms", type=int, default=MAX_RECONNECT_DELAY_MS)
    return parser.parse_args(argv)


# [LAW:dataflow-not-control-flow] Subcommand dispatch is a table.
_COMMANDS = {"replay": _cmd_replay, "backoff": _cmd_backoff}


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    agent_stream.io.logging_setup.configure(f"agent-stream-{args.command}")
    console = Console()
    try:
        return _COMMANDS[args.command](args, console)
    except (OSError, ValueError) as exc:
        # json.JSONDecodeError is a ValueError
        logger.error("%s failed: %s", args.command, exc)
        Console(stderr=True).print(f"error: {exc}", style="red", markup=False, highlight=False)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
