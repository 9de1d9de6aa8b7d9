"""Shared fixtures for agent-stream tests."""

import logging

import pytest

from agent_stream.app.agents import AgentRegistry
import agent_stream.io.logging_setup


# ─── Clock and ids ───────────────────────────────────────────────────────────


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class SequentialIds:
    def __init__(self, prefix: str = "agent") -> None:
        self.prefix = prefix
        self.count = 0

    def __call__(self) -> str:
        self.count += 1
        return f"{self.prefix}-{self.count}"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return AgentRegistry(stream_item_limit=1000, clock=clock, id_factory=SequentialIds())


@pytest.fixture
def sent():
    """Collects (target, payload) pairs written by a runtime."""
    frames = []

    def send(target, payload):
        frames.append((target, payload))

    send.frames = frames
    return send


# ─── Isolation ───────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep settings and log files inside tmp_path; undo logging configuration."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("AGENT_STREAM_LOG_FILE", str(tmp_path / "logs" / "test.log"))
    monkeypatch.delenv("AGENT_STREAM_STREAM_ITEM_LIMIT", raising=False)
    monkeypatch.delenv("AGENT_STREAM_LOG_LEVEL", raising=False)
    yield
    root = logging.getLogger(agent_stream.io.logging_setup.ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = True
    root.setLevel(logging.NOTSET)
    agent_stream.io.logging_setup._RUNTIME = None
