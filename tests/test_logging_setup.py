"""Tests for logging bootstrap."""

import logging
from logging.handlers import RotatingFileHandler

import agent_stream.io.logging_setup


def test_configure_wires_handlers(tmp_path, monkeypatch):
    monkeypatch.setenv("AGENT_STREAM_LOG_LEVEL", "debug")
    runtime = agent_stream.io.logging_setup.configure("unit")

    assert runtime.level_name == "DEBUG"
    assert runtime.level == logging.DEBUG
    assert runtime.file_path == str(tmp_path / "logs" / "test.log")

    root = logging.getLogger("agent_stream")
    assert root.propagate is False
    assert len(root.handlers) == 2
    assert any(isinstance(h, RotatingFileHandler) for h in root.handlers)

    logging.getLogger("agent_stream.app.codex_hub").info("hub ready")
    for handler in root.handlers:
        handler.flush()
    assert "hub ready" in (tmp_path / "logs" / "test.log").read_text(encoding="utf-8")


def test_configure_is_idempotent():
    first = agent_stream.io.logging_setup.configure("one")
    second = agent_stream.io.logging_setup.configure("two")
    assert second is first
    assert agent_stream.io.logging_setup.get_runtime() is first
    assert len(logging.getLogger("agent_stream").handlers) == 2


def test_unknown_level_falls_back_to_info(monkeypatch):
    monkeypatch.setenv("AGENT_STREAM_LOG_LEVEL", "chatty")
    assert agent_stream.io.logging_setup.configure().level == logging.INFO


def test_default_log_path_uses_log_dir(tmp_path, monkeypatch):
    monkeypatch.delenv("AGENT_STREAM_LOG_FILE")
    monkeypatch.setenv("AGENT_STREAM_LOG_DIR", str(tmp_path / "dir"))
    runtime = agent_stream.io.logging_setup.configure("agent stream/replay")
    assert runtime.file_path.startswith(str(tmp_path / "dir" / "agent-stream-replay-"))
    assert runtime.file_path.endswith(".log")
    assert (tmp_path / "dir").is_dir()


def test_runtime_is_none_before_configure():
    assert agent_stream.io.logging_setup.get_runtime() is None
