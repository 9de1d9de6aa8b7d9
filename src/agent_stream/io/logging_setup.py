"""Logging bootstrap for agent-stream entry points.

// [LAW:single-enforcer] Handler wiring happens in configure() only; library modules just getLogger(__name__).
// [LAW:one-source-of-truth] Resolved level and file path are returned as a LoggingRuntime.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path


ROOT_LOGGER_NAME = "agent_stream"
_MAX_LOG_BYTES = 20 * 1024 * 1024
_LOG_BACKUPS = 5


@dataclass(frozen=True)
class LoggingRuntime:
    level_name: str
    level: int
    file_path: str


_RUNTIME: LoggingRuntime | None = None


def _parse_level(raw: str | None) -> tuple[str, int]:
    normalized = str(raw or "INFO").strip().upper()
    level = getattr(logging, normalized, None)
    if not isinstance(level, int):
        level = logging.INFO
    return str(logging.getLevelName(level)), level


def _safe_name(value: str) -> str:
    candidate = "".join(ch if (ch.isalnum() or ch in {"-", "_"}) else "-" for ch in value)
    return candidate.strip("-_") or "run"


def _default_log_path(run_name: str) -> str:
    log_dir = Path(
        os.environ.get("AGENT_STREAM_LOG_DIR", os.path.expanduser("~/.local/share/agent-stream/logs"))
    )
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return str(log_dir / f"{_safe_name(run_name)}-{ts}-{os.getpid()}.log")


def _make_stream_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("[%(name)s] %(levelname)s %(message)s"))
    return handler


def _make_file_handler(level: int, file_path: str) -> logging.Handler:
    handler = RotatingFileHandler(
        file_path,
        maxBytes=_MAX_LOG_BYTES,
        backupCount=_LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    )
    return handler


def configure(run_name: str = "agent-stream") -> LoggingRuntime:
    """Attach stderr and rotating-file handlers to the agent_stream logger.

    Level comes from AGENT_STREAM_LOG_LEVEL, the file from AGENT_STREAM_LOG_FILE
    or a timestamped file under AGENT_STREAM_LOG_DIR. Idempotent: later calls
    return the first runtime unchanged.
    """
    global _RUNTIME
    if _RUNTIME is not None:
        return _RUNTIME

    level_name, level = _parse_level(os.environ.get("AGENT_STREAM_LOG_LEVEL"))
    file_path = os.environ.get("AGENT_STREAM_LOG_FILE") or _default_log_path(run_name)
    Path(file_path).parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    logger.handlers.clear()
    logger.addHandler(_make_stream_handler(level))
    logger.addHandler(_make_file_handler(level, file_path))

    logging.captureWarnings(True)

    _RUNTIME = LoggingRuntime(level_name=level_name, level=level, file_path=file_path)
    logger.debug("logging configured level=%s file=%s", level_name, file_path)
    return _RUNTIME


def get_runtime() -> LoggingRuntime | None:
    """The runtime from configure(), or None before it has run."""
    return _RUNTIME
