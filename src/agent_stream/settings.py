"""Settings file I/O for agent-stream.

Manages a general-purpose JSON settings file at XDG_CONFIG_HOME/agent-stream/settings.json.
Environment variables override file values for the typed accessors below.

Import as: import agent_stream.settings
"""

import json
import logging
import math
import os
import tempfile
from pathlib import Path


logger = logging.getLogger(__name__)

DEFAULT_STREAM_ITEM_LIMIT = 1000
STREAM_ITEM_LIMIT_ENV = "AGENT_STREAM_STREAM_ITEM_LIMIT"


def get_config_path() -> Path:
    """Return path to settings file.

    Uses XDG_CONFIG_HOME (default ~/.config) / agent-stream / settings.json.
    """
    config_home = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(config_home) / "agent-stream" / "settings.json"


def load_settings() -> dict:
    """Load settings from JSON file. Returns empty dict on missing/corrupt file."""
    path = get_config_path()
    # [LAW:dataflow-not-control-flow] Always attempt read; empty dict is the "no data" value.
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def save_settings(data: dict) -> None:
    """Atomic write of settings dict to JSON file.

    Creates parent directories if needed. Writes to temp file then renames
    to avoid partial writes on crash.
    """
    path = get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def load_setting(key: str, default=None):
    """Load a single setting by key. Returns default if absent."""
    return load_settings().get(key, default)


def save_setting(key: str, value) -> None:
    """Save a single setting by key (merge into existing settings)."""
    data = load_settings()
    data[key] = value
    save_settings(data)


def _positive_int(raw) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        try:
            raw = float(raw.strip())
        except ValueError:
            return None
    if not isinstance(raw, (int, float)) or not math.isfinite(raw):
        return None
    value = int(raw)
    return value if value >= 1 else None


def stream_item_limit() -> int:
    """Per-agent stream item cap: env, then settings file, then 1000."""
    raw_env = os.environ.get(STREAM_ITEM_LIMIT_ENV)
    if raw_env is not None:
        value = _positive_int(raw_env)
        if value is not None:
            return value
        logger.warning("ignoring invalid %s=%r", STREAM_ITEM_LIMIT_ENV, raw_env)
    value = _positive_int(load_setting("stream_item_limit"))
    return value if value is not None else DEFAULT_STREAM_ITEM_LIMIT


def claude_pretty_mode() -> bool:
    """Whether claude transcripts get blank-line message boundaries."""
    return bool(load_setting("claude_pretty_mode", True))


def codex_pretty_mode() -> bool:
    return bool(load_setting("codex_pretty_mode", True))
