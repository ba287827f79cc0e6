#!/usr/bin/env python3
"""Common helpers shared across the action runtime."""

from __future__ import annotations

import json
import os
import sys
import time
from contextlib import contextmanager

from loguru import logger as loguru_logger

from actionflow_core.config import get_config_value

_CONSOLE_FORMAT = "{time:HH:mm:ss.SSS} [{extra[name]}] <level>{level: <7}</level> {message}"
_DARK_CONSOLE_FORMAT = f"<dim>{_CONSOLE_FORMAT}</dim>"
_RUN_LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} [{extra[name]}] {level} {message}"

_LOG_CONFIGURED = False
# runner id -> {"id": loguru sink id, "count": open run_log_context scopes}
_RUN_SINKS: dict[str, dict[str, int]] = {}


def _log_level() -> str:
    level = get_config_value("runtime", "log_level", default="DEBUG")
    return str(level).strip().upper() or "DEBUG"


def _configure_logging() -> None:
    global _LOG_CONFIGURED
    if _LOG_CONFIGURED:
        return
    dark = str(get_config_value("runtime", "log_style", default="")).lower() == "dark"
    loguru_logger.remove()
    loguru_logger.add(
        sys.stderr,
        level=_log_level(),
        format=_DARK_CONSOLE_FORMAT if dark else _CONSOLE_FORMAT,
        colorize=sys.stderr.isatty(),
    )
    _LOG_CONFIGURED = True


def _run_log_dir() -> str:
    cache_dir = str(get_config_value("runtime", "cache_dir", default=".cache") or ".cache")
    return os.path.join(cache_dir, "run-logs")


def _acquire_run_sink(runner_id: str, log_dir: str | None = None) -> None:
    _configure_logging()
    entry = _RUN_SINKS.get(runner_id)
    if entry is not None:
        entry["count"] += 1
        return
    target_dir = log_dir or _run_log_dir()
    os.makedirs(target_dir, exist_ok=True)
    sink_id = loguru_logger.add(
        os.path.join(target_dir, f"{runner_id}.log"),
        level=_log_level(),
        format=_RUN_LOG_FORMAT,
        colorize=False,
        filter=lambda record: record["extra"].get("runner_id") == runner_id,
    )
    _RUN_SINKS[runner_id] = {"id": sink_id, "count": 1}


def _release_run_sink(runner_id: str) -> None:
    entry = _RUN_SINKS.get(runner_id)
    if entry is None:
        return
    entry["count"] -= 1
    if entry["count"] <= 0:
        loguru_logger.remove(entry["id"])
        del _RUN_SINKS[runner_id]


@contextmanager
def run_log_context(runner_id: str, log_dir: str | None = None):
    """Mirror every record logged inside the block into ``<runner_id>.log``."""
    _acquire_run_sink(runner_id, log_dir=log_dir)
    try:
        with loguru_logger.contextualize(runner_id=runner_id):
            yield
    finally:
        _release_run_sink(runner_id)


def get_logger(name: str | None = None):
    """Get the logger for the module."""
    _configure_logging()
    return loguru_logger.bind(name=name or __name__)


def get_unique_timestamp() -> str:
    """Return a millisecond timestamp used as a runner identifier."""
    return str(int(time.time() * 1000))


def format_action_content(content: object, max_len: int = 120) -> str:
    """Format action content for single-line log messages."""
    if isinstance(content, dict):
        text = json.dumps(content, ensure_ascii=True)
    else:
        text = str(content)
    text = " ".join(text.split())
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


__all__ = [
    "format_action_content",
    "get_logger",
    "get_unique_timestamp",
    "run_log_context",
]
