#!/usr/bin/env python3
"""Failure classification and command output cleaning."""

from __future__ import annotations

from collections.abc import Iterable

from actionflow_core.common import get_logger
from actionflow_core.config import get_config_value
from actionflow_core.errors import ActionCommandError
from actionflow_core.types import ActionAlert

logging = get_logger(name="core.classifier")

ERROR_PREFIX = "Error:"


def is_classified(exc: BaseException) -> bool:
    """Return True for sandbox command failures eligible for user alerts."""
    return isinstance(exc, ActionCommandError)


def build_alert(exc: ActionCommandError, title: str | None = None) -> ActionAlert:
    """Build the alert payload shown to the user for a command failure."""
    if title is None:
        title = get_config_value("runner", "alert_title", default="Dev Server Failed")
    return {
        "type": "error",
        "title": str(title),
        "description": exc.header,
        "content": exc.output,
    }


def format_tool_error(exc: BaseException) -> str:
    """Format an exception as a tool response starting with ``Error:``."""
    message = str(exc) or exc.__class__.__name__
    if not message.startswith(ERROR_PREFIX):
        message = f"{ERROR_PREFIX} {message}"
    return message


def clean_command_output(
    command: str,
    output: str,
    *,
    lint_command: str | None = None,
    banned_lines: Iterable[str] | None = None,
) -> str:
    """Strip known noisy lines from lint output.

    Only the configured lint command is cleaned; every other command gets its
    output back unchanged.
    """
    if lint_command is None:
        lint_command = get_config_value("tools", "lint_command", default="npm run lint")
    if command != lint_command:
        return output
    if banned_lines is None:
        banned_lines = get_config_value("tools", "banned_output_lines", default=[])
    banned = [line for line in banned_lines if line]
    normalized = output.replace("\r\n", "\n").replace("\r", "\n")
    result = "\n".join(
        line for line in normalized.split("\n") if not any(item in line for item in banned)
    )
    if result != output:
        logging.info("Sanitized output of {}: {} -> {}", command, len(output), len(result))
    return result


__all__ = [
    "ERROR_PREFIX",
    "build_alert",
    "clean_command_output",
    "format_tool_error",
    "is_classified",
]
