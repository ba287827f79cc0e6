#!/usr/bin/env python3
"""Core error types for action execution and tool-call coordination."""

from __future__ import annotations

from typing import NoReturn

NO_OUTPUT = "No Output Available"


class ActionCommandError(Exception):
    """Raised when a sandbox command exits nonzero.

    Carries the human-readable header and the captured terminal output so the
    failure can be surfaced to the user as an alert.
    """

    def __init__(self, header: str, output: str | None = None) -> None:
        """Store the header and output and build the display message."""
        self.header = header
        self.output = output or NO_OUTPUT
        super().__init__(f"{header}\n\nOutput:\n{self.output}")


class ToolInputError(Exception):
    """Raised when a tool input is invalid but the tool remains healthy."""


class ToolCallInProgressError(Exception):
    """Raised when a tool call is dispatched before its arguments are complete."""


class ToolExecutionError(Exception):
    """Raised when a tool-driven command exits nonzero."""

    def __init__(self, exit_code: int | None, output: str) -> None:
        """Store the exit code and output for the tool response."""
        self.exit_code = exit_code
        self.output = output
        super().__init__(f"Process exited with code {exit_code}: {output}")


class ActionAbortedError(Exception):
    """Raised by cancellation-aware code when an action signal fired."""


class ActionNotFoundError(KeyError):
    """Raised when an action id is committed before it was registered."""


class UnreachableError(AssertionError):
    """Raised when a code path that should be impossible is reached."""


def unreachable(message: str) -> NoReturn:
    """Fail loudly on a broken internal contract."""
    raise UnreachableError(f"Unreachable: {message}")


__all__ = [
    "NO_OUTPUT",
    "ActionAbortedError",
    "ActionCommandError",
    "ActionNotFoundError",
    "ToolCallInProgressError",
    "ToolExecutionError",
    "ToolInputError",
    "UnreachableError",
    "unreachable",
]
