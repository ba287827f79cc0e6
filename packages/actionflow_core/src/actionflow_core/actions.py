#!/usr/bin/env python3
"""Action data models and lifecycle states."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from pydantic.v1 import BaseModel, Field, root_validator

from actionflow_core.cancellation import AbortSignal


class ActionType(str, Enum):
    """Closed set of action kinds a producer may emit."""

    SHELL = "shell"
    NPM_INSTALL = "npmInstall"
    NPM_EXEC = "npmExec"
    FILE = "file"
    BUILD = "build"
    START = "start"
    TOOL_USE = "toolUse"
    CONVEX = "convex"


class ActionStatus(str, Enum):
    """Lifecycle status of an action."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    ABORTED = "aborted"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({ActionStatus.COMPLETE, ActionStatus.ABORTED, ActionStatus.FAILED})

_TRANSITIONS: dict[ActionStatus, frozenset[ActionStatus]] = {
    ActionStatus.PENDING: frozenset({ActionStatus.RUNNING, ActionStatus.ABORTED}),
    ActionStatus.RUNNING: frozenset(
        {
            ActionStatus.RUNNING,
            ActionStatus.COMPLETE,
            ActionStatus.ABORTED,
            ActionStatus.FAILED,
        }
    ),
    ActionStatus.COMPLETE: frozenset(),
    ActionStatus.ABORTED: frozenset(),
    ActionStatus.FAILED: frozenset(),
}


def can_transition(current: ActionStatus, target: ActionStatus) -> bool:
    """Return True when the status machine allows current -> target."""
    return target in _TRANSITIONS[current]


class Action(BaseModel):
    """Action fragment as emitted by the producer."""

    type: ActionType = Field(description="Kind of work requested.")
    content: str = Field(
        default="",
        description="Command text, file body, or serialized tool call.",
    )
    file_path: str | None = Field(
        alias="filePath",
        default=None,
        description="Target path for file actions.",
    )
    change_source: str | None = Field(
        alias="changeSource",
        default=None,
        description="Origin of a file change (e.g. auto-save).",
    )

    class Config:
        """Allow both alias and field-name population."""

        allow_population_by_field_name = True
        extra = "ignore"

    @root_validator(skip_on_failure=True)
    def _require_file_path(cls, values: dict[str, Any]) -> dict[str, Any]:
        if values.get("type") == ActionType.FILE and not values.get("file_path"):
            raise ValueError("file actions require a file_path")
        return values


def parse_action(fragment: Action | dict[str, Any]) -> Action:
    """Coerce a producer fragment into an Action model."""
    if isinstance(fragment, Action):
        return fragment
    return Action.parse_obj(fragment)


@dataclass(frozen=True)
class ActionState:
    """Snapshot of an action and its lifecycle fields."""

    action_id: str
    type: ActionType
    content: str
    status: ActionStatus
    executed: bool
    abort: Callable[[], None] = field(repr=False, compare=False)
    abort_signal: AbortSignal = field(repr=False, compare=False)
    file_path: str | None = None
    change_source: str | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_action(self) -> Action:
        return Action(
            type=self.type,
            content=self.content,
            file_path=self.file_path,
            change_source=self.change_source,
        )

    def with_changes(self, **changes: Any) -> ActionState:
        return replace(self, **changes)


@dataclass
class BuildOutput:
    """Output of the most recent successful build."""

    path: str
    exit_code: int
    output: str

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "exit_code": self.exit_code, "output": self.output}


class FileVersion(BaseModel):
    """One saved revision of a file."""

    timestamp: int
    content: str


class FileChange(BaseModel):
    """Line-level change recorded for a file."""

    value: str
    added: bool = False
    removed: bool = False
    count: int | None = None


class FileHistory(BaseModel):
    """Per-file history record persisted under the history root."""

    original_content: str = Field(alias="originalContent")
    last_modified: int = Field(alias="lastModified")
    changes: list[FileChange] = Field(default_factory=list)
    versions: list[FileVersion] = Field(default_factory=list)
    change_source: str | None = Field(alias="changeSource", default=None)

    class Config:
        """Allow both alias and field-name population."""

        allow_population_by_field_name = True
        extra = "ignore"


__all__ = [
    "TERMINAL_STATUSES",
    "Action",
    "ActionState",
    "ActionStatus",
    "ActionType",
    "BuildOutput",
    "FileChange",
    "FileHistory",
    "FileVersion",
    "can_transition",
    "parse_action",
]
