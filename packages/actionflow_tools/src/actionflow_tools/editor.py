#!/usr/bin/env python3
"""Structured text editor tool operating on the sandbox filesystem."""

from __future__ import annotations

import difflib
import posixpath
import threading
from typing import Literal

from pydantic.v1 import BaseModel, Field, root_validator

from actionflow_core.common import get_logger
from actionflow_core.errors import ToolInputError
from actionflow_core.sandbox import Sandbox

logging = get_logger(name="tools.editor")

SNIPPET_LINES = 4
MAX_VIEW_CHARS = 16000


class EditorToolParameters(BaseModel):
    """Arguments accepted by the str_replace_editor tool."""

    command: Literal["view", "create", "str_replace", "insert", "undo_edit"]
    path: str = Field(description="File or directory path inside the sandbox.")
    file_text: str | None = None
    old_str: str | None = None
    new_str: str | None = None
    insert_line: int | None = None
    view_range: list[int] | None = None

    class Config:
        """Ignore keys the editor does not understand."""

        extra = "ignore"

    @root_validator(skip_on_failure=True)
    def _check_command_arguments(cls, values: dict) -> dict:
        command = values.get("command")
        if command == "create" and values.get("file_text") is None:
            raise ValueError("file_text is required for create")
        if command == "str_replace" and not values.get("old_str"):
            raise ValueError("old_str is required for str_replace")
        if command == "insert":
            if values.get("insert_line") is None:
                raise ValueError("insert_line is required for insert")
            if values.get("new_str") is None:
                raise ValueError("new_str is required for insert")
        view_range = values.get("view_range")
        if view_range is not None and len(view_range) != 2:
            raise ValueError("view_range must contain exactly two integers")
        return values


class BackupStack:
    """Per-path stack of previous file contents used by undo_edit."""

    def __init__(self) -> None:
        self._entries: dict[str, list[str | None]] = {}
        self._lock = threading.Lock()

    def push(self, path: str, content: str | None) -> None:
        """Record content (None for a file that did not exist)."""
        with self._lock:
            self._entries.setdefault(path, []).append(content)

    def pop(self, path: str) -> str | None:
        with self._lock:
            stack = self._entries.get(path)
            if not stack:
                raise ToolInputError(f"No edit history found for {path}.")
            return stack.pop()

    def depth(self, path: str) -> int:
        with self._lock:
            return len(self._entries.get(path, []))


def resolve_sandbox_path(workdir: str, path: str) -> str:
    """Return path relative to the sandbox workdir, rejecting escapes."""
    if not path or not path.strip():
        raise ToolInputError("path is required.")
    root = posixpath.normpath(workdir or "/")
    candidate = path if posixpath.isabs(path) else posixpath.join(root, path)
    resolved = posixpath.normpath(candidate)
    relative = posixpath.relpath(resolved, root)
    if relative == ".." or relative.startswith("../"):
        raise ToolInputError(f"Path '{path}' resolves outside the project root.")
    return relative


async def run_editor(
    sandbox: Sandbox, params: EditorToolParameters, backup_stack: BackupStack
) -> str:
    """Execute one editor command and return its textual report."""
    relative = resolve_sandbox_path(sandbox.workdir, params.path)
    logging.debug("Editor {} on {}", params.command, relative)
    if params.command == "view":
        return await _view(sandbox, relative, params)
    if params.command == "create":
        return await _create(sandbox, relative, params, backup_stack)
    if params.command == "str_replace":
        return await _str_replace(sandbox, relative, params, backup_stack)
    if params.command == "insert":
        return await _insert(sandbox, relative, params, backup_stack)
    return await _undo(sandbox, relative, params, backup_stack)


async def _read_optional(sandbox: Sandbox, relative: str) -> str | None:
    try:
        return await sandbox.fs.read_file(relative, "utf-8")
    except (FileNotFoundError, IsADirectoryError):
        return None


async def _read_required(sandbox: Sandbox, relative: str, display: str) -> str:
    content = await _read_optional(sandbox, relative)
    if content is None:
        raise ToolInputError(f"The path {display} does not exist.")
    return content


async def _write(sandbox: Sandbox, relative: str, content: str) -> None:
    folder = posixpath.dirname(relative)
    if folder and folder != ".":
        await sandbox.fs.mkdir(folder, recursive=True)
    await sandbox.fs.write_file(relative, content)


def _numbered(content: str, start: int = 1) -> str:
    lines = content.split("\n")
    return "\n".join(f"{index:6}\t{line}" for index, line in enumerate(lines, start=start))


def _diff(path: str, before: str, after: str) -> str:
    diff = difflib.unified_diff(
        before.splitlines(keepends=True),
        after.splitlines(keepends=True),
        fromfile=path,
        tofile=path,
    )
    return "".join(diff)


async def _view(sandbox: Sandbox, relative: str, params: EditorToolParameters) -> str:
    content = await _read_optional(sandbox, relative)
    if content is None:
        try:
            entries = await sandbox.fs.readdir(relative)
        except (FileNotFoundError, NotADirectoryError) as exc:
            raise ToolInputError(f"The path {params.path} does not exist.") from exc
        if params.view_range is not None:
            raise ToolInputError("view_range is not allowed when path points to a directory.")
        listing = "\n".join(sorted(entries)) or "(empty directory)"
        return f"Here's the files and directories in {params.path}:\n{listing}"
    start = 1
    if params.view_range is not None:
        lines = content.split("\n")
        first, last = params.view_range
        if first < 1 or first > len(lines):
            raise ToolInputError(
                f"Invalid view_range {params.view_range}: first line must be in [1, {len(lines)}]."
            )
        if last != -1 and (last < first or last > len(lines)):
            raise ToolInputError(
                f"Invalid view_range {params.view_range}: last line must be -1 or in "
                f"[{first}, {len(lines)}]."
            )
        selected = lines[first - 1 :] if last == -1 else lines[first - 1 : last]
        content = "\n".join(selected)
        start = first
    rendered = _numbered(content, start=start)
    if len(rendered) > MAX_VIEW_CHARS:
        rendered = rendered[:MAX_VIEW_CHARS] + "\n... (truncated)"
    return f"Here's the result of running `cat -n` on {params.path}:\n{rendered}"


async def _create(
    sandbox: Sandbox, relative: str, params: EditorToolParameters, backup_stack: BackupStack
) -> str:
    previous = await _read_optional(sandbox, relative)
    file_text = params.file_text or ""
    await _write(sandbox, relative, file_text)
    backup_stack.push(relative, previous)
    if previous is None:
        return f"File created successfully at: {params.path}"
    diff_text = _diff(relative, previous, file_text)
    return f"File overwritten at: {params.path}\n{diff_text}".rstrip()


async def _str_replace(
    sandbox: Sandbox, relative: str, params: EditorToolParameters, backup_stack: BackupStack
) -> str:
    content = await _read_required(sandbox, relative, params.path)
    old_str = params.old_str or ""
    new_str = params.new_str or ""
    occurrences = content.count(old_str)
    if occurrences == 0:
        raise ToolInputError(
            f"No replacement was performed, old_str `{old_str}` did not appear verbatim in "
            f"{params.path}."
        )
    if occurrences > 1:
        line_numbers = [
            index + 1 for index, line in enumerate(content.split("\n")) if old_str in line
        ]
        raise ToolInputError(
            f"No replacement was performed. Multiple occurrences of old_str `{old_str}` in "
            f"lines {line_numbers}. Please ensure it is unique."
        )
    updated = content.replace(old_str, new_str, 1)
    await _write(sandbox, relative, updated)
    backup_stack.push(relative, content)
    replacement_line = content.split(old_str, 1)[0].count("\n")
    lines = updated.split("\n")
    first = max(0, replacement_line - SNIPPET_LINES)
    last = replacement_line + SNIPPET_LINES + new_str.count("\n") + 1
    snippet = _numbered("\n".join(lines[first:last]), start=first + 1)
    return (
        f"The file {params.path} has been edited. Here's the result of running `cat -n` on a "
        f"snippet of {params.path}:\n{snippet}\n"
        "Review the changes and make sure they are as expected. Edit the file again if necessary."
    )


async def _insert(
    sandbox: Sandbox, relative: str, params: EditorToolParameters, backup_stack: BackupStack
) -> str:
    content = await _read_required(sandbox, relative, params.path)
    lines = content.split("\n")
    insert_line = params.insert_line or 0
    if insert_line < 0 or insert_line > len(lines):
        raise ToolInputError(
            f"Invalid insert_line {insert_line}: it should be within [0, {len(lines)}]."
        )
    new_lines = (params.new_str or "").split("\n")
    updated_lines = lines[:insert_line] + new_lines + lines[insert_line:]
    updated = "\n".join(updated_lines)
    await _write(sandbox, relative, updated)
    backup_stack.push(relative, content)
    first = max(0, insert_line - SNIPPET_LINES)
    last = insert_line + len(new_lines) + SNIPPET_LINES
    snippet = _numbered("\n".join(updated_lines[first:last]), start=first + 1)
    return (
        f"The file {params.path} has been edited. Here's the result of running `cat -n` on a "
        f"snippet of the edited file:\n{snippet}\n"
        "Review the changes and make sure they are as expected (correct indentation, no "
        "duplicate lines, etc). Edit the file again if necessary."
    )


async def _undo(
    sandbox: Sandbox, relative: str, params: EditorToolParameters, backup_stack: BackupStack
) -> str:
    previous = backup_stack.pop(relative)
    current = await _read_optional(sandbox, relative) or ""
    restored = previous or ""
    await _write(sandbox, relative, restored)
    diff_text = _diff(relative, current, restored)
    message = f"Last edit to {params.path} undone successfully."
    if diff_text:
        message = f"{message}\n{diff_text}".rstrip()
    return message


__all__ = [
    "BackupStack",
    "EditorToolParameters",
    "resolve_sandbox_path",
    "run_editor",
]
