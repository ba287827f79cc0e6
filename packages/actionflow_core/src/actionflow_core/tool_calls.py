#!/usr/bin/env python3
"""Bridge between toolUse actions and externally awaited tool calls."""

from __future__ import annotations

import asyncio
import json
import threading
from collections.abc import Awaitable, Callable
from concurrent.futures import Future, InvalidStateError
from typing import Any, Literal

from pydantic.v1 import BaseModel, Field, ValidationError

from actionflow_core.actions import ActionState, ActionType
from actionflow_core.classifier import format_tool_error
from actionflow_core.common import get_logger
from actionflow_core.config import get_config_value
from actionflow_core.errors import (
    ToolCallInProgressError,
    ToolExecutionError,
    ToolInputError,
    unreachable,
)
from actionflow_core.sandbox import Sandbox, ShellResponse
from actionflow_tools.bash import BashToolParameters
from actionflow_tools.editor import BackupStack, EditorToolParameters, run_editor

logging = get_logger(name="core.tool_calls")

ShellExecutor = Callable[[str, ActionState], Awaitable[ShellResponse | None]]
ShellCommandRunner = Callable[..., Awaitable[str]]


class ToolInvocation(BaseModel):
    """Serialized tool call carried in a toolUse action's content."""

    state: Literal["partial-call", "call", "result"]
    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str | None = Field(alias="toolName", default=None)
    args: dict[str, Any] = Field(default_factory=dict)
    result: Any | None = None

    class Config:
        """Allow both alias and field-name population."""

        allow_population_by_field_name = True
        extra = "ignore"


def load_tool_payload(content: str) -> dict[str, Any]:
    """Decode a toolUse payload into a JSON object."""
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ToolInputError(f"Tool call payload is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ToolInputError("Tool call payload must be a JSON object.")
    return payload


def parse_tool_invocation(content: str | dict[str, Any]) -> ToolInvocation:
    """Parse a toolUse payload, raising ToolInputError when malformed."""
    payload = load_tool_payload(content) if isinstance(content, str) else content
    try:
        return ToolInvocation.parse_obj(payload)
    except ValidationError as exc:
        raise ToolInputError(f"Invalid tool call payload: {exc}") from exc


class PendingToolCall:
    """Single-resolution response slot for one tool call id."""

    def __init__(self, tool_call_id: str) -> None:
        self.tool_call_id = tool_call_id
        self._future: Future[str] = Future()

    @property
    def done(self) -> bool:
        return self._future.done()

    def resolve(self, value: str) -> bool:
        """Resolve with value; later resolutions are ignored (first wins)."""
        try:
            self._future.set_result(value)
        except InvalidStateError:
            logging.warning("Tool call {} already resolved; ignoring", self.tool_call_id)
            return False
        return True

    def result(self, timeout: float | None = None) -> str:
        """Block the calling thread until the response is available."""
        return self._future.result(timeout=timeout)

    async def wait(self) -> str:
        """Await the response from async code."""
        return await asyncio.wrap_future(self._future)


class ToolCallTable:
    """Thread-safe mapping of tool call id to its pending response."""

    def __init__(self) -> None:
        self._calls: dict[str, PendingToolCall] = {}
        self._lock = threading.Lock()

    def __contains__(self, tool_call_id: object) -> bool:
        return tool_call_id in self._calls

    def __len__(self) -> int:
        return len(self._calls)

    def get(self, tool_call_id: str) -> PendingToolCall | None:
        with self._lock:
            return self._calls.get(tool_call_id)

    def get_or_create(self, tool_call_id: str) -> PendingToolCall:
        """Return the entry for tool_call_id, creating it on first reference."""
        with self._lock:
            call = self._calls.get(tool_call_id)
            if call is None:
                call = PendingToolCall(tool_call_id)
                self._calls[tool_call_id] = call
            return call

    def resolve(self, tool_call_id: str, value: str) -> bool:
        return self.get_or_create(tool_call_id).resolve(value)

    async def wait(self, tool_call_id: str) -> str:
        """Await the response for tool_call_id, creating the entry if needed."""
        return await self.get_or_create(tool_call_id).wait()


class ToolCallBridge:
    """Run toolUse actions and answer the matching pending call exactly once."""

    def __init__(
        self,
        table: ToolCallTable,
        sandbox: Sandbox,
        backup_stack: BackupStack,
        execute_shell: ShellExecutor,
        run_shell_command: ShellCommandRunner,
    ) -> None:
        """Initialize the bridge with its sandbox and shell collaborators."""
        self._table = table
        self._sandbox = sandbox
        self._backup_stack = backup_stack
        self._execute_shell = execute_shell
        self._run_shell_command = run_shell_command

    async def run(self, state: ActionState) -> str | None:
        """Execute the tool call carried by a toolUse action.

        Once the payload names a call id, that call is always answered: with
        the tool's output, or with an ``Error:`` message when validation or
        execution fails.

        Returns:
            The response text, or None when the call was already resolved
            upstream.
        """
        if state.type != ActionType.TOOL_USE:
            unreachable("Expected toolUse action")
        payload = load_tool_payload(state.content)
        call_state = payload.get("state")
        call_id = payload.get("toolCallId") or payload.get("tool_call_id")
        if call_state == "result":
            logging.debug("Tool call {} already has a result", call_id)
            return None
        if call_state == "partial-call":
            raise ToolCallInProgressError("Tool call is still in progress")
        if not call_id:
            raise ToolInputError("Tool call payload has no toolCallId")

        pending = self._table.get_or_create(str(call_id))
        try:
            invocation = parse_tool_invocation(payload)
            result = await self._invoke(invocation, state)
        except Exception as exc:
            logging.error("Error on tool call {}: {}", call_id, exc)
            pending.resolve(format_tool_error(exc))
            raise
        pending.resolve(result)
        logging.debug("Resolved tool call {} ({})", call_id, invocation.tool_name)
        return result

    async def _invoke(self, invocation: ToolInvocation, state: ActionState) -> str:
        if invocation.tool_name == "str_replace_editor":
            params = _validate(EditorToolParameters, invocation.args)
            return await run_editor(self._sandbox, params, self._backup_stack)
        if invocation.tool_name == "bash":
            params = _validate(BashToolParameters, invocation.args)
            if not params.command:
                raise ToolInputError("A nonempty command is required")
            response = await self._execute_shell(params.command, state)
            exit_code = response.exit_code if response else None
            output = response.output if response else ""
            if exit_code != 0:
                raise ToolExecutionError(exit_code, output)
            return output or ""
        if invocation.tool_name == "deploy":
            command = get_config_value("tools", "deploy_command", default="npx convex dev --once")
            return await self._run_shell_command(
                command, state.abort, abort_signal=state.abort_signal
            )
        raise ToolInputError(f"Unknown tool: {invocation.tool_name}")


def _validate(model: type[BaseModel], args: dict[str, Any]) -> Any:
    try:
        return model.parse_obj(args)
    except ValidationError as exc:
        raise ToolInputError(f"Invalid tool arguments: {exc}") from exc


__all__ = [
    "PendingToolCall",
    "ToolCallBridge",
    "ToolCallTable",
    "ToolInvocation",
    "load_tool_payload",
    "parse_tool_invocation",
]
