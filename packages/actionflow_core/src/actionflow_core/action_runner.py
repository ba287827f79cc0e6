#!/usr/bin/env python3
"""Orchestrate streamed actions through a single ordered execution lane."""

from __future__ import annotations

import asyncio
import json
import posixpath
from typing import Any

from actionflow_core.actions import (
    Action,
    ActionState,
    ActionStatus,
    ActionType,
    BuildOutput,
    FileHistory,
    parse_action,
)
from actionflow_core.cancellation import AbortController
from actionflow_core.common import get_logger, get_unique_timestamp
from actionflow_core.config import AppConfig, get_config
from actionflow_core.dispatcher import ActionDispatcher, AlertCallback
from actionflow_core.errors import ActionNotFoundError
from actionflow_core.execution_queue import ExecutionQueue
from actionflow_core.sandbox import Sandbox, ShellProvider
from actionflow_core.store import ActionStore, StoreListener
from actionflow_core.tool_calls import ToolCallTable
from actionflow_tools.editor import BackupStack

logging = get_logger(name="core.action_runner")


class ActionRunner:
    """Register, commit, and execute actions emitted by a producer.

    The producer calls register() as fragments stream in and commit() once an
    action is ready; commits drain through one ExecutionQueue so at most one
    action's side effects are in flight at a time.
    """

    def __init__(
        self,
        sandbox: Sandbox,
        shell_provider: ShellProvider,
        *,
        tool_calls: ToolCallTable | None = None,
        backup_stack: BackupStack | None = None,
        on_alert: AlertCallback | None = None,
        config: AppConfig | None = None,
    ) -> None:
        """Initialize the runner and its dispatcher."""
        self._config = config or get_config()
        self._sandbox = sandbox
        self.runner_id = get_unique_timestamp()
        self.actions = ActionStore()
        self.tool_calls = tool_calls or ToolCallTable()
        self.backup_stack = backup_stack or BackupStack()
        self.build_output: BuildOutput | None = None
        self._queue = ExecutionQueue()
        self._dispatcher = ActionDispatcher(
            self.actions,
            sandbox,
            shell_provider,
            runner_id=self.runner_id,
            tool_calls=self.tool_calls,
            backup_stack=self.backup_stack,
            config=self._config.runner,
            on_alert=on_alert,
            on_build_output=self._set_build_output,
        )

    @property
    def on_alert(self) -> AlertCallback | None:
        return self._dispatcher.on_alert

    @on_alert.setter
    def on_alert(self, callback: AlertCallback | None) -> None:
        self._dispatcher.on_alert = callback

    @property
    def queue(self) -> ExecutionQueue:
        return self._queue

    def register(self, action_id: str, fragment: Action | dict[str, Any]) -> None:
        """Upsert a streamed action fragment.

        New actions start pending and are flagged running once the work
        already queued ahead of them has drained.
        """
        created = self.actions.register(action_id, fragment)
        if not created:
            return
        self._queue.after_pending(
            lambda: self._mark_about_to_run(action_id),
            label=f"about-to-run:{action_id}",
        )

    def _mark_about_to_run(self, action_id: str) -> None:
        state = self.actions.get(action_id)
        if state is not None and state.status == ActionStatus.PENDING:
            self.actions.update(action_id, status=ActionStatus.RUNNING)

    async def commit(
        self,
        action_id: str,
        *,
        is_streaming: bool = False,
        fragment: Action | dict[str, Any] | None = None,
    ) -> None:
        """Queue an action for execution and wait for its turn to finish."""
        state = self.actions.get(action_id)
        if state is None:
            raise ActionNotFoundError(f"Action {action_id} not found")
        if state.executed:
            return
        if is_streaming and state.type != ActionType.FILE:
            return

        changes: dict[str, Any] = {"executed": not is_streaming}
        if fragment is not None:
            action = parse_action(fragment)
            changes.update(
                content=action.content,
                file_path=action.file_path or state.file_path,
                change_source=action.change_source or state.change_source,
            )
        self.actions.update(action_id, **changes)

        await self._queue.submit(
            lambda: self._dispatcher.dispatch(action_id, is_streaming),
            label=f"{state.type.value}:{action_id}",
        )

    def update_action(self, action_id: str, **changes: Any) -> ActionState | None:
        """Merge fields into an action's state (unknown ids are ignored)."""
        return self.actions.update(action_id, **changes)

    def snapshot(self) -> dict[str, ActionState]:
        return self.actions.snapshot()

    def subscribe(self, listener: StoreListener):
        return self.actions.subscribe(listener)

    def abort(self, action_id: str) -> bool:
        """Fire an action's cancellation token."""
        state = self.actions.get(action_id)
        if state is None:
            logging.warning("Cannot abort unknown action {}", action_id)
            return False
        state.abort()
        return True

    async def wait_idle(self) -> None:
        """Wait for queued work and launched start actions to settle."""
        await self._queue.join()
        background = self._dispatcher.background_tasks
        if background:
            await asyncio.gather(*background, return_exceptions=True)

    async def close(self) -> None:
        """Stop the execution lane."""
        await self._queue.close()

    async def run_shell_command(self, command: str) -> str:
        """Run a one-off command through the runner's shell session."""
        return await self._dispatcher.run_shell_command(command, lambda: None)

    def _set_build_output(self, build_output: BuildOutput) -> None:
        self.build_output = build_output

    def _history_path(self, file_path: str) -> str:
        return posixpath.join(self._config.runner.history_dir, file_path.lstrip("/"))

    async def get_file_history(self, file_path: str) -> FileHistory | None:
        """Read the saved history record for a file, or None."""
        history_path = self._history_path(file_path)
        try:
            content = await self._sandbox.fs.read_file(history_path, "utf-8")
            return FileHistory.parse_obj(json.loads(content))
        except Exception as exc:
            logging.error("Failed to get file history for {}: {}", file_path, exc)
            return None

    async def save_file_history(self, file_path: str, history: FileHistory) -> None:
        """Persist a file's history record (best-effort)."""
        history_path = self._history_path(file_path)
        controller = AbortController()
        state = ActionState(
            action_id=f"history:{file_path}",
            type=ActionType.FILE,
            content=history.json(by_alias=True),
            file_path=history_path,
            change_source="auto-save",
            status=ActionStatus.RUNNING,
            executed=True,
            abort=controller.abort,
            abort_signal=controller.signal,
        )
        await self._dispatcher.run_file_action(state)


__all__ = ["ActionRunner"]
