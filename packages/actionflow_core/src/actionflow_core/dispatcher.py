#!/usr/bin/env python3
"""Route actions to their execution strategy and record the outcome."""

from __future__ import annotations

import asyncio
import posixpath
import re
from collections.abc import Awaitable, Callable

from actionflow_core.actions import ActionState, ActionStatus, ActionType, BuildOutput
from actionflow_core.cancellation import AbortSignal
from actionflow_core.classifier import build_alert, clean_command_output, is_classified
from actionflow_core.common import format_action_content, get_logger
from actionflow_core.config import RunnerConfig
from actionflow_core.errors import (
    NO_OUTPUT,
    ActionCommandError,
    ToolExecutionError,
    unreachable,
)
from actionflow_core.sandbox import Sandbox, ShellProvider, ShellResponse
from actionflow_core.store import ActionStore
from actionflow_core.tool_calls import ToolCallBridge, ToolCallTable
from actionflow_core.types import ActionAlert
from actionflow_tools.editor import BackupStack

logging = get_logger(name="core.dispatcher")

AlertCallback = Callable[[ActionAlert], None]
BuildOutputSink = Callable[[BuildOutput], None]

SHELL_FAILED = "Failed To Execute Shell Command"
START_FAILED = "Failed To Start Application"
BUILD_FAILED = "Build Failed"


def normalize_npm_install(content: str) -> str:
    """Strip a leading ``npm install`` / ``npm i`` from an install action."""
    if content.startswith("npm install"):
        return content[len("npm install") :]
    if content.startswith("npm i"):
        return content[len("npm i") :]
    return content


def mentions_package(content: str, package: str) -> bool:
    """Return True when content names package as a whole word."""
    if not package:
        return False
    return re.search(rf"\b{re.escape(package)}\b", content) is not None


def resolve_relative_path(workdir: str, file_path: str) -> str:
    """Return file_path relative to the sandbox workdir."""
    root = posixpath.normpath(workdir or "/")
    candidate = file_path if posixpath.isabs(file_path) else posixpath.join(root, file_path)
    return posixpath.relpath(posixpath.normpath(candidate), root)


class ActionDispatcher:
    """Execute one action through its type-specific strategy.

    Store transitions follow pending -> running -> complete/aborted/failed.
    Only ActionCommandError failures are surfaced through the alert callback;
    everything else is logged.
    """

    def __init__(
        self,
        store: ActionStore,
        sandbox: Sandbox,
        shell_provider: ShellProvider,
        *,
        runner_id: str,
        tool_calls: ToolCallTable,
        backup_stack: BackupStack,
        config: RunnerConfig,
        on_alert: AlertCallback | None = None,
        on_build_output: BuildOutputSink | None = None,
    ) -> None:
        """Initialize the dispatcher with its collaborators."""
        self._store = store
        self._sandbox = sandbox
        self._shell_provider = shell_provider
        self._runner_id = runner_id
        self._config = config
        self.on_alert = on_alert
        self._on_build_output = on_build_output
        self._background: set[asyncio.Task[None]] = set()
        self._bridge = ToolCallBridge(
            tool_calls,
            sandbox,
            backup_stack,
            execute_shell=self._execute_shell,
            run_shell_command=self.run_shell_command,
        )
        self._strategies: dict[ActionType, Callable[[ActionState], Awaitable[object]]] = {
            ActionType.SHELL: self._run_shell_action,
            ActionType.NPM_INSTALL: self._run_npm_install_action,
            ActionType.NPM_EXEC: self._run_npm_exec_action,
            ActionType.FILE: self.run_file_action,
            ActionType.BUILD: self._run_build_action,
            ActionType.TOOL_USE: self._run_tool_use_action,
            ActionType.CONVEX: self._run_convex_action,
        }

    @property
    def background_tasks(self) -> set[asyncio.Task[None]]:
        return set(self._background)

    async def dispatch(self, action_id: str, is_streaming: bool = False) -> None:
        """Run the action and record its outcome in the store."""
        action = self._store.get(action_id)
        if action is None:
            unreachable(f"Action {action_id} not found")
        if action.abort_signal.aborted:
            logging.debug("Skipping aborted action {}", action_id)
            return

        self._store.update(action_id, status=ActionStatus.RUNNING)
        try:
            if action.type == ActionType.START:
                self._launch_start_action(action)
                # Two start actions launched back to back race for the same
                # port; hold the lane briefly before the next action runs.
                await asyncio.sleep(self._config.start_launch_delay)
                return
            strategy = self._strategies.get(action.type)
            if strategy is None:
                unreachable(f"Unhandled action type {action.type}")
            await strategy(action)

            if is_streaming:
                status = ActionStatus.RUNNING
            elif action.abort_signal.aborted:
                status = ActionStatus.ABORTED
            else:
                status = ActionStatus.COMPLETE
            self._store.update(action_id, status=status)
        except Exception as exc:
            if action.abort_signal.aborted:
                return
            self._record_failure(action, exc)
            raise

    def _record_failure(self, action: ActionState, exc: Exception) -> None:
        self._store.update(action.action_id, status=ActionStatus.FAILED, error="Action failed")
        logging.error("[{}]:Action failed: {}", action.type.value, exc)
        if not is_classified(exc):
            return
        if self.on_alert is None:
            return
        try:
            self.on_alert(build_alert(exc, self._config.alert_title))
        except Exception as alert_exc:
            logging.error("Alert callback failed: {}", alert_exc)

    async def _execute_shell(self, command: str, action: ActionState) -> ShellResponse | None:
        shell = self._shell_provider()
        await shell.ready()

        def _on_abort() -> None:
            logging.debug("[{}]:Aborting Action {}", action.type.value, action.action_id)
            action.abort()

        response = await shell.execute_command(
            self._runner_id,
            command,
            _on_abort,
            abort_signal=action.abort_signal,
        )
        exit_code = response.exit_code if response else None
        logging.debug("{} Shell Response: [exit code:{}]", action.type.value, exit_code)
        return response

    async def _run_command_checked(
        self, command: str, action: ActionState, header: str
    ) -> ShellResponse:
        response = await self._execute_shell(command, action)
        if response is None or response.exit_code != 0:
            output = response.output if response else ""
            raise ActionCommandError(header, output or NO_OUTPUT)
        return response

    async def run_shell_command(
        self,
        command: str,
        on_abort: Callable[[], None],
        abort_signal: AbortSignal | None = None,
    ) -> str:
        """Run command in the shell; raise with cleaned output on failure."""
        shell = self._shell_provider()
        await shell.ready()
        response = await shell.execute_command(
            self._runner_id, command, on_abort, abort_signal=abort_signal
        )
        output = response.output if response else ""
        if response is None or response.exit_code != 0:
            exit_code = response.exit_code if response else None
            raise ToolExecutionError(exit_code, clean_command_output(command, output or ""))
        return output or ""

    async def _run_shell_action(self, action: ActionState) -> None:
        if action.type != ActionType.SHELL:
            unreachable("Expected shell action")
        logging.debug("[shell]:Running Shell Action {}", format_action_content(action.content))
        await self._run_command_checked(action.content, action, SHELL_FAILED)

    async def _run_npm_install_action(self, action: ActionState) -> None:
        if action.type != ActionType.NPM_INSTALL:
            unreachable("Expected npmInstall action")
        normalized = normalize_npm_install(action.content)
        if mentions_package(normalized, self._config.platform_package):
            logging.info("{} is already installed", self._config.platform_package)
            return
        command = f"npm install {normalized}"
        await self._run_shell_action(action.with_changes(type=ActionType.SHELL, content=command))

    async def _run_npm_exec_action(self, action: ActionState) -> None:
        if action.type != ActionType.NPM_EXEC:
            unreachable("Expected npmExec action")
        content = action.content
        if not content.startswith("npm run ") and not content.startswith("npx "):
            logging.error("Invalid npmExec action: {}", content)
            return
        if mentions_package(content, self._config.platform_package):
            logging.error("{} should be run as a tool call", self._config.platform_package)
            return
        if content == self._config.dev_server_command:
            logging.error("Dev server should be run as a tool call")
            return
        await self._run_shell_action(action.with_changes(type=ActionType.SHELL))

    async def run_file_action(self, action: ActionState) -> None:
        if action.type != ActionType.FILE:
            unreachable("Expected file action")
        if not action.file_path:
            unreachable("File action without a path")
        relative_path = resolve_relative_path(self._sandbox.workdir, action.file_path)
        folder = posixpath.dirname(relative_path).rstrip("/")
        if folder and folder != ".":
            try:
                await self._sandbox.fs.mkdir(folder, recursive=True)
                logging.debug("Created folder {}", folder)
            except Exception as exc:
                logging.error("Failed to create folder {}: {}", folder, exc)
        try:
            await self._sandbox.fs.write_file(relative_path, action.content)
            logging.debug("File written {}", relative_path)
        except Exception as exc:
            logging.error("Failed to write file {}: {}", relative_path, exc)

    async def _run_build_action(self, action: ActionState) -> BuildOutput:
        if action.type != ActionType.BUILD:
            unreachable("Expected build action")
        command, *args = self._config.build_command.split()
        process = await self._sandbox.spawn(command, args)
        chunks: list[str] = []
        async for chunk in process.output:
            chunks.append(chunk)
            action.abort_signal.throw_if_aborted()
        exit_code = await process.exit
        output = "".join(chunks)
        if exit_code != 0:
            raise ActionCommandError(BUILD_FAILED, output or NO_OUTPUT)
        build_output = BuildOutput(
            path=posixpath.join(self._sandbox.workdir, self._config.build_output_dir),
            exit_code=exit_code,
            output=output,
        )
        if self._on_build_output is not None:
            self._on_build_output(build_output)
        return build_output

    async def _run_start_action(self, action: ActionState) -> ShellResponse:
        if action.type != ActionType.START:
            unreachable("Expected start action")
        return await self._run_command_checked(action.content, action, START_FAILED)

    def _launch_start_action(self, action: ActionState) -> None:
        task = asyncio.ensure_future(self._watch_start_action(action))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _watch_start_action(self, action: ActionState) -> None:
        try:
            await self._run_start_action(action)
        except Exception as exc:
            if action.abort_signal.aborted:
                return
            self._record_failure(action, exc)
            return
        self._store.update(action.action_id, status=ActionStatus.COMPLETE)

    async def _run_tool_use_action(self, action: ActionState) -> None:
        await self._bridge.run(action)

    async def _run_convex_action(self, action: ActionState) -> None:
        if action.type != ActionType.CONVEX:
            unreachable("Expected convex action")
        logging.error("Convex action is not supported anymore. Use tool calls instead.")


__all__ = [
    "BUILD_FAILED",
    "SHELL_FAILED",
    "START_FAILED",
    "ActionDispatcher",
    "AlertCallback",
    "mentions_package",
    "normalize_npm_install",
    "resolve_relative_path",
]
