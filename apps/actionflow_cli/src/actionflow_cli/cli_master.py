#!/usr/bin/env python3
"""Terminal runner that replays an action script against a local sandbox."""
# ruff: noqa: E402

import argparse
import asyncio
import json
import sys
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from rich import box
from rich.console import Console
from rich.table import Table


def _verbosity_to_level(verbosity: int) -> str:
    if verbosity <= 0:
        return "WARNING"
    if verbosity == 1:
        return "DEBUG"
    return "TRACE"


def _parse_verbosity(argv: list[str]) -> int | None:
    count = 0
    for arg in argv[1:]:
        if arg in {"-v", "--verbose"}:
            count += 1
            continue
        if arg.startswith("-v") and arg != "-v":
            tail = arg[1:]
            if tail and all(ch == "v" for ch in tail):
                count += len(tail)
    return count if count > 0 else None


def _bootstrap_cli_logging_env(argv: list[str]) -> None:
    """Configure logging overrides for the CLI before core imports."""
    from actionflow_core.config import set_config_override

    verbosity = _parse_verbosity(argv)
    if verbosity is not None:
        set_config_override({"runtime": {"log_level": _verbosity_to_level(verbosity)}})
        return
    set_config_override({"runtime": {"log_level": "WARNING"}})


_bootstrap_cli_logging_env(sys.argv)

from actionflow_core.action_runner import ActionRunner
from actionflow_core.actions import ActionState, ActionStatus
from actionflow_core.common import get_logger, run_log_context
from actionflow_core.config import get_config, set_config_override
from actionflow_core.errors import ActionNotFoundError
from actionflow_core.types import ActionAlert
from actionflow_tools.local_sandbox import LocalSandbox, LocalShell

logging = get_logger(name="actionflow.cli")

_STATUS_STYLES = {
    ActionStatus.PENDING: "dim",
    ActionStatus.RUNNING: "cyan",
    ActionStatus.COMPLETE: "green",
    ActionStatus.ABORTED: "yellow",
    ActionStatus.FAILED: "red",
}


class ScriptError(ValueError):
    """Raised when an action script line cannot be interpreted."""


@dataclass
class ScriptStep:
    """One register/commit instruction from an action script."""

    op: str
    action_id: str
    action: dict[str, object] | None = None
    streaming: bool = False


@dataclass
class RunReport:
    """Outcome of replaying a script."""

    states: dict[str, ActionState]
    alerts: list[ActionAlert] = field(default_factory=list)
    tool_responses: dict[str, str] = field(default_factory=dict)

    @property
    def failed(self) -> list[str]:
        return [
            action_id
            for action_id, state in self.states.items()
            if state.status == ActionStatus.FAILED
        ]


def _parse_line(line: str, lineno: int) -> list[ScriptStep]:
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ScriptError(f"line {lineno}: invalid JSON ({exc.msg})") from exc
    if not isinstance(payload, dict):
        raise ScriptError(f"line {lineno}: expected a JSON object")
    action_id = payload.get("id")
    if not isinstance(action_id, str) or not action_id:
        raise ScriptError(f"line {lineno}: missing action id")
    action = payload.get("action")
    if action is not None and not isinstance(action, dict):
        raise ScriptError(f"line {lineno}: action must be an object")
    streaming = bool(payload.get("streaming", False))
    op = payload.get("op")
    if op is None:
        if action is None:
            raise ScriptError(f"line {lineno}: action is required")
        return [
            ScriptStep(op="register", action_id=action_id, action=action),
            ScriptStep(op="commit", action_id=action_id, action=action, streaming=streaming),
        ]
    if op not in {"register", "commit"}:
        raise ScriptError(f"line {lineno}: unknown op {op!r}")
    if op == "register" and action is None:
        raise ScriptError(f"line {lineno}: register requires an action")
    return [ScriptStep(op=op, action_id=action_id, action=action, streaming=streaming)]


def load_script(lines: Iterable[str]) -> list[ScriptStep]:
    """Parse JSONL script lines, skipping blanks and ``#`` comments."""
    steps: list[ScriptStep] = []
    for lineno, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        steps.extend(_parse_line(line, lineno))
    return steps


async def replay_script(runner: ActionRunner, steps: list[ScriptStep]) -> RunReport:
    """Register and commit each scripted action in order."""
    alerts: list[ActionAlert] = []
    runner.on_alert = alerts.append
    for step in steps:
        if step.op == "register":
            runner.register(step.action_id, step.action or {})
            continue
        try:
            await runner.commit(
                step.action_id,
                is_streaming=step.streaming,
                fragment=step.action,
            )
        except ActionNotFoundError as exc:
            logging.error("Skipping commit: {}", exc)
    await runner.wait_idle()
    responses: dict[str, str] = {}
    for state in runner.snapshot().values():
        call_id = _tool_call_id(state)
        if call_id is None:
            continue
        pending = runner.tool_calls.get(call_id)
        if pending is not None and pending.done:
            responses[call_id] = pending.result()
    return RunReport(states=runner.snapshot(), alerts=alerts, tool_responses=responses)


def _tool_call_id(state: ActionState) -> str | None:
    if state.type.value != "toolUse":
        return None
    try:
        payload = json.loads(state.content)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    call_id = payload.get("toolCallId") or payload.get("tool_call_id")
    return str(call_id) if call_id else None


def _truncate(text: str, max_len: int) -> str:
    text = " ".join(text.split())
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def render_report(console: Console, report: RunReport) -> None:
    """Render the final action table, alerts, and tool responses."""
    table = Table(box=box.SIMPLE_HEAD, show_edge=False)
    table.add_column("Action")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Content", overflow="fold")
    for action_id, state in report.states.items():
        style = _STATUS_STYLES.get(state.status, "")
        table.add_row(
            action_id,
            state.type.value,
            f"[{style}]{state.status.value}[/{style}]" if style else state.status.value,
            _truncate(state.file_path or state.content, 60),
        )
    console.print(table)
    for alert in report.alerts:
        console.print(f"{alert['title']}: {alert['description']}", style="bold red")
        console.print(alert["content"], markup=False, highlight=False)
    for call_id, response in report.tool_responses.items():
        console.print(f"tool {call_id} -> {_truncate(response, 120)}", markup=False)


def run_cli(args: argparse.Namespace) -> int:
    """Replay the requested script and return a process exit code."""
    console = Console(color_system=None if args.no_color else "auto")
    overrides: dict[str, dict[str, object]] = {}
    if args.start_delay is not None:
        overrides["runner"] = {"start_launch_delay": args.start_delay}
    if args.workdir:
        overrides["sandbox"] = {"workdir": str(Path(args.workdir).expanduser().resolve())}
    if overrides:
        set_config_override(overrides)

    try:
        with open(args.script, encoding="utf-8") as handle:
            steps = load_script(handle)
    except (OSError, ScriptError) as exc:
        console.print(f"Cannot read script: {exc}", style="red")
        return 2

    config = get_config()
    sandbox = LocalSandbox(config.sandbox.workdir)
    shell = LocalShell(sandbox)
    runner = ActionRunner(sandbox, lambda: shell, config=config)

    async def _run() -> RunReport:
        try:
            return await replay_script(runner, steps)
        finally:
            await runner.close()

    with run_log_context(runner.runner_id):
        report = asyncio.run(_run())
    render_report(console, report)
    return 1 if report.failed else 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    parser = argparse.ArgumentParser(description="actionflow action runner")
    subparsers = parser.add_subparsers(dest="command", required=True)
    run_parser = subparsers.add_parser("run", help="Replay a JSONL action script")
    run_parser.add_argument("script", help="Path to the JSONL action script")
    run_parser.add_argument("--workdir", help="Sandbox working directory")
    run_parser.add_argument(
        "--start-delay",
        type=float,
        default=None,
        help="Seconds to hold the queue after launching a start action",
    )
    run_parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (-v=debug, -vv=trace)",
    )
    run_parser.add_argument("--no-color", action="store_true")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the CLI executable."""
    parser = build_parser()
    args = parser.parse_args(argv)
    return run_cli(args)


if __name__ == "__main__":
    raise SystemExit(main())
