"""Tests for the action script CLI."""

# ruff: noqa: I001
import asyncio
import json

import pytest
from rich.console import Console

from actionflow_core.action_runner import ActionRunner  # noqa: E402
from actionflow_core.actions import ActionStatus  # noqa: E402
from actionflow_core.config import get_config_value  # noqa: E402
from actionflow_tools.local_sandbox import LocalSandbox, LocalShell  # noqa: E402

from actionflow_cli.cli_master import (
    RunReport,
    ScriptError,
    _bootstrap_cli_logging_env,
    _parse_verbosity,
    _verbosity_to_level,
    build_parser,
    load_script,
    main,
    render_report,
    replay_script,
)


def _write_script(path, entries):
    lines = ["# generated script", ""]
    lines.extend(json.dumps(entry) for entry in entries)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def test_parse_verbosity_and_levels():
    """Count -v flags and map them to log levels."""
    assert _parse_verbosity(["cli"]) is None
    assert _parse_verbosity(["cli", "run", "-v"]) == 1
    assert _parse_verbosity(["cli", "-vv", "--verbose"]) == 3
    assert _verbosity_to_level(0) == "WARNING"
    assert _verbosity_to_level(1) == "DEBUG"
    assert _verbosity_to_level(2) == "TRACE"


def test_bootstrap_logging_env_sets_level():
    """Apply the log level derived from argv."""
    _bootstrap_cli_logging_env(["cli", "-v"])
    assert get_config_value("runtime", "log_level") == "DEBUG"
    _bootstrap_cli_logging_env(["cli"])
    assert get_config_value("runtime", "log_level") == "WARNING"


def test_load_script_expands_shorthand_lines():
    """Turn bare action lines into register and commit steps."""
    steps = load_script(
        [
            "# comment",
            "",
            json.dumps({"id": "a1", "action": {"type": "shell", "content": "ls"}}),
            json.dumps({"op": "commit", "id": "a1", "streaming": True}),
        ]
    )
    assert [(step.op, step.action_id) for step in steps] == [
        ("register", "a1"),
        ("commit", "a1"),
        ("commit", "a1"),
    ]
    assert steps[2].streaming is True
    assert steps[2].action is None


@pytest.mark.parametrize(
    ("line", "message"),
    [
        ("{oops", "invalid JSON"),
        ("[1]", "expected a JSON object"),
        (json.dumps({"action": {"type": "shell"}}), "missing action id"),
        (json.dumps({"id": "a1"}), "action is required"),
        (json.dumps({"id": "a1", "op": "delete"}), "unknown op"),
        (json.dumps({"id": "a1", "op": "register"}), "register requires an action"),
    ],
)
def test_load_script_rejects_bad_lines(line, message):
    """Report the offending line for malformed scripts."""
    with pytest.raises(ScriptError, match=message):
        load_script([line])


def test_replay_script_collects_alerts_and_tool_responses(tmp_path):
    """Replay steps and gather the final report."""
    sandbox = LocalSandbox(tmp_path)
    shell = LocalShell(sandbox)
    tool_call = {
        "state": "call",
        "toolCallId": "t1",
        "toolName": "bash",
        "args": {"command": "echo from-tool"},
    }
    entries = [
        {"id": "f1", "action": {"type": "file", "filePath": "a.txt", "content": "x"}},
        {"id": "s1", "action": {"type": "shell", "content": "exit 3"}},
        {"id": "u1", "action": {"type": "toolUse", "content": json.dumps(tool_call)}},
        {"op": "commit", "id": "ghost"},
    ]
    steps = load_script(json.dumps(entry) for entry in entries)

    async def _run():
        runner = ActionRunner(sandbox, lambda: shell)
        try:
            return await replay_script(runner, steps)
        finally:
            await runner.close()

    report = asyncio.run(_run())
    assert report.states["f1"].status == ActionStatus.COMPLETE
    assert report.failed == ["s1"]
    assert report.alerts[0]["description"] == "Failed To Execute Shell Command"
    assert report.tool_responses == {"t1": "from-tool\n"}
    assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "x"


def test_render_report_lists_actions():
    """Render a table row per action plus alerts."""
    console = Console(record=True, width=120)
    report = RunReport(
        states={},
        alerts=[
            {
                "type": "error",
                "title": "Dev Server Failed",
                "description": "Build Failed",
                "content": "[bold]not markup[/bold]",
            }
        ],
        tool_responses={"t1": "ok"},
    )
    render_report(console, report)
    output = console.export_text()
    assert "Dev Server Failed: Build Failed" in output
    assert "[bold]not markup[/bold]" in output
    assert "tool t1 -> ok" in output


def test_build_parser_run_arguments():
    """Parse run options into the namespace."""
    args = build_parser().parse_args(
        ["run", "script.jsonl", "--workdir", "/tmp/x", "--start-delay", "0", "-vv"]
    )
    assert args.command == "run"
    assert args.script == "script.jsonl"
    assert args.start_delay == 0.0
    assert args.verbose == 2


def test_main_runs_script_and_reports_failures(tmp_path, monkeypatch, capsys):
    """Exit 0 for clean runs and 1 when any action failed."""
    monkeypatch.chdir(tmp_path)
    workdir = tmp_path / "project"
    ok_script = _write_script(
        tmp_path / "ok.jsonl",
        [
            {"id": "f1", "action": {"type": "file", "filePath": "src/a.txt", "content": "hi"}},
            {"id": "a1", "action": {"type": "shell", "content": "cat src/a.txt"}},
        ],
    )
    assert main(["run", str(ok_script), "--workdir", str(workdir), "--no-color"]) == 0
    assert (workdir / "src" / "a.txt").read_text(encoding="utf-8") == "hi"
    assert "complete" in capsys.readouterr().out

    bad_script = _write_script(
        tmp_path / "bad.jsonl",
        [{"id": "a1", "action": {"type": "shell", "content": "exit 1"}}],
    )
    assert main(["run", str(bad_script), "--workdir", str(workdir), "--no-color"]) == 1
    assert "Failed To Execute Shell Command" in capsys.readouterr().out


def test_main_returns_2_for_unreadable_script(tmp_path, capsys):
    """Exit 2 when the script is missing or malformed."""
    assert main(["run", str(tmp_path / "missing.jsonl"), "--no-color"]) == 2
    broken = tmp_path / "broken.jsonl"
    broken.write_text("{nope\n", encoding="utf-8")
    assert main(["run", str(broken), "--no-color"]) == 2
    assert "Cannot read script" in capsys.readouterr().out
