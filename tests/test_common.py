"""Tests for common helpers."""

import actionflow_core.common as common
from actionflow_core.config import set_config_override


def test_get_logger_uses_config_and_defaults(monkeypatch):
    """Exercise logging config paths driven by config values."""
    set_config_override({"runtime": {"log_level": "info", "log_style": "dark"}})
    monkeypatch.setattr(common, "_LOG_CONFIGURED", False)

    logger = common.get_logger()
    assert common._LOG_CONFIGURED is True
    assert logger is not None


def test_run_log_context_reuses_and_releases_sinks(monkeypatch, tmp_path):
    """Reuse per-run log sinks and clean them up."""
    monkeypatch.setattr(common, "_RUN_SINKS", {})
    monkeypatch.setattr(common, "_LOG_CONFIGURED", False)

    runner_id = "runner-logs-1"
    common._acquire_run_sink(runner_id, log_dir=str(tmp_path))
    assert common._RUN_SINKS[runner_id]["count"] == 1

    common._acquire_run_sink(runner_id, log_dir=str(tmp_path))
    assert common._RUN_SINKS[runner_id]["count"] == 2

    common._release_run_sink("missing-runner")
    common._release_run_sink(runner_id)
    assert common._RUN_SINKS[runner_id]["count"] == 1

    common._release_run_sink(runner_id)
    assert runner_id not in common._RUN_SINKS


def test_run_log_context_writes_file(monkeypatch, tmp_path):
    """Route contextualized log records into the per-run file."""
    monkeypatch.setattr(common, "_RUN_SINKS", {})
    logger = common.get_logger(name="tests.common")
    with common.run_log_context("run-42", log_dir=str(tmp_path)):
        logger.warning("hello from the run")
    logger.warning("outside the run")
    contents = (tmp_path / "run-42.log").read_text(encoding="utf-8")
    assert "hello from the run" in contents
    assert "outside the run" not in contents


def test_run_log_dir_under_cache_dir(tmp_path):
    """Place run logs below the configured cache directory."""
    set_config_override({"runtime": {"cache_dir": str(tmp_path)}})
    assert common._run_log_dir() == str(tmp_path / "run-logs")


def test_format_action_content_truncates():
    """Collapse whitespace and truncate long content."""
    assert common.format_action_content("npm   run\nbuild") == "npm run build"
    long_text = "x" * 200
    formatted = common.format_action_content(long_text, max_len=20)
    assert formatted.endswith("...")
    assert len(formatted) == 20
    assert common.format_action_content({"a": 1}) == '{"a": 1}'


def test_get_unique_timestamp_is_numeric():
    """Return a millisecond timestamp string."""
    stamp = common.get_unique_timestamp()
    assert stamp.isdigit()
    assert len(stamp) >= 13
