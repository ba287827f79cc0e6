"""Tests for the action store."""

import pytest
from pydantic.v1 import ValidationError

from actionflow_core.actions import ActionStatus, ActionType
from actionflow_core.store import ActionStore


def _shell(content="ls"):
    return {"type": "shell", "content": content}


def test_register_creates_pending_action():
    """Create a pending, unexecuted entry with its own abort signal."""
    store = ActionStore()
    assert store.register("a1", _shell()) is True

    state = store.get("a1")
    assert state.type == ActionType.SHELL
    assert state.status == ActionStatus.PENDING
    assert state.executed is False
    assert state.abort_signal.aborted is False
    assert "a1" in store
    assert len(store) == 1


def test_register_identical_content_is_noop():
    """Skip notifications when a fragment repeats."""
    store = ActionStore()
    seen = []
    store.subscribe(lambda action_id, state: seen.append(state.content))
    store.register("a1", _shell("npm test"))
    assert store.register("a1", _shell("npm test")) is False
    assert seen == ["npm test"]


def test_register_updates_streamed_content_without_status_change():
    """Refresh content of a known action and keep its status."""
    store = ActionStore()
    store.register("a1", _shell("npm"))
    store.register("a1", _shell("npm run build"))
    state = store.get("a1")
    assert state.content == "npm run build"
    assert state.status == ActionStatus.PENDING


def test_register_ignores_content_once_executed():
    """Freeze content after execution has been claimed."""
    store = ActionStore()
    store.register("a1", _shell("npm"))
    store.update("a1", executed=True)
    store.register("a1", _shell("npm run lint"))
    assert store.get("a1").content == "npm"


def test_file_action_requires_path():
    """Reject file fragments without a target path."""
    store = ActionStore()
    with pytest.raises(ValidationError):
        store.register("f1", {"type": "file", "content": "x"})
    store.register("f2", {"type": "file", "content": "x", "filePath": "src/a.ts"})
    assert store.get("f2").file_path == "src/a.ts"
    action = store.get("f2").to_action()
    assert action.dict(by_alias=True)["filePath"] == "src/a.ts"


def test_update_unknown_id_is_ignored():
    """Return None for updates addressed to unknown actions."""
    store = ActionStore()
    assert store.update("ghost", status=ActionStatus.RUNNING) is None
    assert len(store) == 0


def test_update_rejects_unknown_fields():
    """Refuse fields that are not part of the action state."""
    store = ActionStore()
    store.register("a1", _shell())
    with pytest.raises(TypeError):
        store.update("a1", abort=None)


def test_terminal_status_is_frozen():
    """Drop transitions out of a terminal status."""
    store = ActionStore()
    store.register("a1", _shell())
    store.update("a1", status="running")
    store.update("a1", status=ActionStatus.FAILED, error="Action failed")
    store.update("a1", status=ActionStatus.COMPLETE)
    state = store.get("a1")
    assert state.status == ActionStatus.FAILED
    assert state.error == "Action failed"


def test_pending_cannot_complete_directly():
    """Require a running phase before completion."""
    store = ActionStore()
    store.register("a1", _shell())
    store.update("a1", status=ActionStatus.COMPLETE)
    assert store.get("a1").status == ActionStatus.PENDING


def test_error_cleared_for_non_failed_status():
    """Drop error text unless the action failed."""
    store = ActionStore()
    store.register("a1", _shell())
    store.update("a1", status=ActionStatus.RUNNING, error="stale")
    assert store.get("a1").error is None


def test_abort_marks_action_aborted_and_fires_signal():
    """Abort through the state's capability."""
    store = ActionStore()
    store.register("a1", _shell())
    state = store.get("a1")
    state.abort()
    current = store.get("a1")
    assert current.status == ActionStatus.ABORTED
    assert current.abort_signal.aborted is True


def test_snapshot_is_independent_copy():
    """Return a copy that later registrations do not mutate."""
    store = ActionStore()
    store.register("a1", _shell())
    snapshot = store.snapshot()
    store.register("a2", _shell("pwd"))
    assert list(snapshot) == ["a1"]


def test_listener_errors_are_isolated():
    """Keep broadcasting when a listener raises."""
    store = ActionStore()
    received = []

    def _broken(action_id, state):
        raise RuntimeError("listener failed")

    store.subscribe(_broken)
    unsubscribe = store.subscribe(lambda action_id, state: received.append(action_id))
    store.register("a1", _shell())
    unsubscribe()
    store.register("a2", _shell())
    assert received == ["a1"]
