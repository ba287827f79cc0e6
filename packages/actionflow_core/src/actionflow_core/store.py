#!/usr/bin/env python3
"""Observable single-owner store of action states."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from actionflow_core.actions import (
    Action,
    ActionState,
    ActionStatus,
    can_transition,
    parse_action,
)
from actionflow_core.cancellation import AbortController
from actionflow_core.common import get_logger

logging = get_logger(name="core.store")

StoreListener = Callable[[str, ActionState], None]

_UPDATABLE_FIELDS = frozenset(
    {"content", "status", "executed", "error", "file_path", "change_source", "type"}
)


class ActionStore:
    """Mapping of action id to current state with funnelled mutation.

    Readers only ever see immutable ActionState snapshots; every write goes
    through register/update under one lock and is then broadcast to the
    subscribed listeners.
    """

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._states: dict[str, ActionState] = {}
        self._listeners: list[StoreListener] = []
        self._lock = threading.RLock()

    def __contains__(self, action_id: object) -> bool:
        return action_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def get(self, action_id: str) -> ActionState | None:
        """Return the current state for an action id."""
        with self._lock:
            return self._states.get(action_id)

    def snapshot(self) -> dict[str, ActionState]:
        """Return a point-in-time copy of all action states."""
        with self._lock:
            return dict(self._states)

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def register(self, action_id: str, fragment: Action | dict[str, Any]) -> bool:
        """Create a pending action or refresh its streamed content.

        Returns:
            True when a new entry was created.
        """
        action = parse_action(fragment)
        with self._lock:
            existing = self._states.get(action_id)
            if existing is not None:
                if existing.content == action.content:
                    return False
                if existing.executed or existing.is_terminal:
                    logging.debug("Ignoring content update for started action {}", action_id)
                    return False
                self._set(action_id, existing.with_changes(content=action.content))
                return False
            controller = AbortController()

            def _abort() -> None:
                controller.abort(f"Action {action_id} aborted")
                self.update(action_id, status=ActionStatus.ABORTED)

            state = ActionState(
                action_id=action_id,
                type=action.type,
                content=action.content,
                file_path=action.file_path,
                change_source=action.change_source,
                status=ActionStatus.PENDING,
                executed=False,
                abort=_abort,
                abort_signal=controller.signal,
            )
            self._set(action_id, state)
        logging.debug("Registered action {} ({})", action_id, action.type.value)
        return True

    def update(self, action_id: str, **changes: Any) -> ActionState | None:
        """Merge fields into an existing action state.

        Unknown ids are ignored with a warning. Transitions out of a terminal
        status are dropped.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"Unsupported action fields: {', '.join(sorted(unknown))}")
        with self._lock:
            current = self._states.get(action_id)
            if current is None:
                logging.warning("Ignoring update for unknown action {}", action_id)
                return None
            status = changes.get("status")
            if status is not None:
                status = ActionStatus(status)
                if not can_transition(current.status, status):
                    logging.debug(
                        "Ignoring transition {} -> {} for action {}",
                        current.status.value,
                        status.value,
                        action_id,
                    )
                    changes.pop("status")
                    changes.pop("error", None)
                else:
                    changes["status"] = status
                    if status != ActionStatus.FAILED:
                        changes["error"] = None
            if not changes:
                return current
            updated = current.with_changes(**changes)
            if updated == current:
                return current
            self._set(action_id, updated)
            return updated

    def _set(self, action_id: str, state: ActionState) -> None:
        self._states[action_id] = state
        listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(action_id, state)
            except Exception as exc:
                logging.error("Action store listener failed: {}", exc)


__all__ = ["ActionStore", "StoreListener"]
