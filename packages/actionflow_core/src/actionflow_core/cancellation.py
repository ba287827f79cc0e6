#!/usr/bin/env python3
"""Per-action cancellation tokens."""

from __future__ import annotations

import threading
from collections.abc import Callable

from actionflow_core.common import get_logger
from actionflow_core.errors import ActionAbortedError

logging = get_logger(name="core.cancellation")

AbortListener = Callable[[], None]


class AbortSignal:
    """Observable cancellation flag owned by an AbortController."""

    def __init__(self) -> None:
        self._aborted = False
        self._reason: str | None = None
        self._listeners: list[AbortListener] = []
        self._lock = threading.Lock()

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> str | None:
        return self._reason

    def add_listener(self, listener: AbortListener) -> Callable[[], None]:
        """Register a callback fired once on abort; returns a remover."""
        with self._lock:
            fire_now = self._aborted
            if not fire_now:
                self._listeners.append(listener)
        if fire_now:
            self._call(listener)

        def _remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _remove

    def throw_if_aborted(self) -> None:
        if self._aborted:
            raise ActionAbortedError(self._reason or "Action aborted")

    def _fire(self, reason: str | None) -> bool:
        with self._lock:
            if self._aborted:
                return False
            self._aborted = True
            self._reason = reason
            listeners, self._listeners = self._listeners, []
        for listener in listeners:
            self._call(listener)
        return True

    @staticmethod
    def _call(listener: AbortListener) -> None:
        try:
            listener()
        except Exception as exc:
            logging.error("Abort listener failed: {}", exc)


class AbortController:
    """Cancellation capability paired with its signal."""

    def __init__(self) -> None:
        self.signal = AbortSignal()

    def abort(self, reason: str | None = None) -> bool:
        """Fire the signal; returns False when it had already fired."""
        fired = self.signal._fire(reason)
        if fired:
            logging.debug("Abort signal fired: {}", reason or "no reason")
        return fired


__all__ = ["AbortController", "AbortListener", "AbortSignal"]
