#!/usr/bin/env python3
"""Protocols for the sandboxed filesystem and process host."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

from actionflow_core.cancellation import AbortSignal


@dataclass(frozen=True)
class ShellResponse:
    """Result of a command run through the interactive shell."""

    exit_code: int
    output: str


class SandboxFileSystem(Protocol):
    """Filesystem operations relative to the sandbox workdir."""

    async def mkdir(self, path: str, recursive: bool = False) -> None: ...

    async def write_file(self, path: str, content: str) -> None: ...

    async def read_file(self, path: str, encoding: str = "utf-8") -> str: ...

    async def readdir(self, path: str) -> list[str]: ...


class SandboxProcess(Protocol):
    """Handle for a spawned sandbox process."""

    @property
    def output(self) -> AsyncIterator[str]: ...

    @property
    def exit(self) -> Awaitable[int]: ...


class Sandbox(Protocol):
    """Filesystem and process host the actions run against."""

    @property
    def workdir(self) -> str: ...

    @property
    def fs(self) -> SandboxFileSystem: ...

    async def spawn(self, command: str, args: list[str]) -> SandboxProcess: ...


class ShellSession(Protocol):
    """Interactive shell session shared by shell-like actions."""

    async def ready(self) -> None: ...

    async def execute_command(
        self,
        session_id: str,
        command: str,
        on_abort: Callable[[], None] | None = None,
        abort_signal: AbortSignal | None = None,
    ) -> ShellResponse | None: ...


ShellProvider = Callable[[], ShellSession]


__all__ = [
    "Sandbox",
    "SandboxFileSystem",
    "SandboxProcess",
    "ShellProvider",
    "ShellResponse",
    "ShellSession",
]
