#!/usr/bin/env python3
"""Local filesystem and subprocess implementation of the sandbox protocol."""

from __future__ import annotations

import asyncio
import os
import shutil
import signal
from collections.abc import AsyncIterator, Callable
from pathlib import Path

from actionflow_core.cancellation import AbortSignal
from actionflow_core.common import get_logger
from actionflow_core.config import get_config_value
from actionflow_core.sandbox import ShellResponse

logging = get_logger(name="tools.local_sandbox")

_READ_CHUNK = 4096


def _resolve_path(root: Path, rel_path: str) -> Path:
    candidate = Path(rel_path)
    if not candidate.is_absolute():
        candidate = root / candidate
    resolved = candidate.resolve()
    try:
        resolved.relative_to(root)
    except ValueError as exc:
        raise ValueError(f"Path '{rel_path}' resolves outside the project root.") from exc
    return resolved


class LocalFileSystem:
    """Filesystem access confined to a workdir."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    async def mkdir(self, path: str, recursive: bool = False) -> None:
        target = _resolve_path(self._root, path)
        await asyncio.to_thread(target.mkdir, parents=recursive, exist_ok=recursive)

    async def write_file(self, path: str, content: str) -> None:
        target = _resolve_path(self._root, path)
        await asyncio.to_thread(target.write_text, content, encoding="utf-8")

    async def read_file(self, path: str, encoding: str = "utf-8") -> str:
        target = _resolve_path(self._root, path)
        return await asyncio.to_thread(target.read_text, encoding=encoding)

    async def readdir(self, path: str) -> list[str]:
        target = _resolve_path(self._root, path)
        entries = await asyncio.to_thread(os.listdir, target)
        return sorted(entries)


async def _read_stream(stream: asyncio.StreamReader | None) -> AsyncIterator[str]:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        yield chunk.decode("utf-8", errors="replace")


class LocalProcess:
    """Spawned subprocess exposing combined output and its exit code."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process
        self._exit = asyncio.ensure_future(process.wait())

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def output(self) -> AsyncIterator[str]:
        return _read_stream(self._process.stdout)

    @property
    def exit(self) -> asyncio.Future[int]:
        return self._exit

    def kill(self) -> None:
        if self._process.returncode is None:
            self._process.kill()


class LocalSandbox:
    """Sandbox backed by a local directory and local subprocesses."""

    def __init__(self, workdir: str | Path | None = None) -> None:
        """Initialize the sandbox rooted at workdir (created if missing)."""
        if workdir is None:
            workdir = get_config_value("sandbox", "workdir", default=os.getcwd())
        root = Path(workdir).expanduser()
        root.mkdir(parents=True, exist_ok=True)
        self._fs = LocalFileSystem(root)

    @property
    def workdir(self) -> str:
        return str(self._fs.root)

    @property
    def fs(self) -> LocalFileSystem:
        return self._fs

    async def spawn(self, command: str, args: list[str]) -> LocalProcess:
        """Start command with args inside the workdir."""
        executable = shutil.which(command) or command
        logging.debug("Spawning {} {}", command, " ".join(args))
        process = await asyncio.create_subprocess_exec(
            executable,
            *args,
            cwd=self.workdir,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        return LocalProcess(process)


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


class LocalShell:
    """Shell session running commands one at a time inside the sandbox workdir.

    A command that is still running when the next one arrives (typically a dev
    server launched by a start action) is interrupted first, the same way an
    interactive terminal gets a Ctrl-C before new input.
    """

    def __init__(self, sandbox: LocalSandbox, shell: str | None = None) -> None:
        """Initialize the shell session for a sandbox."""
        self._sandbox = sandbox
        self._shell = shell or get_config_value("sandbox", "shell", default="/bin/sh")
        self._ready = asyncio.Event()
        self._ready.set()
        self._lock = asyncio.Lock()
        self._interrupt: Callable[[], None] | None = None
        self._latest = 0

    async def ready(self) -> None:
        await self._ready.wait()

    async def execute_command(
        self,
        session_id: str,
        command: str,
        on_abort: Callable[[], None] | None = None,
        abort_signal: AbortSignal | None = None,
    ) -> ShellResponse | None:
        """Run command and return its exit code and combined output."""
        self._latest += 1
        ticket = self._latest
        if self._interrupt is not None:
            logging.info("[{}] Interrupting running command", session_id)
            self._interrupt()
        async with self._lock:
            logging.debug("[{}] $ {}", session_id, command)
            process = await asyncio.create_subprocess_exec(
                self._shell,
                "-c",
                command,
                cwd=self._sandbox.workdir,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
            aborted = False

            def _kill() -> None:
                nonlocal aborted
                aborted = True
                _kill_process_group(process)

            self._interrupt = _kill
            if ticket != self._latest:
                _kill()
            remove_listener = abort_signal.add_listener(_kill) if abort_signal else None
            try:
                stdout, _ = await process.communicate()
            finally:
                if remove_listener is not None:
                    remove_listener()
                if self._interrupt is _kill:
                    self._interrupt = None
            if aborted and on_abort is not None:
                on_abort()
            output = stdout.decode("utf-8", errors="replace") if stdout else ""
            return ShellResponse(exit_code=process.returncode or 0, output=output)


__all__ = ["LocalFileSystem", "LocalProcess", "LocalSandbox", "LocalShell"]
