"""In-memory sandbox and shell doubles shared by the runner tests."""

from __future__ import annotations

import asyncio
import posixpath
from collections.abc import Awaitable, Callable

from actionflow_core.sandbox import ShellResponse

ShellHandler = Callable[..., Awaitable[ShellResponse | None] | ShellResponse | None]


class FakeFileSystem:
    """Dict-backed filesystem keyed by workdir-relative paths."""

    def __init__(self) -> None:
        self.files: dict[str, str] = {}
        self.dirs: set[str] = set()
        self.writes: list[str] = []
        self.fail_mkdir = False
        self.fail_write = False

    async def mkdir(self, path: str, recursive: bool = False) -> None:
        if self.fail_mkdir:
            raise PermissionError(f"mkdir denied: {path}")
        self.dirs.add(path)

    async def write_file(self, path: str, content: str) -> None:
        if self.fail_write:
            raise PermissionError(f"write denied: {path}")
        self.files[path] = content
        self.writes.append(path)

    async def read_file(self, path: str, encoding: str = "utf-8") -> str:
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    async def readdir(self, path: str) -> list[str]:
        prefix = "" if path in {"", "."} else path.rstrip("/") + "/"
        entries = {
            name[len(prefix) :].split("/", 1)[0]
            for name in self.files
            if name.startswith(prefix)
        }
        if not entries and path not in self.dirs and path not in {"", "."}:
            raise FileNotFoundError(path)
        return sorted(entries)


class FakeProcess:
    """Spawned process double with canned output and exit code."""

    def __init__(
        self,
        chunks: list[str],
        exit_code: int,
        on_chunk: Callable[[str], None] | None = None,
    ) -> None:
        self._chunks = chunks
        self._exit_code = exit_code
        self._on_chunk = on_chunk

    @property
    def output(self):
        async def _iter():
            for chunk in self._chunks:
                if self._on_chunk is not None:
                    self._on_chunk(chunk)
                yield chunk

        return _iter()

    @property
    def exit(self):
        async def _exit() -> int:
            return self._exit_code

        return _exit()


class FakeSandbox:
    """Sandbox double exposing a FakeFileSystem and scripted spawns."""

    def __init__(self, workdir: str = "/home/project") -> None:
        self._workdir = workdir
        self._fs = FakeFileSystem()
        self.spawned: list[tuple[str, list[str]]] = []
        self.spawn_chunks: list[str] = []
        self.spawn_exit_code = 0
        self.on_chunk: Callable[[str], None] | None = None

    @property
    def workdir(self) -> str:
        return self._workdir

    @property
    def fs(self) -> FakeFileSystem:
        return self._fs

    async def spawn(self, command: str, args: list[str]) -> FakeProcess:
        self.spawned.append((command, list(args)))
        return FakeProcess(list(self.spawn_chunks), self.spawn_exit_code, self.on_chunk)

    def path(self, *parts: str) -> str:
        return posixpath.join(self._workdir, *parts)


class FakeShell:
    """Shell double that records commands and returns scripted responses."""

    def __init__(self, default: ShellResponse | None = None) -> None:
        self.commands: list[str] = []
        self.events: list[str] = []
        self.handlers: dict[str, ShellHandler] = {}
        self.default = default if default is not None else ShellResponse(exit_code=0, output="")
        self.ready_calls = 0

    async def ready(self) -> None:
        self.ready_calls += 1

    async def execute_command(self, session_id, command, on_abort=None, abort_signal=None):
        self.commands.append(command)
        self.events.append(f"start:{command}")
        try:
            handler = self.handlers.get(command)
            if handler is None:
                return self.default
            result = handler(on_abort=on_abort, abort_signal=abort_signal)
            if asyncio.iscoroutine(result):
                result = await result
            return result
        finally:
            self.events.append(f"end:{command}")
