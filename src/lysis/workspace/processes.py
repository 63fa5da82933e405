"""
Process collaborators used by worker tools.

A ProcessRunner spawns shell commands; the ProcessTable tracks the ones
still running so later tool calls can send them input or kill them, and
pumps their output to listeners (progress log, runtime error detection).
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from lysis.utils.errors import ProcessNotFoundError
from lysis.utils.logging import get_logger

logger = get_logger(__name__)

OutputListener = Callable[[str, str], Any]  # (pid, text)
ExitListener = Callable[[str, int], Any]  # (pid, exit code)


class ProcessHandle(Protocol):
    """A spawned process."""

    @property
    def pid(self) -> str: ...

    def output(self) -> AsyncIterator[str]: ...

    async def wait(self) -> int: ...

    async def write(self, text: str) -> None: ...

    def kill(self) -> None: ...


class ProcessRunner(Protocol):
    """Spawns shell commands."""

    async def spawn(self, command: str) -> ProcessHandle: ...


class SubprocessHandle:
    """ProcessHandle over an ``asyncio.subprocess.Process``."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process

    @property
    def pid(self) -> str:
        return str(self._process.pid)

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    async def output(self) -> AsyncIterator[str]:
        stream = self._process.stdout
        if stream is None:
            return
        while True:
            data = await stream.read(4096)
            if not data:
                break
            yield data.decode("utf-8", errors="replace")

    async def wait(self) -> int:
        return await self._process.wait()

    async def write(self, text: str) -> None:
        if self._process.stdin is None:
            raise RuntimeError(f"Process {self.pid} has no input stream")
        self._process.stdin.write(text.encode("utf-8"))
        await self._process.stdin.drain()

    def kill(self) -> None:
        if self._process.returncode is None:
            self._process.kill()


class AsyncioProcessRunner:
    """Runs commands through the system shell inside the workspace root."""

    def __init__(self, cwd: str | Path = ".") -> None:
        self._cwd = Path(cwd).expanduser()

    async def spawn(self, command: str) -> SubprocessHandle:
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=str(self._cwd),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        logger.debug("Process spawned", pid=process.pid, command=command)
        return SubprocessHandle(process)


@dataclass
class TrackedProcess:
    """A running process and its bookkeeping."""

    handle: ProcessHandle
    command: str
    owner: str
    tail: deque[str] = field(default_factory=lambda: deque(maxlen=40))
    pump: asyncio.Task[None] | None = None
    watcher: asyncio.Task[None] | None = None

    @property
    def pid(self) -> str:
        return self.handle.pid

    def output_tail(self) -> str:
        return "".join(self.tail).strip()


class ProcessTable:
    """
    Registry of running processes.

    Example:
        table = ProcessTable(AsyncioProcessRunner(root))
        proc = await table.start("npm install", owner="worker1")
        code = await table.wait(proc.pid)
    """

    def __init__(self, runner: ProcessRunner, tail_size: int = 40) -> None:
        self._runner = runner
        self._tail_size = tail_size
        self._processes: dict[str, TrackedProcess] = {}

    def __len__(self) -> int:
        return len(self._processes)

    def __contains__(self, pid: object) -> bool:
        return pid in self._processes

    @property
    def pids(self) -> list[str]:
        return list(self._processes)

    def get(self, pid: str) -> TrackedProcess:
        try:
            return self._processes[pid]
        except KeyError:
            raise ProcessNotFoundError(pid) from None

    async def start(
        self,
        command: str,
        owner: str,
        on_output: OutputListener | None = None,
    ) -> TrackedProcess:
        """Spawn a command, register it and start pumping its output."""
        handle = await self._runner.spawn(command)
        tracked = TrackedProcess(
            handle=handle,
            command=command,
            owner=owner,
            tail=deque(maxlen=self._tail_size),
        )
        self._processes[handle.pid] = tracked
        tracked.pump = asyncio.create_task(self._pump(tracked, on_output))
        return tracked

    async def _pump(self, tracked: TrackedProcess, on_output: OutputListener | None) -> None:
        async for text in tracked.handle.output():
            tracked.tail.append(text)
            if on_output is not None:
                try:
                    on_output(tracked.pid, text)
                except Exception as e:
                    logger.warning("Output listener failed", pid=tracked.pid, error_message=str(e))

    async def wait(self, pid: str) -> int:
        """Wait for a foreground process to exit and unregister it."""
        tracked = self.get(pid)
        code = await tracked.handle.wait()
        if tracked.pump is not None:
            await tracked.pump
        self._processes.pop(pid, None)
        return code

    def watch(self, pid: str, on_exit: ExitListener | None = None) -> asyncio.Task[None]:
        """Unregister a background process once it exits."""
        tracked = self.get(pid)

        async def _watch() -> None:
            code = await tracked.handle.wait()
            if tracked.pump is not None:
                await tracked.pump
            self._processes.pop(pid, None)
            logger.info("Process exited", pid=pid, code=code, owner=tracked.owner)
            if on_exit is not None:
                outcome = on_exit(pid, code)
                if asyncio.iscoroutine(outcome):
                    await outcome

        tracked.watcher = asyncio.create_task(_watch())
        return tracked.watcher

    async def send_input(self, pid: str, text: str) -> None:
        await self.get(pid).handle.write(text)

    def kill(self, pid: str) -> None:
        tracked = self._processes.pop(pid, None)
        if tracked is None:
            raise ProcessNotFoundError(pid)
        tracked.handle.kill()
        logger.info("Process killed", pid=pid, owner=tracked.owner)

    async def close(self) -> None:
        """Kill every tracked process and stop its background tasks."""
        for pid in list(self._processes):
            tracked = self._processes.pop(pid)
            tracked.handle.kill()
            for task in (tracked.pump, tracked.watcher):
                if task is not None and not task.done():
                    task.cancel()
