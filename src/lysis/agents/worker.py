"""
Worker configuration of the tool loop.

A worker owns one directory of the project (worker1: ``client/``,
worker2: ``server/``), writes files and runs shell commands, and mirrors
every effect to the progress log.
"""

from __future__ import annotations

import asyncio

from lysis.agents.prompts import WORKER_DIRECTORIES, worker_system_instruction, worker_task_prompt
from lysis.agents.tool_loop import LoopSpec, ToolLoop
from lysis.agents.tools import (
    WORKER_TOOLS,
    WORKER_VARIANTS,
    CreateFile,
    KillProcess,
    ListFiles,
    ReadFile,
    RunCommand,
    SendTerminalInput,
    ToolDispatcher,
)
from lysis.core.events import DebouncedChannel
from lysis.core.gateway import UpstreamGateway
from lysis.core.types import LoopOutcome, Priority, Severity, ToolInvocation, ToolResult, WorkerId
from lysis.keys.recovery import RecoverySuspension
from lysis.utils.errors import ProcessNotFoundError
from lysis.utils.logging import get_logger
from lysis.workspace.filesystem import FileSystem, format_listing
from lysis.workspace.processes import ProcessTable
from lysis.workspace.progress import ProgressLog

logger = get_logger(__name__)

# Substrings in process output that trigger an auto-repair request
RUNTIME_ERROR_MARKERS = ("Failed to compile", "[ERROR]", "Error:")

# Commands refused outright in mock mode
MOCK_BLOCKED_COMMANDS = ("npm create", "git clone")


def has_runtime_error(text: str) -> bool:
    return any(marker in text for marker in RUNTIME_ERROR_MARKERS)


class Worker:
    """
    One coding worker.

    Example:
        worker = Worker(WorkerId.WORKER1, gateway, fs, processes, progress)
        outcome = await worker.run("Build a todo app")
    """

    def __init__(
        self,
        worker_id: WorkerId,
        gateway: UpstreamGateway,
        filesystem: FileSystem,
        processes: ProcessTable,
        progress: ProgressLog,
        runtime_errors: DebouncedChannel | None = None,
        max_loops: int = 25,
        mock_mode: bool = False,
        model: str | None = None,
        mock_command_delay: float = 1.5,
    ) -> None:
        self.worker_id = WorkerId(worker_id)
        self.role = self.worker_id.role
        self.directory = WORKER_DIRECTORIES[self.worker_id]
        self._gateway = gateway
        self._fs = filesystem
        self._processes = processes
        self._progress = progress
        self._runtime_errors = runtime_errors
        self._mock_mode = mock_mode
        self._mock_command_delay = mock_command_delay
        self.spec = LoopSpec(
            name=self.worker_id.value,
            system_instruction=worker_system_instruction(self.worker_id),
            tools=list(WORKER_TOOLS),
            max_loops=max_loops,
            heal_dir=self.directory,
            model=model,
        )
        self.dispatcher = ToolDispatcher(
            WORKER_VARIANTS,
            {
                CreateFile: self._create_file,
                RunCommand: self._run_command,
                SendTerminalInput: self._send_terminal_input,
                KillProcess: self._kill_process,
                ReadFile: self._read_file,
                ListFiles: self._list_files,
            },
        )

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    async def run(self, task: str) -> LoopOutcome:
        """
        Run one task to completion, tracking worker state.

        Raises:
            RecoverySuspension: Rate limits exhausted the worker's keys; the
                worker stays busy until the task is resumed
            Exception: Fatal failures, after marking the worker as errored
        """
        self._progress.start_task(self.role, task)
        loop = ToolLoop(
            self.spec,
            model=self._gateway.bind(self.role, Priority.WORKER),
            dispatch=self.dispatcher.dispatch,
            on_tool=self._mirror,
        )
        try:
            outcome = await loop.run(worker_task_prompt(self.worker_id, task, self._mock_mode))
        except RecoverySuspension:
            self._progress.log(self.role, "Rate limited, waiting for an emergency key", Severity.ERROR)
            raise
        except Exception as e:
            logger.error("Worker failed", worker=self.worker_id.value, error_message=str(e))
            self._progress.fail(self.role, str(e))
            raise

        if outcome.hit_loop_bound:
            self._progress.log(self.role, f"Stopped after {outcome.loop_count} loops", Severity.INFO)
        self._progress.complete(self.role)
        return outcome

    # =========================================================================
    # Tool Handlers
    # =========================================================================

    async def _create_file(self, call: CreateFile) -> str:
        await self._fs.write(call.path, call.content)
        self._progress.log(self.role, f"Wrote {call.path}", Severity.SUCCESS)
        self._progress.file_written(self.role)
        return f"File created: {call.path}"

    async def _run_command(self, call: RunCommand) -> str:
        self._progress.log(self.role, f"Run: {call.command}", Severity.COMMAND)
        if self._mock_mode:
            return await self._run_mock_command(call.command)

        tracked = await self._processes.start(call.command, self.worker_id.value, on_output=self._on_output)
        if self._is_server_command(call.command):
            self._progress.set_progress(self.role, 100)

        if call.in_background:
            self._processes.watch(tracked.pid, on_exit=self._on_exit)
            return f"Process started in background. PID: {tracked.pid}"

        code = await self._processes.wait(tracked.pid)
        tail = tracked.output_tail()
        result = f"Command '{call.command}' finished with exit code {code}."
        return f"{result}\nOutput:\n{tail}" if tail else result

    async def _run_mock_command(self, command: str) -> str:
        await asyncio.sleep(self._mock_command_delay)
        if any(blocked in command for blocked in MOCK_BLOCKED_COMMANDS):
            return "ERROR: Shell disabled. Please use 'create_file' to write files manually."
        self._progress.log(self.role, f"(Mock) {command} Done", Severity.SUCCESS)
        if "dev" in command:
            self._progress.set_progress(self.role, 100)
        return f"(Mock) Command '{command}' executed successfully."

    async def _send_terminal_input(self, call: SendTerminalInput) -> str:
        await self._processes.send_input(call.pid, call.input)
        return f"Sent input to {call.pid}"

    async def _kill_process(self, call: KillProcess) -> str:
        try:
            self._processes.kill(call.pid)
        except ProcessNotFoundError as e:
            return e.message
        self._progress.log(self.role, f"Killed process {call.pid}", Severity.INFO)
        return f"Killed process {call.pid}"

    async def _read_file(self, call: ReadFile) -> str:
        content = await self._fs.read(call.path)
        return content if content is not None else "File not found"

    async def _list_files(self, call: ListFiles) -> str:
        return format_listing(await self._fs.list(call.path or "."))

    # =========================================================================
    # Listeners
    # =========================================================================

    @staticmethod
    def _is_server_command(command: str) -> bool:
        return "dev" in command or "start" in command

    def _mirror(self, call: ToolInvocation, result: ToolResult) -> None:
        if call.synthetic:
            self._progress.log(self.role, f"Auto-write {call.args.get('path')}", Severity.COMMAND)
        else:
            self._progress.log(self.role, f"Exec {call.name}", Severity.COMMAND)
        if result.is_error:
            self._progress.log(self.role, f"Err: {result.result_text}", Severity.ERROR)

    def _on_output(self, pid: str, text: str) -> None:
        if self._runtime_errors is not None and has_runtime_error(text):
            offered = self._runtime_errors.offer(role=self.role.value, pid=pid, output=text)
            if offered:
                logger.warning("Runtime error detected", worker=self.worker_id.value, pid=pid)

    def _on_exit(self, pid: str, code: int) -> None:
        self._progress.log(self.role, f"[Process {pid}] Exited with code {code}", Severity.INFO)

    def __repr__(self) -> str:
        return f"Worker(id={self.worker_id.value!r}, mock_mode={self._mock_mode})"
