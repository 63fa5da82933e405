"""
Unit tests for the manager and worker configurations.

Both run over a real UpstreamGateway (scheduler + retry controller) with a
scripted provider, an in-memory filesystem and fake processes.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from lysis.agents.manager import Manager
from lysis.agents.worker import Worker, has_runtime_error
from lysis.core.events import DebouncedChannel, EventBus, EventType
from lysis.core.types import LoopStatus, ProjectMode, Role, Severity, WorkerId
from lysis.keys.recovery import RecoverySuspension
from lysis.utils.errors import ProviderRateLimitError
from lysis.workspace.filesystem import MemoryFileSystem
from lysis.workspace.processes import ProcessTable
from lysis.workspace.progress import ProgressLog

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fs() -> MemoryFileSystem:
    return MemoryFileSystem()


@pytest.fixture
def progress() -> ProgressLog:
    return ProgressLog()


@pytest.fixture
def processes(fake_runner) -> ProcessTable:
    return ProcessTable(fake_runner)


@pytest.fixture
def worker(gateway, fs, processes, progress) -> Worker:
    return Worker(WorkerId.WORKER1, gateway, fs, processes, progress, max_loops=5)


def results_of(outcome) -> list[str]:
    return [r.result_text for r in outcome.tool_results]


def messages(progress: ProgressLog, role: Role) -> list[str]:
    return [e.message for e in progress.state(role).logs]


# =============================================================================
# Worker
# =============================================================================


class TestWorkerFiles:
    """Test file tools."""

    @pytest.mark.asyncio
    async def test_create_file(self, worker, provider, fs, progress, replies) -> None:
        provider.script.extend([
            replies.tool("create_file", path="client/src/App.tsx", content="export {}"),
            replies.text("Done."),
        ])

        outcome = await worker.run("Build the app shell")

        assert fs.files["client/src/App.tsx"] == "export {}"
        assert results_of(outcome) == ["File created: client/src/App.tsx"]
        state = progress.state(Role.WORKER1)
        assert state.progress == 100
        assert state.current_task == "Idle"
        assert "Wrote client/src/App.tsx" in messages(progress, Role.WORKER1)
        assert "Exec create_file" in messages(progress, Role.WORKER1)

    @pytest.mark.asyncio
    async def test_uses_worker_role_keys(self, worker, provider, replies) -> None:
        provider.script.append(replies.text("Nothing to do."))

        await worker.run("noop")

        assert provider.clients == ["worker1-1"]
        request = provider.calls[0][1]
        assert request.history[0].text.startswith("TASK: noop")
        assert "client/" in request.history[0].text

    @pytest.mark.asyncio
    async def test_self_heal_writes_file(self, worker, provider, fs, progress, replies) -> None:
        provider.script.extend([
            replies.text("Here it is:\n```tsx\nconst App = () => null;\n```"),
            replies.text("Done."),
        ])

        await worker.run("Write App")

        [path] = list(fs.files)
        assert path.startswith("client/file_") and path.endswith(".tsx")
        assert fs.files[path] == "const App = () => null;\n"
        assert any(m.startswith("Auto-write client/file_") for m in messages(progress, Role.WORKER1))

    @pytest.mark.asyncio
    async def test_read_and_list(self, worker, provider, fs, replies) -> None:
        await fs.write("client/package.json", "{}")
        provider.script.extend([
            replies.tool("read_file", path="client/package.json"),
            replies.tool("read_file", path="client/missing.ts"),
            replies.tool("list_files", path="client"),
            replies.tool("list_files", path="server"),
            replies.text("ok"),
        ])

        outcome = await worker.run("inspect")

        assert results_of(outcome) == ["{}", "File not found", "package.json", "(empty)"]

    @pytest.mark.asyncio
    async def test_bad_arguments_become_error_result(self, worker, provider, progress, replies) -> None:
        provider.script.extend([replies.tool("create_file", path="client/a.ts"), replies.text("ok")])

        outcome = await worker.run("x")

        assert outcome.tool_results[0].is_error
        assert outcome.tool_results[0].result_text.startswith("Error: Invalid arguments for 'create_file'")
        assert any(m.startswith("Err: ") for m in messages(progress, Role.WORKER1))


class TestWorkerCommands:
    """Test shell tools."""

    @pytest.mark.asyncio
    async def test_foreground_command(self, worker, provider, fake_runner, replies) -> None:
        fake_runner.plan(chunks=["added 42 packages\n"], code=0)
        provider.script.extend([replies.tool("run_command", command="cd client && npm install"), replies.text("ok")])

        outcome = await worker.run("install")

        assert fake_runner.commands == ["cd client && npm install"]
        assert results_of(outcome) == [
            "Command 'cd client && npm install' finished with exit code 0.\nOutput:\nadded 42 packages"
        ]

    @pytest.mark.asyncio
    async def test_background_command(self, worker, provider, processes, fake_runner, progress, replies) -> None:
        fake_runner.plan(exits=False)
        provider.script.extend([
            replies.tool("run_command", command="cd client && npm run dev", in_background=True),
            replies.text("Server running."),
        ])

        outcome = await worker.run("start")

        assert results_of(outcome) == ["Process started in background. PID: 100"]
        assert "100" in processes

        fake_runner.handles[0].exited.set()
        await processes.get("100").watcher
        assert "[Process 100] Exited with code 0" in messages(progress, Role.WORKER1)

    @pytest.mark.asyncio
    async def test_terminal_input_and_kill(self, worker, provider, processes, fake_runner, replies) -> None:
        fake_runner.plan(exits=False)
        provider.script.extend([
            replies.tool("run_command", command="npx prompt", in_background=True),
            replies.tool("send_terminal_input", pid="100", input="y\n"),
            replies.tool("kill_process", pid=100),
            replies.tool("kill_process", pid="100"),
            replies.tool("send_terminal_input", pid="100", input="y\n"),
            replies.text("ok"),
        ])

        outcome = await worker.run("interact")

        assert results_of(outcome)[1:] == [
            "Sent input to 100",
            "Killed process 100",
            "Process 100 not found (may have already exited).",
            "Error: Process 100 not found (may have already exited).",
        ]
        assert fake_runner.handles[0].inputs == ["y\n"]

    @pytest.mark.asyncio
    async def test_runtime_error_offered(self, gateway, fs, processes, progress, provider, fake_runner, replies) -> None:
        bus = EventBus("test")
        channel = DebouncedChannel(bus, EventType.RUNTIME_ERROR, delay=0.0)
        worker = Worker(WorkerId.WORKER1, gateway, fs, processes, progress, runtime_errors=channel)
        fake_runner.plan(chunks=["Failed to compile src/App.tsx\n"], exits=False)
        provider.script.extend([
            replies.tool("run_command", command="npm run dev", in_background=True),
            replies.text("ok"),
        ])

        await worker.run("serve")
        await asyncio.sleep(0)
        await channel.drain()

        [event] = bus.events_of(EventType.RUNTIME_ERROR)
        assert event.get("role") == "worker1"
        assert "Failed to compile" in event.get("output")

    def test_runtime_error_markers(self) -> None:
        assert has_runtime_error("Failed to compile.")
        assert has_runtime_error("[ERROR] something")
        assert has_runtime_error("TypeError: Error: x")
        assert not has_runtime_error("VITE ready in 300 ms")


class TestWorkerMockMode:
    """Test the restricted virtual environment."""

    @pytest.mark.asyncio
    async def test_shell_refused_for_scaffolding(self, gateway, fs, processes, progress, provider, fake_runner, replies) -> None:
        worker = Worker(WorkerId.WORKER2, gateway, fs, processes, progress, mock_mode=True, mock_command_delay=0)
        provider.script.extend([
            replies.tool("run_command", command="npm create vite@latest"),
            replies.tool("run_command", command="npm install"),
            replies.tool("run_command", command="npm run dev"),
            replies.text("ok"),
        ])

        outcome = await worker.run("scaffold")

        assert results_of(outcome) == [
            "ERROR: Shell disabled. Please use 'create_file' to write files manually.",
            "(Mock) Command 'npm install' executed successfully.",
            "(Mock) Command 'npm run dev' executed successfully.",
        ]
        assert fake_runner.commands == []
        assert "RESTRICTED VIRTUAL ENVIRONMENT" in provider.calls[0][1].history[0].text


class TestWorkerFailures:
    """Test fatal failures and suspensions."""

    @pytest.mark.asyncio
    async def test_fatal_error_marks_worker(self, worker, provider, progress) -> None:
        provider.script.append(ValueError("invalid request"))

        with pytest.raises(ValueError):
            await worker.run("x")

        state = progress.state(Role.WORKER1)
        assert state.current_task == "Error"
        assert state.logs[-1].message == "Error: invalid request"

    @pytest.mark.asyncio
    async def test_rate_limit_suspends(self, worker, provider, progress) -> None:
        provider.script.extend([ProviderRateLimitError("mock")] * 5)

        with pytest.raises(RecoverySuspension) as exc_info:
            await worker.run("x")

        assert exc_info.value.role is Role.WORKER1
        state = progress.state(Role.WORKER1)
        assert state.is_busy
        assert state.logs[-1].type is Severity.ERROR

    @pytest.mark.asyncio
    async def test_loop_bound(self, gateway, fs, processes, progress, provider, replies) -> None:
        worker = Worker(WorkerId.WORKER1, gateway, fs, processes, progress, max_loops=2)
        provider.script.extend([replies.tool("list_files")] * 3)

        outcome = await worker.run("forever")

        assert outcome.status is LoopStatus.LOOP_BOUND
        assert "Stopped after 2 loops" in messages(progress, Role.WORKER1)
        assert progress.state(Role.WORKER1).progress == 100


# =============================================================================
# Manager
# =============================================================================


@pytest.fixture
def manager_hooks() -> tuple[MagicMock, MagicMock]:
    return MagicMock(return_value=None), MagicMock(return_value=None)


@pytest.fixture
def manager(gateway, fs, progress, manager_hooks) -> Manager:
    on_mode, on_dispatch = manager_hooks
    return Manager(gateway, fs, progress, on_mode=on_mode, on_dispatch=on_dispatch)


class TestManager:
    """Test the manager tools and streaming."""

    @pytest.mark.asyncio
    async def test_mode_and_dispatch(self, manager, provider, manager_hooks, replies) -> None:
        on_mode, on_dispatch = manager_hooks
        provider.script.extend([
            replies.tool("set_project_mode", mode="fullstack"),
            replies.tool("dispatch_worker", task="Build the API", workerId="worker2"),
            replies.text("Workers are on it."),
        ])

        outcome = await manager.respond("Build a notes app with a backend")

        on_mode.assert_called_once_with(ProjectMode.FULLSTACK)
        on_dispatch.assert_called_once_with(WorkerId.WORKER2, "Build the API")
        assert results_of(outcome) == ["Project mode set to fullstack.", "Dispatched task to worker2."]
        assert provider.clients == ["agent-1"] * 3

    @pytest.mark.asyncio
    async def test_async_mode_listener_awaited(self, gateway, fs, progress, provider, replies) -> None:
        seen = []

        async def on_mode(mode: ProjectMode) -> None:
            seen.append(mode)

        manager = Manager(gateway, fs, progress, on_mode=on_mode, on_dispatch=MagicMock())
        provider.script.extend([replies.tool("set_project_mode", mode="frontend"), replies.text("ok")])

        await manager.respond("Landing page")

        assert seen == [ProjectMode.FRONTEND]

    @pytest.mark.asyncio
    async def test_project_status(self, manager, provider, fs, progress, replies) -> None:
        await fs.write("client/src/App.tsx", "")
        progress.start_task(Role.WORKER1, "Build UI")
        provider.script.extend([replies.tool("get_project_status"), replies.text("ok")])

        outcome = await manager.respond("status?")

        status = results_of(outcome)[0]
        assert status.startswith("Files:\nclient/src/App.tsx\n\nWorkers:\n")
        assert "worker1: busy" in status
        assert "worker2: idle" in status

    @pytest.mark.asyncio
    async def test_streams_opening_turn(self, manager, provider, replies) -> None:
        chunks: list[str] = []
        provider.script.append(replies.text("Setting project mode to frontend..."))

        outcome = await manager.respond("Build a calculator", on_text=chunks.append)

        assert "".join(chunks) == "Setting project mode to frontend..."
        assert outcome.text == "Setting project mode to frontend..."
        assert provider.streamed == 1

    @pytest.mark.asyncio
    async def test_manager_tools_only(self, manager, provider, replies) -> None:
        provider.script.extend([replies.tool("create_file", path="a", content="b"), replies.text("ok")])

        outcome = await manager.respond("write a file yourself")

        assert outcome.tool_results[0].is_error
        assert "Unknown tool 'create_file'" in outcome.tool_results[0].result_text
