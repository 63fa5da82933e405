"""
Main Lysis application service.

Wires the shared services (scheduler, key pool, retry controller, event
bus) to the manager and the two workers, and acts as the recovery
boundary: when an operation exhausts its credentials the suspension is
stored per role and announced once; ``recover()`` installs an emergency
key and restarts the whole operation.

Integrates:
- Scheduler: one upstream request in flight at a time
- KeyPool + RetryController: rotation, backoff, suspension
- Manager / Worker: the two tool loop configurations
- EventBus: exhaustion, failures, worker lifecycle, runtime errors
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from lysis.agents.manager import Manager
from lysis.agents.prompts import runtime_error_prompt, status_update_message
from lysis.agents.worker import Worker
from lysis.core.config import LysisConfig, get_config
from lysis.core.events import DebouncedChannel, Event, EventBus, EventType
from lysis.core.gateway import TextListener, UpstreamGateway
from lysis.core.scheduler import Scheduler
from lysis.core.types import ChatSession, LoopOutcome, Priority, ProjectMode, Role, Turn, WorkerId
from lysis.keys.pool import KeyPool, parse_keys
from lysis.keys.recovery import RecoverySuspension
from lysis.keys.retry import RetryController, RetryPolicy
from lysis.keys.store import JsonFileStore, KeyValueStore
from lysis.providers.base import BaseProvider
from lysis.providers.gemini import GeminiProvider
from lysis.utils.errors import NoPendingRecoveryError
from lysis.utils.logging import get_logger
from lysis.workspace.filesystem import FileSystem, LocalFileSystem, MemoryFileSystem
from lysis.workspace.processes import AsyncioProcessRunner, ProcessRunner, ProcessTable
from lysis.workspace.progress import ProgressLog

logger = get_logger(__name__)

StatusListener = Callable[[str], Any]


class Lysis:
    """
    Lysis orchestrator.

    Example:
        async with Lysis(config) as app:
            app.events.subscribe(EventType.RATE_LIMIT_EXHAUSTED, on_exhausted)
            await app.handle_user_message("Build a todo app", on_text=print)
            await app.wait_idle()

        # Later, once the user supplies a temporary key:
        await app.recover("agent", "AIza...")

    Attributes:
        config: Lysis configuration
        pool: Shared credential pool
        scheduler: Shared upstream scheduler
        events: Event bus for application signals
        progress: Worker progress log
        session: Caller-owned chat transcript sent as manager history
    """

    def __init__(
        self,
        config: LysisConfig | None = None,
        provider: BaseProvider | None = None,
        key_store: KeyValueStore | None = None,
        filesystem: FileSystem | None = None,
        process_runner: ProcessRunner | None = None,
        events: EventBus | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            config: Lysis configuration (loads from env if None)
            provider: Generation provider (Gemini if None)
            key_store: Credential store (JSON file from config if None)
            filesystem: Workspace filesystem (in-memory in mock mode)
            process_runner: Shell runner (asyncio subprocesses if None)
            events: Event bus (a fresh one if None)
        """
        self.config = config or get_config()
        cfg = self.config

        self._provider = provider or GeminiProvider(
            model=cfg.model.name,
            temperature=cfg.model.temperature,
            timeout=cfg.model.timeout,
        )
        self.pool = KeyPool(
            key_store if key_store is not None else JsonFileStore(cfg.workspace.key_store_path),
            client_factory=self._provider.create_client,
            fallback_keys=parse_keys(cfg.keys.fallback),
        )
        self._seed_keys()

        self.scheduler = Scheduler(min_delay=cfg.scheduler.min_delay, spacing=cfg.scheduler.spacing)
        self.retry = RetryController(
            self.pool,
            RetryPolicy(
                rotation_delay=cfg.retry.rotation_delay,
                backoff_base=cfg.retry.backoff_base,
                backoff_cap=cfg.retry.backoff_cap,
            ),
        )
        self.gateway = UpstreamGateway(self._provider, self.scheduler, self.retry, cfg.retry.max_retries)
        self.events = events or EventBus("lysis")

        mock_mode = cfg.workspace.mock_mode
        if filesystem is not None:
            self.filesystem = filesystem
        else:
            self.filesystem = MemoryFileSystem() if mock_mode else LocalFileSystem(cfg.workspace.root)
        self.processes = ProcessTable(process_runner or AsyncioProcessRunner(cfg.workspace.root))
        self.progress = ProgressLog()
        self.runtime_errors = DebouncedChannel(
            self.events, EventType.RUNTIME_ERROR, delay=cfg.agent.runtime_error_debounce,
        )

        self.workers: dict[WorkerId, Worker] = {
            worker_id: Worker(
                worker_id,
                self.gateway,
                self.filesystem,
                self.processes,
                self.progress,
                runtime_errors=self.runtime_errors,
                max_loops=cfg.loops.worker_max_loops,
                mock_mode=mock_mode,
                model=cfg.model.name,
                mock_command_delay=cfg.agent.mock_command_delay,
            )
            for worker_id in WorkerId
        }
        self.manager = Manager(
            self.gateway,
            self.filesystem,
            self.progress,
            on_mode=self.set_project_mode,
            on_dispatch=self.dispatch_worker,
            max_loops=cfg.loops.manager_max_loops,
            model=cfg.model.name,
        )

        # State
        self.session = ChatSession()
        self.project_mode = ProjectMode.FRONTEND
        self.pending_recoveries: dict[Role, RecoverySuspension] = {}
        self.agent_waiting = False
        self._status_listener: StatusListener | None = None
        self._background: set[asyncio.Task[Any]] = set()

        self.events.subscribe(EventType.RUNTIME_ERROR, self._on_runtime_error, name="runtime_error_repair")

        logger.info(
            "Lysis initialized",
            provider=self._provider.name,
            mock_mode=mock_mode,
            has_all_keys=self.pool.has_all_keys(),
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def provider(self) -> BaseProvider:
        return self._provider

    @property
    def mock_mode(self) -> bool:
        return self.config.workspace.mock_mode

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "provider": self._provider.name,
            "project_mode": self.project_mode.value,
            "scheduler": self.scheduler.get_stats(),
            "pending_recoveries": [role.value for role in self.pending_recoveries],
            "running_processes": len(self.processes),
            "background_tasks": len(self._background),
        }

    def set_status_listener(self, listener: StatusListener | None) -> None:
        """Receive ambient status pushes (e.g. a voice or chat side channel)."""
        self._status_listener = listener

    # =========================================================================
    # Keys
    # =========================================================================

    def _seed_keys(self) -> None:
        for role in Role:
            seed = self.config.keys.for_role(role)
            if seed and parse_keys(seed) != self.pool.configured_keys(role):
                self.pool.set_role_keys(role, parse_keys(seed))

    async def save_keys(
        self,
        agent: str | None = None,
        worker1: str | None = None,
        worker2: str | None = None,
    ) -> None:
        """Persist new key lists; every cursor resets and cached clients drop."""
        self.pool.save_keys(agent=agent, worker1=worker1, worker2=worker2)
        await self.events.emit(EventType.KEYS_UPDATED, has_all_keys=self.pool.has_all_keys())

    # =========================================================================
    # Manager
    # =========================================================================

    async def handle_user_message(self, text: str, on_text: TextListener | None = None) -> LoopOutcome | None:
        """
        Send a user message to the manager and record the exchange.

        Returns:
            The manager's LoopOutcome, or None when the message was empty,
            suspended for recovery or failed
        """
        if not text.strip():
            return None

        history = list(self.session.turns)
        self.agent_waiting = True
        watchdog = asyncio.get_running_loop().call_later(self.config.agent.response_timeout, self._on_watchdog)
        try:
            outcome = await self.manager.respond(text, history=history, on_text=on_text)
        except RecoverySuspension as suspension:
            await self._suspend(suspension, lambda: self.handle_user_message(text, on_text))
            return None
        except Exception as e:
            await self._report_failure(Role.AGENT, e)
            return None
        finally:
            watchdog.cancel()
            self.agent_waiting = False

        self.session.turns.extend([Turn.user(text), *outcome.turns])
        return outcome

    async def set_project_mode(self, mode: ProjectMode | str) -> None:
        mode = ProjectMode(mode)
        self.project_mode = mode
        logger.info("Project mode changed", mode=mode.value)
        await self.events.emit(EventType.PROJECT_MODE_CHANGED, mode=mode.value)

    def _on_watchdog(self) -> None:
        if not self.agent_waiting:
            return
        self.agent_waiting = False
        logger.warning("Agent took too long to respond", timeout=self.config.agent.response_timeout)
        self._spawn(self.events.emit(EventType.AGENT_TIMEOUT, timeout=self.config.agent.response_timeout))

    async def _on_runtime_error(self, event: Event) -> None:
        output = event.get("output", "")
        logger.info("Forwarding runtime error to manager", role=event.get("role"))
        self._spawn(self.handle_user_message(runtime_error_prompt(output)))

    # =========================================================================
    # Workers
    # =========================================================================

    def dispatch_worker(self, worker_id: WorkerId | str, task: str) -> asyncio.Task[LoopOutcome | None]:
        """Start a worker run without waiting for it."""
        worker_id = WorkerId(worker_id)
        logger.info("Dispatching worker", worker=worker_id.value, task=task)
        return self._spawn(self.run_worker_task(worker_id, task))

    async def run_worker_task(self, worker_id: WorkerId | str, task: str) -> LoopOutcome | None:
        """
        Run one worker task to completion.

        Returns:
            The worker's LoopOutcome, or None when suspended or failed
        """
        worker_id = WorkerId(worker_id)
        worker = self.workers[worker_id]
        await self.events.emit(EventType.WORKER_STARTED, worker=worker_id.value, task=task)
        await self.push_status(f"{worker_id.value} started: {task}")

        try:
            outcome = await worker.run(task)
        except RecoverySuspension as suspension:
            await self._suspend(suspension, lambda: self.run_worker_task(worker_id, task))
            return None
        except Exception as e:
            await self._report_failure(worker_id.role, e)
            return None

        await self.events.emit(
            EventType.WORKER_FINISHED,
            worker=worker_id.value,
            status=outcome.status.value,
            loops=outcome.loop_count,
        )
        await self.push_status(f"{worker_id.value} finished: {task}")
        return outcome

    async def push_status(self, message: str) -> None:
        """Push an ambient status update through the scheduler."""
        if not self.config.agent.status_updates:
            return
        text = status_update_message(message)

        async def deliver() -> None:
            await self.events.emit(EventType.STATUS_UPDATE, message=text)
            if self._status_listener is not None:
                outcome = self._status_listener(text)
                if asyncio.iscoroutine(outcome):
                    await outcome

        try:
            await self.scheduler.enqueue(deliver, Priority.STATUS)
        except Exception as e:
            logger.warning("Status update failed", error_message=str(e))

    # =========================================================================
    # Recovery
    # =========================================================================

    async def _suspend(
        self,
        suspension: RecoverySuspension,
        restart: Callable[[], Awaitable[Any]],
    ) -> None:
        bound = suspension.rebind(restart)
        self.pending_recoveries[bound.role] = bound
        logger.warning("Operation suspended for recovery", role=bound.role.value)
        await self.events.emit(
            EventType.RATE_LIMIT_EXHAUSTED,
            role=bound.role.value,
            message=bound.message,
            suspension=bound,
        )

    async def recover(self, role: Role | str, key: str) -> Any:
        """
        Install an emergency key for a suspended role and restart its operation.

        Raises:
            NoPendingRecoveryError: If nothing is suspended for the role
        """
        role = Role(role)
        suspension = self.pending_recoveries.pop(role, None)
        if suspension is None:
            raise NoPendingRecoveryError(role.value)
        self.pool.set_emergency_key(role, key)
        logger.info("Resuming suspended operation", role=role.value)
        return await suspension.resume()

    async def _report_failure(self, role: Role, error: Exception) -> None:
        logger.error(
            "Task failed",
            role=role.value,
            error_type=type(error).__name__,
            error_message=str(error),
        )
        await self.events.emit(
            EventType.TASK_FAILED,
            role=role.value,
            message=str(error),
            error_type=type(error).__name__,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until every dispatched worker run and background task is done."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        """Stop background work, kill processes and close the scheduler."""
        logger.info("Closing Lysis")
        self.runtime_errors.cancel()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self.processes.close()
        await self.scheduler.close()

    async def __aenter__(self) -> Lysis:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return (
            f"Lysis(provider={self._provider.name!r}, "
            f"mode={self.project_mode.value!r}, "
            f"pending_recoveries={len(self.pending_recoveries)})"
        )
