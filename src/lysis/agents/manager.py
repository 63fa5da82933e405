"""
Manager configuration of the tool loop.

The manager talks to the user, picks the project mode and delegates
tasks. ``dispatch_worker`` only starts a worker run; it never waits for
it, so worker runs proceed alongside the manager's next turns.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from lysis.agents.prompts import MANAGER_SYSTEM_INSTRUCTION
from lysis.agents.tool_loop import LoopSpec, ToolLoop
from lysis.agents.tools import (
    MANAGER_TOOLS,
    MANAGER_VARIANTS,
    DispatchWorker,
    GetProjectStatus,
    SetProjectMode,
    ToolDispatcher,
)
from lysis.core.gateway import TextListener, UpstreamGateway
from lysis.core.types import LoopOutcome, Priority, ProjectMode, Role, Turn, WorkerId
from lysis.workspace.filesystem import FileSystem, format_listing
from lysis.workspace.progress import ProgressLog

ModeListener = Callable[[ProjectMode], Any]
DispatchListener = Callable[[WorkerId, str], Any]


class Manager:
    """
    The manager agent.

    Example:
        manager = Manager(gateway, fs, progress, on_mode=set_mode, on_dispatch=start_worker)
        outcome = await manager.respond("Build a todo app", history=[], on_text=print)
    """

    def __init__(
        self,
        gateway: UpstreamGateway,
        filesystem: FileSystem,
        progress: ProgressLog,
        on_mode: ModeListener,
        on_dispatch: DispatchListener,
        max_loops: int = 10,
        model: str | None = None,
    ) -> None:
        self._gateway = gateway
        self._fs = filesystem
        self._progress = progress
        self._on_mode = on_mode
        self._on_dispatch = on_dispatch
        self.spec = LoopSpec(
            name="manager",
            system_instruction=MANAGER_SYSTEM_INSTRUCTION,
            tools=list(MANAGER_TOOLS),
            max_loops=max_loops,
            model=model,
        )
        self.dispatcher = ToolDispatcher(
            MANAGER_VARIANTS,
            {
                SetProjectMode: self._set_project_mode,
                DispatchWorker: self._dispatch_worker,
                GetProjectStatus: self._get_project_status,
            },
        )

    async def respond(
        self,
        message: str,
        history: list[Turn] | None = None,
        on_text: TextListener | None = None,
    ) -> LoopOutcome:
        """
        Answer one user message.

        The opening turn is streamed to ``on_text`` when given; tool
        round-trips that follow use plain calls.
        """
        loop = ToolLoop(
            self.spec,
            model=self._gateway.bind(Role.AGENT, Priority.CHAT),
            dispatch=self.dispatcher.dispatch,
        )
        first_call = self._gateway.bind(Role.AGENT, Priority.CHAT, on_text) if on_text else None
        return await loop.run(message, history=history, first_call=first_call)

    async def _set_project_mode(self, call: SetProjectMode) -> str:
        outcome = self._on_mode(call.mode)
        if asyncio.iscoroutine(outcome):
            await outcome
        return f"Project mode set to {call.mode.value}."

    async def _dispatch_worker(self, call: DispatchWorker) -> str:
        self._on_dispatch(call.worker_id, call.task)
        return f"Dispatched task to {call.worker_id.value}."

    async def _get_project_status(self, call: GetProjectStatus) -> str:
        files = await self._fs.walk(".")
        workers = self._progress.summary([w.value for w in WorkerId])
        return f"Files:\n{format_listing(files)}\n\nWorkers:\n{workers}"
