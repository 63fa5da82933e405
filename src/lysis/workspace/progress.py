"""
Human-readable progress sink with per-role worker state.

Every shell command and file write a worker performs is mirrored here;
listeners (the CLI, tests) receive each entry as it is logged.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from lysis.core.types import Role, Severity, WorkerLog, WorkerState
from lysis.utils.logging import get_logger

logger = get_logger(__name__)

ProgressListener = Callable[[str, WorkerLog], Any]

FILE_PROGRESS_STEP = 15
PROGRESS_CAP = 95


class ProgressLog:
    """
    Progress log and worker state tracker.

    Example:
        progress = ProgressLog()
        progress.start_task("worker1", "Build the landing page")
        progress.log("worker1", "Wrote client/index.html", Severity.SUCCESS)
        progress.file_written("worker1")
    """

    def __init__(self, max_logs: int = 200) -> None:
        self._max_logs = max_logs
        self._states: dict[str, WorkerState] = {role.value: WorkerState(id=role.value) for role in Role}
        self._listeners: list[ProgressListener] = []

    def subscribe(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def state(self, role: Role | str) -> WorkerState:
        return self._states[Role(role).value]

    @property
    def states(self) -> dict[str, WorkerState]:
        return dict(self._states)

    def log(self, role: Role | str, message: str, severity: Severity | str = Severity.INFO) -> WorkerLog:
        """Append an entry to the role's log and notify listeners."""
        state = self.state(role)
        entry = WorkerLog(message=message, type=Severity(severity))
        state.logs.append(entry)
        if len(state.logs) > self._max_logs:
            del state.logs[: len(state.logs) - self._max_logs]
        logger.debug("Progress", role=state.id, severity=entry.type.value, entry=message)
        for listener in self._listeners:
            try:
                listener(state.id, entry)
            except Exception as e:
                logger.warning("Progress listener failed", error_message=str(e))
        return entry

    def start_task(self, role: Role | str, task: str) -> None:
        state = self.state(role)
        state.is_busy = True
        state.current_task = task
        state.progress = 0
        self.log(role, f"Assigned: {task}", Severity.INFO)

    def file_written(self, role: Role | str) -> int:
        """Advance progress for one file write, capped until completion."""
        state = self.state(role)
        state.progress = min(PROGRESS_CAP, state.progress + FILE_PROGRESS_STEP)
        return state.progress

    def set_progress(self, role: Role | str, value: int) -> None:
        self.state(role).progress = max(0, min(100, value))

    def complete(self, role: Role | str) -> None:
        state = self.state(role)
        state.is_busy = False
        state.current_task = "Idle"
        state.progress = 100
        self.log(role, "Task Complete", Severity.SUCCESS)

    def fail(self, role: Role | str, message: str) -> None:
        state = self.state(role)
        state.is_busy = False
        state.current_task = "Error"
        state.progress = 0
        self.log(role, f"Error: {message}", Severity.ERROR)

    def summary(self, roles: list[str] | None = None) -> str:
        """One line per worker state."""
        wanted = roles or list(self._states)
        return "\n".join(self._states[r].summary() for r in wanted if r in self._states)
