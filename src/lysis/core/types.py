"""
Core type definitions for Lysis.

This module contains the Enums and Dataclasses shared by the scheduler,
the key pool, the tool loop and the application service.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any

# =============================================================================
# Enums
# =============================================================================


class Role(str, Enum):
    """Logical identities that own a credential pool and a conversation."""

    AGENT = "agent"  # Manager agent
    WORKER1 = "worker1"  # Frontend worker
    WORKER2 = "worker2"  # Backend worker


class WorkerId(str, Enum):
    """Workers the manager can dispatch tasks to."""

    WORKER1 = "worker1"
    WORKER2 = "worker2"

    @property
    def role(self) -> Role:
        return Role(self.value)


class ProjectMode(str, Enum):
    """Project shape chosen by the manager."""

    FRONTEND = "frontend"  # worker1 only
    FULLSTACK = "fullstack"  # worker1 + worker2


class Severity(str, Enum):
    """Severity of a progress log entry."""

    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"
    COMMAND = "command"


class Priority(IntEnum):
    """Scheduler priorities (higher runs first)."""

    WORKER = 5  # Background worker model calls
    STATUS = 8  # Ambient status pushes
    CHAT = 10  # User-facing manager chat


class LoopStatus(str, Enum):
    """How a tool loop run terminated."""

    COMPLETED = "completed"  # Model stopped requesting tools
    LOOP_BOUND = "loop_bound"  # MAX_LOOPS reached, completion with caveat


# =============================================================================
# Conversation Types
# =============================================================================


@dataclass
class ToolInvocation:
    """A structured request from the model to run a named tool."""

    name: str
    args: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"call-{uuid.uuid4().hex[:8]}")
    synthetic: bool = False  # Produced by self-healing, not by the model


@dataclass
class ToolResult:
    """The textual outcome of exactly one ToolInvocation."""

    name: str
    result_text: str
    call_id: str = ""
    is_error: bool = False


@dataclass
class Turn:
    """
    One entry of a conversation history.

    A user turn carries text or tool results; a model turn carries text
    and/or tool calls. ``raw`` holds the provider's own content object so it
    can be replayed verbatim on the next request.
    """

    role: str  # "user" | "model"
    text: str = ""
    tool_calls: list[ToolInvocation] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    raw: Any = None

    @classmethod
    def user(cls, text: str) -> Turn:
        return cls(role="user", text=text)

    @classmethod
    def results(cls, results: list[ToolResult]) -> Turn:
        return cls(role="user", tool_results=list(results))


@dataclass
class ToolSpec:
    """Provider-neutral tool declaration (name, description, argument schema)."""

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass
class ModelRequest:
    """Everything one upstream generation call needs."""

    history: list[Turn]
    system_instruction: str | None = None
    tools: list[ToolSpec] = field(default_factory=list)
    model: str | None = None


@dataclass
class ModelResponse:
    """Standardized response of one generation call."""

    text: str = ""
    tool_calls: list[ToolInvocation] = field(default_factory=list)
    model: str = ""
    finish_reason: str = "stop"
    latency_ms: float = 0.0
    usage: dict[str, int] = field(default_factory=dict)
    raw_content: Any = None


@dataclass
class StreamChunk:
    """Single chunk from a streaming response."""

    text: str = ""
    tool_calls: list[ToolInvocation] = field(default_factory=list)
    is_final: bool = False
    chunk_index: int = 0
    raw_content: Any = None


@dataclass
class ConversationState:
    """
    Mutable state of one tool loop run.

    Created at the start of a run, discarded when it terminates.
    """

    history: list[Turn] = field(default_factory=list)
    pending_tool_calls: list[ToolInvocation] = field(default_factory=list)
    loop_count: int = 0


@dataclass
class LoopOutcome:
    """Result of a finished tool loop run."""

    status: LoopStatus
    text: str
    loop_count: int
    turns: list[Turn] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    model_calls: int = 0
    execution_time: float = 0.0

    @property
    def hit_loop_bound(self) -> bool:
        return self.status is LoopStatus.LOOP_BOUND

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "status": self.status.value,
            "text": self.text,
            "loop_count": self.loop_count,
            "model_calls": self.model_calls,
            "tool_results": [
                {"name": r.name, "result": r.result_text, "is_error": r.is_error}
                for r in self.tool_results
            ],
            "execution_time": round(self.execution_time, 3),
        }


# =============================================================================
# Application Types
# =============================================================================


@dataclass
class WorkerLog:
    """Single human-readable progress entry."""

    message: str
    type: Severity = Severity.INFO
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class WorkerState:
    """Observable state of one role's activity."""

    id: str
    is_busy: bool = False
    current_task: str = "Idle"
    progress: int = 0  # 0 to 100
    logs: list[WorkerLog] = field(default_factory=list)

    def summary(self) -> str:
        busy = "busy" if self.is_busy else "idle"
        return f"{self.id}: {busy}, task={self.current_task!r}, progress={self.progress}%"


@dataclass
class ChatSession:
    """Caller-owned chat transcript sent to the manager as history."""

    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    title: str = "Project Alpha"
    turns: list[Turn] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
