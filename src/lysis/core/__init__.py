"""Core services.

- Scheduler: single-consumer priority queue for upstream calls
- EventBus / DebouncedChannel: application signals
- LysisConfig: configuration sections and loaders

The gateway and the Lysis orchestrator live in ``lysis.core.gateway`` and
``lysis.core.orchestrator``; they depend on the key and agent packages and
are not re-exported here.
"""

from lysis.core.config import LysisConfig, get_config, set_config
from lysis.core.events import DebouncedChannel, EmitResult, Event, EventBus, EventType
from lysis.core.scheduler import ScheduledTask, Scheduler
from lysis.core.types import (
    ChatSession,
    ConversationState,
    LoopOutcome,
    LoopStatus,
    ModelRequest,
    ModelResponse,
    Priority,
    ProjectMode,
    Role,
    Severity,
    StreamChunk,
    ToolInvocation,
    ToolResult,
    ToolSpec,
    Turn,
    WorkerId,
    WorkerLog,
    WorkerState,
)

__all__ = [
    "LysisConfig",
    "get_config",
    "set_config",
    "EventBus",
    "EventType",
    "Event",
    "EmitResult",
    "DebouncedChannel",
    "Scheduler",
    "ScheduledTask",
    "Role",
    "WorkerId",
    "ProjectMode",
    "Severity",
    "Priority",
    "LoopStatus",
    "ToolInvocation",
    "ToolResult",
    "Turn",
    "ToolSpec",
    "ModelRequest",
    "ModelResponse",
    "StreamChunk",
    "ConversationState",
    "LoopOutcome",
    "WorkerLog",
    "WorkerState",
    "ChatSession",
]
